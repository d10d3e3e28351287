"""Whole-document key-value persistence: load everything at start, overwrite a document on every mutation."""
from __future__ import annotations

import copy
import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from errors import PersistenceError

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class DocumentStore(Protocol):
    def load(self, key: str) -> Optional[Any]:
        ...

    def save(self, key: str, document: Any) -> None:
        ...


class InMemoryDocumentStore:
    """Store used by tests and dry runs. Documents are deep-copied in and out."""

    def __init__(self, documents: Optional[Dict[str, Any]] = None) -> None:
        self._documents: Dict[str, Any] = copy.deepcopy(documents or {})
        self.writes = 0

    def load(self, key: str) -> Optional[Any]:
        document = self._documents.get(key)
        return copy.deepcopy(document) if document is not None else None

    def save(self, key: str, document: Any) -> None:
        try:
            # Round-trip through JSON so tests see the same constraints as the SQLite store.
            self._documents[key] = json.loads(json.dumps(document))
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Could not serialize document {key!r}: {exc}") from exc
        self.writes += 1


class SQLiteDocumentStore:
    """SQLite-backed document table. Writes are synchronous, whole-document and not transactional across keys."""

    def __init__(self, db_path: Path | str = Path("data/monitor.db")) -> None:
        self.db_path = Path(db_path)
        if self.db_path != Path(":memory:"):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._connection = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
        )
        self._connection.row_factory = sqlite3.Row
        self._configure()
        self._create_schema()

    def _configure(self) -> None:
        with self._lock:
            cursor = self._connection.cursor()
            try:
                cursor.execute("PRAGMA journal_mode=WAL;")
            except sqlite3.DatabaseError:
                pass
            cursor.close()

    def _create_schema(self) -> None:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS document (
                    key TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
            self._connection.commit()
            cursor.close()

    def load(self, key: str) -> Optional[Any]:
        try:
            with self._lock:
                cursor = self._connection.cursor()
                cursor.execute("SELECT payload FROM document WHERE key = ?", (key,))
                row = cursor.fetchone()
                cursor.close()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not load document {key!r}: {exc}") from exc
        if row is None:
            return None
        try:
            return json.loads(row["payload"])
        except ValueError as exc:
            raise PersistenceError(f"Document {key!r} is corrupt: {exc}") from exc

    def save(self, key: str, document: Any) -> None:
        try:
            payload = json.dumps(document)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Could not serialize document {key!r}: {exc}") from exc
        updated_at = datetime.now(timezone.utc).strftime(ISO_FORMAT)
        try:
            with self._lock:
                cursor = self._connection.cursor()
                cursor.execute(
                    """
                    INSERT INTO document (key, payload, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        payload = excluded.payload,
                        updated_at = excluded.updated_at
                    """,
                    (key, payload, updated_at),
                )
                self._connection.commit()
                cursor.close()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not save document {key!r}: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._connection.close()
