import pytest

from errors import PersistenceError
from storage import InMemoryDocumentStore, SQLiteDocumentStore


def test_sqlite_store_round_trips_documents(tmp_path):
    db_path = tmp_path / "nested" / "monitor.db"
    store = SQLiteDocumentStore(db_path=db_path)

    assert store.load("watchlist") is None
    store.save("watchlist", {"opt-1": {"enabled": True, "conditions": {"apy_below": 20.0}}})
    store.save("known_pools", {"poolIds": ["a", "b"], "lastUpdate": 1.5})
    store.save("known_pools", {"poolIds": ["a", "b", "c"], "lastUpdate": 2.5})

    assert store.load("watchlist")["opt-1"]["conditions"]["apy_below"] == 20.0
    assert store.load("known_pools") == {"poolIds": ["a", "b", "c"], "lastUpdate": 2.5}
    store.close()

    reopened = SQLiteDocumentStore(db_path=db_path)
    assert reopened.load("known_pools")["poolIds"] == ["a", "b", "c"]
    reopened.close()


def test_sqlite_store_rejects_unserializable_documents(tmp_path):
    store = SQLiteDocumentStore(db_path=tmp_path / "monitor.db")

    with pytest.raises(PersistenceError):
        store.save("watchlist", {"bad": object()})
    assert store.load("watchlist") is None
    store.close()


def test_sqlite_store_wraps_database_errors(tmp_path):
    store = SQLiteDocumentStore(db_path=tmp_path / "monitor.db")
    store.close()

    with pytest.raises(PersistenceError):
        store.load("watchlist")
    with pytest.raises(PersistenceError):
        store.save("watchlist", {})


def test_in_memory_store_isolates_callers():
    store = InMemoryDocumentStore({"watchlist": {"opt-1": {"enabled": True}}})

    loaded = store.load("watchlist")
    loaded["opt-1"]["enabled"] = False

    assert store.load("watchlist")["opt-1"]["enabled"] is True
    with pytest.raises(PersistenceError):
        store.save("watchlist", {"bad": {1, 2}})
    assert store.writes == 0
