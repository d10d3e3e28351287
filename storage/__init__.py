"""Storage package providing the document stores for watch rules and known pools."""

from .document_store import DocumentStore, InMemoryDocumentStore, SQLiteDocumentStore

__all__ = ["DocumentStore", "InMemoryDocumentStore", "SQLiteDocumentStore"]
