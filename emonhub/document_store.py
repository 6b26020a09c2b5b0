"""
Document store used for historical records.

Documents are JSON objects addressed by slash-separated paths such as
``users/{uid}/historical/daily/2025-04-01``. A document's collection is its
path minus the last segment. Two implementations are provided: an in-memory
store (tests, dry runs) and a SQLite-backed store.
"""

import json
import os
import sqlite3
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from emonhub.errors import StoreError

log = logging.getLogger(__name__)


def split_path(path: str):
    """Split a document path into (collection, doc_id)."""
    path = path.strip("/")
    if "/" not in path:
        return "", path
    collection, doc_id = path.rsplit("/", 1)
    return collection, doc_id


class DocumentStore(ABC):
    """Minimal get/set/create-if-absent contract over path-addressed documents."""

    @abstractmethod
    def get(self, path: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def set(self, path: str, data: Dict[str, Any]) -> None: ...

    @abstractmethod
    def create(self, path: str, data: Dict[str, Any]) -> bool:
        """Write data only if no document exists at path. Returns True if written."""

    @abstractmethod
    def list_ids(self, collection: str) -> List[str]:
        """Ids of the documents directly inside a collection, sorted."""

    def exists(self, path: str) -> bool:
        return self.get(path) is not None


class MemoryDocumentStore(DocumentStore):
    """Dictionary-backed store."""

    def __init__(self):
        self._docs: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        raw = self._docs.get(path.strip("/"))
        return json.loads(raw) if raw is not None else None

    def set(self, path: str, data: Dict[str, Any]) -> None:
        self._docs[path.strip("/")] = json.dumps(data, sort_keys=True)

    def create(self, path: str, data: Dict[str, Any]) -> bool:
        key = path.strip("/")
        with self._lock:
            if key in self._docs:
                return False
            self._docs[key] = json.dumps(data, sort_keys=True)
            return True

    def list_ids(self, collection: str) -> List[str]:
        collection = collection.strip("/")
        ids = [split_path(p)[1] for p in self._docs if split_path(p)[0] == collection]
        return sorted(ids)

    def raw(self, path: str) -> Optional[str]:
        """Serialized document exactly as stored."""
        return self._docs.get(path.strip("/"))


class SqliteDocumentStore(DocumentStore):
    """SQLite-backed store. Opens one connection per operation."""

    def __init__(self, path: Optional[str] = None, timeout: float = 30.0):
        if path is None:
            base = os.path.expanduser("~/.emonhub")
            os.makedirs(base, exist_ok=True)
            path = os.path.join(base, "emonhub.db")
        self.path = path
        self.timeout = timeout
        self._init()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=self.timeout)

    def _init(self):
        log.info(f"Initializing document store at: {self.path}")
        try:
            con = self._connect()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open document store {self.path}: {e}") from e
        try:
            cur = con.cursor()
            cur.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    path TEXT PRIMARY KEY,
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)
            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_collection
                ON documents(collection, doc_id)
            """)
            con.commit()
        except sqlite3.Error as e:
            con.rollback()
            raise StoreError(f"Failed to initialize document store: {e}") from e
        finally:
            con.close()

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        try:
            con = self._connect()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open document store: {e}") from e
        try:
            cur = con.cursor()
            cur.execute("SELECT data FROM documents WHERE path = ?", (path.strip("/"),))
            row = cur.fetchone()
            return json.loads(row[0]) if row else None
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read {path}: {e}") from e
        finally:
            con.close()

    def set(self, path: str, data: Dict[str, Any]) -> None:
        key = path.strip("/")
        collection, doc_id = split_path(key)
        try:
            con = self._connect()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open document store: {e}") from e
        try:
            cur = con.cursor()
            cur.execute("""
                INSERT INTO documents (path, collection, doc_id, data)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    data = excluded.data,
                    updated_at = CURRENT_TIMESTAMP
            """, (key, collection, doc_id, json.dumps(data, sort_keys=True)))
            con.commit()
        except sqlite3.Error as e:
            con.rollback()
            raise StoreError(f"Failed to write {path}: {e}") from e
        finally:
            con.close()

    def create(self, path: str, data: Dict[str, Any]) -> bool:
        key = path.strip("/")
        collection, doc_id = split_path(key)
        try:
            con = self._connect()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open document store: {e}") from e
        try:
            cur = con.cursor()
            cur.execute("""
                INSERT OR IGNORE INTO documents (path, collection, doc_id, data)
                VALUES (?, ?, ?, ?)
            """, (key, collection, doc_id, json.dumps(data, sort_keys=True)))
            con.commit()
            return cur.rowcount == 1
        except sqlite3.Error as e:
            con.rollback()
            raise StoreError(f"Failed to create {path}: {e}") from e
        finally:
            con.close()

    def list_ids(self, collection: str) -> List[str]:
        try:
            con = self._connect()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open document store: {e}") from e
        try:
            cur = con.cursor()
            cur.execute(
                "SELECT doc_id FROM documents WHERE collection = ? ORDER BY doc_id",
                (collection.strip("/"),),
            )
            return [row[0] for row in cur.fetchall()]
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list {collection}: {e}") from e
        finally:
            con.close()


def create_store(backend: str, path: Optional[str] = None) -> DocumentStore:
    """Build the document store named in configuration."""
    if backend == "memory":
        return MemoryDocumentStore()
    if backend == "sqlite":
        return SqliteDocumentStore(path)
    raise ValueError(f"Unknown store backend: {backend}")
