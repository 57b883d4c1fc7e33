"""Namespaced key/value cache backed by SQLite.

Each RecordCache instance wraps one namespace of the cache_entries table.
The monitor keeps two of them: one for Helix users and one for games.
"""

import logging
import sqlite3
import threading
import time
from typing import Any, Dict, Optional

import database


logger = logging.getLogger(__name__)


class RecordCache:
    """Persistent key/value store for one namespace.

    Writes are serialized with a lock so two caches sharing a connection
    never interleave their transactions.
    """

    _write_lock = threading.Lock()

    def __init__(self, conn: sqlite3.Connection, namespace: str) -> None:
        """Initialize the cache.

        Args:
            conn: Database connection (shared across namespaces)
            namespace: Namespace for all keys written by this cache
        """
        self._conn = conn
        self._namespace = namespace

    @property
    def namespace(self) -> str:
        return self._namespace

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        """Get a value, or default if the key has never been written."""
        value = database.get_value(self._conn, self._namespace, key)
        if value is None:
            return default
        return value

    def put(self, key: str, value: Any) -> None:
        """Write a single key and commit."""
        self.put_many({key: value})

    def put_many(self, values: Dict[str, Any]) -> None:
        """Write several keys as a single transaction.

        Args:
            values: Mapping of key to JSON-serializable value

        Raises:
            sqlite3.Error: If the write fails; the transaction is rolled back
        """
        now = int(time.time())
        with self._write_lock:
            try:
                for key, value in values.items():
                    database.put_value(self._conn, self._namespace, key, value, now)
                database.commit_batch(self._conn)
            except sqlite3.Error:
                database.rollback_batch(self._conn)
                raise

        logger.debug(
            f"Persisted {len(values)} key(s) to cache namespace {self._namespace}"
        )
