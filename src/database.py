"""Database module for SQLite operations.

All SQL operations are isolated here. No other module writes SQL.
Values are stored JSON-encoded in a single namespaced key/value table.
"""

import json
import sqlite3
from typing import Any, Optional


def init_db(path: str) -> sqlite3.Connection:
    """Initialize database with tables and PRAGMAs.

    Args:
        path: Path to the SQLite database file (use ':memory:' for in-memory)

    Returns:
        sqlite3.Connection: Database connection with row factory set
    """
    conn = _create_connection(path)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS cache_entries (
            namespace TEXT NOT NULL,
            key TEXT NOT NULL,
            value TEXT NOT NULL,
            updated_at INTEGER NOT NULL,
            PRIMARY KEY (namespace, key)
        )
    """)

    conn.commit()
    return conn


def _create_connection(path: str) -> sqlite3.Connection:
    """Create a new database connection with proper settings.

    Args:
        path: Path to the SQLite database file

    Returns:
        sqlite3.Connection: Database connection with row factory and PRAGMAs set
    """
    conn = sqlite3.connect(path, check_same_thread=False, timeout=30.0)
    conn.row_factory = sqlite3.Row

    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.commit()

    return conn


def get_value(conn: sqlite3.Connection, namespace: str, key: str) -> Optional[Any]:
    """Get a decoded value for a namespace/key.

    Args:
        conn: Database connection
        namespace: Cache namespace (e.g. "twitch-users-v2")
        key: Key within the namespace

    Returns:
        The decoded JSON value, or None if absent
    """
    cursor = conn.execute(
        "SELECT value FROM cache_entries WHERE namespace = ? AND key = ?",
        (namespace, key),
    )
    row = cursor.fetchone()
    if row is None:
        return None
    return json.loads(row["value"])


def put_value(
    conn: sqlite3.Connection, namespace: str, key: str, value: Any, updated_at: int
) -> None:
    """Insert or replace a value for a namespace/key.

    Does not commit; call commit_batch() once the logical update is complete.

    Args:
        conn: Database connection
        namespace: Cache namespace
        key: Key within the namespace
        value: JSON-serializable value
        updated_at: Unix timestamp
    """
    conn.execute(
        """INSERT INTO cache_entries (namespace, key, value, updated_at)
           VALUES (?, ?, ?, ?)
           ON CONFLICT(namespace, key) DO UPDATE SET
               value = excluded.value,
               updated_at = excluded.updated_at""",
        (namespace, key, json.dumps(value), updated_at),
    )


def commit_batch(conn: sqlite3.Connection) -> None:
    """Commit all pending writes in a single transaction.

    Args:
        conn: Database connection
    """
    conn.commit()


def rollback_batch(conn: sqlite3.Connection) -> None:
    """Discard all pending writes since the last commit.

    Args:
        conn: Database connection
    """
    conn.rollback()
