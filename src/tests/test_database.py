"""Tests for database.py module."""

import sqlite3

from database import (
    init_db,
    get_value,
    put_value,
    commit_batch,
    rollback_batch,
)


class TestInitDb:
    """Tests for database initialization."""

    def test_cache_table_exists_after_init(self, db_conn):
        cursor = db_conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
        )
        tables = [row[0] for row in cursor.fetchall()]
        assert tables == ["cache_entries"]

    def test_pragma_journal_mode_wal(self, db_conn):
        """Verify WAL mode is enabled (not applicable to in-memory DBs)."""
        result = db_conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert result in ("wal", "memory")

    def test_init_is_idempotent(self, db_path):
        conn1 = init_db(db_path)
        put_value(conn1, "ns", "k", 1, 100)
        commit_batch(conn1)
        conn1.close()

        conn2 = init_db(db_path)
        assert get_value(conn2, "ns", "k") == 1
        conn2.close()


class TestValues:
    """Tests for get_value / put_value."""

    def test_missing_key_returns_none(self, db_conn):
        assert get_value(db_conn, "ns", "missing") is None

    def test_put_then_get_decodes_json(self, db_conn):
        put_value(db_conn, "ns", "user-list", {"1": {"login": "alice"}}, 1000)
        commit_batch(db_conn)

        assert get_value(db_conn, "ns", "user-list") == {"1": {"login": "alice"}}

    def test_put_overwrites_existing_value(self, db_conn):
        put_value(db_conn, "ns", "last-update", 1000, 1000)
        put_value(db_conn, "ns", "last-update", 2000, 2000)
        commit_batch(db_conn)

        assert get_value(db_conn, "ns", "last-update") == 2000
        count = db_conn.execute("SELECT COUNT(*) FROM cache_entries").fetchone()[0]
        assert count == 1

    def test_namespaces_are_isolated(self, db_conn):
        put_value(db_conn, "users", "last-update", 1, 1)
        put_value(db_conn, "games", "last-update", 2, 2)
        commit_batch(db_conn)

        assert get_value(db_conn, "users", "last-update") == 1
        assert get_value(db_conn, "games", "last-update") == 2

    def test_uncommitted_writes_not_visible_to_other_connection(self, db_conn, db_path):
        other = init_db(db_path)
        try:
            put_value(db_conn, "ns", "k", "v", 1)
            assert get_value(other, "ns", "k") is None
            commit_batch(db_conn)
            assert get_value(other, "ns", "k") == "v"
        finally:
            other.close()

    def test_rollback_discards_pending_writes(self, db_conn):
        put_value(db_conn, "ns", "k", "v", 1)
        rollback_batch(db_conn)

        assert get_value(db_conn, "ns", "k") is None

    def test_row_factory_is_row(self, db_conn):
        assert db_conn.row_factory is sqlite3.Row
