"""Pytest configuration and shared fixtures."""

import pytest
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import database
from config import Config, DatabaseConfig, SpreadsheetConfig, TwitchConfig


@pytest.fixture
def db_path(tmp_path):
    """Provide a path to a temporary SQLite database file."""
    return str(tmp_path / "test.db")


@pytest.fixture
def db_conn(db_path):
    """Provide a SQLite database connection initialized with schema."""
    conn = database.init_db(db_path)
    yield conn
    conn.close()


def make_config(channels=None, spreadsheet=None, check_interval_ms=60000, db_path=":memory:"):
    """Build a Config for tests without touching YAML."""
    return Config(
        twitch=TwitchConfig(
            client_id="client-id",
            client_secret="client-secret",
            check_interval_ms=check_interval_ms,
            channels=list(channels or []),
        ),
        database=DatabaseConfig(path=db_path),
        google_spreadsheet=spreadsheet,
    )


@pytest.fixture
def static_config():
    """Config monitoring a static list of channels."""
    return make_config(channels=["alice", "bob", "carol"])


@pytest.fixture
def sheet_config():
    """Config resolving channels from a spreadsheet."""
    return make_config(
        spreadsheet=SpreadsheetConfig(
            spreadsheet_id="sheet-123",
            headers=["Channel", "Discord"],
            sheet="Streamers",
        )
    )
