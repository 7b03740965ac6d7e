"""Shared test fixtures and configuration.

Sets up fake environment variables so gardenit.config doesn't sys.exit(),
and provides temp-file SQLite stores.
"""

import os

# Patch env vars BEFORE any gardenit imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("DEFAULT_TIMEZONE", "UTC")
os.environ.setdefault("SMTP_HOST", "")

import pytest


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_gardenit.db")


@pytest.fixture
def garden_db(tmp_db_path):
    """Return a GardenDB instance backed by a temp file."""
    from gardenit.data.db import GardenDB
    return GardenDB(db_path=tmp_db_path)


@pytest.fixture
def store(tmp_db_path):
    """Return a NotificationStore sharing the GardenDB's temp file."""
    from gardenit.data.db import NotificationStore
    return NotificationStore(db_path=tmp_db_path)
