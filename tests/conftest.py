"""Shared test fixtures and configuration.

Sets up fake environment variables so smartcal.config doesn't sys.exit(),
and provides temp-file SQLite stores.
"""

import os

# Patch env vars BEFORE any smartcal imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("TIMEZONE", "Asia/Kolkata")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("RESEND_API_KEY", "")

import pytest


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_smartcal.db")


@pytest.fixture
def event_db(tmp_db_path):
    """Return an EventDB instance backed by a temp file."""
    from smartcal.data.db import EventDB
    return EventDB(db_path=tmp_db_path)


@pytest.fixture
def job_queue(tmp_db_path):
    """Return a JobQueueDB sharing the temp file with the other stores."""
    from smartcal.data.jobs import JobQueueDB
    return JobQueueDB(db_path=tmp_db_path)


@pytest.fixture
def ledger(tmp_db_path):
    """Return a DigestLedgerDB sharing the temp file with the other stores."""
    from smartcal.data.jobs import DigestLedgerDB
    return DigestLedgerDB(db_path=tmp_db_path)


@pytest.fixture
def rate_limit_db(tmp_db_path):
    """Return a RateLimitDB allowing 3 requests per 60s window."""
    from smartcal.data.db import RateLimitDB
    return RateLimitDB(db_path=tmp_db_path, max_requests=3, window_seconds=60)
