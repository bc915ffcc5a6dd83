"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like a temp DB.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "Asia/Bangkok")

import pytest

USER_ID = 12345
OTHER_USER_ID = 67890


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_routines.db")


@pytest.fixture
def tracker_db(tmp_db_path):
    """Return a TrackerDB instance backed by a temp file."""
    from src.data.db import TrackerDB
    return TrackerDB(db_path=tmp_db_path)


def _make_profile(user_id=USER_ID, rest_day_index=0, strict_mode=False, timezone="Asia/Bangkok"):
    from src.data.models import Profile
    return Profile(
        user_id=user_id,
        display_name="Tester",
        work_start="09:00",
        work_end="18:00",
        rest_day_index=rest_day_index,
        strict_mode=strict_mode,
        timezone=timezone,
    )


@pytest.fixture
def make_profile():
    """Return a factory for in-memory Profile objects."""
    return _make_profile


@pytest.fixture
def profile(tracker_db):
    """An onboarded profile for USER_ID (rest day Sunday, strict mode off)."""
    return tracker_db.upsert_profile(_make_profile())
