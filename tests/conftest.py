"""Shared test fixtures and configuration.

Sets up environment variables before focus_buddy.config is imported,
and provides common fixtures like a temp-file store and record factories.
"""

import os

# Patch env vars BEFORE any focus_buddy imports
os.environ.setdefault("STORE_PROVIDER", "sqlite")
os.environ.setdefault("DATABASE_PATH", "data/test_focus_buddy.db")
os.environ.setdefault("OWNER_ID", "user-1")
os.environ.setdefault("TIMEZONE", "Asia/Seoul")
os.environ.setdefault("WEEK_STARTS_ON", "6")
os.environ.setdefault("SUPABASE_URL", "")
os.environ.setdefault("SUPABASE_KEY", "")

import pytest
from zoneinfo import ZoneInfo

from focus_buddy.data.models import Schedule, Todo


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_focus_buddy.db")


@pytest.fixture
def sqlite_store(tmp_db_path):
    """Return a SQLiteStore backed by a temp file."""
    from focus_buddy.adapters.sqlite_store import SQLiteStore
    return SQLiteStore(db_path=tmp_db_path)


@pytest.fixture
def seoul():
    return ZoneInfo("Asia/Seoul")


@pytest.fixture
def make_schedule():
    """Build a Schedule from record-style keyword arguments."""
    def _make(**overrides) -> Schedule:
        record = {
            "id": "s1",
            "user_id": "user-1",
            "title": "Standup",
            "start_time": "2024-01-01T09:00:00",
            "end_time": "2024-01-01T10:00:00",
            "recurrence": "none",
        }
        record.update(overrides)
        return Schedule.from_record(record)
    return _make


@pytest.fixture
def make_todo():
    """Build a Todo from record-style keyword arguments."""
    def _make(**overrides) -> Todo:
        record = {
            "id": "t1",
            "user_id": "user-1",
            "title": "Write report",
            "priority": "medium",
            "completed": False,
        }
        record.update(overrides)
        return Todo.from_record(record)
    return _make
