"""Shared test fixtures and configuration.

Sets up environment variables before any src imports, and provides stores
backed by a temp SQLite file plus the services built on them.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("OPERATIONS_SOURCE_NAME", "Operations")
os.environ.setdefault("TASK_EVENT_START_HOUR", "9")
os.environ.setdefault("TASK_EVENT_DURATION_MINUTES", "60")

import pytest


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_roam.db")


@pytest.fixture
def region_db(tmp_db_path):
    from src.data.db import RegionDB
    return RegionDB(db_path=tmp_db_path)


@pytest.fixture
def source_db(tmp_db_path):
    from src.data.db import CalendarSourceDB
    return CalendarSourceDB(db_path=tmp_db_path)


@pytest.fixture
def event_db(tmp_db_path):
    from src.data.db import CalendarEventDB
    return CalendarEventDB(db_path=tmp_db_path)


@pytest.fixture
def task_db(tmp_db_path):
    from src.data.db import TaskDB
    return TaskDB(db_path=tmp_db_path)


@pytest.fixture
def registry(source_db):
    """A SourceRegistry seeded with Personal, Work and Operations."""
    from src.core.visibility import SourceRegistry
    reg = SourceRegistry(source_db)
    reg.seed_defaults()
    return reg


@pytest.fixture
def calendar(event_db, registry):
    from src.core.calendar_service import CalendarService
    return CalendarService(event_db, registry)


@pytest.fixture
def synchronizer(event_db, registry, calendar):
    from src.core.task_sync import TaskEventSynchronizer
    return TaskEventSynchronizer(event_db, registry, on_change=calendar.cache.invalidate)


@pytest.fixture
def task_service(task_db, synchronizer):
    from src.core.task_service import TaskService
    return TaskService(task_db, synchronizer)
