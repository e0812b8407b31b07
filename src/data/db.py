"""
Roam — SQLite storage.

Default persistence collaborator for the scheduling core: one table per
entity, rows mapped to the frozen dataclasses in src.data.models.
Every sqlite3 failure is re-raised as StorageError.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime
from pathlib import Path
from typing import Iterator

from src.data.models import (
    DEFAULT_REGIONS,
    CalendarEvent,
    CalendarSource,
    CalendarSourceType,
    Priority,
    Region,
    Task,
    TaskStatus,
    stamp_new,
)
from src.ports.storage_port import StorageError

logger = logging.getLogger(__name__)


def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class _SQLiteStore:
    """Shared connection handling for the per-entity stores."""

    _table = ""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open database {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            logger.error("Storage failure on %s: %s", self._table, exc)
            raise StorageError(f"{self._table}: {exc}") from exc
        finally:
            conn.close()

    def _init_db(self) -> None:
        raise NotImplementedError

    def _update(self, conn: sqlite3.Connection, sql: str, params: tuple, row_id: int) -> None:
        cursor = conn.execute(sql, params)
        if cursor.rowcount == 0:
            raise StorageError(f"{self._table}: row {row_id} does not exist")

    def delete(self, row_id: int) -> bool:
        """Permanently delete a row by ID."""
        with self._connect() as conn:
            cursor = conn.execute(f"DELETE FROM {self._table} WHERE id = ?", (row_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("%s #%d deleted", self._table, row_id)
        return deleted


class RegionDB(_SQLiteStore):
    """SQLite-backed storage for regions."""

    _table = "regions"

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS regions (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    name        TEXT    NOT NULL UNIQUE,
                    color       TEXT    NOT NULL,
                    is_default  INTEGER NOT NULL DEFAULT 0,
                    created_at  TEXT    NOT NULL,
                    updated_at  TEXT    NOT NULL
                )
            """)
        logger.debug("Regions table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_region(row: sqlite3.Row) -> Region:
        return Region(
            id=row["id"],
            name=row["name"],
            color=row["color"],
            is_default=bool(row["is_default"]),
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
        )

    def find_all(self) -> list[Region]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM regions ORDER BY id").fetchall()
        return [self._row_to_region(r) for r in rows]

    def find_by_id(self, region_id: int) -> Region | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM regions WHERE id = ?", (region_id,)).fetchone()
        return self._row_to_region(row) if row else None

    def find_by_name(self, name: str) -> Region | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM regions WHERE name = ?", (name,)).fetchone()
        return self._row_to_region(row) if row else None

    def save(self, region: Region) -> Region:
        """Insert when region.id is None, otherwise replace the stored row."""
        params = (
            region.name, region.color, int(region.is_default),
            _dt(region.created_at), _dt(region.updated_at),
        )
        with self._connect() as conn:
            if region.id is None:
                cursor = conn.execute(
                    """
                    INSERT INTO regions (name, color, is_default, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    params,
                )
                region = replace(region, id=cursor.lastrowid)
                logger.info("Region created: #%d '%s'", region.id, region.name)
            else:
                self._update(
                    conn,
                    """
                    UPDATE regions SET name = ?, color = ?, is_default = ?,
                        created_at = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    params + (region.id,),
                    region.id,
                )
                logger.info("Region updated: #%d '%s'", region.id, region.name)
        return region

    def create_default_regions(self) -> list[Region]:
        """Seed the default life areas, skipping names already present."""
        created: list[Region] = []
        for name, color in DEFAULT_REGIONS:
            if self.find_by_name(name) is None:
                created.append(self.save(stamp_new(Region(None, name, color, is_default=True))))
        if created:
            logger.info("Created %d default regions", len(created))
        return created


class CalendarSourceDB(_SQLiteStore):
    """SQLite-backed storage for calendar sources."""

    _table = "calendar_sources"

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS calendar_sources (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    name        TEXT    NOT NULL,
                    color       TEXT    NOT NULL,
                    type        TEXT    NOT NULL DEFAULT 'REGION',
                    is_visible  INTEGER NOT NULL DEFAULT 1,
                    is_default  INTEGER NOT NULL DEFAULT 0,
                    created_at  TEXT    NOT NULL,
                    updated_at  TEXT    NOT NULL
                )
            """)
        logger.debug("Calendar sources table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_source(row: sqlite3.Row) -> CalendarSource:
        return CalendarSource(
            id=row["id"],
            name=row["name"],
            color=row["color"],
            type=CalendarSourceType(row["type"]),
            is_visible=bool(row["is_visible"]),
            is_default=bool(row["is_default"]),
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
        )

    def find_all(self) -> list[CalendarSource]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM calendar_sources ORDER BY id").fetchall()
        return [self._row_to_source(r) for r in rows]

    def find_by_id(self, source_id: int) -> CalendarSource | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM calendar_sources WHERE id = ?", (source_id,)
            ).fetchone()
        return self._row_to_source(row) if row else None

    def find_by_name(self, name: str) -> CalendarSource | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM calendar_sources WHERE name = ? ORDER BY id", (name,)
            ).fetchone()
        return self._row_to_source(row) if row else None

    def save(self, source: CalendarSource) -> CalendarSource:
        """Insert when source.id is None, otherwise replace the stored row."""
        params = (
            source.name, source.color, source.type.value,
            int(source.is_visible), int(source.is_default),
            _dt(source.created_at), _dt(source.updated_at),
        )
        with self._connect() as conn:
            if source.id is None:
                cursor = conn.execute(
                    """
                    INSERT INTO calendar_sources
                        (name, color, type, is_visible, is_default, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    params,
                )
                source = replace(source, id=cursor.lastrowid)
                logger.info("Calendar source created: #%d '%s'", source.id, source.name)
            else:
                self._update(
                    conn,
                    """
                    UPDATE calendar_sources SET name = ?, color = ?, type = ?,
                        is_visible = ?, is_default = ?, created_at = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    params + (source.id,),
                    source.id,
                )
                logger.info("Calendar source updated: #%d '%s'", source.id, source.name)
        return source


_EVENT_COLUMNS = (
    "calendar_source_id", "operation_id", "task_id", "title", "description",
    "location", "start_date_time", "end_date_time", "is_all_day", "color",
    "recurrence_rule", "recurrence_end_date", "parent_event_id",
    "is_recurring_instance", "original_start_date_time", "region", "wiki_id",
    "is_cancelled", "created_at", "updated_at",
)


class CalendarEventDB(_SQLiteStore):
    """SQLite-backed storage for calendar events, roots and detached instances."""

    _table = "calendar_events"

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS calendar_events (
                    id                       INTEGER PRIMARY KEY AUTOINCREMENT,
                    calendar_source_id       INTEGER NOT NULL,
                    operation_id             INTEGER,
                    task_id                  INTEGER,
                    title                    TEXT    NOT NULL,
                    description              TEXT,
                    location                 TEXT,
                    start_date_time          TEXT    NOT NULL,
                    end_date_time            TEXT    NOT NULL,
                    is_all_day               INTEGER NOT NULL DEFAULT 0,
                    color                    TEXT,
                    recurrence_rule          TEXT,
                    recurrence_end_date      TEXT,
                    parent_event_id          INTEGER,
                    is_recurring_instance    INTEGER NOT NULL DEFAULT 0,
                    original_start_date_time TEXT,
                    region                   TEXT,
                    wiki_id                  INTEGER,
                    is_cancelled             INTEGER NOT NULL DEFAULT 0,
                    created_at               TEXT    NOT NULL,
                    updated_at               TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_parent "
                "ON calendar_events (parent_event_id, original_start_date_time)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_task ON calendar_events (task_id)"
            )
        logger.debug("Calendar events table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> CalendarEvent:
        return CalendarEvent(
            id=row["id"],
            calendar_source_id=row["calendar_source_id"],
            operation_id=row["operation_id"],
            task_id=row["task_id"],
            title=row["title"],
            description=row["description"],
            location=row["location"],
            start_date_time=_parse_dt(row["start_date_time"]),
            end_date_time=_parse_dt(row["end_date_time"]),
            is_all_day=bool(row["is_all_day"]),
            color=row["color"],
            recurrence_rule=row["recurrence_rule"],
            recurrence_end_date=_parse_dt(row["recurrence_end_date"]),
            parent_event_id=row["parent_event_id"],
            is_recurring_instance=bool(row["is_recurring_instance"]),
            original_start_date_time=_parse_dt(row["original_start_date_time"]),
            region=row["region"],
            wiki_id=row["wiki_id"],
            is_cancelled=bool(row["is_cancelled"]),
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
        )

    @staticmethod
    def _event_params(event: CalendarEvent) -> tuple:
        return (
            event.calendar_source_id, event.operation_id, event.task_id,
            event.title, event.description, event.location,
            _dt(event.start_date_time), _dt(event.end_date_time),
            int(event.is_all_day), event.color, event.recurrence_rule,
            _dt(event.recurrence_end_date), event.parent_event_id,
            int(event.is_recurring_instance), _dt(event.original_start_date_time),
            event.region, event.wiki_id, int(event.is_cancelled),
            _dt(event.created_at), _dt(event.updated_at),
        )

    def _select(self, where: str = "", params: tuple = ()) -> list[CalendarEvent]:
        query = "SELECT * FROM calendar_events"
        if where:
            query += " WHERE " + where
        query += " ORDER BY start_date_time, id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_event(r) for r in rows]

    def find_all(self) -> list[CalendarEvent]:
        return self._select()

    def find_by_id(self, event_id: int) -> CalendarEvent | None:
        found = self._select("id = ?", (event_id,))
        return found[0] if found else None

    def find_by_operation_id(self, operation_id: int) -> list[CalendarEvent]:
        return self._select("operation_id = ?", (operation_id,))

    def find_by_task_id(self, task_id: int) -> CalendarEvent | None:
        found = self._select("task_id = ?", (task_id,))
        return found[0] if found else None

    def find_detached(
        self, parent_event_id: int, original_start: datetime
    ) -> CalendarEvent | None:
        """Return the persisted override for one occurrence of a series, if any."""
        found = self._select(
            "parent_event_id = ? AND original_start_date_time = ?",
            (parent_event_id, _dt(original_start)),
        )
        return found[0] if found else None

    def save(self, event: CalendarEvent) -> CalendarEvent:
        """Insert when event.id is None, otherwise replace the stored row."""
        params = self._event_params(event)
        with self._connect() as conn:
            if event.id is None:
                placeholders = ", ".join("?" for _ in _EVENT_COLUMNS)
                cursor = conn.execute(
                    f"INSERT INTO calendar_events ({', '.join(_EVENT_COLUMNS)}) "
                    f"VALUES ({placeholders})",
                    params,
                )
                event = replace(event, id=cursor.lastrowid)
                logger.info("Calendar event created: #%d '%s'", event.id, event.title)
            else:
                assignments = ", ".join(f"{col} = ?" for col in _EVENT_COLUMNS)
                self._update(
                    conn,
                    f"UPDATE calendar_events SET {assignments} WHERE id = ?",
                    params + (event.id,),
                    event.id,
                )
                logger.info("Calendar event updated: #%d '%s'", event.id, event.title)
        return event

    def delete_series(self, parent_event_id: int) -> int:
        """Delete a recurrence root and every persisted instance of it."""
        with self._connect() as conn:
            instances = conn.execute(
                "DELETE FROM calendar_events WHERE parent_event_id = ?",
                (parent_event_id,),
            ).rowcount
            conn.execute("DELETE FROM calendar_events WHERE id = ?", (parent_event_id,))
        logger.info(
            "Recurring series #%d deleted (parent and %d instances)",
            parent_event_id, instances,
        )
        return instances


class TaskDB(_SQLiteStore):
    """SQLite-backed storage for tasks."""

    _table = "tasks"

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    operation_id INTEGER,
                    title        TEXT    NOT NULL,
                    description  TEXT,
                    status       TEXT    NOT NULL DEFAULT 'TODO',
                    priority     TEXT    NOT NULL DEFAULT 'MEDIUM',
                    due_date     TEXT,
                    assignee     TEXT,
                    created_at   TEXT    NOT NULL,
                    updated_at   TEXT    NOT NULL
                )
            """)
        logger.debug("Tasks table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            operation_id=row["operation_id"],
            title=row["title"],
            description=row["description"],
            status=TaskStatus(row["status"]),
            priority=Priority(row["priority"]),
            due_date=date.fromisoformat(row["due_date"]) if row["due_date"] else None,
            assignee=row["assignee"],
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
        )

    def find_all(self) -> list[Task]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM tasks ORDER BY id").fetchall()
        return [self._row_to_task(r) for r in rows]

    def find_by_id(self, task_id: int) -> Task | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return self._row_to_task(row) if row else None

    def find_by_operation_id(self, operation_id: int) -> list[Task]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE operation_id = ? ORDER BY id", (operation_id,)
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def save(self, task: Task) -> Task:
        """Insert when task.id is None, otherwise replace the stored row."""
        params = (
            task.operation_id, task.title, task.description,
            task.status.value, task.priority.value,
            task.due_date.isoformat() if task.due_date else None,
            task.assignee, _dt(task.created_at), _dt(task.updated_at),
        )
        with self._connect() as conn:
            if task.id is None:
                cursor = conn.execute(
                    """
                    INSERT INTO tasks
                        (operation_id, title, description, status, priority,
                         due_date, assignee, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    params,
                )
                task = replace(task, id=cursor.lastrowid)
                logger.info("Task created: #%d '%s'", task.id, task.title)
            else:
                self._update(
                    conn,
                    """
                    UPDATE tasks SET operation_id = ?, title = ?, description = ?,
                        status = ?, priority = ?, due_date = ?, assignee = ?,
                        created_at = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    params + (task.id,),
                    task.id,
                )
                logger.info("Task updated: #%d '%s'", task.id, task.title)
        return task
