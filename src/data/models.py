"""
Roam — Data Models.

Plain value types for regions, calendar sources, calendar events and tasks.
Entities are immutable snapshots: every change produces a new value through
dataclasses.replace, and timestamps are set only by stamp_new/stamp_updated
on the write path.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import TypeVar

DEFAULT_REGIONS: tuple[tuple[str, str], ...] = (
    ("Lifestyle", "#FF5722"),
    ("Knowledge", "#9C27B0"),
    ("Skill", "#795548"),
    ("Spirituality", "#607D8B"),
    ("Career", "#3F51B5"),
    ("Finance", "#8BC34A"),
    ("Social", "#FF9800"),
    ("Academic", "#00BCD4"),
    ("Relationship", "#E91E63"),
)

# (name, color, is_default): seeded once, ahead of the per-region sources
FIXED_SOURCES: tuple[tuple[str, str, bool], ...] = (
    ("Personal", "#4285f4", True),
    ("Work", "#F4B400", False),
    ("Operations", "#0F9D58", False),
)


class CalendarSourceType(str, Enum):
    REGION = "REGION"


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(frozen=True)
class Region:
    """A life area used to tag tasks, notes and calendar sources."""

    id: int | None
    name: str                      # unique
    color: str                     # "#RRGGBB"
    is_default: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class CalendarSource:
    """A visibility/grouping channel for events, generally one per region."""

    id: int | None
    name: str
    color: str
    type: CalendarSourceType = CalendarSourceType.REGION
    is_visible: bool = True
    is_default: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class CalendarEvent:
    """A stored event, a recurrence root, or an occurrence of one.

    A recurrence root carries recurrence_rule and is not itself an instance.
    Occurrences are virtual (id is None) unless detached by an edit, in which
    case they are persisted with is_recurring_instance=True. A persisted
    occurrence with is_cancelled=True is a tombstone for that date.
    """

    id: int | None
    calendar_source_id: int
    title: str
    start_date_time: datetime
    end_date_time: datetime
    is_all_day: bool = False
    operation_id: int | None = None
    task_id: int | None = None
    description: str | None = None
    location: str | None = None
    color: str | None = None
    recurrence_rule: str | None = None           # "Weekly" or "FREQ=WEEKLY;INTERVAL=2"
    recurrence_end_date: datetime | None = None
    parent_event_id: int | None = None
    is_recurring_instance: bool = False
    original_start_date_time: datetime | None = None
    region: str | None = None
    wiki_id: int | None = None
    is_cancelled: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_recurrence_root(self) -> bool:
        return not self.is_recurring_instance and bool(self.recurrence_rule)

    @property
    def is_virtual(self) -> bool:
        """A computed occurrence that has never been persisted."""
        return self.is_recurring_instance and self.id is None

    @property
    def duration(self) -> timedelta:
        return self.end_date_time - self.start_date_time


@dataclass(frozen=True)
class Task:
    """A unit of work; linked to at most one calendar event through task_id."""

    id: int | None
    title: str
    status: TaskStatus = TaskStatus.TODO
    priority: Priority = Priority.MEDIUM
    operation_id: int | None = None
    description: str | None = None
    due_date: date | None = None
    assignee: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


Entity = TypeVar("Entity", Region, CalendarSource, CalendarEvent, Task)


def stamp_new(entity: Entity, now: datetime | None = None) -> Entity:
    """Return a copy ready for its first save: both timestamps set to now."""
    now = now or datetime.now()
    return replace(entity, created_at=now, updated_at=now)


def stamp_updated(entity: Entity, now: datetime | None = None) -> Entity:
    """Return a copy with updated_at moved to now; created_at is kept."""
    now = now or datetime.now()
    return replace(entity, created_at=entity.created_at or now, updated_at=now)
