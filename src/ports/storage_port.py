"""Storage port — abstract interfaces for the persistence collaborator.

Core modules depend on these protocols, never on a specific storage engine.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from src.data.models import CalendarEvent, CalendarSource, Region, Task


class StorageError(Exception):
    """Raised when any persistence operation fails."""


class RegionStore(Protocol):
    """Abstract region storage used by core modules."""

    def find_all(self) -> list[Region]: ...

    def find_by_id(self, region_id: int) -> Region | None: ...

    def find_by_name(self, name: str) -> Region | None: ...

    def save(self, region: Region) -> Region: ...

    def delete(self, region_id: int) -> bool: ...


class CalendarSourceStore(Protocol):
    """Abstract calendar source storage used by core modules."""

    def find_all(self) -> list[CalendarSource]: ...

    def find_by_id(self, source_id: int) -> CalendarSource | None: ...

    def find_by_name(self, name: str) -> CalendarSource | None: ...

    def save(self, source: CalendarSource) -> CalendarSource: ...

    def delete(self, source_id: int) -> bool: ...


class CalendarEventStore(Protocol):
    """Abstract calendar event storage used by core modules."""

    def find_all(self) -> list[CalendarEvent]: ...

    def find_by_id(self, event_id: int) -> CalendarEvent | None: ...

    def find_by_operation_id(self, operation_id: int) -> list[CalendarEvent]: ...

    def find_by_task_id(self, task_id: int) -> CalendarEvent | None: ...

    def find_detached(
        self, parent_event_id: int, original_start: datetime
    ) -> CalendarEvent | None: ...

    def save(self, event: CalendarEvent) -> CalendarEvent: ...

    def delete(self, event_id: int) -> bool: ...

    def delete_series(self, parent_event_id: int) -> int: ...


class TaskStore(Protocol):
    """Abstract task storage used by core modules."""

    def find_all(self) -> list[Task]: ...

    def find_by_id(self, task_id: int) -> Task | None: ...

    def find_by_operation_id(self, operation_id: int) -> list[Task]: ...

    def save(self, task: Task) -> Task: ...

    def delete(self, task_id: int) -> bool: ...
