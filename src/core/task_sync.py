"""
Roam — Task ↔ Event Synchronizer.

Keeps one placeholder calendar event per dated task on the Operations
calendar, so calendar views show task deadlines without double entry.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, time, timedelta
from typing import Callable, Iterable

from src.core.validation import validate_event
from src.core.visibility import SourceRegistry
from src.data.models import CalendarEvent, Task, stamp_new, stamp_updated
from src.ports.storage_port import CalendarEventStore

logger = logging.getLogger(__name__)


class TaskEventSynchronizer:
    """Creates, moves and removes the calendar event linked to a task."""

    def __init__(
        self,
        events: CalendarEventStore,
        registry: SourceRegistry,
        on_change: Callable[[], None] | None = None,
        source_name: str | None = None,
        start_hour: int | None = None,
        duration_minutes: int | None = None,
    ) -> None:
        from src.config import settings

        self._events = events
        self._registry = registry
        self._on_change = on_change
        self._source_name = source_name or settings.OPERATIONS_SOURCE_NAME
        self._start_hour = settings.TASK_EVENT_START_HOUR if start_hour is None else start_hour
        if duration_minutes is None:
            duration_minutes = settings.TASK_EVENT_DURATION_MINUTES
        self._duration = timedelta(minutes=duration_minutes)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def _placeholder_times(self, task: Task) -> tuple[datetime, datetime]:
        start = datetime.combine(task.due_date, time(self._start_hour, 0))
        return start, start + self._duration

    def sync(self, task: Task, now: datetime | None = None) -> CalendarEvent | None:
        """Bring the task's linked event in line with the task.

        Returns the linked event, or None when the task has no event after
        the sync. An unchanged task causes no write.
        """
        if task.id is None:
            raise ValueError("Task must be saved before it can be synced")

        linked = self._events.find_by_task_id(task.id)
        if task.due_date is None:
            if linked is not None:
                self._events.delete(linked.id)
                logger.info("Removed event #%d: task #%d has no due date", linked.id, task.id)
                self._changed()
            return None

        source = self._registry.find_by_name(self._source_name)
        if source is None:
            logger.warning(
                "No '%s' calendar source; task #%d not synced", self._source_name, task.id
            )
            return linked

        start, end = self._placeholder_times(task)
        if linked is None:
            event = self._events.save(stamp_new(
                validate_event(CalendarEvent(
                    id=None,
                    calendar_source_id=source.id,
                    task_id=task.id,
                    operation_id=task.operation_id,
                    title=task.title,
                    start_date_time=start,
                    end_date_time=end,
                )),
                now,
            ))
            logger.info("Linked task #%d to new event #%d", task.id, event.id)
            self._changed()
            return event

        wanted = replace(
            linked,
            title=task.title,
            start_date_time=start,
            end_date_time=end,
            operation_id=task.operation_id,
        )
        if wanted == linked:
            return linked
        event = self._events.save(stamp_updated(validate_event(wanted), now))
        logger.info("Updated event #%d for task #%d", event.id, task.id)
        self._changed()
        return event

    def on_task_deleted(self, task_id: int) -> bool:
        """Delete the event linked to a deleted task, if there is one."""
        linked = self._events.find_by_task_id(task_id)
        if linked is None:
            return False
        self._events.delete(linked.id)
        logger.info("Removed event #%d of deleted task #%d", linked.id, task_id)
        self._changed()
        return True

    def sync_all(self, tasks: Iterable[Task]) -> int:
        """Sync every task; returns how many now have a linked event."""
        linked = sum(1 for task in tasks if self.sync(task) is not None)
        logger.info("Synced tasks to calendar: %d linked events", linked)
        return linked
