"""
Roam — Task Service.

Task CRUD for the presentation layer. Every successful write is followed by
the calendar sync and, when a search collaborator is configured, a re-index.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable

from src.core.errors import NotFoundError, ValidationError
from src.core.task_filter import DueDateFilter, TaskFilter, apply, count_by_status
from src.core.task_sync import TaskEventSynchronizer
from src.core.validation import validate_task
from src.data.models import Priority, Task, TaskStatus, stamp_new, stamp_updated
from src.ports.search_port import SearchPort
from src.ports.storage_port import TaskStore

logger = logging.getLogger(__name__)


class TaskService:
    """Task create/update/delete plus filtered queries."""

    def __init__(
        self,
        tasks: TaskStore,
        synchronizer: TaskEventSynchronizer,
        search: SearchPort | None = None,
    ) -> None:
        self._tasks = tasks
        self._sync = synchronizer
        self._search = search

    def _after_write(self, task: Task, now: datetime | None) -> None:
        self._sync.sync(task, now)
        if self._search is not None:
            self._search.index_task(task)

    def _require(self, task_id: int) -> Task:
        task = self._tasks.find_by_id(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    # -- queries ---------------------------------------------------------

    def find_by_id(self, task_id: int) -> Task | None:
        return self._tasks.find_by_id(task_id)

    def find_all(self) -> list[Task]:
        return self._tasks.find_all()

    def find_by_operation_id(self, operation_id: int) -> list[Task]:
        return self._tasks.find_by_operation_id(operation_id)

    def query(self, task_filter: TaskFilter, now: datetime | None = None) -> list[Task]:
        return apply(task_filter, self._tasks.find_all(), now)

    def find_overdue(self, now: datetime | None = None) -> list[Task]:
        overdue = TaskFilter(due_date_filter=DueDateFilter.OVERDUE)
        return self.query(overdue, now)

    def count_by_status(self) -> dict[TaskStatus, int]:
        return count_by_status(self._tasks.find_all())

    # -- mutations -------------------------------------------------------

    def create_task(self, task: Task, now: datetime | None = None) -> Task:
        if task.id is not None:
            raise ValidationError("A new task must not carry an id")
        saved = self._tasks.save(stamp_new(validate_task(task), now))
        self._after_write(saved, now)
        return saved

    def update_task(self, task: Task, now: datetime | None = None) -> Task:
        """Replace the stored task with this snapshot."""
        if task.id is None:
            raise ValidationError("Task must be created before it can be updated")
        stored = self._require(task.id)
        task = replace(validate_task(task), created_at=stored.created_at)
        saved = self._tasks.save(stamp_updated(task, now))
        self._after_write(saved, now)
        return saved

    def _patch(self, task_id: int, now: datetime | None, **changes) -> Task:
        stored = self._require(task_id)
        if all(getattr(stored, k) == v for k, v in changes.items()):
            return stored
        return self.update_task(replace(stored, **changes), now)

    def update_status(
        self, task_id: int, status: TaskStatus, now: datetime | None = None
    ) -> Task:
        return self._patch(task_id, now, status=status)

    def update_priority(
        self, task_id: int, priority: Priority, now: datetime | None = None
    ) -> Task:
        return self._patch(task_id, now, priority=priority)

    def delete_task(self, task_id: int, confirm: Callable[[Task], bool]) -> bool:
        """Delete a task and its linked event after confirm(task) returns True."""
        task = self._require(task_id)
        if not confirm(task):
            logger.info("Deletion of task #%d not confirmed", task_id)
            return False
        self._tasks.delete(task_id)
        self._sync.on_task_deleted(task_id)
        if self._search is not None:
            self._search.remove_task(task_id)
        return True
