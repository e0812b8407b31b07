"""
Roam — Task Filter/Sort Engine.

A TaskFilter describes a task query the way the tasks toolbar builds it.
apply() narrows a task collection with it and returns a deterministic order.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, Iterable

from pydantic import BaseModel, ConfigDict

from src.core.validation import sanitize_search_query
from src.data.models import Priority, Task, TaskStatus

logger = logging.getLogger(__name__)


class DueDateFilter(str, Enum):
    ANY = "ANY"
    OVERDUE = "OVERDUE"
    TODAY = "TODAY"
    TOMORROW = "TOMORROW"
    THIS_WEEK = "THIS_WEEK"
    THIS_MONTH = "THIS_MONTH"
    NO_DUE_DATE = "NO_DUE_DATE"
    HAS_DUE_DATE = "HAS_DUE_DATE"


class TaskSortField(str, Enum):
    CREATED_AT = "CREATED_AT"
    UPDATED_AT = "UPDATED_AT"
    DUE_DATE = "DUE_DATE"
    PRIORITY = "PRIORITY"
    TITLE = "TITLE"
    STATUS = "STATUS"
    OPERATION = "OPERATION"


class SortOrder(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class TaskFilter(BaseModel):
    """Structured task query.

    An empty set means "no restriction" on that dimension. The default
    instance matches every task, newest first.
    """

    model_config = ConfigDict(frozen=True)

    operation_ids: frozenset[int] = frozenset()
    statuses: frozenset[TaskStatus] = frozenset()
    priorities: frozenset[Priority] = frozenset()
    assignees: frozenset[str] = frozenset()
    due_date_filter: DueDateFilter = DueDateFilter.ANY
    search_query: str | None = None
    sort_by: TaskSortField = TaskSortField.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC
    show_completed: bool = True

    def is_filter_active(self) -> bool:
        """True when any field narrows the result; sort settings do not count."""
        return (
            bool(self.operation_ids)
            or bool(self.statuses)
            or bool(self.priorities)
            or bool(self.assignees)
            or self.due_date_filter is not DueDateFilter.ANY
            or bool(self.search_query and self.search_query.strip())
            or not self.show_completed
        )

    def with_changes(self, **changes) -> "TaskFilter":
        """Copy with some fields replaced (validated like the constructor)."""
        return TaskFilter.model_validate({**self.model_dump(), **changes})

    @staticmethod
    def reset() -> "TaskFilter":
        return TaskFilter()


def matches_due_date(
    bucket: DueDateFilter, task: Task, today: date
) -> bool:
    """Whether task falls in the named due-date bucket relative to today."""
    due = task.due_date
    if bucket is DueDateFilter.ANY:
        return True
    if bucket is DueDateFilter.NO_DUE_DATE:
        return due is None
    if due is None:
        return False
    if bucket is DueDateFilter.HAS_DUE_DATE:
        return True
    if bucket is DueDateFilter.OVERDUE:
        return due < today and task.status is not TaskStatus.DONE
    if bucket is DueDateFilter.TODAY:
        return due == today
    if bucket is DueDateFilter.TOMORROW:
        return due == today + timedelta(days=1)
    if bucket is DueDateFilter.THIS_WEEK:
        return due.isocalendar()[:2] == today.isocalendar()[:2]
    return (due.year, due.month) == (today.year, today.month)


def _matches(task_filter: TaskFilter, task: Task, today: date, query: str) -> bool:
    if not task_filter.show_completed and task.status is TaskStatus.DONE:
        return False
    if task_filter.operation_ids and task.operation_id not in task_filter.operation_ids:
        return False
    if task_filter.statuses and task.status not in task_filter.statuses:
        return False
    if task_filter.priorities and task.priority not in task_filter.priorities:
        return False
    if task_filter.assignees and task.assignee not in task_filter.assignees:
        return False
    if not matches_due_date(task_filter.due_date_filter, task, today):
        return False
    if query:
        title = (task.title or "").casefold()
        description = (task.description or "").casefold()
        if query not in title and query not in description:
            return False
    return True


_PRIORITY_RANK = {Priority.LOW: 0, Priority.MEDIUM: 1, Priority.HIGH: 2}
_STATUS_RANK = {TaskStatus.TODO: 0, TaskStatus.IN_PROGRESS: 1, TaskStatus.DONE: 2}

# None means "no value": such tasks always sort after the rest
_SORT_KEYS: dict[TaskSortField, Callable[[Task], object]] = {
    TaskSortField.CREATED_AT: lambda t: t.created_at,
    TaskSortField.UPDATED_AT: lambda t: t.updated_at,
    TaskSortField.DUE_DATE: lambda t: t.due_date,
    TaskSortField.PRIORITY: lambda t: _PRIORITY_RANK[t.priority],
    TaskSortField.TITLE: lambda t: (t.title or "").casefold(),
    TaskSortField.STATUS: lambda t: _STATUS_RANK[t.status],
    TaskSortField.OPERATION: lambda t: t.operation_id,
}


def sort_tasks(
    tasks: Iterable[Task],
    sort_by: TaskSortField = TaskSortField.CREATED_AT,
    sort_order: SortOrder = SortOrder.DESC,
) -> list[Task]:
    """Stable sort on one key; equal keys always keep ascending id order.

    DESC reverses the comparator only. Python's sort stays stable under
    reverse=True, so the id pre-sort survives as the tie-break either way.
    """
    by_id = sorted(tasks, key=lambda t: (t.id is None, t.id or 0))
    key = _SORT_KEYS[sort_by]
    keyed = [t for t in by_id if key(t) is not None]
    missing = [t for t in by_id if key(t) is None]
    keyed.sort(key=key, reverse=sort_order is SortOrder.DESC)
    return keyed + missing


def apply(
    task_filter: TaskFilter,
    tasks: Iterable[Task],
    now: datetime | None = None,
    max_query_length: int | None = None,
) -> list[Task]:
    """Filter and sort tasks.

    Dimensions combine with AND; values inside one dimension combine with OR.
    Due-date buckets are evaluated against now (defaults to the call time).
    """
    if max_query_length is None:
        from src.config import settings
        max_query_length = settings.MAX_SEARCH_QUERY_LENGTH

    today = (now or datetime.now()).date()
    query = sanitize_search_query(task_filter.search_query, max_query_length).casefold()
    tasks = list(tasks)
    matched = [t for t in tasks if _matches(task_filter, t, today, query)]
    logger.debug("Task filter matched %d of %d tasks", len(matched), len(tasks))
    return sort_tasks(matched, task_filter.sort_by, task_filter.sort_order)


def count_by_status(tasks: Iterable[Task]) -> dict[TaskStatus, int]:
    """Per-status totals, every status present (zero when absent)."""
    counts = {status: 0 for status in TaskStatus}
    for task in tasks:
        counts[task.status] += 1
    return counts
