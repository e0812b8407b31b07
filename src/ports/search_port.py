"""Search port — abstract interface for the full-text search collaborator.

The index itself lives outside the scheduling core; tasks are pushed to it
after every successful write.
"""

from __future__ import annotations

from typing import Protocol

from src.data.models import Task


class SearchPort(Protocol):
    """Abstract search interface used by core modules."""

    def index_task(self, task: Task) -> None: ...

    def remove_task(self, task_id: int) -> None: ...
