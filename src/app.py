"""
Roam — Application wiring.

Builds the stores and services over one SQLite database and runs the
start-up bootstrap: default regions, calendar sources, and the task → event
sync the calendar relies on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from src.core.calendar_service import CalendarService
from src.core.task_service import TaskService
from src.core.task_sync import TaskEventSynchronizer
from src.core.visibility import SourceRegistry
from src.data.db import CalendarEventDB, CalendarSourceDB, RegionDB, TaskDB
from src.ports.search_port import SearchPort

logger = logging.getLogger(__name__)


@dataclass
class App:
    """Everything the presentation layer talks to."""

    regions: RegionDB
    registry: SourceRegistry
    calendar: CalendarService
    tasks: TaskService


def build_app(db_path: str | None = None, search: SearchPort | None = None) -> App:
    """Open the database and bootstrap it. Safe to call on every start."""
    regions = RegionDB(db_path)
    regions.create_default_regions()

    registry = SourceRegistry(CalendarSourceDB(db_path))
    registry.seed_defaults(regions.find_all())

    events = CalendarEventDB(db_path)
    calendar = CalendarService(events, registry)
    synchronizer = TaskEventSynchronizer(events, registry, on_change=calendar.cache.invalidate)
    task_db = TaskDB(db_path)
    synchronizer.sync_all(task_db.find_all())

    logger.info(
        "Calendar initialized: %d sources, %d stored events",
        len(registry.list_sources()), len(events.find_all()),
    )
    return App(
        regions=regions,
        registry=registry,
        calendar=calendar,
        tasks=TaskService(task_db, synchronizer, search),
    )


def format_agenda(app: App, target_date: date) -> str:
    """Plain-text agenda for one day, one line per event."""
    lines = [f"Agenda for {target_date.isoformat()}"]
    sources = {s.id: s.name for s in app.registry.list_sources()}
    for event in app.calendar.get_events_for_date(target_date):
        when = "all day" if event.is_all_day else (
            f"{event.start_date_time:%H:%M}-{event.end_date_time:%H:%M}"
        )
        repeat = " (repeats)" if event.is_recurring_instance else ""
        lines.append(
            f"- {when} {event.title} [{sources.get(event.calendar_source_id, '?')}]{repeat}"
        )
    if len(lines) == 1:
        lines.append("No events.")
    return "\n".join(lines)


def main() -> None:
    from src.config import settings

    logging.getLogger().setLevel(settings.LOG_LEVEL)
    app = build_app()
    print(format_agenda(app, date.today()))
