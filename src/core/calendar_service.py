"""
Roam — Calendar Service.

The calendar operations the presentation layer calls: day and range queries,
event create/edit/delete (including single occurrences of a series), and
calendar visibility. UI-agnostic: confirmation is asked through a callback
and every failure is raised to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from typing import Callable

from src.core.errors import NotFoundError, ValidationError
from src.core.recurrence import occurrence_starts, parse_rule
from src.core.temporal_query import EventCache, EventQueryEngine
from src.core.validation import validate_event
from src.core.visibility import SourceRegistry
from src.data.models import CalendarEvent, CalendarSource, stamp_new, stamp_updated
from src.ports.storage_port import CalendarEventStore

logger = logging.getLogger(__name__)

Confirm = Callable[[CalendarEvent], bool]


def default_event_times(
    target_date: date | None = None, now: datetime | None = None
) -> tuple[datetime, datetime]:
    """Initial times for a new event: 09:00-10:00 on a date, else the next hour."""
    if target_date is not None:
        start = datetime.combine(target_date, time(9, 0))
        return start, start + timedelta(hours=1)
    now = now or datetime.now()
    return now + timedelta(hours=1), now + timedelta(hours=2)


class CalendarService:
    """Event queries and mutations over one event store and source registry."""

    def __init__(self, events: CalendarEventStore, registry: SourceRegistry) -> None:
        self._events = events
        self._registry = registry
        self.cache = EventCache(events)
        self._engine = EventQueryEngine(self.cache, registry)

    # -- queries ---------------------------------------------------------

    def get_events_for_date(self, target_date: date) -> list[CalendarEvent]:
        return self._engine.events_for_day(target_date)

    def get_events_in_range(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        return self._engine.events_overlapping(start, end)

    def get_all_events(self) -> list[CalendarEvent]:
        """Stored events on visible sources (recurrence roots unexpanded)."""
        return self._engine.all_events()

    def get_events_for_operation(self, operation_id: int) -> list[CalendarEvent]:
        """Stored events linked to an operation, on any source."""
        return self._events.find_by_operation_id(operation_id)

    def get_calendar_sources(self) -> list[CalendarSource]:
        return self._registry.list_sources()

    def toggle_calendar_visibility(self, source_id: int, visible: bool) -> CalendarSource:
        return self._registry.set_visible(source_id, visible)

    # -- mutations -------------------------------------------------------

    def _validate(self, event: CalendarEvent) -> CalendarEvent:
        event = validate_event(event)
        if self._registry.get(event.calendar_source_id) is None:
            raise ValidationError(f"Calendar source {event.calendar_source_id} not found")
        if event.recurrence_rule:
            parse_rule(event.recurrence_rule)
        return event

    def _require(self, event_id: int) -> CalendarEvent:
        stored = self._events.find_by_id(event_id)
        if stored is None:
            raise NotFoundError(f"Calendar event {event_id} not found")
        return stored

    def _require_root(self, event: CalendarEvent) -> CalendarEvent:
        root = self._require(event.parent_event_id)
        if not root.is_recurrence_root:
            raise ValidationError(f"Event #{root.id} is not a recurring series")
        if not occurrence_starts(root, event.original_start_date_time,
                                 event.original_start_date_time):
            raise ValidationError(
                f"{event.original_start_date_time} is not an occurrence of series #{root.id}"
            )
        return root

    def _validate_new(self, event: CalendarEvent) -> CalendarEvent:
        if event.id is not None:
            raise ValidationError("A new event must not carry an id")
        if event.is_recurring_instance:
            raise ValidationError("Occurrences are created by editing a series, not directly")
        return self._validate(event)

    def create_event(self, event: CalendarEvent, now: datetime | None = None) -> CalendarEvent:
        """Persist a new event (or recurrence root)."""
        saved = self._events.save(stamp_new(self._validate_new(event), now))
        self.cache.invalidate()
        return saved

    def create_events(
        self, events: list[CalendarEvent], now: datetime | None = None
    ) -> list[CalendarEvent]:
        """Persist several new events; nothing is saved unless all of them validate."""
        valid = [self._validate_new(event) for event in events]
        saved = [self._events.save(stamp_new(event, now)) for event in valid]
        self.cache.invalidate()
        return saved

    def edit_event(self, event: CalendarEvent, now: datetime | None = None) -> CalendarEvent:
        """Save an edited snapshot.

        An edited virtual occurrence is detached: stored as its own row so the
        series stops producing a virtual copy for that date.
        """
        event = self._validate(event)
        if event.is_virtual:
            self._require_root(event)
            existing = self._events.find_detached(
                event.parent_event_id, event.original_start_date_time
            )
            if existing is not None:
                event = replace(event, id=existing.id, created_at=existing.created_at)
                saved = self._events.save(stamp_updated(event, now))
            else:
                saved = self._events.save(stamp_new(event, now))
                logger.info(
                    "Detached occurrence %s of series #%d as event #%d",
                    event.original_start_date_time, event.parent_event_id, saved.id,
                )
        else:
            stored = self._require(event.id)
            event = replace(event, created_at=stored.created_at)
            saved = self._events.save(stamp_updated(event, now))
        self.cache.invalidate()
        return saved

    def delete_event(
        self, event: CalendarEvent, confirm: Confirm, now: datetime | None = None
    ) -> bool:
        """Delete an event after confirm(event) returns True.

        Occurrences (virtual or detached) are cancelled with a stored tombstone
        so they stay gone on later expansions; deleting a recurrence root
        removes the whole series.
        """
        if not confirm(event):
            logger.info("Deletion of '%s' not confirmed", event.title)
            return False

        if event.is_recurring_instance:
            self._cancel_occurrence(event, now)
        elif event.id is None:
            raise NotFoundError(f"Event '{event.title}' was never saved")
        else:
            stored = self._require(event.id)
            if stored.is_recurrence_root:
                self._events.delete_series(stored.id)
            else:
                self._events.delete(stored.id)
        self.cache.invalidate()
        return True

    def delete_series(self, root_id: int, confirm: Confirm) -> bool:
        """Delete a series from any of its events' root id."""
        root = self._require(root_id)
        if not root.is_recurrence_root:
            raise ValidationError(f"Event #{root_id} is not a recurring series")
        return self.delete_event(root, confirm)

    def _cancel_occurrence(self, event: CalendarEvent, now: datetime | None) -> None:
        if event.id is not None:
            stored = self._require(event.id)
            tombstone = replace(stored, is_cancelled=True)
            self._events.save(stamp_updated(tombstone, now))
        else:
            self._require_root(event)
            existing = self._events.find_detached(
                event.parent_event_id, event.original_start_date_time
            )
            if existing is not None:
                self._events.save(stamp_updated(replace(existing, is_cancelled=True), now))
            else:
                self._events.save(stamp_new(replace(event, is_cancelled=True), now))
        logger.info(
            "Cancelled occurrence %s of series #%d",
            event.original_start_date_time, event.parent_event_id,
        )
