"""
Roam — Temporal Query Engine.

Answers "which events touch this range / this day" over the visible calendar
sources, expanding recurrence roots on the fly.

Pure with respect to storage: events come from an EventCache, which is
reloaded lazily after every invalidate().
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, time

from src.core.errors import InvalidRecurrenceRule, MalformedWindow
from src.core.recurrence import expand
from src.core.visibility import SourceRegistry
from src.data.models import CalendarEvent
from src.ports.storage_port import CalendarEventStore

logger = logging.getLogger(__name__)


def overlaps(s1: datetime, e1: datetime, s2: datetime, e2: datetime) -> bool:
    """Inclusive overlap: intervals that merely touch count as overlapping."""
    return s1 <= e2 and s2 <= e1


def start_of_day(d: date) -> datetime:
    return datetime.combine(d, time.min)


def end_of_day(d: date) -> datetime:
    """Last representable instant of the date (23:59:59.999999)."""
    return datetime.combine(d, time.max)


def sort_key(event: CalendarEvent) -> tuple:
    """Start time, then event id (virtual occurrences use their root's id)."""
    event_id = event.id if event.id is not None else event.parent_event_id
    return (
        event.start_date_time,
        event_id if event_id is not None else 0,
        event.original_start_date_time or event.start_date_time,
    )


class EventCache:
    """Stored events held in memory between writes.

    Invalidation rule: every create/update/delete of an event made through
    CalendarService or TaskEventSynchronizer calls invalidate(); the next read
    reloads from the store.
    """

    def __init__(self, store: CalendarEventStore) -> None:
        self._store = store
        self._events: list[CalendarEvent] | None = None

    def events(self) -> list[CalendarEvent]:
        if self._events is None:
            self._events = self._store.find_all()
            logger.debug("Event cache loaded %d events", len(self._events))
        return self._events

    def invalidate(self) -> None:
        self._events = None

    @property
    def is_loaded(self) -> bool:
        return self._events is not None


class EventQueryEngine:
    """Range and day queries over the visible, expanded event set."""

    def __init__(self, cache: EventCache, registry: SourceRegistry) -> None:
        self._cache = cache
        self._registry = registry

    def _partition(self) -> tuple[list[CalendarEvent], list[CalendarEvent], dict[int, list]]:
        visible = self._registry.visible_ids()
        plain: list[CalendarEvent] = []
        roots: list[CalendarEvent] = []
        detached: dict[int, list[CalendarEvent]] = defaultdict(list)
        for event in self._cache.events():
            if event.is_recurring_instance:
                detached[event.parent_event_id].append(event)
            elif event.calendar_source_id not in visible:
                continue
            elif event.is_recurrence_root:
                roots.append(event)
            elif not event.is_cancelled:
                plain.append(event)
        return plain, roots, detached

    def events_overlapping(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        """Visible events and occurrences with start <= end and end >= start."""
        if start > end:
            raise MalformedWindow(f"Range starts at {start} after it ends at {end}")

        plain, roots, detached = self._partition()
        results = [
            e for e in plain
            if overlaps(e.start_date_time, e.end_date_time, start, end)
        ]
        for root in roots:
            if not self._series_may_touch(root, start, end, detached[root.id]):
                continue
            try:
                results.extend(expand(root, start, end, detached[root.id]))
            except InvalidRecurrenceRule as exc:
                # unreadable rule: fall back to the root's own stored interval
                logger.warning("Skipping series #%s: %s", root.id, exc)
                if overlaps(root.start_date_time, root.end_date_time, start, end):
                    results.append(root)
        results.sort(key=sort_key)
        return results

    @staticmethod
    def _series_may_touch(
        root: CalendarEvent, start: datetime, end: datetime, overrides: list[CalendarEvent]
    ) -> bool:
        if any(
            not o.is_cancelled and overlaps(o.start_date_time, o.end_date_time, start, end)
            for o in overrides
        ):
            return True
        if root.start_date_time > end:
            return False
        if root.recurrence_end_date is not None:
            return root.recurrence_end_date + root.duration >= start
        return True

    def events_for_day(self, d: date) -> list[CalendarEvent]:
        return self.events_overlapping(start_of_day(d), end_of_day(d))

    def all_events(self) -> list[CalendarEvent]:
        """Stored events on visible sources, without recurrence expansion.

        Edited occurrences of a visible series are listed; tombstones are not.
        """
        plain, roots, detached = self._partition()
        edited = [
            o for root in roots for o in detached.get(root.id, []) if not o.is_cancelled
        ]
        return sorted(plain + roots + edited, key=sort_key)
