"""iCalendar (.ics) export and import for calendar events.

Recurrence roots are written with their RRULE; cancelled occurrences become
EXDATEs on the root and detached occurrences are written as overrides with a
RECURRENCE-ID. Import creates plain events and series roots, turning EXDATEs
back into cancelled occurrences (overrides in the file are skipped).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Iterable

from icalendar import Calendar as iCalendar
from icalendar import Event as iEvent

from src.core.calendar_service import CalendarService
from src.core.recurrence import make_virtual_instance, occurrence_starts, parse_rule
from src.data.models import CalendarEvent

logger = logging.getLogger(__name__)

_PRODID = "-//Roam//Roam Calendar//EN"


def _uid(event_id: int | None) -> str:
    return f"{event_id}@roam.app"


def _rrule_dict(event: CalendarEvent) -> dict:
    rule = parse_rule(event.recurrence_rule)
    parts: dict = {}
    for part in rule.raw.split(";"):
        key, _, value = part.partition("=")
        if key in ("INTERVAL", "COUNT"):
            parts[key] = int(value)
        elif key == "UNTIL":
            stamp = value.rstrip("Z")
            parts[key] = datetime.strptime(
                stamp, "%Y%m%dT%H%M%S" if "T" in stamp else "%Y%m%d"
            )
        else:
            parts[key] = value.split(",")
    if event.recurrence_end_date is not None and "UNTIL" not in parts:
        parts["UNTIL"] = event.recurrence_end_date
    return parts


def _vevent(event: CalendarEvent, stamp: datetime) -> iEvent:
    vevent = iEvent()
    vevent.add("uid", _uid(event.parent_event_id if event.is_recurring_instance else event.id))
    vevent.add("dtstamp", stamp)
    vevent.add("summary", event.title)
    if event.is_all_day:
        vevent.add("dtstart", event.start_date_time.date())
        vevent.add("dtend", event.end_date_time.date() + timedelta(days=1))
    else:
        vevent.add("dtstart", event.start_date_time)
        vevent.add("dtend", event.end_date_time)
    if event.description:
        vevent.add("description", event.description)
    if event.location:
        vevent.add("location", event.location)
    return vevent


def events_to_ics(events: Iterable[CalendarEvent], now: datetime | None = None) -> bytes:
    """Serialize stored events (roots, plain events and their overrides)."""
    stamp = now or datetime.now()
    events = list(events)
    overrides: dict[int, list[CalendarEvent]] = defaultdict(list)
    for event in events:
        if event.is_recurring_instance and event.id is not None:
            overrides[event.parent_event_id].append(event)

    cal = iCalendar()
    cal.add("prodid", _PRODID)
    cal.add("version", "2.0")
    written = 0
    for event in events:
        if event.is_recurring_instance or event.is_cancelled:
            continue
        vevent = _vevent(event, stamp)
        if event.is_recurrence_root:
            vevent.add("rrule", _rrule_dict(event))
            cancelled = [
                o.original_start_date_time for o in overrides[event.id] if o.is_cancelled
            ]
            if cancelled:
                vevent.add("exdate", cancelled)
        cal.add_component(vevent)
        written += 1
        for override in overrides.get(event.id, []):
            if override.is_cancelled:
                continue
            detached = _vevent(override, stamp)
            detached.add("recurrence-id", override.original_start_date_time)
            cal.add_component(detached)
            written += 1

    logger.info("Exported %d events to iCalendar", written)
    return cal.to_ical()


def _naive(value: datetime | date, end_of_range: bool = False) -> datetime:
    if isinstance(value, datetime):
        return value.astimezone().replace(tzinfo=None) if value.tzinfo else value
    return datetime.combine(value, time.max if end_of_range else time.min)


def _exdates(component) -> list[datetime]:
    value = component.get("exdate")
    if value is None:
        return []
    groups = value if isinstance(value, list) else [value]
    return [_naive(item.dt) for group in groups for item in group.dts]


def _parse_vevents(
    data: bytes | str, calendar_source_id: int
) -> list[tuple[CalendarEvent, list[datetime]]]:
    """Unsaved events plus the EXDATE starts of each series."""
    cal = iCalendar.from_ical(data)
    parsed: list[tuple[CalendarEvent, list[datetime]]] = []
    for component in cal.walk("VEVENT"):
        if component.get("recurrence-id") is not None:
            logger.warning("Skipping override of %s on import", component.get("uid"))
            continue
        dtstart = component.get("dtstart")
        if dtstart is None:
            logger.warning("Skipping VEVENT without DTSTART: %s", component.get("uid"))
            continue
        raw_start = dtstart.dt
        all_day = not isinstance(raw_start, datetime)
        start = _naive(raw_start)
        dtend = component.get("dtend")
        if dtend is None:
            end = _naive(raw_start, end_of_range=True) if all_day else start
        elif all_day:
            end = _naive(dtend.dt - timedelta(days=1), end_of_range=True)
        else:
            end = _naive(dtend.dt)

        rule, until = None, None
        rrule = component.get("rrule")
        if rrule is not None:
            rrule = dict(rrule)
            until_values = rrule.pop("UNTIL", None)
            if until_values:
                until = _naive(until_values[0], end_of_range=True)
            rule = ";".join(
                f"{key}={','.join(str(v) for v in values)}" for key, values in rrule.items()
            )

        draft = CalendarEvent(
            id=None,
            calendar_source_id=calendar_source_id,
            title=str(component.get("summary", "(no title)")),
            description=str(component["description"]) if "description" in component else None,
            location=str(component["location"]) if "location" in component else None,
            start_date_time=start,
            end_date_time=end,
            is_all_day=all_day,
            recurrence_rule=rule,
            recurrence_end_date=until,
        )
        parsed.append((draft, _exdates(component) if rule else []))
    return parsed


def events_from_ics(data: bytes | str, calendar_source_id: int) -> list[CalendarEvent]:
    """Parse VEVENTs into unsaved events on the given calendar source."""
    return [draft for draft, _ in _parse_vevents(data, calendar_source_id)]


def import_ics(
    calendar: CalendarService,
    data: bytes | str,
    calendar_source_id: int,
    now: datetime | None = None,
) -> list[CalendarEvent]:
    """Create every event found in an .ics payload; returns the saved events.

    All events are validated before any is stored. Each EXDATE of a series is
    stored as a cancelled occurrence.
    """
    parsed = _parse_vevents(data, calendar_source_id)
    saved = calendar.create_events([draft for draft, _ in parsed], now)

    cancelled = 0
    for root, (_, excluded) in zip(saved, parsed):
        for start in excluded:
            if not occurrence_starts(root, start, start):
                logger.warning("Ignoring EXDATE %s: not an occurrence of '%s'", start, root.title)
                continue
            calendar.delete_event(make_virtual_instance(root, start), lambda e: True, now)
            cancelled += 1
    logger.info(
        "Imported %d events from iCalendar (%d occurrences excluded)", len(saved), cancelled
    )
    return saved
