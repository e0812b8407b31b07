"""
Roam — Recurrence Expander.

Turns a recurrence root into the concrete occurrences that touch a query
window. Occurrence k of a series always starts at anchor + k * period, where
the anchor is the root's own start, so the dates produced never depend on the
window that asked for them.

Rules are either one of the labels offered by the event dialog ("Daily",
"Weekly", "Monthly", "Yearly") or an RFC 5545 RRULE body such as
"FREQ=WEEKLY;INTERVAL=2". Plain FREQ/INTERVAL rules are stepped arithmetically
(month ends clamp, e.g. Jan 31 -> Feb 29), jumping straight to the window so the
work done is bounded by the window, not by the age of the series. Anything
richer (BYDAY, COUNT, UNTIL, ...) is delegated to dateutil's rrule engine,
restarted one period ahead of the window unless COUNT pins it to the start.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Iterable, Iterator

from dateutil.relativedelta import relativedelta
from dateutil.rrule import rrulestr

from src.core.errors import InvalidRecurrenceRule, MalformedWindow
from src.data.models import CalendarEvent

logger = logging.getLogger(__name__)

_FREQUENCIES = ("DAILY", "WEEKLY", "MONTHLY", "YEARLY")
_SIMPLE_KEYS = {"FREQ", "INTERVAL"}


@dataclass(frozen=True)
class RecurrenceRule:
    """A parsed recurrence rule."""

    frequency: str      # one of _FREQUENCIES
    interval: int
    raw: str            # RRULE body, without the "RRULE:" prefix
    is_simple: bool     # only FREQ and INTERVAL

    def step(self, anchor: datetime, k: int) -> datetime:
        """Start of occurrence k, computed from the anchor (never cumulatively)."""
        n = k * self.interval
        if self.frequency == "DAILY":
            return anchor + timedelta(days=n)
        if self.frequency == "WEEKLY":
            return anchor + timedelta(weeks=n)
        if self.frequency == "MONTHLY":
            return anchor + relativedelta(months=n)
        return anchor + relativedelta(years=n)

    def first_index_near(self, anchor: datetime, moment: datetime) -> int:
        """A step index whose occurrence starts at or before moment."""
        if moment <= anchor:
            return 0
        if self.frequency in ("DAILY", "WEEKLY"):
            period = self.step(anchor, 1) - anchor
            return (moment - anchor) // period
        months = (moment.year - anchor.year) * 12 + (moment.month - anchor.month)
        per_step = self.interval * (1 if self.frequency == "MONTHLY" else 12)
        # one step back absorbs month-end clamping
        return max(0, months // per_step - 1)


def parse_rule(text: str | None) -> RecurrenceRule:
    """Parse a dialog label or RRULE body; raise InvalidRecurrenceRule on failure."""
    if text is None or not text.strip():
        raise InvalidRecurrenceRule("Recurrence rule is empty")

    stripped = text.strip()
    if stripped.upper() in _FREQUENCIES:
        label = stripped.upper()
        return RecurrenceRule(label, 1, f"FREQ={label}", True)

    body = stripped[6:] if stripped.upper().startswith("RRULE:") else stripped
    parts: dict[str, str] = {}
    for part in body.split(";"):
        key, sep, value = part.partition("=")
        if not sep or not key.strip() or not value.strip():
            raise InvalidRecurrenceRule(f"Malformed rule part {part!r} in {text!r}")
        parts[key.strip().upper()] = value.strip().upper()

    frequency = parts.get("FREQ")
    if frequency not in _FREQUENCIES:
        raise InvalidRecurrenceRule(f"Unsupported frequency {frequency!r} in {text!r}")
    try:
        interval = int(parts.get("INTERVAL", "1"))
    except ValueError:
        raise InvalidRecurrenceRule(f"INTERVAL must be an integer in {text!r}") from None
    if interval < 1:
        raise InvalidRecurrenceRule(f"INTERVAL must be positive in {text!r}")

    normalized = ";".join(f"{k}={v}" for k, v in parts.items())
    is_simple = set(parts) <= _SIMPLE_KEYS
    if not is_simple:
        try:
            rrulestr(normalized, dtstart=datetime(2000, 1, 1))
        except (ValueError, TypeError, KeyError) as exc:
            raise InvalidRecurrenceRule(f"Cannot parse {text!r}: {exc}") from exc
    return RecurrenceRule(frequency, interval, normalized, is_simple)


def _simple_starts(
    rule: RecurrenceRule, anchor: datetime, lo: datetime, hi: datetime
) -> Iterator[datetime]:
    k = rule.first_index_near(anchor, lo)
    while True:
        start = rule.step(anchor, k)
        if start > hi:
            return
        if start >= lo:
            yield start
        k += 1


def _rrule_starts(
    rule: RecurrenceRule, anchor: datetime, lo: datetime, hi: datetime
) -> list[datetime]:
    keys = {part.partition("=")[0] for part in rule.raw.split(";")}
    dtstart = anchor
    # COUNT is measured from the anchor, and a clamped month-end anchor would
    # change the implied BYMONTHDAY; both must expand from the real start.
    if "COUNT" not in keys and (rule.frequency in ("DAILY", "WEEKLY") or anchor.day <= 28):
        # one whole period before lo: anything skipped in that period is < lo
        k = rule.first_index_near(anchor, lo)
        dtstart = rule.step(anchor, max(0, k - 1))
    return rrulestr(rule.raw, dtstart=dtstart).between(lo, hi, inc=True)


def occurrence_starts(
    root: CalendarEvent,
    lo: datetime,
    hi: datetime,
    rule: RecurrenceRule | None = None,
) -> list[datetime]:
    """Anchored occurrence starts of a series falling within [lo, hi], inclusive."""
    rule = rule or parse_rule(root.recurrence_rule)
    if root.recurrence_end_date is not None:
        hi = min(hi, root.recurrence_end_date)
    lo = max(lo, root.start_date_time)
    if lo > hi:
        return []
    if rule.is_simple:
        return list(_simple_starts(rule, root.start_date_time, lo, hi))
    return _rrule_starts(rule, root.start_date_time, lo, hi)


def make_virtual_instance(root: CalendarEvent, start: datetime) -> CalendarEvent:
    """Build the computed occurrence of root starting at start."""
    return replace(
        root,
        id=None,
        start_date_time=start,
        end_date_time=start + root.duration,
        recurrence_rule=None,
        recurrence_end_date=None,
        parent_event_id=root.id,
        is_recurring_instance=True,
        original_start_date_time=start,
        is_cancelled=False,
    )


def _touches(event: CalendarEvent, window_start: datetime, window_end: datetime) -> bool:
    return event.start_date_time <= window_end and window_start <= event.end_date_time


def expand(
    root: CalendarEvent,
    window_start: datetime,
    window_end: datetime,
    overrides: Iterable[CalendarEvent] = (),
) -> list[CalendarEvent]:
    """Occurrences of root overlapping [window_start, window_end].

    overrides are the persisted (detached) instances of the series. An override
    replaces the virtual occurrence with the same original start; a cancelled
    override removes it. Results are in occurrence order.
    """
    if window_start > window_end:
        raise MalformedWindow(f"Window starts at {window_start} after it ends at {window_end}")
    if not root.is_recurrence_root:
        raise InvalidRecurrenceRule(f"Event #{root.id} is not a recurrence root")

    rule = parse_rule(root.recurrence_rule)
    by_original = {
        o.original_start_date_time: o
        for o in overrides
        if o.is_recurring_instance and o.parent_event_id == root.id
    }

    results: list[CalendarEvent] = []
    consumed: set[datetime] = set()
    for start in occurrence_starts(root, window_start - root.duration, window_end, rule):
        override = by_original.get(start)
        if override is None:
            results.append(make_virtual_instance(root, start))
            continue
        consumed.add(start)
        if not override.is_cancelled and _touches(override, window_start, window_end):
            results.append(override)

    # Overrides moved into the window from an occurrence outside it
    for original, override in by_original.items():
        if original in consumed or override.is_cancelled:
            continue
        if not _touches(override, window_start, window_end):
            continue
        if occurrence_starts(root, original, original, rule):
            results.append(override)
        else:
            logger.warning(
                "Ignoring override #%s of series #%s: %s is not an occurrence",
                override.id, root.id, original,
            )

    results.sort(key=lambda e: (e.start_date_time, e.original_start_date_time))
    logger.debug(
        "Expanded series #%s over %s..%s into %d occurrences",
        root.id, window_start, window_end, len(results),
    )
    return results
