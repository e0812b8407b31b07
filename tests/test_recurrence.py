"""Tests for src.core.recurrence — rule parsing and occurrence expansion."""

from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from dateutil.rrule import rrulestr

from src.core.errors import InvalidRecurrenceRule, MalformedWindow
from src.core.recurrence import expand, occurrence_starts, parse_rule
from src.data.models import CalendarEvent


def _root(rule="Weekly", start=datetime(2024, 1, 1, 9, 0), minutes=30, **overrides):
    fields = dict(
        id=1,
        calendar_source_id=1,
        title="Weekly Standup",
        start_date_time=start,
        end_date_time=start + timedelta(minutes=minutes),
        recurrence_rule=rule,
    )
    fields.update(overrides)
    return CalendarEvent(**fields)


def _detached(root, original, start=None, end=None, cancelled=False, event_id=50):
    start = start or original
    return replace(
        root,
        id=event_id,
        recurrence_rule=None,
        parent_event_id=root.id,
        is_recurring_instance=True,
        original_start_date_time=original,
        start_date_time=start,
        end_date_time=end or start + root.duration,
        is_cancelled=cancelled,
    )


def _starts(events):
    return [e.start_date_time for e in events]


# ---------------------------------------------------------------------------
# parse_rule
# ---------------------------------------------------------------------------


class TestParseRule:
    @pytest.mark.parametrize("label", ["Daily", "weekly", "MONTHLY", " Yearly "])
    def test_dialog_labels(self, label):
        rule = parse_rule(label)
        assert rule.frequency == label.strip().upper()
        assert rule.interval == 1
        assert rule.is_simple

    def test_rrule_with_interval(self):
        rule = parse_rule("FREQ=WEEKLY;INTERVAL=2")
        assert rule.frequency == "WEEKLY"
        assert rule.interval == 2
        assert rule.is_simple

    def test_rrule_prefix_and_case(self):
        rule = parse_rule("RRULE:freq=daily;interval=3")
        assert rule.frequency == "DAILY"
        assert rule.interval == 3

    def test_rich_rule_is_not_simple(self):
        rule = parse_rule("FREQ=WEEKLY;BYDAY=MO,WE")
        assert not rule.is_simple

    @pytest.mark.parametrize("text", [
        None, "", "   ", "Fortnightly", "FREQ=HOURLY", "FREQ=DAILY;INTERVAL=0",
        "FREQ=DAILY;INTERVAL=two", "FREQ", "INTERVAL=2",
    ])
    def test_invalid_rules(self, text):
        with pytest.raises(InvalidRecurrenceRule):
            parse_rule(text)


# ---------------------------------------------------------------------------
# expand — stepping
# ---------------------------------------------------------------------------


class TestExpand:
    def test_weekly_standup_scenario(self):
        root = _root()
        result = expand(root, datetime(2024, 1, 8), datetime(2024, 1, 15))
        assert _starts(result) == [datetime(2024, 1, 8, 9, 0)]
        instance = result[0]
        assert instance.end_date_time == datetime(2024, 1, 8, 9, 30)
        assert instance.parent_event_id == root.id
        assert instance.original_start_date_time == datetime(2024, 1, 8, 9, 0)
        assert instance.is_recurring_instance is True
        assert instance.id is None
        assert instance.recurrence_rule is None

    def test_first_occurrence_is_the_root_start(self):
        result = expand(_root(), datetime(2024, 1, 1), datetime(2024, 1, 1, 23, 59))
        assert _starts(result) == [datetime(2024, 1, 1, 9, 0)]

    def test_nothing_before_anchor(self):
        assert expand(_root(), datetime(2023, 12, 1), datetime(2023, 12, 31)) == []

    def test_anchor_stable_across_split_windows(self):
        root = _root("FREQ=DAILY;INTERVAL=3")
        w1, w2, w3 = datetime(2024, 1, 5), datetime(2024, 2, 10, 12), datetime(2024, 3, 20)
        whole = set(_starts(expand(root, w1, w3)))
        split = set(_starts(expand(root, w1, w2))) | set(_starts(expand(root, w2, w3)))
        assert whole == split
        assert all((s - root.start_date_time).days % 3 == 0 for s in whole)

    def test_occurrence_overlapping_window_start_is_included(self):
        root = _root("Daily", start=datetime(2024, 1, 1, 23, 0), minutes=120)
        result = expand(root, datetime(2024, 1, 3, 0, 0), datetime(2024, 1, 3, 0, 30))
        assert _starts(result) == [datetime(2024, 1, 2, 23, 0)]

    def test_interval(self):
        root = _root("FREQ=WEEKLY;INTERVAL=2")
        result = expand(root, datetime(2024, 1, 1), datetime(2024, 1, 31))
        assert [d.day for d in _starts(result)] == [1, 15, 29]

    def test_monthly_clamps_to_month_end_without_drift(self):
        root = _root("Monthly", start=datetime(2024, 1, 31, 10, 0))
        result = expand(root, datetime(2024, 2, 1), datetime(2024, 4, 30, 23, 59))
        assert _starts(result) == [
            datetime(2024, 2, 29, 10, 0),
            datetime(2024, 3, 31, 10, 0),
            datetime(2024, 4, 30, 10, 0),
        ]

    def test_yearly(self):
        root = _root("Yearly", start=datetime(2020, 6, 15, 8, 0))
        result = expand(root, datetime(2024, 1, 1), datetime(2025, 12, 31))
        assert _starts(result) == [datetime(2024, 6, 15, 8, 0), datetime(2025, 6, 15, 8, 0)]

    def test_recurrence_end_date_stops_series(self):
        root = _root("Daily", recurrence_end_date=datetime(2024, 1, 3, 23, 59, 59))
        result = expand(root, datetime(2024, 1, 1), datetime(2024, 1, 31))
        assert [d.day for d in _starts(result)] == [1, 2, 3]

    def test_old_series_jumps_to_window(self):
        root = _root("Daily", start=datetime(1950, 1, 1, 9, 0))
        result = expand(root, datetime(2024, 1, 1), datetime(2024, 1, 2, 23, 59))
        assert _starts(result) == [datetime(2024, 1, 1, 9, 0), datetime(2024, 1, 2, 9, 0)]

    def test_byday_rule_uses_rrule_engine(self):
        root = _root("FREQ=WEEKLY;BYDAY=MO,WE")  # 2024-01-01 is a Monday
        result = expand(root, datetime(2024, 1, 1), datetime(2024, 1, 7, 23, 59))
        assert [d.day for d in _starts(result)] == [1, 3]

    def test_count_rule(self):
        root = _root("FREQ=DAILY;COUNT=3")
        result = expand(root, datetime(2024, 1, 1), datetime(2024, 1, 31))
        assert len(result) == 3

    def test_restartable(self):
        root = _root()
        window = (datetime(2024, 1, 1), datetime(2024, 3, 1))
        assert expand(root, *window) == expand(root, *window)

    def test_malformed_window(self):
        with pytest.raises(MalformedWindow):
            expand(_root(), datetime(2024, 2, 1), datetime(2024, 1, 1))

    def test_non_root_is_rejected(self):
        with pytest.raises(InvalidRecurrenceRule):
            expand(_root(rule=None), datetime(2024, 1, 1), datetime(2024, 2, 1))

    def test_unparseable_rule(self):
        with pytest.raises(InvalidRecurrenceRule):
            expand(_root(rule="Every other Tuesday"), datetime(2024, 1, 1), datetime(2024, 2, 1))


# ---------------------------------------------------------------------------
# expand — overrides
# ---------------------------------------------------------------------------


class TestOverrides:
    def test_detached_instance_replaces_virtual_once(self):
        root = _root()
        moved = _detached(root, datetime(2024, 1, 8, 9, 0), start=datetime(2024, 1, 8, 14, 0))
        result = expand(root, datetime(2024, 1, 1), datetime(2024, 1, 20), [moved])
        assert _starts(result) == [
            datetime(2024, 1, 1, 9, 0),
            datetime(2024, 1, 8, 14, 0),
            datetime(2024, 1, 15, 9, 0),
        ]
        assert result[1] is moved

    def test_cancelled_instance_is_omitted(self):
        root = _root()
        tombstone = _detached(root, datetime(2024, 1, 8, 9, 0), cancelled=True)
        result = expand(root, datetime(2024, 1, 1), datetime(2024, 1, 20), [tombstone])
        assert _starts(result) == [datetime(2024, 1, 1, 9, 0), datetime(2024, 1, 15, 9, 0)]

    def test_override_moved_out_of_window_is_not_emitted(self):
        root = _root()
        moved = _detached(root, datetime(2024, 1, 8, 9, 0), start=datetime(2024, 2, 1, 9, 0))
        result = expand(root, datetime(2024, 1, 8), datetime(2024, 1, 8, 23, 59), [moved])
        assert result == []

    def test_override_moved_into_window_is_emitted(self):
        root = _root()
        moved = _detached(root, datetime(2024, 1, 15, 9, 0), start=datetime(2024, 1, 10, 9, 0))
        result = expand(root, datetime(2024, 1, 10), datetime(2024, 1, 10, 23, 59), [moved])
        assert result == [moved]

    def test_overrides_of_other_series_ignored(self):
        root = _root()
        foreign = replace(
            _detached(root, datetime(2024, 1, 8, 9, 0), cancelled=True), parent_event_id=99
        )
        result = expand(root, datetime(2024, 1, 8), datetime(2024, 1, 8, 23, 59), [foreign])
        assert _starts(result) == [datetime(2024, 1, 8, 9, 0)]

    def test_override_for_non_occurrence_is_ignored(self):
        root = _root()
        stray = _detached(root, datetime(2024, 1, 9, 9, 0))
        result = expand(root, datetime(2024, 1, 9), datetime(2024, 1, 9, 23, 59), [stray])
        assert result == []


def test_occurrence_starts_exact_match():
    root = _root()
    assert occurrence_starts(root, datetime(2024, 1, 8, 9), datetime(2024, 1, 8, 9)) == [
        datetime(2024, 1, 8, 9, 0)
    ]
    assert occurrence_starts(root, datetime(2024, 1, 9, 9), datetime(2024, 1, 9, 9)) == []


@pytest.mark.parametrize("rule, start", [
    ("FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE", datetime(1990, 1, 3, 9, 0)),   # anchor on a Wednesday
    ("FREQ=DAILY;INTERVAL=3;BYHOUR=7,19", datetime(1990, 1, 1, 7, 0)),
    ("FREQ=MONTHLY;BYDAY=1FR", datetime(1990, 1, 5, 17, 0)),
    ("FREQ=MONTHLY;BYHOUR=10", datetime(1990, 1, 31, 10, 0)),            # month-end anchor
    ("FREQ=YEARLY;BYMONTH=3,9", datetime(1990, 3, 15, 8, 0)),
    ("FREQ=WEEKLY;BYDAY=TU;UNTIL=20300101T000000", datetime(1990, 1, 2, 9, 0)),
])
def test_rich_rules_on_old_series_match_full_expansion(rule, start):
    root = _root(rule, start=start)
    lo, hi = datetime(2024, 1, 1), datetime(2024, 12, 31, 23, 59)
    expected = rrulestr(rule, dtstart=start).between(lo, hi, inc=True)
    assert expected
    assert occurrence_starts(root, lo, hi) == expected


def test_count_rule_still_counts_from_first_occurrence():
    root = _root("FREQ=DAILY;COUNT=5;BYHOUR=9", start=datetime(2024, 1, 1, 9, 0))
    assert occurrence_starts(root, datetime(2024, 1, 4), datetime(2024, 1, 31)) == [
        datetime(2024, 1, 4, 9, 0), datetime(2024, 1, 5, 9, 0),
    ]
