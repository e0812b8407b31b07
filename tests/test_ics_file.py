"""Tests for src.adapters.ics_file — iCalendar export and import."""

from dataclasses import replace
from datetime import date, datetime, time

import pytest
from icalendar import Calendar

from src.adapters.ics_file import events_from_ics, events_to_ics, import_ics
from src.core.errors import ValidationError
from src.data.models import CalendarEvent

NOW = datetime(2024, 1, 1, 8, 0)

ALL_DAY_ICS = b"""BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Test//Test//EN
BEGIN:VEVENT
UID:trip@example.com
DTSTAMP:20240101T000000Z
SUMMARY:Conference
LOCATION:Berlin
DTSTART;VALUE=DATE:20240301
DTEND;VALUE=DATE:20240303
END:VEVENT
BEGIN:VEVENT
UID:gym@example.com
DTSTAMP:20240101T000000Z
SUMMARY:Gym
DTSTART:20240101T070000
DTEND:20240101T080000
RRULE:FREQ=WEEKLY;INTERVAL=2;UNTIL=20240331T000000
END:VEVENT
BEGIN:VEVENT
UID:gym@example.com
DTSTAMP:20240101T000000Z
SUMMARY:Gym (late)
RECURRENCE-ID:20240115T070000
DTSTART:20240115T180000
DTEND:20240115T190000
END:VEVENT
END:VCALENDAR
"""


def _vevents(payload):
    return list(Calendar.from_ical(payload).walk("VEVENT"))


def _series(calendar):
    root = calendar.create_event(CalendarEvent(
        id=None, calendar_source_id=1, title="Weekly Standup",
        start_date_time=datetime(2024, 1, 1, 9, 0),
        end_date_time=datetime(2024, 1, 1, 9, 30),
        recurrence_rule="Weekly", location="Room 1",
    ), NOW)
    week2, week3 = calendar.get_events_in_range(datetime(2024, 1, 8), datetime(2024, 1, 21))
    calendar.edit_event(replace(week2, start_date_time=datetime(2024, 1, 8, 10, 0),
                                end_date_time=datetime(2024, 1, 8, 10, 30)), NOW)
    calendar.delete_event(week3, lambda e: True, NOW)
    return root


class TestExport:
    def test_series_with_override_and_exdate(self, calendar, event_db):
        root = _series(calendar)
        payload = events_to_ics(event_db.find_all(), NOW)
        master, override = _vevents(payload)

        assert str(master["uid"]) == f"{root.id}@roam.app"
        assert master["rrule"]["FREQ"] == ["WEEKLY"]
        assert master.get("exdate").dts[0].dt == datetime(2024, 1, 15, 9, 0)
        assert str(master["location"]) == "Room 1"

        assert str(override["uid"]) == str(master["uid"])
        assert override["recurrence-id"].dt == datetime(2024, 1, 8, 9, 0)
        assert override["dtstart"].dt == datetime(2024, 1, 8, 10, 0)

    def test_recurrence_end_becomes_until(self, calendar, event_db):
        calendar.create_event(CalendarEvent(
            id=None, calendar_source_id=1, title="Course",
            start_date_time=datetime(2024, 1, 1, 18, 0),
            end_date_time=datetime(2024, 1, 1, 19, 0),
            recurrence_rule="FREQ=DAILY;INTERVAL=2",
            recurrence_end_date=datetime(2024, 1, 31, 23, 59, 59),
        ), NOW)
        [vevent] = _vevents(events_to_ics(event_db.find_all(), NOW))
        assert vevent["rrule"]["INTERVAL"] == [2]
        assert vevent["rrule"]["UNTIL"] == [datetime(2024, 1, 31, 23, 59, 59)]

    def test_all_day_event_uses_dates(self):
        event = CalendarEvent(
            id=1, calendar_source_id=1, title="Holiday", is_all_day=True,
            start_date_time=datetime(2024, 3, 1), end_date_time=datetime.combine(
                date(2024, 3, 1), time.max),
        )
        [vevent] = _vevents(events_to_ics([event], NOW))
        assert vevent["dtstart"].dt == date(2024, 3, 1)
        assert vevent["dtend"].dt == date(2024, 3, 2)

    def test_empty_export_is_valid_calendar(self):
        assert _vevents(events_to_ics([], NOW)) == []


class TestImport:
    def test_parse_drafts(self):
        conference, gym = events_from_ics(ALL_DAY_ICS, calendar_source_id=2)

        assert conference.title == "Conference"
        assert conference.is_all_day is True
        assert conference.location == "Berlin"
        assert conference.start_date_time == datetime(2024, 3, 1, 0, 0)
        assert conference.end_date_time == datetime.combine(date(2024, 3, 2), time.max)
        assert conference.calendar_source_id == 2

        assert gym.recurrence_rule == "FREQ=WEEKLY;INTERVAL=2"
        assert gym.recurrence_end_date.date() == date(2024, 3, 31)
        assert gym.is_all_day is False

    def test_import_creates_events(self, calendar):
        saved = import_ics(calendar, ALL_DAY_ICS, calendar_source_id=2)
        assert [e.title for e in saved] == ["Conference", "Gym"]
        assert all(e.id is not None for e in saved)

        gym_days = calendar.get_events_in_range(datetime(2024, 1, 1), datetime(2024, 1, 31))
        assert [e.start_date_time.day for e in gym_days] == [1, 15, 29]

    def test_exported_series_imports_back(self, calendar, event_db):
        _series(calendar)
        [draft] = events_from_ics(events_to_ics(event_db.find_all(), NOW), 1)
        assert draft.title == "Weekly Standup"
        assert draft.recurrence_rule == "FREQ=WEEKLY"
        assert draft.start_date_time == datetime(2024, 1, 1, 9, 0)


EXDATE_ICS = b"""BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Test//Test//EN
BEGIN:VEVENT
UID:standup@example.com
DTSTAMP:20240101T000000Z
SUMMARY:Standup
DTSTART:20240101T090000
DTEND:20240101T093000
RRULE:FREQ=WEEKLY
EXDATE:20240108T090000
EXDATE:20240110T090000
END:VEVENT
END:VCALENDAR
"""

PARTLY_INVALID_ICS = b"""BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Test//Test//EN
BEGIN:VEVENT
UID:good@example.com
DTSTAMP:20240101T000000Z
SUMMARY:Good
DTSTART:20240101T090000
DTEND:20240101T100000
END:VEVENT
BEGIN:VEVENT
UID:bad@example.com
DTSTAMP:20240101T000000Z
SUMMARY:Backwards
DTSTART:20240102T100000
DTEND:20240102T090000
END:VEVENT
END:VCALENDAR
"""


class TestImportExclusions:
    def test_exdate_stays_excluded(self, calendar, event_db):
        [root] = import_ics(calendar, EXDATE_ICS, calendar_source_id=1)
        assert calendar.get_events_in_range(datetime(2024, 1, 8), datetime(2024, 1, 8, 23)) == []
        [next_week] = calendar.get_events_for_date(date(2024, 1, 15))
        assert next_week.parent_event_id == root.id

        # 2024-01-10 is not an occurrence, so only one tombstone is stored
        [tombstone] = [e for e in event_db.find_all() if e.parent_event_id == root.id]
        assert tombstone.is_cancelled is True
        assert tombstone.original_start_date_time == datetime(2024, 1, 8, 9, 0)

    def test_cancelled_occurrence_survives_export_and_import(self, calendar, event_db):
        _series(calendar)
        exported = events_to_ics(event_db.find_all(), NOW)
        import_ics(calendar, exported, calendar_source_id=2)
        calendar.toggle_calendar_visibility(1, False)

        assert calendar.get_events_for_date(date(2024, 1, 15)) == []
        assert len(calendar.get_events_for_date(date(2024, 1, 22))) == 1

    def test_invalid_event_stores_nothing(self, calendar, event_db):
        with pytest.raises(ValidationError):
            import_ics(calendar, PARTLY_INVALID_ICS, calendar_source_id=1)
        assert event_db.find_all() == []
