"""Input sanitizing and entity validation.

Runs before anything reaches storage; every rejection is a ValidationError.
"""

from __future__ import annotations

import re
from dataclasses import replace

from src.core.errors import ValidationError
from src.data.models import CalendarEvent, Region, Task

MAX_TITLE_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 5000

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_CONTROL_CHARS_KEEP_WS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")


def sanitize_title(title: str | None) -> str:
    """Trim, strip control characters, and reject blank or overlong titles."""
    cleaned = _CONTROL_CHARS.sub("", (title or "").strip())
    if not cleaned:
        raise ValidationError("Title must not be blank")
    if len(cleaned) > MAX_TITLE_LENGTH:
        raise ValidationError(
            f"Title too long. Maximum length is {MAX_TITLE_LENGTH} characters."
        )
    return cleaned


def sanitize_description(description: str | None) -> str | None:
    """Trim and strip control characters except newlines and tabs."""
    if description is None:
        return None
    cleaned = _CONTROL_CHARS_KEEP_WS.sub("", description.strip())
    if len(cleaned) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Description too long. Maximum length is {MAX_DESCRIPTION_LENGTH} characters."
        )
    return cleaned or None


def sanitize_search_query(query: str | None, max_length: int) -> str:
    query = (query or "").strip()
    if len(query) > max_length:
        raise ValidationError(
            f"Search query too long. Maximum length is {max_length} characters."
        )
    return query


def validate_color(color: str | None, field: str = "color") -> None:
    if color is not None and not _HEX_COLOR.match(color):
        raise ValidationError(f"{field} must look like #RRGGBB, got {color!r}")


def validate_event(event: CalendarEvent) -> CalendarEvent:
    """Return a sanitized copy of the event or raise ValidationError."""
    if event.end_date_time < event.start_date_time:
        raise ValidationError(
            f"Event '{event.title}' ends ({event.end_date_time}) before it starts "
            f"({event.start_date_time})"
        )
    if event.is_recurring_instance:
        if event.parent_event_id is None or event.original_start_date_time is None:
            raise ValidationError(
                "A recurring instance needs parent_event_id and original_start_date_time"
            )
        if event.recurrence_rule:
            raise ValidationError("A recurring instance cannot carry its own recurrence rule")
    if (
        event.recurrence_end_date is not None
        and event.recurrence_end_date < event.start_date_time
    ):
        raise ValidationError("Recurrence end date is before the first occurrence")
    validate_color(event.color)
    return replace(
        event,
        title=sanitize_title(event.title),
        description=sanitize_description(event.description),
        location=(event.location or "").strip() or None,
    )


def validate_task(task: Task) -> Task:
    """Return a sanitized copy of the task or raise ValidationError."""
    assignee = (task.assignee or "").strip() or None
    return replace(
        task,
        title=sanitize_title(task.title),
        description=sanitize_description(task.description),
        assignee=assignee,
    )


def validate_region(region: Region) -> Region:
    validate_color(region.color)
    name = (region.name or "").strip()
    if not name:
        raise ValidationError("Region name must not be blank")
    if len(name) > 50:
        raise ValidationError("Region name too long. Maximum length is 50 characters.")
    return replace(region, name=name)
