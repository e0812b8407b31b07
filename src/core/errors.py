"""Error taxonomy for the scheduling core.

Every failed mutation surfaces to the caller as one of these (or as a
StorageError from the persistence port); nothing is retried here.
"""

from __future__ import annotations


class RoamError(Exception):
    """Base class for errors raised by the scheduling core."""


class ValidationError(RoamError):
    """Input rejected before reaching storage (blank title, end before start, ...)."""


class NotFoundError(RoamError):
    """Raised when operating on an id that no longer exists."""


class InvalidRecurrenceRule(ValidationError):
    """Raised when a recurrence rule cannot be parsed."""


class MalformedWindow(RoamError):
    """Raised when a query window starts after it ends."""
