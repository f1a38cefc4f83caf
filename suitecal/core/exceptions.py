"""Exception hierarchy for the suitecal calendar engine.

Validation errors (``InvalidRule``, ``UnknownTimezone``) are raised
synchronously when a series is created or updated. Infrastructure errors
(``StoreUnavailable``) abort the current operation or dispatch batch and are
retried by the caller. ``DispatchLost`` is raised internally by the reminder
scheduler when another run already dispatched a reminder and is always
treated as a skip.
"""

from __future__ import annotations

import datetime
from typing import Optional


class CalendarEngineError(Exception):
    """Base exception for all calendar engine errors.

    All custom exceptions in the engine inherit from this base class so
    callers (HTTP handlers, the dispatch loop) can catch engine failures in
    one place and map them to responses.
    """


class InvalidRule(CalendarEngineError):
    """Recurrence rule is malformed or uses unsupported syntax.

    Raised when:
    - A token is not one of FREQ, INTERVAL, BYDAY, BYMONTHDAY, EXDATE
    - FREQ is missing or not DAILY/WEEKLY/MONTHLY/YEARLY
    - INTERVAL is not a positive integer
    - A BYDAY code, BYMONTHDAY value or EXDATE instant cannot be parsed

    The offending token is kept on ``token`` so the caller can name it.
    """

    def __init__(self, token: str, message: Optional[str] = None) -> None:
        self.token = token
        super().__init__(message or f"Unsupported recurrence rule token: {token!r}")


class UnknownTimezone(CalendarEngineError):
    """IANA timezone name is not recognized by the zone database."""

    def __init__(self, zone: str) -> None:
        self.zone = zone
        super().__init__(f"Unknown timezone: {zone!r}")


class ExceptionMismatch(CalendarEngineError):
    """Occurrence-scoped edit or cancel targets an instant with no raw occurrence.

    Surfaced to the caller as a no-op failure; nothing is stored.
    """

    def __init__(self, series_id: str, original_start_at: datetime.datetime) -> None:
        self.series_id = series_id
        self.original_start_at = original_start_at
        super().__init__(
            f"Series {series_id!r} has no occurrence at {original_start_at.isoformat()}"
        )


class SeriesNotFound(CalendarEngineError):
    """Series id does not exist or has been trashed."""

    def __init__(self, series_id: str) -> None:
        self.series_id = series_id
        super().__init__(f"Series not found: {series_id!r}")


class StoreUnavailable(CalendarEngineError):
    """Datastore could not be reached.

    Transient: the whole operation or batch aborts and is retried on the
    next scheduler tick.
    """


class DispatchLost(CalendarEngineError):
    """Another run already moved the reminder out of PENDING.

    Not an error; the losing run skips the reminder.
    """

    def __init__(self, reminder_id: str) -> None:
        self.reminder_id = reminder_id
        super().__init__(f"Reminder {reminder_id!r} already dispatched by another run")


class WindowTooLarge(CalendarEngineError):
    """Query window would expand a series past the occurrence limit.

    Raised instead of returning a truncated expansion; the caller must narrow
    the window.
    """

    def __init__(self, series_ref: str, limit: int) -> None:
        self.series_ref = series_ref
        self.limit = limit
        super().__init__(
            f"Query window expands {series_ref} past {limit} occurrences; narrow the window"
        )
