"""Protocol definitions for the collaborators the calendar engine consumes.

The engine never talks to a database, a push service or a user directory
directly; it depends on these narrow interfaces instead.
"""

from __future__ import annotations

import datetime
from collections.abc import Sequence
from typing import Optional, Protocol

from ..calendar.models import (
    CalendarRows,
    ExceptionOverride,
    PendingReminder,
    Reminder,
    ReminderNotification,
    SeriesRoot,
    TimeWindow,
)


class Datastore(Protocol):
    """Protocol for event, exception and reminder persistence.

    Every method may raise ``StoreUnavailable`` when the backing store cannot
    be reached.
    """

    def fetch_rows_overlapping(
        self, calendar_ids: Sequence[str], window: TimeWindow
    ) -> CalendarRows:
        """Fetch non-trashed rows whose bounding range can intersect ``window``.

        Coarse filtering is enough: a recurring root qualifies when
        ``[start_at, recurrence_end_at or +inf)`` reaches the window. All
        exception overrides of the returned roots are included.

        Args:
            calendar_ids: Calendars to read
            window: Query window

        Returns:
            CalendarRows with series roots and their overrides
        """
        ...

    def create_exception_record(
        self, root_id: str, override: ExceptionOverride
    ) -> ExceptionOverride:
        """Store an override, replacing any existing one with the same key.

        Args:
            root_id: Series root id
            override: Override keyed by ``(root_id, original_start_at)``

        Returns:
            The stored override
        """
        ...

    def update_reminder_dispatched_conditional(
        self, reminder_id: str, dispatched_at: datetime.datetime
    ) -> bool:
        """Set ``dispatched_at`` only if the reminder is still PENDING.

        Args:
            reminder_id: Reminder identifier
            dispatched_at: Timestamp to record

        Returns:
            True if this call made the transition, False if another run won
        """
        ...

    def fetch_pending_reminders(self, window: TimeWindow) -> list[PendingReminder]:
        """Fetch PENDING reminders of non-trashed, non-cancelled events that may trigger in ``window``.

        Args:
            window: Lookahead window; the scheduler re-checks triggers exactly

        Returns:
            Pending reminders paired with their event rows
        """
        ...

    def get_series(self, series_id: str) -> Optional[SeriesRoot]:
        """Return a series root by id, or None if it does not exist."""
        ...

    def insert_series(self, series: SeriesRoot, reminders: Sequence[Reminder]) -> SeriesRoot:
        """Store a new series root together with its reminders."""
        ...

    def update_series(self, series: SeriesRoot) -> SeriesRoot:
        """Replace a stored series root."""
        ...

    def exceptions_for(self, root_id: str) -> list[ExceptionOverride]:
        """Return every stored override of a root."""
        ...


class Notifier(Protocol):
    """Protocol for reminder notification delivery."""

    def send_reminder_notification(
        self, user_id: str, payload: ReminderNotification
    ) -> None:
        """Deliver a reminder to one user.

        Fire-and-forget; failures raise and are handled by the caller.

        Args:
            user_id: Recipient identity
            payload: Notification payload
        """
        ...


class Directory(Protocol):
    """Protocol for resolving attendee identities to calendars."""

    def calendars_for_email(self, email: str) -> list[str]:
        """Resolve an attendee email to the calendar ids used for free/busy.

        Args:
            email: Attendee email address

        Returns:
            Calendar ids, empty when the address is unknown
        """
        ...
