"""Free/busy aggregation across calendars and attendees.

Busy time is reported as a sorted list of disjoint half-open intervals with
no event identity or content attached.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Optional

from ..store.protocols import Directory
from .materializer import OccurrenceMaterializer
from .models import BusyInterval, TimeWindow

logger = logging.getLogger(__name__)


def merge_busy_intervals(
    intervals: Iterable[tuple[datetime, datetime] | BusyInterval],
) -> list[BusyInterval]:
    """Merge busy intervals into a minimal sorted disjoint set.

    Intervals that overlap or touch (``next.start <= current.end``) are joined.

    Example:
        09:00-10:00, 09:30-11:00, 14:00-15:00 -> 09:00-11:00, 14:00-15:00
    """
    items = [
        iv if isinstance(iv, BusyInterval) else BusyInterval(start_at=iv[0], end_at=iv[1])
        for iv in intervals
    ]
    items.sort(key=lambda iv: (iv.start_at, iv.end_at))

    merged: list[BusyInterval] = []
    for interval in items:
        if merged and interval.start_at <= merged[-1].end_at:
            last = merged[-1]
            if interval.end_at > last.end_at:
                merged[-1] = BusyInterval(start_at=last.start_at, end_at=interval.end_at)
            continue
        merged.append(interval)
    return merged


class FreeBusyAggregator:
    """Computes merged busy time for calendars and resolved attendees."""

    def __init__(
        self,
        materializer: OccurrenceMaterializer,
        directory: Optional[Directory] = None,
    ) -> None:
        self.materializer = materializer
        self.directory = directory

    def resolve_calendars(
        self, calendar_ids: Sequence[str], attendee_emails: Sequence[str] = ()
    ) -> list[str]:
        """Combine explicit calendar ids with those resolved from attendee emails."""
        resolved = list(dict.fromkeys(calendar_ids))
        if attendee_emails and self.directory is None:
            logger.warning(
                "No directory configured, ignoring %d attendee emails", len(attendee_emails)
            )
            return resolved
        for email in attendee_emails:
            found = self.directory.calendars_for_email(email)  # type: ignore[union-attr]
            if not found:
                logger.debug("No calendars resolved for attendee %s", email)
            for calendar_id in found:
                if calendar_id not in resolved:
                    resolved.append(calendar_id)
        return resolved

    def compute_free_busy(
        self,
        window: TimeWindow,
        calendar_ids: Sequence[str] = (),
        attendee_emails: Sequence[str] = (),
    ) -> list[BusyInterval]:
        """Return merged busy intervals within ``window``.

        Args:
            window: Query window
            calendar_ids: Calendars to include directly
            attendee_emails: Attendees whose calendars the Directory resolves

        Returns:
            Sorted, pairwise non-overlapping busy intervals

        Raises:
            StoreUnavailable: If the Datastore cannot be reached
        """
        calendars = self.resolve_calendars(calendar_ids, attendee_emails)
        occurrences = self.materializer.materialize(calendars, window)
        busy = merge_busy_intervals((occ.start_at, occ.end_at) for occ in occurrences)
        logger.debug(
            "Free/busy over %d calendars: %d occurrences -> %d busy intervals",
            len(calendars),
            len(occurrences),
            len(busy),
        )
        return busy
