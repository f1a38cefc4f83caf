"""Conflict detection against materialized occurrences."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

from ..core.timezone_utils import ensure_utc
from .materializer import OccurrenceMaterializer
from .models import Occurrence, TimeWindow

logger = logging.getLogger(__name__)


def intervals_conflict(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """True if half-open ``[a_start, a_end)`` and ``[b_start, b_end)`` strictly overlap.

    Touching intervals (``a_end == b_start``) do not conflict.
    """
    return a_start < b_end and a_end > b_start


def find_conflicts(
    start_at: datetime, end_at: datetime, occurrences: Iterable[Occurrence]
) -> list[Occurrence]:
    """Return the occurrences that overlap the candidate interval, sorted by start."""
    start_at = ensure_utc(start_at)
    end_at = ensure_utc(end_at)
    hits = [
        occ
        for occ in occurrences
        if intervals_conflict(start_at, end_at, occ.start_at, occ.end_at)
    ]
    hits.sort(key=lambda occ: occ.start_at)
    return hits


class ConflictDetector:
    """Tests a candidate interval against the occurrences of a set of calendars."""

    def __init__(self, materializer: OccurrenceMaterializer) -> None:
        self.materializer = materializer

    def detect_conflicts(
        self,
        start_at: datetime,
        end_at: datetime,
        calendar_ids: Sequence[str],
    ) -> list[Occurrence]:
        """Return every occurrence (recurring ones included) overlapping the candidate.

        Args:
            start_at: Candidate start
            end_at: Candidate end; must be after ``start_at``
            calendar_ids: Calendars to check

        Returns:
            Conflicting occurrences sorted by start

        Raises:
            ValueError: If the candidate interval is empty or inverted
            StoreUnavailable: If the Datastore cannot be reached
        """
        window = TimeWindow(start=start_at, end=end_at)
        occurrences = self.materializer.materialize(calendar_ids, window)
        conflicts = find_conflicts(window.start, window.end, occurrences)
        if conflicts:
            logger.info(
                "Found %d conflicts for [%s, %s)",
                len(conflicts),
                window.start.isoformat(),
                window.end.isoformat(),
            )
        return conflicts
