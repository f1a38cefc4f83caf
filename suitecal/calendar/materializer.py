"""Occurrence materialization: expansion, overlay and all-day normalization.

Turns the rows a Datastore returns for a window into the concrete occurrence
intervals callers see. Every emitted occurrence intersects the window and no
``(series_id, start_at)`` pair is emitted twice.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import timedelta
from typing import Optional

from ..core.exceptions import InvalidRule, UnknownTimezone
from ..core.timezone_utils import local_date_of, local_day_bounds
from ..store.protocols import Datastore
from .exception_overlay import ExceptionIndex, ExceptionOverlay
from .models import CalendarRows, EventStatus, Occurrence, SeriesRoot, TimeWindow
from .rrule_expander import RecurrenceExpander

logger = logging.getLogger(__name__)

# All-day bounds are recomputed per local date, so a raw start up to a day
# away from the window can still land inside it
ALL_DAY_EXPANSION_PAD = timedelta(days=2)


def normalize_all_day(occurrence: Occurrence, timezone: str) -> Occurrence:
    """Snap an all-day occurrence to local 00:00:00..23:59:59 of its local date."""
    day = local_date_of(occurrence.start_at, timezone)
    start_at, end_at = local_day_bounds(timezone, day)
    return occurrence.model_copy(update={"start_at": start_at, "end_at": end_at})


class OccurrenceMaterializer:
    """Materializes occurrences for a set of calendars over a window."""

    def __init__(
        self,
        datastore: Datastore,
        expander: Optional[RecurrenceExpander] = None,
        overlay: Optional[ExceptionOverlay] = None,
    ) -> None:
        self.datastore = datastore
        self.expander = expander or RecurrenceExpander()
        self.overlay = overlay or ExceptionOverlay()

    def materialize(self, calendar_ids: Sequence[str], window: TimeWindow) -> list[Occurrence]:
        """Fetch rows for ``window`` and materialize their occurrences.

        Args:
            calendar_ids: Calendars to read
            window: Half-open query window

        Returns:
            Occurrences sorted by start

        Raises:
            StoreUnavailable: If the Datastore cannot be reached
        """
        if not calendar_ids:
            return []
        rows = self.datastore.fetch_rows_overlapping(list(calendar_ids), window)
        occurrences = self.materialize_rows(rows, window)
        logger.debug(
            "Materialized %d occurrences from %d series for %d calendars",
            len(occurrences),
            len(rows.series),
            len(calendar_ids),
        )
        return occurrences

    def materialize_rows(self, rows: CalendarRows, window: TimeWindow) -> list[Occurrence]:
        """Materialize already-fetched rows (no Datastore access)."""
        index = ExceptionIndex(rows.exceptions)
        seen: set[tuple[str, object]] = set()
        results: list[Occurrence] = []

        for series in rows.series:
            if series.is_trashed:
                continue
            if series.status == EventStatus.CANCELED:
                logger.debug("Skipping cancelled series %s", series.id)
                continue

            if series.is_recurring:
                try:
                    candidates = self._expand_recurring(series, window, index)
                except (InvalidRule, UnknownTimezone) as e:
                    logger.warning("Skipping series %s with unusable stored data: %s", series.id, e)
                    continue
            else:
                candidates = [self._standalone(series)]

            for occurrence in candidates:
                if not window.intersects(occurrence.start_at, occurrence.end_at):
                    continue
                if occurrence.key in seen:
                    continue
                seen.add(occurrence.key)
                results.append(occurrence)

        results.sort(key=lambda occ: (occ.start_at, occ.series_id))
        return results

    def _standalone(self, series: SeriesRoot) -> Occurrence:
        occurrence = Occurrence(
            series_id=series.id,
            calendar_id=series.calendar_id,
            start_at=series.start_at,
            end_at=series.end_at,
            all_day=series.all_day,
            base_fields=series.base_fields,
        )
        if series.all_day:
            return normalize_all_day(occurrence, series.timezone)
        return occurrence

    def _expand_recurring(
        self, series: SeriesRoot, window: TimeWindow, index: ExceptionIndex
    ) -> list[Occurrence]:
        duration = series.duration
        if series.all_day:
            duration += ALL_DAY_EXPANSION_PAD

        raw_starts = self.expander.expand(
            series.recurrence_rule or "",
            series.start_at,
            window,
            recurrence_end_at=series.recurrence_end_at,
            timezone=series.timezone,
            duration=duration,
        )
        occurrences = list(self.overlay.apply(series, raw_starts, index))

        # Overrides whose original instant fell outside this expansion may
        # still have been moved into the window
        matched = {occ.original_start_at for occ in occurrences}
        raw_set = set(raw_starts)
        for exception in index.for_root(series.id):
            if exception.is_cancellation:
                continue
            if exception.original_start_at in matched or exception.original_start_at in raw_set:
                continue
            occurrences.append(self.overlay.occurrence_from_exception(series, exception))

        if series.all_day:
            occurrences = [normalize_all_day(occ, series.timezone) for occ in occurrences]
        return occurrences


def materialize_rows(
    rows: CalendarRows,
    window: TimeWindow,
    expander: Optional[RecurrenceExpander] = None,
) -> list[Occurrence]:
    """Materialize rows without a Datastore (convenience function)."""
    materializer = OccurrenceMaterializer(datastore=None, expander=expander)  # type: ignore[arg-type]
    return materializer.materialize_rows(rows, window)
