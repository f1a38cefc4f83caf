"""Series lifecycle operations: create, edit, occurrence overrides, trash, search.

Validation (rule grammar, zone names, occurrence keys) happens here, before
anything is stored, so expansion later never meets a malformed rule.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any, Optional

from ..config_loader import Config
from ..core.exceptions import ExceptionMismatch, SeriesNotFound
from ..core.timezone_utils import ensure_utc, local_date_of, now_utc, to_utc_instant, validate_timezone
from ..store.protocols import Datastore
from .materializer import OccurrenceMaterializer
from .models import (
    EventStatus,
    ExceptionOverride,
    Occurrence,
    Reminder,
    ReminderMethod,
    SeriesRoot,
    TimeWindow,
)
from .rrule_expander import RecurrenceExpander, parse_recurrence_rule

logger = logging.getLogger(__name__)

SEARCH_RESULT_LIMIT = 100

OVERRIDABLE_FIELDS = ("title", "description", "location", "online_meeting_link")
IMMUTABLE_SERIES_FIELDS = ("id", "created_by")


def _new_id() -> str:
    return uuid.uuid4().hex


class SeriesService:
    """Lifecycle operations on series roots and their exception overrides."""

    def __init__(
        self,
        datastore: Datastore,
        config: Optional[Config] = None,
        materializer: Optional[OccurrenceMaterializer] = None,
    ) -> None:
        self.datastore = datastore
        self.config = config or Config()
        self.expander = RecurrenceExpander(self.config.max_occurrences_per_expansion)
        self.materializer = materializer or OccurrenceMaterializer(datastore, expander=self.expander)

    # ------------------------------------------------------------------
    # validation helpers
    # ------------------------------------------------------------------

    def _validated(self, series: SeriesRoot) -> SeriesRoot:
        """Check rule and zone; return the series with its canonical zone name.

        Raises:
            InvalidRule: If the recurrence rule is malformed
            UnknownTimezone: If the zone is not recognized
        """
        canonical_zone = validate_timezone(series.timezone)
        if series.recurrence_rule:
            parse_recurrence_rule(series.recurrence_rule)
        if canonical_zone != series.timezone:
            series = series.model_copy(update={"timezone": canonical_zone})
        return series

    def _require_series(self, series_id: str) -> SeriesRoot:
        series = self.datastore.get_series(series_id)
        if series is None or series.is_trashed:
            raise SeriesNotFound(series_id)
        return series

    def is_raw_occurrence(self, series: SeriesRoot, instant: datetime) -> bool:
        """True if ``instant`` is exactly one of the series' raw occurrence starts."""
        instant = ensure_utc(instant)
        if not series.is_recurring:
            return False
        window = TimeWindow(start=instant, end=instant + timedelta(seconds=1))
        raw = self.expander.expand(
            series.recurrence_rule or "",
            series.start_at,
            window,
            recurrence_end_at=series.recurrence_end_at,
            timezone=series.timezone,
        )
        return any(occ == instant for occ in raw)

    def default_reminders(self, series: SeriesRoot) -> list[Reminder]:
        """Default APP reminder for a new series.

        Timed events use ``default_reminder_minutes``. All-day events store the
        signed minute distance from the start to local ``all_day_reminder_hour``
        on the start's local date, which is negative when that hour comes after
        the start.
        """
        if series.all_day:
            day = local_date_of(series.start_at, series.timezone)
            fire_at = to_utc_instant(
                series.timezone, day.year, day.month, day.day, self.config.all_day_reminder_hour, 0
            )
            minutes_before = int((series.start_at - fire_at).total_seconds() // 60)
        else:
            minutes_before = self.config.default_reminder_minutes
        return [
            Reminder(
                id=_new_id(),
                event_id=series.id,
                method=ReminderMethod.APP,
                minutes_before=minutes_before,
            )
        ]

    # ------------------------------------------------------------------
    # series scope
    # ------------------------------------------------------------------

    def create_series(
        self, series: SeriesRoot, reminders: Optional[Sequence[Reminder]] = None
    ) -> SeriesRoot:
        """Validate and store a new series root with its reminders.

        Raises:
            InvalidRule: If the recurrence rule is malformed
            UnknownTimezone: If the zone is not recognized
            StoreUnavailable: If the Datastore cannot be reached
        """
        series = self._validated(series)
        if reminders is None:
            reminders = self.default_reminders(series)
        else:
            reminders = [
                r if r.event_id == series.id else r.model_copy(update={"event_id": series.id})
                for r in reminders
            ]
        stored = self.datastore.insert_series(series, reminders)
        logger.info(
            "Created series %s in calendar %s (recurring=%s, reminders=%d)",
            stored.id,
            stored.calendar_id,
            stored.is_recurring,
            len(reminders),
        )
        return stored

    def update_series(self, series_id: str, **changes: Any) -> SeriesRoot:
        """Edit the whole series. Stored exceptions are left untouched.

        Raises:
            SeriesNotFound: If the series does not exist or is trashed
            InvalidRule: If a new recurrence rule is malformed
            UnknownTimezone: If a new zone is not recognized
            ValueError: If a field value fails model validation
        """
        current = self._require_series(series_id)
        for key in IMMUTABLE_SERIES_FIELDS:
            if key in changes:
                raise ValueError(f"{key} cannot be changed")

        data = current.model_dump()
        data.update(changes)
        updated = self._validated(SeriesRoot.model_validate(data))
        stored = self.datastore.update_series(updated)
        logger.info("Updated series %s (%s)", series_id, ", ".join(sorted(changes)) or "no changes")
        return stored

    def trash_series(self, series_id: str) -> SeriesRoot:
        """Series-scope soft delete: mark the root trashed."""
        current = self._require_series(series_id)
        trashed = current.model_copy(update={"trashed_at": now_utc()})
        stored = self.datastore.update_series(trashed)
        logger.info("Trashed series %s", series_id)
        return stored

    # ------------------------------------------------------------------
    # occurrence scope
    # ------------------------------------------------------------------

    def _existing_override(
        self, series_id: str, original_start_at: datetime
    ) -> Optional[ExceptionOverride]:
        for exception in self.datastore.exceptions_for(series_id):
            if exception.original_start_at == original_start_at:
                return exception
        return None

    def _checked_occurrence(self, series_id: str, original_start_at: datetime) -> SeriesRoot:
        series = self._require_series(series_id)
        if not self.is_raw_occurrence(series, original_start_at):
            raise ExceptionMismatch(series_id, ensure_utc(original_start_at))
        return series

    def edit_occurrence(
        self, series_id: str, original_start_at: datetime, **changes: Any
    ) -> ExceptionOverride:
        """Override one occurrence ("edit this occurrence").

        Accepted changes are ``start_at``, ``end_at`` and the display fields.
        The end defaults to ``start + series duration``. Editing an already
        overridden occurrence updates that override in place.

        Raises:
            SeriesNotFound: If the series does not exist or is trashed
            ExceptionMismatch: If ``original_start_at`` is not a raw occurrence
            ValueError: If an unknown field is given or the interval is inverted
        """
        unknown = set(changes) - {"start_at", "end_at", *OVERRIDABLE_FIELDS}
        if unknown:
            raise ValueError(f"Unsupported occurrence fields: {', '.join(sorted(unknown))}")

        original_start_at = ensure_utc(original_start_at)
        series = self._checked_occurrence(series_id, original_start_at)
        existing = self._existing_override(series_id, original_start_at)

        start_at = changes.get("start_at")
        if start_at is None:
            start_at = existing.start_at if existing and not existing.is_cancellation else original_start_at
        start_at = ensure_utc(start_at)
        end_at = changes.get("end_at")
        end_at = ensure_utc(end_at) if end_at is not None else start_at + series.duration

        fields: dict[str, Any] = {}
        for name in OVERRIDABLE_FIELDS:
            if name in changes:
                fields[name] = changes[name]
            elif existing is not None:
                fields[name] = getattr(existing, name)

        override = ExceptionOverride(
            id=existing.id if existing else _new_id(),
            root_id=series_id,
            original_start_at=original_start_at,
            start_at=start_at,
            end_at=end_at,
            status=EventStatus.CONFIRMED,
            created_by=series.created_by,
            **fields,
        )
        stored = self.datastore.create_exception_record(series_id, override)
        logger.info(
            "Overrode occurrence %s of series %s -> %s",
            original_start_at.isoformat(),
            series_id,
            start_at.isoformat(),
        )
        return stored

    def cancel_occurrence(self, series_id: str, original_start_at: datetime) -> ExceptionOverride:
        """Occurrence-scope delete: store a CANCELED override.

        Raises:
            SeriesNotFound: If the series does not exist or is trashed
            ExceptionMismatch: If ``original_start_at`` is not a raw occurrence
        """
        original_start_at = ensure_utc(original_start_at)
        series = self._checked_occurrence(series_id, original_start_at)
        existing = self._existing_override(series_id, original_start_at)
        override = ExceptionOverride(
            id=existing.id if existing else _new_id(),
            root_id=series_id,
            original_start_at=original_start_at,
            start_at=original_start_at,
            end_at=original_start_at + series.duration,
            status=EventStatus.CANCELED,
            created_by=series.created_by,
        )
        stored = self.datastore.create_exception_record(series_id, override)
        logger.info("Cancelled occurrence %s of series %s", original_start_at.isoformat(), series_id)
        return stored

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def search_occurrences(
        self, text: str, calendar_ids: Sequence[str], window: TimeWindow
    ) -> list[Occurrence]:
        """Case-insensitive search over title, description and location.

        Matches the effective (post-override) fields; results are sorted by
        start and capped at 100.
        """
        needle = (text or "").strip().lower()
        if not needle:
            return []
        results = []
        for occurrence in self.materializer.materialize(calendar_ids, window):
            fields = occurrence.effective_fields
            haystacks = (fields.title, fields.description or "", fields.location or "")
            if any(needle in value.lower() for value in haystacks):
                results.append(occurrence)
        results.sort(key=lambda occ: occ.start_at)
        return results[:SEARCH_RESULT_LIMIT]
