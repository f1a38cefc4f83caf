"""Thread-safe in-memory Datastore with optional JSON persistence and atomic writes."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
from collections.abc import Sequence
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

from ..calendar.models import (
    CalendarRows,
    EventStatus,
    ExceptionOverride,
    PendingReminder,
    Reminder,
    SeriesRoot,
    TimeWindow,
)
from ..core.exceptions import SeriesNotFound, StoreUnavailable
from ..core.timezone_utils import ensure_utc

logger = logging.getLogger(__name__)

# Coarse filter slack: all-day bounds and local-zone stepping can move an
# occurrence up to a day away from its stored UTC instants
BOUNDING_SLACK = timedelta(days=1)


class InMemoryDatastore:
    """Datastore keeping series, exceptions and reminders in process memory.

    All access goes through one ``threading.Lock``; the dispatched-at write is
    a compare-and-set under that lock. With ``path`` set, state is written as
    JSON after every mutation (temp file, then replace) and loaded on start.
    """

    def __init__(self, path: str | None = None) -> None:
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._available = True

        self._series: dict[str, SeriesRoot] = {}
        self._exceptions: dict[tuple[str, datetime], ExceptionOverride] = {}
        self._reminders: dict[str, Reminder] = {}

        if self._path is not None:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
            except OSError:
                logger.debug("Could not ensure directory for datastore: %s", self._path.parent)
            self.load()

    # ------------------------------------------------------------------
    # availability
    # ------------------------------------------------------------------

    def set_available(self, available: bool) -> None:
        """Simulate an outage: while unavailable every call raises ``StoreUnavailable``."""
        self._available = available
        logger.info("Datastore availability set to %s", available)

    def _check_available(self) -> None:
        if not self._available:
            raise StoreUnavailable("in-memory datastore marked unavailable")

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Load persisted state from disk (if the file exists)."""
        if self._path is None:
            return
        with self._lock:
            if not self._path.exists():
                logger.debug("Datastore file not found; starting empty: %s", self._path)
                return
            try:
                with self._path.open("r", encoding="utf-8") as fh:
                    data = json.load(fh)
                if not isinstance(data, dict):
                    raise ValueError("datastore JSON root must be an object")  # noqa: TRY004
                series = [SeriesRoot.model_validate(row) for row in data.get("series", [])]
                exceptions = [
                    ExceptionOverride.model_validate(row) for row in data.get("exceptions", [])
                ]
                reminders = [Reminder.model_validate(row) for row in data.get("reminders", [])]
            except (OSError, ValueError) as exc:
                logger.warning("Failed to read datastore %s: %s", self._path, exc)
                return

            self._series = {s.id: s for s in series}
            self._exceptions = {e.key: e for e in exceptions}
            self._reminders = {r.id: r for r in reminders}
            logger.debug(
                "Loaded datastore %s (%d series, %d exceptions, %d reminders)",
                self._path,
                len(self._series),
                len(self._exceptions),
                len(self._reminders),
            )

    def _snapshot_locked(self) -> dict[str, Any]:
        return {
            "series": [s.model_dump(mode="json") for s in self._series.values()],
            "exceptions": [e.model_dump(mode="json") for e in self._exceptions.values()],
            "reminders": [r.model_dump(mode="json") for r in self._reminders.values()],
        }

    def _persist_locked(self) -> None:
        """Write state atomically: temp file in the same directory, then replace."""
        if self._path is None:
            return
        data = self._snapshot_locked()
        tmp_path: Optional[Path] = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=self._path.parent, delete=False, encoding="utf-8"
            ) as tf:
                tmp_path = Path(tf.name)
                json.dump(data, tf, ensure_ascii=False)
                tf.flush()
                with contextlib.suppress(OSError):
                    os.fsync(tf.fileno())
            tmp_path.replace(self._path)
        except OSError as exc:
            logger.warning("Failed to persist datastore to %s: %s", self._path, exc)
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    tmp_path.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # series and exceptions
    # ------------------------------------------------------------------

    def _qualifies(self, series: SeriesRoot, window: TimeWindow) -> bool:
        lower = series.start_at - BOUNDING_SLACK
        if series.is_recurring:
            if series.recurrence_end_at is None:
                return lower < window.end
            upper = series.recurrence_end_at + series.duration + BOUNDING_SLACK
        else:
            upper = series.end_at + BOUNDING_SLACK
        return lower < window.end and upper >= window.start

    def fetch_rows_overlapping(
        self, calendar_ids: Sequence[str], window: TimeWindow
    ) -> CalendarRows:
        self._check_available()
        wanted = set(calendar_ids)
        with self._lock:
            exceptions_by_root: dict[str, list[ExceptionOverride]] = {}
            for exception in self._exceptions.values():
                exceptions_by_root.setdefault(exception.root_id, []).append(exception)

            series: list[SeriesRoot] = []
            exceptions: list[ExceptionOverride] = []
            for row in self._series.values():
                if row.calendar_id not in wanted or row.is_trashed:
                    continue
                own = exceptions_by_root.get(row.id, [])
                moved_in = any(window.intersects(e.start_at, e.end_at) for e in own)
                if not (self._qualifies(row, window) or moved_in):
                    continue
                series.append(row)
                exceptions.extend(own)
        return CalendarRows(series=series, exceptions=exceptions)

    def get_series(self, series_id: str) -> Optional[SeriesRoot]:
        self._check_available()
        with self._lock:
            return self._series.get(series_id)

    def insert_series(self, series: SeriesRoot, reminders: Sequence[Reminder] = ()) -> SeriesRoot:
        self._check_available()
        with self._lock:
            if series.id in self._series:
                raise ValueError(f"series {series.id!r} already exists")
            self._series[series.id] = series
            for reminder in reminders:
                self._reminders[reminder.id] = reminder
            self._persist_locked()
        logger.debug("Inserted series %s with %d reminders", series.id, len(reminders))
        return series

    def update_series(self, series: SeriesRoot) -> SeriesRoot:
        self._check_available()
        with self._lock:
            if series.id not in self._series:
                raise SeriesNotFound(series.id)
            self._series[series.id] = series
            self._persist_locked()
        return series

    def create_exception_record(
        self, root_id: str, override: ExceptionOverride
    ) -> ExceptionOverride:
        self._check_available()
        if override.root_id != root_id:
            override = override.model_copy(update={"root_id": root_id})
        with self._lock:
            if root_id not in self._series:
                raise SeriesNotFound(root_id)
            existing = self._exceptions.get(override.key)
            if existing is not None:
                # Upsert keeps the original record id
                override = override.model_copy(update={"id": existing.id})
            self._exceptions[override.key] = override
            self._persist_locked()
        logger.debug(
            "Stored exception %s for %s at %s",
            override.id,
            root_id,
            override.original_start_at.isoformat(),
        )
        return override

    def exceptions_for(self, root_id: str) -> list[ExceptionOverride]:
        self._check_available()
        with self._lock:
            found = [e for e in self._exceptions.values() if e.root_id == root_id]
        return sorted(found, key=lambda e: e.original_start_at)

    # ------------------------------------------------------------------
    # reminders
    # ------------------------------------------------------------------

    def add_reminder(self, reminder: Reminder) -> Reminder:
        self._check_available()
        with self._lock:
            self._reminders[reminder.id] = reminder
            self._persist_locked()
        return reminder

    def get_reminder(self, reminder_id: str) -> Optional[Reminder]:
        self._check_available()
        with self._lock:
            return self._reminders.get(reminder_id)

    def reminders_for(self, event_id: str) -> list[Reminder]:
        self._check_available()
        with self._lock:
            return [r for r in self._reminders.values() if r.event_id == event_id]

    def fetch_pending_reminders(self, window: TimeWindow) -> list[PendingReminder]:
        """Return every PENDING reminder of a live (not trashed or cancelled) event.

        The trigger check against ``window`` is left to the scheduler.
        """
        self._check_available()
        with self._lock:
            pending: list[PendingReminder] = []
            for reminder in self._reminders.values():
                if reminder.dispatched_at is not None:
                    continue
                event = self._series.get(reminder.event_id)
                if event is None or event.is_trashed or event.status == EventStatus.CANCELED:
                    continue
                pending.append(PendingReminder(reminder=reminder, event=event))
        return pending

    def update_reminder_dispatched_conditional(
        self, reminder_id: str, dispatched_at: datetime
    ) -> bool:
        self._check_available()
        with self._lock:
            reminder = self._reminders.get(reminder_id)
            if reminder is None:
                logger.warning("Reminder %s vanished before dispatch mark", reminder_id)
                return False
            if reminder.dispatched_at is not None:
                return False
            self._reminders[reminder_id] = reminder.model_copy(
                update={"dispatched_at": ensure_utc(dispatched_at)}
            )
            self._persist_locked()
        return True
