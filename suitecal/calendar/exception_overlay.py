"""Per-occurrence override and cancellation processing for suitecal.

Raw occurrence instants from the expander are matched against stored
``ExceptionOverride`` records keyed by ``(root_id, original_start_at)`` using
exact instant equality. A match either replaces the occurrence (new time and
fields) or suppresses it (CANCELED). No match leaves the occurrence as is.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import Optional

from ..core.timezone_utils import ensure_utc
from .models import ExceptionOverride, Occurrence, SeriesRoot

logger = logging.getLogger(__name__)


class ExceptionIndex:
    """Lookup of exception overrides by ``(root_id, original_start_at)``."""

    def __init__(self, exceptions: Iterable[ExceptionOverride] = ()) -> None:
        self._by_key: dict[tuple[str, datetime], ExceptionOverride] = {}
        for exception in exceptions:
            self.add(exception)

    def add(self, exception: ExceptionOverride) -> None:
        """Index an override. A later record for the same key replaces the earlier one."""
        if exception.key in self._by_key:
            logger.debug(
                "Duplicate exception for %s at %s, keeping %s",
                exception.root_id,
                exception.original_start_at.isoformat(),
                exception.id,
            )
        self._by_key[exception.key] = exception

    def lookup(self, root_id: str, original_start_at: datetime) -> Optional[ExceptionOverride]:
        return self._by_key.get((root_id, ensure_utc(original_start_at)))

    def for_root(self, root_id: str) -> list[ExceptionOverride]:
        """All overrides of one root, ordered by original start."""
        found = [exc for (rid, _), exc in self._by_key.items() if rid == root_id]
        return sorted(found, key=lambda exc: exc.original_start_at)

    def __len__(self) -> int:
        return len(self._by_key)


class ExceptionOverlay:
    """Applies an ``ExceptionIndex`` on top of a root's raw occurrence instants."""

    def apply(
        self,
        root: SeriesRoot,
        raw_starts: Iterable[datetime],
        index: ExceptionIndex,
    ) -> Iterator[Occurrence]:
        """Yield the post-override occurrences of ``root``.

        Args:
            root: Recurring series root the instants were expanded from
            raw_starts: Raw occurrence start instants (UTC)
            index: Exception lookup

        Yields:
            Occurrence per raw instant, minus cancelled ones. Passed-through
            occurrences end at ``start + root.duration``; replaced ones carry
            the override's own start and end.
        """
        base = root.base_fields
        duration = root.duration
        suppressed = 0
        replaced = 0

        for raw_start in raw_starts:
            exception = index.lookup(root.id, raw_start)
            if exception is None:
                yield Occurrence(
                    series_id=root.id,
                    calendar_id=root.calendar_id,
                    start_at=raw_start,
                    end_at=raw_start + duration,
                    all_day=root.all_day,
                    original_start_at=raw_start,
                    base_fields=base,
                )
                continue

            if exception.is_cancellation:
                suppressed += 1
                continue

            replaced += 1
            yield self.occurrence_from_exception(root, exception)

        if suppressed or replaced:
            logger.debug(
                "Overlay for %s: %d replaced, %d cancelled", root.id, replaced, suppressed
            )

    @staticmethod
    def occurrence_from_exception(root: SeriesRoot, exception: ExceptionOverride) -> Occurrence:
        """Build the occurrence an override describes (its own time and fields)."""
        base = root.base_fields
        return Occurrence(
            series_id=root.id,
            calendar_id=root.calendar_id,
            start_at=exception.start_at,
            end_at=exception.end_at,
            all_day=root.all_day,
            original_start_at=exception.original_start_at,
            base_fields=base,
            override=exception.apply_to(base),
        )


_default_overlay = ExceptionOverlay()


def overlay(
    root: SeriesRoot,
    raw_starts: Iterable[datetime],
    exceptions: ExceptionIndex | Iterable[ExceptionOverride],
) -> list[Occurrence]:
    """Apply overrides to ``raw_starts`` and return the resulting occurrences."""
    index = exceptions if isinstance(exceptions, ExceptionIndex) else ExceptionIndex(exceptions)
    return list(_default_overlay.apply(root, raw_starts, index))
