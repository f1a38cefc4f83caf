"""Timezone normalization and time utilities for suitecal.

Converts local calendar dates and wall-clock times in a named IANA zone to
UTC instants using the zone's real offset table for that date, so DST
transitions are honoured instead of applying a cached fixed offset.
"""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo
from typing import ClassVar

from dateutil import parser as date_parser

from .exceptions import UnknownTimezone

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"
TEST_TIME_ENV_VAR = "SUITECAL_TEST_TIME"


class TimezoneResolver:
    """Resolves zone names, including legacy aliases, to ``ZoneInfo`` objects."""

    # Obsolete or deprecated names that older clients still send
    TZ_ALIAS_MAP: ClassVar[dict[str, str]] = {
        "US/Pacific": "America/Los_Angeles",
        "US/Mountain": "America/Denver",
        "US/Central": "America/Chicago",
        "US/Eastern": "America/New_York",
        "US/Alaska": "America/Anchorage",
        "US/Hawaii": "Pacific/Honolulu",
        "US/Arizona": "America/Phoenix",
        "GMT": "UTC",
        "Etc/UTC": "UTC",
        "Etc/GMT": "UTC",
        "Universal": "UTC",
        "Zulu": "UTC",
        "Asia/Rangoon": "Asia/Yangon",
        "America/Godthab": "America/Nuuk",
    }

    def resolve_alias(self, tz_name: str) -> str:
        """Return the canonical IANA name for ``tz_name`` (unchanged if not an alias)."""
        return self.TZ_ALIAS_MAP.get(tz_name, tz_name)

    def get_zone(self, tz_name: str) -> zoneinfo.ZoneInfo:
        """Look up a zone by name.

        Raises:
            UnknownTimezone: If the name is empty or not in the zone database
        """
        if not tz_name or not isinstance(tz_name, str):
            raise UnknownTimezone(str(tz_name))
        canonical = self.resolve_alias(tz_name.strip())
        try:
            return zoneinfo.ZoneInfo(canonical)
        except (zoneinfo.ZoneInfoNotFoundError, ValueError) as exc:
            raise UnknownTimezone(tz_name) from exc


class TimeProvider:
    """Provides current time with test time override support."""

    def now_utc(self) -> datetime.datetime:
        """Return current UTC time with tzinfo.

        Can be overridden for testing via the SUITECAL_TEST_TIME environment
        variable (ISO 8601, e.g. "2024-01-01T08:55:00Z"). Naive values are
        taken as UTC.
        """
        test_time = os.environ.get(TEST_TIME_ENV_VAR)
        if test_time:
            try:
                dt = date_parser.isoparse(test_time)
            except ValueError as e:
                logger.warning("Failed to parse %s=%r: %s", TEST_TIME_ENV_VAR, test_time, e)
            else:
                return ensure_utc(dt)

        return datetime.datetime.now(datetime.UTC)


# Singleton instances for global use
_resolver = TimezoneResolver()
_time_provider = TimeProvider()


def now_utc() -> datetime.datetime:
    """Get current UTC time (convenience function)."""
    return _time_provider.now_utc()


def get_zone(tz_name: str) -> zoneinfo.ZoneInfo:
    """Get a ``ZoneInfo`` for ``tz_name`` or raise ``UnknownTimezone``."""
    return _resolver.get_zone(tz_name)


def validate_timezone(tz_name: str) -> str:
    """Validate a zone name and return its canonical IANA identifier.

    Examples:
        >>> validate_timezone("US/Eastern")
        'America/New_York'
        >>> validate_timezone("Mars/Olympus")
        Traceback (most recent call last):
        ...
        suitecal.core.exceptions.UnknownTimezone: Unknown timezone: 'Mars/Olympus'
    """
    return str(get_zone(tz_name).key)


def ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    """Return ``dt`` as an aware UTC datetime. Naive values are assumed UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.UTC)
    return dt.astimezone(datetime.UTC)


def to_utc_instant(
    zone: str,
    year: int,
    month: int,
    day: int,
    hour: int = 0,
    minute: int = 0,
    second: int = 0,
) -> datetime.datetime:
    """Convert a local date and wall time in ``zone`` to a UTC instant.

    The offset is taken from the zone's transition table for that calendar
    date. Wall times inside a spring-forward gap resolve with ``fold=0``,
    i.e. using the offset in effect before the transition.

    Args:
        zone: IANA timezone name (e.g. "America/New_York")
        year, month, day: Local calendar date
        hour, minute, second: Local wall-clock time

    Returns:
        Aware datetime in UTC

    Raises:
        UnknownTimezone: If ``zone`` is not recognized
    """
    tz = get_zone(zone)
    local = datetime.datetime(year, month, day, hour, minute, second, tzinfo=tz)
    return local.astimezone(datetime.UTC)


def local_date_of(instant: datetime.datetime, zone: str) -> datetime.date:
    """Return the calendar date of ``instant`` as seen in ``zone``."""
    return ensure_utc(instant).astimezone(get_zone(zone)).date()


def local_day_bounds(
    zone: str, local_date: datetime.date
) -> tuple[datetime.datetime, datetime.datetime]:
    """Return UTC instants for local 00:00:00 and 23:59:59 of ``local_date``.

    On DST transition days the span is 23 or 25 hours rather than 24.
    """
    start = to_utc_instant(zone, local_date.year, local_date.month, local_date.day, 0, 0, 0)
    end = to_utc_instant(zone, local_date.year, local_date.month, local_date.day, 23, 59, 59)
    return start, end
