"""Bounded RRULE parsing and expansion for suitecal.

Supported grammar::

    FREQ=DAILY|WEEKLY|MONTHLY|YEARLY[;INTERVAL=n][;BYDAY=<days>][;BYMONTHDAY=n][;EXDATE=<instants>]

Any other token is rejected with ``InvalidRule`` naming the token. Stepping
happens on the series' local wall clock so a 09:00 meeting stays at 09:00
across DST transitions; results are returned as UTC instants.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

from dateutil import parser as date_parser
from dateutil.rrule import DAILY, FR, MO, MONTHLY, SA, SU, TH, TU, WE, WEEKLY, YEARLY, rrule, rruleset

from ..core.exceptions import InvalidRule, WindowTooLarge
from ..core.timezone_utils import DEFAULT_TIMEZONE, ensure_utc, get_zone
from .models import TimeWindow

logger = logging.getLogger(__name__)

FREQUENCIES: dict[str, int] = {
    "DAILY": DAILY,
    "WEEKLY": WEEKLY,
    "MONTHLY": MONTHLY,
    "YEARLY": YEARLY,
}

WEEKDAYS: dict[str, Any] = {
    "MO": MO,
    "TU": TU,
    "WE": WE,
    "TH": TH,
    "FR": FR,
    "SA": SA,
    "SU": SU,
}

SUPPORTED_KEYS = ("FREQ", "INTERVAL", "BYDAY", "BYMONTHDAY", "EXDATE")

DEFAULT_MAX_OCCURRENCES = 1000


@dataclass(frozen=True)
class RecurrenceRule:
    """Parsed form of a bounded RRULE string."""

    freq: str
    interval: int = 1
    byday: tuple[str, ...] = ()
    bymonthday: Optional[int] = None
    exdates: tuple[datetime, ...] = field(default=())

    @property
    def has_exdates(self) -> bool:
        return bool(self.exdates)


def _parse_exdate(value: str) -> datetime:
    try:
        return ensure_utc(date_parser.isoparse(value))
    except ValueError as e:
        raise InvalidRule(f"EXDATE={value}", f"Invalid EXDATE instant: {value!r}") from e


def parse_recurrence_rule(rule_string: str) -> RecurrenceRule:
    """Parse and validate a bounded RRULE string.

    Args:
        rule_string: e.g. "FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE"

    Returns:
        RecurrenceRule

    Raises:
        InvalidRule: Naming the offending token for unsupported keys, missing
            or unknown FREQ, non-positive INTERVAL, bad BYDAY/BYMONTHDAY
            values, unparseable EXDATE instants or repeated keys
    """
    if not rule_string or not rule_string.strip():
        raise InvalidRule("", "Empty recurrence rule")

    parts: dict[str, str] = {}
    for raw_token in rule_string.strip().split(";"):
        token = raw_token.strip()
        if not token:
            raise InvalidRule(raw_token, "Empty token in recurrence rule")
        if "=" not in token:
            raise InvalidRule(token)
        key, value = token.split("=", 1)
        key = key.strip().upper()
        value = value.strip()
        if key not in SUPPORTED_KEYS:
            raise InvalidRule(token)
        if key in parts:
            raise InvalidRule(token, f"Repeated {key} in recurrence rule")
        if not value:
            raise InvalidRule(token, f"Missing value for {key}")
        parts[key] = value

    if "FREQ" not in parts:
        raise InvalidRule("FREQ", "Recurrence rule missing required FREQ")
    freq = parts["FREQ"].upper()
    if freq not in FREQUENCIES:
        raise InvalidRule(f"FREQ={parts['FREQ']}")

    interval = 1
    if "INTERVAL" in parts:
        try:
            interval = int(parts["INTERVAL"])
        except ValueError as e:
            raise InvalidRule(f"INTERVAL={parts['INTERVAL']}") from e
        if interval <= 0:
            raise InvalidRule(
                f"INTERVAL={parts['INTERVAL']}", "INTERVAL must be a positive integer"
            )

    byday: tuple[str, ...] = ()
    if "BYDAY" in parts:
        days = [d.strip().upper() for d in parts["BYDAY"].split(",")]
        for day in days:
            if day not in WEEKDAYS:
                raise InvalidRule(f"BYDAY={day}", f"Unsupported BYDAY code: {day!r}")
        # Keep first-seen order, drop repeats
        byday = tuple(dict.fromkeys(days))

    bymonthday: Optional[int] = None
    if "BYMONTHDAY" in parts:
        try:
            bymonthday = int(parts["BYMONTHDAY"])
        except ValueError as e:
            raise InvalidRule(f"BYMONTHDAY={parts['BYMONTHDAY']}") from e
        if bymonthday == 0 or not -31 <= bymonthday <= 31:
            raise InvalidRule(
                f"BYMONTHDAY={parts['BYMONTHDAY']}", "BYMONTHDAY must be in 1..31 or -31..-1"
            )

    exdates: tuple[datetime, ...] = ()
    if "EXDATE" in parts:
        exdates = tuple(_parse_exdate(v.strip()) for v in parts["EXDATE"].split(",") if v.strip())
        if not exdates:
            raise InvalidRule(f"EXDATE={parts['EXDATE']}", "EXDATE has no instants")

    return RecurrenceRule(
        freq=freq,
        interval=interval,
        byday=byday,
        bymonthday=bymonthday,
        exdates=exdates,
    )


class OccurrenceSequence:
    """Lazy, finite, restartable sequence of raw occurrence start instants.

    Each ``iter()`` re-runs the expansion from scratch, so two passes over the
    same sequence yield identical ordered instants.
    """

    def __init__(
        self,
        expander: RecurrenceExpander,
        rule: RecurrenceRule,
        anchor: datetime,
        window: TimeWindow,
        recurrence_end_at: Optional[datetime],
        timezone: str,
        duration: timedelta,
    ) -> None:
        self._expander = expander
        self.rule = rule
        self.anchor = anchor
        self.window = window
        self.recurrence_end_at = recurrence_end_at
        self.timezone = timezone
        self.duration = duration

    def __iter__(self) -> Iterator[datetime]:
        return self._expander._iter_occurrences(
            self.rule,
            self.anchor,
            self.window,
            self.recurrence_end_at,
            self.timezone,
            self.duration,
        )

    def to_list(self) -> list[datetime]:
        return list(self)


class RecurrenceExpander:
    """Expands a bounded recurrence rule from an anchor over a query window."""

    def __init__(self, max_occurrences: int = DEFAULT_MAX_OCCURRENCES):
        self.max_occurrences = max_occurrences

    def expand(
        self,
        rule: RecurrenceRule | str,
        anchor: datetime,
        window: TimeWindow,
        recurrence_end_at: Optional[datetime] = None,
        timezone: str = DEFAULT_TIMEZONE,
        duration: timedelta = timedelta(0),
    ) -> OccurrenceSequence:
        """Return the raw occurrence starts of ``rule`` intersecting ``window``.

        Args:
            rule: Parsed rule or rule string (parsed and validated here)
            anchor: First occurrence start (DTSTART)
            window: Mandatory half-open query window
            recurrence_end_at: Optional hard ceiling; starts after it are dropped
            timezone: Zone whose wall clock the rule steps in
            duration: Occurrence length; a start before the window still
                counts when ``start + duration`` reaches into the window

        Returns:
            OccurrenceSequence of UTC instants in ascending order. Empty when
            nothing matches.

        Raises:
            InvalidRule: If ``rule`` is a string that fails validation
            UnknownTimezone: If ``timezone`` is not recognized
            WindowTooLarge: While iterating, if more than ``max_occurrences``
                starts fall inside the window
        """
        if isinstance(rule, str):
            rule = parse_recurrence_rule(rule)
        # Unknown zones fail before iteration starts
        get_zone(timezone)
        return OccurrenceSequence(
            self,
            rule,
            ensure_utc(anchor),
            window,
            ensure_utc(recurrence_end_at) if recurrence_end_at is not None else None,
            timezone,
            duration,
        )

    def _build_rule_set(self, rule: RecurrenceRule, dtstart: datetime) -> rrule | rruleset:
        kwargs: dict[str, Any] = {"dtstart": dtstart, "interval": rule.interval}
        if rule.byday:
            kwargs["byweekday"] = [WEEKDAYS[d] for d in rule.byday]
        if rule.bymonthday is not None:
            kwargs["bymonthday"] = rule.bymonthday
        base = rrule(FREQUENCIES[rule.freq], **kwargs)

        if not rule.has_exdates:
            return base

        # EXDATE instants are removed through an rruleset
        rule_set = rruleset()
        rule_set.rrule(base)
        for exdate in rule.exdates:
            rule_set.exdate(exdate.astimezone(dtstart.tzinfo))
        return rule_set

    def _iter_occurrences(
        self,
        rule: RecurrenceRule,
        anchor: datetime,
        window: TimeWindow,
        recurrence_end_at: Optional[datetime],
        timezone: str,
        duration: timedelta,
    ) -> Iterator[datetime]:
        tz = get_zone(timezone)
        dtstart = anchor.astimezone(tz)
        rule_set = self._build_rule_set(rule, dtstart)

        lower = window.start - duration
        if recurrence_end_at is not None and recurrence_end_at < lower:
            return

        emitted = 0
        for occurrence in rule_set.xafter(lower.astimezone(tz), inc=True):
            occ_utc = occurrence.astimezone(UTC)
            if occ_utc >= window.end:
                break
            if recurrence_end_at is not None and occ_utc > recurrence_end_at:
                break
            if duration > timedelta(0):
                if occ_utc + duration <= window.start:
                    continue
            elif occ_utc < window.start:
                continue

            if emitted >= self.max_occurrences:
                logger.warning(
                    "Expansion exceeded %d occurrences (rule=%s, anchor=%s, window=[%s, %s))",
                    self.max_occurrences,
                    rule.freq,
                    anchor.isoformat(),
                    window.start.isoformat(),
                    window.end.isoformat(),
                )
                raise WindowTooLarge(
                    f"{rule.freq} rule anchored at {anchor.isoformat()}", self.max_occurrences
                )
            emitted += 1
            yield occ_utc

        logger.debug(
            "Expanded %s/%d rule over [%s, %s): %d occurrences",
            rule.freq,
            rule.interval,
            window.start.isoformat(),
            window.end.isoformat(),
            emitted,
        )


_default_expander = RecurrenceExpander()


def expand(
    rule: RecurrenceRule | str,
    anchor: datetime,
    window: TimeWindow,
    recurrence_end_at: Optional[datetime] = None,
    timezone: str = DEFAULT_TIMEZONE,
    duration: timedelta = timedelta(0),
) -> OccurrenceSequence:
    """Expand with the module-level default expander (convenience function)."""
    return _default_expander.expand(
        rule, anchor, window, recurrence_end_at=recurrence_end_at, timezone=timezone, duration=duration
    )
