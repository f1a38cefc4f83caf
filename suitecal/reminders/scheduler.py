"""Reminder trigger computation and at-most-once dispatch.

A reminder is PENDING until ``dispatched_at`` is set and DISPATCHED forever
after. Each dispatch tick selects PENDING reminders whose trigger instant
falls in ``(now, now + lookahead]``, notifies every recipient and then tries a
conditional write that only succeeds while the reminder is still PENDING. Two
overlapping ticks may both notify (at-least-once delivery) but only one of
them transitions the reminder.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from ..calendar.models import PendingReminder, ReminderNotification, SeriesRoot, TimeWindow
from ..core.exceptions import DispatchLost, StoreUnavailable, UnknownTimezone
from ..core.timezone_utils import local_date_of, now_utc, to_utc_instant
from ..store.protocols import Datastore, Notifier

logger = logging.getLogger(__name__)

DEFAULT_LOOKAHEAD_MINUTES = 5
DEFAULT_ALL_DAY_HOUR = 9


def compute_trigger_at(
    event: SeriesRoot, minutes_before: int, all_day_hour: int = DEFAULT_ALL_DAY_HOUR
) -> datetime:
    """Compute when a reminder for ``event`` should fire.

    Timed events fire ``minutes_before`` minutes before the start (after it
    when negative). All-day events fire at ``all_day_hour``:00 local time on
    the local date of the start, whatever ``minutes_before`` says.

    Raises:
        UnknownTimezone: If an all-day event carries an unknown zone
    """
    if event.all_day:
        day = local_date_of(event.start_at, event.timezone)
        return to_utc_instant(event.timezone, day.year, day.month, day.day, all_day_hour, 0)
    return event.start_at - timedelta(minutes=minutes_before)


def resolve_recipients(event: SeriesRoot) -> list[str]:
    """Event creator first, then attendees with a resolved identity, deduplicated."""
    recipients = [event.created_by] if event.created_by else []
    for attendee in event.attendees:
        if attendee.user_id and attendee.user_id not in recipients:
            recipients.append(attendee.user_id)
    return recipients


def build_notification(pending: PendingReminder) -> ReminderNotification:
    event = pending.event
    return ReminderNotification(
        title=f"Reminder: {event.title}",
        body=f"Starts at {event.start_at.isoformat()}",
        data={
            "eventId": event.id,
            "calendarId": event.calendar_id,
            "reminderId": pending.reminder.id,
        },
    )


@dataclass
class DispatchReport:
    """Outcome of one dispatch tick."""

    started_at: datetime
    selected: int = 0
    dispatched: int = 0
    lost: int = 0
    notification_failures: int = 0
    reminder_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "startedAt": self.started_at.isoformat(),
            "selected": self.selected,
            "dispatched": self.dispatched,
            "lost": self.lost,
            "notificationFailures": self.notification_failures,
        }


class ReminderScheduler:
    """Runs dispatch ticks against a Datastore and a Notifier."""

    def __init__(
        self,
        datastore: Datastore,
        notifier: Notifier,
        lookahead_minutes: int = DEFAULT_LOOKAHEAD_MINUTES,
        all_day_hour: int = DEFAULT_ALL_DAY_HOUR,
        time_provider: Callable[[], datetime] = now_utc,
    ) -> None:
        self.datastore = datastore
        self.notifier = notifier
        self.lookahead = timedelta(minutes=lookahead_minutes)
        self.all_day_hour = all_day_hour
        self.time_provider = time_provider
        self.last_report: Optional[DispatchReport] = None

    def is_due(self, pending: PendingReminder, now: datetime) -> bool:
        """True if the reminder triggers in ``(now, now + lookahead]``."""
        trigger_at = compute_trigger_at(
            pending.event, pending.reminder.minutes_before, self.all_day_hour
        )
        return now < trigger_at <= now + self.lookahead

    def run_dispatch_tick(self, now: Optional[datetime] = None) -> DispatchReport:
        """Run one dispatch pass.

        Args:
            now: Reference time; defaults to the time provider

        Returns:
            DispatchReport for this tick

        Raises:
            StoreUnavailable: If the Datastore is unreachable. Raised before
                any reminder is touched when the fetch fails; a failure while
                marking aborts the remaining batch, leaving unmarked
                reminders PENDING for the next tick.
        """
        now = now or self.time_provider()
        report = DispatchReport(started_at=now)
        window = TimeWindow(start=now, end=now + self.lookahead)

        # Trashed and cancelled events and dispatched reminders are filtered by the store
        candidates = self.datastore.fetch_pending_reminders(window)
        due = [p for p in candidates if p.reminder.dispatched_at is None and self._safe_is_due(p, now)]
        report.selected = len(due)

        for pending in due:
            report.notification_failures += self._notify_recipients(pending)
            try:
                self._mark_dispatched(pending, now)
            except DispatchLost as e:
                logger.info("%s; skipping", e)
                report.lost += 1
                continue
            report.dispatched += 1
            report.reminder_ids.append(pending.reminder.id)

        if report.selected:
            logger.info(
                "Dispatch tick: %d due, %d dispatched, %d lost, %d notification failures",
                report.selected,
                report.dispatched,
                report.lost,
                report.notification_failures,
            )
        else:
            logger.debug("Dispatch tick: nothing due in (%s, %s]", now.isoformat(), window.end.isoformat())

        self.last_report = report
        return report

    def _safe_is_due(self, pending: PendingReminder, now: datetime) -> bool:
        try:
            return self.is_due(pending, now)
        except UnknownTimezone as e:
            logger.warning("Could not compute trigger for reminder %s: %s", pending.reminder.id, e)
            return False

    def _notify_recipients(self, pending: PendingReminder) -> int:
        payload = build_notification(pending)
        failures = 0
        for user_id in resolve_recipients(pending.event):
            try:
                self.notifier.send_reminder_notification(user_id, payload)
            except Exception as e:
                failures += 1
                logger.warning(
                    "Notification for reminder %s to %s failed: %s",
                    pending.reminder.id,
                    user_id,
                    e,
                )
        return failures

    def _mark_dispatched(self, pending: PendingReminder, now: datetime) -> None:
        reminder_id = pending.reminder.id
        if not self.datastore.update_reminder_dispatched_conditional(reminder_id, now):
            raise DispatchLost(reminder_id)


async def run_tick_async(scheduler: ReminderScheduler) -> Optional[DispatchReport]:
    """Run one tick in a worker thread, logging instead of raising."""
    try:
        return await asyncio.to_thread(scheduler.run_dispatch_tick)
    except StoreUnavailable as e:
        logger.warning("Datastore unavailable, dispatch tick skipped: %s", e)
    except Exception:
        logger.exception("Dispatch tick failed")
    return None


async def dispatch_loop(
    scheduler: ReminderScheduler,
    interval_seconds: int,
    stop_event: asyncio.Event,
) -> None:
    """Run dispatch ticks until ``stop_event`` is set.

    One tick runs immediately, then one every ``interval_seconds``.
    """
    logger.debug("Reminder dispatch loop started (interval=%ds)", interval_seconds)
    while not stop_event.is_set():
        await run_tick_async(scheduler)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue
    logger.debug("Reminder dispatch loop stopped")
