"""Unit tests for reminder triggers and at-most-once dispatch."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from suitecal.calendar.models import Attendee, EventStatus, PendingReminder, Reminder, TimeWindow
from suitecal.core.exceptions import StoreUnavailable
from suitecal.reminders.scheduler import (
    ReminderScheduler,
    build_notification,
    compute_trigger_at,
    dispatch_loop,
    resolve_recipients,
    run_tick_async,
)
from suitecal.store.collaborators import RecordingNotifier

pytestmark = pytest.mark.unit


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class StaleFetchDatastore:
    """Wraps a datastore so fetches return a snapshot taken earlier.

    Models a tick whose fetch happened before another tick marked the reminders.
    """

    def __init__(self, inner, snapshot):
        self._inner = inner
        self._snapshot = snapshot

    def fetch_pending_reminders(self, window):
        return list(self._snapshot)

    def update_reminder_dispatched_conditional(self, reminder_id, dispatched_at):
        return self._inner.update_reminder_dispatched_conditional(reminder_id, dispatched_at)



class FlakyMarkDatastore:
    """Wraps a datastore so the Nth conditional mark raises StoreUnavailable."""

    def __init__(self, inner, fail_on_call):
        self._inner = inner
        self._fail_on_call = fail_on_call
        self.mark_calls = 0

    def fetch_pending_reminders(self, window):
        return self._inner.fetch_pending_reminders(window)

    def update_reminder_dispatched_conditional(self, reminder_id, dispatched_at):
        self.mark_calls += 1
        if self.mark_calls == self._fail_on_call:
            raise StoreUnavailable("connection reset")
        return self._inner.update_reminder_dispatched_conditional(reminder_id, dispatched_at)

@pytest.fixture
def meeting(make_series):
    """Standalone meeting 2024-01-15 09:00-10:00 UTC with two attendees."""
    return make_series(
        id="meeting-1",
        recurrence_rule=None,
        title="Design review",
        start_at=_utc(2024, 1, 15, 9),
        end_at=_utc(2024, 1, 15, 10),
        attendees=[
            Attendee(user_id="user-2"),
            Attendee(user_id="user-1"),
            Attendee(email="guest@external.example"),
        ],
    )


@pytest.fixture
def stored_meeting(datastore, meeting):
    datastore.insert_series(meeting, [Reminder(id="rem-1", event_id="meeting-1", minutes_before=10)])
    return meeting


@pytest.fixture
def scheduler(datastore, notifier):
    return ReminderScheduler(datastore, notifier, lookahead_minutes=5)


class TestComputeTriggerAt:
    """Tests for trigger instant computation."""

    def test_timed_event(self, meeting):
        assert compute_trigger_at(meeting, 10) == _utc(2024, 1, 15, 8, 50)

    def test_negative_minutes_fire_after_start(self, meeting):
        assert compute_trigger_at(meeting, -15) == _utc(2024, 1, 15, 9, 15)

    def test_all_day_event_fires_at_local_morning(self, make_series):
        """All-day March 10 in New York (EDT after 02:00) fires 09:00 EDT = 13:00Z."""
        holiday = make_series(
            recurrence_rule=None,
            all_day=True,
            timezone="America/New_York",
            start_at=_utc(2024, 3, 10, 5),
            end_at=_utc(2024, 3, 11, 3, 59, 59),
        )
        assert compute_trigger_at(holiday, 10) == _utc(2024, 3, 10, 13)
        assert compute_trigger_at(holiday, 10, all_day_hour=7) == _utc(2024, 3, 10, 11)


class TestRecipientsAndPayload:
    def test_creator_first_then_attendees_deduplicated(self, meeting):
        assert resolve_recipients(meeting) == ["user-1", "user-2"]

    def test_payload_shape(self, meeting):
        payload = build_notification(
            PendingReminder(reminder=Reminder(id="rem-1", event_id="meeting-1"), event=meeting)
        )
        assert payload.type == "calendar_reminder"
        assert payload.title == "Reminder: Design review"
        assert payload.body == "Starts at 2024-01-15T09:00:00+00:00"
        assert payload.data == {"eventId": "meeting-1", "calendarId": "cal-1", "reminderId": "rem-1"}


class TestRunDispatchTick:
    """Tests for a single dispatch pass."""

    def test_due_reminder_is_dispatched_once(self, datastore, notifier, scheduler, stored_meeting):
        report = scheduler.run_dispatch_tick(_utc(2024, 1, 15, 8, 46))

        assert report.selected == 1
        assert report.dispatched == 1
        assert report.reminder_ids == ["rem-1"]
        assert sorted(notifier.recipients()) == ["user-1", "user-2"]
        assert datastore.get_reminder("rem-1").dispatched_at == _utc(2024, 1, 15, 8, 46)

        second = scheduler.run_dispatch_tick(_utc(2024, 1, 15, 8, 47))
        assert second.selected == 0
        assert len(notifier.sent) == 2

    def test_trigger_at_lookahead_edge_is_included(self, scheduler, stored_meeting):
        assert scheduler.run_dispatch_tick(_utc(2024, 1, 15, 8, 45)).dispatched == 1

    def test_trigger_equal_to_now_is_excluded(self, scheduler, stored_meeting):
        assert scheduler.run_dispatch_tick(_utc(2024, 1, 15, 8, 50)).selected == 0

    def test_reminder_not_yet_due(self, scheduler, stored_meeting):
        assert scheduler.run_dispatch_tick(_utc(2024, 1, 15, 8, 30)).selected == 0

    def test_trashed_event_is_never_dispatched(self, datastore, notifier, scheduler, stored_meeting):
        datastore.update_series(stored_meeting.model_copy(update={"trashed_at": _utc(2024, 1, 14)}))
        assert scheduler.run_dispatch_tick(_utc(2024, 1, 15, 8, 46)).selected == 0
        assert notifier.sent == []

    def test_overlapping_ticks_transition_only_once(self, datastore, stored_meeting):
        now = _utc(2024, 1, 15, 8, 46)
        stale_snapshot = datastore.fetch_pending_reminders(
            TimeWindow(start=now, end=now + timedelta(minutes=5))
        )

        first_notifier = RecordingNotifier()
        second_notifier = RecordingNotifier()
        first = ReminderScheduler(datastore, first_notifier)
        second = ReminderScheduler(StaleFetchDatastore(datastore, stale_snapshot), second_notifier)

        first_report = first.run_dispatch_tick(now)
        second_report = second.run_dispatch_tick(now + timedelta(seconds=1))

        assert first_report.dispatched == 1
        assert second_report.selected == 1
        assert second_report.dispatched == 0
        assert second_report.lost == 1
        # Both ticks notified: delivery is at-least-once, the transition at-most-once
        assert len(first_notifier.sent) == len(second_notifier.sent) == 2
        assert datastore.get_reminder("rem-1").dispatched_at == now

    def test_notifier_failure_does_not_block_other_recipients(self, datastore, stored_meeting):
        notifier = RecordingNotifier(fail_for=["user-1"])
        report = ReminderScheduler(datastore, notifier).run_dispatch_tick(_utc(2024, 1, 15, 8, 46))

        assert report.notification_failures == 1
        assert report.dispatched == 1
        assert notifier.recipients() == ["user-2"]

    def test_store_outage_propagates_then_recovers(self, datastore, notifier, scheduler, stored_meeting):
        datastore.set_available(False)
        with pytest.raises(StoreUnavailable):
            scheduler.run_dispatch_tick(_utc(2024, 1, 15, 8, 46))
        assert notifier.sent == []

        datastore.set_available(True)
        assert scheduler.run_dispatch_tick(_utc(2024, 1, 15, 8, 47)).dispatched == 1

    def test_store_outage_while_marking_aborts_rest_of_batch(self, datastore, notifier, meeting):
        datastore.insert_series(
            meeting,
            [
                Reminder(id="rem-1", event_id="meeting-1", minutes_before=10),
                Reminder(id="rem-2", event_id="meeting-1", minutes_before=11),
                Reminder(id="rem-3", event_id="meeting-1", minutes_before=12),
            ],
        )
        flaky = FlakyMarkDatastore(datastore, fail_on_call=2)

        with pytest.raises(StoreUnavailable):
            ReminderScheduler(flaky, notifier).run_dispatch_tick(_utc(2024, 1, 15, 8, 46))

        assert flaky.mark_calls == 2
        assert datastore.get_reminder("rem-1").dispatched_at == _utc(2024, 1, 15, 8, 46)
        assert datastore.get_reminder("rem-2").dispatched_at is None
        assert datastore.get_reminder("rem-3").dispatched_at is None

        report = ReminderScheduler(datastore, notifier).run_dispatch_tick(_utc(2024, 1, 15, 8, 47))

        assert report.selected == 2
        assert sorted(report.reminder_ids) == ["rem-2", "rem-3"]
        assert all(datastore.get_reminder(r).dispatched_at is not None for r in ("rem-1", "rem-2", "rem-3"))

    def test_cancelled_event_is_never_dispatched(self, datastore, notifier, scheduler, stored_meeting):
        datastore.update_series(stored_meeting.model_copy(update={"status": EventStatus.CANCELED}))
        assert scheduler.run_dispatch_tick(_utc(2024, 1, 15, 8, 46)).selected == 0
        assert notifier.sent == []

    def test_default_now_comes_from_time_provider(self, datastore, notifier, stored_meeting):
        scheduler = ReminderScheduler(datastore, notifier, time_provider=lambda: _utc(2024, 1, 15, 8, 46))
        report = scheduler.run_dispatch_tick()
        assert report.started_at == _utc(2024, 1, 15, 8, 46)
        assert scheduler.last_report is report

    def test_report_dict_is_camel_case(self, scheduler, stored_meeting):
        data = scheduler.run_dispatch_tick(_utc(2024, 1, 15, 8, 46)).to_dict()
        assert data == {
            "startedAt": "2024-01-15T08:46:00+00:00",
            "selected": 1,
            "dispatched": 1,
            "lost": 0,
            "notificationFailures": 0,
        }


class TestAsyncDispatch:
    """Tests for the background loop helpers."""

    async def test_run_tick_async_swallows_store_outage(self, datastore, scheduler, stored_meeting):
        datastore.set_available(False)
        assert await run_tick_async(scheduler) is None

    async def test_dispatch_loop_runs_until_stopped(self, datastore, notifier, stored_meeting):
        scheduler = ReminderScheduler(datastore, notifier, time_provider=lambda: _utc(2024, 1, 15, 8, 46))
        stop_event = asyncio.Event()

        task = asyncio.create_task(dispatch_loop(scheduler, 3600, stop_event))
        for _ in range(100):
            if scheduler.last_report is not None:
                break
            await asyncio.sleep(0.01)
        stop_event.set()
        await asyncio.wait_for(task, timeout=5)

        assert scheduler.last_report.dispatched == 1
        assert task.done()
