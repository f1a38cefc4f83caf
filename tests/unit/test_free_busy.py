"""Unit tests for busy interval merging and free/busy aggregation."""

from datetime import datetime, timezone

import pytest

from suitecal.calendar.free_busy import FreeBusyAggregator, merge_busy_intervals
from suitecal.calendar.materializer import OccurrenceMaterializer
from suitecal.calendar.models import BusyInterval, TimeWindow
from suitecal.core.exceptions import WindowTooLarge

pytestmark = pytest.mark.unit


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 1, 1, hour, minute, tzinfo=timezone.utc)


def _pairs(busy: list[BusyInterval]) -> list[tuple[datetime, datetime]]:
    return [(b.start_at, b.end_at) for b in busy]


class TestMergeBusyIntervals:
    """Tests for the merge step."""

    def test_overlapping_intervals_merge(self):
        busy = merge_busy_intervals(
            [(_at(9), _at(10)), (_at(9, 30), _at(11)), (_at(14), _at(15))]
        )
        assert _pairs(busy) == [(_at(9), _at(11)), (_at(14), _at(15))]

    def test_touching_intervals_merge(self):
        assert _pairs(merge_busy_intervals([(_at(9), _at(10)), (_at(10), _at(11))])) == [
            (_at(9), _at(11))
        ]

    def test_contained_interval_is_absorbed(self):
        assert _pairs(merge_busy_intervals([(_at(9), _at(12)), (_at(10), _at(11))])) == [
            (_at(9), _at(12))
        ]

    def test_unsorted_input_is_sorted(self):
        busy = merge_busy_intervals([(_at(14), _at(15)), (_at(9), _at(10))])
        assert _pairs(busy) == [(_at(9), _at(10)), (_at(14), _at(15))]

    def test_empty_input(self):
        assert merge_busy_intervals([]) == []

    def test_result_is_disjoint(self):
        busy = merge_busy_intervals(
            [(_at(h), _at(h + 2)) for h in (8, 9, 13, 12, 16)]
        )
        for current, following in zip(busy, busy[1:]):
            assert current.end_at < following.start_at


class TestFreeBusyAggregator:
    """Tests for aggregation over calendars and attendees."""

    @pytest.fixture
    def window(self):
        return TimeWindow(start=_at(0), end=datetime(2024, 1, 2, tzinfo=timezone.utc))

    def test_busy_time_across_calendar_and_attendee(self, datastore, directory, make_series, window):
        datastore.insert_series(make_series())
        datastore.insert_series(
            make_series(id="bob-1", calendar_id="cal-bob", recurrence_rule=None,
                        start_at=_at(9, 30), end_at=_at(11), title="Bob's interview")
        )
        aggregator = FreeBusyAggregator(OccurrenceMaterializer(datastore), directory)

        busy = aggregator.compute_free_busy(window, ["cal-1"], ["Bob@Example.com"])

        assert _pairs(busy) == [(_at(9), _at(11))]

    def test_busy_intervals_carry_no_event_identity(self, datastore, directory, make_series, window):
        datastore.insert_series(make_series())
        aggregator = FreeBusyAggregator(OccurrenceMaterializer(datastore), directory)
        payload = [b.to_api_dict() for b in aggregator.compute_free_busy(window, ["cal-1"])]
        assert payload == [{"startAt": _at(9).isoformat(), "endAt": _at(10).isoformat()}]

    def test_unknown_attendee_contributes_nothing(self, datastore, directory, make_series, window):
        datastore.insert_series(make_series())
        aggregator = FreeBusyAggregator(OccurrenceMaterializer(datastore), directory)
        assert aggregator.compute_free_busy(window, [], ["nobody@example.com"]) == []

    def test_emails_are_ignored_without_directory(self, datastore, make_series, window):
        datastore.insert_series(make_series(calendar_id="cal-bob"))
        aggregator = FreeBusyAggregator(OccurrenceMaterializer(datastore))
        assert aggregator.resolve_calendars(["cal-1"], ["bob@example.com"]) == ["cal-1"]
        assert aggregator.compute_free_busy(window, [], ["bob@example.com"]) == []

    def test_resolved_calendars_are_deduplicated(self, datastore, directory):
        aggregator = FreeBusyAggregator(OccurrenceMaterializer(datastore), directory)
        assert aggregator.resolve_calendars(["cal-bob", "cal-1"], ["bob@example.com"]) == [
            "cal-bob",
            "cal-1",
        ]

    def test_oversized_window_fails_instead_of_reporting_free_time(self, datastore, make_series):
        """Four years of a daily series exceed the expansion limit."""
        datastore.insert_series(
            make_series(
                start_at=datetime(2020, 1, 1, 9, tzinfo=timezone.utc),
                end_at=datetime(2020, 1, 1, 10, tzinfo=timezone.utc),
            )
        )
        aggregator = FreeBusyAggregator(OccurrenceMaterializer(datastore))
        window = TimeWindow(
            start=datetime(2020, 1, 1, tzinfo=timezone.utc),
            end=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

        with pytest.raises(WindowTooLarge):
            aggregator.compute_free_busy(window, ["cal-1"])

    def test_long_window_under_the_limit_is_complete(self, datastore, make_series):
        datastore.insert_series(
            make_series(
                start_at=datetime(2020, 1, 1, 9, tzinfo=timezone.utc),
                end_at=datetime(2020, 1, 1, 10, tzinfo=timezone.utc),
                recurrence_rule="FREQ=WEEKLY",
            )
        )
        aggregator = FreeBusyAggregator(OccurrenceMaterializer(datastore))
        window = TimeWindow(
            start=datetime(2020, 1, 1, tzinfo=timezone.utc),
            end=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

        busy = aggregator.compute_free_busy(window, ["cal-1"])

        assert len(busy) == 209
        assert busy[-1].start_at == datetime(2023, 12, 27, 9, tzinfo=timezone.utc)
