"""
Tests for the event matrix builder.
"""

from datetime import timedelta

import pendulum
import pytest

from openslots.domain.event_matrix import build, build_calendar
from openslots.domain.exceptions import RecurrenceRuleError
from openslots.domain.models import CalendarEvent, TimeWindow

START = pendulum.parse("2024-01-01 00:00", tz="UTC")
HALF_HOUR = timedelta(minutes=30)


def _event(start, end, rrule=None, timezone=None) -> CalendarEvent:
    return CalendarEvent(anchor_start=start, anchor_end=end, recurrence_rule=rrule, timezone=timezone)


def _expected(length: int, *ranges) -> list:
    expected = [False] * length
    for first, last in ranges:
        expected[first:last] = [True] * (last - first)
    return expected


class TestBuild:
    """Tests for building one event's grid."""

    def test_single_event(self):
        """A one-hour event at hour 1 opens slots 2 and 3 of a day."""
        window = TimeWindow(start=START, end=START.add(days=1))
        event = _event(START.add(hours=1), START.add(hours=2))

        grid = build(event, window, HALF_HOUR)

        assert grid.as_list() == _expected(48, (2, 4))

    def test_daily_rule_over_one_day(self):
        window = TimeWindow(start=START, end=START.add(days=1))
        event = _event(START.add(hours=1), START.add(hours=2), "FREQ=DAILY")

        grid = build(event, window, HALF_HOUR)

        assert len(grid) == 48
        assert grid.as_list() == _expected(48, (2, 4))

    def test_daily_count_over_five_days(self):
        window = TimeWindow(start=START, end=START.add(days=5))
        event = _event(START.add(hours=1), START.add(hours=2), "FREQ=DAILY;COUNT=2")

        grid = build(event, window, HALF_HOUR)

        assert len(grid) == 240
        assert grid.as_list() == _expected(240, (2, 4), (50, 52))

    def test_window_not_aligned_to_the_hour(self):
        """Slot positions are relative to the window start, seconds included."""
        window_start = pendulum.parse("2024-01-01 10:17:42", tz="UTC")
        window = TimeWindow(start=window_start, end=window_start.add(days=5))
        event = _event(window_start.add(hours=1), window_start.add(hours=2), "FREQ=DAILY;COUNT=2")

        grid = build(event, window, HALF_HOUR)

        assert grid.as_list() == _expected(240, (2, 4), (50, 52))

    def test_occurrence_straddling_window_start(self):
        """An occurrence that began before the window still covers its tail."""
        window = TimeWindow(start=START.add(days=1, hours=1, minutes=30), end=START.add(days=2))
        event = _event(START.add(hours=1), START.add(hours=3), "FREQ=DAILY")

        grid = build(event, window, HALF_HOUR)

        assert grid.as_list()[:4] == [True, True, True, False]

    def test_series_anchored_before_window(self):
        window = TimeWindow(start=START, end=START.add(days=1))
        event = _event(
            START.subtract(weeks=3).add(hours=9),
            START.subtract(weeks=3).add(hours=10),
            "FREQ=WEEKLY",
        )

        grid = build(event, window, HALF_HOUR)

        assert grid.as_list() == _expected(48, (18, 20))

    def test_inverted_window_returns_empty_grid(self):
        window = TimeWindow(start=START.add(days=1), end=START)
        event = _event(START.add(hours=1), START.add(hours=2), "FREQ=DAILY")

        grid = build(event, window, HALF_HOUR)

        assert grid.as_list() == []

    def test_empty_window(self):
        window = TimeWindow(start=START, end=START)
        event = _event(START, START.add(hours=2))

        assert build(event, window, HALF_HOUR).as_list() == []

    def test_degenerate_recurring_event_contributes_nothing(self):
        window = TimeWindow(start=START, end=START.add(days=2))
        event = _event(START.add(hours=2), START.add(hours=1), "FREQ=DAILY")

        assert not any(build(event, window, HALF_HOUR).slots)

    def test_degenerate_single_event_contributes_nothing(self):
        window = TimeWindow(start=START, end=START.add(days=1))
        event = _event(START.add(hours=2), START.add(hours=2))

        assert not any(build(event, window, HALF_HOUR).slots)

    def test_malformed_rule_propagates(self):
        window = TimeWindow(start=START, end=START.add(days=1))
        event = _event(START.add(hours=1), START.add(hours=2), "FREQ=NEVER")

        with pytest.raises(RecurrenceRuleError):
            build(event, window, HALF_HOUR)

    def test_event_timezone_drives_recurrence(self):
        """Weekday mornings in New York land at 13:00Z after the March DST switch."""
        anchor = pendulum.parse("2024-03-08 09:00", tz="America/New_York")
        window = TimeWindow(
            start=pendulum.parse("2024-03-11 00:00", tz="UTC"),
            end=pendulum.parse("2024-03-12 00:00", tz="UTC"),
        )
        event = _event(
            anchor.in_timezone("UTC"),
            anchor.add(hours=1).in_timezone("UTC"),
            "FREQ=WEEKLY;BYDAY=MO,FR",
            timezone="America/New_York",
        )

        grid = build(event, window, HALF_HOUR)

        assert grid.as_list() == _expected(48, (26, 28))


class TestBuildCalendar:
    """Tests for folding many events into one grid."""

    def test_union_of_events(self):
        window = TimeWindow(start=START, end=START.add(days=1))
        events = [
            _event(START.add(hours=1), START.add(hours=2)),
            _event(START.add(hours=1, minutes=30), START.add(hours=3)),
            _event(START.add(hours=20), START.add(hours=21), "FREQ=DAILY"),
        ]

        grid = build_calendar(events, window, HALF_HOUR)

        assert grid.as_list() == _expected(48, (2, 6), (40, 42))

    def test_order_does_not_matter(self):
        window = TimeWindow(start=START, end=START.add(days=2))
        events = [
            _event(START.add(hours=1), START.add(hours=2), "FREQ=DAILY;COUNT=2"),
            _event(START.add(hours=5), START.add(hours=9)),
            _event(START.add(hours=30), START.add(hours=31)),
        ]

        forward = build_calendar(events, window, HALF_HOUR)
        backward = build_calendar(list(reversed(events)), window, HALF_HOUR)

        assert forward == backward

    def test_no_events_is_all_closed(self):
        window = TimeWindow(start=START, end=START.add(days=1))

        grid = build_calendar([], window, HALF_HOUR)

        assert grid.as_list() == [False] * 48
