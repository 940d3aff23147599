"""
Tests for the AvailabilityService orchestration layer.
"""

import asyncio
from datetime import timedelta
from typing import Dict, List

import pendulum
import pytest

from openslots.domain.exceptions import (
    InvalidWindowError,
    RecurrenceRuleError,
    SlotNotAvailableError,
    TransportError,
)
from openslots.domain.models import CalendarEvent, TimeWindow
from openslots.services.availability import AvailabilityService

START = pendulum.parse("2024-01-01 00:00", tz="UTC")
HALF_HOUR = timedelta(minutes=30)


class StubCalendarClient:
    """Minimal stub matching CalendarClientProtocol."""

    def __init__(self, calendars: Dict[str, List[CalendarEvent]]):
        self._calendars = calendars
        self.calls: List[str] = []
        self.created: List[CalendarEvent] = []

    async def fetch_events(self, calendar, window):
        self.calls.append(calendar)
        return list(self._calendars.get(calendar, []))

    async def create_event(self, calendar, name, window):
        event = CalendarEvent(anchor_start=window.start, anchor_end=window.end, uid="new", summary=name)
        self._calendars.setdefault(calendar, []).append(event)
        self.created.append(event)
        return event


def _event(start, end, rrule=None) -> CalendarEvent:
    return CalendarEvent(anchor_start=start, anchor_end=end, recurrence_rule=rrule)


def _calendars() -> Dict[str, List[CalendarEvent]]:
    return {
        "meeting_availability": [
            _event(START.add(hours=1), START.add(hours=2), "FREQ=DAILY;COUNT=2"),
        ],
        "meeting_booked": [
            _event(START.add(hours=1), START.add(hours=1, minutes=30)),
        ],
    }


def _build_service(client) -> AvailabilityService:
    return AvailabilityService(calendar_client=client, granularity=HALF_HOUR)


def test_booked_time_is_removed_from_availability():
    """End-to-end call should subtract the booked grid from the available one."""
    client = StubCalendarClient(_calendars())
    service = _build_service(client)
    window = TimeWindow(start=START, end=START.add(days=2))

    grid = asyncio.run(
        service.compute_availability(
            availability_calendar="meeting_availability",
            booked_calendar="meeting_booked",
            window=window,
            granularity=HALF_HOUR,
        )
    )

    assert len(grid) == 96
    assert grid[2] is False
    assert grid[3] is True
    assert grid[50] is True
    assert grid[51] is True
    assert sum(grid.slots) == 3
    assert sorted(client.calls) == ["meeting_availability", "meeting_booked"]


def test_availability_result_uses_configured_calendars():
    service = _build_service(StubCalendarClient(_calendars()))
    window = TimeWindow(start=START, end=START.add(days=1))

    result = asyncio.run(service.availability(window))

    assert result.start == START
    assert result.granularity_seconds == 1800
    assert len(result.matrix) == 48
    assert [index for index, is_open in enumerate(result.matrix) if is_open] == [3]


def test_calendar_availability_reads_one_calendar():
    client = StubCalendarClient(_calendars())
    service = _build_service(client)
    window = TimeWindow(start=START, end=START.add(days=1))

    grid = asyncio.run(
        service.calendar_availability(calendar="meeting_booked", window=window, granularity=HALF_HOUR)
    )

    assert [index for index, is_open in enumerate(grid.slots) if is_open] == [2]
    assert client.calls == ["meeting_booked"]


def test_fetches_run_concurrently():
    """Both fetches must be in flight at the same time for either to finish."""

    class BarrierClient(StubCalendarClient):
        def __init__(self):
            super().__init__(_calendars())
            self.started = 0
            self.both_started = None

        async def fetch_events(self, calendar, window):
            if self.both_started is None:
                self.both_started = asyncio.Event()
            self.started += 1
            if self.started == 2:
                self.both_started.set()
            await self.both_started.wait()
            return await super().fetch_events(calendar, window)

    service = AvailabilityService(calendar_client=BarrierClient(), granularity=HALF_HOUR, fetch_timeout=1)
    window = TimeWindow(start=START, end=START.add(days=1))

    first, second = asyncio.run(service.fetch_both("meeting_availability", "meeting_booked", window))

    assert len(first) == 1
    assert len(second) == 1


def test_failed_fetch_cancels_the_other():
    cancelled = []

    class FailingClient(StubCalendarClient):
        async def fetch_events(self, calendar, window):
            if calendar == "meeting_booked":
                raise TransportError("server unreachable")
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(calendar)
                raise
            return []

    service = _build_service(FailingClient({}))
    window = TimeWindow(start=START, end=START.add(days=1))

    async def run():
        with pytest.raises(TransportError):
            await service.fetch_both("meeting_availability", "meeting_booked", window)
        # Checked before the event loop shuts down and cancels leftovers.
        pending = [task for task in asyncio.all_tasks() if task is not asyncio.current_task()]
        return list(cancelled), pending

    cancelled_in_loop, pending = asyncio.run(run())

    assert cancelled_in_loop == ["meeting_availability"]
    assert pending == []


def test_both_fetches_failing_raises_first_error():
    class BrokenClient(StubCalendarClient):
        async def fetch_events(self, calendar, window):
            await asyncio.sleep(0.01 if calendar == "meeting_booked" else 0)
            raise TransportError(f"{calendar} unreachable")

    service = _build_service(BrokenClient({}))
    window = TimeWindow(start=START, end=START.add(days=1))

    async def run():
        with pytest.raises(TransportError, match="meeting_availability"):
            await service.fetch_both("meeting_availability", "meeting_booked", window)
        return [task for task in asyncio.all_tasks() if task is not asyncio.current_task()]

    assert asyncio.run(run()) == []


def test_fetch_timeout():
    class SlowClient(StubCalendarClient):
        async def fetch_events(self, calendar, window):
            await asyncio.sleep(5)
            return []

    service = AvailabilityService(calendar_client=SlowClient({}), granularity=HALF_HOUR, fetch_timeout=0.05)
    window = TimeWindow(start=START, end=START.add(days=1))

    with pytest.raises(TimeoutError):
        asyncio.run(service.availability(window))


def test_bad_rule_propagates():
    calendars = _calendars()
    calendars["meeting_availability"].append(
        _event(START.add(hours=5), START.add(hours=6), "FREQ=FORTNIGHTLY")
    )
    service = _build_service(StubCalendarClient(calendars))

    with pytest.raises(RecurrenceRuleError):
        asyncio.run(service.availability(TimeWindow(start=START, end=START.add(days=1))))


class TestBook:
    """Tests for booking open time."""

    def test_books_open_slot(self):
        client = StubCalendarClient(_calendars())
        service = _build_service(client)
        window = TimeWindow(start=START.add(hours=1, minutes=30), end=START.add(hours=2))

        event = asyncio.run(service.book(name="Intro call", window=window))

        assert event.summary == "Intro call"
        assert client.created == [event]
        assert event in client._calendars["meeting_booked"]

    def test_booked_slot_is_not_available_afterwards(self):
        client = StubCalendarClient(_calendars())
        service = _build_service(client)
        window = TimeWindow(start=START.add(hours=1, minutes=30), end=START.add(hours=2))

        asyncio.run(service.book(name="Intro call", window=window))

        with pytest.raises(SlotNotAvailableError):
            asyncio.run(service.book(name="Second call", window=window))
        assert len(client.created) == 1

    def test_conflict_writes_nothing(self):
        client = StubCalendarClient(_calendars())
        service = _build_service(client)
        window = TimeWindow(start=START.add(hours=1), end=START.add(hours=2))

        with pytest.raises(SlotNotAvailableError):
            asyncio.run(service.book(name="Intro call", window=window))

        assert client.created == []

    def test_time_outside_availability_is_rejected(self):
        client = StubCalendarClient(_calendars())
        service = _build_service(client)
        window = TimeWindow(start=START.add(hours=10), end=START.add(hours=11))

        with pytest.raises(SlotNotAvailableError):
            asyncio.run(service.book(name="Intro call", window=window))

    def test_inverted_window_is_invalid(self):
        client = StubCalendarClient(_calendars())
        service = _build_service(client)
        window = TimeWindow(start=START.add(hours=2), end=START.add(hours=1))

        with pytest.raises(InvalidWindowError):
            asyncio.run(service.book(name="Intro call", window=window))

        assert client.calls == []

    def test_window_shorter_than_a_slot_checks_the_whole_slot(self):
        client = StubCalendarClient(_calendars())
        service = _build_service(client)
        open_slot = TimeWindow(start=START.add(hours=1, minutes=30), end=START.add(hours=1, minutes=45))
        booked_slot = TimeWindow(start=START.add(hours=1), end=START.add(hours=1, minutes=15))

        event = asyncio.run(service.book(name="Quick sync", window=open_slot))
        assert event.anchor_end == open_slot.end

        with pytest.raises(SlotNotAvailableError):
            asyncio.run(service.book(name="Another sync", window=booked_slot))
        assert len(client.created) == 1

    def test_partial_trailing_slot_is_checked(self):
        """A booking ending mid-slot must not overlap time booked later in that slot."""
        client = StubCalendarClient({
            "meeting_availability": [_event(START.add(hours=1), START.add(hours=3))],
            "meeting_booked": [_event(START.add(hours=1, minutes=30), START.add(hours=2))],
        })
        service = _build_service(client)
        window = TimeWindow(start=START.add(hours=1), end=START.add(hours=1, minutes=45))

        with pytest.raises(SlotNotAvailableError):
            asyncio.run(service.book(name="Intro call", window=window))

        assert client.created == []

    def test_partial_trailing_slot_outside_availability(self):
        client = StubCalendarClient({
            "meeting_availability": [_event(START.add(hours=1), START.add(hours=1, minutes=45))],
            "meeting_booked": [],
        })
        service = _build_service(client)
        window = TimeWindow(start=START.add(hours=1), end=START.add(hours=1, minutes=45))

        with pytest.raises(SlotNotAvailableError):
            asyncio.run(service.book(name="Intro call", window=window))

    def test_covering_window(self):
        service = _build_service(StubCalendarClient({}))
        window = TimeWindow(start=START.add(minutes=10), end=START.add(minutes=75))

        covering = service.covering_window(window)

        assert covering.start == window.start
        assert covering.end == START.add(minutes=100)
