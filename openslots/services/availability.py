"""
Application services for computing and booking open calendar time.

The service coordinates fetching events via a calendar client adapter and
delegates the grid arithmetic to the domain-level event matrix builder. This
keeps the CLI and HTTP layers thin and allows the calendar dependency to be
replaced by a stub through a simple protocol.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import List, Optional, Protocol, Sequence, Tuple

from ..domain.event_matrix import build_calendar
from ..domain.exceptions import SlotNotAvailableError
from ..domain.models import AvailabilityResult, CalendarEvent, TimeWindow
from ..domain.recurrence import DEFAULT_OCCURRENCE_CAP
from ..domain.slot_grid import SlotGrid, granularity_minutes

logger = logging.getLogger(__name__)


class CalendarClientProtocol(Protocol):
    """Protocol describing the calendar client behaviour needed by the service."""

    async def fetch_events(self, calendar: str, window: TimeWindow) -> List[CalendarEvent]:
        """Return the events of ``calendar`` intersecting ``window``."""

    async def create_event(self, calendar: str, name: str, window: TimeWindow) -> CalendarEvent:
        """Create an event named ``name`` spanning ``window``."""


class AvailabilityService:
    """
    Orchestrates event retrieval and availability-grid calculation.

    A slot is open iff some event of the availability calendar covers it and
    no event of the booked calendar does.
    """

    def __init__(
        self,
        calendar_client: CalendarClientProtocol,
        availability_calendar: str = "meeting_availability",
        booked_calendar: str = "meeting_booked",
        granularity: timedelta = timedelta(minutes=30),
        recurrence_cap: int = DEFAULT_OCCURRENCE_CAP,
        fetch_timeout: Optional[float] = None,
    ) -> None:
        self._calendar_client = calendar_client
        self.availability_calendar = availability_calendar
        self.booked_calendar = booked_calendar
        self.granularity = granularity
        self.recurrence_cap = recurrence_cap
        self.fetch_timeout = fetch_timeout

    async def compute_availability(
        self,
        *,
        availability_calendar: str,
        booked_calendar: str,
        window: TimeWindow,
        granularity: timedelta,
    ) -> SlotGrid:
        """
        Retrieve both calendars concurrently and combine them into one grid.
        """
        available_events, booked_events = await self.fetch_both(
            availability_calendar,
            booked_calendar,
            window,
        )
        logger.info(
            "Found %d availability event(s) and %d booked event(s)",
            len(available_events),
            len(booked_events),
        )

        available = self.calculate_grid(available_events, window, granularity)
        booked = self.calculate_grid(booked_events, window, granularity)

        return available.subtract_true(booked)

    async def fetch_both(
        self,
        first_calendar: str,
        second_calendar: str,
        window: TimeWindow,
    ) -> Tuple[List[CalendarEvent], List[CalendarEvent]]:
        """
        Fetch events for two calendars at once.

        If either fetch fails, or both together exceed ``fetch_timeout``, the
        other fetch is cancelled and awaited before the error propagates.
        """
        tasks = [
            asyncio.create_task(self._calendar_client.fetch_events(first_calendar, window)),
            asyncio.create_task(self._calendar_client.fetch_events(second_calendar, window)),
        ]
        try:
            async with asyncio.timeout(self.fetch_timeout):
                first, second = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return first, second

    async def calendar_availability(
        self,
        *,
        calendar: str,
        window: TimeWindow,
        granularity: timedelta,
    ) -> SlotGrid:
        """Grid of the time covered by any event in a single calendar."""
        async with asyncio.timeout(self.fetch_timeout):
            events = await self._calendar_client.fetch_events(calendar, window)

        logger.info("Found %d event(s) in %s", len(events), calendar)
        return self.calculate_grid(events, window, granularity)

    def calculate_grid(
        self,
        events: Sequence[CalendarEvent],
        window: TimeWindow,
        granularity: timedelta,
    ) -> SlotGrid:
        """Union of the per-event grids, in event order."""
        return build_calendar(events, window, granularity, cap=self.recurrence_cap)

    async def availability(self, window: TimeWindow) -> AvailabilityResult:
        """Open slots of the configured calendars at the configured granularity."""
        grid = await self.compute_availability(
            availability_calendar=self.availability_calendar,
            booked_calendar=self.booked_calendar,
            window=window,
            granularity=self.granularity,
        )
        return AvailabilityResult(
            start=window.start,
            end=window.end,
            granularity=self.granularity,
            matrix=grid.as_list(),
        )

    def covering_window(self, window: TimeWindow) -> TimeWindow:
        """Extend ``window`` to the end of the last slot it touches."""
        step = timedelta(minutes=granularity_minutes(self.granularity))
        span = timedelta(seconds=(window.end - window.start).total_seconds())
        count = -(-span // step)
        return TimeWindow(start=window.start, end=window.start + count * step)

    async def book(self, *, name: str, window: TimeWindow) -> CalendarEvent:
        """
        Book ``window`` on the booked calendar if all of it is open.

        Every slot the window touches is checked, including a trailing partial
        slot; the event itself spans exactly ``window``.

        Raises:
            InvalidWindowError: If the window is empty or inverted
            SlotNotAvailableError: If any slot of the window is closed; nothing is written
        """
        window.require_ordered()

        grid = await self.compute_availability(
            availability_calendar=self.availability_calendar,
            booked_calendar=self.booked_calendar,
            window=self.covering_window(window),
            granularity=self.granularity,
        )
        if not grid.is_fully_open():
            logger.info("Rejecting booking %r for %s: time not available", name, window)
            raise SlotNotAvailableError(window.start, window.end)

        event = await self._calendar_client.create_event(self.booked_calendar, name, window)
        logger.info("Booked %r for %s", name, window)
        return event
