"""
In-memory calendar client for running without a CalDAV server.
"""

import uuid
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pendulum
import yaml

from ..domain.exceptions import CalendarNotFoundError, EventParseError
from ..domain.models import CalendarEvent, TimeWindow


class MockCalendarClient:
    """
    Calendar client backed by a dict of calendar name -> events.

    Events can be loaded from a YAML file of the form::

        meeting_availability:
          - start: "2024-11-25T09:00:00Z"
            end: "2024-11-25T17:00:00Z"
            rrule: "FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR"
            timezone: Europe/Berlin
        meeting_booked: []
    """

    def __init__(self, calendars: Optional[Dict[str, Iterable[CalendarEvent]]] = None):
        self.calendars: Dict[str, List[CalendarEvent]] = {
            name: list(events) for name, events in (calendars or {}).items()
        }
        self.created: List[CalendarEvent] = []

    @classmethod
    def load_from_file(cls, data_file: Path) -> "MockCalendarClient":
        """
        Load calendar events from a YAML file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            EventParseError: If an entry lacks a start or end
        """
        if not data_file.exists():
            raise FileNotFoundError(f"Mock calendar data not found: {data_file}")

        with open(data_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError("Mock calendar data must map calendar names to event lists.")

        return cls({
            name: [_event_from_entry(entry) for entry in entries or []]
            for name, entries in data.items()
        })

    def _events(self, calendar: str) -> List[CalendarEvent]:
        if calendar not in self.calendars:
            raise CalendarNotFoundError(calendar)
        return self.calendars[calendar]

    def get_events(self, calendar: str, window: TimeWindow) -> List[CalendarEvent]:
        """Events that could intersect the window; recurring series are always included once started."""
        return [
            event for event in self._events(calendar)
            if event.anchor_start < window.end
            and (event.is_recurring() or event.anchor_end > window.start)
        ]

    def put_event(self, calendar: str, name: str, window: TimeWindow) -> CalendarEvent:
        event = CalendarEvent(
            anchor_start=window.start,
            anchor_end=window.end,
            timezone="UTC",
            uid=uuid.uuid4().hex,
            summary=name,
        )
        self._events(calendar).append(event)
        self.created.append(event)
        return event

    async def fetch_events(self, calendar: str, window: TimeWindow) -> List[CalendarEvent]:
        return self.get_events(calendar, window)

    async def create_event(self, calendar: str, name: str, window: TimeWindow) -> CalendarEvent:
        return self.put_event(calendar, name, window)


def _event_from_entry(entry: dict) -> CalendarEvent:
    try:
        timezone = entry.get("timezone", "UTC")
        start = pendulum.parse(str(entry["start"]), tz=timezone).in_timezone("UTC")
        end = pendulum.parse(str(entry["end"]), tz=timezone).in_timezone("UTC")
    except (KeyError, ValueError) as e:
        raise EventParseError(f"Invalid mock event {entry!r}: {e}") from e

    return CalendarEvent(
        anchor_start=start,
        anchor_end=end,
        recurrence_rule=entry.get("rrule"),
        timezone=timezone,
        uid=entry.get("uid"),
        summary=entry.get("summary"),
    )
