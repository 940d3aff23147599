"""
Parse iCalendar ``calendar-data`` blobs into domain events.
"""

import logging
from datetime import date, datetime, timezone as dt_timezone
from functools import lru_cache
from typing import List, Optional
from zoneinfo import available_timezones

import pendulum
from icalendar import Calendar, Event
from pendulum import DateTime

from ..domain.exceptions import EventParseError
from ..domain.models import CalendarEvent

logger = logging.getLogger(__name__)


def parse_calendar_data(text: str, default_timezone: str = "UTC") -> List[CalendarEvent]:
    """
    Parse one iCalendar object into its events.

    Args:
        text: iCalendar text (``BEGIN:VCALENDAR`` ... ``END:VCALENDAR``)
        default_timezone: Zone used for floating times and for recurrence
            arithmetic when DTSTART carries no TZID

    Returns:
        List of CalendarEvent objects, one per VEVENT

    Raises:
        EventParseError: If the text is not valid iCalendar or an event lacks
            its start or end
    """
    try:
        calendar = Calendar.from_ical(text)
    except ValueError as exc:
        raise EventParseError(f"Invalid iCalendar data: {exc}") from exc

    return [
        parse_event(component, default_timezone)
        for component in calendar.walk("VEVENT")
    ]


def parse_event(component: Event, default_timezone: str = "UTC") -> CalendarEvent:
    """Convert a single VEVENT component to a CalendarEvent."""
    uid = str(component.get("UID")) if component.get("UID") else None

    dtstart = component.get("DTSTART")
    if dtstart is None:
        raise EventParseError(f"Event {uid or '<no-uid>'} has no DTSTART")

    timezone = resolve_timezone(dtstart.params.get("TZID"), fallback=default_timezone)
    start = _to_utc(dtstart.dt, timezone)

    dtend = component.get("DTEND")
    duration = component.get("DURATION")
    if dtend is not None:
        end = _to_utc(dtend.dt, timezone)
    elif duration is not None:
        end = start + duration.dt
    else:
        raise EventParseError(f"Event {uid or '<no-uid>'} has neither DTEND nor DURATION")

    return CalendarEvent(
        anchor_start=start,
        anchor_end=end,
        recurrence_rule=_recurrence_text(component.get("RRULE"), uid),
        timezone=timezone,
        uid=uid,
        summary=str(component.get("SUMMARY")) if component.get("SUMMARY") else None,
    )


def _recurrence_text(rrule, uid: Optional[str]) -> Optional[str]:
    if rrule is None:
        return None
    if isinstance(rrule, list):
        # Multiple RRULE lines are deprecated by RFC 5545; the first one wins.
        logger.warning("Event %s has %d RRULEs; using the first", uid or "<no-uid>", len(rrule))
        rrule = rrule[0]
    return rrule.to_ical().decode("utf-8")


def _to_utc(value, timezone: str) -> DateTime:
    """Normalise a DATE, floating DATE-TIME or zoned DATE-TIME to UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return pendulum.instance(value, tz=timezone).in_timezone("UTC")
        return pendulum.instance(value.astimezone(dt_timezone.utc)).in_timezone("UTC")

    if isinstance(value, date):
        return pendulum.datetime(value.year, value.month, value.day, tz=timezone).in_timezone("UTC")

    raise EventParseError(f"Unsupported date value: {value!r}")


@lru_cache(maxsize=1)
def _known_timezones() -> frozenset:
    return frozenset(available_timezones())


def resolve_timezone(name: Optional[str], fallback: str = "UTC") -> str:
    """
    Return ``name`` if it is a known IANA zone, otherwise ``fallback``.

    Accepts either a zone name or a VCALENDAR blob carrying a VTIMEZONE, as
    advertised by some servers in the ``calendar-timezone`` property.
    """
    if not name:
        return fallback

    candidate = name.strip()
    if candidate.startswith("BEGIN:VCALENDAR"):
        try:
            zones = Calendar.from_ical(candidate).walk("VTIMEZONE")
        except ValueError:
            logger.warning("Ignoring unparseable calendar timezone")
            return fallback
        candidate = str(zones[0].get("TZID")) if zones else ""

    if candidate in _known_timezones():
        return candidate

    logger.debug("Unknown timezone %r, falling back to %s", candidate, fallback)
    return fallback
