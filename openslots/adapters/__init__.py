"""
Adapters layer - External integrations (CalDAV server, iCalendar data).
"""

from .caldav_client import CalendarInfo, DavClient
from .ical_parser import parse_calendar_data
from .mock_caldav_client import MockCalendarClient

__all__ = ["CalendarInfo", "DavClient", "MockCalendarClient", "parse_calendar_data"]
