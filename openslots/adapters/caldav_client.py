"""
CalDAV client for discovering calendars and reading/writing events.
"""

import asyncio
import logging
import uuid
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Dict, List, Mapping, Optional
from urllib.parse import urljoin
from xml.sax.saxutils import escape

import requests
from icalendar import Calendar, Event
from pendulum import DateTime

from ..domain.exceptions import CalendarNotFoundError, EventParseError, TransportError
from ..domain.models import CalendarEvent, TimeWindow, utc_now
from .ical_parser import parse_calendar_data, resolve_timezone

logger = logging.getLogger(__name__)

DAV_NS = "DAV:"
CALDAV_NS = "urn:ietf:params:xml:ns:caldav"
ICAL_NS = "http://apple.com/ns/ical/"

PRINCIPAL_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:">
  <d:prop>
    <d:current-user-principal />
  </d:prop>
</d:propfind>
"""

HOME_SET_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:prop>
    <c:calendar-home-set />
  </d:prop>
</d:propfind>
"""

CALENDARS_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav" xmlns:ical="http://apple.com/ns/ical/">
  <d:prop>
    <d:displayname />
    <ical:calendar-timezone />
    <d:resourcetype />
    <c:supported-calendar-component-set />
  </d:prop>
</d:propfind>
"""

EVENTS_QUERY_BODY = """<?xml version="1.0" encoding="utf-8"?>
<c:calendar-query xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:prop>
    <d:getetag />
    <c:calendar-data />
  </d:prop>
  <c:filter>
    <c:comp-filter name="VCALENDAR">
      <c:comp-filter name="VEVENT">
        <c:time-range start="{start}" end="{end}" />
      </c:comp-filter>
    </c:comp-filter>
  </c:filter>
</c:calendar-query>
"""

MKCOL_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:mkcol xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav" xmlns:ical="http://apple.com/ns/ical/">
  <d:set>
    <d:prop>
      <d:resourcetype>
        <d:collection />
        <c:calendar />
      </d:resourcetype>
      <c:supported-calendar-component-set>
        <c:comp name="VEVENT" />
      </c:supported-calendar-component-set>
      <d:displayname>{name}</d:displayname>
      <ical:calendar-timezone>UTC</ical:calendar-timezone>
    </d:prop>
  </d:set>
</d:mkcol>
"""


@dataclass(frozen=True)
class CalendarInfo:
    """A calendar collection discovered on the server."""
    path: str
    display_name: str
    timezone: Optional[str] = None


def format_caldav_timestamp(instant: DateTime) -> str:
    """Format an instant the way CalDAV time-range filters expect, e.g. 20230108T000000Z."""
    return instant.in_timezone("UTC").format("YYYYMMDD[T]HHmmss[Z]")


def _as_utc_datetime(instant: DateTime) -> datetime:
    return datetime.fromtimestamp(instant.timestamp(), tz=dt_timezone.utc)


def _text(element: Optional[ET.Element]) -> str:
    if element is None or element.text is None:
        return ""
    return element.text.strip()


class DavClient:
    """
    Client for CalDAV calendar operations over HTTP basic auth.

    Calendars are addressed by display name. Discovery walks
    principal -> calendar home set -> calendar collections once and caches
    the result.
    """

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        request_timeout: float = 30,
        timezones: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize the CalDAV client.

        Args:
            url: Base URL of the CalDAV server
            username: Basic auth user name
            password: Basic auth password
            request_timeout: Timeout in seconds for every HTTP request
            timezones: Per-calendar reference zone, keyed by display name.
                Overrides the zone advertised by the server.
        """
        self.url = url
        self.auth = (username, password)
        self.request_timeout = request_timeout
        self.timezones: Dict[str, str] = dict(timezones or {})
        self._home_set_url: Optional[str] = None
        self._calendars: List[CalendarInfo] = []

    def _request(
        self,
        method: str,
        url: str,
        body: Optional[str | bytes] = None,
        depth: Optional[int] = None,
        content_type: str = "application/xml; charset=utf-8",
        expected: tuple = (200, 207),
    ) -> requests.Response:
        headers = {"Content-Type": content_type}
        if depth is not None:
            headers["Depth"] = str(depth)

        logger.debug("%s %s", method, url)
        try:
            response = requests.request(
                method,
                url,
                headers=headers,
                data=body.encode("utf-8") if isinstance(body, str) else body,
                auth=self.auth,
                timeout=self.request_timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        if response.status_code not in expected:
            raise TransportError(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}"
            )
        return response

    def _propfind(self, url: str, body: str, depth: int) -> ET.Element:
        response = self._request("PROPFIND", url, body=body, depth=depth)
        return self._parse_xml(response.text)

    @staticmethod
    def _parse_xml(text: str) -> ET.Element:
        try:
            return ET.fromstring(text)
        except ET.ParseError as e:
            raise TransportError(f"Server returned malformed XML: {e}") from e

    def _href(self, root: ET.Element, prop: str, namespace: str = DAV_NS) -> str:
        """Absolute URL of the href nested in the first ``prop`` element."""
        href = root.find(f".//{{{namespace}}}{prop}/{{{DAV_NS}}}href")
        if href is None or not _text(href):
            raise TransportError(f"Server response has no {prop} href")
        return urljoin(self.url, _text(href))

    def get_principal(self) -> str:
        """Return the URL of the current user principal."""
        root = self._propfind(self.url, PRINCIPAL_BODY, depth=0)
        return self._href(root, "current-user-principal")

    def get_home_set(self) -> str:
        """Return the URL of the principal's calendar home set."""
        if self._home_set_url is None:
            root = self._propfind(self.get_principal(), HOME_SET_BODY, depth=0)
            self._home_set_url = self._href(root, "calendar-home-set", CALDAV_NS)
        return self._home_set_url

    def list_calendars(self, refresh: bool = False) -> List[CalendarInfo]:
        """List the calendar collections in the home set."""
        if self._calendars and not refresh:
            return list(self._calendars)

        root = self._propfind(self.get_home_set(), CALENDARS_BODY, depth=1)
        calendars: List[CalendarInfo] = []

        for response in root.iter(f"{{{DAV_NS}}}response"):
            display_name = _text(response.find(f".//{{{DAV_NS}}}displayname"))
            if not display_name:
                continue
            calendars.append(
                CalendarInfo(
                    path=_text(response.find(f"{{{DAV_NS}}}href")),
                    display_name=display_name,
                    timezone=_text(response.find(f".//{{{ICAL_NS}}}calendar-timezone")) or None,
                )
            )

        self._calendars = calendars
        return list(calendars)

    def get_calendar(self, name: str) -> CalendarInfo:
        """
        Find a calendar by display name.

        Raises:
            CalendarNotFoundError: If no calendar has that name
        """
        for calendar in self.list_calendars():
            if calendar.display_name == name:
                return calendar
        raise CalendarNotFoundError(name)

    def create_calendar(self, name: str) -> CalendarInfo:
        """Create a new calendar collection (timezone UTC) in the home set."""
        home_set = self.get_home_set()
        url = urljoin(home_set if home_set.endswith("/") else home_set + "/", f"{uuid.uuid4().hex}/")

        self._request("MKCOL", url, body=MKCOL_BODY.format(name=escape(name)), expected=(201,))
        logger.info("Created calendar %r at %s", name, url)

        calendar = CalendarInfo(path=url, display_name=name, timezone="UTC")
        self._calendars = []
        return calendar

    def calendar_timezone(self, calendar: CalendarInfo) -> str:
        """Reference zone of a calendar: configured, then advertised, then UTC."""
        configured = self.timezones.get(calendar.display_name)
        if configured:
            return configured
        return resolve_timezone(calendar.timezone)

    def get_events(self, name: str, window: TimeWindow) -> List[CalendarEvent]:
        """
        Fetch the events of a calendar intersecting ``window``.

        Raises:
            TransportError: If the request fails
            EventParseError: If an event cannot be parsed
        """
        calendar = self.get_calendar(name)
        body = EVENTS_QUERY_BODY.format(
            start=format_caldav_timestamp(window.start),
            end=format_caldav_timestamp(window.end),
        )
        response = self._request("REPORT", urljoin(self.url, calendar.path), body=body, depth=1)
        root = self._parse_xml(response.text)

        zone = self.calendar_timezone(calendar)
        events: List[CalendarEvent] = []
        for data in root.iter(f"{{{CALDAV_NS}}}calendar-data"):
            text = _text(data)
            if not text:
                raise EventParseError(f"Empty calendar-data in {name}")
            events.extend(parse_calendar_data(text, default_timezone=zone))

        logger.debug("Fetched %d event(s) from %s for %s", len(events), name, window)
        return events

    def put_event(self, name: str, summary: str, window: TimeWindow) -> CalendarEvent:
        """Create an event spanning ``window`` in the named calendar."""
        calendar = self.get_calendar(name)
        uid = uuid.uuid4().hex

        event = Event()
        event.add("uid", uid)
        event.add("summary", summary)
        event.add("dtstamp", _as_utc_datetime(utc_now()))
        event.add("dtstart", _as_utc_datetime(window.start))
        event.add("dtend", _as_utc_datetime(window.end))

        ical = Calendar()
        ical.add("prodid", "-//openslots//EN")
        ical.add("version", "2.0")
        ical.add_component(event)

        collection = urljoin(self.url, calendar.path)
        if not collection.endswith("/"):
            collection += "/"
        self._request(
            "PUT",
            urljoin(collection, f"{uid}.ics"),
            body=ical.to_ical(),
            content_type="text/calendar; charset=utf-8",
            expected=(201, 204),
        )
        logger.info("Created event %s (%r) in %s", uid, summary, name)

        return CalendarEvent(
            anchor_start=window.start.in_timezone("UTC"),
            anchor_end=window.end.in_timezone("UTC"),
            timezone="UTC",
            uid=uid,
            summary=summary,
        )

    async def fetch_events(self, calendar: str, window: TimeWindow) -> List[CalendarEvent]:
        return await asyncio.to_thread(self.get_events, calendar, window)

    async def create_event(self, calendar: str, name: str, window: TimeWindow) -> CalendarEvent:
        return await asyncio.to_thread(self.put_event, calendar, name, window)
