"""
Domain-specific exception hierarchy for the openslots application.
"""


class OpenSlotsError(Exception):
    """Base class for all application-level errors."""


class InvalidWindowError(OpenSlotsError):
    """Raised when a window that must be non-empty ends before it starts."""


class GridMismatchError(OpenSlotsError, ValueError):
    """Raised when combining slot grids built for different windows or granularities."""


class RecurrenceRuleError(OpenSlotsError):
    """Raised when a recurrence rule cannot be parsed or evaluated."""


class AnchorMissingError(OpenSlotsError):
    """Raised when a recurring event has no anchor start to expand from."""


class EventParseError(OpenSlotsError):
    """Raised when fetched calendar data is missing required fields or is malformed."""


class TransportError(OpenSlotsError):
    """Raised when calendar data cannot be fetched from or written to the server."""


class CalendarNotFoundError(TransportError):
    """Raised when no calendar with the requested name exists on the server."""

    def __init__(self, calendar_name: str):
        super().__init__(f"Calendar not found: {calendar_name}")
        self.calendar_name = calendar_name


class SlotNotAvailableError(OpenSlotsError):
    """Raised when a booking is requested for time that is not fully open."""

    def __init__(self, start, end):
        super().__init__(f"Requested time not available: {start} - {end}")
        self.start = start
        self.end = end
