"""
Domain models for time windows, calendar events and their occurrences.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Union

import pendulum
from pendulum import DateTime

from .exceptions import InvalidWindowError


@dataclass(frozen=True)
class TimeWindow:
    """
    Represents a half-open time window ``[start, end)``.

    Unlike a meeting slot, a window is allowed to be empty or even inverted:
    the grid layer treats ``end <= start`` as a window with zero slots.
    """
    start: DateTime
    end: DateTime

    @classmethod
    def of(cls, start: DateTime, end: DateTime) -> "TimeWindow":
        """Create a window with both bounds normalized to UTC."""
        return cls(start=start.in_timezone("UTC"), end=end.in_timezone("UTC"))

    def is_inverted(self) -> bool:
        """Return True if the window ends before it starts."""
        return self.end < self.start

    def duration_minutes(self) -> int:
        """Return the whole number of minutes covered by the window."""
        return total_minutes(self.end - self.start)

    def widened(self, before: timedelta) -> "TimeWindow":
        """Return a copy of this window starting ``before`` earlier."""
        return TimeWindow(start=self.start - before, end=self.end)

    def require_ordered(self) -> "TimeWindow":
        """
        Ensure the window is non-empty.

        Raises:
            InvalidWindowError: If the window ends at or before its start
        """
        if self.end <= self.start:
            raise InvalidWindowError(
                f"Window end {self.end} must be after window start {self.start}"
            )
        return self

    def __str__(self) -> str:
        return f"{self.start.to_iso8601_string()} - {self.end.to_iso8601_string()}"


@dataclass(frozen=True)
class Occurrence:
    """One concrete, dated instance of an event."""
    start: DateTime
    end: DateTime

    def is_degenerate(self) -> bool:
        """An occurrence that ends at or before its start covers no time."""
        return self.start >= self.end

    def overlaps(self, window: TimeWindow) -> bool:
        """Check if this occurrence covers any part of the window."""
        return self.start < window.end and self.end > window.start

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return total_minutes(self.end - self.start)

    def __str__(self) -> str:
        return f"{self.start.format('YYYY-MM-DD HH:mm')} - {self.end.format('HH:mm')}"


@dataclass(frozen=True)
class SingleSpan:
    """Shape of an event without a recurrence rule."""
    start: DateTime
    end: DateTime


@dataclass(frozen=True)
class RecurringSpan:
    """Shape of an event whose anchor is repeated by a recurrence rule."""
    anchor_start: Optional[DateTime]
    anchor_end: DateTime
    rule: str
    timezone: str = "UTC"

    @property
    def duration(self) -> timedelta:
        if self.anchor_start is None:
            return timedelta(0)
        # Seconds, not calendar units.
        return timedelta(seconds=(self.anchor_end - self.anchor_start).total_seconds())


EventShape = Union[SingleSpan, RecurringSpan]


@dataclass(frozen=True)
class CalendarEvent:
    """
    A calendar event as fetched from the calendar store.

    Anchor instants are UTC-normalized. ``timezone`` names the zone in which
    recurrence arithmetic is performed; it defaults to UTC when unknown.
    """
    anchor_start: DateTime
    anchor_end: DateTime
    recurrence_rule: Optional[str] = None
    timezone: Optional[str] = None
    uid: Optional[str] = None
    summary: Optional[str] = None

    def is_recurring(self) -> bool:
        return bool(self.recurrence_rule)

    def shape(self) -> EventShape:
        """Resolve the event into its single-span or recurring shape."""
        if self.recurrence_rule:
            return RecurringSpan(
                anchor_start=self.anchor_start,
                anchor_end=self.anchor_end,
                rule=self.recurrence_rule,
                timezone=self.timezone or "UTC",
            )
        return SingleSpan(start=self.anchor_start, end=self.anchor_end)


@dataclass(frozen=True)
class AvailabilityResult:
    """The open slots of a window, as returned to callers."""
    start: DateTime
    end: DateTime
    granularity: timedelta
    matrix: List[bool]

    @property
    def granularity_seconds(self) -> int:
        return int(self.granularity.total_seconds())


def total_minutes(delta: timedelta) -> int:
    """Floor a duration to whole minutes."""
    return int(delta.total_seconds() // 60)


def utc_now() -> DateTime:
    """Current instant in UTC."""
    return pendulum.now("UTC")
