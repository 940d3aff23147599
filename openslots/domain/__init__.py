"""
Domain layer - Pure business logic without external dependencies.
"""

from .event_matrix import build, build_calendar
from .models import AvailabilityResult, CalendarEvent, Occurrence, TimeWindow
from .recurrence import expand
from .slot_grid import SlotGrid, map_occurrence, num_slots

__all__ = [
    "AvailabilityResult",
    "CalendarEvent",
    "Occurrence",
    "SlotGrid",
    "TimeWindow",
    "build",
    "build_calendar",
    "expand",
    "map_occurrence",
    "num_slots",
]
