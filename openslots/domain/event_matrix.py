"""
Core business logic for turning calendar events into slot grids.

This is the heart of the application - pure domain logic without any
external dependencies (no API calls, no database, no I/O).
"""

import logging
from datetime import timedelta
from functools import reduce
from typing import Iterable, List

from .models import CalendarEvent, Occurrence, RecurringSpan, SingleSpan, TimeWindow
from .recurrence import DEFAULT_OCCURRENCE_CAP, expand
from .slot_grid import SlotGrid, map_occurrence

logger = logging.getLogger(__name__)


def recurring_occurrences(
    shape: RecurringSpan,
    window: TimeWindow,
    cap: int = DEFAULT_OCCURRENCE_CAP,
) -> List[Occurrence]:
    """
    Concrete occurrences of a recurring event that overlap the window.

    The expansion window is widened backwards by the event duration so an
    occurrence that starts before the window but ends inside it is kept.
    """
    duration = shape.duration
    lookback = duration if duration > timedelta(0) else timedelta(0)

    starts = expand(
        anchor_start=shape.anchor_start,
        recurrence_rule=shape.rule,
        window=window.widened(lookback),
        cap=cap,
        timezone=shape.timezone,
    )

    occurrences = [Occurrence(start=start, end=start + duration) for start in starts]
    return [
        occurrence for occurrence in occurrences
        if not occurrence.is_degenerate() and occurrence.overlaps(window)
    ]


def build(
    event: CalendarEvent,
    window: TimeWindow,
    granularity: timedelta,
    cap: int = DEFAULT_OCCURRENCE_CAP,
) -> SlotGrid:
    """
    Build the slot grid covered by a single calendar event.

    Algorithm:
    1. An inverted window yields an empty grid
    2. A single-span event is mapped directly
    3. A recurring event is expanded, and each overlapping occurrence is
       mapped and folded with union
    """
    grid = SlotGrid.new(window, granularity)
    if window.is_inverted():
        logger.warning("Window %s ends before it starts; returning empty grid", window)
        return grid

    shape = event.shape()

    if isinstance(shape, SingleSpan):
        if shape.start >= shape.end:
            return grid
        return map_occurrence(grid, shape.start, shape.end)

    occurrences = recurring_occurrences(shape, window, cap=cap)
    logger.debug("Event %s has %d occurrence(s) in %s", event.uid or "<no-uid>", len(occurrences), window)

    return reduce(
        lambda acc, occurrence: acc.union(map_occurrence(grid, occurrence.start, occurrence.end)),
        occurrences,
        grid,
    )


def build_calendar(
    events: Iterable[CalendarEvent],
    window: TimeWindow,
    granularity: timedelta,
    cap: int = DEFAULT_OCCURRENCE_CAP,
) -> SlotGrid:
    """Union of the grids of every event in one calendar."""
    return reduce(
        lambda acc, event: acc.union(build(event, window, granularity, cap=cap)),
        events,
        SlotGrid.new(window, granularity),
    )
