"""
Boolean slot grid over a time window.

A window is subdivided into fixed-size slots; each slot is either open (True)
or closed (False). Grids are immutable: every operation returns a new grid,
so folds running side by side never share an accumulator.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Tuple

from pendulum import DateTime

from .exceptions import GridMismatchError
from .models import Occurrence, TimeWindow, total_minutes

logger = logging.getLogger(__name__)


def granularity_minutes(granularity: timedelta) -> int:
    """
    Return the granularity as whole minutes.

    Raises:
        ValueError: If the granularity is shorter than one minute
    """
    minutes = total_minutes(granularity)
    if minutes < 1:
        raise ValueError(f"Granularity must be at least one minute, got {granularity}")
    return minutes


def num_slots(window: TimeWindow, granularity: timedelta) -> int:
    """
    Number of whole slots of ``granularity`` that fit into ``window``.

    An inverted window has zero slots.
    """
    step = granularity_minutes(granularity)
    if window.is_inverted():
        return 0
    return window.duration_minutes() // step


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


@dataclass(frozen=True)
class SlotGrid:
    """
    A time window discretized into slots of equal size.

    Invariant: ``len(slots) == num_slots(window, granularity)``.
    """
    window: TimeWindow
    granularity: timedelta
    slots: Tuple[bool, ...]

    def __post_init__(self):
        expected = num_slots(self.window, self.granularity)
        if len(self.slots) != expected:
            raise ValueError(
                f"Grid for {self.window} needs {expected} slots, got {len(self.slots)}"
            )

    @classmethod
    def new(cls, window: TimeWindow, granularity: timedelta) -> "SlotGrid":
        """Create a grid with every slot closed."""
        return cls(window, granularity, (False,) * num_slots(window, granularity))

    @classmethod
    def filled(cls, window: TimeWindow, granularity: timedelta) -> "SlotGrid":
        """Create a grid with every slot open."""
        return cls(window, granularity, (True,) * num_slots(window, granularity))

    def __len__(self) -> int:
        return len(self.slots)

    def __getitem__(self, index: int) -> bool:
        return self.slots[index]

    def _index_of(self, instant: DateTime) -> int:
        """Slot index of an instant, unclamped, relative to the window start."""
        if instant == self.window.start:
            return 0
        offset = total_minutes(instant - self.window.start)
        return offset // granularity_minutes(self.granularity)

    def mark_true(self, sub_start: DateTime, sub_end: DateTime) -> "SlotGrid":
        """
        Open every slot covered by ``[sub_start, sub_end)``.

        The span is clipped to the grid's window; anything before the window
        start or at/after its end is ignored. The end index is exclusive, so a
        span ending exactly on a slot boundary leaves that slot untouched.
        """
        count = len(self.slots)
        if sub_end <= self.window.start or sub_start >= self.window.end:
            return self

        start_index = _clamp(self._index_of(sub_start), 0, count)
        end_index = _clamp(self._index_of(sub_end), 0, count)
        logger.debug(
            "Marking %s - %s as slots [%d, %d) of %d",
            sub_start, sub_end, start_index, end_index, count,
        )
        if start_index >= end_index:
            return self

        slots = list(self.slots)
        slots[start_index:end_index] = [True] * (end_index - start_index)
        return SlotGrid(self.window, self.granularity, tuple(slots))

    def _check_compatible(self, other: "SlotGrid") -> None:
        if self.window != other.window or self.granularity != other.granularity:
            raise GridMismatchError(
                f"Cannot combine grid over {self.window} ({self.granularity}) "
                f"with grid over {other.window} ({other.granularity})"
            )

    def union(self, other: "SlotGrid") -> "SlotGrid":
        """Slot-wise OR of two grids over the same window."""
        self._check_compatible(other)
        return SlotGrid(
            self.window,
            self.granularity,
            tuple(a or b for a, b in zip(self.slots, other.slots)),
        )

    def subtract_true(self, other: "SlotGrid") -> "SlotGrid":
        """Close every slot that is open in ``other`` (booked time)."""
        self._check_compatible(other)
        return SlotGrid(
            self.window,
            self.granularity,
            tuple(a and not b for a, b in zip(self.slots, other.slots)),
        )

    def is_fully_open(self) -> bool:
        """True if the grid has at least one slot and all of them are open."""
        return bool(self.slots) and all(self.slots)

    def slot_start(self, index: int) -> DateTime:
        """Start instant of the slot at ``index``."""
        return self.window.start.add(minutes=index * granularity_minutes(self.granularity))

    def open_ranges(self) -> List[Occurrence]:
        """
        Collapse runs of open slots into spans.

        Example (30-minute slots from 00:00): [F, T, T, F, T] ->
        [00:30-01:30, 02:00-02:30]
        """
        ranges: List[Occurrence] = []
        run_start = None

        for index, is_open in enumerate(self.slots):
            if is_open and run_start is None:
                run_start = index
            elif not is_open and run_start is not None:
                ranges.append(Occurrence(self.slot_start(run_start), self.slot_start(index)))
                run_start = None

        if run_start is not None:
            ranges.append(Occurrence(self.slot_start(run_start), self.slot_start(len(self.slots))))

        return ranges

    def as_list(self) -> List[bool]:
        return list(self.slots)


def map_occurrence(grid: SlotGrid, occurrence_start: DateTime, occurrence_end: DateTime) -> SlotGrid:
    """Map one concrete occurrence onto a grid."""
    return grid.mark_true(occurrence_start, occurrence_end)
