"""
Recurrence rule expansion.

Turns an RRULE anchored at an event's first start into the concrete occurrence
starts that fall inside a query window.
"""

import logging
import re
from typing import List, Optional

import pendulum
from dateutil.rrule import rrulestr
from pendulum import DateTime

from .exceptions import AnchorMissingError, RecurrenceRuleError
from .models import TimeWindow

logger = logging.getLogger(__name__)

# Safety bound against unbounded rules (no COUNT or UNTIL).
DEFAULT_OCCURRENCE_CAP = 100

_UNTIL = re.compile(r"UNTIL=(\d{8}(?:T\d{6})?)(Z?)", re.IGNORECASE)


def has_local_until(recurrence_rule: str) -> bool:
    """
    True if the rule ends at a local time or DATE rather than a UTC instant.

    Such rules belong to floating or all-day events and must be evaluated on
    wall-clock times of the event's zone.
    """
    match = _UNTIL.search(recurrence_rule or "")
    return bool(match) and not match.group(2)


def parse_rule(recurrence_rule: str, anchor: DateTime):
    """
    Build a dateutil rule from RRULE text anchored at ``anchor``.

    Raises:
        RecurrenceRuleError: If the rule text is empty or malformed
    """
    text = (recurrence_rule or "").strip()
    if not text:
        raise RecurrenceRuleError("Recurrence rule is empty")

    try:
        return rrulestr(text, dtstart=anchor)
    except (ValueError, TypeError) as exc:
        raise RecurrenceRuleError(f"Invalid recurrence rule {text!r}: {exc}") from exc


def expand(
    anchor_start: Optional[DateTime],
    recurrence_rule: str,
    window: TimeWindow,
    cap: int = DEFAULT_OCCURRENCE_CAP,
    timezone: str = "UTC",
) -> List[DateTime]:
    """
    Expand a recurrence rule into occurrence starts inside a window.

    Args:
        anchor_start: Start of the first occurrence
        recurrence_rule: RRULE text, e.g. ``FREQ=DAILY;COUNT=2``
        window: Only starts strictly after ``window.start`` and strictly
            before ``window.end`` are returned
        cap: Maximum number of starts to return
        timezone: Zone in which the recurrence arithmetic is performed

    Returns:
        Ascending list of UTC occurrence starts

    Raises:
        AnchorMissingError: If there is no anchor start
        RecurrenceRuleError: If the rule cannot be parsed
    """
    if anchor_start is None:
        raise AnchorMissingError("Recurring event has no start to anchor its rule")

    if window.is_inverted() or cap <= 0:
        return []

    anchor = anchor_start.in_timezone(timezone)
    window_start = window.start.in_timezone(timezone)
    window_end = window.end.in_timezone(timezone)

    local = has_local_until(recurrence_rule)
    if local:
        anchor, window_start, window_end = anchor.naive(), window_start.naive(), window_end.naive()

    rule = parse_rule(recurrence_rule, anchor)

    starts: List[DateTime] = []
    try:
        for occurrence in rule.xafter(window_start, count=cap, inc=False):
            if occurrence >= window_end:
                break
            if local:
                occurrence = pendulum.instance(occurrence, tz=timezone)
            starts.append(pendulum.instance(occurrence).in_timezone("UTC"))
    except (ValueError, TypeError) as exc:
        raise RecurrenceRuleError(f"Cannot evaluate recurrence rule {recurrence_rule!r}: {exc}") from exc

    logger.debug(
        "Rule %r anchored at %s yields %d occurrence(s) in %s",
        recurrence_rule, anchor, len(starts), window,
    )
    return starts
