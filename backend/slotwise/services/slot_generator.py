# backend/slotwise/services/slot_generator.py
"""
Slot Generator for Slotwise

Turns a provider's weekly rule into concrete bookable slots for one date.
Everything here is a pure function of its arguments: no database, no cache,
no clock. Callers pass ``now`` explicitly so identical inputs always produce
identical output.

Semantics:
- the cursor starts at the rule's start time on the date (provider timezone)
  and advances by the service duration; a slot that would end after the
  rule's end time stops generation for that rule
- slots starting at or before ``now`` are never offered
- slots overlapping the break, an occupying booking or a blocked interval are
  emitted with ``available=False``; slots lying entirely inside the break are
  not emitted at all
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
import logging
from typing import Iterable, List, Optional, Protocol, Sequence

import pytz

from ..core.timezone_utils import local_to_utc
from ..schemas.availability import TimeSlot
from ..utils.time_utils import TimeRange, ensure_utc

logger = logging.getLogger(__name__)


class RuleWindow(Protocol):
    """The subset of AvailabilityRule the generator reads."""

    start_time: time
    end_time: time
    break_start: Optional[time]
    break_end: Optional[time]


@dataclass(frozen=True)
class _AnchoredRule:
    window: TimeRange
    break_window: Optional[TimeRange]


def _anchor(target_date: date, rule: RuleWindow, tz: pytz.BaseTzInfo) -> Optional[_AnchoredRule]:
    start = local_to_utc(target_date, rule.start_time, tz)
    end = local_to_utc(target_date, rule.end_time, tz)
    if end <= start:
        logger.warning(f"Ignoring rule with empty window on {target_date}: {start} - {end}")
        return None

    break_window = None
    if rule.break_start is not None and rule.break_end is not None:
        break_start = local_to_utc(target_date, rule.break_start, tz)
        break_end = local_to_utc(target_date, rule.break_end, tz)
        if break_end > break_start:
            break_window = TimeRange(break_start, break_end)

    return _AnchoredRule(TimeRange(start, end), break_window)


def _hits_any(candidate: TimeRange, ranges: Sequence[TimeRange]) -> bool:
    return any(candidate.overlaps(other) for other in ranges)


def generate(
    target_date: date,
    rule: RuleWindow,
    service_duration: int,
    existing_bookings: Iterable[TimeRange],
    blocked_intervals: Iterable[TimeRange],
    now: datetime,
    tz: pytz.BaseTzInfo = pytz.utc,
) -> List[TimeSlot]:
    """
    Generate the candidate slots of one rule on ``target_date``.

    Args:
        target_date: Calendar date in the provider's timezone
        rule: Weekly rule whose wall-clock times are anchored on the date
        service_duration: Slot length and cursor step in minutes
        existing_bookings: Windows of occupying bookings
        blocked_intervals: Provider blocked periods
        now: Current instant; slots starting at or before it are suppressed
        tz: Provider timezone

    Returns:
        Slots in ascending start order
    """
    if service_duration <= 0:
        raise ValueError("service_duration must be positive")

    anchored = _anchor(target_date, rule, tz)
    if anchored is None:
        return []

    bookings = list(existing_bookings)
    blocked = list(blocked_intervals)
    now_utc = ensure_utc(now)
    step = timedelta(minutes=service_duration)

    slots: List[TimeSlot] = []
    cursor = anchored.window.start
    while cursor + step <= anchored.window.end:
        candidate = TimeRange(cursor, cursor + step)
        cursor += step

        if candidate.start <= now_utc:
            continue

        in_break = False
        inside_break = False
        if anchored.break_window is not None:
            in_break = candidate.overlaps(anchored.break_window)
            inside_break = (
                anchored.break_window.start <= candidate.start
                and candidate.end <= anchored.break_window.end
            )
        if inside_break:
            continue

        available = not (in_break or _hits_any(candidate, bookings) or _hits_any(candidate, blocked))
        slots.append(
            TimeSlot(
                start=candidate.start.isoformat(),
                end=candidate.end.isoformat(),
                available=available,
            )
        )

    return slots


def generate_for_rules(
    target_date: date,
    rules: Iterable[RuleWindow],
    service_duration: int,
    existing_bookings: Iterable[TimeRange],
    blocked_intervals: Iterable[TimeRange],
    now: datetime,
    tz: pytz.BaseTzInfo = pytz.utc,
) -> List[TimeSlot]:
    """Run ``generate`` for every rule of the day and merge the results chronologically."""
    bookings = list(existing_bookings)
    blocked = list(blocked_intervals)

    merged: List[TimeSlot] = []
    for rule in rules:
        merged.extend(generate(target_date, rule, service_duration, bookings, blocked, now, tz))

    merged.sort(key=lambda slot: (datetime.fromisoformat(slot.start), slot.end))
    return merged

