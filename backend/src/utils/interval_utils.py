"""
Half-open interval arithmetic on aware datetimes.

An interval ``(start, end)`` covers ``start <= t < end``. Two intervals that
only touch (one ends exactly when the next starts) do not overlap but do
merge into one contiguous interval.
"""

from datetime import datetime
from typing import Iterable, Iterator, List, Sequence, Tuple

Interval = Tuple[datetime, datetime]


def intervals_overlap(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    """Check if two half-open intervals overlap."""
    return start1 < end2 and start2 < end1


def merge_intervals(intervals: Iterable[Interval]) -> Iterator[Interval]:
    """
    Merge overlapping or touching intervals.

    Input must be sorted by start. Merging is lazy so it can sit on top of a
    day-by-day expansion without materializing the whole range.
    """
    current_start = None
    current_end = None
    for start, end in intervals:
        if start >= end:
            continue
        if current_start is None:
            current_start, current_end = start, end
        elif start <= current_end:
            if end > current_end:
                current_end = end
        else:
            yield current_start, current_end
            current_start, current_end = start, end
    if current_start is not None:
        yield current_start, current_end


def subtract_intervals(free: Interval, busy: Sequence[Interval]) -> List[Interval]:
    """
    Remove every busy interval from a free interval.

    Args:
        free: Interval to carve up
        busy: Intervals to remove, sorted by start (may overlap each other)

    Returns:
        Remaining sub-intervals, in order
    """
    remaining: List[Interval] = []
    cursor, free_end = free
    for busy_start, busy_end in busy:
        if busy_end <= cursor:
            continue
        if busy_start >= free_end:
            break
        if busy_start > cursor:
            remaining.append((cursor, busy_start))
        cursor = max(cursor, busy_end)
        if cursor >= free_end:
            break
    if cursor < free_end:
        remaining.append((cursor, free_end))
    return remaining
