"""
Timing calculation utilities for reminders.

Reminder offsets are configured as short labels (``24h``, ``1h``, ``15m``,
``2d``). The label is stored on each reminder-fired record so it must stay
stable; this module turns labels into durations and due times.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Iterable, List

from utils.datetime_utils import ensure_utc

logger = logging.getLogger(__name__)

_OFFSET_PATTERN = re.compile(r"^(\d+)([dhm])$")
_UNIT_MINUTES = {"d": 24 * 60, "h": 60, "m": 1}


def parse_offset(label: str) -> timedelta:
    """
    Parse an offset label into a timedelta.

    Args:
        label: Positive integer followed by ``d``, ``h`` or ``m``

    Returns:
        The offset duration

    Raises:
        ValueError: If the label is malformed or zero

    Examples:
        parse_offset("24h") == timedelta(hours=24)
        parse_offset("15m") == timedelta(minutes=15)
    """
    match = _OFFSET_PATTERN.match(label.strip().lower()) if label else None
    if not match:
        raise ValueError(f"Invalid reminder offset: {label!r}")
    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError(f"Reminder offset must be positive, got {label!r}")
    return timedelta(minutes=amount * _UNIT_MINUTES[match.group(2)])


def normalize_offsets(labels: Iterable[str]) -> List[str]:
    """
    Validate and de-duplicate offset labels, longest offset first.

    Raises:
        ValueError: If any label is invalid or the list is empty
    """
    seen: dict[timedelta, str] = {}
    for label in labels:
        offset = parse_offset(label)
        if offset in seen:
            logger.warning(f"Duplicate reminder offset {label!r} ignored (same as {seen[offset]!r})")
            continue
        seen[offset] = label.strip().lower()
    if not seen:
        raise ValueError("At least one reminder offset is required")
    return [seen[offset] for offset in sorted(seen, reverse=True)]


def calculate_reminder_time(start_at: datetime, label: str) -> datetime:
    """Due time of the reminder ``label`` for a session starting at ``start_at``."""
    start = ensure_utc(start_at)
    if start is None:
        raise ValueError("start_at cannot be None")
    return start - parse_offset(label)
