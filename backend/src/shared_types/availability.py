"""
Shared types for availability and scheduling results.

These are plain value objects returned by the services; none of them is
persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class AvailabilityWindow:
    """
    A bookable window for one therapist.

    ``start`` and ``end`` are aware UTC datetimes, ``end = start + slot duration``.
    """
    therapist_id: int
    start: datetime
    end: datetime


@dataclass(frozen=True)
class ConflictResult:
    """
    Outcome of a conflict check.

    ``party`` is ``None`` when there is no conflict, otherwise ``'therapist'``
    or ``'patient'`` together with the id of the overlapping appointment.
    """
    party: Optional[str] = None
    existing_appointment_id: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.party is None


@dataclass(frozen=True)
class ReminderTask:
    """
    Projection of one reminder obligation of an active appointment.

    Not stored: derived from the appointment and its delivery records.
    """
    appointment_id: int
    offset_label: str
    due_at: datetime
    fired: bool
    fired_at: Optional[datetime] = None


@dataclass
class SweepResult:
    """Counters for one reminder sweep run."""
    due: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0
    stopped_early: bool = False
    sent_pairs: list[tuple[int, str]] = field(default_factory=list)
