"""
Availability exception model representing therapist blackout periods.

Blackouts (vacation, training, sick leave) take precedence over working
hours: no slot that overlaps one is offered or bookable.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, UTCDateTime


class AvailabilityException(Base):
    """
    A blackout period during which the therapist is unavailable.

    Overlapping exceptions are permitted; they are merged when subtracted
    from working hours.
    """

    __tablename__ = "availability_exceptions"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the availability exception."""

    therapist_id: Mapped[int] = mapped_column(ForeignKey("therapists.id"))
    """Therapist who is unavailable."""

    start_at: Mapped[datetime] = mapped_column(UTCDateTime())
    """Start of the blackout (inclusive)."""

    end_at: Mapped[datetime] = mapped_column(UTCDateTime())
    """End of the blackout (exclusive)."""

    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    """Optional free-text reason."""

    created_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Relationships
    therapist = relationship("Therapist", back_populates="availability_exceptions")

    __table_args__ = (
        CheckConstraint('start_at < end_at', name='ck_availability_exceptions_range'),
        Index('idx_availability_exceptions_therapist_range', 'therapist_id', 'start_at', 'end_at'),
    )
