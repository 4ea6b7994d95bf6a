"""
Versioned weekly working hours for therapists.

A rule set is an immutable snapshot of a therapist's weekly schedule that
applies from ``effective_from`` (a therapist-local date) until a newer
version takes effect. Editing working hours means publishing a new version,
so the hours that applied when an existing appointment was booked are never
rewritten.
"""

from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, String, Time, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, UTCDateTime


class AvailabilityRuleSet(Base):
    """One published version of a therapist's weekly working hours."""

    __tablename__ = "availability_rule_sets"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the rule set."""

    therapist_id: Mapped[int] = mapped_column(ForeignKey("therapists.id"))
    """Therapist the rules belong to."""

    version: Mapped[int] = mapped_column()
    """Monotonic version number per therapist, starting at 1."""

    effective_from: Mapped[date] = mapped_column(Date)
    """First therapist-local date on which this version applies."""

    created_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    """Timestamp when the version was published."""

    # Relationships
    therapist = relationship("Therapist", back_populates="availability_rule_sets")
    rules = relationship(
        "AvailabilityRule",
        back_populates="rule_set",
        order_by=lambda: (AvailabilityRule.day_of_week, AvailabilityRule.start_time),
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint('therapist_id', 'version', name='uq_availability_rule_sets_therapist_version'),
        Index('idx_availability_rule_sets_therapist_effective', 'therapist_id', 'effective_from'),
    )


class AvailabilityRule(Base):
    """
    A recurring weekly working period.

    Multiple rules per day are allowed (e.g. 09:00-12:00 and 14:00-18:00).
    An ``end_time`` of 00:00 means the period runs until local midnight.
    """

    __tablename__ = "availability_rules"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the rule."""

    rule_set_id: Mapped[int] = mapped_column(ForeignKey("availability_rule_sets.id"))
    """Rule set version this rule belongs to."""

    day_of_week: Mapped[int] = mapped_column()
    """
    Day of the week (0=Monday, 1=Tuesday, ..., 6=Sunday).
    """

    start_time: Mapped[time] = mapped_column(Time)
    """Start of the working period, local wall clock."""

    end_time: Mapped[time] = mapped_column(Time)
    """End of the working period, local wall clock (00:00 = midnight)."""

    timezone: Mapped[str] = mapped_column(String(64))
    """IANA timezone the wall clock times are expressed in."""

    # Relationships
    rule_set = relationship("AvailabilityRuleSet", back_populates="rules")

    __table_args__ = (
        CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='ck_availability_rules_day_of_week'),
        Index('idx_availability_rules_set_day', 'rule_set_id', 'day_of_week'),
    )

    @property
    def ends_at_midnight(self) -> bool:
        return self.end_time == time(0, 0)

    @property
    def day_name(self) -> str:
        """Get the day name for display."""
        days = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']
        return days[self.day_of_week]
