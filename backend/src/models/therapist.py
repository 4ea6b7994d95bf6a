"""
Therapist model representing the professionals who conduct sessions.

Therapist profiles are owned by the profile store; this service reads the
timezone and contact preference and locks the row while booking.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, UTCDateTime


class Therapist(Base):
    """
    Therapist entity representing a professional who provides sessions.

    Working hours live in versioned availability rule sets; blackout periods
    live in availability exceptions. Both are interpreted in ``timezone``.
    """

    __tablename__ = "therapists"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the therapist."""

    full_name: Mapped[str] = mapped_column(String(255))
    """Full name of the therapist."""

    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Email address used for notifications."""

    phone_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    """Phone number used for SMS notifications."""

    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    """IANA timezone name in which working hours and date ranges are expressed."""

    contact_preference: Mapped[str] = mapped_column(String(20), default="email")
    """Preferred notification channel: 'email', 'sms' or 'in_app'."""

    created_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    """Timestamp when the therapist record was created."""

    # Relationships
    appointments = relationship("Appointment", back_populates="therapist")
    """All appointments where this therapist is the provider."""

    availability_rule_sets = relationship(
        "AvailabilityRuleSet",
        back_populates="therapist",
        order_by="AvailabilityRuleSet.version",
    )
    """Every published version of the therapist's working hours."""

    availability_exceptions = relationship("AvailabilityException", back_populates="therapist")
    """Blackout periods."""

    __table_args__ = (
        CheckConstraint(
            "contact_preference IN ('email', 'sms', 'in_app')",
            name="ck_therapists_contact_preference",
        ),
    )
