"""
Patient model representing individuals who book sessions.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, UTCDateTime


class Patient(Base):
    """
    Patient entity representing an individual who receives sessions.

    The contact preference decides which channel reminders and cancellation
    notices are dispatched on.
    """

    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the patient."""

    full_name: Mapped[str] = mapped_column(String(255))
    """Full name of the patient."""

    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Email address used for notifications."""

    phone_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    """Contact phone number, used for SMS reminders."""

    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    """IANA timezone used when rendering times in notifications."""

    contact_preference: Mapped[str] = mapped_column(String(20), default="email")
    """Preferred notification channel: 'email', 'sms' or 'in_app'."""

    created_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    """Timestamp when the patient was first created."""

    # Relationships
    appointments = relationship("Appointment", back_populates="patient")
    """All appointments booked by this patient."""

    __table_args__ = (
        CheckConstraint(
            "contact_preference IN ('email', 'sms', 'in_app')",
            name="ck_patients_contact_preference",
        ),
    )
