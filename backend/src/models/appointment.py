"""
Appointment model representing booked sessions between patients and therapists.

Appointments are never physically deleted. Cancelling or rescheduling moves
the record to a terminal status and keeps the original time and duration, so
the history of a session can always be reconstructed.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import (
    ACTIVE_STATUSES,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_NO_SHOW,
    STATUS_SCHEDULED,
)
from models.base import Base, UTCDateTime

# Allowed status transitions; statuses without an entry are terminal.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_SCHEDULED: frozenset({STATUS_CONFIRMED, STATUS_CANCELLED, STATUS_NO_SHOW, STATUS_COMPLETED}),
    STATUS_CONFIRMED: frozenset({STATUS_CANCELLED, STATUS_NO_SHOW, STATUS_COMPLETED}),
}


def can_transition(current: str, target: str) -> bool:
    """Check whether ``current -> target`` is a legal status change."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class Appointment(Base):
    """
    Appointment entity representing a session between a patient and a therapist.

    Only ``scheduled`` and ``confirmed`` appointments occupy time. For each
    therapist and each patient, no two such appointments overlap on
    ``[start_at, end_at)``.
    """

    __tablename__ = "appointments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the appointment."""

    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"))
    """Reference to the patient who booked this appointment."""

    therapist_id: Mapped[int] = mapped_column(ForeignKey("therapists.id"))
    """Reference to the therapist conducting the session."""

    start_at: Mapped[datetime] = mapped_column(UTCDateTime())
    """Session start (UTC)."""

    end_at: Mapped[datetime] = mapped_column(UTCDateTime())
    """Session end, always ``start_at + duration_minutes``. Stored so overlap checks are a single indexed comparison."""

    duration_minutes: Mapped[int] = mapped_column()
    """Length of the session in minutes."""

    modality: Mapped[str] = mapped_column(String(20))
    """How the session is held: 'in_person', 'video' or 'phone'."""

    status: Mapped[str] = mapped_column(String(20), default=STATUS_SCHEDULED)
    """Current status. Valid values: 'scheduled', 'confirmed', 'completed', 'cancelled', 'no_show'."""

    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    """Optional session notes recorded on completion."""

    confirmed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    """Timestamp when the appointment was confirmed."""

    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    """Timestamp when the appointment was marked completed."""

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    """Timestamp when the appointment was cancelled (if applicable)."""

    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    """Why the appointment was cancelled. 'Rescheduled' when superseded by a reschedule."""

    cancelled_by: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    """Who cancelled: 'patient', 'therapist' or 'admin'."""

    rescheduled_from_id: Mapped[Optional[int]] = mapped_column(ForeignKey("appointments.id"), nullable=True)
    """The cancelled appointment this one replaced, if created by a reschedule."""

    rescheduled_to_id: Mapped[Optional[int]] = mapped_column(ForeignKey("appointments.id"), nullable=True)
    """The appointment that replaced this one, if it was rescheduled."""

    created_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Relationships
    patient = relationship("Patient", back_populates="appointments")
    therapist = relationship("Therapist", back_populates="appointments")
    reminder_deliveries = relationship(
        "ReminderDelivery",
        back_populates="appointment",
        order_by="ReminderDelivery.fired_at",
    )
    """Reminder-fired records for this appointment."""

    __table_args__ = (
        CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'completed', 'cancelled', 'no_show')",
            name="ck_appointments_status",
        ),
        CheckConstraint(
            "modality IN ('in_person', 'video', 'phone')",
            name="ck_appointments_modality",
        ),
        CheckConstraint('duration_minutes > 0', name='ck_appointments_duration_positive'),
        CheckConstraint('start_at < end_at', name='ck_appointments_range'),
        # Overlap queries filter by party, status and time range
        Index('idx_appointments_therapist_status_start', 'therapist_id', 'status', 'start_at'),
        Index('idx_appointments_patient_status_start', 'patient_id', 'status', 'start_at'),
        # Reminder sweeps scan active appointments by start time
        Index('idx_appointments_status_start', 'status', 'start_at'),
    )

    @property
    def is_active(self) -> bool:
        """True while the appointment occupies time."""
        return self.status in ACTIVE_STATUSES

    def __repr__(self) -> str:
        return (
            f"Appointment(id={self.id}, therapist_id={self.therapist_id}, "
            f"patient_id={self.patient_id}, start_at={self.start_at}, status='{self.status}')"
        )
