"""
Reminder delivery model: the durable "reminder fired" marker.

A row exists only after the dispatcher reported the reminder as delivered.
The unique constraint on ``(appointment_id, offset_label)`` is what keeps two
concurrent sweeps from both recording the same reminder.
"""

from datetime import datetime

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, UTCDateTime


class ReminderDelivery(Base):
    """Record that the reminder ``offset_label`` was delivered for an appointment."""

    __tablename__ = "reminder_deliveries"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    appointment_id: Mapped[int] = mapped_column(ForeignKey("appointments.id"))
    """Appointment the reminder was sent for."""

    offset_label: Mapped[str] = mapped_column(String(16))
    """Configured offset label, e.g. '24h', '1h', '15m'."""

    channel: Mapped[str] = mapped_column(String(20))
    """Channel the reminder went out on."""

    fired_at: Mapped[datetime] = mapped_column(UTCDateTime())
    """When the dispatcher reported delivery."""

    # Relationships
    appointment = relationship("Appointment", back_populates="reminder_deliveries")

    __table_args__ = (
        UniqueConstraint('appointment_id', 'offset_label', name='uq_reminder_deliveries_appointment_offset'),
    )
