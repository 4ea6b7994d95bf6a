"""
Conflict detection between a requested window and committed appointments.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.constants import ACTIVE_STATUSES
from models import Appointment
from shared_types import ConflictResult

logger = logging.getLogger(__name__)


class ConflictDetector:
    """
    Checks a window against the active appointments of both parties.

    Intervals are half-open, so back-to-back sessions never conflict. Only
    ``scheduled`` and ``confirmed`` appointments occupy time. Modality is not
    considered: a phone and a video session at the same instant still clash.
    """

    @staticmethod
    def _find_overlap(
        db: Session,
        party_column,
        party_id: int,
        start: datetime,
        end: datetime,
        exclude_appointment_id: Optional[int],
    ) -> Optional[int]:
        stmt = (
            select(Appointment.id)
            .where(
                party_column == party_id,
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.start_at < end,
                Appointment.end_at > start,
            )
            .order_by(Appointment.start_at)
            .limit(1)
        )
        if exclude_appointment_id is not None:
            stmt = stmt.where(Appointment.id != exclude_appointment_id)
        return db.scalar(stmt)

    @staticmethod
    def check_conflict(
        db: Session,
        therapist_id: int,
        patient_id: int,
        start: datetime,
        duration_minutes: int,
        exclude_appointment_id: Optional[int] = None,
    ) -> ConflictResult:
        """
        Check whether ``[start, start + duration)`` is free for both parties.

        The therapist is checked first, then the patient.

        Args:
            db: Database session
            therapist_id: Therapist of the requested session
            patient_id: Patient of the requested session
            start: Requested start (aware)
            duration_minutes: Requested length
            exclude_appointment_id: Appointment to ignore, used when rescheduling

        Returns:
            ``ConflictResult()`` when free, otherwise the conflicting party and appointment id
        """
        end = start + timedelta(minutes=duration_minutes)

        existing_id = ConflictDetector._find_overlap(
            db, Appointment.therapist_id, therapist_id, start, end, exclude_appointment_id
        )
        if existing_id is not None:
            logger.debug(f"Therapist {therapist_id} busy at {start}: appointment {existing_id}")
            return ConflictResult(party="therapist", existing_appointment_id=existing_id)

        existing_id = ConflictDetector._find_overlap(
            db, Appointment.patient_id, patient_id, start, end, exclude_appointment_id
        )
        if existing_id is not None:
            logger.debug(f"Patient {patient_id} busy at {start}: appointment {existing_id}")
            return ConflictResult(party="patient", existing_appointment_id=existing_id)

        return ConflictResult()
