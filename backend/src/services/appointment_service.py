# pyright: reportMissingTypeStubs=false
"""
Appointment service implementing the booking state machine.

States: scheduled -> confirmed -> completed, with scheduled/confirmed ->
cancelled and scheduled/confirmed -> no_show. Terminal states are final.

Booking is linearizable per therapist and per patient: the availability and
conflict checks run inside one serialized section together with the commit.
The section is an in-process keyed lock plus ``SELECT ... FOR UPDATE`` on the
therapist and patient rows (always in that order), so concurrent bookings in
other processes queue on the same rows.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from core.config import BOOKING_LOCK_TIMEOUT_SECONDS
from core.constants import (
    ACTIVE_STATUSES,
    CANCELLATION_ACTORS,
    MAX_REASON_LENGTH,
    MAX_SLOT_DURATION_MINUTES,
    MODALITIES,
    RESCHEDULED_CANCELLATION_REASON,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_NO_SHOW,
    STATUS_SCHEDULED,
)
from core.exceptions import (
    AppointmentNotFoundError,
    InvalidDurationError,
    InvalidTransitionError,
    PatientNotFoundError,
    SchedulingError,
    SlotUnavailableError,
    TherapistNotFoundError,
    UnavailableError,
    ValidationError,
)
from models import Appointment, Patient, Therapist
from models.appointment import can_transition
from services.availability_service import AvailabilityService
from services.conflict_service import ConflictDetector
from services.notification_service import CancellationSource, NotificationService
from utils.datetime_utils import utc_now
from utils.locks import KeyedLock, LockTimeout

logger = logging.getLogger(__name__)

# Shared by every AppointmentService in the process so that separate
# request-scoped instances still serialize on the same keys.
_booking_locks = KeyedLock()


class AppointmentService:
    """
    Service class for appointment operations.

    Every mutating method takes the request's session, commits on success and
    rolls back on failure. Domain errors from ``core.exceptions`` are raised
    for the API layer to translate.
    """

    def __init__(
        self,
        notification_service: Optional[NotificationService] = None,
        locks: Optional[KeyedLock] = None,
        lock_timeout: float = BOOKING_LOCK_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.notification_service = notification_service
        self.locks = locks or _booking_locks
        self.lock_timeout = lock_timeout
        self.clock = clock

    # ===== Validation =====

    @staticmethod
    def _validate_window(start: datetime, duration_minutes: int, now: datetime) -> None:
        if not isinstance(start, datetime) or start.tzinfo is None:
            raise ValidationError("start must be a timezone-aware datetime")
        if (
            not isinstance(duration_minutes, int)
            or isinstance(duration_minutes, bool)
            or not 0 < duration_minutes <= MAX_SLOT_DURATION_MINUTES
        ):
            raise InvalidDurationError(
                f"Duration must be between 1 and {MAX_SLOT_DURATION_MINUTES} minutes, got {duration_minutes}"
            )
        if start <= now:
            raise ValidationError("Appointments can only be booked in the future")

    @staticmethod
    def _validate_modality(modality: str) -> None:
        if modality not in MODALITIES:
            raise ValidationError(f"modality must be one of {', '.join(MODALITIES)}")

    @staticmethod
    def _validate_actor(actor: str) -> CancellationSource:
        if actor not in CANCELLATION_ACTORS:
            raise ValidationError(f"actor must be one of {', '.join(CANCELLATION_ACTORS)}")
        return CancellationSource(actor)

    # ===== Locking helpers =====

    @staticmethod
    def _lock_parties(db: Session, therapist_id: int, patient_id: int) -> Tuple[Therapist, Patient]:
        """Row-lock therapist then patient. Raises the matching NotFound error."""
        therapist = db.execute(
            select(Therapist).where(Therapist.id == therapist_id).with_for_update()
        ).scalar_one_or_none()
        if therapist is None:
            raise TherapistNotFoundError(f"Therapist {therapist_id} not found")
        patient = db.execute(
            select(Patient).where(Patient.id == patient_id).with_for_update()
        ).scalar_one_or_none()
        if patient is None:
            raise PatientNotFoundError(f"Patient {patient_id} not found")
        return therapist, patient

    @staticmethod
    def appointment_lock_statement(appointment_id: int) -> Select:
        """
        Row-locking reload of one appointment.

        Waits for a concurrent holder (a reminder sweep mid-dispatch, another
        transition) up to the store's ``lock_timeout`` instead of failing at once.
        """
        return (
            select(Appointment)
            .where(Appointment.id == appointment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    @staticmethod
    def _lock_appointment(db: Session, appointment_id: int) -> Appointment:
        """
        Reload an appointment with a row lock, refreshing any cached copy.

        Raises:
            AppointmentNotFoundError: Unknown id
            UnavailableError: The row stayed locked past the lock timeout
        """
        try:
            appointment = db.execute(
                AppointmentService.appointment_lock_statement(appointment_id)
            ).scalar_one_or_none()
        except OperationalError as e:
            db.rollback()
            raise UnavailableError(
                f"Appointment {appointment_id} is being modified by another operation, retry shortly"
            ) from e
        if appointment is None:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    def _party_keys(self, therapist_id: int, patient_id: int) -> List[Tuple[str, int]]:
        return [("therapist", therapist_id), ("patient", patient_id)]

    def _ensure_bookable(
        self,
        db: Session,
        therapist: Therapist,
        patient_id: int,
        start: datetime,
        duration_minutes: int,
        exclude_appointment_id: Optional[int] = None,
    ) -> None:
        end = start + timedelta(minutes=duration_minutes)
        if not AvailabilityService.is_within_availability(db, therapist, start, end):
            raise SlotUnavailableError(
                f"Therapist {therapist.id} is not available {start.isoformat()} - {end.isoformat()}",
                party="therapist",
            )
        conflict = ConflictDetector.check_conflict(
            db, therapist.id, patient_id, start, duration_minutes, exclude_appointment_id
        )
        if not conflict.ok:
            raise SlotUnavailableError(
                f"The {conflict.party} already has appointment {conflict.existing_appointment_id} at that time",
                party=conflict.party,
                existing_appointment_id=conflict.existing_appointment_id,
            )

    def _run_serialized(self, db: Session, keys: List[Tuple[str, int]], operation: Callable[[], Appointment]) -> Appointment:
        """
        Run ``operation`` inside the booking section and translate store errors.

        The operation is responsible for committing.
        """
        try:
            with self.locks.acquire_all(keys, timeout=self.lock_timeout):
                try:
                    return operation()
                except SchedulingError:
                    db.rollback()
                    raise
                except IntegrityError as e:
                    db.rollback()
                    logger.warning(f"Integrity error while booking: {e}")
                    raise SlotUnavailableError("The requested slot was taken concurrently") from e
                except OperationalError as e:
                    db.rollback()
                    logger.warning(f"Store timeout while booking: {e}")
                    raise UnavailableError("Scheduling store is busy, retry shortly") from e
        except LockTimeout as e:
            raise UnavailableError("Scheduling is busy for this therapist or patient, retry shortly") from e

    # ===== Operations =====

    def book(
        self,
        db: Session,
        patient_id: int,
        therapist_id: int,
        start: datetime,
        duration_minutes: int,
        modality: str,
    ) -> Appointment:
        """
        Create a new appointment in ``scheduled``.

        Args:
            db: Database session
            patient_id: Patient booking the session
            therapist_id: Therapist conducting it
            start: Session start (aware, in the future)
            duration_minutes: Session length, 1-1440
            modality: 'in_person', 'video' or 'phone'

        Returns:
            The committed appointment

        Raises:
            ValidationError / InvalidDurationError: Malformed input
            TherapistNotFoundError / PatientNotFoundError: Unknown party
            SlotUnavailableError: Outside working hours, inside a blackout, or overlapping
            UnavailableError: Lock or store timeout
        """
        self._validate_window(start, duration_minutes, self.clock())
        self._validate_modality(modality)

        def operation() -> Appointment:
            therapist, _ = self._lock_parties(db, therapist_id, patient_id)
            self._ensure_bookable(db, therapist, patient_id, start, duration_minutes)
            appointment = Appointment(
                patient_id=patient_id,
                therapist_id=therapist_id,
                start_at=start,
                end_at=start + timedelta(minutes=duration_minutes),
                duration_minutes=duration_minutes,
                modality=modality,
                status=STATUS_SCHEDULED,
            )
            db.add(appointment)
            db.commit()
            return appointment

        appointment = self._run_serialized(db, self._party_keys(therapist_id, patient_id), operation)
        logger.info(
            f"Booked appointment {appointment.id}: therapist {therapist_id}, patient {patient_id}, "
            f"{appointment.start_at.isoformat()} ({duration_minutes} min, {modality})"
        )
        return appointment

    def confirm(self, db: Session, appointment_id: int) -> Appointment:
        """
        Confirm a scheduled appointment. Confirming twice is a no-op.

        Raises:
            AppointmentNotFoundError: Unknown id
            InvalidTransitionError: Appointment is not scheduled or confirmed
        """
        appointment = self._lock_appointment(db, appointment_id)
        if appointment.status == STATUS_CONFIRMED:
            db.commit()  # releases the row lock
            logger.info(f"Appointment {appointment_id} already confirmed")
            return appointment
        if not can_transition(appointment.status, STATUS_CONFIRMED):
            db.rollback()
            raise InvalidTransitionError(
                f"Cannot confirm an appointment that is {appointment.status}",
                current_status=appointment.status,
            )
        appointment.status = STATUS_CONFIRMED
        appointment.confirmed_at = self.clock()
        db.commit()
        logger.info(f"Confirmed appointment {appointment_id}")
        return appointment

    def cancel(self, db: Session, appointment_id: int, reason: str, actor: str) -> Appointment:
        """
        Cancel an active appointment and notify the other party.

        Pending reminders are retired implicitly: sweeps only consider
        active appointments and re-check the status under lock.

        Raises:
            ValidationError: Empty reason or unknown actor
            AppointmentNotFoundError: Unknown id
            InvalidTransitionError: Appointment already in a terminal state
        """
        if not reason or not reason.strip():
            raise ValidationError("A cancellation reason is required")
        if len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(f"Cancellation reason must be at most {MAX_REASON_LENGTH} characters")
        source = self._validate_actor(actor)

        appointment = self._lock_appointment(db, appointment_id)
        if not can_transition(appointment.status, STATUS_CANCELLED):
            db.rollback()
            raise InvalidTransitionError(
                f"Cannot cancel an appointment that is {appointment.status}",
                current_status=appointment.status,
            )
        appointment.status = STATUS_CANCELLED
        appointment.cancellation_reason = reason.strip()
        appointment.cancelled_by = actor
        appointment.cancelled_at = self.clock()
        db.commit()
        logger.info(f"Appointment {appointment_id} cancelled by {actor}")

        if self.notification_service:
            try:
                self.notification_service.send_appointment_cancellation(appointment, source)
            except Exception as e:
                # Notification failures must not fail a committed cancellation
                logger.exception(f"Failed to send cancellation notification for appointment {appointment_id}: {e}")
        return appointment

    def reschedule(
        self,
        db: Session,
        appointment_id: int,
        new_start: datetime,
        new_duration_minutes: Optional[int] = None,
        actor: str = "patient",
    ) -> Appointment:
        """
        Move an appointment to a new time.

        The original is cancelled with reason 'Rescheduled' and a new
        ``scheduled`` appointment is created, both in one transaction. The
        conflict check ignores the original, so shifting a session by less
        than its own length works. The original keeps its time and duration.

        Returns:
            The new appointment

        Raises:
            AppointmentNotFoundError: Unknown id
            InvalidTransitionError: Original is not active
            SlotUnavailableError: New window unavailable (nothing is changed)
            ValidationError / InvalidDurationError: Malformed input
        """
        source = self._validate_actor(actor)
        original = db.get(Appointment, appointment_id)
        if original is None:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
        duration = new_duration_minutes if new_duration_minutes is not None else original.duration_minutes
        self._validate_window(new_start, duration, self.clock())

        therapist_id = original.therapist_id
        patient_id = original.patient_id

        def operation() -> Appointment:
            therapist, _ = self._lock_parties(db, therapist_id, patient_id)
            locked = self._lock_appointment(db, appointment_id)
            if not can_transition(locked.status, STATUS_CANCELLED):
                raise InvalidTransitionError(
                    f"Cannot reschedule an appointment that is {locked.status}",
                    current_status=locked.status,
                )
            self._ensure_bookable(db, therapist, patient_id, new_start, duration, exclude_appointment_id=locked.id)

            replacement = Appointment(
                patient_id=patient_id,
                therapist_id=therapist_id,
                start_at=new_start,
                end_at=new_start + timedelta(minutes=duration),
                duration_minutes=duration,
                modality=locked.modality,
                status=STATUS_SCHEDULED,
                rescheduled_from_id=locked.id,
            )
            locked.status = STATUS_CANCELLED
            locked.cancellation_reason = RESCHEDULED_CANCELLATION_REASON
            locked.cancelled_by = actor
            locked.cancelled_at = self.clock()
            db.add(replacement)
            db.flush()
            locked.rescheduled_to_id = replacement.id
            db.commit()
            return replacement

        replacement = self._run_serialized(db, self._party_keys(therapist_id, patient_id), operation)
        logger.info(f"Rescheduled appointment {appointment_id} -> {replacement.id} ({replacement.start_at.isoformat()})")

        if self.notification_service:
            try:
                self.notification_service.send_appointment_rescheduled(original, replacement, source)
            except Exception as e:
                logger.exception(f"Failed to send reschedule notification for appointment {appointment_id}: {e}")
        return replacement

    def complete(
        self,
        db: Session,
        appointment_id: int,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """
        Mark a session as held. Only valid once its end time has passed.

        Raises:
            AppointmentNotFoundError: Unknown id
            InvalidTransitionError: Not active, or the session has not ended yet
        """
        now = now or self.clock()
        appointment = self._lock_appointment(db, appointment_id)
        if not can_transition(appointment.status, STATUS_COMPLETED):
            db.rollback()
            raise InvalidTransitionError(
                f"Cannot complete an appointment that is {appointment.status}",
                current_status=appointment.status,
            )
        if now < appointment.end_at:
            db.rollback()
            raise InvalidTransitionError(
                "Cannot complete an appointment before it has ended",
                current_status=appointment.status,
            )
        appointment.status = STATUS_COMPLETED
        appointment.completed_at = now
        if notes is not None:
            appointment.notes = notes
        db.commit()
        logger.info(f"Completed appointment {appointment_id}")
        return appointment

    def mark_no_show(self, db: Session, appointment_id: int, now: Optional[datetime] = None) -> Appointment:
        """
        Mark an appointment as a no-show. Repeating the call is a no-op.

        Raises:
            AppointmentNotFoundError: Unknown id
            InvalidTransitionError: Not active, or the session has not ended yet
        """
        now = now or self.clock()
        appointment = self._lock_appointment(db, appointment_id)
        if appointment.status == STATUS_NO_SHOW:
            db.commit()
            return appointment
        if not can_transition(appointment.status, STATUS_NO_SHOW):
            db.rollback()
            raise InvalidTransitionError(
                f"Cannot mark an appointment that is {appointment.status} as no-show",
                current_status=appointment.status,
            )
        if now < appointment.end_at:
            db.rollback()
            raise InvalidTransitionError(
                "Cannot mark a no-show before the appointment has ended",
                current_status=appointment.status,
            )
        appointment.status = STATUS_NO_SHOW
        db.commit()
        logger.info(f"Marked appointment {appointment_id} as no-show")
        return appointment

    # ===== Queries =====

    @staticmethod
    def get_appointment(db: Session, appointment_id: int) -> Appointment:
        """
        Raises:
            AppointmentNotFoundError: Unknown id
        """
        appointment = db.get(Appointment, appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    @staticmethod
    def list_appointments(
        db: Session,
        therapist_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        include_inactive: bool = False,
        start_from: Optional[datetime] = None,
        start_before: Optional[datetime] = None,
    ) -> List[Appointment]:
        """List appointments for a therapist and/or patient, ordered by start."""
        if therapist_id is None and patient_id is None:
            raise ValidationError("therapist_id or patient_id is required")
        stmt = select(Appointment)
        if therapist_id is not None:
            stmt = stmt.where(Appointment.therapist_id == therapist_id)
        if patient_id is not None:
            stmt = stmt.where(Appointment.patient_id == patient_id)
        if not include_inactive:
            stmt = stmt.where(Appointment.status.in_(ACTIVE_STATUSES))
        if start_from is not None:
            stmt = stmt.where(Appointment.start_at >= start_from)
        if start_before is not None:
            stmt = stmt.where(Appointment.start_at < start_before)
        return list(db.scalars(stmt.order_by(Appointment.start_at, Appointment.id)).all())
