# pyright: reportMissingTypeStubs=false
"""
Appointment API endpoints: booking and the state machine transitions.

Domain errors raised by the services are translated to HTTP responses by the
exception handlers registered in ``main.py``.
"""

import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from api.responses import (
    AppointmentListResponse,
    AppointmentResponse,
    ReminderTaskListResponse,
    ReminderTaskResponse,
)
from api.shared import get_appointment_service, get_reminder_service
from auth.dependencies import (
    UserContext,
    ensure_appointment_access,
    get_current_user,
    require_therapist_or_admin,
)
from core.constants import MAX_NOTES_LENGTH
from core.database import get_db
from services.appointment_service import AppointmentService
from services.reminder_service import ReminderService
from utils.datetime_utils import parse_datetime_to_utc

logger = logging.getLogger(__name__)

router = APIRouter()


# ===== Request Models =====

class BookAppointmentRequest(BaseModel):
    """Request model for booking an appointment."""
    patient_id: int
    therapist_id: int
    start_at: datetime
    duration_minutes: int
    modality: Literal["in_person", "video", "phone"]

    @field_validator("start_at", mode="before")
    @classmethod
    def parse_start_at(cls, v: str | datetime) -> datetime:
        return parse_datetime_to_utc(v)


class CancelAppointmentRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class RescheduleAppointmentRequest(BaseModel):
    new_start_at: datetime
    new_duration_minutes: Optional[int] = None

    @field_validator("new_start_at", mode="before")
    @classmethod
    def parse_new_start_at(cls, v: str | datetime) -> datetime:
        return parse_datetime_to_utc(v)


class CompleteAppointmentRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)


# ===== Helpers =====

def _actor_for(user: UserContext) -> str:
    return user.role


def _load_for_user(db: Session, appointment_id: int, user: UserContext):
    appointment = AppointmentService.get_appointment(db, appointment_id)
    ensure_appointment_access(user, appointment)
    return appointment


# ===== Endpoints =====

@router.post("/appointments", status_code=status.HTTP_201_CREATED, summary="Book an appointment")
def book_appointment(
    request: BookAppointmentRequest,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    """Book a session. Patients can only book for themselves, therapists only with themselves."""
    if current_user.is_patient() and request.patient_id != current_user.patient_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Patients can only book for themselves")
    if current_user.is_therapist() and request.therapist_id != current_user.therapist_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Therapists can only book their own sessions")

    appointment = service.book(
        db,
        patient_id=request.patient_id,
        therapist_id=request.therapist_id,
        start=request.start_at,
        duration_minutes=request.duration_minutes,
        modality=request.modality,
    )
    return AppointmentResponse.model_validate(appointment)


@router.get("/appointments", summary="List appointments")
def list_appointments(
    therapist_id: Optional[int] = Query(None),
    patient_id: Optional[int] = Query(None),
    include_inactive: bool = Query(False),
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AppointmentListResponse:
    """List a party's appointments. Non-admins are restricted to their own."""
    if current_user.is_patient():
        if patient_id not in (None, current_user.patient_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        patient_id = current_user.patient_id
    elif current_user.is_therapist():
        if therapist_id not in (None, current_user.therapist_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        therapist_id = current_user.therapist_id

    appointments = AppointmentService.list_appointments(
        db, therapist_id=therapist_id, patient_id=patient_id, include_inactive=include_inactive
    )
    return AppointmentListResponse(
        appointments=[AppointmentResponse.model_validate(appointment) for appointment in appointments]
    )


@router.get("/appointments/{appointment_id}", summary="Get an appointment")
def get_appointment(
    appointment_id: int,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AppointmentResponse:
    appointment = _load_for_user(db, appointment_id, current_user)
    return AppointmentResponse.model_validate(appointment)


@router.post("/appointments/{appointment_id}/confirm", summary="Confirm an appointment")
def confirm_appointment(
    appointment_id: int,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    _load_for_user(db, appointment_id, current_user)
    appointment = service.confirm(db, appointment_id)
    return AppointmentResponse.model_validate(appointment)


@router.post(
    "/appointments/{appointment_id}/cancel",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Cancel an appointment",
)
def cancel_appointment(
    appointment_id: int,
    request: CancelAppointmentRequest,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: AppointmentService = Depends(get_appointment_service),
) -> Response:
    _load_for_user(db, appointment_id, current_user)
    service.cancel(db, appointment_id, reason=request.reason, actor=_actor_for(current_user))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/appointments/{appointment_id}/reschedule",
    status_code=status.HTTP_201_CREATED,
    summary="Reschedule an appointment",
)
def reschedule_appointment(
    appointment_id: int,
    request: RescheduleAppointmentRequest,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    """Cancel the appointment and book its replacement; returns the new appointment."""
    _load_for_user(db, appointment_id, current_user)
    replacement = service.reschedule(
        db,
        appointment_id,
        new_start=request.new_start_at,
        new_duration_minutes=request.new_duration_minutes,
        actor=_actor_for(current_user),
    )
    return AppointmentResponse.model_validate(replacement)


@router.post("/appointments/{appointment_id}/complete", summary="Mark an appointment completed")
def complete_appointment(
    appointment_id: int,
    request: CompleteAppointmentRequest,
    current_user: UserContext = Depends(require_therapist_or_admin),
    db: Session = Depends(get_db),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    _load_for_user(db, appointment_id, current_user)
    appointment = service.complete(db, appointment_id, notes=request.notes)
    return AppointmentResponse.model_validate(appointment)


@router.post("/appointments/{appointment_id}/no-show", summary="Mark an appointment as no-show")
def mark_no_show(
    appointment_id: int,
    current_user: UserContext = Depends(require_therapist_or_admin),
    db: Session = Depends(get_db),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    _load_for_user(db, appointment_id, current_user)
    appointment = service.mark_no_show(db, appointment_id)
    return AppointmentResponse.model_validate(appointment)


@router.get("/appointments/{appointment_id}/reminders", summary="List reminder tasks")
def list_reminders(
    appointment_id: int,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    reminder_service: ReminderService = Depends(get_reminder_service),
) -> ReminderTaskListResponse:
    """Pending and fired reminders of an active appointment; empty once it is terminal."""
    appointment = _load_for_user(db, appointment_id, current_user)
    tasks = reminder_service.reminder_tasks(db, appointment)
    return ReminderTaskListResponse(
        appointment_id=appointment.id,
        status=appointment.status,
        reminders=[
            ReminderTaskResponse(
                offset_label=task.offset_label,
                due_at=task.due_at,
                fired=task.fired,
                fired_at=task.fired_at,
            )
            for task in tasks
        ],
    )
