"""
Shared response models for API endpoints.

This module contains Pydantic response models that are shared across
multiple API endpoints to ensure consistency and reduce duplication.
"""

from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class AppointmentResponse(BaseModel):
    """Response model for an appointment."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    therapist_id: int
    start_at: datetime
    end_at: datetime
    duration_minutes: int
    modality: str
    status: str
    notes: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    rescheduled_from_id: Optional[int] = None
    rescheduled_to_id: Optional[int] = None
    created_at: Optional[datetime] = None


class AppointmentListResponse(BaseModel):
    """Response model for listing appointments."""
    appointments: List[AppointmentResponse]


class AvailabilityWindowResponse(BaseModel):
    """One bookable window."""
    start: datetime
    end: datetime


class AvailabilityResponse(BaseModel):
    """Response model for an availability search."""
    therapist_id: int
    timezone: str
    start_date: date
    end_date: date
    slot_duration_minutes: int
    windows: List[AvailabilityWindowResponse]
    truncated: bool = False  # True when the limit cut the list short


class ReminderTaskResponse(BaseModel):
    """Projection of a pending or fired reminder."""
    offset_label: str
    due_at: datetime
    fired: bool
    fired_at: Optional[datetime] = None


class ReminderTaskListResponse(BaseModel):
    appointment_id: int
    status: str
    reminders: List[ReminderTaskResponse]


class AvailabilityRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day_of_week: int
    start_time: time
    end_time: time
    timezone: str


class AvailabilityRuleSetResponse(BaseModel):
    """Response model for a published rule set version."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    therapist_id: int
    version: int
    effective_from: date
    rules: List[AvailabilityRuleResponse]


class BlackoutResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    therapist_id: int
    start_at: datetime
    end_at: datetime
    reason: Optional[str] = None
