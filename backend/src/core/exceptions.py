"""
Domain errors raised by the scheduling services.

Services raise these instead of HTTPException so they can be used from the
API layer and from background sweeps alike. The FastAPI app maps each family
to a status code in ``main.py``.
"""

from typing import Optional


class SchedulingError(Exception):
    """Base class for all scheduling errors."""

    code = "scheduling_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


# Validation (never retried)

class ValidationError(SchedulingError):
    code = "validation_error"


class InvalidRangeError(ValidationError):
    code = "invalid_range"


class InvalidDurationError(ValidationError):
    code = "invalid_duration"


# Conflicts

class ConflictError(SchedulingError):
    """Requested time overlaps an active appointment of one of the parties."""

    code = "conflict"

    def __init__(
        self,
        message: str = "",
        party: Optional[str] = None,
        existing_appointment_id: Optional[int] = None,
    ):
        super().__init__(message)
        self.party = party
        self.existing_appointment_id = existing_appointment_id


class SlotUnavailableError(ConflictError):
    code = "slot_unavailable"


# Lookups

class NotFoundError(SchedulingError):
    code = "not_found"


class TherapistNotFoundError(NotFoundError):
    code = "therapist_not_found"


class PatientNotFoundError(NotFoundError):
    code = "patient_not_found"


class AppointmentNotFoundError(NotFoundError):
    code = "appointment_not_found"


# State machine

class InvalidTransitionError(SchedulingError):
    """Operation is not permitted from the appointment's current status."""

    code = "invalid_transition"

    def __init__(self, message: str = "", current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


# Infrastructure

class UnavailableError(SchedulingError):
    """Store or lock could not be acquired within its bound; safe to retry."""

    code = "unavailable"
