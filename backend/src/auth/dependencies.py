# pyright: reportMissingTypeStubs=false
"""
Authentication and authorization dependencies for FastAPI.

Caller identity and role come from a bearer token issued by the identity
provider. Patients may act on their own appointments, therapists on their
own appointments and schedule, admins on everything.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from models import Appointment
from services.jwt_service import TokenPayload, jwt_service

logger = logging.getLogger(__name__)

ROLE_PATIENT = "patient"
ROLE_THERAPIST = "therapist"
ROLE_ADMIN = "admin"
VALID_ROLES = (ROLE_PATIENT, ROLE_THERAPIST, ROLE_ADMIN)


class UserContext:
    """Authenticated caller extracted from the bearer token."""

    def __init__(
        self,
        subject: str,
        role: str,
        patient_id: Optional[int] = None,
        therapist_id: Optional[int] = None,
    ):
        self.subject = subject
        self.role = role
        self.patient_id = patient_id
        self.therapist_id = therapist_id

    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def is_patient(self) -> bool:
        return self.role == ROLE_PATIENT

    def is_therapist(self) -> bool:
        return self.role == ROLE_THERAPIST

    def can_access_appointment(self, appointment: Appointment) -> bool:
        """Check whether the caller is a party to the appointment (or an admin)."""
        if self.is_admin():
            return True
        if self.is_patient():
            return appointment.patient_id == self.patient_id
        if self.is_therapist():
            return appointment.therapist_id == self.therapist_id
        return False

    def can_manage_therapist(self, therapist_id: int) -> bool:
        return self.is_admin() or (self.is_therapist() and self.therapist_id == therapist_id)

    def __repr__(self) -> str:
        return f"UserContext(subject='{self.subject}', role='{self.role}')"


# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


def get_token_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[TokenPayload]:
    """Extract and validate JWT token payload."""
    if not credentials:
        return None
    return jwt_service.verify_token(credentials.credentials)


def get_current_user(payload: Optional[TokenPayload] = Depends(get_token_payload)) -> UserContext:
    """Get authenticated user context from JWT token."""
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication credentials not provided"
        )

    if payload.role not in VALID_ROLES:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid role"
        )
    if payload.role == ROLE_PATIENT and payload.patient_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Patient token without patient_id"
        )
    if payload.role == ROLE_THERAPIST and payload.therapist_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Therapist token without therapist_id"
        )

    return UserContext(
        subject=payload.sub,
        role=payload.role,
        patient_id=payload.patient_id,
        therapist_id=payload.therapist_id,
    )


def require_therapist_or_admin(user: UserContext = Depends(get_current_user)) -> UserContext:
    """Require therapist or admin role."""
    if not (user.is_therapist() or user.is_admin()):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Therapist or admin access required"
        )
    return user


def ensure_appointment_access(user: UserContext, appointment: Appointment) -> None:
    """Raise 403 unless the caller may act on the appointment."""
    if not user.can_access_appointment(appointment):
        logger.warning(f"{user!r} denied access to appointment {appointment.id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied to this appointment"
        )


def ensure_therapist_access(user: UserContext, therapist_id: int) -> None:
    """Raise 403 unless the caller may manage the therapist's schedule."""
    if not user.can_manage_therapist(therapist_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied to this therapist"
        )
