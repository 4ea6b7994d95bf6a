"""
Tests for authentication and authorization dependencies.
"""

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from auth.dependencies import (
    UserContext,
    ensure_appointment_access,
    ensure_therapist_access,
    get_current_user,
    get_token_payload,
    require_therapist_or_admin,
)
from models import Appointment
from services.jwt_service import TokenPayload
from tests.utils import create_jwt_token


class TestUserContext:
    """Test UserContext access checks."""

    def test_patient_accesses_own_appointments_only(self):
        context = UserContext(subject="p1", role="patient", patient_id=1)

        assert context.is_patient()
        assert context.can_access_appointment(Appointment(id=1, patient_id=1, therapist_id=5))
        assert not context.can_access_appointment(Appointment(id=2, patient_id=2, therapist_id=5))

    def test_therapist_accesses_own_appointments_only(self):
        context = UserContext(subject="t5", role="therapist", therapist_id=5)

        assert context.can_access_appointment(Appointment(id=1, patient_id=1, therapist_id=5))
        assert not context.can_access_appointment(Appointment(id=2, patient_id=1, therapist_id=6))
        assert context.can_manage_therapist(5)
        assert not context.can_manage_therapist(6)

    def test_admin_accesses_everything(self):
        context = UserContext(subject="a", role="admin")

        assert context.can_access_appointment(Appointment(id=1, patient_id=1, therapist_id=5))
        assert context.can_manage_therapist(42)


class TestGetCurrentUser:

    def test_missing_token(self):
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(None)
        assert exc_info.value.status_code == 401

    def test_patient_token_without_patient_id(self):
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(TokenPayload(sub="p", role="patient"))
        assert exc_info.value.status_code == 401

    def test_therapist_token_without_therapist_id(self):
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(TokenPayload(sub="t", role="therapist"))
        assert exc_info.value.status_code == 401

    def test_unknown_role(self):
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(TokenPayload(sub="x", role="superuser"))
        assert exc_info.value.status_code == 401

    def test_valid_token_round_trip(self):
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials=create_jwt_token("patient", patient_id=4))

        user = get_current_user(get_token_payload(credentials))

        assert user.role == "patient"
        assert user.patient_id == 4

    def test_no_credentials_gives_no_payload(self):
        assert get_token_payload(None) is None


class TestRoleRequirements:

    def test_require_therapist_or_admin(self):
        assert require_therapist_or_admin(UserContext("t", "therapist", therapist_id=1)).is_therapist()
        assert require_therapist_or_admin(UserContext("a", "admin")).is_admin()
        with pytest.raises(HTTPException) as exc_info:
            require_therapist_or_admin(UserContext("p", "patient", patient_id=1))
        assert exc_info.value.status_code == 403

    def test_ensure_helpers(self):
        patient = UserContext("p", "patient", patient_id=1)
        with pytest.raises(HTTPException):
            ensure_appointment_access(patient, Appointment(id=9, patient_id=2, therapist_id=1))
        with pytest.raises(HTTPException):
            ensure_therapist_access(patient, 1)
        ensure_appointment_access(patient, Appointment(id=10, patient_id=1, therapist_id=1))
