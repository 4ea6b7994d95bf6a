"""
Test utilities for scheduling tests.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from models import Appointment, AvailabilityRule, AvailabilityRuleSet, Patient, Therapist
from services.jwt_service import TokenPayload, jwt_service
from services.notification_service import DeliveryStatus, NotificationDispatcher

UTC = timezone.utc

# A Monday far enough ahead that real-clock code paths treat it as future
MONDAY = date(2030, 3, 4)
# Fixed "current time" for services with an injectable clock: the Friday before
NOW = datetime(2030, 3, 1, 12, 0, tzinfo=UTC)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    """UTC instant on ``day`` at ``hour:minute``."""
    return datetime.combine(day, time(hour, minute), tzinfo=UTC)


def create_jwt_token(role: str, patient_id: Optional[int] = None, therapist_id: Optional[int] = None) -> str:
    """Create a bearer token for the given role."""
    payload = TokenPayload(
        sub=f"{role}-{patient_id or therapist_id or 0}",
        role=role,
        patient_id=patient_id,
        therapist_id=therapist_id,
    )
    return jwt_service.create_access_token(payload)


def auth_headers(role: str, patient_id: Optional[int] = None, therapist_id: Optional[int] = None) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_jwt_token(role, patient_id, therapist_id)}"}


class RecordingDispatcher(NotificationDispatcher):
    """Dispatcher that records every notification and returns scripted statuses."""

    def __init__(self, statuses: Optional[List[DeliveryStatus]] = None):
        self.sent: List[Dict[str, Any]] = []
        self.statuses = list(statuses or [])

    def send_notification(self, recipient_id, channel, template, payload):
        self.sent.append({
            "recipient_id": recipient_id,
            "channel": channel,
            "template": template,
            "payload": payload,
        })
        if self.statuses:
            return self.statuses.pop(0)
        return DeliveryStatus.DELIVERED

    def templates(self) -> List[str]:
        return [item["template"] for item in self.sent]

    def recipients(self) -> List[str]:
        return [item["recipient_id"] for item in self.sent]


# Helper functions for creating records

def create_therapist(
    db_session: Session,
    full_name: str = "Dr. Test",
    tz_name: str = "UTC",
    contact_preference: str = "email",
) -> Therapist:
    therapist = Therapist(full_name=full_name, timezone=tz_name, contact_preference=contact_preference)
    db_session.add(therapist)
    db_session.commit()
    return therapist


def create_patient(
    db_session: Session,
    full_name: str = "Test Patient",
    tz_name: str = "UTC",
    contact_preference: str = "sms",
) -> Patient:
    patient = Patient(full_name=full_name, timezone=tz_name, contact_preference=contact_preference)
    db_session.add(patient)
    db_session.commit()
    return patient


def create_rule_set(
    db_session: Session,
    therapist: Therapist,
    periods: List[tuple[int, time, time]],
    effective_from: date = date(2030, 1, 1),
    version: int = 1,
    tz_name: Optional[str] = None,
) -> AvailabilityRuleSet:
    """
    Store a rule set directly.

    Args:
        periods: ``(day_of_week, start_time, end_time)`` tuples
    """
    rule_set = AvailabilityRuleSet(therapist_id=therapist.id, version=version, effective_from=effective_from)
    rule_set.rules = [
        AvailabilityRule(
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            timezone=tz_name or therapist.timezone,
        )
        for day_of_week, start_time, end_time in periods
    ]
    db_session.add(rule_set)
    db_session.commit()
    return rule_set


def create_appointment(
    db_session: Session,
    patient: Patient,
    therapist: Therapist,
    start_at: datetime,
    duration_minutes: int = 50,
    status: str = "scheduled",
    modality: str = "video",
) -> Appointment:
    """Insert an appointment without going through the booking checks."""
    appointment = Appointment(
        patient_id=patient.id,
        therapist_id=therapist.id,
        start_at=start_at,
        end_at=start_at + timedelta(minutes=duration_minutes),
        duration_minutes=duration_minutes,
        modality=modality,
        status=status,
    )
    db_session.add(appointment)
    db_session.commit()
    return appointment
