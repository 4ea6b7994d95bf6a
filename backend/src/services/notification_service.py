# pyright: reportUnknownMemberType=false, reportMissingTypeStubs=false
"""
Notification dispatch for reminders, cancellations and reschedules.

Delivery itself is owned by an external dispatcher. This module defines the
dispatcher interface, a logging implementation for development, an HTTP
webhook implementation, and ``NotificationService`` which turns appointments
into templated payloads and picks the recipient's channel.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from core.config import NOTIFICATION_TIMEOUT_SECONDS, NOTIFICATION_WEBHOOK_URL
from models import Appointment, Patient, Therapist
from utils.datetime_utils import format_datetime

logger = logging.getLogger(__name__)

TEMPLATE_REMINDER = "appointment_reminder"
TEMPLATE_CANCELLED = "appointment_cancelled"
TEMPLATE_RESCHEDULED = "appointment_rescheduled"


class DeliveryStatus(Enum):
    DELIVERED = "delivered"
    FAILED = "failed"


class CancellationSource(Enum):
    PATIENT = "patient"
    THERAPIST = "therapist"
    ADMIN = "admin"


class NotificationDispatcher(ABC):
    """
    Interface to the external notification dispatcher.

    Implementations must not raise: any transport problem is reported as
    ``DeliveryStatus.FAILED``.
    """

    @abstractmethod
    def send_notification(
        self,
        recipient_id: str,
        channel: str,
        template: str,
        payload: Dict[str, Any],
    ) -> DeliveryStatus:
        """Deliver one notification and report the outcome."""


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Dispatcher that only logs. Used when no webhook is configured."""

    def send_notification(
        self,
        recipient_id: str,
        channel: str,
        template: str,
        payload: Dict[str, Any],
    ) -> DeliveryStatus:
        logger.info(f"[{channel}] {template} -> {recipient_id}: {payload}")
        return DeliveryStatus.DELIVERED


class WebhookNotificationDispatcher(NotificationDispatcher):
    """Dispatcher that POSTs each notification to an HTTP endpoint."""

    def __init__(self, url: str, timeout: float = NOTIFICATION_TIMEOUT_SECONDS, client: Optional[httpx.Client] = None):
        self.url = url
        self.client = client or httpx.Client(timeout=timeout)

    def send_notification(
        self,
        recipient_id: str,
        channel: str,
        template: str,
        payload: Dict[str, Any],
    ) -> DeliveryStatus:
        body = {
            "recipient_id": recipient_id,
            "channel": channel,
            "template": template,
            "payload": payload,
        }
        try:
            response = self.client.post(self.url, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                f"Notification webhook rejected {template} for {recipient_id}: "
                f"HTTP {e.response.status_code}"
            )
            return DeliveryStatus.FAILED
        except httpx.HTTPError as e:
            logger.warning(f"Notification webhook unreachable for {template} to {recipient_id}: {e}")
            return DeliveryStatus.FAILED
        return DeliveryStatus.DELIVERED

    def close(self) -> None:
        self.client.close()


def build_dispatcher() -> NotificationDispatcher:
    """Pick the dispatcher implementation from configuration."""
    if NOTIFICATION_WEBHOOK_URL:
        logger.info(f"Using webhook notification dispatcher: {NOTIFICATION_WEBHOOK_URL}")
        return WebhookNotificationDispatcher(NOTIFICATION_WEBHOOK_URL)
    logger.info("NOTIFICATION_WEBHOOK_URL not set, notifications will only be logged")
    return LoggingNotificationDispatcher()


def patient_recipient_id(patient_id: int) -> str:
    return f"patient:{patient_id}"


def therapist_recipient_id(therapist_id: int) -> str:
    return f"therapist:{therapist_id}"


class NotificationService:
    """Builds notification payloads for appointments and hands them to the dispatcher."""

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher

    @staticmethod
    def _appointment_payload(appointment: Appointment, tz_name: str) -> Dict[str, Any]:
        therapist: Optional[Therapist] = appointment.therapist
        return {
            "appointment_id": appointment.id,
            "start_at": appointment.start_at.isoformat(),
            "end_at": appointment.end_at.isoformat(),
            "start_display": format_datetime(appointment.start_at, tz_name),
            "duration_minutes": appointment.duration_minutes,
            "modality": appointment.modality,
            "therapist_name": therapist.full_name if therapist else None,
        }

    def send_reminder(self, appointment: Appointment, offset_label: str) -> DeliveryStatus:
        """
        Send the ``offset_label`` reminder to the patient.

        Returns:
            The dispatcher's delivery status
        """
        patient: Patient = appointment.patient
        payload = self._appointment_payload(appointment, patient.timezone)
        payload["offset"] = offset_label
        return self.dispatcher.send_notification(
            patient_recipient_id(patient.id),
            patient.contact_preference,
            TEMPLATE_REMINDER,
            payload,
        )

    def send_appointment_cancellation(
        self,
        appointment: Appointment,
        source: CancellationSource,
    ) -> List[DeliveryStatus]:
        """
        Notify the party that did not cancel. Admin cancellations notify both.

        Returns:
            One delivery status per recipient
        """
        recipients: List[tuple[str, str, str]] = []
        if source in (CancellationSource.THERAPIST, CancellationSource.ADMIN):
            patient = appointment.patient
            recipients.append((patient_recipient_id(patient.id), patient.contact_preference, patient.timezone))
        if source in (CancellationSource.PATIENT, CancellationSource.ADMIN):
            therapist = appointment.therapist
            recipients.append((therapist_recipient_id(therapist.id), therapist.contact_preference, therapist.timezone))

        results: List[DeliveryStatus] = []
        for recipient_id, channel, tz_name in recipients:
            payload = self._appointment_payload(appointment, tz_name)
            payload["reason"] = appointment.cancellation_reason
            payload["cancelled_by"] = source.value
            status = self.dispatcher.send_notification(recipient_id, channel, TEMPLATE_CANCELLED, payload)
            if status is DeliveryStatus.FAILED:
                logger.warning(f"Cancellation notice for appointment {appointment.id} to {recipient_id} failed")
            results.append(status)
        return results

    def send_appointment_rescheduled(
        self,
        original: Appointment,
        replacement: Appointment,
        source: CancellationSource,
    ) -> List[DeliveryStatus]:
        """Tell both parties (except the one who moved it) about the new time."""
        recipients: List[tuple[str, str, str]] = []
        if source is not CancellationSource.PATIENT:
            patient = replacement.patient
            recipients.append((patient_recipient_id(patient.id), patient.contact_preference, patient.timezone))
        if source is not CancellationSource.THERAPIST:
            therapist = replacement.therapist
            recipients.append((therapist_recipient_id(therapist.id), therapist.contact_preference, therapist.timezone))

        results: List[DeliveryStatus] = []
        for recipient_id, channel, tz_name in recipients:
            payload = self._appointment_payload(replacement, tz_name)
            payload["previous_appointment_id"] = original.id
            payload["previous_start_display"] = format_datetime(original.start_at, tz_name)
            results.append(
                self.dispatcher.send_notification(recipient_id, channel, TEMPLATE_RESCHEDULED, payload)
            )
        return results
