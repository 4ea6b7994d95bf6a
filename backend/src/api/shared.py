"""
Service dependencies shared by the API routers.

Long-lived service objects are created once in ``main.py`` and kept on
``app.state``; routes receive them through these dependencies so tests can
override them.
"""

from fastapi import Request

from services.appointment_service import AppointmentService
from services.reminder_service import ReminderService


def get_appointment_service(request: Request) -> AppointmentService:
    return request.app.state.appointment_service


def get_reminder_service(request: Request) -> ReminderService:
    return request.app.state.reminder_service
