"""
Services package for shared business logic.

This package contains service classes that encapsulate business logic
shared between the API endpoints and the background sweeps.
"""

from .availability_service import AvailabilityService
from .conflict_service import ConflictDetector
from .appointment_service import AppointmentService
from .reminder_service import ReminderService

__all__ = [
    "AvailabilityService",
    "ConflictDetector",
    "AppointmentService",
    "ReminderService",
]
