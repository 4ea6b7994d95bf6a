# Package initialization
# Import all models to ensure relationships are properly established
from .therapist import Therapist
from .patient import Patient
from .availability_rule import AvailabilityRuleSet, AvailabilityRule
from .availability_exception import AvailabilityException
from .appointment import Appointment
from .reminder_delivery import ReminderDelivery

__all__ = [
    "Therapist",
    "Patient",
    "AvailabilityRuleSet",
    "AvailabilityRule",
    "AvailabilityException",
    "Appointment",
    "ReminderDelivery",
]
