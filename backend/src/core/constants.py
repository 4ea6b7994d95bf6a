"""Application constants and configuration values."""

from core.config import FRONTEND_URL

# Database field lengths
MAX_NOTES_LENGTH = 1000
MAX_REASON_LENGTH = 500

# Database connection settings
DB_POOL_RECYCLE_SECONDS = 300  # 5 minutes

# CORS origins for development and production
_CORS_ORIGINS_RAW = [
    "http://localhost:5173",
    FRONTEND_URL,
]

# Filter out None values and empty strings to avoid CORS errors
CORS_ORIGINS = [origin for origin in _CORS_ORIGINS_RAW if origin and origin.strip()]

# Availability search
MAX_SEARCH_RANGE_DAYS = 90  # Inclusive date range upper bound
DEFAULT_SLOT_STEP_MINUTES = 15  # Candidate starts align to this grid on the therapist's local clock
MAX_SLOT_DURATION_MINUTES = 24 * 60

# Appointment statuses
STATUS_SCHEDULED = "scheduled"
STATUS_CONFIRMED = "confirmed"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_NO_SHOW = "no_show"

# Only active appointments occupy time or carry pending reminders
ACTIVE_STATUSES = (STATUS_SCHEDULED, STATUS_CONFIRMED)

MODALITIES = ("in_person", "video", "phone")
CANCELLATION_ACTORS = ("patient", "therapist", "admin")

RESCHEDULED_CANCELLATION_REASON = "Rescheduled"

# Sweep scheduler settings
SWEEP_SCHEDULER_MAX_INSTANCES = 1  # Prevent overlapping sweep runs
