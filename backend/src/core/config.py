"""
Application configuration using python-dotenv.

This module loads environment variables from .env file into os.environ
for use throughout the application.
"""

import os
import pathlib
from dotenv import load_dotenv


# Determine if we're running in a test environment
# Don't load .env file during testing to ensure predictable test behavior
is_testing = os.getenv("PYTEST_VERSION") is not None or any("pytest" in str(frame) for frame in __import__('inspect').stack(0))

# Load .env file into os.environ (only outside of testing)
if not is_testing:
    possible_paths = [
        pathlib.Path(__file__).parent.parent.parent / ".env",  # backend/.env (when run from backend/src)
        pathlib.Path(__file__).parent.parent.parent.parent / ".env",  # repository root
        pathlib.Path.cwd() / ".env",
        pathlib.Path.cwd().parent / ".env",
    ]

    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(env_path)
            break


def get_database_url():
    """Get the database URL from environment."""
    return os.getenv(
        "DATABASE_URL",
        "postgresql://localhost/scheduling_dev"
    )


def parse_reminder_offsets(raw: str) -> list[str]:
    """Split a comma separated offset list such as ``24h,1h,15m``."""
    return [label.strip() for label in raw.split(",") if label.strip()]


DATABASE_URL = get_database_url()
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Store access bounds
DB_LOCK_TIMEOUT_MS = int(os.getenv("DB_LOCK_TIMEOUT_MS", "5000"))
DB_STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "15000"))
DB_POOL_TIMEOUT_SECONDS = int(os.getenv("DB_POOL_TIMEOUT_SECONDS", "10"))
BOOKING_LOCK_TIMEOUT_SECONDS = float(os.getenv("BOOKING_LOCK_TIMEOUT_SECONDS", "5"))

# Authentication
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# Reminders
REMINDER_OFFSETS = parse_reminder_offsets(os.getenv("REMINDER_OFFSETS", "24h,1h,15m"))
REMINDER_SWEEP_INTERVAL_SECONDS = int(os.getenv("REMINDER_SWEEP_INTERVAL_SECONDS", "60"))
REMINDER_GRACE_SECONDS = int(os.getenv("REMINDER_GRACE_SECONDS", "300"))
REMINDER_CATCH_UP_HOURS = int(os.getenv("REMINDER_CATCH_UP_HOURS", "24"))
REMINDER_BATCH_SIZE = int(os.getenv("REMINDER_BATCH_SIZE", "100"))

# No-show sweep
NO_SHOW_SWEEP_INTERVAL_SECONDS = int(os.getenv("NO_SHOW_SWEEP_INTERVAL_SECONDS", "900"))
NO_SHOW_GRACE_MINUTES = int(os.getenv("NO_SHOW_GRACE_MINUTES", "1440"))

# Notifications
NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL", "")
NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "5"))

# Background schedulers can be disabled for one-off processes and tests
ENABLE_SCHEDULERS = os.getenv("ENABLE_SCHEDULERS", "true").lower() == "true"
