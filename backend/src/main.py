# pyright: reportMissingTypeStubs=false
"""
Therapy Scheduling Backend API

A FastAPI application for booking therapy sessions between patients and
therapists, with versioned working hours, conflict-free booking and
time-relative reminders.

Features:
- Availability search over therapist working hours
- Linearizable booking with a cancel/reschedule/complete state machine
- Background reminder and no-show sweeps (APScheduler)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import appointments, availability
from core.config import ENABLE_SCHEDULERS
from core.constants import CORS_ORIGINS
from core.database import SessionLocal
from core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingError,
    UnavailableError,
    ValidationError,
)
from services.appointment_service import AppointmentService
from services.no_show_service import NoShowService
from services.notification_service import NotificationService, build_dispatcher
from services.reminder_service import ReminderService
from services.sweep_scheduler import SweepScheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting Therapy Scheduling API")

    sweep_scheduler: SweepScheduler = app.state.sweep_scheduler
    if ENABLE_SCHEDULERS:
        try:
            await sweep_scheduler.start_scheduler()
        except Exception as e:
            logger.exception(f"Failed to start sweep scheduler: {e}")
    else:
        logger.info("Background schedulers disabled (ENABLE_SCHEDULERS=false)")

    yield

    try:
        await sweep_scheduler.stop_scheduler()
    except Exception as e:
        logger.exception(f"Error stopping sweep scheduler: {e}")

    logger.info("Shutting down Therapy Scheduling API")


# Create FastAPI application
app = FastAPI(
    title="Therapy Scheduling Backend",
    description="Appointment scheduling and reminder engine for therapy practices",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Long-lived services shared by requests and background sweeps
notification_service = NotificationService(build_dispatcher())
app.state.notification_service = notification_service
app.state.appointment_service = AppointmentService(notification_service)
app.state.reminder_service = ReminderService(SessionLocal, notification_service)
app.state.sweep_scheduler = SweepScheduler(
    app.state.reminder_service,
    NoShowService(SessionLocal),
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(
    availability.router,
    prefix="/api",
    tags=["availability"],
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden"},
        404: {"description": "Therapist not found"},
        422: {"description": "Invalid range or duration"},
    },
)
app.include_router(
    appointments.router,
    prefix="/api",
    tags=["appointments"],
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden"},
        404: {"description": "Resource not found"},
        409: {"description": "Conflict or invalid transition"},
        503: {"description": "Store busy, retry"},
    },
)


@app.get(
    "/health",
    summary="Health check",
    description="Returns the health status of the API",
)
async def health_check() -> dict[str, str]:
    """Check if the API is healthy and responding."""
    return {"status": "healthy"}


def _error_response(status_code: int, exc: SchedulingError, **extra: object) -> JSONResponse:
    content: dict[str, object] = {"detail": exc.message, "type": exc.code}
    content.update({key: value for key, value in extra.items() if value is not None})
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Malformed input: terminal, never retried."""
    logger.info(f"Validation error on {request.url.path}: {exc.message}")
    return _error_response(422, exc)


@app.exception_handler(ConflictError)
async def conflict_error_handler(request: Request, exc: ConflictError):
    """Slot unavailable: the caller should pick a different window."""
    logger.info(f"Conflict on {request.url.path}: {exc.message}")
    return _error_response(
        409, exc, party=exc.party, existing_appointment_id=exc.existing_appointment_id
    )


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    return _error_response(404, exc)


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    logger.info(f"Invalid transition on {request.url.path}: {exc.message}")
    return _error_response(409, exc, current_status=exc.current_status)


@app.exception_handler(UnavailableError)
async def unavailable_error_handler(request: Request, exc: UnavailableError):
    """Transient store or lock timeout: safe to retry with backoff."""
    logger.warning(f"Unavailable on {request.url.path}: {exc.message}")
    response = _error_response(503, exc)
    response.headers["Retry-After"] = "1"
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions globally."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": "internal_error"},
    )
