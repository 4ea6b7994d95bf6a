# pyright: reportMissingTypeStubs=false
"""
Availability API endpoints: slot search and working-hours management.
"""

import logging
from datetime import date, datetime, time
from itertools import islice
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from api.responses import (
    AvailabilityResponse,
    AvailabilityRuleSetResponse,
    AvailabilityWindowResponse,
    BlackoutResponse,
)
from auth.dependencies import UserContext, ensure_therapist_access, get_current_user, require_therapist_or_admin
from core.constants import DEFAULT_SLOT_STEP_MINUTES
from core.database import get_db
from services.availability_service import AvailabilityService, RuleSpec
from utils.datetime_utils import parse_date_string, parse_datetime_to_utc

logger = logging.getLogger(__name__)

router = APIRouter()


# ===== Request Models =====

class AvailabilityRuleRequest(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0=Monday ... 6=Sunday")
    start_time: time
    end_time: time = Field(..., description="00:00 means end of day")


class PublishRuleSetRequest(BaseModel):
    """A complete weekly schedule; replaces the previous version from effective_from on."""
    effective_from: date
    timezone: Optional[str] = None
    rules: List[AvailabilityRuleRequest]


class BlackoutRequest(BaseModel):
    start_at: datetime
    end_at: datetime
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("start_at", "end_at", mode="before")
    @classmethod
    def parse_instants(cls, v: str | datetime) -> datetime:
        return parse_datetime_to_utc(v)


def _parse_date_param(value: str, name: str) -> date:
    try:
        return parse_date_string(value)
    except ValueError:
        raise HTTPException(
            status_code=422,
            detail=f"Invalid {name} (expected YYYY-MM-DD)"
        )


# ===== Endpoints =====

@router.get("/therapists/{therapist_id}/availability", summary="Search bookable windows")
def search_availability(
    therapist_id: int,
    start_date: str = Query(..., description="YYYY-MM-DD, therapist-local"),
    end_date: str = Query(..., description="YYYY-MM-DD, therapist-local, inclusive"),
    slot_duration_minutes: int = Query(...),
    step_minutes: int = Query(DEFAULT_SLOT_STEP_MINUTES, ge=1, le=240),
    limit: Optional[int] = Query(None, ge=1, le=5000),
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AvailabilityResponse:
    """
    Return the therapist's free windows in chronological order.

    Any authenticated caller may search. The range spans at most 90 days.
    """
    parsed_start = _parse_date_param(start_date, "start_date")
    parsed_end = _parse_date_param(end_date, "end_date")

    windows = AvailabilityService.compute_windows(
        db,
        therapist_id=therapist_id,
        start_date=parsed_start,
        end_date=parsed_end,
        slot_duration_minutes=slot_duration_minutes,
        step_minutes=step_minutes,
    )
    iterator = iter(windows)
    collected = list(islice(iterator, limit)) if limit else list(iterator)
    truncated = bool(limit) and next(iterator, None) is not None

    return AvailabilityResponse(
        therapist_id=therapist_id,
        timezone=windows.timezone,
        start_date=parsed_start,
        end_date=parsed_end,
        slot_duration_minutes=slot_duration_minutes,
        windows=[AvailabilityWindowResponse(start=w.start, end=w.end) for w in collected],
        truncated=truncated,
    )


@router.post(
    "/therapists/{therapist_id}/availability-rules",
    status_code=status.HTTP_201_CREATED,
    summary="Publish a new working-hours version",
)
def publish_availability_rules(
    therapist_id: int,
    request: PublishRuleSetRequest,
    current_user: UserContext = Depends(require_therapist_or_admin),
    db: Session = Depends(get_db),
) -> AvailabilityRuleSetResponse:
    ensure_therapist_access(current_user, therapist_id)
    rule_set = AvailabilityService.publish_rule_set(
        db,
        therapist_id=therapist_id,
        rules=[RuleSpec(r.day_of_week, r.start_time, r.end_time) for r in request.rules],
        effective_from=request.effective_from,
        timezone=request.timezone,
    )
    return AvailabilityRuleSetResponse.model_validate(rule_set)


@router.get("/therapists/{therapist_id}/availability-rules", summary="List working-hours versions")
def list_availability_rules(
    therapist_id: int,
    current_user: UserContext = Depends(require_therapist_or_admin),
    db: Session = Depends(get_db),
) -> List[AvailabilityRuleSetResponse]:
    ensure_therapist_access(current_user, therapist_id)
    return [
        AvailabilityRuleSetResponse.model_validate(rule_set)
        for rule_set in AvailabilityService.list_rule_sets(db, therapist_id)
    ]


@router.post(
    "/therapists/{therapist_id}/blackouts",
    status_code=status.HTTP_201_CREATED,
    summary="Add a blackout period",
)
def add_blackout(
    therapist_id: int,
    request: BlackoutRequest,
    current_user: UserContext = Depends(require_therapist_or_admin),
    db: Session = Depends(get_db),
) -> BlackoutResponse:
    ensure_therapist_access(current_user, therapist_id)
    blackout = AvailabilityService.add_blackout(
        db,
        therapist_id=therapist_id,
        start_at=request.start_at,
        end_at=request.end_at,
        reason=request.reason,
    )
    return BlackoutResponse.model_validate(blackout)
