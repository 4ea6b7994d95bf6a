# pyright: reportMissingTypeStubs=false
"""
Availability service for computing bookable windows.

Working hours come from the therapist's versioned weekly rule sets. For a
search range they are expanded day by day into absolute UTC intervals,
merged, and then blackout periods and active appointments are subtracted.
A window of the requested duration slides across each remaining free
interval on a grid aligned to the therapist's local clock.
"""

import heapq
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterator, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from core.constants import (
    ACTIVE_STATUSES,
    DEFAULT_SLOT_STEP_MINUTES,
    MAX_SEARCH_RANGE_DAYS,
    MAX_SLOT_DURATION_MINUTES,
)
from core.exceptions import (
    InvalidDurationError,
    InvalidRangeError,
    TherapistNotFoundError,
    ValidationError,
)
from models import Appointment, AvailabilityException, AvailabilityRule, AvailabilityRuleSet, Therapist
from shared_types import AvailabilityWindow
from utils.datetime_utils import ensure_utc, is_valid_timezone, local_day_bounds, local_to_utc, to_local, utc_now
from utils.interval_utils import Interval, merge_intervals, subtract_intervals

logger = logging.getLogger(__name__)

MIDNIGHT = time(0, 0)


@dataclass(frozen=True)
class RuleSpec:
    """Input for one weekly working period when publishing a rule set."""
    day_of_week: int
    start_time: time
    end_time: time


class AvailabilityWindows:
    """
    Lazy, restartable sequence of availability windows.

    Nothing is queried until iteration starts, and every new iteration runs
    the queries again, so a long-lived instance always reflects the store.
    """

    def __init__(
        self,
        db: Session,
        therapist: Therapist,
        start_date: date,
        end_date: date,
        slot_duration_minutes: int,
        step_minutes: int,
        now: Optional[datetime] = None,
    ):
        self.db = db
        self.therapist_id = therapist.id
        self.timezone = therapist.timezone
        self.start_date = start_date
        self.end_date = end_date
        self.slot_duration = timedelta(minutes=slot_duration_minutes)
        self.step = timedelta(minutes=step_minutes)
        self.step_minutes = step_minutes
        self.now = ensure_utc(now)

    def __iter__(self) -> Iterator[AvailabilityWindow]:
        now = self.now or utc_now()
        range_start, _ = local_day_bounds(self.start_date, self.timezone)
        _, range_end = local_day_bounds(self.end_date, self.timezone)

        busy = AvailabilityService.fetch_busy_intervals(self.db, self.therapist_id, range_start, range_end)
        working = AvailabilityService.iter_working_intervals(
            self.db, self.therapist_id, self.start_date, self.end_date, range_start, range_end
        )

        busy_index = 0
        for free_start, free_end in working:
            # Busy intervals are merged, so their ends are ascending too
            while busy_index < len(busy) and busy[busy_index][1] <= free_start:
                busy_index += 1
            for sub_start, sub_end in subtract_intervals((free_start, free_end), busy[busy_index:]):
                yield from self._slide(sub_start, sub_end, now)

    def _slide(self, free_start: datetime, free_end: datetime, now: datetime) -> Iterator[AvailabilityWindow]:
        candidate = AvailabilityService._round_up_to_interval(free_start, self.timezone, self.step_minutes)
        while candidate + self.slot_duration <= free_end:
            if candidate >= now:
                yield AvailabilityWindow(
                    therapist_id=self.therapist_id,
                    start=candidate,
                    end=candidate + self.slot_duration,
                )
            candidate += self.step

    def __repr__(self) -> str:
        return (
            f"AvailabilityWindows(therapist_id={self.therapist_id}, "
            f"{self.start_date}..{self.end_date}, duration={self.slot_duration})"
        )


class AvailabilityService:
    """
    Service class for availability calculation and working-hours management.

    Everything here is read-only except ``publish_rule_set`` and ``add_blackout``.
    """

    @staticmethod
    def get_therapist(db: Session, therapist_id: int) -> Therapist:
        """
        Raises:
            TherapistNotFoundError: If the therapist does not exist
        """
        therapist = db.get(Therapist, therapist_id)
        if therapist is None:
            raise TherapistNotFoundError(f"Therapist {therapist_id} not found")
        return therapist

    @staticmethod
    def validate_slot_duration(slot_duration_minutes: int) -> None:
        if (
            not isinstance(slot_duration_minutes, int)
            or isinstance(slot_duration_minutes, bool)
            or slot_duration_minutes <= 0
            or slot_duration_minutes > MAX_SLOT_DURATION_MINUTES
        ):
            raise InvalidDurationError(
                f"Duration must be between 1 and {MAX_SLOT_DURATION_MINUTES} minutes, got {slot_duration_minutes}"
            )

    @staticmethod
    def validate_date_range(start_date: date, end_date: date) -> None:
        if end_date < start_date:
            raise InvalidRangeError("end_date must not be before start_date")
        days = (end_date - start_date).days + 1
        if days > MAX_SEARCH_RANGE_DAYS:
            raise InvalidRangeError(
                f"Date range spans {days} days; at most {MAX_SEARCH_RANGE_DAYS} are allowed"
            )

    @staticmethod
    def compute_windows(
        db: Session,
        therapist_id: int,
        start_date: date,
        end_date: date,
        slot_duration_minutes: int,
        step_minutes: int = DEFAULT_SLOT_STEP_MINUTES,
        now: Optional[datetime] = None,
    ) -> AvailabilityWindows:
        """
        Compute bookable windows for a therapist.

        Args:
            db: Database session
            therapist_id: Therapist to search
            start_date: First day, therapist-local (inclusive)
            end_date: Last day, therapist-local (inclusive), at most 90 days after start
            slot_duration_minutes: Window length
            step_minutes: Spacing between candidate starts on the local clock
            now: Windows starting before this instant are omitted (defaults to the time of iteration)

        Returns:
            Lazy chronological sequence of AvailabilityWindow

        Raises:
            InvalidRangeError: Range reversed or longer than 90 days
            InvalidDurationError: Duration not in (0, 1440]
            TherapistNotFoundError: Unknown therapist
        """
        AvailabilityService.validate_date_range(start_date, end_date)
        AvailabilityService.validate_slot_duration(slot_duration_minutes)
        if step_minutes <= 0:
            raise ValidationError(f"step_minutes must be positive, got {step_minutes}")
        therapist = AvailabilityService.get_therapist(db, therapist_id)
        return AvailabilityWindows(
            db, therapist, start_date, end_date, slot_duration_minutes, step_minutes, now
        )

    @staticmethod
    def load_rule_sets(db: Session, therapist_id: int, up_to: date) -> List[AvailabilityRuleSet]:
        """Rule sets that can apply on or before ``up_to``, newest version first."""
        stmt = (
            select(AvailabilityRuleSet)
            .where(
                AvailabilityRuleSet.therapist_id == therapist_id,
                AvailabilityRuleSet.effective_from <= up_to,
            )
            .options(selectinload(AvailabilityRuleSet.rules))
            .order_by(AvailabilityRuleSet.version.desc())
        )
        return list(db.scalars(stmt).all())

    @staticmethod
    def rule_set_for_date(rule_sets: Sequence[AvailabilityRuleSet], day: date) -> Optional[AvailabilityRuleSet]:
        """
        Pick the rule set governing ``day``.

        The highest version whose ``effective_from`` is on or before the day
        wins, so a newer publication always supersedes older ones from its
        effective date onward.
        """
        for rule_set in rule_sets:  # newest version first
            if rule_set.effective_from <= day:
                return rule_set
        return None

    @staticmethod
    def _expand_rules_for_day(rule_set: AvailabilityRuleSet, day: date) -> List[Interval]:
        intervals: List[Interval] = []
        for rule in rule_set.rules:
            if rule.day_of_week != day.weekday():
                continue
            start = local_to_utc(day, rule.start_time, rule.timezone)
            if rule.end_time == MIDNIGHT:
                end = local_to_utc(day + timedelta(days=1), MIDNIGHT, rule.timezone)
            else:
                end = local_to_utc(day, rule.end_time, rule.timezone)
            if start < end:
                intervals.append((start, end))
        intervals.sort()
        return intervals

    @staticmethod
    def iter_working_intervals(
        db: Session,
        therapist_id: int,
        start_date: date,
        end_date: date,
        range_start: datetime,
        range_end: datetime,
    ) -> Iterator[Interval]:
        """
        Expand working hours into merged absolute intervals clipped to the range.

        Rules may be expressed in a zone other than the therapist's, so one
        extra day is expanded on each side and the result is clipped.
        Intervals that touch (a rule ending at midnight and one starting at
        midnight) come out as one continuous interval.
        """
        rule_sets = AvailabilityService.load_rule_sets(db, therapist_id, end_date + timedelta(days=1))
        if not rule_sets:
            return iter(())

        per_day: List[List[Interval]] = []
        day = start_date - timedelta(days=1)
        while day <= end_date + timedelta(days=1):
            rule_set = AvailabilityService.rule_set_for_date(rule_sets, day)
            if rule_set is not None:
                per_day.append(AvailabilityService._expand_rules_for_day(rule_set, day))
            day += timedelta(days=1)

        def clipped() -> Iterator[Interval]:
            for start, end in heapq.merge(*per_day):
                start = max(start, range_start)
                end = min(end, range_end)
                if start < end:
                    yield start, end

        return merge_intervals(clipped())

    @staticmethod
    def fetch_busy_intervals(
        db: Session,
        therapist_id: int,
        range_start: datetime,
        range_end: datetime,
        exclude_appointment_id: Optional[int] = None,
    ) -> List[Interval]:
        """
        Merged intervals during which the therapist cannot take a booking.

        Includes active appointments and blackout periods overlapping the range.
        """
        appointment_stmt = select(Appointment.start_at, Appointment.end_at).where(
            Appointment.therapist_id == therapist_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.start_at < range_end,
            Appointment.end_at > range_start,
        )
        if exclude_appointment_id is not None:
            appointment_stmt = appointment_stmt.where(Appointment.id != exclude_appointment_id)

        blackout_stmt = select(AvailabilityException.start_at, AvailabilityException.end_at).where(
            AvailabilityException.therapist_id == therapist_id,
            AvailabilityException.start_at < range_end,
            AvailabilityException.end_at > range_start,
        )

        busy: List[Interval] = [(row[0], row[1]) for row in db.execute(appointment_stmt)]
        busy.extend((row[0], row[1]) for row in db.execute(blackout_stmt))
        busy.sort()
        return list(merge_intervals(busy))

    @staticmethod
    def is_within_availability(
        db: Session,
        therapist: Therapist,
        start: datetime,
        end: datetime,
    ) -> bool:
        """
        Check that ``[start, end)`` lies inside working hours and outside blackouts.

        Existing appointments are not considered here; that is the conflict
        detector's job, so a reschedule can exclude the appointment it replaces.
        """
        first_day = to_local(start, therapist.timezone).date()
        last_day = to_local(end, therapist.timezone).date()
        range_start, _ = local_day_bounds(first_day, therapist.timezone)
        _, range_end = local_day_bounds(last_day, therapist.timezone)

        blackouts = db.execute(
            select(AvailabilityException.start_at, AvailabilityException.end_at).where(
                AvailabilityException.therapist_id == therapist.id,
                AvailabilityException.start_at < end,
                AvailabilityException.end_at > start,
            )
        ).first()
        if blackouts is not None:
            return False

        for free_start, free_end in AvailabilityService.iter_working_intervals(
            db, therapist.id, first_day, last_day, range_start, range_end
        ):
            if free_start <= start and end <= free_end:
                return True
            if free_start >= end:
                break
        return False

    @staticmethod
    def _round_up_to_interval(instant: datetime, tz_name: str, interval_minutes: int) -> datetime:
        """
        Round an instant up to the next grid boundary of the local clock.

        For interval_minutes=15, rounds to local quarter hours (00, 15, 30, 45).
        Arithmetic is done on the absolute instant so DST gaps cannot produce
        nonexistent wall clock times.
        """
        local = to_local(instant, tz_name)
        remainder = timedelta(
            minutes=(local.hour * 60 + local.minute) % interval_minutes,
            seconds=local.second,
            microseconds=local.microsecond,
        )
        if not remainder:
            return instant
        return instant - remainder + timedelta(minutes=interval_minutes)

    @staticmethod
    def publish_rule_set(
        db: Session,
        therapist_id: int,
        rules: Sequence[RuleSpec],
        effective_from: date,
        timezone: Optional[str] = None,
    ) -> AvailabilityRuleSet:
        """
        Publish a new immutable version of a therapist's working hours.

        Args:
            db: Database session
            therapist_id: Therapist whose hours change
            rules: Weekly working periods (an empty list means no working hours)
            effective_from: First therapist-local date the version applies to
            timezone: Zone the wall clock times are in (defaults to the therapist's)

        Returns:
            The committed rule set

        Raises:
            TherapistNotFoundError: Unknown therapist
            ValidationError: Malformed rule or unknown timezone
        """
        therapist = db.execute(
            select(Therapist).where(Therapist.id == therapist_id).with_for_update()
        ).scalar_one_or_none()
        if therapist is None:
            raise TherapistNotFoundError(f"Therapist {therapist_id} not found")

        tz_name = timezone or therapist.timezone
        if not is_valid_timezone(tz_name):
            raise ValidationError(f"Unknown timezone: {tz_name}")

        for rule in rules:
            if not 0 <= rule.day_of_week <= 6:
                raise ValidationError(f"day_of_week must be 0-6, got {rule.day_of_week}")
            if rule.end_time != MIDNIGHT and rule.end_time <= rule.start_time:
                raise ValidationError(
                    f"Rule {rule.start_time}-{rule.end_time} on day {rule.day_of_week} ends before it starts"
                )

        latest_version = db.scalar(
            select(AvailabilityRuleSet.version)
            .where(AvailabilityRuleSet.therapist_id == therapist_id)
            .order_by(AvailabilityRuleSet.version.desc())
            .limit(1)
        )
        rule_set = AvailabilityRuleSet(
            therapist_id=therapist_id,
            version=(latest_version or 0) + 1,
            effective_from=effective_from,
        )
        rule_set.rules = [
            AvailabilityRule(
                day_of_week=rule.day_of_week,
                start_time=rule.start_time,
                end_time=rule.end_time,
                timezone=tz_name,
            )
            for rule in rules
        ]
        db.add(rule_set)
        db.commit()
        logger.info(
            f"Published availability rule set v{rule_set.version} for therapist {therapist_id} "
            f"({len(rules)} rule(s), effective {effective_from})"
        )
        return rule_set

    @staticmethod
    def add_blackout(
        db: Session,
        therapist_id: int,
        start_at: datetime,
        end_at: datetime,
        reason: Optional[str] = None,
    ) -> AvailabilityException:
        """
        Block out a period for a therapist.

        Existing appointments inside the period are left untouched.

        Raises:
            TherapistNotFoundError: Unknown therapist
            ValidationError: Naive datetimes or an empty period
        """
        AvailabilityService.get_therapist(db, therapist_id)
        if start_at.tzinfo is None or end_at.tzinfo is None:
            raise ValidationError("Blackout times must be timezone-aware")
        if start_at >= end_at:
            raise ValidationError("Blackout must end after it starts")

        blackout = AvailabilityException(
            therapist_id=therapist_id,
            start_at=start_at,
            end_at=end_at,
            reason=reason,
        )
        db.add(blackout)
        db.commit()
        logger.info(f"Added blackout {start_at} - {end_at} for therapist {therapist_id}")
        return blackout

    @staticmethod
    def list_rule_sets(db: Session, therapist_id: int) -> List[AvailabilityRuleSet]:
        AvailabilityService.get_therapist(db, therapist_id)
        stmt = (
            select(AvailabilityRuleSet)
            .where(AvailabilityRuleSet.therapist_id == therapist_id)
            .options(selectinload(AvailabilityRuleSet.rules))
            .order_by(AvailabilityRuleSet.version)
        )
        return list(db.scalars(stmt).all())
