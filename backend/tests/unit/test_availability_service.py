"""
Unit tests for availability computation.

Covers slot sliding on the local grid, subtraction of appointments and
blackouts, midnight-spanning working hours, DST and versioned rule sets.
"""

import pytest
from datetime import date, datetime, time, timedelta

from core.exceptions import InvalidDurationError, InvalidRangeError, TherapistNotFoundError, ValidationError
from services.availability_service import AvailabilityService, RuleSpec
from tests.utils import (
    MONDAY,
    NOW,
    UTC,
    at,
    create_appointment,
    create_rule_set,
    create_therapist,
)

TUESDAY = MONDAY + timedelta(days=1)
NEXT_MONDAY = MONDAY + timedelta(days=7)


def window_starts(windows):
    return [window.start for window in windows]


class TestComputeWindows:
    """Window sliding over a Monday 09:00-12:00 UTC schedule."""

    def test_empty_calendar(self, db_session, therapist):
        """A 50 minute slot on a 15 minute grid yields 09:00 through 11:00."""
        windows = list(AvailabilityService.compute_windows(
            db_session, therapist.id, MONDAY, MONDAY, slot_duration_minutes=50, now=NOW
        ))

        assert len(windows) == 9
        assert windows[0].start == at(MONDAY, 9)
        assert windows[0].end == at(MONDAY, 9, 50)
        assert windows[-1].start == at(MONDAY, 11)
        assert all(window.therapist_id == therapist.id for window in windows)

    def test_windows_are_chronological(self, db_session, therapist):
        starts = window_starts(AvailabilityService.compute_windows(
            db_session, therapist.id, MONDAY - timedelta(days=7), MONDAY, 50, now=NOW - timedelta(days=7)
        ))
        assert starts == sorted(starts)
        assert len(starts) == 18

    def test_existing_appointment_is_subtracted(self, db_session, therapist, patient):
        """After 09:00-09:50 is booked the next grid start is 10:00."""
        create_appointment(db_session, patient, therapist, at(MONDAY, 9), 50)

        starts = window_starts(AvailabilityService.compute_windows(
            db_session, therapist.id, MONDAY, MONDAY, 50, now=NOW
        ))

        assert starts == [at(MONDAY, 10), at(MONDAY, 10, 15), at(MONDAY, 10, 30), at(MONDAY, 10, 45), at(MONDAY, 11)]

    def test_cancelled_appointment_does_not_block(self, db_session, therapist, patient):
        create_appointment(db_session, patient, therapist, at(MONDAY, 9), 50, status="cancelled")

        windows = list(AvailabilityService.compute_windows(db_session, therapist.id, MONDAY, MONDAY, 50, now=NOW))

        assert len(windows) == 9

    def test_blackout_is_subtracted(self, db_session, therapist):
        AvailabilityService.add_blackout(db_session, therapist.id, at(MONDAY, 10), at(MONDAY, 11), "Training")

        starts = window_starts(AvailabilityService.compute_windows(
            db_session, therapist.id, MONDAY, MONDAY, 50, now=NOW
        ))

        assert starts == [at(MONDAY, 9), at(MONDAY, 11)]

    def test_windows_before_now_are_omitted(self, db_session, therapist):
        starts = window_starts(AvailabilityService.compute_windows(
            db_session, therapist.id, MONDAY, MONDAY, 50, now=at(MONDAY, 10, 5)
        ))
        assert starts == [at(MONDAY, 10, 15), at(MONDAY, 10, 30), at(MONDAY, 10, 45), at(MONDAY, 11)]

    def test_custom_step(self, db_session, therapist):
        starts = window_starts(AvailabilityService.compute_windows(
            db_session, therapist.id, MONDAY, MONDAY, 60, step_minutes=60, now=NOW
        ))
        assert starts == [at(MONDAY, 9), at(MONDAY, 10), at(MONDAY, 11)]

    def test_odd_free_interval_rounds_up_to_grid(self, db_session, therapist, patient):
        """A session ending at 09:20 leaves 09:30 as the first start."""
        create_appointment(db_session, patient, therapist, at(MONDAY, 9), 20)

        starts = window_starts(AvailabilityService.compute_windows(
            db_session, therapist.id, MONDAY, MONDAY, 30, step_minutes=15, now=NOW
        ))
        assert starts[0] == at(MONDAY, 9, 30)

    def test_no_rules_means_no_windows(self, db_session):
        therapist = create_therapist(db_session)
        assert list(AvailabilityService.compute_windows(db_session, therapist.id, MONDAY, MONDAY, 30, now=NOW)) == []

    def test_duration_longer_than_working_hours(self, db_session, therapist):
        assert list(AvailabilityService.compute_windows(db_session, therapist.id, MONDAY, MONDAY, 240, now=NOW)) == []


class TestLazyRestartableSequence:

    def test_reiteration_reflects_new_bookings(self, db_session, therapist, patient):
        """Each iteration queries again, so a booking made in between is seen."""
        windows = AvailabilityService.compute_windows(db_session, therapist.id, MONDAY, MONDAY, 50, now=NOW)
        assert len(list(windows)) == 9

        create_appointment(db_session, patient, therapist, at(MONDAY, 9), 50)

        assert len(list(windows)) == 5

    def test_partial_consumption(self, db_session, therapist):
        windows = iter(AvailabilityService.compute_windows(db_session, therapist.id, MONDAY, MONDAY, 50, now=NOW))
        first = next(windows)
        second = next(windows)
        assert second.start - first.start == timedelta(minutes=15)


class TestWorkingHoursShapes:

    def test_midnight_spanning_hours_merge(self, db_session):
        """Monday 22:00-24:00 and Tuesday 00:00-02:00 form one interval."""
        therapist = create_therapist(db_session)
        create_rule_set(db_session, therapist, [
            (0, time(22, 0), time(0, 0)),
            (1, time(0, 0), time(2, 0)),
        ])

        windows = list(AvailabilityService.compute_windows(
            db_session, therapist.id, MONDAY, TUESDAY, 60, step_minutes=30, now=NOW
        ))

        assert len(windows) == 7
        assert any(
            window.start == at(MONDAY, 23, 30) and window.end == at(TUESDAY, 0, 30)
            for window in windows
        )

    def test_therapist_zone_across_dst(self, db_session):
        """09:00 New York is 14:00Z before the DST switch and 13:00Z after it."""
        therapist = create_therapist(db_session, tz_name="America/New_York")
        create_rule_set(db_session, therapist, [(0, time(9, 0), time(10, 0))])

        starts = window_starts(AvailabilityService.compute_windows(
            db_session, therapist.id, MONDAY, NEXT_MONDAY, 60, now=NOW
        ))

        assert starts == [
            datetime(2030, 3, 4, 14, 0, tzinfo=UTC),
            datetime(2030, 3, 11, 13, 0, tzinfo=UTC),
        ]

    def test_grid_follows_local_clock(self, db_session):
        """In a +05:30 zone, quarter hours are local quarter hours."""
        therapist = create_therapist(db_session, tz_name="Asia/Kolkata")
        create_rule_set(db_session, therapist, [(0, time(9, 10), time(10, 30))])

        starts = window_starts(AvailabilityService.compute_windows(
            db_session, therapist.id, MONDAY, MONDAY, 30, now=NOW
        ))

        # 09:15 IST == 03:45Z
        assert starts[0] == datetime(2030, 3, 4, 3, 45, tzinfo=UTC)

    def test_rules_in_other_zone(self, db_session):
        """A rule may be stated in a zone other than the therapist's."""
        therapist = create_therapist(db_session, tz_name="Europe/Berlin")
        create_rule_set(db_session, therapist, [(0, time(9, 0), time(10, 0))], tz_name="UTC")

        starts = window_starts(AvailabilityService.compute_windows(
            db_session, therapist.id, MONDAY, MONDAY, 60, now=NOW
        ))
        assert starts == [at(MONDAY, 9)]


class TestRuleSetVersions:

    def test_newer_version_applies_from_effective_date(self, db_session):
        therapist = create_therapist(db_session)
        create_rule_set(db_session, therapist, [(0, time(9, 0), time(12, 0))], version=1)
        create_rule_set(
            db_session, therapist, [(0, time(13, 0), time(14, 0))],
            effective_from=NEXT_MONDAY, version=2,
        )

        starts = window_starts(AvailabilityService.compute_windows(
            db_session, therapist.id, MONDAY, NEXT_MONDAY, 60, step_minutes=60, now=NOW
        ))

        assert starts == [at(MONDAY, 9), at(MONDAY, 10), at(MONDAY, 11), at(NEXT_MONDAY, 13)]

    def test_highest_version_wins(self, db_session):
        """A later version with an earlier effective date supersedes everything."""
        therapist = create_therapist(db_session)
        create_rule_set(db_session, therapist, [(0, time(9, 0), time(12, 0))], version=1)
        create_rule_set(db_session, therapist, [], effective_from=date(2029, 12, 1), version=2)

        assert list(AvailabilityService.compute_windows(db_session, therapist.id, MONDAY, MONDAY, 30, now=NOW)) == []

    def test_publish_rule_set_increments_version(self, db_session):
        therapist = create_therapist(db_session, tz_name="Europe/Berlin")

        first = AvailabilityService.publish_rule_set(
            db_session, therapist.id, [RuleSpec(0, time(9, 0), time(17, 0))], date(2030, 1, 1)
        )
        second = AvailabilityService.publish_rule_set(
            db_session, therapist.id, [RuleSpec(2, time(8, 0), time(0, 0))], date(2030, 6, 1), timezone="UTC"
        )

        assert (first.version, second.version) == (1, 2)
        assert first.rules[0].timezone == "Europe/Berlin"
        assert second.rules[0].timezone == "UTC"
        assert second.rules[0].ends_at_midnight
        assert [rule_set.version for rule_set in AvailabilityService.list_rule_sets(db_session, therapist.id)] == [1, 2]

    def test_publish_rejects_bad_rules(self, db_session):
        therapist = create_therapist(db_session)
        with pytest.raises(ValidationError):
            AvailabilityService.publish_rule_set(
                db_session, therapist.id, [RuleSpec(7, time(9, 0), time(10, 0))], MONDAY
            )
        with pytest.raises(ValidationError):
            AvailabilityService.publish_rule_set(
                db_session, therapist.id, [RuleSpec(0, time(10, 0), time(9, 0))], MONDAY
            )
        with pytest.raises(ValidationError):
            AvailabilityService.publish_rule_set(
                db_session, therapist.id, [RuleSpec(0, time(9, 0), time(10, 0))], MONDAY, timezone="Nowhere/City"
            )

    def test_publish_unknown_therapist(self, db_session):
        with pytest.raises(TherapistNotFoundError):
            AvailabilityService.publish_rule_set(db_session, 9999, [], MONDAY)


class TestValidation:

    def test_reversed_range(self, db_session, therapist):
        with pytest.raises(InvalidRangeError):
            AvailabilityService.compute_windows(db_session, therapist.id, TUESDAY, MONDAY, 30)

    def test_range_limit_is_inclusive_90_days(self, db_session, therapist):
        AvailabilityService.compute_windows(db_session, therapist.id, MONDAY, MONDAY + timedelta(days=89), 30)
        with pytest.raises(InvalidRangeError):
            AvailabilityService.compute_windows(db_session, therapist.id, MONDAY, MONDAY + timedelta(days=90), 30)

    @pytest.mark.parametrize("duration", [0, -15, 1441])
    def test_invalid_duration(self, db_session, therapist, duration):
        with pytest.raises(InvalidDurationError):
            AvailabilityService.compute_windows(db_session, therapist.id, MONDAY, MONDAY, duration)

    def test_invalid_step(self, db_session, therapist):
        with pytest.raises(ValidationError):
            AvailabilityService.compute_windows(db_session, therapist.id, MONDAY, MONDAY, 30, step_minutes=0)

    def test_unknown_therapist(self, db_session):
        with pytest.raises(TherapistNotFoundError):
            AvailabilityService.compute_windows(db_session, 9999, MONDAY, MONDAY, 30)

    def test_range_checked_before_therapist(self, db_session):
        with pytest.raises(InvalidRangeError):
            AvailabilityService.compute_windows(db_session, 9999, TUESDAY, MONDAY, 30)


class TestIsWithinAvailability:

    def test_inside_working_hours(self, db_session, therapist):
        assert AvailabilityService.is_within_availability(db_session, therapist, at(MONDAY, 9), at(MONDAY, 9, 50))

    def test_not_aligned_to_grid_is_fine(self, db_session, therapist):
        assert AvailabilityService.is_within_availability(db_session, therapist, at(MONDAY, 9, 7), at(MONDAY, 9, 37))

    def test_crossing_end_of_hours(self, db_session, therapist):
        assert not AvailabilityService.is_within_availability(db_session, therapist, at(MONDAY, 11, 30), at(MONDAY, 12, 30))

    def test_other_day(self, db_session, therapist):
        assert not AvailabilityService.is_within_availability(db_session, therapist, at(TUESDAY, 9), at(TUESDAY, 10))

    def test_inside_blackout(self, db_session, therapist):
        AvailabilityService.add_blackout(db_session, therapist.id, at(MONDAY, 9, 30), at(MONDAY, 9, 45))
        assert not AvailabilityService.is_within_availability(db_session, therapist, at(MONDAY, 9), at(MONDAY, 10))


class TestBlackouts:

    def test_naive_rejected(self, db_session, therapist):
        with pytest.raises(ValidationError):
            AvailabilityService.add_blackout(
                db_session, therapist.id, datetime(2030, 3, 4, 9, 0), datetime(2030, 3, 4, 10, 0)
            )

    def test_empty_period_rejected(self, db_session, therapist):
        with pytest.raises(ValidationError):
            AvailabilityService.add_blackout(db_session, therapist.id, at(MONDAY, 10), at(MONDAY, 10))

    def test_unknown_therapist(self, db_session):
        with pytest.raises(TherapistNotFoundError):
            AvailabilityService.add_blackout(db_session, 9999, at(MONDAY, 10), at(MONDAY, 11))
