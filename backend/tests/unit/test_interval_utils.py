"""
Unit tests for half-open interval arithmetic.
"""

from datetime import timedelta

from tests.utils import MONDAY, at
from utils.interval_utils import intervals_overlap, merge_intervals, subtract_intervals


class TestIntervalsOverlap:

    def test_partial_overlap(self):
        assert intervals_overlap(at(MONDAY, 9), at(MONDAY, 10), at(MONDAY, 9, 30), at(MONDAY, 10, 30))

    def test_back_to_back_does_not_overlap(self):
        """An interval ending exactly when the next starts does not overlap it."""
        assert not intervals_overlap(at(MONDAY, 9), at(MONDAY, 10), at(MONDAY, 10), at(MONDAY, 11))
        assert not intervals_overlap(at(MONDAY, 10), at(MONDAY, 11), at(MONDAY, 9), at(MONDAY, 10))

    def test_containment_overlaps(self):
        assert intervals_overlap(at(MONDAY, 9), at(MONDAY, 12), at(MONDAY, 10), at(MONDAY, 10, 15))


class TestMergeIntervals:

    def test_merges_overlapping_and_touching(self):
        """Touching intervals become one contiguous interval."""
        merged = list(merge_intervals([
            (at(MONDAY, 9), at(MONDAY, 10)),
            (at(MONDAY, 10), at(MONDAY, 11)),
            (at(MONDAY, 10, 30), at(MONDAY, 12)),
            (at(MONDAY, 14), at(MONDAY, 15)),
        ]))
        assert merged == [
            (at(MONDAY, 9), at(MONDAY, 12)),
            (at(MONDAY, 14), at(MONDAY, 15)),
        ]

    def test_skips_empty_intervals(self):
        merged = list(merge_intervals([
            (at(MONDAY, 9), at(MONDAY, 9)),
            (at(MONDAY, 10), at(MONDAY, 11)),
        ]))
        assert merged == [(at(MONDAY, 10), at(MONDAY, 11))]

    def test_is_lazy(self):
        """Nothing is consumed from the source until iteration starts."""
        consumed = []

        def source():
            for hour in (9, 11):
                consumed.append(hour)
                yield at(MONDAY, hour), at(MONDAY, hour) + timedelta(minutes=30)

        merged = merge_intervals(source())
        assert consumed == []
        assert next(merged) == (at(MONDAY, 9), at(MONDAY, 9, 30))

    def test_empty_input(self):
        assert list(merge_intervals([])) == []


class TestSubtractIntervals:

    def test_no_busy_returns_whole_interval(self):
        free = (at(MONDAY, 9), at(MONDAY, 12))
        assert subtract_intervals(free, []) == [free]

    def test_busy_in_the_middle_splits(self):
        remaining = subtract_intervals(
            (at(MONDAY, 9), at(MONDAY, 12)),
            [(at(MONDAY, 10), at(MONDAY, 11))],
        )
        assert remaining == [
            (at(MONDAY, 9), at(MONDAY, 10)),
            (at(MONDAY, 11), at(MONDAY, 12)),
        ]

    def test_busy_covering_everything(self):
        remaining = subtract_intervals(
            (at(MONDAY, 9), at(MONDAY, 12)),
            [(at(MONDAY, 8), at(MONDAY, 13))],
        )
        assert remaining == []

    def test_busy_outside_is_ignored(self):
        free = (at(MONDAY, 9), at(MONDAY, 12))
        remaining = subtract_intervals(free, [
            (at(MONDAY, 7), at(MONDAY, 9)),
            (at(MONDAY, 12), at(MONDAY, 13)),
        ])
        assert remaining == [free]

    def test_overlapping_busy_intervals(self):
        remaining = subtract_intervals(
            (at(MONDAY, 9), at(MONDAY, 12)),
            [
                (at(MONDAY, 9, 30), at(MONDAY, 10, 30)),
                (at(MONDAY, 10), at(MONDAY, 10, 45)),
            ],
        )
        assert remaining == [
            (at(MONDAY, 9), at(MONDAY, 9, 30)),
            (at(MONDAY, 10, 45), at(MONDAY, 12)),
        ]
