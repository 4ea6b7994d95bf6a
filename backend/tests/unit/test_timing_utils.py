"""
Unit tests for reminder offset parsing and due time calculation.
"""

import pytest
from datetime import timedelta

from tests.utils import MONDAY, at
from utils.timing_utils import calculate_reminder_time, normalize_offsets, parse_offset


class TestParseOffset:

    @pytest.mark.parametrize("label,expected", [
        ("24h", timedelta(hours=24)),
        ("1h", timedelta(hours=1)),
        ("15m", timedelta(minutes=15)),
        ("2d", timedelta(days=2)),
        (" 30M ", timedelta(minutes=30)),
    ])
    def test_valid_labels(self, label, expected):
        assert parse_offset(label) == expected

    @pytest.mark.parametrize("label", ["", "h", "10", "1w", "-1h", "1.5h", "0m"])
    def test_invalid_labels(self, label):
        with pytest.raises(ValueError):
            parse_offset(label)


class TestNormalizeOffsets:

    def test_sorted_longest_first(self):
        assert normalize_offsets(["15m", "24h", "1h"]) == ["24h", "1h", "15m"]

    def test_duplicates_are_dropped(self, caplog):
        """Two labels for the same duration keep only the first."""
        assert normalize_offsets(["1h", "60m", "1d"]) == ["1d", "1h"]
        assert "Duplicate reminder offset" in caplog.text

    def test_empty_list_rejected(self):
        with pytest.raises(ValueError):
            normalize_offsets([])


class TestCalculateReminderTime:

    def test_subtracts_offset(self):
        assert calculate_reminder_time(at(MONDAY, 9), "24h") == at(MONDAY, 9) - timedelta(hours=24)
        assert calculate_reminder_time(at(MONDAY, 9), "15m") == at(MONDAY, 8, 45)

    def test_none_start_rejected(self):
        with pytest.raises(ValueError):
            calculate_reminder_time(None, "1h")
