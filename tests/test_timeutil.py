"""
Unit tests for clock helpers
"""
from datetime import datetime

import pytest

from tidenow.timeutil import datetime_to_decimal, decimal_to_time, normalize_hours, time_to_decimal


class TestTimeToDecimal:
    """Tests for parsing clock times."""

    def test_parses_clock_string(self):
        assert time_to_decimal("05:30") == 5.5
        assert time_to_decimal("00:00") == 0.0
        assert time_to_decimal("23:45") == 23.75

    def test_accepts_single_digit_hour(self):
        assert time_to_decimal("7:15") == 7.25

    def test_passes_numbers_through(self):
        assert time_to_decimal(13.5) == 13.5
        assert time_to_decimal(6) == 6.0

    @pytest.mark.parametrize("value", ["", "5", "5:3", "25:00", "10:60", "ab:cd", "24:01"])
    def test_rejects_malformed_strings(self, value):
        """Malformed clock strings should raise ValueError."""
        with pytest.raises(ValueError):
            time_to_decimal(value)

    def test_rejects_booleans(self):
        with pytest.raises(ValueError):
            time_to_decimal(True)


class TestDecimalToTime:
    """Tests for formatting decimal hours."""

    def test_formats_hours_and_minutes(self):
        assert decimal_to_time(5.5) == "05:30"
        assert decimal_to_time(0.0) == "00:00"

    def test_wraps_out_of_range_values(self):
        assert decimal_to_time(25.0) == "01:00"
        assert decimal_to_time(-1.0) == "23:00"

    def test_rounded_minute_carries_into_hour(self):
        """59.9 minutes rounds up to the next hour, never "05:60"."""
        assert decimal_to_time(5 + 59.9 / 60) == "06:00"
        assert decimal_to_time(23 + 59.9 / 60) == "00:00"

    def test_clock_round_trip(self):
        for clock in ("00:00", "05:12", "11:24", "17:41", "23:48"):
            assert decimal_to_time(time_to_decimal(clock)) == clock


class TestNormalizeHours:
    """Tests for wrapping into [0, 24)."""

    def test_values_inside_day_unchanged(self):
        assert normalize_hours(12.5) == 12.5

    def test_wraps_into_day(self):
        assert normalize_hours(24.0) == 0.0
        assert normalize_hours(30.0) == 6.0
        assert normalize_hours(-6.0) == 18.0

    def test_tiny_negative_never_returns_24(self):
        assert 0.0 <= normalize_hours(-1e-17) < 24.0


def test_datetime_to_decimal():
    assert datetime_to_decimal(datetime(2024, 5, 1, 14, 45, 36)) == pytest.approx(14.76)
