# backend/tests/unit/test_timezone_utils.py
"""
Tests for business-timezone helpers.

The test environment runs with America/New_York as the business timezone.
"""

from datetime import date, datetime, time, timezone

import pytest

from app.core.exceptions import ValidationException
from app.core.timezone_utils import business_today, parse_wall_clock, scheduled_datetime


class TestBusinessToday:
    def test_late_utc_evening_is_previous_local_day(self):
        assert business_today(datetime(2025, 1, 1, 3, 0, tzinfo=timezone.utc)) == date(2024, 12, 31)

    def test_naive_reference_is_treated_as_utc(self):
        assert business_today(datetime(2025, 1, 1, 3, 0)) == date(2024, 12, 31)

    def test_midday(self):
        assert business_today(datetime(2025, 1, 1, 17, 0, tzinfo=timezone.utc)) == date(2025, 1, 1)


class TestParseWallClock:
    @pytest.mark.parametrize("value", ["09:30", "09:30:00", " 09:30 "])
    def test_valid_formats(self, value):
        assert parse_wall_clock(value) == time(9, 30)

    def test_invalid_time(self):
        with pytest.raises(ValidationException) as exc_info:
            parse_wall_clock("25:99")
        assert exc_info.value.code == "INVALID_TIME"


class TestScheduledDatetime:
    def test_winter_offset(self):
        assert scheduled_datetime(date(2025, 1, 9), "10:00") == datetime(
            2025, 1, 9, 15, 0, tzinfo=timezone.utc
        )

    def test_summer_offset(self):
        assert scheduled_datetime(date(2025, 7, 1), "10:00") == datetime(
            2025, 7, 1, 14, 0, tzinfo=timezone.utc
        )

    def test_missing_time_is_local_midnight(self):
        assert scheduled_datetime(date(2025, 1, 9), None) == datetime(
            2025, 1, 9, 5, 0, tzinfo=timezone.utc
        )
