"""Tests for timezone-explicit calendar arithmetic."""

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from vitals.domain.calendar import (
    MILLIS_PER_HOUR,
    day_bounds,
    floor_to_hour,
    floor_to_minute,
    is_same_day,
    local_date,
    night_key_for,
    start_of_day,
    to_millis,
    trailing_days,
    weekday_abbrev,
)
from tests.conftest import DAY_START, UTC_ZONE

NEW_YORK = ZoneInfo("America/New_York")
KOLKATA = ZoneInfo("Asia/Kolkata")


def _at(tz, *parts) -> int:
    return to_millis(datetime(*parts, tzinfo=tz))


class TestDayBoundaries:
    def test_start_of_day_utc(self):
        assert start_of_day(date(2024, 3, 14), UTC_ZONE) == DAY_START

    def test_day_bounds_regular_day(self):
        start, end = day_bounds(date(2024, 3, 14), UTC_ZONE)
        assert end - start == 24 * MILLIS_PER_HOUR

    def test_spring_forward_day_is_23_hours(self):
        start, end = day_bounds(date(2024, 3, 10), NEW_YORK)
        assert end - start == 23 * MILLIS_PER_HOUR

    def test_fall_back_day_is_25_hours(self):
        start, end = day_bounds(date(2024, 11, 3), NEW_YORK)
        assert end - start == 25 * MILLIS_PER_HOUR

    def test_local_date_depends_on_zone(self):
        # 02:00 UTC on the 14th is still the 13th in New York
        ts = DAY_START + 2 * MILLIS_PER_HOUR
        assert local_date(ts, UTC_ZONE) == date(2024, 3, 14)
        assert local_date(ts, NEW_YORK) == date(2024, 3, 13)

    def test_is_same_day(self):
        assert is_same_day(DAY_START, date(2024, 3, 14), UTC_ZONE)
        assert not is_same_day(DAY_START - 1, date(2024, 3, 14), UTC_ZONE)


class TestNightKey:
    def test_before_start_hour_belongs_to_previous_night(self):
        ts = _at(UTC_ZONE, 2024, 3, 14, 17, 59)
        assert night_key_for(ts, UTC_ZONE) == _at(UTC_ZONE, 2024, 3, 13, 18, 0)

    def test_at_start_hour_belongs_to_same_day(self):
        ts = _at(UTC_ZONE, 2024, 3, 14, 18, 0)
        assert night_key_for(ts, UTC_ZONE) == ts

    def test_after_midnight_belongs_to_previous_evening(self):
        ts = _at(UTC_ZONE, 2024, 3, 14, 0, 30)
        assert night_key_for(ts, UTC_ZONE) == _at(UTC_ZONE, 2024, 3, 13, 18, 0)

    def test_custom_start_hour(self):
        ts = _at(UTC_ZONE, 2024, 3, 14, 19, 0)
        assert night_key_for(ts, UTC_ZONE, night_start_hour=20) == _at(
            UTC_ZONE, 2024, 3, 13, 20, 0
        )

    def test_night_spanning_dst_keeps_local_key(self):
        # Night of 9-10 March 2024 crosses the New York spring-forward
        ts = _at(NEW_YORK, 2024, 3, 10, 4, 0)
        assert night_key_for(ts, NEW_YORK) == _at(NEW_YORK, 2024, 3, 9, 18, 0)


class TestFlooring:
    def test_floor_to_minute(self):
        assert floor_to_minute(DAY_START + 90_500) == DAY_START + 60_000

    def test_floor_to_hour_half_hour_zone(self):
        # Kolkata is UTC+05:30, so local hours start on UTC half-hours
        ts = _at(KOLKATA, 2024, 3, 14, 10, 45)
        assert floor_to_hour(ts, KOLKATA) == _at(KOLKATA, 2024, 3, 14, 10, 0)


class TestTrailingDays:
    def test_seven_days_oldest_first(self):
        days = trailing_days(date(2024, 3, 14))
        assert len(days) == 7
        assert days[0] == date(2024, 3, 8)
        assert days[-1] == date(2024, 3, 14)

    @pytest.mark.parametrize(
        "day, label",
        [
            (date(2024, 3, 11), "Mon"),
            (date(2024, 3, 14), "Thu"),
            (date(2024, 3, 17), "Sun"),
        ],
    )
    def test_weekday_labels(self, day, label):
        assert weekday_abbrev(day) == label
