"""Tests for kryten_analytics.utils module."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from kryten_analytics.utils import (
    Clock,
    days_between,
    local_date,
    now_utc,
    sqlite_hours_modifier,
    to_epoch_ms,
    today_str,
)


class TestNowUtc:
    def test_is_aware(self):
        assert now_utc().tzinfo is not None

    def test_clock_ms_close_to_now(self):
        assert abs(Clock().now_ms() - to_epoch_ms(now_utc())) < 5000


class TestToEpochMs:
    def test_epoch(self):
        assert to_epoch_ms(datetime(1970, 1, 1, tzinfo=timezone.utc)) == 0

    def test_naive_is_utc(self):
        assert to_epoch_ms(datetime(2024, 1, 1)) == to_epoch_ms(datetime(2024, 1, 1, tzinfo=timezone.utc))

    def test_offset_aware(self):
        plus_ten = timezone(timedelta(hours=10))
        assert to_epoch_ms(datetime(2024, 1, 1, 10, tzinfo=plus_ten)) == to_epoch_ms(
            datetime(2024, 1, 1, 0, tzinfo=timezone.utc)
        )


class TestLocalDate:
    def test_no_offset(self):
        assert local_date(datetime(2024, 1, 10, 23, tzinfo=timezone.utc)) == date(2024, 1, 10)

    def test_positive_offset_rolls_forward(self):
        assert local_date(datetime(2024, 1, 10, 23, tzinfo=timezone.utc), 2) == date(2024, 1, 11)

    def test_negative_offset_rolls_back(self):
        assert local_date(datetime(2024, 1, 10, 1, tzinfo=timezone.utc), -5) == date(2024, 1, 9)

    def test_today_str(self):
        now = datetime(2024, 3, 5, 12, tzinfo=timezone.utc)
        assert today_str(0, now) == "2024-03-05"


class TestDaysBetween:
    def test_strings(self):
        assert days_between("2024-03-01", "2024-02-28") == 2

    def test_dates(self):
        assert days_between(date(2024, 1, 2), date(2024, 1, 1)) == 1

    def test_same_day(self):
        assert days_between("2024-01-01", "2024-01-01") == 0


class TestSqliteHoursModifier:
    def test_whole_hours(self):
        assert sqlite_hours_modifier(10) == "+10 hours"
        assert sqlite_hours_modifier(-5) == "-5 hours"
        assert sqlite_hours_modifier(0) == "+0 hours"

    def test_fractional(self):
        assert sqlite_hours_modifier(5.5) == "+5.5 hours"
