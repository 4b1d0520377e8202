"""
Tests for the injectable clock and calendar helpers
"""

from datetime import date, timedelta

from debt_ledger.clock import (
    FixedClock, FixedOffsetClock, add_months, clamp_day, days_between, days_in_month, next_month
)


class TestClocks:

    def test_fixed_clock_returns_frozen_date(self):
        clock = FixedClock(date(2024, 3, 1))
        assert clock.today() == date(2024, 3, 1)

    def test_fixed_clock_advance(self):
        clock = FixedClock(date(2024, 3, 1))
        clock.advance(30)
        assert clock.today() == date(2024, 3, 31)

    def test_fixed_offset_clock_uses_utc_plus_seven(self):
        clock = FixedOffsetClock(7)
        now = clock.now()
        assert now.utcoffset() == timedelta(hours=7)
        assert clock.today() == now.date()


class TestCalendarHelpers:

    def test_days_in_month(self):
        assert days_in_month(2024, 2) == 29
        assert days_in_month(2023, 2) == 28
        assert days_in_month(2024, 1) == 31

    def test_days_between_never_negative(self):
        assert days_between(date(2024, 1, 1), date(2024, 1, 16)) == 15
        assert days_between(date(2024, 1, 16), date(2024, 1, 1)) == 0

    def test_next_month_rolls_year(self):
        assert next_month(2024, 12) == (2025, 1)
        assert next_month(2024, 5) == (2024, 6)

    def test_clamp_day(self):
        assert clamp_day(2024, 2, 31) == date(2024, 2, 29)
        assert clamp_day(2024, 4, 31) == date(2024, 4, 30)
        assert clamp_day(2024, 5, 15) == date(2024, 5, 15)

    def test_add_months_clamps_to_month_end(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2024, 1, 31), 3) == date(2024, 4, 30)
        assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)
