"""
Clock Module

Injectable source of "today". Interest accrual is date-only and uses a fixed
UTC offset (UTC+7 for Thailand) so results match regardless of host timezone.
"""

from abc import ABC, abstractmethod
import calendar
from datetime import datetime, timezone, timedelta, date
from typing import Optional, Tuple

from .config import get_config


class Clock(ABC):
    """Abstract time provider"""

    @abstractmethod
    def now(self) -> datetime:
        """Current timezone-aware datetime"""
        pass

    def today(self) -> date:
        """Current calendar date in the clock's timezone"""
        return self.now().date()


class FixedOffsetClock(Clock):
    """Wall clock at a fixed UTC offset"""

    def __init__(self, offset_hours: Optional[int] = None):
        if offset_hours is None:
            offset_hours = get_config().timezone_offset_hours
        self.tz = timezone(timedelta(hours=offset_hours))

    def now(self) -> datetime:
        return datetime.now(self.tz)


class FixedClock(Clock):
    """Clock frozen on a given date, for tests and batch re-runs"""

    def __init__(self, frozen_date: date, offset_hours: int = 7):
        self.frozen_date = frozen_date
        self.tz = timezone(timedelta(hours=offset_hours))

    def now(self) -> datetime:
        return datetime.combine(self.frozen_date, datetime.min.time()).replace(tzinfo=self.tz)

    def advance(self, days: int = 1) -> None:
        self.frozen_date = self.frozen_date + timedelta(days=days)


_default_clock: Optional[Clock] = None


def get_clock() -> Clock:
    """Process-wide default clock (UTC+7 wall clock)"""
    global _default_clock
    if _default_clock is None:
        _default_clock = FixedOffsetClock()
    return _default_clock


def days_in_month(year: int, month: int) -> int:
    """Number of days in a calendar month"""
    return calendar.monthrange(year, month)[1]


def days_between(start: date, end: date) -> int:
    """Whole days from start to end; never negative"""
    return max(0, (end - start).days)


def next_month(year: int, month: int) -> Tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


def clamp_day(year: int, month: int, day: int) -> date:
    """Date for day-of-month, clamped to the month's last day"""
    return date(year, month, min(day, days_in_month(year, month)))


def add_months(start_date: date, months: int) -> date:
    """Add calendar months, clamping to the end of shorter months"""
    month_index = start_date.month - 1 + months
    year = start_date.year + month_index // 12
    month = month_index % 12 + 1
    return clamp_day(year, month, start_date.day)
