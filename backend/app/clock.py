from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional, Tuple
from zoneinfo import ZoneInfo

from backend.app.config import business_timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BusinessClock:
    """
    Current date/hour as observed in the business timezone.

    `now` can be injected (tests, replays); it may return any aware datetime and
    is converted into the business zone.
    """

    def __init__(self, timezone_name: str, now: Optional[Callable[[], datetime]] = None):
        self.timezone_name = timezone_name
        self.tz = ZoneInfo(timezone_name)
        self._now = now or utcnow

    def now(self) -> datetime:
        current = self._now()
        if current.tzinfo is None:
            raise ValueError("clock source must return an aware datetime")
        return current.astimezone(self.tz)

    def business_date(self) -> date:
        return self.now().date()

    def business_hour(self) -> int:
        return self.now().hour

    def is_future(self, day: date, hour: int) -> bool:
        current = self.now()
        if day != current.date():
            return day > current.date()
        return hour > current.hour


def period_label(hour: int) -> str:
    start = 23 if hour == 0 else hour - 1
    return f"{start:02d}:00 - {hour:02d}:00"


def week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    last = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last)


def get_business_clock() -> BusinessClock:
    return BusinessClock(business_timezone())
