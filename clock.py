"""Studio-local time.

Every "today", "current month" and "hours until start" question is answered
in the studio's civil timezone, never the server's locale.
"""
import calendar
from datetime import date, datetime, time, timezone
from typing import Tuple
from zoneinfo import ZoneInfo

from config import STUDIO_TIMEZONE

STUDIO_TZ = ZoneInfo(STUDIO_TIMEZONE)


class Clock:
    """Wall clock bound to the studio timezone."""

    def now(self) -> datetime:
        return datetime.now(STUDIO_TZ)

    def today(self) -> date:
        return self.now().date()


class FixedClock(Clock):
    """A clock that always reports the same instant."""

    def __init__(self, instant: datetime):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=STUDIO_TZ)
        self.instant = instant.astimezone(STUDIO_TZ)

    def now(self) -> datetime:
        return self.instant


def get_clock() -> Clock:
    return Clock()


def as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back naive; they were written as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def studio_instant(day: date, at: time) -> datetime:
    return datetime.combine(day, at, tzinfo=STUDIO_TZ)


def hours_between(start: datetime, end: datetime) -> float:
    # Subtract in UTC so DST transitions count as elapsed time
    return (as_utc(end) - as_utc(start)).total_seconds() / 3600


def month_bounds(day: date) -> Tuple[date, date]:
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def end_of_month(now: datetime) -> datetime:
    local = now.astimezone(STUDIO_TZ)
    _, last = month_bounds(local.date())
    return datetime.combine(last, time(23, 59, 59), tzinfo=STUDIO_TZ)


def parse_month(value: str) -> date:
    """Parse ``YYYY-MM`` into the first day of that month."""
    return datetime.strptime(value, "%Y-%m").date()
