"""Wall-clock helpers for recurring weekly slots and subscription windows."""

import calendar
from datetime import datetime, time, timedelta, timezone
from typing import Union

import pytz

from app.core.enums import DayOfWeek


def parse_time_24(v: Union[str, time]) -> time:
    """Parse 24-hour time string (HH:MM or HH:MM:SS) to time."""
    if isinstance(v, time):
        return v
    if isinstance(v, str):
        v = v.strip()
        if len(v) == 5:  # HH:MM
            return datetime.strptime(v, "%H:%M").time()
        return datetime.strptime(v, "%H:%M:%S").time()
    raise ValueError("start_time/end_time must be 24-hour string (e.g. 09:00, 09:45) or time")


def minutes_between(start: time, end: time) -> int:
    return (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)


def _localize(tz: pytz.BaseTzInfo, naive_local: datetime) -> datetime:
    try:
        return tz.localize(naive_local, is_dst=None)
    except pytz.exceptions.AmbiguousTimeError:
        # Repeated hour: first occurrence.
        return tz.localize(naive_local, is_dst=True)
    except pytz.exceptions.NonExistentTimeError:
        # Skipped hour: read with the standard-time offset.
        return tz.localize(naive_local, is_dst=False)


def local_to_utc(naive_local: datetime, tz_name: str) -> datetime:
    """School wall-clock time -> naive UTC."""
    return to_naive_utc(_localize(pytz.timezone(tz_name), naive_local))


def utc_to_local(dt: datetime, tz_name: str) -> datetime:
    """Naive (or aware) UTC -> naive school wall-clock time."""
    aware = to_naive_utc(dt).replace(tzinfo=timezone.utc)
    return aware.astimezone(pytz.timezone(tz_name)).replace(tzinfo=None)


def next_class_date(day_of_week: DayOfWeek, start_time: time, now: datetime, tz_name: str = "UTC") -> datetime:
    """Next concrete occurrence of a weekly slot, in naive UTC.

    Slots are declared in the school's wall-clock time (``tz_name``) while
    ``now`` is UTC, so the weekday and the "already started" check are both
    evaluated locally. If the slot falls on today and its start time has
    already passed, the occurrence one week later is returned.
    """
    local_now = utc_to_local(now, tz_name)
    days_until = (day_of_week.weekday - local_now.weekday()) % 7
    candidate = datetime.combine(local_now.date() + timedelta(days=days_until), start_time)
    if candidate <= local_now:
        candidate += timedelta(days=7)
    return local_to_utc(candidate, tz_name)


def add_months(dt: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day (Jan 31 + 1 month -> Feb 28/29)."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def to_naive_utc(dt: datetime) -> datetime:
    """Drop tzinfo after converting to UTC; application code works in naive UTC."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)
