from datetime import datetime, time, timedelta, timezone

import pydantic
import pytest

from app.core.config import Settings
from app.core.enums import DayOfWeek
from app.core.timeutils import (
    add_months,
    local_to_utc,
    minutes_between,
    next_class_date,
    parse_time_24,
    to_naive_utc,
    utc_to_local,
)

MONDAY_8AM = datetime(2026, 10, 19, 8, 0)


def test_parse_time_24_accepts_short_and_long_forms() -> None:
    assert parse_time_24("09:45") == time(9, 45)
    assert parse_time_24(" 17:00:30 ") == time(17, 0, 30)
    assert parse_time_24(time(7, 0)) == time(7, 0)


@pytest.mark.parametrize("value", ["25:00", "9am", "", 930])
def test_parse_time_24_rejects_garbage(value) -> None:
    with pytest.raises(ValueError):
        parse_time_24(value)


def test_minutes_between() -> None:
    assert minutes_between(time(10, 0), time(11, 0)) == 60
    assert minutes_between(time(10, 0), time(10, 30)) == 30


def test_next_class_date_later_today() -> None:
    assert next_class_date(DayOfWeek.SENIN, time(10, 0), MONDAY_8AM) == datetime(2026, 10, 19, 10, 0)


def test_next_class_date_today_already_started_rolls_a_week() -> None:
    assert next_class_date(DayOfWeek.SENIN, time(7, 0), MONDAY_8AM) == datetime(2026, 10, 26, 7, 0)
    assert next_class_date(DayOfWeek.SENIN, time(8, 0), MONDAY_8AM) == datetime(2026, 10, 26, 8, 0)


def test_next_class_date_other_weekdays() -> None:
    assert next_class_date(DayOfWeek.RABU, time(15, 0), MONDAY_8AM) == datetime(2026, 10, 21, 15, 0)
    assert next_class_date(DayOfWeek.MINGGU, time(9, 0), MONDAY_8AM) == datetime(2026, 10, 25, 9, 0)


def test_next_class_date_uses_the_school_wall_clock() -> None:
    # Sunday 20:00 UTC is already Monday 03:00 in Jakarta.
    sunday_night = datetime(2026, 10, 18, 20, 0)
    assert next_class_date(DayOfWeek.SENIN, time(10, 0), sunday_night, "Asia/Jakarta") == datetime(2026, 10, 19, 3, 0)
    # Monday noon in Jakarta: the 10:00 lesson of this week has started.
    monday_noon = datetime(2026, 10, 19, 5, 0)
    assert next_class_date(DayOfWeek.SENIN, time(10, 0), monday_noon, "Asia/Jakarta") == datetime(2026, 10, 26, 3, 0)


def test_local_conversions_around_dst_changes() -> None:
    # 01:30 happens twice on 2026-11-01 in New York; the first (EDT) one counts.
    assert local_to_utc(datetime(2026, 11, 1, 1, 30), "America/New_York") == datetime(2026, 11, 1, 5, 30)
    # 02:30 is skipped on 2026-03-08.
    assert local_to_utc(datetime(2026, 3, 8, 2, 30), "America/New_York") == datetime(2026, 3, 8, 7, 30)
    assert utc_to_local(datetime(2026, 10, 19, 20, 0), "Asia/Jakarta") == datetime(2026, 10, 20, 3, 0)


def test_unknown_school_timezone_is_rejected() -> None:
    with pytest.raises(pydantic.ValidationError):
        Settings(SCHOOL_TIMEZONE="Mars/Olympus")


def test_add_months_clamps_day() -> None:
    assert add_months(datetime(2026, 1, 31, 12, 0), 1) == datetime(2026, 2, 28, 12, 0)
    assert add_months(datetime(2026, 12, 15), 1) == datetime(2027, 1, 15)
    assert add_months(datetime(2028, 1, 31), 1) == datetime(2028, 2, 29)


def test_to_naive_utc() -> None:
    aware = datetime(2026, 10, 19, 15, 0, tzinfo=timezone(timedelta(hours=7)))
    assert to_naive_utc(aware) == datetime(2026, 10, 19, 8, 0)
    assert to_naive_utc(MONDAY_8AM) is MONDAY_8AM
