from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    TEACHER = "teacher"
    STUDENT = "student"


class DayOfWeek(str, Enum):
    """Weekday names as teachers enter them (Indonesian)."""

    SENIN = "senin"
    SELASA = "selasa"
    RABU = "rabu"
    KAMIS = "kamis"
    JUMAT = "jumat"
    SABTU = "sabtu"
    MINGGU = "minggu"

    @property
    def weekday(self) -> int:
        """0=Monday .. 6=Sunday, same numbering as datetime.weekday()."""
        return _WEEKDAY_INDEX[self]


_WEEKDAY_INDEX = {
    DayOfWeek.SENIN: 0,
    DayOfWeek.SELASA: 1,
    DayOfWeek.RABU: 2,
    DayOfWeek.KAMIS: 3,
    DayOfWeek.JUMAT: 4,
    DayOfWeek.SABTU: 5,
    DayOfWeek.MINGGU: 6,
}


class BookingStatus(str, Enum):
    BOOKED = "booked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"

    @property
    def is_terminal(self) -> bool:
        return self is not BookingStatus.BOOKED


class LessonDuration(int, Enum):
    HALF_HOUR = 30
    HOUR = 60


def enum_values(enum_cls):
    """Persist str enums by value ("booked"), not by member name ("BOOKED")."""
    return [member.value for member in enum_cls]
