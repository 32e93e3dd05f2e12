from app.auth.models import TeacherProfile, User, teacher_instruments
from app.core.models.instrument import Instrument
from app.core.models.package import Package
from app.core.models.student_package import StudentPackage
from app.core.models.teacher_schedule import TeacherSchedule
from app.core.models.booking import Booking
from app.core.models.class_history import ClassDocumentation, ClassHistory

__all__ = [
    "TeacherProfile",
    "User",
    "teacher_instruments",
    "Booking",
    "ClassDocumentation",
    "ClassHistory",
    "Instrument",
    "Package",
    "StudentPackage",
    "TeacherSchedule",
]
