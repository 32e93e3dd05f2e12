"""Recurring weekly availability slot of a teacher."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, Time
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import DayOfWeek, enum_values
from app.db.session import Base


class TeacherSchedule(Base):
    __tablename__ = "teacher_schedules"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    teacher_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = Column(
        Enum(DayOfWeek, native_enum=False, length=10, values_callable=enum_values),
        nullable=False,
    )
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration = Column(Integer, nullable=False)  # minutes, end_time - start_time
    # True iff exactly one booking in status=booked references this slot.
    is_booked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    # Soft delete keeps past bookings and class history pointing at a real row.
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    teacher = relationship("User", foreign_keys=[teacher_id], lazy="joined")
    teacher_profile = relationship(
        "TeacherProfile",
        primaryjoin="TeacherSchedule.teacher_id == TeacherProfile.user_id",
        foreign_keys=[teacher_id],
        viewonly=True,
        lazy="selectin",
    )
