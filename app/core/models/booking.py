"""Booking: binds a student, one quota unit and one slot for a single lesson occurrence."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import BookingStatus, enum_values
from app.db.session import Base


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        # At most one active booking per slot, enforced by the database.
        Index(
            "uq_bookings_active_schedule",
            "schedule_id",
            unique=True,
            postgresql_where=text("status = 'booked'"),
            sqlite_where=text("status = 'booked'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    schedule_id = Column(
        UUID(as_uuid=True), ForeignKey("teacher_schedules.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    student_package_id = Column(
        UUID(as_uuid=True), ForeignKey("student_packages.id", ondelete="CASCADE"), nullable=False
    )
    class_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        Enum(BookingStatus, native_enum=False, length=20, values_callable=enum_values),
        nullable=False,
        default=BookingStatus.BOOKED,
    )
    booked_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    rescheduled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rescheduled_to_id = Column(UUID(as_uuid=True), ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)
    version_id = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    student = relationship("User", foreign_keys=[student_id])
    schedule = relationship("TeacherSchedule", lazy="joined")
    student_package = relationship("StudentPackage", lazy="joined")
