"""Append-only archive of completed lessons."""

import uuid
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Enum, ForeignKey, Text, Time
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import BookingStatus, enum_values
from app.db.session import Base


class ClassHistory(Base):
    __tablename__ = "class_histories"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id = Column(
        UUID(as_uuid=True), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    teacher_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    student_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    instrument_id = Column(UUID(as_uuid=True), ForeignKey("instruments.id", ondelete="RESTRICT"), nullable=False)
    package_id = Column(UUID(as_uuid=True), ForeignKey("packages.id", ondelete="SET NULL"), nullable=True)
    status = Column(
        Enum(BookingStatus, native_enum=False, length=20, values_callable=enum_values),
        nullable=False,
        default=BookingStatus.COMPLETED,
    )
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    booking = relationship("Booking")
    documentations = relationship(
        "ClassDocumentation",
        back_populates="class_history",
        cascade="all, delete-orphan",
        order_by="ClassDocumentation.created_at",
        lazy="selectin",
    )


class ClassDocumentation(Base):
    __tablename__ = "class_documentations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    class_history_id = Column(
        UUID(as_uuid=True), ForeignKey("class_histories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    url = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    class_history = relationship("ClassHistory", back_populates="documentations")
