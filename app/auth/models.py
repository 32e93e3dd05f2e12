import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, String, Table, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import UserRole, enum_values
from app.db.session import Base


# Instruments a teacher teaches. Drives slot filtering and booking coverage checks.
teacher_instruments = Table(
    "teacher_instruments",
    Base.metadata,
    Column(
        "teacher_id",
        UUID(as_uuid=True),
        ForeignKey("teacher_profiles.user_id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "instrument_id",
        UUID(as_uuid=True),
        ForeignKey("instruments.id", ondelete="RESTRICT"),
        primary_key=True,
    ),
)


class User(Base):
    """Any account: admin, manager, teacher or student."""

    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(Text, nullable=False)
    role = Column(
        Enum(UserRole, native_enum=False, length=20, values_callable=enum_values),
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    teacher_profile = relationship(
        "TeacherProfile", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    # Quota ledger entries go away with the student.
    packages = relationship(
        "StudentPackage", back_populates="student", cascade="all, delete-orphan"
    )


class TeacherProfile(Base):
    __tablename__ = "teacher_profiles"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    bio = Column(Text, nullable=True)

    user = relationship("User", back_populates="teacher_profile")
    instruments = relationship("Instrument", secondary=teacher_instruments, lazy="selectin")
