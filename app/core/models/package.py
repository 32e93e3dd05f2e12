"""Lesson package template. Editing it never touches already-issued student packages."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class Package(Base):
    __tablename__ = "packages"
    __table_args__ = (
        CheckConstraint("quota > 0", name="ck_package_quota_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False, unique=True)
    quota = Column(Integer, nullable=False)  # lessons granted per subscription
    duration = Column(Integer, nullable=False, default=30)  # minutes per lesson: 30 | 60
    price = Column(Numeric(12, 2), nullable=False, default=0)
    description = Column(Text, nullable=True)
    instrument_id = Column(UUID(as_uuid=True), ForeignKey("instruments.id", ondelete="RESTRICT"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    instrument = relationship("Instrument", lazy="joined")
