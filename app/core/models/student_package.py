"""Quota ledger entry: one subscription of a student to a package."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.timeutils import to_naive_utc
from app.db.session import Base


class StudentPackage(Base):
    __tablename__ = "student_packages"
    __table_args__ = (
        CheckConstraint("remaining_quota >= 0", name="ck_student_package_quota_non_negative"),
        CheckConstraint("remaining_quota <= quota", name="ck_student_package_quota_ceiling"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    package_id = Column(UUID(as_uuid=True), ForeignKey("packages.id", ondelete="RESTRICT"), nullable=False)
    # Terms as issued; later edits to the package template do not touch them.
    quota = Column(Integer, nullable=False)
    duration = Column(Integer, nullable=False)
    remaining_quota = Column(Integer, nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)

    student = relationship("User", back_populates="packages")
    package = relationship("Package", lazy="joined")

    def is_active(self, now: datetime) -> bool:
        return to_naive_utc(self.end_date) >= to_naive_utc(now) and self.remaining_quota > 0
