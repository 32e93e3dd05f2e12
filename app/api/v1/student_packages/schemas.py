from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class AssignPackageRequest(BaseModel):
    student_id: UUID
    package_id: UUID


class ModifyQuotaRequest(BaseModel):
    delta: int = Field(..., description="Added to remaining_quota; clamped to [0, package quota]")


class StudentPackageResponse(BaseModel):
    id: UUID
    student_id: UUID
    package_id: UUID
    package_name: str
    instrument_id: UUID
    instrument_name: str
    quota: int
    duration: int
    remaining_quota: int
    start_date: datetime
    end_date: datetime
    is_active: bool
