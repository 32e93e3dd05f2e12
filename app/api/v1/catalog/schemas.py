from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import LessonDuration


class InstrumentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=30)


class InstrumentResponse(BaseModel):
    id: UUID
    name: str
    created_at: datetime

    class Config:
        from_attributes = True


class PackageCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    quota: int = Field(..., gt=0, description="Lessons granted per subscription")
    instrument_id: UUID
    duration: LessonDuration = LessonDuration.HALF_HOUR
    price: Decimal = Field(Decimal("0"), ge=0)
    description: Optional[str] = None


class PackageUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    quota: Optional[int] = Field(None, gt=0)
    duration: Optional[LessonDuration] = None
    price: Optional[Decimal] = Field(None, ge=0)
    description: Optional[str] = None


class PackageResponse(BaseModel):
    id: UUID
    name: str
    quota: int
    duration: int
    price: Decimal
    description: Optional[str] = None
    instrument: InstrumentResponse
    created_at: datetime

    class Config:
        from_attributes = True


class TeacherInstrumentsUpdate(BaseModel):
    instrument_ids: List[UUID] = Field(..., description="Replaces the full set of instruments the teacher teaches")


class TeacherInstrumentsResponse(BaseModel):
    teacher_id: UUID
    instruments: List[InstrumentResponse]
