import datetime as dt
from datetime import datetime, time
from typing import List, Optional
from uuid import UUID

from pydantic import AnyHttpUrl, BaseModel, field_serializer

from app.core.enums import BookingStatus


class DocumentationCreate(BaseModel):
    url: AnyHttpUrl


class DocumentationResponse(BaseModel):
    id: UUID
    url: str
    created_at: datetime

    class Config:
        from_attributes = True


class ClassHistoryResponse(BaseModel):
    id: UUID
    booking_id: UUID
    teacher_id: UUID
    student_id: UUID
    instrument_id: UUID
    package_id: Optional[UUID] = None
    status: BookingStatus
    date: dt.date
    start_time: time
    end_time: time
    notes: Optional[str] = None
    created_at: datetime
    documentations: List[DocumentationResponse] = []

    class Config:
        from_attributes = True

    @field_serializer("start_time", "end_time")
    def serialize_time_24(self, t: time) -> str:
        return t.strftime("%H:%M")
