from datetime import datetime, time
from typing import List, Optional
from uuid import UUID

from pydantic import AnyHttpUrl, BaseModel, Field, field_serializer

from app.core.enums import BookingStatus, DayOfWeek

from app.api.v1.class_history.schemas import ClassHistoryResponse


class BookingCreate(BaseModel):
    schedule_id: UUID


class BookingReschedule(BaseModel):
    schedule_id: UUID = Field(..., description="The free slot to move the lesson to")


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class FinishClassRequest(BaseModel):
    notes: Optional[str] = None
    documentation_urls: List[AnyHttpUrl] = Field(default_factory=list)


class BookingResponse(BaseModel):
    id: UUID
    student_id: UUID
    schedule_id: UUID
    student_package_id: UUID
    teacher_id: UUID
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    class_date: datetime
    status: BookingStatus
    booked_at: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    rescheduled_at: Optional[datetime] = None
    cancelled_by: Optional[UUID] = None
    rescheduled_to_id: Optional[UUID] = None
    notes: Optional[str] = None

    @field_serializer("start_time", "end_time")
    def serialize_time_24(self, t: time) -> str:
        return t.strftime("%H:%M")


class FinishClassResponse(BaseModel):
    booking: BookingResponse
    history: ClassHistoryResponse
