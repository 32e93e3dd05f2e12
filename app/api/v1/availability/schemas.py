from datetime import datetime, time
from typing import List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_serializer, field_validator

from app.core.enums import DayOfWeek
from app.core.timeutils import parse_time_24


class AvailabilityCreate(BaseModel):
    day_of_week: DayOfWeek = Field(..., description="senin | selasa | rabu | kamis | jumat | sabtu | minggu")
    start_time: Union[str, time] = Field(..., description="24-hour format, e.g. 09:00")
    end_time: Union[str, time] = Field(..., description="24-hour format, e.g. 10:00")

    @field_validator("day_of_week", mode="before")
    @classmethod
    def normalize_day(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_time(cls, v: Union[str, time]) -> time:
        return parse_time_24(v)


class ScheduleResponse(BaseModel):
    id: UUID
    teacher_id: UUID
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    duration: int
    is_booked: bool
    created_at: datetime

    class Config:
        from_attributes = True

    @field_serializer("start_time", "end_time")
    def serialize_time_24(self, t: time) -> str:
        """Output as 24-hour string HH:MM (e.g. 09:00, 09:45)."""
        return t.strftime("%H:%M")


class AvailableSlotResponse(ScheduleResponse):
    """Free slot as offered to a student, with the date it would next take place."""

    teacher_name: Optional[str] = None
    instruments: List[str] = Field(default_factory=list)
    next_class_date: datetime
