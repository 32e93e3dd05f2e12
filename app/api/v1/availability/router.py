from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import require_roles
from app.auth.schemas import CurrentUser
from app.core.enums import DayOfWeek, UserRole
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import AvailabilityCreate, AvailableSlotResponse, ScheduleResponse
from . import service

router = APIRouter(prefix="/api/v1/availability", tags=["availability"])


@router.post("", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
async def add_availability(
    payload: AvailabilityCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.TEACHER)),
):
    try:
        return await service.add_availability(
            db, current_user.id, payload.day_of_week, payload.start_time, payload.end_time
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/mine", response_model=List[ScheduleResponse])
async def list_my_schedules(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.TEACHER)),
):
    return await service.list_my_schedules(db, current_user.id)


@router.get("/available", response_model=List[AvailableSlotResponse])
async def list_available_slots(
    day: Optional[List[DayOfWeek]] = Query(None, description="Restrict to these weekdays"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT)),
):
    return await service.list_available_slots_for_student(db, current_user.id, days=day)


@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_availability(
    schedule_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.TEACHER)),
):
    try:
        await service.delete_availability(db, schedule_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
