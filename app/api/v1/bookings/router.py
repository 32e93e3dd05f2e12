from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_roles
from app.auth.schemas import CurrentUser
from app.core.enums import BookingStatus, UserRole
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    BookingCancel,
    BookingCreate,
    BookingReschedule,
    BookingResponse,
    FinishClassRequest,
    FinishClassResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/bookings", tags=["bookings"])


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT)),
):
    try:
        return await service.create_booking(db, current_user.id, payload.schedule_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/mine", response_model=List[BookingResponse])
async def list_my_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT)),
):
    return await service.list_student_bookings(db, current_user.id, status_filter)


@router.get("/teaching", response_model=List[BookingResponse])
async def list_teaching_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.TEACHER)),
):
    return await service.list_teacher_bookings(db, current_user.id, status_filter)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_booking(db, booking_id, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    payload: Optional[BookingCancel] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT, UserRole.TEACHER, UserRole.ADMIN)),
):
    try:
        return await service.cancel_booking(
            db, booking_id, current_user, reason=payload.reason if payload else None
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{booking_id}/reschedule", response_model=BookingResponse)
async def reschedule_booking(
    booking_id: UUID,
    payload: BookingReschedule,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT)),
):
    try:
        return await service.reschedule_booking(db, booking_id, payload.schedule_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{booking_id}/finish", response_model=FinishClassResponse)
async def finish_class(
    booking_id: UUID,
    payload: FinishClassRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.TEACHER)),
):
    try:
        return await service.finish_class(
            db,
            booking_id,
            current_user.id,
            notes=payload.notes,
            documentation_urls=[str(u) for u in payload.documentation_urls],
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
