from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_roles
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import ClassHistoryResponse, DocumentationCreate, DocumentationResponse
from . import service

router = APIRouter(prefix="/api/v1/class-history", tags=["class-history"])


@router.get("/mine", response_model=List[ClassHistoryResponse])
async def list_my_history(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT, UserRole.TEACHER)),
):
    if current_user.role == UserRole.TEACHER:
        return await service.list_teacher_history(db, current_user.id)
    return await service.list_student_history(db, current_user.id)


@router.get(
    "",
    response_model=List[ClassHistoryResponse],
    dependencies=[Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))],
)
async def list_all_history(db: AsyncSession = Depends(get_db)):
    return await service.list_all_history(db)


@router.get("/bookings/{booking_id}", response_model=ClassHistoryResponse)
async def get_history_for_booking(
    booking_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_history_for_booking(db, booking_id, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{history_id}/documentation",
    response_model=DocumentationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_documentation(
    history_id: UUID,
    payload: DocumentationCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.TEACHER)),
):
    try:
        return await service.add_documentation(db, history_id, current_user.id, str(payload.url))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
