from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import require_roles
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import AssignPackageRequest, ModifyQuotaRequest, StudentPackageResponse
from . import service

router = APIRouter(prefix="/api/v1/student-packages", tags=["student-packages"])


@router.post(
    "",
    response_model=StudentPackageResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))],
)
async def assign_package(payload: AssignPackageRequest, db: AsyncSession = Depends(get_db)):
    try:
        return await service.assign_package(db, payload.student_id, payload.package_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/mine", response_model=List[StudentPackageResponse])
async def list_my_packages(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT)),
):
    return await service.list_student_packages(db, current_user.id, active_only=active_only)


@router.get("/mine/instruments", response_model=List[UUID])
async def list_my_instruments(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT)),
):
    """Instruments the caller can currently book lessons for."""
    return await service.student_instrument_ids(db, current_user.id)


@router.get(
    "/students/{student_id}",
    response_model=List[StudentPackageResponse],
    dependencies=[Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))],
)
async def list_student_packages(
    student_id: UUID,
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    return await service.list_student_packages(db, student_id, active_only=active_only)


@router.patch(
    "/students/{student_id}/packages/{package_id}/quota",
    response_model=StudentPackageResponse,
    dependencies=[Depends(require_roles(UserRole.MANAGER))],
)
async def modify_quota(
    student_id: UUID,
    package_id: UUID,
    payload: ModifyQuotaRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.modify_quota(db, student_id, package_id, payload.delta)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
