from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_roles
from app.core.enums import UserRole
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    InstrumentCreate,
    InstrumentResponse,
    PackageCreate,
    PackageResponse,
    PackageUpdate,
    TeacherInstrumentsResponse,
    TeacherInstrumentsUpdate,
)
from . import service

router = APIRouter(prefix="/api/v1", tags=["catalog"])

admin_only = [Depends(require_roles(UserRole.ADMIN))]


@router.post(
    "/instruments",
    response_model=InstrumentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=admin_only,
)
async def create_instrument(payload: InstrumentCreate, db: AsyncSession = Depends(get_db)):
    try:
        return await service.create_instrument(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/instruments",
    response_model=List[InstrumentResponse],
    dependencies=[Depends(get_current_user)],
)
async def list_instruments(db: AsyncSession = Depends(get_db)):
    return await service.list_instruments(db)


@router.put("/instruments/{instrument_id}", response_model=InstrumentResponse, dependencies=admin_only)
async def update_instrument(instrument_id: UUID, payload: InstrumentCreate, db: AsyncSession = Depends(get_db)):
    try:
        return await service.update_instrument(db, instrument_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/instruments/{instrument_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=admin_only)
async def delete_instrument(instrument_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        await service.delete_instrument(db, instrument_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/packages",
    response_model=PackageResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=admin_only,
)
async def create_package(payload: PackageCreate, db: AsyncSession = Depends(get_db)):
    try:
        return await service.create_package(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/packages", response_model=List[PackageResponse])
async def list_packages(db: AsyncSession = Depends(get_db)):
    # Public: prospective students browse packages before subscribing
    return await service.list_packages(db)


@router.get("/packages/{package_id}", response_model=PackageResponse)
async def get_package(package_id: UUID, db: AsyncSession = Depends(get_db)):
    obj = await service.get_package(db, package_id)
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Package not found")
    return obj


@router.put("/packages/{package_id}", response_model=PackageResponse, dependencies=admin_only)
async def update_package(package_id: UUID, payload: PackageUpdate, db: AsyncSession = Depends(get_db)):
    try:
        return await service.update_package(db, package_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/packages/{package_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=admin_only)
async def delete_package(package_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        await service.delete_package(db, package_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put(
    "/teachers/{teacher_id}/instruments",
    response_model=TeacherInstrumentsResponse,
    dependencies=admin_only,
)
async def set_teacher_instruments(
    teacher_id: UUID,
    payload: TeacherInstrumentsUpdate,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.set_teacher_instruments(db, teacher_id, payload.instrument_ids)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
