"""Catalog store: instruments, package templates and the instruments each teacher teaches."""

import logging
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import TeacherProfile, User, teacher_instruments
from app.core.enums import UserRole
from app.core.exceptions import ConflictError, NotFoundError
from app.core.models import Instrument, Package, StudentPackage
from app.db.transaction import atomic

from .schemas import (
    InstrumentCreate,
    InstrumentResponse,
    PackageCreate,
    PackageResponse,
    PackageUpdate,
    TeacherInstrumentsResponse,
)

logger = logging.getLogger(__name__)


async def _instrument_in_use(db: AsyncSession, instrument_id: UUID) -> bool:
    by_package = await db.execute(select(Package.id).where(Package.instrument_id == instrument_id).limit(1))
    if by_package.scalar_one_or_none() is not None:
        return True
    by_teacher = await db.execute(
        select(teacher_instruments.c.teacher_id).where(teacher_instruments.c.instrument_id == instrument_id).limit(1)
    )
    return by_teacher.scalar_one_or_none() is not None


async def create_instrument(db: AsyncSession, payload: InstrumentCreate) -> InstrumentResponse:
    name = payload.name.strip()
    existing = await db.execute(select(Instrument.id).where(func.lower(Instrument.name) == name.lower()))
    if existing.scalar_one_or_none():
        raise ConflictError(f"Instrument '{name}' already exists")
    async with atomic(db, integrity_message=f"Instrument '{name}' already exists"):
        obj = Instrument(name=name)
        db.add(obj)
    logger.info("Instrument %s created (%s)", obj.id, name)
    return InstrumentResponse.model_validate(obj)


async def list_instruments(db: AsyncSession) -> List[InstrumentResponse]:
    result = await db.execute(select(Instrument).order_by(Instrument.name))
    return [InstrumentResponse.model_validate(i) for i in result.scalars().all()]


async def update_instrument(db: AsyncSession, instrument_id: UUID, payload: InstrumentCreate) -> InstrumentResponse:
    """Rename an instrument. Referenced instruments are immutable."""
    obj = await db.get(Instrument, instrument_id)
    if not obj:
        raise NotFoundError("Instrument not found")
    if await _instrument_in_use(db, instrument_id):
        raise ConflictError("Instrument is referenced by a package or teacher and cannot be changed")
    async with atomic(db, integrity_message=f"Instrument '{payload.name}' already exists"):
        obj.name = payload.name.strip()
    return InstrumentResponse.model_validate(obj)


async def delete_instrument(db: AsyncSession, instrument_id: UUID) -> None:
    obj = await db.get(Instrument, instrument_id)
    if not obj:
        raise NotFoundError("Instrument not found")
    if await _instrument_in_use(db, instrument_id):
        raise ConflictError("Instrument is referenced by a package or teacher and cannot be deleted")
    async with atomic(db):
        await db.delete(obj)
    logger.info("Instrument %s deleted", instrument_id)


async def create_package(db: AsyncSession, payload: PackageCreate) -> PackageResponse:
    instrument = await db.get(Instrument, payload.instrument_id)
    if not instrument:
        raise NotFoundError("Instrument not found")
    existing = await db.execute(select(Package.id).where(Package.name == payload.name))
    if existing.scalar_one_or_none():
        raise ConflictError(f"Package '{payload.name}' already exists")
    async with atomic(db, integrity_message=f"Package '{payload.name}' already exists"):
        obj = Package(
            name=payload.name,
            quota=payload.quota,
            duration=payload.duration.value,
            price=payload.price,
            description=payload.description,
            instrument_id=instrument.id,
        )
        db.add(obj)
    logger.info("Package %s created: %s lessons of %s", obj.id, obj.quota, instrument.name)
    return await get_package(db, obj.id)


async def list_packages(db: AsyncSession) -> List[PackageResponse]:
    result = await db.execute(select(Package).order_by(Package.name))
    return [PackageResponse.model_validate(p) for p in result.scalars().unique().all()]


async def get_package(db: AsyncSession, package_id: UUID) -> Optional[PackageResponse]:
    result = await db.execute(select(Package).where(Package.id == package_id))
    obj = result.scalars().unique().one_or_none()
    return PackageResponse.model_validate(obj) if obj else None


async def update_package(db: AsyncSession, package_id: UUID, payload: PackageUpdate) -> PackageResponse:
    """Edit the template. Quotas and lesson lengths already issued to students are left as they are."""
    obj = await db.get(Package, package_id)
    if not obj:
        raise NotFoundError("Package not found")
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "duration" in changes:
        changes["duration"] = int(changes["duration"])
    async with atomic(db, integrity_message="Package name already in use"):
        for field, value in changes.items():
            setattr(obj, field, value)
    return await get_package(db, package_id)


async def delete_package(db: AsyncSession, package_id: UUID) -> None:
    obj = await db.get(Package, package_id)
    if not obj:
        raise NotFoundError("Package not found")
    issued = await db.execute(select(StudentPackage.id).where(StudentPackage.package_id == package_id).limit(1))
    if issued.scalar_one_or_none() is not None:
        raise ConflictError("Package has been assigned to students and cannot be deleted")
    async with atomic(db):
        await db.delete(obj)
    logger.info("Package %s deleted", package_id)


async def set_teacher_instruments(
    db: AsyncSession,
    teacher_id: UUID,
    instrument_ids: Sequence[UUID],
) -> TeacherInstrumentsResponse:
    teacher = await db.get(User, teacher_id)
    if not teacher or teacher.role != UserRole.TEACHER:
        raise NotFoundError("Teacher not found")
    wanted = set(instrument_ids)
    instruments: List[Instrument] = []
    if wanted:
        result = await db.execute(select(Instrument).where(Instrument.id.in_(wanted)))
        instruments = list(result.scalars().all())
    missing = wanted - {i.id for i in instruments}
    if missing:
        raise NotFoundError(f"Instrument(s) not found: {', '.join(sorted(str(m) for m in missing))}")

    result = await db.execute(select(TeacherProfile).where(TeacherProfile.user_id == teacher_id))
    profile = result.scalar_one_or_none()
    async with atomic(db):
        if profile is None:
            profile = TeacherProfile(user_id=teacher_id, instruments=instruments)
            db.add(profile)
        else:
            profile.instruments = instruments
    logger.info("Teacher %s now teaches %s", teacher_id, [i.name for i in instruments])
    return TeacherInstrumentsResponse(
        teacher_id=teacher_id,
        instruments=[InstrumentResponse.model_validate(i) for i in sorted(instruments, key=lambda i: i.name)],
    )


async def teacher_instrument_ids(db: AsyncSession, teacher_id: UUID) -> List[UUID]:
    result = await db.execute(
        select(teacher_instruments.c.instrument_id).where(teacher_instruments.c.teacher_id == teacher_id)
    )
    return list(result.scalars().all())
