"""Quota ledger: the packages each student holds and how many lessons remain on them.

``consume_entry`` and ``restore_entry`` run inside the caller's unit of work and
never commit; the booking engine pairs them with slot reservation in one
transaction. Top-level operations (assign, consume, restore, modify) commit
through ``atomic``.

An entry keeps the quota and lesson duration it was issued with, so editing a
package template only affects subscriptions assigned afterwards.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.core.config import settings
from app.core.enums import UserRole
from app.core.exceptions import ConflictError, NotFoundError, NotSubscribedError, QuotaExhaustedError
from app.core.models import Package, StudentPackage
from app.core.timeutils import add_months
from app.db.transaction import atomic

from .schemas import StudentPackageResponse

logger = logging.getLogger(__name__)


def _to_response(sp: StudentPackage, now: Optional[datetime] = None) -> StudentPackageResponse:
    now = now or datetime.utcnow()
    return StudentPackageResponse(
        id=sp.id,
        student_id=sp.student_id,
        package_id=sp.package_id,
        package_name=sp.package.name,
        instrument_id=sp.package.instrument_id,
        instrument_name=sp.package.instrument.name,
        quota=sp.quota,
        duration=sp.duration,
        remaining_quota=sp.remaining_quota,
        start_date=sp.start_date,
        end_date=sp.end_date,
        is_active=sp.is_active(now),
    )


async def _get_student(db: AsyncSession, student_id: UUID, lock: bool = False) -> User:
    if lock:
        # Serializes ledger writes per student.
        result = await db.execute(select(User).where(User.id == student_id).with_for_update(of=User))
        student = result.scalar_one_or_none()
    else:
        student = await db.get(User, student_id)
    if not student or student.role != UserRole.STUDENT:
        raise NotFoundError("Student not found")
    return student


async def assign_package(
    db: AsyncSession,
    student_id: UUID,
    package_id: UUID,
    now: Optional[datetime] = None,
) -> StudentPackageResponse:
    """Subscribe a student to a package with the full quota for one validity window."""
    now = now or datetime.utcnow()
    async with atomic(db):
        await _get_student(db, student_id, lock=True)
        package = await db.get(Package, package_id)
        if not package:
            raise NotFoundError("Package not found")

        existing = await db.execute(
            select(StudentPackage.id).where(
                StudentPackage.student_id == student_id,
                StudentPackage.package_id == package_id,
                StudentPackage.end_date >= now,
                StudentPackage.remaining_quota > 0,
            ).limit(1)
        )
        if existing.scalar_one_or_none():
            raise ConflictError("Student already holds an active subscription to this package")

        entry = StudentPackage(
            student_id=student_id,
            package=package,
            quota=package.quota,
            duration=package.duration,
            remaining_quota=package.quota,
            start_date=now,
            end_date=add_months(now, settings.package_validity_months),
        )
        db.add(entry)
    logger.info(
        "Package %s assigned to student %s (entry %s, quota %s, until %s)",
        package.id, student_id, entry.id, entry.quota, entry.end_date.isoformat(),
    )
    return _to_response(entry, now)


async def find_active_entry(
    db: AsyncSession,
    student_id: UUID,
    *,
    package_id: Optional[UUID] = None,
    instrument_ids: Optional[Iterable[UUID]] = None,
    duration: Optional[int] = None,
    now: Optional[datetime] = None,
    lock: bool = False,
) -> StudentPackage:
    """Pick the entry a lesson is paid from: unexpired, quota left, expiring soonest.

    Raises NotSubscribedError when no unexpired entry matches at all and
    QuotaExhaustedError when matching entries exist but none has quota left.
    """
    now = now or datetime.utcnow()
    stmt = (
        select(StudentPackage)
        .join(Package, Package.id == StudentPackage.package_id)
        .where(StudentPackage.student_id == student_id, StudentPackage.end_date >= now)
        .order_by(StudentPackage.end_date, StudentPackage.start_date)
    )
    if package_id is not None:
        stmt = stmt.where(StudentPackage.package_id == package_id)
    if instrument_ids is not None:
        stmt = stmt.where(Package.instrument_id.in_(list(instrument_ids)))
    if duration is not None:
        stmt = stmt.where(StudentPackage.duration == duration)
    if lock:
        stmt = stmt.with_for_update(of=StudentPackage)

    result = await db.execute(stmt)
    entries = result.scalars().unique().all()
    if not entries:
        raise NotSubscribedError("No active package covers this lesson")
    for entry in entries:
        if entry.remaining_quota > 0:
            return entry
    raise QuotaExhaustedError("Package quota is used up")


async def consume_entry(db: AsyncSession, entry: StudentPackage) -> None:
    """Take one lesson off ``entry``. Caller owns the transaction."""
    result = await db.execute(
        update(StudentPackage)
        .where(StudentPackage.id == entry.id, StudentPackage.remaining_quota > 0)
        .values(remaining_quota=StudentPackage.remaining_quota - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise QuotaExhaustedError("Package quota is used up")
    await db.refresh(entry, attribute_names=["remaining_quota"])
    logger.info("Quota consumed on entry %s (%s left)", entry.id, entry.remaining_quota)


async def restore_entry(db: AsyncSession, entry: StudentPackage) -> bool:
    """Give one lesson back to ``entry``, never above the quota it was issued with.

    Returns False when the entry was already at its ceiling. Caller owns the
    transaction and must call this at most once per cancelled booking.
    """
    result = await db.execute(
        update(StudentPackage)
        .where(StudentPackage.id == entry.id, StudentPackage.remaining_quota < entry.quota)
        .values(remaining_quota=StudentPackage.remaining_quota + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Quota restore on entry %s skipped: already at issued quota", entry.id)
        return False
    await db.refresh(entry, attribute_names=["remaining_quota"])
    logger.info("Quota restored on entry %s (%s left)", entry.id, entry.remaining_quota)
    return True


async def consume(
    db: AsyncSession,
    student_id: UUID,
    package_id: UUID,
    now: Optional[datetime] = None,
) -> StudentPackage:
    async with atomic(db):
        entry = await find_active_entry(db, student_id, package_id=package_id, now=now, lock=True)
        await consume_entry(db, entry)
    return entry


async def restore(db: AsyncSession, student_id: UUID, package_id: UUID) -> StudentPackage:
    """Restore one unit on the newest entry of this package that is below its quota."""
    async with atomic(db):
        result = await db.execute(
            select(StudentPackage)
            .where(StudentPackage.student_id == student_id, StudentPackage.package_id == package_id)
            .order_by(StudentPackage.end_date.desc())
            .with_for_update(of=StudentPackage)
        )
        entries = result.scalars().unique().all()
        if not entries:
            raise NotSubscribedError("Student is not subscribed to this package")
        target = next((e for e in entries if e.remaining_quota < e.quota), None)
        if target is not None:
            await restore_entry(db, target)
    return target or entries[0]


async def modify_quota(
    db: AsyncSession,
    student_id: UUID,
    package_id: UUID,
    delta: int,
    now: Optional[datetime] = None,
) -> StudentPackageResponse:
    """Manual correction by a manager: add ``delta`` clamped to [0, issued quota].

    Every unexpired entry of the package is considered; the one expiring last
    is corrected.
    """
    now = now or datetime.utcnow()
    async with atomic(db):
        await _get_student(db, student_id)
        result = await db.execute(
            select(StudentPackage)
            .where(
                StudentPackage.student_id == student_id,
                StudentPackage.package_id == package_id,
                StudentPackage.end_date >= now,
            )
            .order_by(StudentPackage.end_date.desc())
            .with_for_update(of=StudentPackage)
        )
        entry = result.scalars().unique().first()
        if entry is None:
            raise NotSubscribedError("Active package not found for this student")
        before = entry.remaining_quota
        entry.remaining_quota = max(0, min(entry.quota, before + delta))

    if entry.remaining_quota != before:
        logger.info(
            "Quota of entry %s modified by %+d: %s -> %s", entry.id, delta, before, entry.remaining_quota
        )
    return _to_response(entry, now)


async def list_student_packages(
    db: AsyncSession,
    student_id: UUID,
    active_only: bool = False,
    now: Optional[datetime] = None,
) -> List[StudentPackageResponse]:
    now = now or datetime.utcnow()
    stmt = select(StudentPackage).where(StudentPackage.student_id == student_id)
    if active_only:
        stmt = stmt.where(StudentPackage.end_date >= now, StudentPackage.remaining_quota > 0)
    stmt = stmt.order_by(StudentPackage.end_date)
    result = await db.execute(stmt)
    return [_to_response(sp, now) for sp in result.scalars().unique().all()]


async def active_coverage(
    db: AsyncSession,
    student_id: UUID,
    now: Optional[datetime] = None,
) -> List[tuple]:
    """(instrument_id, lesson duration) pairs the student's active packages pay for."""
    now = now or datetime.utcnow()
    result = await db.execute(
        select(Package.instrument_id, StudentPackage.duration)
        .join(StudentPackage, StudentPackage.package_id == Package.id)
        .where(
            StudentPackage.student_id == student_id,
            StudentPackage.end_date >= now,
            StudentPackage.remaining_quota > 0,
        )
        .distinct()
    )
    return [tuple(row) for row in result.all()]


async def student_instrument_ids(
    db: AsyncSession,
    student_id: UUID,
    now: Optional[datetime] = None,
) -> List[UUID]:
    return sorted({instrument_id for instrument_id, _ in await active_coverage(db, student_id, now)}, key=str)
