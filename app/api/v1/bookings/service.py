"""Booking engine.

Lifecycle of a booking: ``booked`` -> ``completed`` | ``cancelled`` | ``rescheduled``.
All three are terminal; a reschedule creates a fresh booking on the new slot.

Each transition is a single unit of work (``atomic``). The booking row is read
``FOR UPDATE`` and carries a version counter, the slot flag and quota counter
are changed with conditional UPDATEs, and a partial unique index allows only
one ``booked`` row per slot. Two requests racing for the same slot or the same
last quota unit therefore cannot both commit.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.enums import BookingStatus, UserRole
from app.core.exceptions import (
    ConflictError,
    DuplicateError,
    InvalidStateError,
    NotFoundError,
    NotSubscribedError,
    ValidationError,
)
from app.core.models import Booking, TeacherSchedule
from app.core.timeutils import next_class_date, to_naive_utc
from app.db.transaction import atomic

from app.api.v1.availability import service as availability_service
from app.api.v1.catalog import service as catalog_service
from app.api.v1.class_history import service as history_service
from app.api.v1.class_history.schemas import ClassHistoryResponse
from app.api.v1.student_packages import service as quota_service

from .schemas import BookingResponse, FinishClassResponse

logger = logging.getLogger(__name__)


def _to_response(b: Booking) -> BookingResponse:
    return BookingResponse(
        id=b.id,
        student_id=b.student_id,
        schedule_id=b.schedule_id,
        student_package_id=b.student_package_id,
        teacher_id=b.schedule.teacher_id,
        day_of_week=b.schedule.day_of_week,
        start_time=b.schedule.start_time,
        end_time=b.schedule.end_time,
        class_date=b.class_date,
        status=b.status,
        booked_at=b.booked_at,
        completed_at=b.completed_at,
        cancelled_at=b.cancelled_at,
        rescheduled_at=b.rescheduled_at,
        cancelled_by=b.cancelled_by,
        rescheduled_to_id=b.rescheduled_to_id,
        notes=b.notes,
    )


async def _lock_booking(db: AsyncSession, booking_id: UUID) -> Booking:
    result = await db.execute(select(Booking).where(Booking.id == booking_id).with_for_update(of=Booking))
    booking = result.scalars().unique().one_or_none()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def _require_booked(booking: Booking) -> None:
    if booking.status.is_terminal:
        raise InvalidStateError(f"Booking is {booking.status.value}, expected booked")


def _require_notice(booking: Booking, now: datetime) -> None:
    notice = timedelta(hours=settings.cancellation_notice_hours)
    if to_naive_utc(booking.class_date) - to_naive_utc(now) < notice:
        raise ValidationError(
            f"Changes are only allowed at least {settings.cancellation_notice_hours} hours before the class"
        )


async def _lock_free_slot(db: AsyncSession, schedule_id: UUID) -> TeacherSchedule:
    schedule = await availability_service.get_schedule(db, schedule_id, lock=True)
    if not schedule:
        raise NotFoundError("Schedule not found")
    if schedule.is_booked:
        raise ConflictError("Schedule is already booked")
    return schedule


async def _ensure_no_clash(
    db: AsyncSession,
    student_id: UUID,
    schedule: TeacherSchedule,
    ignore_booking_id: Optional[UUID] = None,
) -> None:
    """A student cannot hold two lessons at the same weekday and start time."""
    stmt = (
        select(Booking.id)
        .join(TeacherSchedule, TeacherSchedule.id == Booking.schedule_id)
        .where(
            Booking.student_id == student_id,
            Booking.status == BookingStatus.BOOKED,
            TeacherSchedule.day_of_week == schedule.day_of_week,
            TeacherSchedule.start_time == schedule.start_time,
        )
    )
    if ignore_booking_id is not None:
        stmt = stmt.where(Booking.id != ignore_booking_id)
    result = await db.execute(stmt.limit(1))
    if result.scalar_one_or_none():
        raise ConflictError(
            f"You already have a class on {schedule.day_of_week.value} at {schedule.start_time:%H:%M}"
        )


async def create_booking(
    db: AsyncSession,
    student_id: UUID,
    schedule_id: UUID,
    now: Optional[datetime] = None,
) -> BookingResponse:
    """Reserve a slot for a student and pay for it with one quota unit."""
    now = now or datetime.utcnow()
    async with atomic(db, integrity_message="Schedule is already booked"):
        schedule = await _lock_free_slot(db, schedule_id)
        taught = await catalog_service.teacher_instrument_ids(db, schedule.teacher_id)
        if not taught:
            raise NotSubscribedError("This teacher has no instruments your packages cover")
        entry = await quota_service.find_active_entry(
            db,
            student_id,
            instrument_ids=taught,
            duration=schedule.duration,
            now=now,
            lock=True,
        )
        await _ensure_no_clash(db, student_id, schedule)

        await availability_service.reserve_slot(db, schedule)
        await quota_service.consume_entry(db, entry)
        booking = Booking(
            student_id=student_id,
            schedule=schedule,
            student_package=entry,
            class_date=next_class_date(schedule.day_of_week, schedule.start_time, now, settings.school_timezone),
            status=BookingStatus.BOOKED,
            booked_at=now,
        )
        db.add(booking)
    logger.info(
        "Booking %s created: student %s, slot %s, entry %s (%s left)",
        booking.id, student_id, schedule_id, entry.id, entry.remaining_quota,
    )
    return _to_response(booking)


async def cancel_booking(
    db: AsyncSession,
    booking_id: UUID,
    actor: CurrentUser,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> BookingResponse:
    """Cancel a booked lesson, free the slot and give the quota unit back.

    Allowed for the slot's teacher and admins at any time, and for the
    booking's student when the class is at least the configured notice away.
    """
    now = now or datetime.utcnow()
    async with atomic(db):
        booking = await _lock_booking(db, booking_id)
        is_teacher = actor.role == UserRole.TEACHER and booking.schedule.teacher_id == actor.id
        is_student = actor.role == UserRole.STUDENT and booking.student_id == actor.id
        if not (actor.is_admin or is_teacher or is_student):
            raise NotFoundError("Booking not found")
        _require_booked(booking)
        if is_student:
            _require_notice(booking, now)

        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = now
        booking.cancelled_by = actor.id
        if reason:
            booking.notes = reason
        await availability_service.release_slot(db, booking.schedule)
        await quota_service.restore_entry(db, booking.student_package)
    logger.info("Booking %s cancelled by %s %s", booking_id, actor.role.value, actor.id)
    return _to_response(booking)


async def finish_class(
    db: AsyncSession,
    booking_id: UUID,
    teacher_id: UUID,
    notes: Optional[str] = None,
    documentation_urls: Optional[Iterable[str]] = None,
    now: Optional[datetime] = None,
) -> FinishClassResponse:
    """Complete a booked lesson: free the weekly slot again and archive the class."""
    now = now or datetime.utcnow()
    async with atomic(
        db,
        integrity_error=DuplicateError,
        integrity_message="Class history already recorded for this booking",
    ):
        result = await db.execute(
            select(Booking)
            .join(TeacherSchedule, TeacherSchedule.id == Booking.schedule_id)
            .where(Booking.id == booking_id, TeacherSchedule.teacher_id == teacher_id)
            .with_for_update(of=Booking)
        )
        booking = result.scalars().unique().one_or_none()
        if not booking:
            raise NotFoundError("Booking not found")
        _require_booked(booking)

        booking.status = BookingStatus.COMPLETED
        booking.completed_at = now
        if notes:
            booking.notes = notes
        await availability_service.release_slot(db, booking.schedule)
        history = await history_service.record_completion(db, booking, notes, documentation_urls)
    logger.info("Booking %s finished by teacher %s", booking_id, teacher_id)
    return FinishClassResponse(
        booking=_to_response(booking),
        history=ClassHistoryResponse.model_validate(history),
    )


async def reschedule_booking(
    db: AsyncSession,
    booking_id: UUID,
    new_schedule_id: UUID,
    student_id: UUID,
    now: Optional[datetime] = None,
) -> BookingResponse:
    """Move a booked lesson to another free slot.

    The old booking ends as ``rescheduled`` and points at a new ``booked``
    booking paid from the same student package; no extra quota is consumed.
    """
    now = now or datetime.utcnow()
    async with atomic(db, integrity_message="Schedule is already booked"):
        old = await _lock_booking(db, booking_id)
        if old.student_id != student_id:
            raise NotFoundError("Booking not found")
        _require_booked(old)
        _require_notice(old, now)
        if new_schedule_id == old.schedule_id:
            raise ValidationError("Booking is already on this schedule")

        schedule = await _lock_free_slot(db, new_schedule_id)
        entry = old.student_package
        taught = await catalog_service.teacher_instrument_ids(db, schedule.teacher_id)
        if entry.package.instrument_id not in taught or entry.duration != schedule.duration:
            raise NotSubscribedError("The package of this booking does not cover the new schedule")
        await _ensure_no_clash(db, student_id, schedule, ignore_booking_id=old.id)

        old.status = BookingStatus.RESCHEDULED
        old.rescheduled_at = now
        await availability_service.release_slot(db, old.schedule)
        await availability_service.reserve_slot(db, schedule)
        new = Booking(
            id=uuid.uuid4(),
            student_id=student_id,
            schedule=schedule,
            student_package=old.student_package,
            class_date=next_class_date(schedule.day_of_week, schedule.start_time, now, settings.school_timezone),
            status=BookingStatus.BOOKED,
            booked_at=now,
        )
        db.add(new)
        await db.flush()
        old.rescheduled_to_id = new.id
    logger.info("Booking %s rescheduled to %s on slot %s", booking_id, new.id, new_schedule_id)
    return _to_response(new)


async def get_booking(db: AsyncSession, booking_id: UUID, actor: CurrentUser) -> BookingResponse:
    result = await db.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalars().unique().one_or_none()
    if booking and (
        actor.role in (UserRole.ADMIN, UserRole.MANAGER)
        or booking.student_id == actor.id
        or booking.schedule.teacher_id == actor.id
    ):
        return _to_response(booking)
    raise NotFoundError("Booking not found")


async def list_student_bookings(
    db: AsyncSession,
    student_id: UUID,
    status: Optional[BookingStatus] = None,
) -> List[BookingResponse]:
    stmt = select(Booking).where(Booking.student_id == student_id)
    if status is not None:
        stmt = stmt.where(Booking.status == status)
    result = await db.execute(stmt.order_by(Booking.class_date, Booking.booked_at.desc()))
    return [_to_response(b) for b in result.scalars().unique().all()]


async def list_teacher_bookings(
    db: AsyncSession,
    teacher_id: UUID,
    status: Optional[BookingStatus] = None,
) -> List[BookingResponse]:
    stmt = (
        select(Booking)
        .join(TeacherSchedule, TeacherSchedule.id == Booking.schedule_id)
        .where(TeacherSchedule.teacher_id == teacher_id)
    )
    if status is not None:
        stmt = stmt.where(Booking.status == status)
    result = await db.execute(stmt.order_by(Booking.class_date, Booking.booked_at.desc()))
    return [_to_response(b) for b in result.scalars().unique().all()]
