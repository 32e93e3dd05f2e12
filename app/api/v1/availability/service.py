"""Availability ledger: recurring weekly teacher slots and their booked flag.

``reserve_slot`` / ``release_slot`` are the only code paths that flip
``is_booked``. They do not commit and are called solely by the booking engine
from inside its unit of work; no router exposes them.
"""

import logging
from datetime import datetime, time
from typing import AsyncIterator, Iterable, List, Optional, Union
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User, teacher_instruments
from app.core.config import settings
from app.core.enums import DayOfWeek, UserRole
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.models import TeacherSchedule
from app.core.timeutils import minutes_between, next_class_date, parse_time_24
from app.db.transaction import atomic

from app.api.v1.student_packages import service as quota_service

from .schemas import AvailableSlotResponse, ScheduleResponse

logger = logging.getLogger(__name__)

_DAY_ORDER = case({day.value: day.weekday for day in DayOfWeek}, value=TeacherSchedule.day_of_week)


def _coerce_day(day_of_week: Union[str, DayOfWeek]) -> DayOfWeek:
    try:
        return DayOfWeek(day_of_week.strip().lower() if isinstance(day_of_week, str) else day_of_week)
    except ValueError:
        raise ValidationError(f"Invalid day_of_week '{day_of_week}'")


def _coerce_time(value: Union[str, time], field: str) -> time:
    try:
        return parse_time_24(value)
    except ValueError:
        raise ValidationError(f"{field} must be a 24-hour time such as 09:00")


def _active_slots():
    return select(TeacherSchedule).where(TeacherSchedule.deleted_at.is_(None))


async def add_availability(
    db: AsyncSession,
    teacher_id: UUID,
    day_of_week: Union[str, DayOfWeek],
    start_time: Union[str, time],
    end_time: Union[str, time],
) -> ScheduleResponse:
    day = _coerce_day(day_of_week)
    start = _coerce_time(start_time, "start_time")
    end = _coerce_time(end_time, "end_time")
    if end <= start:
        raise ValidationError("end_time must be after start_time")

    async with atomic(db):
        # Serialize slot creation per teacher so two overlapping adds cannot both pass the check.
        result = await db.execute(select(User).where(User.id == teacher_id).with_for_update(of=User))
        teacher = result.scalar_one_or_none()
        if not teacher or teacher.role != UserRole.TEACHER:
            raise NotFoundError("Teacher not found")

        overlap = await db.execute(
            _active_slots()
            .where(
                TeacherSchedule.teacher_id == teacher_id,
                TeacherSchedule.day_of_week == day,
                TeacherSchedule.start_time < end,
                TeacherSchedule.end_time > start,
            )
            .limit(1)
        )
        clash = overlap.scalars().first()
        if clash:
            raise ConflictError(
                f"Slot overlaps existing availability {clash.day_of_week.value} "
                f"{clash.start_time:%H:%M}-{clash.end_time:%H:%M}"
            )

        obj = TeacherSchedule(
            teacher_id=teacher_id,
            day_of_week=day,
            start_time=start,
            end_time=end,
            duration=minutes_between(start, end),
            is_booked=False,
        )
        db.add(obj)
    logger.info("Teacher %s added slot %s (%s %s-%s)", teacher_id, obj.id, day.value, f"{start:%H:%M}", f"{end:%H:%M}")
    return ScheduleResponse.model_validate(obj)


async def delete_availability(db: AsyncSession, schedule_id: UUID, teacher_id: UUID) -> None:
    async with atomic(db):
        result = await db.execute(
            _active_slots()
            .where(TeacherSchedule.id == schedule_id, TeacherSchedule.teacher_id == teacher_id)
            .with_for_update(of=TeacherSchedule)
        )
        obj = result.scalars().first()
        if not obj:
            raise NotFoundError("Schedule not found")
        if obj.is_booked:
            raise ConflictError("Schedule is booked; cancel the booking before deleting it")
        obj.deleted_at = datetime.utcnow()
    logger.info("Teacher %s deleted slot %s", teacher_id, schedule_id)


async def list_my_schedules(db: AsyncSession, teacher_id: UUID) -> List[ScheduleResponse]:
    result = await db.execute(
        _active_slots()
        .where(TeacherSchedule.teacher_id == teacher_id)
        .order_by(_DAY_ORDER, TeacherSchedule.start_time)
    )
    return [ScheduleResponse.model_validate(s) for s in result.scalars().unique().all()]


async def get_schedule(db: AsyncSession, schedule_id: UUID, *, lock: bool = False) -> Optional[TeacherSchedule]:
    stmt = _active_slots().where(TeacherSchedule.id == schedule_id)
    if lock:
        stmt = stmt.with_for_update(of=TeacherSchedule)
    result = await db.execute(stmt)
    return result.scalars().unique().one_or_none()


async def list_free_slots_for_instruments(
    db: AsyncSession,
    instrument_ids: Iterable[UUID],
    days: Optional[Iterable[Union[str, DayOfWeek]]] = None,
) -> AsyncIterator[TeacherSchedule]:
    """Yield free slots of teachers who teach at least one of ``instrument_ids``.

    Read-only. Slots come out ordered by weekday then start time.
    """
    instrument_ids = list(instrument_ids)
    if not instrument_ids:
        return
    teaching = select(teacher_instruments.c.teacher_id).where(teacher_instruments.c.instrument_id.in_(instrument_ids))
    stmt = _active_slots().where(
        TeacherSchedule.is_booked.is_(False),
        TeacherSchedule.teacher_id.in_(teaching),
    )
    if days is not None:
        stmt = stmt.where(TeacherSchedule.day_of_week.in_([_coerce_day(d) for d in days]))
    stmt = stmt.order_by(_DAY_ORDER, TeacherSchedule.start_time)
    result = await db.execute(stmt)
    for slot in result.scalars().unique():
        yield slot


async def list_available_slots_for_student(
    db: AsyncSession,
    student_id: UUID,
    days: Optional[Iterable[Union[str, DayOfWeek]]] = None,
    now: Optional[datetime] = None,
) -> List[AvailableSlotResponse]:
    """Free slots whose teacher teaches an instrument the student's active packages
    cover, at a lesson length one of those packages pays for."""
    now = now or datetime.utcnow()
    coverage = set(await quota_service.active_coverage(db, student_id, now))
    if not coverage:
        return []
    slots: List[AvailableSlotResponse] = []
    async for slot in list_free_slots_for_instruments(db, {i for i, _ in coverage}, days):
        taught = slot.teacher_profile.instruments if slot.teacher_profile else []
        if not any((inst.id, slot.duration) in coverage for inst in taught):
            continue
        slots.append(
            AvailableSlotResponse(
                id=slot.id,
                teacher_id=slot.teacher_id,
                day_of_week=slot.day_of_week,
                start_time=slot.start_time,
                end_time=slot.end_time,
                duration=slot.duration,
                is_booked=slot.is_booked,
                created_at=slot.created_at,
                teacher_name=slot.teacher.name if slot.teacher else None,
                instruments=sorted(inst.name for inst in taught),
                next_class_date=next_class_date(slot.day_of_week, slot.start_time, now, settings.school_timezone),
            )
        )
    return slots


async def reserve_slot(db: AsyncSession, schedule: TeacherSchedule) -> None:
    """Flip a free slot to booked. Caller owns the transaction."""
    result = await db.execute(
        update(TeacherSchedule)
        .where(
            TeacherSchedule.id == schedule.id,
            TeacherSchedule.is_booked.is_(False),
            TeacherSchedule.deleted_at.is_(None),
        )
        .values(is_booked=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("Schedule is already booked")
    await db.refresh(schedule, attribute_names=["is_booked"])


async def release_slot(db: AsyncSession, schedule: TeacherSchedule) -> None:
    """Flip a booked slot back to free. Caller owns the transaction."""
    result = await db.execute(
        update(TeacherSchedule)
        .where(TeacherSchedule.id == schedule.id, TeacherSchedule.is_booked.is_(True))
        .values(is_booked=False)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("Schedule is not booked")
    await db.refresh(schedule, attribute_names=["is_booked"])
