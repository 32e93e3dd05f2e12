import asyncio
from datetime import datetime, time, timedelta
from types import SimpleNamespace

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.availability import service as availability_service
from app.api.v1.bookings import service as booking_service
from app.api.v1.catalog import service as catalog_service
from app.api.v1.catalog.schemas import PackageUpdate
from app.api.v1.class_history import service as history_service
from app.api.v1.student_packages import service as quota_service
from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.enums import BookingStatus, DayOfWeek, LessonDuration, UserRole
from app.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    NotSubscribedError,
    QuotaExhaustedError,
    ValidationError,
)
from app.core.models import Booking, ClassHistory, Instrument, TeacherSchedule
from app.db.transaction import atomic

from conftest import NOW, auth_headers, make_instrument, make_package, teach


@pytest.fixture()
async def lesson(db_session: AsyncSession, make_user, piano_teacher, student, piano):
    """A piano teacher with a free Wednesday hour and a student holding four hour-long lessons."""
    package = await make_package(db_session, piano, quota=4, duration=60)
    entry = await quota_service.assign_package(db_session, student.id, package.id, now=NOW)
    slot = await availability_service.add_availability(db_session, piano_teacher.id, "rabu", "10:00", "11:00")
    return SimpleNamespace(
        teacher=CurrentUser(id=piano_teacher.id, role=UserRole.TEACHER),
        student=CurrentUser(id=student.id, role=UserRole.STUDENT),
        teacher_id=piano_teacher.id,
        student_id=student.id,
        piano_id=piano.id,
        package_id=package.id,
        entry_id=entry.id,
        slot_id=slot.id,
        make_user=make_user,
    )


async def remaining(db: AsyncSession, student_id) -> int:
    (entry,) = await quota_service.list_student_packages(db, student_id)
    return entry.remaining_quota


async def slot_is_booked(db: AsyncSession, slot_id) -> bool:
    return (await db.execute(select(TeacherSchedule.is_booked).where(TeacherSchedule.id == slot_id))).scalar_one()


async def new_student(db: AsyncSession, lesson, now=NOW) -> CurrentUser:
    user = await lesson.make_user(UserRole.STUDENT)
    await quota_service.assign_package(db, user.id, lesson.package_id, now=now)
    return CurrentUser(id=user.id, role=UserRole.STUDENT)


@pytest.mark.asyncio
async def test_create_booking(db_session: AsyncSession, lesson) -> None:
    booking = await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)

    assert booking.status == BookingStatus.BOOKED
    assert booking.teacher_id == lesson.teacher_id
    assert booking.student_package_id == lesson.entry_id
    assert booking.day_of_week == DayOfWeek.RABU
    assert booking.class_date == datetime(2026, 10, 21, 10, 0)
    assert booking.booked_at == NOW
    assert await remaining(db_session, lesson.student_id) == 3
    assert await slot_is_booked(db_session, lesson.slot_id) is True


@pytest.mark.asyncio
async def test_slot_cannot_be_booked_twice(db_session: AsyncSession, lesson) -> None:
    other = await new_student(db_session, lesson)
    await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)

    with pytest.raises(ConflictError):
        await booking_service.create_booking(db_session, other.id, lesson.slot_id, now=NOW)
    assert await remaining(db_session, other.id) == 4


@pytest.mark.asyncio
async def test_unknown_or_deleted_slot(db_session: AsyncSession, lesson) -> None:
    await availability_service.delete_availability(db_session, lesson.slot_id, lesson.teacher_id)
    with pytest.raises(NotFoundError):
        await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)


@pytest.mark.asyncio
async def test_cancel_frees_slot_and_restores_quota(db_session: AsyncSession, lesson) -> None:
    booking = await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)

    cancelled = await booking_service.cancel_booking(db_session, booking.id, lesson.student, reason="sick", now=NOW)
    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.cancelled_by == lesson.student_id
    assert cancelled.cancelled_at == NOW
    assert cancelled.notes == "sick"
    assert await remaining(db_session, lesson.student_id) == 4
    assert await slot_is_booked(db_session, lesson.slot_id) is False

    other = await new_student(db_session, lesson)
    rebooked = await booking_service.create_booking(db_session, other.id, lesson.slot_id, now=NOW)
    assert rebooked.status == BookingStatus.BOOKED


@pytest.mark.asyncio
async def test_cancel_twice_is_invalid(db_session: AsyncSession, lesson) -> None:
    booking = await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)
    await booking_service.cancel_booking(db_session, booking.id, lesson.teacher, now=NOW)

    with pytest.raises(InvalidStateError):
        await booking_service.cancel_booking(db_session, booking.id, lesson.teacher, now=NOW)
    assert await remaining(db_session, lesson.student_id) == 4


@pytest.mark.asyncio
async def test_cancel_by_stranger_is_not_found(db_session: AsyncSession, lesson) -> None:
    booking = await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)
    stranger = await new_student(db_session, lesson)
    with pytest.raises(NotFoundError):
        await booking_service.cancel_booking(db_session, booking.id, stranger, now=NOW)


@pytest.mark.asyncio
async def test_student_cancel_needs_notice(db_session: AsyncSession, lesson) -> None:
    # Monday 10:00 is two hours after NOW.
    soon = await availability_service.add_availability(db_session, lesson.teacher_id, "senin", "10:00", "11:00")
    booking = await booking_service.create_booking(db_session, lesson.student_id, soon.id, now=NOW)
    assert booking.class_date == NOW + timedelta(hours=2)

    with pytest.raises(ValidationError):
        await booking_service.cancel_booking(db_session, booking.id, lesson.student, now=NOW)

    # The teacher may still call it off.
    cancelled = await booking_service.cancel_booking(db_session, booking.id, lesson.teacher, now=NOW)
    assert cancelled.cancelled_by == lesson.teacher_id
    assert await remaining(db_session, lesson.student_id) == 4


@pytest.mark.asyncio
async def test_restore_never_exceeds_package_quota(db_session: AsyncSession, lesson) -> None:
    booking = await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)
    await quota_service.modify_quota(db_session, lesson.student_id, lesson.package_id, 1, now=NOW)
    assert await remaining(db_session, lesson.student_id) == 4

    await booking_service.cancel_booking(db_session, booking.id, lesson.teacher, now=NOW)
    assert await remaining(db_session, lesson.student_id) == 4


@pytest.mark.asyncio
async def test_finish_class_records_history_once(db_session: AsyncSession, lesson) -> None:
    booking = await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)

    result = await booking_service.finish_class(
        db_session,
        booking.id,
        lesson.teacher_id,
        notes="Scales in C major",
        documentation_urls=["https://example.com/rec/1"],
        now=NOW + timedelta(days=2, hours=3),
    )
    assert result.booking.status == BookingStatus.COMPLETED
    assert result.booking.completed_at == NOW + timedelta(days=2, hours=3)
    assert result.history.booking_id == booking.id
    assert result.history.instrument_id == lesson.piano_id
    assert result.history.date == datetime(2026, 10, 21).date()
    assert result.history.start_time == time(10, 0)
    assert [d.url for d in result.history.documentations] == ["https://example.com/rec/1"]
    assert await slot_is_booked(db_session, lesson.slot_id) is False
    assert await remaining(db_session, lesson.student_id) == 3

    with pytest.raises(InvalidStateError):
        await booking_service.finish_class(db_session, booking.id, lesson.teacher_id, now=NOW)
    count = await db_session.execute(select(func.count()).select_from(ClassHistory))
    assert count.scalar_one() == 1
    stored = await history_service.get_history_for_booking(db_session, booking.id)
    assert stored.notes == "Scales in C major"


@pytest.mark.asyncio
async def test_only_the_slot_teacher_can_finish(db_session: AsyncSession, lesson) -> None:
    booking = await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)
    other = await lesson.make_user(UserRole.TEACHER)
    with pytest.raises(NotFoundError):
        await booking_service.finish_class(db_session, booking.id, other.id, now=NOW)


@pytest.mark.asyncio
async def test_last_lesson_cannot_be_spent_twice(db_session: AsyncSession, make_user, piano_teacher, piano) -> None:
    student = await make_user(UserRole.STUDENT)
    student_id = student.id
    package = await make_package(db_session, piano, name="Piano trial", quota=1)
    await quota_service.assign_package(db_session, student_id, package.id, now=NOW)
    first = await availability_service.add_availability(db_session, piano_teacher.id, "selasa", "10:00", "11:00")
    second = await availability_service.add_availability(db_session, piano_teacher.id, "kamis", "10:00", "11:00")

    await booking_service.create_booking(db_session, student_id, first.id, now=NOW)
    with pytest.raises(QuotaExhaustedError):
        await booking_service.create_booking(db_session, student_id, second.id, now=NOW)

    assert await remaining(db_session, student_id) == 0
    assert await slot_is_booked(db_session, second.id) is False


@pytest.mark.asyncio
async def test_student_cannot_double_book_a_time(db_session: AsyncSession, lesson) -> None:
    other_teacher = await lesson.make_user(UserRole.TEACHER)
    other_teacher_id = other_teacher.id
    piano = await db_session.get(Instrument, lesson.piano_id)
    await teach(db_session, other_teacher, piano)
    same_time = await availability_service.add_availability(db_session, other_teacher_id, "rabu", "10:00", "11:00")

    await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)
    with pytest.raises(ConflictError):
        await booking_service.create_booking(db_session, lesson.student_id, same_time.id, now=NOW)
    assert await remaining(db_session, lesson.student_id) == 3


@pytest.mark.asyncio
async def test_package_must_cover_teacher_and_length(db_session: AsyncSession, lesson) -> None:
    violin = await make_instrument(db_session, "violin")
    fiddler = await lesson.make_user(UserRole.TEACHER)
    fiddler_id = fiddler.id
    await teach(db_session, fiddler, violin)
    violin_slot = await availability_service.add_availability(db_session, fiddler_id, "jumat", "10:00", "11:00")
    short_slot = await availability_service.add_availability(db_session, lesson.teacher_id, "jumat", "13:00", "13:30")

    with pytest.raises(NotSubscribedError):
        await booking_service.create_booking(db_session, lesson.student_id, violin_slot.id, now=NOW)
    with pytest.raises(NotSubscribedError):
        await booking_service.create_booking(db_session, lesson.student_id, short_slot.id, now=NOW)
    assert await remaining(db_session, lesson.student_id) == 4


@pytest.mark.asyncio
async def test_reschedule_moves_the_lesson(db_session: AsyncSession, lesson) -> None:
    booking = await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)
    target = await availability_service.add_availability(db_session, lesson.teacher_id, "sabtu", "09:00", "10:00")

    moved = await booking_service.reschedule_booking(db_session, booking.id, target.id, lesson.student_id, now=NOW)
    assert moved.id != booking.id
    assert moved.status == BookingStatus.BOOKED
    assert moved.schedule_id == target.id
    assert moved.student_package_id == lesson.entry_id
    assert moved.class_date == datetime(2026, 10, 24, 9, 0)

    old = await booking_service.get_booking(db_session, booking.id, lesson.student)
    assert old.status == BookingStatus.RESCHEDULED
    assert old.rescheduled_at == NOW
    assert old.rescheduled_to_id == moved.id
    assert await slot_is_booked(db_session, lesson.slot_id) is False
    assert await slot_is_booked(db_session, target.id) is True
    assert await remaining(db_session, lesson.student_id) == 3

    with pytest.raises(InvalidStateError):
        await booking_service.cancel_booking(db_session, booking.id, lesson.student, now=NOW)


@pytest.mark.asyncio
async def test_reschedule_to_another_teacher_at_the_same_time(db_session: AsyncSession, lesson) -> None:
    substitute = await lesson.make_user(UserRole.TEACHER)
    substitute_id = substitute.id
    await teach(db_session, substitute, await db_session.get(Instrument, lesson.piano_id))
    same_time = await availability_service.add_availability(db_session, substitute_id, "rabu", "10:00", "11:00")
    booking = await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)

    moved = await booking_service.reschedule_booking(db_session, booking.id, same_time.id, lesson.student_id, now=NOW)
    assert moved.teacher_id == substitute_id
    assert moved.class_date == booking.class_date


@pytest.mark.asyncio
async def test_reschedule_onto_taken_or_same_slot(db_session: AsyncSession, lesson) -> None:
    booking = await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)
    taken = await availability_service.add_availability(db_session, lesson.teacher_id, "sabtu", "09:00", "10:00")
    other = await new_student(db_session, lesson)
    await booking_service.create_booking(db_session, other.id, taken.id, now=NOW)

    with pytest.raises(ValidationError):
        await booking_service.reschedule_booking(db_session, booking.id, lesson.slot_id, lesson.student_id, now=NOW)
    with pytest.raises(ConflictError):
        await booking_service.reschedule_booking(db_session, booking.id, taken.id, lesson.student_id, now=NOW)

    still = await booking_service.get_booking(db_session, booking.id, lesson.student)
    assert still.status == BookingStatus.BOOKED
    assert await remaining(db_session, lesson.student_id) == 3


@pytest.mark.asyncio
async def test_stale_slot_reservation_conflicts(db_session: AsyncSession, lesson) -> None:
    schedule = await availability_service.get_schedule(db_session, lesson.slot_id)
    assert schedule.is_booked is False

    # A concurrent booking flips the flag after our read.
    await db_session.execute(
        update(TeacherSchedule)
        .where(TeacherSchedule.id == lesson.slot_id)
        .values(is_booked=True)
        .execution_options(synchronize_session=False)
    )
    with pytest.raises(ConflictError):
        await availability_service.reserve_slot(db_session, schedule)


@pytest.mark.asyncio
async def test_one_active_booking_per_slot_in_storage(db_session: AsyncSession, lesson) -> None:
    booking = await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)

    with pytest.raises(ConflictError):
        async with atomic(db_session, integrity_message="Schedule is already booked"):
            db_session.add(
                Booking(
                    student_id=lesson.student_id,
                    schedule_id=lesson.slot_id,
                    student_package_id=lesson.entry_id,
                    class_date=booking.class_date,
                    status=BookingStatus.BOOKED,
                )
            )


@pytest.mark.asyncio
async def test_lost_version_race_is_invalid_state(db_session: AsyncSession, lesson) -> None:
    created = await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)
    booking = await db_session.get(Booking, created.id)

    await db_session.execute(
        update(Booking)
        .where(Booking.id == created.id)
        .values(version_id=Booking.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    with pytest.raises(InvalidStateError):
        async with atomic(db_session):
            booking.notes = "late edit"


@pytest.mark.asyncio
async def test_booking_flow_over_http(client: AsyncClient, db_session: AsyncSession, lesson) -> None:
    student = await new_student(db_session, lesson, now=None)
    student_headers = auth_headers(student)
    teacher_headers = auth_headers(lesson.teacher)

    response = await client.post("/api/v1/bookings", json={"schedule_id": str(lesson.slot_id)}, headers=student_headers)
    assert response.status_code == 201
    booking = response.json()
    assert booking["start_time"] == "10:00"

    response = await client.post("/api/v1/bookings", json={"schedule_id": str(lesson.slot_id)}, headers=student_headers)
    assert response.status_code == 409

    response = await client.get("/api/v1/bookings/mine", headers=student_headers)
    assert [b["id"] for b in response.json()] == [booking["id"]]

    response = await client.get("/api/v1/bookings/teaching", params={"status": "booked"}, headers=teacher_headers)
    assert [b["id"] for b in response.json()] == [booking["id"]]

    response = await client.post(
        f"/api/v1/bookings/{booking['id']}/finish",
        json={"notes": "Good progress", "documentation_urls": ["https://example.com/video"]},
        headers=teacher_headers,
    )
    assert response.status_code == 200
    history = response.json()["history"]
    assert history["start_time"] == "10:00"

    response = await client.post(
        f"/api/v1/class-history/{history['id']}/documentation",
        json={"url": "https://example.com/sheet.pdf"},
        headers=teacher_headers,
    )
    assert response.status_code == 201

    response = await client.get("/api/v1/class-history/mine", headers=student_headers)
    (entry,) = response.json()
    assert entry["booking_id"] == booking["id"]
    assert sorted(d["url"] for d in entry["documentations"]) == [
        "https://example.com/sheet.pdf",
        "https://example.com/video",
    ]

    response = await client.get(f"/api/v1/class-history/bookings/{booking['id']}", headers=student_headers)
    assert response.status_code == 200
    assert response.json()["id"] == history["id"]
    stranger = await new_student(db_session, lesson, now=None)
    response = await client.get(
        f"/api/v1/class-history/bookings/{booking['id']}", headers=auth_headers(stranger)
    )
    assert response.status_code == 404

    response = await client.post(f"/api/v1/bookings/{booking['id']}/cancel", headers=student_headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_concurrent_bookings_for_one_slot(db_session: AsyncSession, session_factory, lesson) -> None:
    rival = await new_student(db_session, lesson)
    await db_session.commit()  # hand the write lock to the racing sessions

    async def book(student_id):
        async with session_factory() as session:
            return await booking_service.create_booking(session, student_id, lesson.slot_id, now=NOW)

    results = await asyncio.gather(book(lesson.student_id), book(rival.id), return_exceptions=True)
    booked = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(booked) == 1
    assert [type(e) for e in failed] == [ConflictError]

    count = await db_session.execute(
        select(func.count()).select_from(Booking).where(Booking.schedule_id == lesson.slot_id)
    )
    assert count.scalar_one() == 1
    assert await slot_is_booked(db_session, lesson.slot_id) is True
    assert await remaining(db_session, lesson.student_id) + await remaining(db_session, rival.id) == 7


@pytest.mark.asyncio
async def test_concurrent_bookings_for_the_last_lesson(
    db_session: AsyncSession, session_factory, make_user, piano_teacher, piano
) -> None:
    student = await make_user(UserRole.STUDENT)
    student_id = student.id
    package = await make_package(db_session, piano, name="Piano trial", quota=1)
    await quota_service.assign_package(db_session, student_id, package.id, now=NOW)
    first = await availability_service.add_availability(db_session, piano_teacher.id, "selasa", "10:00", "11:00")
    second = await availability_service.add_availability(db_session, piano_teacher.id, "kamis", "10:00", "11:00")
    await db_session.commit()  # hand the write lock to the racing sessions

    async def book(schedule_id):
        async with session_factory() as session:
            return await booking_service.create_booking(session, student_id, schedule_id, now=NOW)

    results = await asyncio.gather(book(first.id), book(second.id), return_exceptions=True)
    assert sorted(type(r).__name__ for r in results) == ["BookingResponse", "QuotaExhaustedError"]

    assert await remaining(db_session, student_id) == 0
    booked = [await slot_is_booked(db_session, slot.id) for slot in (first, second)]
    assert sorted(booked) == [False, True]


@pytest.mark.asyncio
async def test_slots_follow_the_school_clock(db_session: AsyncSession, lesson, monkeypatch) -> None:
    monkeypatch.setattr(settings, "school_timezone", "Asia/Jakarta")

    # Wednesday 10:00 in Jakarta (UTC+7).
    booking = await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)
    assert booking.class_date == datetime(2026, 10, 21, 3, 0)

    # 23 hours ahead in real time, although the wall-clock reads 10:00 tomorrow.
    with pytest.raises(ValidationError):
        await booking_service.cancel_booking(
            db_session, booking.id, lesson.student, now=datetime(2026, 10, 20, 4, 0)
        )
    cancelled = await booking_service.cancel_booking(
        db_session, booking.id, lesson.student, now=datetime(2026, 10, 20, 2, 0)
    )
    assert cancelled.status == BookingStatus.CANCELLED


@pytest.mark.asyncio
async def test_history_date_is_the_local_class_day(db_session: AsyncSession, lesson, monkeypatch) -> None:
    monkeypatch.setattr(settings, "school_timezone", "Asia/Jakarta")
    early = await availability_service.add_availability(db_session, lesson.teacher_id, "rabu", "05:00", "06:00")

    booking = await booking_service.create_booking(db_session, lesson.student_id, early.id, now=NOW)
    assert booking.class_date == datetime(2026, 10, 20, 22, 0)

    result = await booking_service.finish_class(db_session, booking.id, lesson.teacher_id, now=NOW)
    assert result.history.date == datetime(2026, 10, 21).date()
    assert result.history.start_time == time(5, 0)


@pytest.mark.asyncio
async def test_issued_lesson_length_survives_template_edit(db_session: AsyncSession, lesson) -> None:
    await catalog_service.update_package(
        db_session, lesson.package_id, PackageUpdate(duration=LessonDuration.HALF_HOUR)
    )
    booking = await booking_service.create_booking(db_session, lesson.student_id, lesson.slot_id, now=NOW)
    assert booking.student_package_id == lesson.entry_id
    assert await remaining(db_session, lesson.student_id) == 3
