"""Append-only archive of completed lessons and their documentation links."""

import logging
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.enums import BookingStatus, UserRole
from app.core.exceptions import DuplicateError, NotFoundError, ValidationError
from app.core.models import Booking, ClassDocumentation, ClassHistory
from app.core.timeutils import utc_to_local
from app.db.transaction import atomic

from .schemas import ClassHistoryResponse, DocumentationResponse

logger = logging.getLogger(__name__)


def _clean_urls(urls: Optional[Iterable[str]]) -> List[str]:
    cleaned = []
    for url in urls or []:
        url = str(url).strip()
        if not url:
            raise ValidationError("Documentation URL must not be empty")
        cleaned.append(url)
    return cleaned


async def record_completion(
    db: AsyncSession,
    booking: Booking,
    notes: Optional[str] = None,
    documentation_urls: Optional[Iterable[str]] = None,
) -> ClassHistory:
    """Archive a finished booking. Caller owns the transaction.

    Exactly one history per booking; the unique index on booking_id backs this
    up against concurrent finishes.
    """
    existing = await db.execute(select(ClassHistory.id).where(ClassHistory.booking_id == booking.id))
    if existing.scalar_one_or_none():
        raise DuplicateError("Class history already recorded for this booking")

    schedule = booking.schedule
    package = booking.student_package.package
    history = ClassHistory(
        booking_id=booking.id,
        teacher_id=schedule.teacher_id,
        student_id=booking.student_id,
        instrument_id=package.instrument_id,
        package_id=package.id,
        status=BookingStatus.COMPLETED,
        date=utc_to_local(booking.class_date, settings.school_timezone).date(),
        start_time=schedule.start_time,
        end_time=schedule.end_time,
        notes=notes,
        documentations=[ClassDocumentation(url=url) for url in _clean_urls(documentation_urls)],
    )
    db.add(history)
    await db.flush()
    logger.info("Class history %s recorded for booking %s", history.id, booking.id)
    return history


async def _list(db: AsyncSession, *criteria) -> List[ClassHistoryResponse]:
    result = await db.execute(
        select(ClassHistory).where(*criteria).order_by(ClassHistory.date.desc(), ClassHistory.start_time.desc())
    )
    return [ClassHistoryResponse.model_validate(h) for h in result.scalars().all()]


async def list_student_history(db: AsyncSession, student_id: UUID) -> List[ClassHistoryResponse]:
    return await _list(db, ClassHistory.student_id == student_id)


async def list_teacher_history(db: AsyncSession, teacher_id: UUID) -> List[ClassHistoryResponse]:
    return await _list(db, ClassHistory.teacher_id == teacher_id)


async def list_all_history(db: AsyncSession) -> List[ClassHistoryResponse]:
    return await _list(db)


async def get_history_for_booking(
    db: AsyncSession,
    booking_id: UUID,
    actor: Optional[CurrentUser] = None,
) -> ClassHistoryResponse:
    """The archived record of a finished booking, visible to its student, its teacher and staff."""
    result = await db.execute(select(ClassHistory).where(ClassHistory.booking_id == booking_id))
    history = result.scalar_one_or_none()
    if history and (
        actor is None
        or actor.role in (UserRole.ADMIN, UserRole.MANAGER)
        or actor.id in (history.student_id, history.teacher_id)
    ):
        return ClassHistoryResponse.model_validate(history)
    raise NotFoundError("Class history not found")


async def add_documentation(
    db: AsyncSession,
    history_id: UUID,
    teacher_id: UUID,
    url: str,
) -> DocumentationResponse:
    history = await db.get(ClassHistory, history_id)
    if not history or history.teacher_id != teacher_id:
        raise NotFoundError("Class history not found")
    (url,) = _clean_urls([url])
    async with atomic(db):
        doc = ClassDocumentation(url=url)
        history.documentations.append(doc)
    logger.info("Documentation %s attached to class history %s", doc.id, history_id)
    return DocumentationResponse.model_validate(doc)
