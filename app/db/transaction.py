"""Unit-of-work helper: one commit per mutating service operation."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Type

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import ConflictError, InvalidStateError, ServiceError, StorageError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def atomic(
    db: AsyncSession,
    *,
    integrity_error: Type[ServiceError] = ConflictError,
    integrity_message: str = "Conflicting change, please retry",
) -> AsyncIterator[AsyncSession]:
    """Run the block as one transaction and commit on success.

    Any exception rolls the session back and service errors propagate
    unchanged. Constraint violations become ``integrity_error``. A lost
    optimistic-lock race is an InvalidStateError; other database failures
    are a StorageError.
    """
    try:
        yield db
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except IntegrityError as e:
        await db.rollback()
        logger.warning("Integrity violation rolled back: %s", e.orig)
        raise integrity_error(integrity_message) from e
    except StaleDataError as e:
        await db.rollback()
        logger.warning("Stale row version rolled back: %s", e)
        raise InvalidStateError("Record was changed by another request, please reload") from e
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Storage failure, transaction rolled back")
        raise StorageError("Storage failure, please retry later") from e
