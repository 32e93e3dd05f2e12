"""Service-layer errors. Routers translate them with ``HTTPException(e.status_code, e.message)``."""

from typing import Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ServiceError):
    """Malformed input: bad time format, inverted interval, missing fields."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(ServiceError):
    """Referenced entity absent or not owned by the caller."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(ServiceError):
    status_code = status.HTTP_409_CONFLICT


class InvalidStateError(ServiceError):
    """Booking transition attempted from the wrong status."""

    status_code = status.HTTP_409_CONFLICT


class QuotaExhaustedError(ServiceError):
    status_code = status.HTTP_409_CONFLICT


class NotSubscribedError(ServiceError):
    """No unexpired student package covers the requested instrument/package."""

    status_code = status.HTTP_403_FORBIDDEN


class DuplicateError(ServiceError):
    status_code = status.HTTP_409_CONFLICT


class StorageError(ServiceError):
    """Persistence failure (connection loss, unexpected constraint violation)."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
