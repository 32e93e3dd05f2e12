import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.auth.schemas import LoginRequest, LoginResponse, UserInfo
from app.auth.security import create_access_token, verify_password
from app.core.exceptions import ServiceError

logger = logging.getLogger(__name__)


async def login_user(db: AsyncSession, payload: LoginRequest) -> LoginResponse:
    # Emails are matched case-insensitively
    result = await db.execute(select(User).where(func.lower(User.email) == func.lower(payload.email)))
    user: Optional[User] = result.scalar_one_or_none()
    if not user or not verify_password(payload.password, user.password_hash):
        logger.info("Failed login for %s", payload.email)
        raise ServiceError("Invalid credentials", status.HTTP_401_UNAUTHORIZED)

    issued_at = datetime.now(timezone.utc)
    access_token = create_access_token(
        subject={
            "sub": str(user.id),
            "user_id": str(user.id),
            "role": user.role.value,
            "iat": int(issued_at.timestamp()),
        }
    )
    return LoginResponse(
        access_token=access_token,
        user=UserInfo(id=user.id, name=user.name, email=user.email, role=user.role),
        issued_at=issued_at,
    )
