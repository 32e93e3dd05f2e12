"""
Seed script: create all tables and the first ADMIN user.

Run once against a fresh database with env set:
  ADMIN_EMAIL=admin@example.com
  ADMIN_PASSWORD=YourSecurePassword

  python -m app.db.seed_admin
"""
import asyncio

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import app.core.models  # noqa: F401  registers every table on Base.metadata
from app.auth.models import User
from app.auth.security import hash_password
from app.core.config import settings
from app.core.enums import UserRole
from app.db.session import AsyncSessionLocal, Base, engine

DEFAULT_ADMIN_NAME = "Administrator"


async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("Tables ensured.")


async def seed_admin(db: AsyncSession) -> None:
    email = settings.admin_email
    password = settings.admin_password
    if not email or not password:
        print("No ADMIN_EMAIL/ADMIN_PASSWORD; skipping admin user.")
        return

    result = await db.execute(select(User).where(User.email == email))
    admin = result.scalar_one_or_none()
    if not admin:
        db.add(
            User(
                name=DEFAULT_ADMIN_NAME,
                email=email,
                password_hash=hash_password(password),
                role=UserRole.ADMIN,
            )
        )
        print("Created ADMIN user:", email)
    else:
        admin.role = UserRole.ADMIN
        admin.password_hash = hash_password(password)
        print("Updated existing user to ADMIN:", email)
    await db.commit()


async def main() -> None:
    await create_tables()
    async with AsyncSessionLocal() as db:
        try:
            await seed_admin(db)
        except Exception as e:
            await db.rollback()
            print("Error:", e)
            raise
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
