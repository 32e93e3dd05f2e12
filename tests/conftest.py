import os
from datetime import datetime
from typing import AsyncGenerator, Awaitable, Callable, Dict

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("SCHOOL_TIMEZONE", "UTC")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.main import app
from app.auth.models import TeacherProfile, User
from app.auth.security import create_access_token, hash_password
from app.core.enums import UserRole
from app.core.models import Instrument, Package
from app.db.session import Base, get_db

# Monday; weekly slots on "senin" fall on this date.
NOW = datetime(2026, 10, 19, 8, 0)

DEFAULT_PASSWORD = "StrongPass123"


@pytest.fixture()
async def engine(tmp_path):
    """A fresh SQLite database file per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False, future=True)

    @event.listens_for(engine.sync_engine, "connect")
    def _no_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        # SQLite has no row locks: take the write lock up front so concurrent
        # sessions queue the way FOR UPDATE makes them queue on Postgres.
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.clear()


@pytest.fixture()
def session_factory(engine) -> async_sessionmaker:
    """Independent sessions for tests that run requests side by side."""
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    counter = {"n": 0}

    async def _make(role: UserRole, name: str = None, email: str = None, password: str = DEFAULT_PASSWORD) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            name=name or f"{role.value.title()} {n}",
            email=email or f"{role.value}{n}@example.com",
            password_hash=hash_password(password),
            role=role,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


def auth_headers(user) -> Dict[str, str]:
    token = create_access_token(subject={"sub": str(user.id), "user_id": str(user.id), "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


async def make_instrument(db: AsyncSession, name: str) -> Instrument:
    obj = Instrument(name=name)
    db.add(obj)
    await db.commit()
    return obj


async def make_package(
    db: AsyncSession,
    instrument: Instrument,
    name: str = None,
    quota: int = 4,
    duration: int = 60,
) -> Package:
    obj = Package(
        name=name or f"{instrument.name} {quota}x{duration}",
        quota=quota,
        duration=duration,
        price=0,
        instrument_id=instrument.id,
    )
    db.add(obj)
    await db.commit()
    return obj


async def teach(db: AsyncSession, teacher: User, *instruments: Instrument) -> TeacherProfile:
    profile = TeacherProfile(user_id=teacher.id, instruments=list(instruments))
    db.add(profile)
    await db.commit()
    return profile


@pytest.fixture()
async def admin(make_user) -> User:
    return await make_user(UserRole.ADMIN)


@pytest.fixture()
async def manager(make_user) -> User:
    return await make_user(UserRole.MANAGER)


@pytest.fixture()
async def teacher(make_user) -> User:
    return await make_user(UserRole.TEACHER)


@pytest.fixture()
async def student(make_user) -> User:
    return await make_user(UserRole.STUDENT)


@pytest.fixture()
async def piano(db_session: AsyncSession) -> Instrument:
    return await make_instrument(db_session, "piano")


@pytest.fixture()
async def piano_teacher(db_session: AsyncSession, teacher: User, piano: Instrument) -> User:
    await teach(db_session, teacher, piano)
    return teacher
