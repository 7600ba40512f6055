"""
Pytest fixtures for test database, client, payment gateway and authentication.

Every test gets its own SQLite file (aiosqlite) so sessions opened by
concurrent tasks see each other's commits, the same way separate requests
share PostgreSQL in production.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rankup.core.security import create_access_token
from rankup.db.base import Base
from rankup.db.session import get_db, get_session_factory
from rankup.main import app
from rankup.models.booking import Booking
from rankup.services import booking_service
from rankup.services.interfaces.sandbox_gateway import SandboxGateway
from rankup.services.strategy_factory import get_payment_gateway

CLIENT_ID = "client-ana"
MENTOR_ID = "mentor-leo"
OTHER_ID = "stranger-max"


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Create tables in a fresh database, yield a session factory, then dispose."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rankup_test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> SandboxGateway:
    return SandboxGateway()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, gateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the DB, live-feed session factory and gateway overridden."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_headers_for(user_id: str) -> dict:
    token = create_access_token(data={"sub": user_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client_headers() -> dict:
    return auth_headers_for(CLIENT_ID)


@pytest.fixture
def mentor_headers() -> dict:
    return auth_headers_for(MENTOR_ID)


@pytest.fixture
def other_headers() -> dict:
    return auth_headers_for(OTHER_ID)


def in_hours(hours: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


async def make_booking(db: AsyncSession, hours_ahead: float = 72, price: str = "45", **overrides) -> Booking:
    values = dict(
        client_id=CLIENT_ID,
        mentor_id=MENTOR_ID,
        session_type="sparring",
        date=in_hours(hours_ahead),
        location="Club Padel Nord, court 3",
        price=Decimal(price),
    )
    values.update(overrides)
    return await booking_service.create_booking(db, **values)


@pytest_asyncio.fixture
async def pending_booking(db_session: AsyncSession) -> Booking:
    """A pending booking three days ahead."""
    return await make_booking(db_session)


@pytest_asyncio.fixture
async def confirmed_booking(db_session: AsyncSession) -> Booking:
    booking = await make_booking(db_session)
    return await booking_service.accept_booking(db_session, booking.id, MENTOR_ID)


@pytest_asyncio.fixture
async def completed_booking(db_session: AsyncSession) -> Booking:
    """A booking whose session is over and was marked done by the mentor."""
    booking = await make_booking(db_session, hours_ahead=2)
    await booking_service.accept_booking(db_session, booking.id, MENTOR_ID)
    return await booking_service.complete_booking(
        db_session, booking.id, MENTOR_ID, now=booking.date + timedelta(hours=2)
    )
