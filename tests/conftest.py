from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from libs.db.base import Base
from libs.db.config import build_sessionmaker
from libs.db.session import get_async_db
from services.points_bank_service import models as _models  # noqa: F401
from services.points_bank_service.app.main import app


@pytest_asyncio.fixture
async def test_engine():
    """
    Fresh in-memory database per test. StaticPool keeps the single
    connection alive so every session sees the same tables.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session = build_sessionmaker(test_engine)()
    try:
        yield session
    finally:
        await session.close()


@pytest_asyncio.fixture
async def client(test_engine) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient against the app with the DB dependency pointed at the test engine.
    """
    session_factory = build_sessionmaker(test_engine)

    async def _get_test_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _get_test_db

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()

