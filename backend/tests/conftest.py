"""
Pytest configuration and fixtures for the discovery engine tests.

Provides:
- Async SQLite in-memory database setup
- FastAPI app with dependency overrides
- AsyncClient for testing async endpoints
"""

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  (registers tables on Base.metadata)
from database import Base, get_db
from main import app


@pytest_asyncio.fixture
async def session_factory():
    """
    Session factory bound to a fresh in-memory database. StaticPool keeps
    the single connection alive so every session sees the same tables.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def async_client(session_factory):
    """
    AsyncClient pointing to the FastAPI app with an in-memory test database.
    Tests that need a scripted management service override
    ``get_server_management_service`` themselves.

    Yields:
        httpx.AsyncClient: Async HTTP client for making requests to the app.
    """

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    # Cleanup
    app.dependency_overrides.clear()
