from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import settings


def async_database_url(url: str) -> str:
    """Rewrite a plain sqlite URL for the aiosqlite driver."""
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


def ensure_database_directory(url: str) -> None:
    """Create the parent directory of a relative sqlite file."""
    path = url.split(":///", 1)[-1]
    if path.startswith("./"):
        Path(path).parent.mkdir(parents=True, exist_ok=True)


def enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # Registry entries reference hosts; SQLite ignores FKs unless asked
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


ensure_database_directory(settings.DATABASE_URL)

engine = create_async_engine(async_database_url(settings.DATABASE_URL), echo=False)
event.listen(engine.sync_engine, "connect", enable_sqlite_foreign_keys)

# Fan-out operations open one session per host from this factory
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting database session."""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """Create registry tables if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    await engine.dispose()
