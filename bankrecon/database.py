"""Database configuration and session management."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from bankrecon.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"echo": settings.debug}
    return {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "pool_size": 10,  # Max persistent connections
        "max_overflow": 20,  # Additional transient connections under load
        "pool_recycle": 3600,  # Recycle connections after 1 hour
    }


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Test hook to override session maker
_test_session_maker: async_sessionmaker[AsyncSession] | None = None


def set_test_session_maker(
    maker: async_sessionmaker[AsyncSession] | None,
) -> async_sessionmaker[AsyncSession] | None:
    """Set test session maker and return the previous value."""
    global _test_session_maker
    previous = _test_session_maker
    _test_session_maker = maker
    return previous


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Return the active session maker (test override first)."""
    return _test_session_maker or async_session_maker


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for database session."""
    maker = get_session_maker()
    async with maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    """
    Database initialization is handled by Alembic migrations
    (migrations/versions). This only logs readiness.
    """
    from bankrecon.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Database initialized (schema managed by migrations)")
