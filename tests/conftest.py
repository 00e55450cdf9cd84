"""Test fixtures and configuration."""

import logging
import os
import sys

import pytest
import pytest_asyncio
import structlog
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set ENVIRONMENT for pydantic settings before the app is imported
os.environ["ENVIRONMENT"] = "testing"

from bankrecon.logger import _shared_processors, get_logger  # noqa: E402
from bankrecon.services import matching  # noqa: E402
from bankrecon.services.banking import reset_provider_policies  # noqa: E402

logger = get_logger(__name__)


# --- Structlog ---
@pytest.fixture(autouse=True, scope="session")
def plain_console_logging():
    """Uncached console rendering so capsys sees each event, IBAN masking included."""
    chain = _shared_processors()
    structlog.configure(
        processors=[*chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=structlog.dev.ConsoleRenderer(colors=False), foreign_pre_chain=chain)
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG)

    yield

    structlog.reset_defaults()


# --- Shared provider state ---
@pytest.fixture(autouse=True)
def reset_shared_state():
    """Drop circuit breaker state and cached matching config between tests."""
    reset_provider_policies()
    matching._config_cache = None
    yield
    reset_provider_policies()
    matching._config_cache = None


# --- Database ---
@pytest.fixture
def test_database_url(tmp_path):
    """TEST_DATABASE_URL when set (Postgres), otherwise a throwaway SQLite file."""
    return os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'bankrecon_test.db'}"


@pytest_asyncio.fixture
async def db_engine(test_database_url):
    """Engine with a freshly created schema.

    Function-scoped: sync runs commit for real (one unit of work per
    transaction), so tests cannot share a rolled-back outer transaction.
    """
    from bankrecon import models  # noqa: F401
    from bankrecon.database import Base

    engine = create_async_engine(test_database_url, echo=False, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
    except Exception as e:
        logger.error(
            "Schema cleanup failed",
            error=str(e),
            error_type=type(e).__name__,
        )
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    """Session maker bound to the test engine and installed as the app's maker."""
    from bankrecon import database

    maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    previous = database.set_test_session_maker(maker)
    yield maker
    database.set_test_session_maker(previous)


@pytest_asyncio.fixture
async def db(session_factory):
    """Database session for arranging and asserting state."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory):
    """Async test client for the FastAPI app."""
    from bankrecon.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client_instance:
        yield client_instance
    app.dependency_overrides.clear()
