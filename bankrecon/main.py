"""Bank Reconciliation Service - FastAPI Application."""

import asyncio
import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from bankrecon import __version__
from bankrecon.config import settings
from bankrecon.database import init_db
from bankrecon.deps import DbSession
from bankrecon.logger import configure_logging, get_logger
from bankrecon.routers import bank_sync
from bankrecon.services.bank_sync import run_bank_sync_scheduler

configure_logging()
logger = get_logger(__name__)


def scheduler_status(app: FastAPI) -> str:
    task: asyncio.Task[None] | None = getattr(app.state, "scheduler_task", None)
    if task is None:
        return "disabled"
    return "stopped" if task.done() else "running"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the periodic bank sync (when enabled) and stop it on shutdown."""
    await init_db()
    stop_event = asyncio.Event()
    app.state.scheduler_task = None
    if settings.bank_sync_scheduler_enabled:
        app.state.scheduler_task = asyncio.create_task(
            run_bank_sync_scheduler(stop_event), name="bank-sync-scheduler"
        )
    logger.info("Application started", version=__version__, scheduler=scheduler_status(app))

    yield

    # In-flight accounts stop after their current transaction; cancel past the grace period
    stop_event.set()
    task = app.state.scheduler_task
    if task is not None:
        try:
            await asyncio.wait_for(task, timeout=settings.bank_sync_shutdown_grace_seconds)
        except TimeoutError:
            logger.warning(
                "Bank sync scheduler cancelled at shutdown",
                grace_seconds=settings.bank_sync_shutdown_grace_seconds,
            )
    logger.info("Application shutting down")


app = FastAPI(
    title="Bank Reconciliation API",
    description="Bank API synchronization and movement reconciliation",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next: Any) -> Response:
    """Bind a request id to every log line of the request and echo it back."""
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=request.method, path=request.url.path)

    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Request failed", duration_ms=round((time.perf_counter() - started) * 1000, 2))
        raise

    logger.info(
        "Request handled",
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """JSON 500 carrying the request id; details only in debug mode."""
    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc) if settings.debug else "An internal server error occurred. Please try again later.",
            "trace": traceback.format_exc() if settings.debug else None,
            "request_id": structlog.contextvars.get_contextvars().get("request_id"),
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

app.include_router(bank_sync.router)


@app.get("/health")
async def health_check(db: DbSession) -> Response:
    """200 when the database answers, 503 otherwise. Reports the scheduler state."""
    try:
        await db.execute(text("SELECT 1"))
        database_ok = True
    except Exception as e:
        logger.error("Health check: database unreachable", error=str(e), error_type=type(e).__name__)
        database_ok = False

    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={
            "status": "healthy" if database_ok else "unhealthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": {"database": database_ok},
            "scheduler": scheduler_status(app),
            "version": __version__,
        },
    )
