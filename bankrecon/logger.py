"""Structured logging configuration.

structlog sits on top of stdlib logging: JSON lines in production, console
output when ``settings.debug`` is on. Any event field named ``iban`` is masked
to its last four characters before rendering.

Helpers:
- ``async_log_timing`` for run-level durations
- ``log_external_api`` for bank provider calls
- ``log_exception`` for failures with provider context
"""

import inspect
import logging
import sys
import time
from collections.abc import AsyncIterator, Awaitable, Callable, MutableMapping
from contextlib import asynccontextmanager
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import structlog
from structlog.stdlib import BoundLogger
from structlog.types import Processor

from bankrecon.config import settings

P = ParamSpec("P")
T = TypeVar("T")

IBAN_FIELDS = ("iban",)


def mask_iban(iban: str | None) -> str:
    """Return an IBAN reduced to its last four characters for logs and diagnostics."""
    if not iban:
        return ""
    compact = iban.replace(" ", "")
    return f"****{compact[-4:]}"


def mask_iban_fields(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """structlog processor masking IBAN fields that were logged unmasked."""
    for key in IBAN_FIELDS:
        value = event_dict.get(key)
        if isinstance(value, str) and not value.startswith("****"):
            event_dict[key] = mask_iban(value)
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        mask_iban_fields,
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def configure_logging() -> None:
    """Route structlog through a single stdout handler."""
    processors = _shared_processors()
    renderer: Processor = (
        structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=processors))
    logging.basicConfig(handlers=[handler], level=logging.DEBUG if settings.debug else logging.INFO)


def get_logger(name: str | None = None) -> BoundLogger:
    return structlog.get_logger(name)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


@asynccontextmanager
async def async_log_timing(
    operation: str,
    logger: BoundLogger | None = None,
    level: str = "info",
    **context: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Log ``"<operation> completed"`` with its duration when the block exits.

    The yielded dict is merged into the event, so callers can attach results:

        async with async_log_timing("Bank sync run", logger=logger) as timing:
            timing["total_synced"] = run.total_synced
    """
    log = logger or get_logger(__name__)
    start = time.perf_counter()
    fields: dict[str, Any] = {}
    try:
        yield fields
    finally:
        getattr(log, level, log.info)(
            f"{operation} completed",
            operation=operation,
            duration_ms=_elapsed_ms(start),
            **context,
            **fields,
        )


def log_external_api(
    provider: str,
    *,
    logger: BoundLogger | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorate an async provider call with timing and outcome logging.

    Provider faults (``BankSyncError`` subclasses, anything carrying a
    ``user_message``) are logged as warnings with their error kind; anything
    else is an error.

    Usage:
        @log_external_api("unicredit")
        async def authenticate(self, credentials): ...
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"log_external_api expects a coroutine function, got {func.__qualname__}")
        log = logger or get_logger(func.__module__)

        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                error_kind = getattr(exc, "user_message", None)
                log_method = log.warning if error_kind else log.error
                log_method(
                    f"{provider} call failed",
                    provider=provider,
                    operation=func.__name__,
                    duration_ms=_elapsed_ms(start),
                    error=str(exc),
                    error_type=type(exc).__name__,
                    error_kind=error_kind,
                )
                raise
            log.info(
                f"{provider} call succeeded",
                provider=provider,
                operation=func.__name__,
                duration_ms=_elapsed_ms(start),
            )
            return result

        return wrapper

    return decorator


def log_exception(
    logger: BoundLogger,
    exc: BaseException,
    context: str,
    *,
    level: str = "error",
    include_traceback: bool = True,
    **extra: Any,
) -> None:
    """Log ``exc`` under ``context`` with its type and, for sync errors, the provider.

    Usage:
        except IngestionFailedError as exc:
            log_exception(logger, exc, "Failed to store transaction", iban=mask_iban(iban))
    """
    fields: dict[str, Any] = {"error": str(exc), "error_type": type(exc).__name__}
    provider = getattr(exc, "provider", None)
    if provider is not None:
        fields["provider"] = provider
    fields.update(extra)
    if include_traceback:
        fields["exc_info"] = exc
    getattr(logger, level, logger.error)(context, **fields)
