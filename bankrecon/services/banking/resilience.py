"""Retry and circuit breaker policy for outbound bank API calls.

One policy instance exists per provider and is shared by every adapter built
for that provider, so repeated outages trip the breaker across accounts.

Retries cover transient faults only: transport errors (including timeouts),
HTTP 429 and HTTP 5xx. Authentication and other 4xx responses are returned to
the adapter untouched and count as a healthy round-trip for the breaker.

State is guarded by a threading.Lock; the critical sections are dict/int
updates only.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from threading import Lock

import httpx

from bankrecon.config import settings
from bankrecon.logger import get_logger
from bankrecon.services.banking.errors import TransactionFetchFailedError

logger = get_logger(__name__)

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class PolicyConfig:
    """Retry/backoff and breaker configuration."""

    max_retries: int = 2  # Extra attempts after the first call
    backoff_seconds: float = 0.5  # Doubles on each retry
    max_backoff_seconds: float = 8.0
    failure_threshold: int = 5  # Consecutive transient failures before opening
    reset_timeout_seconds: float = 300.0  # Open duration before a trial call

    @classmethod
    def from_settings(cls) -> PolicyConfig:
        return cls(
            max_retries=settings.bank_api_max_retries,
            backoff_seconds=settings.bank_api_backoff_seconds,
            failure_threshold=settings.bank_api_circuit_failure_threshold,
            reset_timeout_seconds=float(settings.bank_api_circuit_reset_seconds),
        )


def is_transient_status(status_code: int) -> bool:
    return status_code in TRANSIENT_STATUS_CODES


class ProviderCallPolicy:
    """Bounded retry with exponential backoff plus a consecutive-failure breaker."""

    def __init__(
        self,
        provider: str,
        config: PolicyConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.config = config or PolicyConfig.from_settings()
        self._clock = clock
        self._sleep = sleep
        self._lock = Lock()
        self._failures = 0
        self._opened_at: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state_locked()

    def _state_locked(self) -> CircuitState:
        if self._opened_at is None:
            return CircuitState.CLOSED
        if self._clock() - self._opened_at >= self.config.reset_timeout_seconds:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    def allow_request(self) -> bool:
        """Return False while the breaker is open (or a half-open trial is running)."""
        with self._lock:
            state = self._state_locked()
            if state == CircuitState.CLOSED:
                return True
            if state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            if self._opened_at is not None:
                logger.info("Provider circuit closed", provider=self.provider)
            self._failures = 0
            self._opened_at = None
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            half_open_trial = self._trial_in_flight
            self._trial_in_flight = False
            if half_open_trial or self._failures >= self.config.failure_threshold:
                self._opened_at = self._clock()
                logger.warning(
                    "Provider circuit opened",
                    provider=self.provider,
                    consecutive_failures=self._failures,
                    reset_timeout_seconds=self.config.reset_timeout_seconds,
                )

    def release_trial(self) -> None:
        with self._lock:
            self._trial_in_flight = False

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._opened_at = None
            self._trial_in_flight = False

    def _backoff(self, attempt: int) -> float:
        return min(self.config.backoff_seconds * (2**attempt), self.config.max_backoff_seconds)

    async def call(self, send: Callable[[], Awaitable[httpx.Response]]) -> httpx.Response:
        """Run ``send`` under the policy.

        Returns the final response (possibly a transient error status once
        retries are exhausted). Raises TransactionFetchFailedError when the
        breaker is open or the provider stays unreachable.
        """
        if not self.allow_request():
            raise TransactionFetchFailedError(
                f"{self.provider} circuit open after repeated failures; skipping call",
                provider=self.provider,
            )

        attempt = 0
        while True:
            transport_error: httpx.TransportError | None = None
            response: httpx.Response | None = None
            try:
                response = await send()
            except httpx.TransportError as exc:
                transport_error = exc
            except Exception:
                self.record_failure()
                raise
            except BaseException:
                # Cancelled: free the half-open slot without counting a failure
                self.release_trial()
                raise

            if response is not None and not is_transient_status(response.status_code):
                self.record_success()
                return response

            self.record_failure()
            exhausted = attempt >= self.config.max_retries
            if exhausted or self.state != CircuitState.CLOSED:
                if transport_error is not None:
                    raise TransactionFetchFailedError(
                        f"{self.provider} unreachable: {type(transport_error).__name__}: {transport_error}",
                        provider=self.provider,
                    ) from transport_error
                assert response is not None
                return response

            delay = self._backoff(attempt)
            attempt += 1
            logger.info(
                "Retrying provider call",
                provider=self.provider,
                attempt=attempt,
                delay_seconds=delay,
                status_code=response.status_code if response is not None else None,
                error_type=type(transport_error).__name__ if transport_error else None,
            )
            await self._sleep(delay)


_policies: dict[str, ProviderCallPolicy] = {}
_policies_lock = Lock()


def get_provider_policy(provider: str) -> ProviderCallPolicy:
    """Return the shared policy for a provider, creating it from settings."""
    with _policies_lock:
        policy = _policies.get(provider)
        if policy is None:
            policy = ProviderCallPolicy(provider)
            _policies[provider] = policy
        return policy


def reset_provider_policies() -> None:
    """Drop all shared policies (primarily for tests)."""
    with _policies_lock:
        _policies.clear()
