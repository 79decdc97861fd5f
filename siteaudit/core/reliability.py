"""
Reliability primitives for outbound fetches.

- with_retry():        bounded retries with exponential backoff (tenacity)
- CircuitBreaker:      per-origin fail-fast gate (closed / open / half-open)
- AdaptiveThrottle:    per-origin delay that grows with consecutive 429s
- ReliabilityRegistry: owns one breaker and one throttle per origin for a run

Time-dependent classes take a `clock` so tests can move time forward.
"""

from __future__ import annotations

import asyncio
import errno
import socket
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from siteaudit.core.config import Settings, get_settings
from siteaudit.core.exceptions import CircuitOpenError, RetryableStatusError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]

RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})

_DNS_MARKERS = ("name or service not known", "nodename nor servname", "getaddrinfo failed", "no address associated")


# ─────────────────────────────────────────────
# Retry with backoff
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0          # seconds
    max_delay: float = 30.0          # seconds
    backoff_multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the failed attempt with zero-based index `attempt`."""
        return min(self.max_delay, self.base_delay * self.backoff_multiplier ** attempt)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.RETRY_MAX_RETRIES,
            base_delay=settings.RETRY_BASE_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
            backoff_multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
        )


@dataclass
class RetryResult(Generic[T]):
    success: bool
    value: T | None = None
    error: BaseException | None = None
    attempts: int = 0


def _is_dns_failure(exc: BaseException) -> bool:
    cause: BaseException | None = exc
    while cause is not None:
        if isinstance(cause, socket.gaierror):
            return True
        if any(marker in str(cause).lower() for marker in _DNS_MARKERS):
            return True
        cause = cause.__cause__ or cause.__context__
    return False


def is_retryable_error(exc: BaseException) -> bool:
    """
    Retry transient failures only: timeouts, refused/reset connections and
    HTTP 408/429/5xx. DNS failures and other errors are permanent.
    """
    if isinstance(exc, RetryableStatusError):
        return exc.status in RETRYABLE_STATUSES
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(exc, httpx.NetworkError):
        return not _is_dns_failure(exc)
    if isinstance(exc, (ConnectionRefusedError, ConnectionResetError)):
        return True
    if isinstance(exc, OSError) and exc.errno in (errno.ECONNREFUSED, errno.ECONNRESET, errno.ETIMEDOUT):
        return True
    return False


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    sleep: Sleep = asyncio.sleep,
) -> RetryResult[T]:
    """Run `fn` up to max_retries + 1 times; never raises for `fn`'s own errors."""
    policy = policy or RetryPolicy()
    attempts = 0

    def log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception()
        logger.debug(
            "Retrying after failure",
            attempt=retry_state.attempt_number,
            max_retries=policy.max_retries,
            delay_s=retry_state.next_action.sleep,
            error=str(exc) or exc.__class__.__name__,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=wait_exponential(
            multiplier=policy.base_delay,
            exp_base=policy.backoff_multiplier,
            max=policy.max_delay,
        ),
        retry=retry_if_exception(is_retryable_error),
        sleep=sleep,
        before_sleep=log_retry,
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                value = await fn()
    except Exception as exc:
        return RetryResult(success=False, error=exc, attempts=attempts)
    return RetryResult(success=True, value=value, attempts=attempts)


# ─────────────────────────────────────────────
# Circuit Breaker
# ─────────────────────────────────────────────

class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Stops calling an origin after `failure_threshold` failures.

    After `reset_timeout` seconds the next check moves to half-open and lets a
    single trial call through: success closes the circuit, failure re-opens it.
    While closed, each success forgives one earlier failure.
    """

    def __init__(
        self,
        name: str = "",
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Clock = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def allow_request(self) -> bool:
        if self._state is CircuitState.OPEN:
            if self._clock() - self._opened_at < self.reset_timeout:
                return False
            self._state = CircuitState.HALF_OPEN
            self._failures = 0
            self._trial_in_flight = False
            logger.info("Circuit half-open", origin=self.name)

        if self._state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
        return True

    def record_success(self) -> None:
        if self._state is CircuitState.HALF_OPEN:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._trial_in_flight = False
            logger.info("Circuit closed", origin=self.name)
        else:
            self._failures = max(0, self._failures - 1)

    def record_failure(self) -> None:
        self._failures += 1
        if self._state is CircuitState.HALF_OPEN:
            self._open()
        elif self._state is CircuitState.CLOSED and self._failures >= self.failure_threshold:
            self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._trial_in_flight = False
        logger.warning("Circuit opened", origin=self.name, failures=self._failures)

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run `fn` behind the breaker, raising CircuitOpenError instead of calling it when open."""
        if not self.allow_request():
            raise CircuitOpenError(self.name)
        try:
            result = await fn()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def snapshot(self) -> dict[str, Any]:
        return {"state": self._state.value, "failures": self._failures, "opened_at": self._opened_at}


# ─────────────────────────────────────────────
# Adaptive Throttle
# ─────────────────────────────────────────────

class AdaptiveThrottle:
    """
    Backs off on consecutive 429s: 0 s with none, then base × 2^(n-1)
    capped at max_delay. Each non-429 reply forgives one 429; the counter
    resets entirely once `reset_window` seconds pass without a new 429.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        reset_window: float = 300.0,
        clock: Clock = time.monotonic,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.reset_window = reset_window
        self._clock = clock
        self._consecutive = 0
        self._last_hit = 0.0

    @property
    def consecutive_rate_limits(self) -> int:
        return self._consecutive

    def current_delay(self) -> float:
        if self._consecutive and self._clock() - self._last_hit > self.reset_window:
            self._consecutive = 0
        if self._consecutive == 0:
            return 0.0
        return min(self.max_delay, self.base_delay * 2 ** (self._consecutive - 1))

    def record_rate_limited(self) -> None:
        self._consecutive += 1
        self._last_hit = self._clock()

    def record_success(self) -> None:
        if self._consecutive > 0:
            self._consecutive -= 1


# ─────────────────────────────────────────────
# Registry
# ─────────────────────────────────────────────

@dataclass
class ReliabilityRegistry:
    """Per-origin breakers and throttles, owned by one audit run or fetch service."""
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    failure_threshold: int = 5
    reset_timeout: float = 60.0
    throttle_base_delay: float = 1.0
    throttle_max_delay: float = 60.0
    throttle_reset_window: float = 300.0
    clock: Clock = time.monotonic
    _breakers: dict[str, CircuitBreaker] = field(default_factory=dict, init=False, repr=False)
    _throttles: dict[str, AdaptiveThrottle] = field(default_factory=dict, init=False, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides: Any) -> ReliabilityRegistry:
        settings = settings or get_settings()
        params: dict[str, Any] = {
            "retry_policy": RetryPolicy.from_settings(settings),
            "failure_threshold": settings.BREAKER_FAILURE_THRESHOLD,
            "reset_timeout": settings.BREAKER_RESET_TIMEOUT,
            "throttle_base_delay": settings.THROTTLE_BASE_DELAY,
            "throttle_max_delay": settings.THROTTLE_MAX_DELAY,
            "throttle_reset_window": settings.THROTTLE_RESET_WINDOW,
        }
        params.update(overrides)
        return cls(**params)

    def breaker_for(self, origin: str) -> CircuitBreaker:
        breaker = self._breakers.get(origin)
        if breaker is None:
            breaker = self._breakers.setdefault(origin, CircuitBreaker(
                name=origin,
                failure_threshold=self.failure_threshold,
                reset_timeout=self.reset_timeout,
                clock=self.clock,
            ))
        return breaker

    def throttle_for(self, origin: str) -> AdaptiveThrottle:
        throttle = self._throttles.get(origin)
        if throttle is None:
            throttle = self._throttles.setdefault(origin, AdaptiveThrottle(
                base_delay=self.throttle_base_delay,
                max_delay=self.throttle_max_delay,
                reset_window=self.throttle_reset_window,
                clock=self.clock,
            ))
        return throttle
