"""Tests for retry, circuit breaker, adaptive throttle and the per-origin registry."""

import socket

import httpx
import pytest

from siteaudit.core.exceptions import CircuitOpenError, RetryableStatusError
from siteaudit.core.reliability import (
    AdaptiveThrottle,
    CircuitBreaker,
    CircuitState,
    ReliabilityRegistry,
    RetryPolicy,
    is_retryable_error,
    with_retry,
)


class Flaky:
    """Raises the queued errors in order, then returns 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


# ─────────────────────────────────────────────
# Retry
# ─────────────────────────────────────────────

class TestRetryPolicy:

    def test_exponential_delays(self):
        policy = RetryPolicy()
        assert [policy.delay_for(i) for i in range(3)] == [1.0, 2.0, 4.0]

    def test_delay_capped(self):
        policy = RetryPolicy(max_delay=30.0)
        assert policy.delay_for(10) == 30.0


class TestIsRetryable:

    @pytest.mark.parametrize("exc", [
        httpx.ConnectTimeout("timed out"),
        httpx.ReadTimeout("timed out"),
        httpx.ConnectError("Connection refused"),
        httpx.ReadError("Connection reset by peer"),
        TimeoutError(),
        ConnectionResetError(),
        RetryableStatusError(None, 503),
        RetryableStatusError(None, 429),
        RetryableStatusError(None, 408),
    ])
    def test_transient_errors_retryable(self, exc):
        assert is_retryable_error(exc)

    @pytest.mark.parametrize("exc", [
        ValueError("bad"),
        httpx.ConnectError("[Errno -2] Name or service not known"),
        RetryableStatusError(None, 404),
        RetryableStatusError(None, 501),
    ])
    def test_permanent_errors_not_retryable(self, exc):
        assert not is_retryable_error(exc)

    def test_dns_failure_found_through_cause(self):
        exc = httpx.ConnectError("connect failed")
        exc.__cause__ = socket.gaierror(-2, "lookup failed")
        assert not is_retryable_error(exc)


class TestWithRetry:

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self, sleep_recorder):
        sleep = sleep_recorder
        fn = Flaky(httpx.ConnectError("refused"), httpx.ConnectError("refused"))

        result = await with_retry(fn, RetryPolicy(), sleep=sleep)

        assert result.success
        assert result.value == "ok"
        assert result.attempts == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_error_tried_once(self, sleep_recorder):
        sleep = sleep_recorder
        fn = Flaky(ValueError("boom"))

        result = await with_retry(fn, RetryPolicy(), sleep=sleep)

        assert not result.success
        assert isinstance(result.error, ValueError)
        assert result.attempts == 1
        assert fn.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_exhaustion_reports_last_error(self, sleep_recorder):
        sleep = sleep_recorder
        errors = [httpx.ReadTimeout(f"timeout {i}") for i in range(10)]
        fn = Flaky(*errors)

        result = await with_retry(fn, RetryPolicy(max_retries=3), sleep=sleep)

        assert not result.success
        assert result.attempts == 4
        assert fn.calls == 4
        assert str(result.error) == "timeout 3"
        assert sleep.delays == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_dns_failure_not_retried(self, sleep_recorder):
        sleep = sleep_recorder
        fn = Flaky(httpx.ConnectError("[Errno -2] Name or service not known"))

        result = await with_retry(fn, RetryPolicy(), sleep=sleep)

        assert not result.success
        assert fn.calls == 1

    @pytest.mark.asyncio
    async def test_backoff_follows_policy_and_cap(self, sleep_recorder):
        sleep = sleep_recorder
        policy = RetryPolicy(max_retries=3, base_delay=10.0, max_delay=15.0, backoff_multiplier=3.0)
        fn = Flaky(*[httpx.ConnectError("refused") for _ in range(4)])

        result = await with_retry(fn, policy, sleep=sleep)

        assert not result.success
        assert sleep.delays == [10.0, 15.0, 15.0]
        assert sleep.delays == [policy.delay_for(i) for i in range(3)]

    @pytest.mark.asyncio
    async def test_permanent_error_after_transient_stops(self, sleep_recorder):
        sleep = sleep_recorder
        fn = Flaky(httpx.ReadTimeout("slow"), RetryableStatusError(None, 404))

        result = await with_retry(fn, RetryPolicy(), sleep=sleep)

        assert not result.success
        assert isinstance(result.error, RetryableStatusError)
        assert result.attempts == 2
        assert sleep.delays == [1.0]


# ─────────────────────────────────────────────
# Circuit Breaker
# ─────────────────────────────────────────────

class TestCircuitBreaker:

    def test_opens_after_threshold_and_recovers(self, clock):
        breaker = CircuitBreaker("https://example.com", failure_threshold=5, reset_timeout=60, clock=clock)

        for _ in range(5):
            assert breaker.allow_request()
            breaker.record_failure()
        assert breaker.state is CircuitState.OPEN
        assert not breaker.allow_request()

        clock.advance(61)
        assert breaker.allow_request()
        assert breaker.state is CircuitState.HALF_OPEN

        breaker.record_success()
        assert breaker.state is CircuitState.CLOSED
        assert breaker.failures == 0

    def test_half_open_allows_single_trial(self, clock):
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=10, clock=clock)
        breaker.record_failure()
        clock.advance(11)

        assert breaker.allow_request()
        assert not breaker.allow_request()

    def test_half_open_failure_reopens(self, clock):
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=10, clock=clock)
        breaker.record_failure()
        clock.advance(11)
        breaker.allow_request()

        breaker.record_failure()

        assert breaker.state is CircuitState.OPEN
        assert not breaker.allow_request()

    def test_success_while_closed_forgives_one_failure(self):
        breaker = CircuitBreaker(failure_threshold=3)
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.failures == 2
        assert breaker.state is CircuitState.CLOSED

    def test_still_open_before_timeout(self, clock):
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=60, clock=clock)
        breaker.record_failure()
        clock.advance(59)
        assert not breaker.allow_request()

    @pytest.mark.asyncio
    async def test_call_raises_when_open(self):
        breaker = CircuitBreaker("https://down.example", failure_threshold=1)
        breaker.record_failure()
        fn = Flaky()

        with pytest.raises(CircuitOpenError):
            await breaker.call(fn)
        assert fn.calls == 0

    @pytest.mark.asyncio
    async def test_call_records_outcomes(self):
        breaker = CircuitBreaker(failure_threshold=2)
        with pytest.raises(ValueError):
            await breaker.call(Flaky(ValueError("x")))
        assert breaker.failures == 1

        assert await breaker.call(Flaky()) == "ok"
        assert breaker.failures == 0

    def test_snapshot(self):
        breaker = CircuitBreaker()
        assert breaker.snapshot()["state"] == "closed"


# ─────────────────────────────────────────────
# Adaptive Throttle
# ─────────────────────────────────────────────

class TestAdaptiveThrottle:

    def test_no_delay_without_rate_limits(self):
        assert AdaptiveThrottle().current_delay() == 0.0

    def test_delay_doubles_per_consecutive_429(self, clock):
        throttle = AdaptiveThrottle(clock=clock)
        delays = []
        for _ in range(3):
            throttle.record_rate_limited()
            delays.append(throttle.current_delay())
        assert delays == [1.0, 2.0, 4.0]

    def test_delay_capped(self, clock):
        throttle = AdaptiveThrottle(max_delay=60.0, clock=clock)
        for _ in range(20):
            throttle.record_rate_limited()
        assert throttle.current_delay() == 60.0

    def test_success_forgives_one(self, clock):
        throttle = AdaptiveThrottle(clock=clock)
        throttle.record_rate_limited()
        throttle.record_rate_limited()
        throttle.record_success()
        assert throttle.consecutive_rate_limits == 1
        assert throttle.current_delay() == 1.0

    def test_resets_after_quiet_window(self, clock):
        throttle = AdaptiveThrottle(reset_window=300, clock=clock)
        for _ in range(3):
            throttle.record_rate_limited()

        clock.advance(301)

        assert throttle.current_delay() == 0.0
        assert throttle.consecutive_rate_limits == 0


# ─────────────────────────────────────────────
# Registry
# ─────────────────────────────────────────────

class TestReliabilityRegistry:

    def test_one_breaker_and_throttle_per_origin(self):
        registry = ReliabilityRegistry()
        a = registry.breaker_for("https://a.example")
        assert registry.breaker_for("https://a.example") is a
        assert registry.breaker_for("https://b.example") is not a
        assert registry.throttle_for("https://a.example") is registry.throttle_for("https://a.example")

    def test_origins_are_isolated(self):
        registry = ReliabilityRegistry(failure_threshold=1)
        registry.breaker_for("https://a.example").record_failure()
        assert registry.breaker_for("https://a.example").state is CircuitState.OPEN
        assert registry.breaker_for("https://b.example").state is CircuitState.CLOSED

    def test_from_settings_with_overrides(self):
        registry = ReliabilityRegistry.from_settings(failure_threshold=2)
        assert registry.failure_threshold == 2
        assert registry.retry_policy.max_retries == 3
        assert registry.breaker_for("https://a.example").failure_threshold == 2
