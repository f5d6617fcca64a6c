"""
Unit Tests: Retry with Backoff

Tests:
    - Backoff growth, cap and jitter band
    - Retry count and exhaustion
    - Non-retryable errors and per-attempt timeouts
"""

import asyncio
import random

import pytest

from blobcoord.core.errors import ErrorCode
from blobcoord.reliability.retry import RetryPolicy, calculate_backoff, retry_with_backoff
from blobcoord.tests.conftest import RecordingSleep


class Flaky:
    """Async callable failing a fixed number of times before succeeding."""

    def __init__(self, failures, error=ValueError):
        self.calls = 0
        self._failures = failures
        self._error = error

    async def __call__(self):
        self.calls += 1
        if self.calls <= self._failures:
            raise self._error(f"failure {self.calls}")
        return "done"


class TestBackoff:
    """Tests for calculate_backoff and RetryPolicy."""

    def test_exponential_growth_without_jitter(self):
        delays = [calculate_backoff(n, 100, 5_000, 0.0) for n in range(4)]

        assert delays == [100.0, 200.0, 400.0, 800.0]

    def test_capped(self):
        assert calculate_backoff(10, 100, 5_000, 0.0) == 5_000.0

    def test_jitter_band(self):
        rng = random.Random(42)
        delays = [calculate_backoff(0, 100, 5_000, 0.3, rng) for _ in range(200)]

        assert all(70.0 <= d <= 130.0 for d in delays)
        assert len(set(delays)) > 1

    def test_jitter_never_exceeds_cap(self):
        rng = random.Random(7)

        assert all(calculate_backoff(10, 100, 5_000, 0.3, rng) <= 5_000 for _ in range(100))

    def test_read_policy_defaults(self):
        policy = RetryPolicy.for_reads()

        assert policy.max_attempts == 3
        assert policy.base_delay_ms == 100
        assert policy.max_delay_ms == 5_000
        assert policy.jitter_ratio == pytest.approx(0.3)

    @pytest.mark.parametrize("kwargs", [
        {"max_attempts": 0},
        {"base_delay_ms": -1},
        {"base_delay_ms": 200, "max_delay_ms": 100},
        {"jitter_ratio": 1.0},
    ])
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_success_after_failures(self):
        func = Flaky(failures=2)
        sleep = RecordingSleep()
        policy = RetryPolicy(max_attempts=3, jitter_ratio=0.0)

        result = await retry_with_backoff(func, policy, sleep=sleep)

        assert result.is_ok()
        assert result.unwrap() == "done"
        assert func.calls == 3
        assert sleep.calls == [pytest.approx(0.1), pytest.approx(0.2)]

    @pytest.mark.asyncio
    async def test_exhaustion_carries_last_error(self):
        func = Flaky(failures=10)
        policy = RetryPolicy(max_attempts=3, jitter_ratio=0.0)

        result = await retry_with_backoff(func, policy, sleep=RecordingSleep())

        assert result.is_err()
        assert result.error.code is ErrorCode.RELIABILITY_RETRY_EXHAUSTED
        assert result.error.context["attempts"] == 3
        assert isinstance(result.error.cause, ValueError)
        assert str(result.error.cause) == "failure 3"
        assert func.calls == 3

    @pytest.mark.asyncio
    async def test_non_retryable_stops_immediately(self):
        func = Flaky(failures=10, error=ValueError)
        sleep = RecordingSleep()

        result = await retry_with_backoff(func, RetryPolicy(), retry_on=(KeyError,), sleep=sleep)

        assert result.is_err()
        assert isinstance(result.error.cause, ValueError)
        assert func.calls == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_no_retry_policy(self):
        func = Flaky(failures=1)

        result = await retry_with_backoff(func, RetryPolicy.no_retry(), sleep=RecordingSleep())

        assert result.is_err()
        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_attempt_timeout(self):
        async def slow():
            await asyncio.sleep(1)

        policy = RetryPolicy(max_attempts=2, jitter_ratio=0.0)
        result = await retry_with_backoff(
            slow, policy, attempt_timeout_ms=10, sleep=RecordingSleep()
        )

        assert result.is_err()
        assert isinstance(result.error.cause, asyncio.TimeoutError)

    @pytest.mark.asyncio
    async def test_timeout_from_func_respects_retry_on(self):
        func = Flaky(failures=10, error=asyncio.TimeoutError)
        sleep = RecordingSleep()

        result = await retry_with_backoff(func, RetryPolicy(), retry_on=(KeyError,), sleep=sleep)

        assert result.is_err()
        assert isinstance(result.error.cause, asyncio.TimeoutError)
        assert func.calls == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_timeout_from_func_retried_when_listed(self):
        func = Flaky(failures=1, error=asyncio.TimeoutError)

        result = await retry_with_backoff(
            func, RetryPolicy(), retry_on=(asyncio.TimeoutError,), sleep=RecordingSleep()
        )

        assert result.unwrap() == "done"
        assert func.calls == 2

    @pytest.mark.asyncio
    async def test_on_retry_callback(self):
        seen = []
        func = Flaky(failures=2)

        await retry_with_backoff(
            func,
            RetryPolicy(max_attempts=3, jitter_ratio=0.0),
            sleep=RecordingSleep(),
            on_retry=lambda error, attempt: seen.append(attempt),
        )

        assert seen == [1, 2]
