"""
Retry Policy: Exponential Backoff with Jitter

Implements the single retry strategy shared by every store call site:
- Exponential backoff: base_delay_ms × 2^n, capped at max_delay_ms
- Banded jitter: delay × uniform(1 - ratio, 1 + ratio) to spread retries
  from independent processes
- max_attempts counts the first try, so 3 means one call and two retries

Object reads use RetryPolicy.for_reads(): 3 attempts, 100ms base,
5s cap, ±30% jitter.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from blobcoord.core import constants as C
from blobcoord.core.errors import ReliabilityError
from blobcoord.core.types import Err, Ok, Result

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Retry configuration value object.

    Attributes:
        max_attempts: Total attempts including the first one. Must be >= 1.
        base_delay_ms: Delay before the first retry.
        max_delay_ms: Upper bound for any single delay.
        jitter_ratio: Relative jitter band in [0, 1).
    """

    max_attempts: int = C.READ_RETRY_MAX_ATTEMPTS
    base_delay_ms: int = C.READ_RETRY_BASE_DELAY_MS
    max_delay_ms: int = C.READ_RETRY_MAX_DELAY_MS
    jitter_ratio: float = C.READ_RETRY_JITTER_RATIO

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= "
                f"base_delay_ms ({self.base_delay_ms})"
            )
        if not 0.0 <= self.jitter_ratio < 1.0:
            raise ValueError(f"jitter_ratio must be in [0, 1), got {self.jitter_ratio}")

    @classmethod
    def for_reads(cls) -> RetryPolicy:
        """Policy for transient not-found responses on object reads."""
        return cls()

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        """Single attempt (for non-idempotent operations)."""
        return cls(max_attempts=1, jitter_ratio=0.0)

    def delay_ms(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Delay after the given zero-based failed attempt."""
        return calculate_backoff(
            attempt=attempt,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            jitter_ratio=self.jitter_ratio,
            rng=rng,
        )


def calculate_backoff(
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int,
    jitter_ratio: float,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Calculate backoff delay with banded jitter.

    delay = min(cap, base * 2^attempt) * uniform(1 - ratio, 1 + ratio),
    clamped to [0, cap].
    """
    delay = min(float(max_delay_ms), base_delay_ms * (2.0 ** attempt))

    if jitter_ratio > 0:
        uniform = (rng or random).uniform
        delay *= uniform(1.0 - jitter_ratio, 1.0 + jitter_ratio)

    return max(0.0, min(float(max_delay_ms), delay))


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    attempt_timeout_ms: Optional[int] = None,
    sleep: SleepFn = asyncio.sleep,
    on_retry: Optional[Callable[[BaseException, int], None]] = None,
) -> Result[T, ReliabilityError]:
    """
    Execute async function with retry and exponential backoff.

    Args:
        func: Async function to execute
        policy: Retry configuration (read policy if None)
        retry_on: Exception types worth another attempt; anything else
            stops immediately
        attempt_timeout_ms: Per-attempt timeout; a timeout is retried
        sleep: Awaitable sleep taking seconds
        on_retry: Called with (error, attempt_number) before each backoff

    Returns:
        Ok with result, or Err carrying the last exception as its cause
    """
    if policy is None:
        policy = RetryPolicy.for_reads()

    last_exception: Optional[BaseException] = None

    for attempt in range(policy.max_attempts):
        try:
            if attempt_timeout_ms is None:
                result = await func()
            else:
                result = await asyncio.wait_for(func(), timeout=attempt_timeout_ms / 1000)
            if attempt > 0:
                logger.debug(f"Operation succeeded after {attempt} retries")
            return Ok(result)

        except asyncio.TimeoutError as e:
            # Without a per-attempt timeout this came from func itself
            if attempt_timeout_ms is None and not isinstance(e, retry_on):
                return Err(ReliabilityError.retry_exhausted(
                    attempts=attempt + 1,
                    last_error=str(e),
                    cause=e,
                ))
            last_exception = e
            logger.debug(f"Attempt {attempt + 1} timed out: {e!r}")

        except retry_on as e:
            last_exception = e
            logger.debug(f"Attempt {attempt + 1}/{policy.max_attempts} failed: {e}")

        except Exception as e:
            # Non-retryable: fail immediately
            return Err(ReliabilityError.retry_exhausted(
                attempts=attempt + 1,
                last_error=str(e),
                cause=e,
            ))

        if attempt + 1 < policy.max_attempts:
            if on_retry is not None:
                on_retry(last_exception, attempt + 1)
            delay = policy.delay_ms(attempt)
            logger.debug(f"Retrying in {delay:.0f}ms (attempt {attempt + 2})")
            await sleep(delay / 1000)

    return Err(ReliabilityError.retry_exhausted(
        attempts=policy.max_attempts,
        last_error=str(last_exception) if last_exception else "Unknown error",
        cause=last_exception,
    ))
