"""
Circuit Breaker: Fail Fast While the Backend Is Unreachable

Three states:
- CLOSED: Normal operation, calls reach the backend
- OPEN: Failure threshold reached, calls are refused without a round trip
- HALF_OPEN: Reset timeout elapsed, calls are let through to test recovery

Only failures the caller classifies as "unreachable" count. A not-found
or a lost conditional create proves the backend answered, so it counts
as a success.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import Optional

from blobcoord.core import constants as C
from blobcoord.core.types import Clock, MonotonicClock

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker state."""
    CLOSED = auto()     # Normal operation
    OPEN = auto()       # Failing fast
    HALF_OPEN = auto()  # Testing recovery


class CircuitBreaker:
    """
    Circuit breaker with configurable thresholds.

    Usage:
        breaker = CircuitBreaker("object-store")

        if not breaker.allow_request():
            return None
        try:
            result = await backend.get_object(key)
        except BackendUnavailableError:
            breaker.record_failure()
            raise
        breaker.record_success()
    """

    __slots__ = (
        "_name", "_failure_threshold", "_success_threshold",
        "_reset_timeout_ms", "_clock", "_state", "_successes",
        "_consecutive_failures", "_last_failure_ms", "_rejected_requests",
    )

    def __init__(
        self,
        name: str,
        failure_threshold: int = C.CIRCUIT_FAILURE_THRESHOLD,
        success_threshold: int = C.CIRCUIT_SUCCESS_THRESHOLD,
        reset_timeout_ms: int = C.CIRCUIT_RESET_TIMEOUT_MS,
        clock: Optional[Clock] = None,
    ) -> None:
        """
        Args:
            name: Identifier for logging
            failure_threshold: Consecutive failures before opening
            success_threshold: Successes in half-open before closing
            reset_timeout_ms: Time open before testing recovery
            clock: Millisecond time source (monotonic if None)
        """
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {failure_threshold}")
        if success_threshold < 1:
            raise ValueError(f"success_threshold must be >= 1, got {success_threshold}")
        if reset_timeout_ms < 0:
            raise ValueError(f"reset_timeout_ms must be >= 0, got {reset_timeout_ms}")
        self._name = name
        self._failure_threshold = failure_threshold
        self._success_threshold = success_threshold
        self._reset_timeout_ms = reset_timeout_ms
        self._clock = clock or MonotonicClock()

        self._state = CircuitState.CLOSED
        self._successes = 0
        self._consecutive_failures = 0
        self._last_failure_ms: Optional[int] = None
        self._rejected_requests = 0

    def allow_request(self) -> bool:
        """True if a call may go to the backend now."""
        if self._state is CircuitState.OPEN:
            if self._time_until_half_open() > 0:
                self._rejected_requests += 1
                return False
            self._transition_to(CircuitState.HALF_OPEN)
        return True

    def record_success(self) -> None:
        self._consecutive_failures = 0
        if self._state is CircuitState.HALF_OPEN:
            self._successes += 1
            if self._successes >= self._success_threshold:
                self._transition_to(CircuitState.CLOSED)

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        self._last_failure_ms = self._clock.now_ms()

        if self._state is CircuitState.HALF_OPEN:
            # Single failure in half-open reopens
            self._transition_to(CircuitState.OPEN)
        elif self._state is CircuitState.CLOSED:
            if self._consecutive_failures >= self._failure_threshold:
                self._transition_to(CircuitState.OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state

        if new_state is CircuitState.CLOSED:
            self._consecutive_failures = 0
            self._successes = 0
        elif new_state is CircuitState.HALF_OPEN:
            self._successes = 0

        logger.info(f"Circuit '{self._name}': {old_state.name} -> {new_state.name}")

    def _time_until_half_open(self) -> int:
        if self._last_failure_ms is None:
            return 0
        elapsed = self._clock.now_ms() - self._last_failure_ms
        return max(0, self._reset_timeout_ms - elapsed)

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state is CircuitState.CLOSED

    @property
    def rejected_requests(self) -> int:
        return self._rejected_requests
