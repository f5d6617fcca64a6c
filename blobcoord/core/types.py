"""
Core Type Definitions for the Storage-Coordination Core

Implements Result/Either monads for explicit control flow where a failure
is an expected outcome (retry exhaustion, lost races), plus the small value
types shared by the object store, the lock and the rate limiter.

Design Principles:
- Expected outcomes are values (Result, Optional), programming errors raise
- Time is injected through a Clock so that tests can drive it by hand
- Value objects are frozen and slotted

Complexity: O(1) for all type operations
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import (
    Any,
    Generic,
    Literal,
    Protocol,
    TypeVar,
    Union,
    runtime_checkable,
)

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type


# =============================================================================
# RESULT MONAD
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Immutable container for successful computation results.
    """

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """Extract value. Safe to call after is_ok() check."""
        return self.value

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Carries full error context for exhaustive handling.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Attempting to unwrap an error is a programming error.

        Raises:
            RuntimeError: Always, with error context
        """
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# BYTE RANGE FOR PARTIAL OBJECT READS
# =============================================================================
@dataclass(frozen=True, slots=True)
class ByteRange:
    """
    Represents a byte range for partial object reads.

    Maps onto the HTTP Range header sent to the object store.
    Range reads are never coalesced and skip the size probe.

    Invariant: 0 <= start <= end
    """

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError(f"start must be >= 0, got {self.start}")
        if self.end < self.start:
            raise ValueError(f"end ({self.end}) must be >= start ({self.start})")

    @property
    def length(self) -> int:
        """Number of bytes in range (inclusive)."""
        return self.end - self.start + 1

    def to_http_header(self) -> str:
        """Convert to HTTP Range header value."""
        return f"bytes={self.start}-{self.end}"

    @classmethod
    def from_http_header(cls, header: str) -> Result[ByteRange, str]:
        """
        Parse HTTP Range header.

        Supports format: bytes=START-END
        """
        if not header.startswith("bytes="):
            return Err(f"Invalid range header format: {header}")
        try:
            start_str, end_str = header[6:].split("-")
            return Ok(cls(start=int(start_str), end=int(end_str)))
        except (ValueError, IndexError) as e:
            return Err(f"Failed to parse range header: {e}")

    def __repr__(self) -> str:
        return f"ByteRange({self.start}-{self.end})"


# =============================================================================
# CLOCKS
# =============================================================================
@runtime_checkable
class Clock(Protocol):
    """Millisecond time source."""

    def now_ms(self) -> int:
        ...


class SystemClock:
    """
    Wall-clock milliseconds since the Unix epoch.

    Used for lock entries, whose timestamps are compared across processes.
    """

    __slots__ = ()

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000


class MonotonicClock:
    """
    Monotonic milliseconds, immune to wall-clock adjustments.

    Only meaningful within one process; used by the rate limiter.
    """

    __slots__ = ()

    def now_ms(self) -> int:
        return time.monotonic_ns() // 1_000_000


class ManualClock:
    """
    Hand-driven clock for deterministic tests and demos.

    Usage:
        clock = ManualClock(start_ms=0)
        clock.advance(61_000)
    """

    __slots__ = ("_now_ms",)

    def __init__(self, start_ms: int = 0) -> None:
        self._now_ms = start_ms

    def now_ms(self) -> int:
        return self._now_ms

    def advance(self, ms: int) -> None:
        if ms < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now_ms += ms

    def set(self, now_ms: int) -> None:
        self._now_ms = now_ms
