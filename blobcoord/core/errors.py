"""
Error Hierarchy for the Storage-Coordination Core

Design Principles:
- Expected outcomes (absent object, lost lock race) are values, not errors
- Errors are raised only where a caller must react: oversized payloads,
  memory pressure on writes, failed writes and invalid rate-limit configs
- Carry full error context for debugging and audit trails

Each error type includes:
- Unique error code for programmatic handling
- Human-readable message for logging
- Optional cause chain for root cause analysis
- Timestamp for correlation with log lines

Usage:
    try:
        await store.write_binary(key, data, "image/png")
    except StorageError as e:
        if e.code is ErrorCode.STORAGE_MEMORY_PRESSURE:
            schedule_for_later(key)
        else:
            raise
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by subsystem:
    - 1xxx: Storage errors
    - 2xxx: Rate limiting errors
    - 3xxx: Locking errors
    - 6xxx: Reliability errors
    - 9xxx: Internal/unknown errors
    """

    # Storage errors (1xxx)
    STORAGE_OVERSIZED_PAYLOAD = 1001
    STORAGE_MEMORY_PRESSURE = 1002
    STORAGE_WRITE_FAILED = 1003
    STORAGE_NOT_CONFIGURED = 1004
    STORAGE_READ_ONLY = 1005

    # Rate limiting errors (2xxx)
    RATE_LIMIT_INVALID_CONFIG = 2001

    # Locking errors (3xxx)
    LOCK_NOT_ACQUIRED = 3001

    # Reliability errors (6xxx)
    RELIABILITY_RETRY_EXHAUSTED = 6002
    RELIABILITY_TIMEOUT = 6003

    # Internal errors (9xxx)
    INTERNAL_ERROR = 9001
    INTERNAL_CONFIGURATION_ERROR = 9002


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class CoordinationError(Exception):
    """
    Base class for all storage-coordination errors.

    Provides common infrastructure for error handling:
    - Unique error ID for log correlation
    - Error code for programmatic handling
    - Timestamp (epoch ms)
    - Cause chain for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp_ms: int = field(default_factory=_now_ms)
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Initialize Exception base class with message
        super().__init__(self.message)
        if self.cause is not None:
            self.__cause__ = self.cause

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize error to dictionary for structured logging.

        Excludes the cause stack trace.
        """
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp_ms": self.timestamp_ms,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# STORAGE ERRORS
# =============================================================================
@dataclass
class StorageError(CoordinationError):
    """
    Errors surfaced by the object store facade.

    Reads never raise these; they decline with None. Writes raise when
    the caller has to know the payload was not persisted.
    """

    @classmethod
    def oversized_payload(
        cls,
        key: str,
        size_bytes: int,
        limit_bytes: int,
    ) -> StorageError:
        """Payload exceeds the absolute write ceiling."""
        return cls(
            code=ErrorCode.STORAGE_OVERSIZED_PAYLOAD,
            message=(
                f"Refusing to write {key}: {size_bytes}B exceeds "
                f"the {limit_bytes}B binary write ceiling"
            ),
            context={"key": key, "size_bytes": size_bytes, "limit_bytes": limit_bytes},
        )

    @classmethod
    def memory_pressure(
        cls,
        key: str,
        size_bytes: int,
        threshold_bytes: int,
    ) -> StorageError:
        """Process has no memory headroom for a large write."""
        return cls(
            code=ErrorCode.STORAGE_MEMORY_PRESSURE,
            message=(
                f"Insufficient memory headroom to write {key} "
                f"({size_bytes}B > {threshold_bytes}B soft threshold)"
            ),
            context={
                "key": key,
                "size_bytes": size_bytes,
                "threshold_bytes": threshold_bytes,
            },
        )

    @classmethod
    def write_failed(
        cls,
        key: str,
        cause: Optional[BaseException] = None,
    ) -> StorageError:
        """Backend rejected or failed the write."""
        return cls(
            code=ErrorCode.STORAGE_WRITE_FAILED,
            message=f"Failed to write {key}: {cause}",
            cause=cause,
            context={"key": key},
        )

    @classmethod
    def not_configured(cls, missing: list[str]) -> StorageError:
        """Backend credentials or bucket are missing."""
        return cls(
            code=ErrorCode.STORAGE_NOT_CONFIGURED,
            message=f"Object store is not configured (missing: {', '.join(missing)})",
            context={"missing": missing},
        )

    @classmethod
    def read_only(cls, key: str) -> StorageError:
        """Write attempted while the store is in read-only mode."""
        return cls(
            code=ErrorCode.STORAGE_READ_ONLY,
            message=f"Object store is read-only; write to {key} rejected",
            context={"key": key},
        )


# =============================================================================
# RATE LIMITING ERRORS
# =============================================================================
@dataclass
class RateLimitError(CoordinationError):
    """Errors from the in-process rate limiter."""

    @classmethod
    def invalid_config(cls, field_name: str, value: Any) -> RateLimitError:
        """A limit parameter is non-positive."""
        return cls(
            code=ErrorCode.RATE_LIMIT_INVALID_CONFIG,
            message=f"Invalid {field_name}: {value}. Must be greater than 0.",
            context={"field": field_name, "value": value},
        )


InvalidConfig = RateLimitError


# =============================================================================
# LOCKING ERRORS
# =============================================================================
@dataclass
class LockError(CoordinationError):
    """Errors from the advisory distributed lock."""

    @classmethod
    def not_acquired(cls, lock_key: str, instance_id: str) -> LockError:
        """Lock is held by another instance or the acquire lost a race."""
        return cls(
            code=ErrorCode.LOCK_NOT_ACQUIRED,
            message=f"Lock '{lock_key}' not acquired by {instance_id}",
            context={"lock_key": lock_key, "instance_id": instance_id},
        )


LockNotAcquiredError = LockError


# =============================================================================
# RELIABILITY ERRORS
# =============================================================================
@dataclass
class ReliabilityError(CoordinationError):
    """
    Errors from the reliability subsystem (retries, timeouts).
    """

    @classmethod
    def retry_exhausted(
        cls,
        attempts: int,
        last_error: str,
        cause: Optional[BaseException] = None,
    ) -> ReliabilityError:
        """All retry attempts exhausted."""
        return cls(
            code=ErrorCode.RELIABILITY_RETRY_EXHAUSTED,
            message=f"Retry exhausted after {attempts} attempts: {last_error}",
            cause=cause,
            context={"attempts": attempts, "last_error": last_error},
        )

    @classmethod
    def timeout(
        cls,
        operation: str,
        timeout_ms: int,
    ) -> ReliabilityError:
        """Operation timed out."""
        return cls(
            code=ErrorCode.RELIABILITY_TIMEOUT,
            message=f"Operation '{operation}' timed out after {timeout_ms}ms",
            context={"operation": operation, "timeout_ms": timeout_ms},
        )
