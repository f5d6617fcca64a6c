"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for the coordination core:
- Result/Either monads for expected failures
- Injected clocks for deterministic tests
- Error hierarchy with classmethod constructors
- Configuration management with validation
"""

from blobcoord.core.types import (
    Result,
    Ok,
    Err,
    ByteRange,
    Clock,
    SystemClock,
    MonotonicClock,
    ManualClock,
)
from blobcoord.core.errors import (
    ErrorCode,
    CoordinationError,
    StorageError,
    RateLimitError,
    InvalidConfig,
    LockError,
    LockNotAcquiredError,
    ReliabilityError,
)
from blobcoord.core.config import CoordinationConfig, MemoryConfig, ObjectStoreConfig

__all__ = [
    "Result",
    "Ok",
    "Err",
    "ByteRange",
    "Clock",
    "SystemClock",
    "MonotonicClock",
    "ManualClock",
    "ErrorCode",
    "CoordinationError",
    "StorageError",
    "RateLimitError",
    "InvalidConfig",
    "LockError",
    "LockNotAcquiredError",
    "ReliabilityError",
    "CoordinationConfig",
    "MemoryConfig",
    "ObjectStoreConfig",
]
