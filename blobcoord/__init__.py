"""
Storage-Coordination Core

A concurrency-safe layer over a remote, eventually-consistent S3-compatible
object store, plus two services built on it:
- ObjectStore: retry with backoff, request coalescing, size and memory
  gating, a read-through CDN path, read-only and dry-run switches
- DistributedLock: advisory lock built on conditional create with
  read-back verification and stale takeover
- RateLimiter: per-process sliding-log limiter keyed by (store, client)

Every service takes its clock, sleep and backend by injection so that
tests run against fakes with time driven by hand.
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
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
from blobcoord.reliability.circuit_breaker import CircuitBreaker, CircuitState
from blobcoord.reliability.retry import RetryPolicy, retry_with_backoff

# Storage exports
from blobcoord.storage import (
    AccessPolicy,
    CdnReader,
    InMemoryBlobBackend,
    MemoryHealthMonitor,
    ObjectMetadata,
    ObjectStore,
    ProbeResult,
    ProbeStatus,
    S3BlobBackend,
    WriteOutcome,
)

# Coordination exports
from blobcoord.locking import DistributedLock, LockEntry, make_instance_id
from blobcoord.ratelimit import (
    API_ENDPOINT_STORE_NAME,
    DEFAULT_API_ENDPOINT_LIMIT_CONFIG,
    DEFAULT_OPENGRAPH_FETCH_LIMIT_CONFIG,
    OPENGRAPH_FETCH_CONTEXT_ID,
    OPENGRAPH_FETCH_STORE_NAME,
    RateLimitConfig,
    RateLimiter,
)

__all__ = [
    # Version
    "__version__",
    # Result monad and clocks
    "Result",
    "Ok",
    "Err",
    "ByteRange",
    "Clock",
    "SystemClock",
    "MonotonicClock",
    "ManualClock",
    # Errors
    "ErrorCode",
    "CoordinationError",
    "StorageError",
    "RateLimitError",
    "InvalidConfig",
    "LockError",
    "LockNotAcquiredError",
    "ReliabilityError",
    # Config
    "CoordinationConfig",
    "MemoryConfig",
    "ObjectStoreConfig",
    "CircuitBreaker",
    "CircuitState",
    "RetryPolicy",
    "retry_with_backoff",
    # Storage
    "AccessPolicy",
    "CdnReader",
    "InMemoryBlobBackend",
    "MemoryHealthMonitor",
    "ObjectMetadata",
    "ObjectStore",
    "ProbeResult",
    "ProbeStatus",
    "S3BlobBackend",
    "WriteOutcome",
    # Locking
    "DistributedLock",
    "LockEntry",
    "make_instance_id",
    # Rate limiting
    "API_ENDPOINT_STORE_NAME",
    "DEFAULT_API_ENDPOINT_LIMIT_CONFIG",
    "DEFAULT_OPENGRAPH_FETCH_LIMIT_CONFIG",
    "OPENGRAPH_FETCH_CONTEXT_ID",
    "OPENGRAPH_FETCH_STORE_NAME",
    "RateLimitConfig",
    "RateLimiter",
]
