"""
Storage module: blob backends and the coordination-safe object store.

Components:
    - BlobBackend protocol with S3 and in-memory implementations
    - CdnReader for the read-through CDN path
    - MemoryHealthMonitor for memory gating
    - ObjectStore facade
"""

from blobcoord.storage.backends import (
    AccessPolicy,
    BackendError,
    BackendUnavailableError,
    BlobBackend,
    BlobObject,
    CircuitOpenError,
    InMemoryBlobBackend,
    ListPage,
    ObjectMetadata,
    ObjectNotFoundError,
    ObjectTooLargeError,
    PreconditionFailedError,
)
from blobcoord.storage.cdn import CdnReader, CdnResponse
from blobcoord.storage.memory import (
    MemoryHealthMonitor,
    MemorySample,
    MemoryStatus,
    StaticMemoryMonitor,
)
from blobcoord.storage.object_store import (
    ObjectStore,
    ProbeResult,
    ProbeStatus,
    WriteOutcome,
)
from blobcoord.storage.s3_backend import S3BlobBackend

__all__ = [
    "AccessPolicy",
    "BackendError",
    "BackendUnavailableError",
    "BlobBackend",
    "BlobObject",
    "CircuitOpenError",
    "InMemoryBlobBackend",
    "ListPage",
    "ObjectMetadata",
    "ObjectNotFoundError",
    "ObjectTooLargeError",
    "PreconditionFailedError",
    "CdnReader",
    "CdnResponse",
    "MemoryHealthMonitor",
    "MemorySample",
    "MemoryStatus",
    "StaticMemoryMonitor",
    "ObjectStore",
    "ProbeResult",
    "ProbeStatus",
    "WriteOutcome",
    "S3BlobBackend",
]
