"""
Blob Backend Protocol and In-Memory Implementation

Provides the narrow surface the object store needs from a remote blob
store, plus an S3-compatible in-memory implementation for development,
demos and tests:
- BlobBackend: structural protocol (PEP 544) over get/put/head/delete/list
- InMemoryBlobBackend: dict-backed store with conditional create, call
  counters and injectable failures

Backends signal outcomes the store has to branch on by raising:
- ObjectNotFoundError: the key does not exist (possibly not *yet*)
- PreconditionFailedError: a create-if-absent write found the key present
- BackendUnavailableError: credentials, network or bucket problems
  (CircuitOpenError when the store refused the call locally)
- ObjectTooLargeError: a streamed body exceeded the buffering cap

Performance Characteristics:
    - Get/Put/Head/Delete: O(1) average case
    - List page: O(n log n) sort over matching keys
"""

from __future__ import annotations

import asyncio
import hashlib
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

from blobcoord.core.types import ByteRange


# =============================================================================
# BACKEND EXCEPTIONS
# =============================================================================
class BackendError(Exception):
    """Base class for errors raised by blob backends."""

    def __init__(self, key: str, message: Optional[str] = None) -> None:
        self.key = key
        super().__init__(message or f"Backend error for {key}")


class ObjectNotFoundError(BackendError):
    """Key does not exist in the bucket."""

    def __init__(self, key: str, message: Optional[str] = None) -> None:
        super().__init__(key, message or f"Object not found: {key}")


class PreconditionFailedError(BackendError):
    """Conditional write rejected because the key already exists."""

    def __init__(self, key: str, message: Optional[str] = None) -> None:
        super().__init__(key, message or f"Precondition failed for {key}")


class BackendUnavailableError(BackendError):
    """Backend unreachable or rejecting our credentials."""


class CircuitOpenError(BackendUnavailableError):
    """Call refused locally because the backend was recently unreachable."""

    def __init__(self, key: str) -> None:
        super().__init__(key, f"Backend circuit open; skipped call for {key}")


class ObjectTooLargeError(BackendError):
    """Body exceeds the configured buffering cap."""

    def __init__(self, key: str, size_bytes: int, limit_bytes: int) -> None:
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(
            key, f"Object {key} is {size_bytes}B, above the {limit_bytes}B cap"
        )


# =============================================================================
# VALUE TYPES
# =============================================================================
class AccessPolicy(Enum):
    """Canned ACL applied on write."""
    PRIVATE = "private"
    PUBLIC_READ = "public-read"


@dataclass(frozen=True, slots=True)
class ObjectMetadata:
    """
    Immutable metadata for stored objects.

    Attributes:
        key: Object key (path in bucket).
        size_bytes: Object size in bytes.
        content_type: MIME content type, if the backend reports one.
        etag: Entity tag with surrounding quotes removed.
        last_modified: Last modification timestamp.
    """
    key: str
    size_bytes: int
    content_type: Optional[str] = None
    etag: str = ""
    last_modified: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class BlobObject:
    """Fully buffered object body with its content type."""
    key: str
    body: bytes
    content_type: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return len(self.body)


@dataclass(frozen=True, slots=True)
class ListPage:
    """One page of a prefix listing."""
    keys: tuple[str, ...]
    next_token: Optional[str] = None


# =============================================================================
# BACKEND PROTOCOL
# =============================================================================
@runtime_checkable
class BlobBackend(Protocol):
    """
    Structural protocol for remote blob stores.

    Implementations raise the exceptions defined in this module and let
    anything unexpected propagate; the object store decides what to log,
    retry or swallow.
    """

    @property
    def is_configured(self) -> bool:
        """False when bucket or credentials are missing."""
        ...

    async def get_object(
        self,
        key: str,
        byte_range: Optional[ByteRange] = None,
    ) -> BlobObject:
        ...

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str,
        access_policy: AccessPolicy = AccessPolicy.PRIVATE,
        if_none_match: Optional[str] = None,
    ) -> ObjectMetadata:
        ...

    async def head_object(self, key: str) -> ObjectMetadata:
        ...

    async def delete_object(self, key: str) -> None:
        ...

    async def list_page(
        self,
        prefix: str,
        continuation_token: Optional[str] = None,
    ) -> ListPage:
        ...


# =============================================================================
# IN-MEMORY BACKEND
# =============================================================================
@dataclass
class _StoredBlob:
    body: bytes
    content_type: str
    access_policy: AccessPolicy
    etag: str
    last_modified: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryBlobBackend:
    """
    In-memory S3-compatible blob backend.

    Every operation yields to the event loop before touching state, so
    concurrent callers interleave the way they would against a network
    store. Conditional create is atomic because the existence check and
    the insert run without a suspension point between them.

    Example:
        backend = InMemoryBlobBackend()
        backend.fail_next("get", ObjectNotFoundError("a.json"), times=2)
        backend.put_raw("a.json", b"{}", "application/json")
        assert backend.calls["get"] == 0
    """

    __slots__ = (
        "_objects",
        "_configured",
        "_latency_s",
        "_page_size",
        "_honor_if_none_match",
        "_failures",
        "calls",
    )

    def __init__(
        self,
        *,
        configured: bool = True,
        latency_s: float = 0.0,
        page_size: int = 1000,
        honor_if_none_match: bool = True,
    ) -> None:
        if page_size <= 0:
            raise ValueError(f"page_size must be > 0, got {page_size}")
        self._objects: dict[str, _StoredBlob] = {}
        self._configured = configured
        self._latency_s = latency_s
        self._page_size = page_size
        self._honor_if_none_match = honor_if_none_match
        self._failures: dict[str, deque[BaseException]] = {}
        self.calls: Counter[str] = Counter()

    @property
    def is_configured(self) -> bool:
        return self._configured

    # -------------------------------------------------------------------------
    # FAULT INJECTION
    # -------------------------------------------------------------------------

    def fail_next(self, operation: str, error: BaseException, times: int = 1) -> None:
        """
        Raise `error` on the next `times` calls of `operation`.

        Operations: get, put, head, delete, list.
        """
        queue = self._failures.setdefault(operation, deque())
        queue.extend([error] * times)

    def clear_failures(self) -> None:
        self._failures.clear()

    async def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        await asyncio.sleep(self._latency_s)
        queue = self._failures.get(operation)
        if queue:
            raise queue.popleft()

    # -------------------------------------------------------------------------
    # DIRECT ACCESS (no counters, no suspension)
    # -------------------------------------------------------------------------

    def put_raw(
        self,
        key: str,
        body: bytes | str,
        content_type: str = "application/octet-stream",
    ) -> None:
        data = body.encode("utf-8") if isinstance(body, str) else body
        self._objects[key] = _StoredBlob(
            body=data,
            content_type=content_type,
            access_policy=AccessPolicy.PRIVATE,
            etag=hashlib.md5(data).hexdigest(),
        )

    def get_raw(self, key: str) -> Optional[bytes]:
        blob = self._objects.get(key)
        return blob.body if blob else None

    def access_policy_of(self, key: str) -> Optional[AccessPolicy]:
        blob = self._objects.get(key)
        return blob.access_policy if blob else None

    def keys(self) -> list[str]:
        return sorted(self._objects)

    # -------------------------------------------------------------------------
    # PROTOCOL OPERATIONS
    # -------------------------------------------------------------------------

    async def get_object(
        self,
        key: str,
        byte_range: Optional[ByteRange] = None,
    ) -> BlobObject:
        await self._enter("get")
        blob = self._objects.get(key)
        if blob is None:
            raise ObjectNotFoundError(key)
        body = blob.body
        if byte_range is not None:
            body = body[byte_range.start:byte_range.end + 1]
        return BlobObject(key=key, body=body, content_type=blob.content_type)

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str,
        access_policy: AccessPolicy = AccessPolicy.PRIVATE,
        if_none_match: Optional[str] = None,
    ) -> ObjectMetadata:
        await self._enter("put")
        if if_none_match == "*" and self._honor_if_none_match and key in self._objects:
            raise PreconditionFailedError(key)
        blob = _StoredBlob(
            body=body,
            content_type=content_type,
            access_policy=access_policy,
            etag=hashlib.md5(body).hexdigest(),
        )
        self._objects[key] = blob
        return ObjectMetadata(
            key=key,
            size_bytes=len(body),
            content_type=content_type,
            etag=blob.etag,
            last_modified=blob.last_modified,
        )

    async def head_object(self, key: str) -> ObjectMetadata:
        await self._enter("head")
        blob = self._objects.get(key)
        if blob is None:
            raise ObjectNotFoundError(key)
        return ObjectMetadata(
            key=key,
            size_bytes=len(blob.body),
            content_type=blob.content_type,
            etag=blob.etag,
            last_modified=blob.last_modified,
        )

    async def delete_object(self, key: str) -> None:
        await self._enter("delete")
        self._objects.pop(key, None)

    async def list_page(
        self,
        prefix: str,
        continuation_token: Optional[str] = None,
    ) -> ListPage:
        await self._enter("list")
        keys = sorted(k for k in self._objects if k.startswith(prefix))

        start_idx = 0
        if continuation_token:
            try:
                start_idx = int(continuation_token)
            except ValueError:
                start_idx = 0

        end_idx = start_idx + self._page_size
        next_token = str(end_idx) if end_idx < len(keys) else None
        return ListPage(keys=tuple(keys[start_idx:end_idx]), next_token=next_token)
