"""
Coordination-Safe Object Store
==============================

Facade over a BlobBackend that every caller needing durable state goes
through. It owns retry, request coalescing, size and memory gating, the
optional CDN read path, and the read-only / dry-run switches.

Failure Semantics:
------------------
| Situation                          | read_object   | write_object                |
|------------------------------------|---------------|-----------------------------|
| Not found (after retry budget)     | None, DEBUG   | n/a                         |
| Payload above absolute ceiling     | n/a           | raises oversized_payload    |
| Memory pressure, large payload     | None          | raises memory_pressure (1)  |
| Read-only mode                     | reads normally| WriteOutcome.SKIPPED        |
| Dry run                            | None, logged  | WriteOutcome.SKIPPED, logged|
| Backend unconfigured / unreachable | None, logged once | SKIPPED / raises write_failed |
| Circuit open (recently unreachable) | None, no round trip | raises write_failed       |
| Conditional create lost            | n/a           | WriteOutcome.PRECONDITION_FAILED |
| Other backend failure              | None, WARNING | raises write_failed, ERROR  |

(1) unless the caller is a privileged background updater.

After an unreachable backend, the circuit breaker opens and every
operation degrades to its null result (None, [], False) without touching
the network until the reset timeout lets a trial call through.

Consistency:
------------
Read-after-write is best effort. The CDN path may serve stale content,
so JSON keys never use it and probe_object always reads the bucket.

Concurrency:
------------
Single-threaded asyncio. Concurrent non-range reads of one key share one
task; the coalescing map is an instance field and the entry is removed
when the task finishes, whatever its outcome.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from blobcoord.core.config import ObjectStoreConfig
from blobcoord.core.errors import StorageError
from blobcoord.core.types import ByteRange
from blobcoord.observability.logging import log_once
from blobcoord.reliability.circuit_breaker import CircuitBreaker
from blobcoord.reliability.retry import RetryPolicy, SleepFn, retry_with_backoff
from blobcoord.storage.backends import (
    AccessPolicy,
    BackendUnavailableError,
    BlobBackend,
    CircuitOpenError,
    ObjectMetadata,
    ObjectNotFoundError,
    ObjectTooLargeError,
    PreconditionFailedError,
)
from blobcoord.storage.cdn import CdnReader
from blobcoord.storage.content_types import (
    guess_content_type,
    is_binary_key,
    is_json_key,
    is_opengraph_image_key,
    is_text_content_type,
)
from blobcoord.storage.memory import MemoryHealthMonitor

logger = logging.getLogger(__name__)

T = TypeVar("T")

Payload = Union[bytes, str]

_NOT_CONFIGURED_LOG_KEY = "object-store:not-configured"
_UNREACHABLE_LOG_KEY = "object-store:unreachable"


# =============================================================================
# OUTCOME TYPES
# =============================================================================
class WriteOutcome(Enum):
    """Result of a write that did not raise."""
    WRITTEN = auto()
    SKIPPED = auto()              # read-only, dry run or unconfigured
    PRECONDITION_FAILED = auto()  # create-if-absent found the key present


class ProbeStatus(Enum):
    FOUND = auto()
    NOT_FOUND = auto()
    UNREACHABLE = auto()


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """
    Direct read that keeps "absent" and "could not tell" apart.

    payload is set only when status is FOUND.
    """
    status: ProbeStatus
    payload: Optional[Payload] = None

    @property
    def found(self) -> bool:
        return self.status is ProbeStatus.FOUND


# =============================================================================
# OBJECT STORE
# =============================================================================
class ObjectStore:
    """
    Concurrency-safe object store over a remote blob backend.

    Example:
        >>> store = ObjectStore(InMemoryBlobBackend())
        >>> await store.write_json("state/a.json", {"n": 1})
        >>> await store.read_json("state/a.json")
        {'n': 1}
    """

    __slots__ = (
        "_backend",
        "_config",
        "_memory",
        "_cdn",
        "_owns_cdn",
        "_retry_policy",
        "_circuit",
        "_sleep",
        "_inflight",
    )

    def __init__(
        self,
        backend: BlobBackend,
        config: Optional[ObjectStoreConfig] = None,
        *,
        memory: Optional[MemoryHealthMonitor] = None,
        cdn: Optional[CdnReader] = None,
        retry_policy: Optional[RetryPolicy] = None,
        circuit: Optional[CircuitBreaker] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """
        Args:
            backend: Remote blob store.
            config: Switches, thresholds and CDN URL (defaults if None).
            memory: Memory headroom signal.
            cdn: CDN reader; built from config.cdn_base_url when omitted.
            retry_policy: Backoff for transient not-found reads.
            circuit: Breaker that opens on an unreachable backend.
            sleep: Awaitable sleep taking seconds (injected by tests).
        """
        self._backend = backend
        self._config = config or ObjectStoreConfig()
        self._memory = memory or MemoryHealthMonitor()
        self._owns_cdn = cdn is None and self._config.cdn_enabled
        if self._owns_cdn:
            cdn = CdnReader(
                self._config.cdn_base_url,
                timeout_ms=self._config.cdn_timeout_ms,
                max_bytes=self._config.max_read_bytes,
            )
        self._cdn = cdn
        self._retry_policy = retry_policy or RetryPolicy.for_reads()
        self._circuit = circuit or CircuitBreaker("object-store")
        self._sleep = sleep
        self._inflight: dict[str, asyncio.Task[Optional[Payload]]] = {}

    @property
    def config(self) -> ObjectStoreConfig:
        return self._config

    @property
    def circuit(self) -> CircuitBreaker:
        return self._circuit

    @property
    def inflight_reads(self) -> int:
        """Number of coalesced reads currently in flight."""
        return len(self._inflight)

    async def close(self) -> None:
        if self._owns_cdn and self._cdn is not None:
            await self._cdn.close()

    async def __aenter__(self) -> ObjectStore:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _check_configured(self) -> bool:
        if self._backend.is_configured:
            return True
        log_once(
            logger,
            _NOT_CONFIGURED_LOG_KEY,
            "Object store is not configured (set S3_BUCKET, S3_ACCESS_KEY_ID and "
            "S3_SECRET_ACCESS_KEY); reads return None and writes are skipped",
        )
        return False

    def _report_unreachable(self, key: str, error: BaseException) -> None:
        log_once(
            logger,
            _UNREACHABLE_LOG_KEY,
            f"Object store unreachable (first seen on {key}): {error}",
        )

    async def _call_backend(self, key: str, call: Callable[[], Awaitable[T]]) -> T:
        """
        Run one backend call through the circuit breaker.

        Raises:
            CircuitOpenError: The breaker refused the call.
        """
        if not self._circuit.allow_request():
            raise CircuitOpenError(key)
        try:
            result = await call()
        except BackendUnavailableError:
            self._circuit.record_failure()
            raise
        except (ObjectNotFoundError, PreconditionFailedError):
            self._circuit.record_success()
            raise
        self._circuit.record_success()
        return result

    # -------------------------------------------------------------------------
    # READS
    # -------------------------------------------------------------------------

    async def read_object(
        self,
        key: str,
        byte_range: Optional[ByteRange] = None,
    ) -> Optional[Payload]:
        """
        Read an object, or None if it is absent or cannot be read.

        Non-range reads of the same key are coalesced into one fetch.
        Text and JSON bodies come back as str, everything else as bytes.
        Range reads always return bytes.
        """
        if byte_range is not None:
            return await self._read(key, byte_range)

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._read_coalesced(key))
            self._inflight[key] = task
        else:
            logger.debug(f"Joining in-flight read for {key}")
        return await asyncio.shield(task)

    async def _read_coalesced(self, key: str) -> Optional[Payload]:
        try:
            return await self._read(key, None)
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    async def _read(self, key: str, byte_range: Optional[ByteRange]) -> Optional[Payload]:
        if not self._check_configured():
            return None

        bucket_reachable = True
        if byte_range is None or (is_binary_key(key) and self._memory.under_pressure()):
            try:
                size = await self._probe_size(key)
            except BackendUnavailableError as e:
                self._report_unreachable(key, e)
                bucket_reachable = False
                size = None
            if size is not None and size > self._config.max_read_bytes:
                logger.warning(
                    f"Declining read of {key}: {size}B exceeds "
                    f"{self._config.max_read_bytes}B read limit"
                )
                return None

        if self._cdn is not None and byte_range is None and not is_json_key(key):
            try:
                hit = await self._cdn.fetch(key)
            except ObjectTooLargeError as e:
                logger.warning(f"Declining CDN read of {key}: {e}")
                return None
            if hit is not None:
                return self._decode(key, hit.body, hit.content_type)
            logger.debug(f"CDN miss for {key}, falling back to bucket")

        if self._config.dry_run:
            logger.info(f"[DRY RUN] Would read {key} from bucket")
            return None

        if not bucket_reachable:
            return None

        result = await retry_with_backoff(
            lambda: self._call_backend(key, lambda: self._backend.get_object(key, byte_range)),
            self._retry_policy,
            retry_on=(ObjectNotFoundError,),
            sleep=self._sleep,
        )
        if result.is_ok():
            blob = result.unwrap()
            if byte_range is not None:
                return blob.body
            return self._decode(key, blob.body, blob.content_type)

        cause = result.error.cause
        if isinstance(cause, ObjectNotFoundError):
            logger.debug(f"{key} not found after {self._retry_policy.max_attempts} attempts")
        elif isinstance(cause, BackendUnavailableError):
            self._report_unreachable(key, cause)
        else:
            logger.warning(f"Failed to read {key}: {cause}")
        return None

    async def _probe_size(self, key: str) -> Optional[int]:
        """
        Declared size of key, or None if the probe fails.

        Raises:
            BackendUnavailableError: The bucket could not be reached.
        """
        try:
            meta = await self._call_backend(key, lambda: self._backend.head_object(key))
            return meta.size_bytes
        except ObjectNotFoundError:
            return None
        except BackendUnavailableError:
            raise
        except Exception as e:
            logger.debug(f"Size probe for {key} failed: {e}")
            return None

    @staticmethod
    def _decode(key: str, body: bytes, content_type: Optional[str]) -> Payload:
        if is_text_content_type(content_type or guess_content_type(key)):
            try:
                return body.decode("utf-8")
            except UnicodeDecodeError:
                logger.debug(f"{key} declared as text but is not UTF-8; returning bytes")
        return body

    async def probe_object(self, key: str, *, retry: bool = True) -> ProbeResult:
        """
        Read key straight from the bucket, keeping absence and failure apart.

        Not-found is retried with the read policy unless retry is False.
        Skips the CDN, the coalescing map and the size gate.
        """
        if not self._check_configured():
            return ProbeResult(ProbeStatus.UNREACHABLE)

        result = await retry_with_backoff(
            lambda: self._call_backend(key, lambda: self._backend.get_object(key)),
            self._retry_policy if retry else RetryPolicy.no_retry(),
            retry_on=(ObjectNotFoundError,),
            sleep=self._sleep,
        )
        if result.is_ok():
            blob = result.unwrap()
            return ProbeResult(ProbeStatus.FOUND, self._decode(key, blob.body, blob.content_type))

        cause = result.error.cause
        if isinstance(cause, ObjectNotFoundError):
            return ProbeResult(ProbeStatus.NOT_FOUND)
        if isinstance(cause, BackendUnavailableError):
            self._report_unreachable(key, cause)
        else:
            logger.warning(f"Probe of {key} could not reach the bucket: {cause}")
        return ProbeResult(ProbeStatus.UNREACHABLE)

    # -------------------------------------------------------------------------
    # WRITES
    # -------------------------------------------------------------------------

    async def write_object(
        self,
        key: str,
        payload: Payload,
        content_type: Optional[str] = None,
        access_policy: AccessPolicy = AccessPolicy.PRIVATE,
        *,
        if_none_match: Optional[str] = None,
        privileged: Optional[bool] = None,
    ) -> WriteOutcome:
        """
        Write (full replace) an object.

        Args:
            key: Object key.
            payload: Body; str is encoded as UTF-8.
            content_type: MIME type, inferred from the key when None.
            access_policy: Canned ACL.
            if_none_match: "*" for atomic create-if-absent.
            privileged: Override the configured updater privilege, which
                bypasses the soft memory threshold only.

        Raises:
            StorageError: oversized_payload, memory_pressure or write_failed.
        """
        body = payload.encode("utf-8") if isinstance(payload, str) else payload
        size = len(body)

        if size > self._config.max_binary_write_bytes:
            logger.error(
                f"Refusing to write {key}: {size}B exceeds "
                f"{self._config.max_binary_write_bytes}B ceiling"
            )
            raise StorageError.oversized_payload(key, size, self._config.max_binary_write_bytes)

        threshold = (
            self._config.opengraph_threshold_bytes
            if is_opengraph_image_key(key)
            else self._config.small_payload_threshold_bytes
        )
        is_privileged = self._config.privileged_updater if privileged is None else privileged
        if size > threshold and not is_privileged and self._memory.under_pressure():
            logger.warning(f"Insufficient memory headroom to write {key} ({size}B)")
            raise StorageError.memory_pressure(key, size, threshold)

        if self._config.read_only:
            logger.debug(f"Read-only mode: skipping write of {key}")
            return WriteOutcome.SKIPPED

        if self._config.dry_run:
            logger.info(f"[DRY RUN] Would write {key} ({size}B)")
            return WriteOutcome.SKIPPED

        if not self._check_configured():
            return WriteOutcome.SKIPPED

        try:
            await self._call_backend(key, lambda: self._backend.put_object(
                key,
                body,
                content_type or guess_content_type(key),
                access_policy,
                if_none_match,
            ))
        except PreconditionFailedError:
            logger.debug(f"Conditional create of {key} lost: key already exists")
            return WriteOutcome.PRECONDITION_FAILED
        except BackendUnavailableError as e:
            self._report_unreachable(key, e)
            raise StorageError.write_failed(key, e) from e
        except Exception as e:
            logger.error(f"Failed to write {key}: {e}")
            raise StorageError.write_failed(key, e) from e

        logger.debug(f"Wrote {key} ({size}B)")
        return WriteOutcome.WRITTEN

    # -------------------------------------------------------------------------
    # BEST-EFFORT OPERATIONS
    # -------------------------------------------------------------------------

    async def list_objects(self, prefix: str) -> list[str]:
        """All keys under prefix; [] if the listing fails."""
        if not self._check_configured():
            return []

        keys: list[str] = []
        token: Optional[str] = None
        try:
            while True:
                page = await self._call_backend(
                    prefix, lambda: self._backend.list_page(prefix, token)
                )
                keys.extend(page.keys)
                if not page.next_token:
                    break
                token = page.next_token
        except BackendUnavailableError as e:
            self._report_unreachable(prefix, e)
            return []
        except Exception as e:
            logger.warning(f"Failed to list {prefix!r}: {e}")
            return []
        return keys

    async def delete_object(self, key: str) -> bool:
        """Delete key. False if skipped or the delete failed."""
        if self._config.read_only or self._config.dry_run:
            logger.debug(f"Skipping delete of {key} (read-only or dry run)")
            return False
        if not self._check_configured():
            return False
        try:
            await self._call_backend(key, lambda: self._backend.delete_object(key))
            return True
        except BackendUnavailableError as e:
            self._report_unreachable(key, e)
        except Exception as e:
            logger.warning(f"Failed to delete {key}: {e}")
        return False

    async def get_metadata(self, key: str) -> Optional[ObjectMetadata]:
        if not self._check_configured():
            return None
        try:
            return await self._call_backend(key, lambda: self._backend.head_object(key))
        except ObjectNotFoundError:
            return None
        except BackendUnavailableError as e:
            self._report_unreachable(key, e)
        except Exception as e:
            logger.warning(f"Failed to get metadata for {key}: {e}")
        return None

    async def exists_object(self, key: str) -> bool:
        return await self.get_metadata(key) is not None

    # -------------------------------------------------------------------------
    # JSON AND BINARY HELPERS
    # -------------------------------------------------------------------------

    async def read_json(self, key: str) -> Any:
        """Parsed JSON at key, or None if absent or malformed."""
        raw = await self.read_object(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Malformed JSON at {key}: {e}")
            return None

    async def write_json(
        self,
        key: str,
        data: Any,
        *,
        if_none_match: Optional[str] = None,
    ) -> WriteOutcome:
        """Write pretty-printed, publicly readable JSON."""
        return await self.write_object(
            key,
            json.dumps(data, indent=2),
            "application/json",
            AccessPolicy.PUBLIC_READ,
            if_none_match=if_none_match,
        )

    async def read_binary(self, key: str) -> Optional[bytes]:
        raw = await self.read_object(key)
        if isinstance(raw, str):
            return raw.encode("utf-8")
        return raw

    async def write_binary(
        self,
        key: str,
        data: bytes,
        content_type: str,
    ) -> WriteOutcome:
        """Write a publicly readable binary asset."""
        return await self.write_object(key, data, content_type, AccessPolicy.PUBLIC_READ)
