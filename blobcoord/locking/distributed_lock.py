"""
Distributed Lock: Advisory Mutual Exclusion over an Object Store

Provides a best-effort lock shared by independent processes that can
only coordinate through a blob store:
- Conditional create (If-None-Match: *) as the only atomic primitive
- Read-back verification to catch stores whose conditional create is
  weaker than advertised
- TTL-based stale takeover for holders that crashed
- Owner-checked release

Algorithm (acquire):
    1. Read locks/{key}.json
    2. Live entry (age < ttl) -> False
    3. Stale entry -> best-effort delete
    4. Create-if-absent a fresh entry stamped with now()
    5. "Already exists" -> False
    6. Read back; True only if instance id and timestamp both match

Limitations:
    This is NOT a consensus-backed lock. Under adversarial timing two
    holders can briefly overlap (clock skew between processes, a stale
    takeover racing a slow holder). Callers must keep the protected work
    idempotent. Timestamps are wall-clock epoch milliseconds because they
    are compared across processes.

State machine per key:
    Unlocked -> Held(owner, acquired_at + ttl) -> Unlocked
    Stale is Held with age >= ttl; acquiring it needs delete-then-create.
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from blobcoord.core import constants as C
from blobcoord.core.errors import LockNotAcquiredError
from blobcoord.core.types import Clock, SystemClock
from blobcoord.locking.lock_store import LockStore, ObjectLockStore, lock_path
from blobcoord.observability.logging import log_context
from blobcoord.storage.object_store import ObjectStore, ProbeStatus, WriteOutcome

logger = logging.getLogger(__name__)


def make_instance_id(clock: Optional[Clock] = None) -> str:
    """Identifier for this process: instance-{pid}-{epoch ms}."""
    return f"instance-{os.getpid()}-{(clock or SystemClock()).now_ms()}"


# =============================================================================
# LOCK ENTRY
# =============================================================================
@dataclass(frozen=True, slots=True)
class LockEntry:
    """
    Lock record stored at locks/{lock_key}.json.

    Wire format: {"instanceId", "acquiredAt", "operation", "ttlMs"}
    """
    instance_id: str
    acquired_at: int
    operation: str
    ttl_ms: int

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.acquired_at

    def is_stale(self, now_ms: int, ttl_ms: Optional[int] = None) -> bool:
        return self.age_ms(now_ms) >= (self.ttl_ms if ttl_ms is None else ttl_ms)

    def to_json(self) -> str:
        return json.dumps({
            "instanceId": self.instance_id,
            "acquiredAt": self.acquired_at,
            "operation": self.operation,
            "ttlMs": self.ttl_ms,
        })

    @classmethod
    def from_payload(cls, payload: Any) -> Optional[LockEntry]:
        """Parse a stored entry; None if it is not a well-formed entry."""
        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError:
                return None
        try:
            data = json.loads(payload) if isinstance(payload, str) else payload
            return cls(
                instance_id=str(data["instanceId"]),
                acquired_at=int(data["acquiredAt"]),
                operation=str(data.get("operation", "")),
                ttl_ms=int(data["ttlMs"]),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            return None


# =============================================================================
# DISTRIBUTED LOCK
# =============================================================================
class DistributedLock:
    """
    Advisory distributed lock.

    Usage:
        lock = DistributedLock.over(store)
        me = make_instance_id()

        async with lock.hold("export-job", me, "nightly-export"):
            await run_export()

        # Or manual acquire/release
        if await lock.acquire("export-job", me, "nightly-export", ttl_ms=60_000):
            try:
                await run_export()
            finally:
                await lock.release("export-job", me)

    acquire never raises; any unexpected failure is a lost acquisition.
    """

    __slots__ = ("_store", "_clock", "_default_ttl_ms")

    def __init__(
        self,
        store: LockStore,
        clock: Optional[Clock] = None,
        default_ttl_ms: int = C.DEFAULT_LOCK_TTL_MS,
    ) -> None:
        if default_ttl_ms <= 0:
            raise ValueError(f"default_ttl_ms must be > 0, got {default_ttl_ms}")
        self._store = store
        self._clock = clock or SystemClock()
        self._default_ttl_ms = default_ttl_ms

    @classmethod
    def over(
        cls,
        store: ObjectStore,
        clock: Optional[Clock] = None,
        default_ttl_ms: int = C.DEFAULT_LOCK_TTL_MS,
    ) -> DistributedLock:
        """Lock backed by an ObjectStore."""
        return cls(ObjectLockStore(store), clock, default_ttl_ms)

    async def acquire(
        self,
        lock_key: str,
        instance_id: str,
        operation: str,
        ttl_ms: Optional[int] = None,
    ) -> bool:
        """
        Try once to take the lock.

        Returns:
            True if this instance now holds the lock, False otherwise
        """
        ttl = self._default_ttl_ms if ttl_ms is None else ttl_ms
        path = lock_path(lock_key)
        with log_context(lock_key=lock_key, instance_id=instance_id):
            try:
                return await self._acquire(path, lock_key, instance_id, operation, ttl)
            except Exception as e:
                logger.warning(f"Lock {lock_key}: acquire failed unexpectedly: {e}")
                return False

    async def _acquire(
        self,
        path: str,
        lock_key: str,
        instance_id: str,
        operation: str,
        ttl_ms: int,
    ) -> bool:
        current = await self._store.read(path)
        if current.status is ProbeStatus.UNREACHABLE:
            logger.warning(f"Lock {lock_key}: store unreachable, not acquiring")
            return False

        if current.found:
            existing = LockEntry.from_payload(current.payload)
            now = self._clock.now_ms()
            if existing is not None and not existing.is_stale(now):
                logger.debug(
                    f"Lock {lock_key} held by {existing.instance_id} "
                    f"({existing.age_ms(now)}ms old, ttl {existing.ttl_ms}ms)"
                )
                return False
            holder = existing.instance_id if existing else "<malformed>"
            logger.info(f"Lock {lock_key}: taking over stale entry from {holder}")
            await self._delete_quietly(path)

        entry = LockEntry(
            instance_id=instance_id,
            acquired_at=self._clock.now_ms(),
            operation=operation,
            ttl_ms=ttl_ms,
        )
        outcome = await self._store.create_if_absent(path, entry.to_json())
        if outcome is WriteOutcome.PRECONDITION_FAILED:
            logger.debug(f"Lock {lock_key}: lost create race")
            return False
        if outcome is not WriteOutcome.WRITTEN:
            logger.debug(f"Lock {lock_key}: create skipped ({outcome.name})")
            return False

        read_back = await self._store.read(path, verify=True)
        if read_back.status is ProbeStatus.UNREACHABLE:
            logger.warning(f"Lock {lock_key}: read-back unreachable, removing our entry")
            await self._delete_quietly(path)
            return False

        stored = LockEntry.from_payload(read_back.payload) if read_back.found else None
        if (
            stored is not None
            and stored.instance_id == entry.instance_id
            and stored.acquired_at == entry.acquired_at
        ):
            logger.info(f"Lock {lock_key} acquired by {instance_id} for {operation}")
            return True

        logger.debug(
            f"Lock {lock_key}: read-back mismatch "
            f"(found {stored.instance_id if stored else None})"
        )
        return False

    async def _delete_quietly(self, path: str) -> None:
        try:
            await self._store.delete(path)
        except Exception as e:
            logger.debug(f"Ignoring failed delete of {path}: {e}")

    async def release(
        self,
        lock_key: str,
        instance_id: str,
        *,
        force: bool = False,
    ) -> bool:
        """
        Release the lock if instance_id holds it.

        A mismatched or missing entry is left alone. force=True deletes
        whoever holds it.

        Returns:
            True if an entry was deleted
        """
        path = lock_path(lock_key)
        try:
            if force:
                logger.info(f"Lock {lock_key}: force release by {instance_id}")
                return await self._store.delete(path)

            current = await self._store.read(path)
            if not current.found:
                return False
            entry = LockEntry.from_payload(current.payload)
            if entry is None or entry.instance_id != instance_id:
                logger.debug(f"Lock {lock_key}: not ours to release")
                return False
            released = await self._store.delete(path)
            if released:
                logger.info(f"Lock {lock_key} released by {instance_id}")
            return released
        except Exception as e:
            logger.warning(f"Lock {lock_key}: release failed: {e}")
            return False

    async def cleanup_stale(self, ttl_ms: Optional[int] = None) -> int:
        """
        Delete every lock entry at least ttl_ms old.

        Malformed entries count as stale. Errors on one entry do not stop
        the sweep.

        Returns:
            Number of entries removed
        """
        ttl = self._default_ttl_ms if ttl_ms is None else ttl_ms
        removed = 0
        for path in await self._store.list_paths(C.LOCK_KEY_PREFIX):
            try:
                current = await self._store.read(path)
                if not current.found:
                    continue
                entry = LockEntry.from_payload(current.payload)
                if entry is not None and not entry.is_stale(self._clock.now_ms(), ttl):
                    continue
                if await self._store.delete(path):
                    removed += 1
            except Exception as e:
                logger.debug(f"Skipping {path} during stale sweep: {e}")
        if removed:
            logger.info(f"Removed {removed} stale lock entries")
        return removed

    @asynccontextmanager
    async def hold(
        self,
        lock_key: str,
        instance_id: str,
        operation: str,
        ttl_ms: Optional[int] = None,
    ) -> AsyncIterator[None]:
        """
        Hold the lock for the duration of the block.

        Raises:
            LockNotAcquiredError: The lock is held elsewhere.
        """
        if not await self.acquire(lock_key, instance_id, operation, ttl_ms):
            raise LockNotAcquiredError.not_acquired(lock_key, instance_id)
        try:
            yield
        finally:
            await self.release(lock_key, instance_id)
