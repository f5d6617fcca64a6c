"""
Sliding-Log Rate Limiter

Per-process limiter keyed by (store_name, client_id). Each key keeps the
timestamps of its admitted requests; a request is admitted while fewer
than max_requests of them fall inside the trailing window.

Properties:
- Exactly the first max_requests calls in a window are admitted
- A denied call changes nothing
- Keys are fully independent
- Buckets are created on first admission and pruned once every
  timestamp has expired, at most once per prune interval

Waiting:
    wait_for_permit polls every poll_interval_ms for windows up to one
    second. For longer windows it sleeps until the oldest counted request
    leaves the window (plus a small margin), bounded below by the poll
    interval and above by the window length.

Persistence:
    is_allowed_and_persist saves a store's buckets as a JSON snapshot
    through the object store after each admission, and load_snapshot seeds
    them back at startup. Snapshot timestamps are wall-clock epoch ms; the
    limiter converts them to and from its own clock. A failed or skipped
    save never changes the admission verdict.

Not distributed: two processes each admit max_requests, and the last
snapshot written wins.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Final, Optional

from blobcoord.core import constants as C
from blobcoord.core.errors import RateLimitError, StorageError
from blobcoord.core.types import Clock, MonotonicClock, SystemClock
from blobcoord.observability.logging import log_context
from blobcoord.reliability.retry import SleepFn
from blobcoord.storage.object_store import ObjectStore, WriteOutcome

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """
    Limit of max_requests per trailing window_ms.

    Not validated on construction; the limiter rejects bad values at
    call time with RateLimitError.
    """
    max_requests: int
    window_ms: int

    def validate(self) -> None:
        """
        Raises:
            RateLimitError: max_requests or window_ms is not positive.
        """
        if self.max_requests <= 0:
            raise RateLimitError.invalid_config("maxRequests", self.max_requests)
        if self.window_ms <= 0:
            raise RateLimitError.invalid_config("windowMs", self.window_ms)


API_ENDPOINT_STORE_NAME: Final[str] = "apiEndpoints"
DEFAULT_API_ENDPOINT_LIMIT_CONFIG: Final[RateLimitConfig] = RateLimitConfig(
    max_requests=5, window_ms=60_000
)

OPENGRAPH_FETCH_STORE_NAME: Final[str] = "outgoingOpenGraph"
OPENGRAPH_FETCH_CONTEXT_ID: Final[str] = "global"
DEFAULT_OPENGRAPH_FETCH_LIMIT_CONFIG: Final[RateLimitConfig] = RateLimitConfig(
    max_requests=10, window_ms=1_000
)


@dataclass(slots=True)
class RateBucket:
    """Admitted-request timestamps for one (store, client) key."""
    window_ms: int
    timestamps: deque[int] = field(default_factory=deque)

    def evict_expired(self, now_ms: int) -> None:
        while self.timestamps and self.timestamps[0] + self.window_ms <= now_ms:
            self.timestamps.popleft()

    def is_expired(self, now_ms: int) -> bool:
        return not self.timestamps or self.timestamps[-1] + self.window_ms <= now_ms

    def to_snapshot(self, offset_ms: int) -> dict[str, Any]:
        return {
            "windowMs": self.window_ms,
            "timestamps": [ts + offset_ms for ts in self.timestamps],
        }

    @classmethod
    def from_snapshot(cls, entry: Any, offset_ms: int) -> Optional[RateBucket]:
        """Bucket from a snapshot entry, or None if the entry is malformed."""
        if not isinstance(entry, dict):
            return None
        window_ms = entry.get("windowMs")
        raw = entry.get("timestamps")
        if not isinstance(window_ms, int) or window_ms <= 0 or not isinstance(raw, list):
            return None
        if not all(isinstance(ts, int) for ts in raw):
            return None
        return cls(window_ms=window_ms, timestamps=deque(sorted(ts - offset_ms for ts in raw)))


# =============================================================================
# RATE LIMITER
# =============================================================================
class RateLimiter:
    """
    In-process sliding-log rate limiter.

    Usage:
        limiter = RateLimiter()
        if not limiter.is_allowed(API_ENDPOINT_STORE_NAME, client_ip,
                                  DEFAULT_API_ENDPOINT_LIMIT_CONFIG):
            return too_many_requests()

        await limiter.wait_for_permit(OPENGRAPH_FETCH_STORE_NAME,
                                      OPENGRAPH_FETCH_CONTEXT_ID,
                                      DEFAULT_OPENGRAPH_FETCH_LIMIT_CONFIG)
    """

    __slots__ = (
        "_buckets",
        "_clock",
        "_wall_clock",
        "_sleep",
        "_prune_interval_ms",
        "_last_prune_ms",
    )

    def __init__(
        self,
        clock: Optional[Clock] = None,
        sleep: SleepFn = asyncio.sleep,
        prune_interval_ms: int = C.PRUNE_INTERVAL_MS,
        wall_clock: Optional[Clock] = None,
    ) -> None:
        if prune_interval_ms <= 0:
            raise ValueError(f"prune_interval_ms must be > 0, got {prune_interval_ms}")
        self._buckets: dict[tuple[str, str], RateBucket] = {}
        self._clock = clock or MonotonicClock()
        self._wall_clock = wall_clock or SystemClock()
        self._sleep = sleep
        self._prune_interval_ms = prune_interval_ms
        self._last_prune_ms = self._clock.now_ms()

    @property
    def bucket_count(self) -> int:
        return len(self._buckets)

    def is_allowed(self, store_name: str, client_id: str, config: RateLimitConfig) -> bool:
        """
        Admit and record one request if the key is under its limit.

        Raises:
            RateLimitError: Invalid config.
        """
        config.validate()
        now = self._clock.now_ms()
        self._maybe_prune(now)

        key = (store_name, client_id)
        bucket = self._buckets.get(key)
        if bucket is not None:
            bucket.window_ms = config.window_ms
            bucket.evict_expired(now)
            if len(bucket.timestamps) >= config.max_requests:
                return False
        else:
            bucket = self._buckets[key] = RateBucket(window_ms=config.window_ms)

        bucket.timestamps.append(now)
        return True

    is_operation_allowed = is_allowed

    async def wait_for_permit(
        self,
        store_name: str,
        client_id: str,
        config: RateLimitConfig,
        poll_interval_ms: Optional[int] = None,
    ) -> None:
        """
        Wait until is_allowed admits a request for this key.

        Raises:
            RateLimitError: Invalid config.
        """
        config.validate()
        poll = C.DEFAULT_POLL_INTERVAL_MS if poll_interval_ms is None else poll_interval_ms
        if poll <= 0:
            raise ValueError(f"poll_interval_ms must be > 0, got {poll}")

        while not self.is_allowed(store_name, client_id, config):
            delay_ms = self._next_delay_ms((store_name, client_id), config, poll)
            logger.debug(
                f"Rate limit reached for {store_name}/{client_id}; rechecking in {delay_ms}ms"
            )
            await self._sleep(delay_ms / 1000)

    def _next_delay_ms(
        self,
        key: tuple[str, str],
        config: RateLimitConfig,
        poll_ms: int,
    ) -> int:
        if config.window_ms <= C.SHORT_WINDOW_MS:
            return poll_ms
        bucket = self._buckets.get(key)
        if bucket is None or not bucket.timestamps:
            return poll_ms
        until_free = (
            bucket.timestamps[0] + config.window_ms - self._clock.now_ms()
            + C.PERMIT_WAKE_MARGIN_MS
        )
        return max(poll_ms, min(until_free, config.window_ms))

    def _maybe_prune(self, now_ms: int) -> None:
        if now_ms - self._last_prune_ms < self._prune_interval_ms:
            return
        self._last_prune_ms = now_ms
        expired = [k for k, b in self._buckets.items() if b.is_expired(now_ms)]
        for key in expired:
            del self._buckets[key]
        if expired:
            logger.debug(f"Pruned {len(expired)} idle rate-limit buckets")

    # -------------------------------------------------------------------------
    # PERSISTENCE
    # -------------------------------------------------------------------------

    def _wall_offset_ms(self) -> int:
        return self._wall_clock.now_ms() - self._clock.now_ms()

    async def is_allowed_and_persist(
        self,
        store_name: str,
        client_id: str,
        config: RateLimitConfig,
        store: ObjectStore,
        key: str,
    ) -> bool:
        """
        is_allowed, then save the store's buckets to key if admitted.

        Raises:
            RateLimitError: Invalid config.
        """
        allowed = self.is_allowed(store_name, client_id, config)
        if allowed:
            await self.save_snapshot(store_name, store, key)
        return allowed

    async def save_snapshot(self, store_name: str, store: ObjectStore, key: str) -> bool:
        """
        Write every live bucket of store_name to key as JSON.

        Returns:
            True if the snapshot was written; False if the write was
            skipped (read-only, dry run) or failed
        """
        now = self._clock.now_ms()
        offset = self._wall_offset_ms()
        clients: dict[str, dict[str, Any]] = {}
        for (name, client_id), bucket in self._buckets.items():
            if name != store_name:
                continue
            bucket.evict_expired(now)
            if bucket.timestamps:
                clients[client_id] = bucket.to_snapshot(offset)

        snapshot = {"storeName": store_name, "savedAt": now + offset, "clients": clients}
        with log_context(rate_limit_store=store_name, snapshot_key=key):
            try:
                outcome = await store.write_json(key, snapshot)
            except StorageError as e:
                logger.warning(f"Failed to persist rate limits for {store_name} to {key}: {e}")
                return False

            if outcome is not WriteOutcome.WRITTEN:
                logger.debug(f"Rate-limit snapshot for {store_name} not written ({outcome.name})")
                return False
        return True

    async def load_snapshot(self, store_name: str, store: ObjectStore, key: str) -> int:
        """
        Seed the buckets of store_name from the snapshot at key.

        Clients already tracked in this process keep their own bucket.
        Expired timestamps are dropped. A missing or malformed snapshot
        loads nothing.

        Returns:
            Number of client buckets loaded
        """
        with log_context(rate_limit_store=store_name, snapshot_key=key):
            data = await store.read_json(key)
            if data is None:
                logger.debug(f"No rate-limit snapshot at {key}")
                return 0
            clients = data.get("clients") if isinstance(data, dict) else None
            if not isinstance(clients, dict):
                logger.warning(f"Ignoring malformed rate-limit snapshot at {key}")
                return 0

            now = self._clock.now_ms()
            offset = self._wall_offset_ms()
            loaded = 0
            for client_id, entry in clients.items():
                if (store_name, client_id) in self._buckets:
                    continue
                bucket = RateBucket.from_snapshot(entry, offset)
                if bucket is None:
                    logger.debug(f"Skipping malformed snapshot entry for {client_id}")
                    continue
                bucket.evict_expired(now)
                if bucket.timestamps:
                    self._buckets[(store_name, client_id)] = bucket
                    loaded += 1

            logger.info(f"Loaded {loaded} rate-limit buckets for {store_name} from {key}")
        return loaded

    def reset(self) -> None:
        """Drop every bucket."""
        self._buckets.clear()
