"""
Unit Tests: Sliding-Log Rate Limiter

Tests:
    - Admission of exactly max_requests per window
    - Sliding eviction and key independence
    - Config validation messages
    - wait_for_permit polling for short and long windows
    - Idle bucket pruning
    - Snapshot persistence through the object store
"""

import json
import re

import pytest

from blobcoord.core.config import ObjectStoreConfig
from blobcoord.core.errors import ErrorCode, RateLimitError
from blobcoord.core.types import ManualClock
from blobcoord.ratelimit.limiter import (
    API_ENDPOINT_STORE_NAME,
    DEFAULT_API_ENDPOINT_LIMIT_CONFIG,
    DEFAULT_OPENGRAPH_FETCH_LIMIT_CONFIG,
    OPENGRAPH_FETCH_CONTEXT_ID,
    OPENGRAPH_FETCH_STORE_NAME,
    RateLimitConfig,
    RateLimiter,
)
from blobcoord.storage.backends import InMemoryBlobBackend
from blobcoord.storage.memory import StaticMemoryMonitor
from blobcoord.storage.object_store import ObjectStore
from blobcoord.tests.conftest import RecordingSleep


@pytest.fixture
def limiter_clock():
    return ManualClock(start_ms=0)


@pytest.fixture
def limiter(limiter_clock):
    return RateLimiter(clock=limiter_clock)


class TestAdmission:
    """Tests for is_allowed."""

    def test_first_n_calls_admitted(self, limiter):
        config = RateLimitConfig(max_requests=3, window_ms=60_000)
        results = [limiter.is_allowed("orders", "ip-1", config) for _ in range(4)]

        assert results == [True, True, True, False]

    def test_denied_call_is_not_recorded(self, limiter, limiter_clock):
        config = RateLimitConfig(max_requests=2, window_ms=1_000)
        for _ in range(10):
            limiter.is_allowed("orders", "ip-1", config)

        limiter_clock.advance(1_000)

        assert limiter.is_allowed("orders", "ip-1", config)
        assert limiter.is_allowed("orders", "ip-1", config)
        assert not limiter.is_allowed("orders", "ip-1", config)

    def test_window_slides(self, limiter, limiter_clock):
        config = RateLimitConfig(max_requests=3, window_ms=60_000)
        assert limiter.is_allowed("orders", "ip-1", config)
        limiter_clock.advance(30_000)
        assert limiter.is_allowed("orders", "ip-1", config)
        assert limiter.is_allowed("orders", "ip-1", config)
        assert not limiter.is_allowed("orders", "ip-1", config)

        # Only the first request has left the window
        limiter_clock.advance(30_000)
        assert limiter.is_allowed("orders", "ip-1", config)
        assert not limiter.is_allowed("orders", "ip-1", config)

    def test_timestamp_expires_exactly_at_window(self, limiter, limiter_clock):
        config = RateLimitConfig(max_requests=1, window_ms=500)
        assert limiter.is_allowed("s", "c", config)
        limiter_clock.advance(499)
        assert not limiter.is_allowed("s", "c", config)
        limiter_clock.advance(1)
        assert limiter.is_allowed("s", "c", config)

    def test_keys_are_independent(self, limiter):
        config = RateLimitConfig(max_requests=1, window_ms=60_000)

        assert limiter.is_allowed("orders", "ip-1", config)
        assert not limiter.is_allowed("orders", "ip-1", config)
        assert limiter.is_allowed("orders", "ip-2", config)
        assert limiter.is_allowed("exports", "ip-1", config)
        assert limiter.bucket_count == 3

    def test_operation_alias(self, limiter):
        config = RateLimitConfig(max_requests=1, window_ms=1_000)
        assert limiter.is_operation_allowed("s", "c", config)
        assert not limiter.is_operation_allowed("s", "c", config)

    def test_reset_clears_buckets(self, limiter):
        config = RateLimitConfig(max_requests=1, window_ms=60_000)
        limiter.is_allowed("s", "c", config)
        limiter.reset()

        assert limiter.bucket_count == 0
        assert limiter.is_allowed("s", "c", config)

    def test_default_profiles(self):
        assert API_ENDPOINT_STORE_NAME == "apiEndpoints"
        assert DEFAULT_API_ENDPOINT_LIMIT_CONFIG == RateLimitConfig(5, 60_000)
        assert OPENGRAPH_FETCH_STORE_NAME == "outgoingOpenGraph"
        assert OPENGRAPH_FETCH_CONTEXT_ID == "global"
        assert DEFAULT_OPENGRAPH_FETCH_LIMIT_CONFIG == RateLimitConfig(10, 1_000)


class TestValidation:
    """Tests for config validation."""

    def test_zero_max_requests(self, limiter):
        with pytest.raises(RateLimitError, match=re.escape("Invalid maxRequests: 0. Must be greater than 0.")):
            limiter.is_allowed("s", "c", RateLimitConfig(max_requests=0, window_ms=1_000))

    def test_negative_window(self, limiter):
        with pytest.raises(RateLimitError) as exc_info:
            limiter.is_allowed("s", "c", RateLimitConfig(max_requests=1, window_ms=-5))

        assert exc_info.value.code is ErrorCode.RATE_LIMIT_INVALID_CONFIG
        assert exc_info.value.message == "Invalid windowMs: -5. Must be greater than 0."

    def test_invalid_config_creates_no_bucket(self, limiter):
        with pytest.raises(RateLimitError):
            limiter.is_allowed("s", "c", RateLimitConfig(max_requests=0, window_ms=1_000))
        assert limiter.bucket_count == 0


class TestWaitForPermit:
    """Tests for wait_for_permit."""

    @pytest.mark.asyncio
    async def test_returns_immediately_when_allowed(self, limiter_clock):
        sleep = RecordingSleep(limiter_clock)
        limiter = RateLimiter(clock=limiter_clock, sleep=sleep)

        await limiter.wait_for_permit("s", "c", RateLimitConfig(1, 1_000))

        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_short_window_polls(self, limiter_clock):
        sleep = RecordingSleep(limiter_clock)
        limiter = RateLimiter(clock=limiter_clock, sleep=sleep)
        config = RateLimitConfig(max_requests=2, window_ms=1_000)
        limiter.is_allowed("s", "c", config)
        limiter.is_allowed("s", "c", config)

        await limiter.wait_for_permit("s", "c", config, poll_interval_ms=50)

        assert limiter_clock.now_ms() == 1_000
        assert len(sleep.calls) == 20
        assert all(call == pytest.approx(0.05) for call in sleep.calls)

    @pytest.mark.asyncio
    async def test_long_window_sleeps_until_slot_frees(self, limiter_clock):
        sleep = RecordingSleep(limiter_clock)
        limiter = RateLimiter(clock=limiter_clock, sleep=sleep)
        config = RateLimitConfig(max_requests=1, window_ms=60_000)
        limiter.is_allowed("s", "c", config)
        limiter_clock.advance(20_000)

        await limiter.wait_for_permit("s", "c", config, poll_interval_ms=50)

        # Oldest request leaves the window at 60_000, plus the wake margin
        assert sleep.calls == [pytest.approx(40.01)]
        assert limiter_clock.now_ms() == 60_010

    @pytest.mark.asyncio
    async def test_invalid_poll_interval(self, limiter):
        with pytest.raises(ValueError):
            await limiter.wait_for_permit("s", "c", RateLimitConfig(1, 1_000), poll_interval_ms=0)

    @pytest.mark.asyncio
    async def test_invalid_config(self, limiter):
        with pytest.raises(RateLimitError):
            await limiter.wait_for_permit("s", "c", RateLimitConfig(1, 0))


class TestPruning:
    """Tests for idle bucket pruning."""

    def test_expired_buckets_pruned_after_interval(self, limiter_clock):
        limiter = RateLimiter(clock=limiter_clock, prune_interval_ms=1_000)
        config = RateLimitConfig(max_requests=1, window_ms=100)
        limiter.is_allowed("s", "a", config)
        assert limiter.bucket_count == 1

        limiter_clock.advance(1_000)
        limiter.is_allowed("s", "b", config)

        assert limiter.bucket_count == 1

    def test_no_pruning_before_interval(self, limiter_clock):
        limiter = RateLimiter(clock=limiter_clock, prune_interval_ms=1_000)
        config = RateLimitConfig(max_requests=1, window_ms=100)
        limiter.is_allowed("s", "a", config)

        limiter_clock.advance(500)
        limiter.is_allowed("s", "b", config)

        assert limiter.bucket_count == 2

    def test_live_buckets_survive_pruning(self, limiter_clock):
        limiter = RateLimiter(clock=limiter_clock, prune_interval_ms=1_000)
        config = RateLimitConfig(max_requests=1, window_ms=5_000)
        limiter.is_allowed("s", "a", config)

        limiter_clock.advance(1_000)
        limiter.is_allowed("s", "b", config)

        assert limiter.bucket_count == 2
        assert not limiter.is_allowed("s", "a", config)

    def test_invalid_prune_interval(self):
        with pytest.raises(ValueError):
            RateLimiter(prune_interval_ms=0)


SNAPSHOT_KEY = "json/rate-limits/github-refresh.json"


def snapshot_store(backend, config=None):
    return ObjectStore(
        backend,
        config or ObjectStoreConfig(),
        memory=StaticMemoryMonitor(),
        sleep=RecordingSleep(),
    )


class TestPersistence:
    """Tests for saving and loading bucket snapshots."""

    @pytest.mark.asyncio
    async def test_snapshot_survives_restart(self, limiter_clock):
        backend = InMemoryBlobBackend()
        store = snapshot_store(backend)
        config = RateLimitConfig(max_requests=2, window_ms=60_000)
        limiter = RateLimiter(clock=limiter_clock, wall_clock=limiter_clock)

        assert await limiter.is_allowed_and_persist("refresh", "ip-1", config, store, SNAPSHOT_KEY)
        assert await limiter.is_allowed_and_persist("refresh", "ip-1", config, store, SNAPSHOT_KEY)

        saved = json.loads(backend.get_raw(SNAPSHOT_KEY))
        assert saved["storeName"] == "refresh"
        assert saved["clients"]["ip-1"] == {"windowMs": 60_000, "timestamps": [0, 0]}

        restarted = RateLimiter(clock=limiter_clock, wall_clock=limiter_clock)
        assert await restarted.load_snapshot("refresh", store, SNAPSHOT_KEY) == 1
        assert not restarted.is_allowed("refresh", "ip-1", config)

        limiter_clock.advance(60_000)
        assert restarted.is_allowed("refresh", "ip-1", config)

    @pytest.mark.asyncio
    async def test_denied_call_is_not_persisted(self, limiter_clock):
        backend = InMemoryBlobBackend()
        store = snapshot_store(backend)
        config = RateLimitConfig(max_requests=1, window_ms=60_000)
        limiter = RateLimiter(clock=limiter_clock, wall_clock=limiter_clock)

        assert await limiter.is_allowed_and_persist("refresh", "ip-1", config, store, SNAPSHOT_KEY)
        assert not await limiter.is_allowed_and_persist("refresh", "ip-1", config, store, SNAPSHOT_KEY)

        assert backend.calls["put"] == 1

    @pytest.mark.asyncio
    async def test_only_named_store_is_saved(self, limiter_clock):
        backend = InMemoryBlobBackend()
        store = snapshot_store(backend)
        config = RateLimitConfig(max_requests=5, window_ms=60_000)
        limiter = RateLimiter(clock=limiter_clock, wall_clock=limiter_clock)
        limiter.is_allowed("other", "ip-9", config)

        await limiter.is_allowed_and_persist("refresh", "ip-1", config, store, SNAPSHOT_KEY)

        assert list(json.loads(backend.get_raw(SNAPSHOT_KEY))["clients"]) == ["ip-1"]

    @pytest.mark.asyncio
    async def test_timestamps_stored_as_wall_clock(self):
        backend = InMemoryBlobBackend()
        store = snapshot_store(backend)
        config = RateLimitConfig(max_requests=1, window_ms=60_000)
        limiter = RateLimiter(
            clock=ManualClock(start_ms=0),
            wall_clock=ManualClock(start_ms=1_700_000_000_000),
        )
        await limiter.is_allowed_and_persist("refresh", "ip-1", config, store, SNAPSHOT_KEY)

        saved = json.loads(backend.get_raw(SNAPSHOT_KEY))
        assert saved["clients"]["ip-1"]["timestamps"] == [1_700_000_000_000]

        # Five seconds later in a process whose monotonic clock started elsewhere
        restarted = RateLimiter(
            clock=ManualClock(start_ms=5_000),
            wall_clock=ManualClock(start_ms=1_700_000_005_000),
        )
        assert await restarted.load_snapshot("refresh", store, SNAPSHOT_KEY) == 1
        assert not restarted.is_allowed("refresh", "ip-1", config)

    @pytest.mark.asyncio
    async def test_expired_entries_not_loaded(self, limiter_clock):
        store = snapshot_store(InMemoryBlobBackend())
        config = RateLimitConfig(max_requests=1, window_ms=1_000)
        limiter = RateLimiter(clock=limiter_clock, wall_clock=limiter_clock)
        await limiter.is_allowed_and_persist("refresh", "ip-1", config, store, SNAPSHOT_KEY)

        limiter_clock.advance(1_000)
        restarted = RateLimiter(clock=limiter_clock, wall_clock=limiter_clock)

        assert await restarted.load_snapshot("refresh", store, SNAPSHOT_KEY) == 0
        assert restarted.bucket_count == 0

    @pytest.mark.asyncio
    async def test_missing_or_malformed_snapshot(self, limiter_clock):
        backend = InMemoryBlobBackend()
        store = snapshot_store(backend)
        limiter = RateLimiter(clock=limiter_clock, wall_clock=limiter_clock)

        assert await limiter.load_snapshot("refresh", store, SNAPSHOT_KEY) == 0

        backend.put_raw(SNAPSHOT_KEY, '{"clients": []}', "application/json")
        assert await limiter.load_snapshot("refresh", store, SNAPSHOT_KEY) == 0

        backend.put_raw(SNAPSHOT_KEY, json.dumps({"clients": {
            "bad": {"windowMs": 0, "timestamps": [0]},
            "worse": {"windowMs": 1_000, "timestamps": ["x"]},
            "good": {"windowMs": 1_000, "timestamps": [0]},
        }}), "application/json")
        assert await limiter.load_snapshot("refresh", store, SNAPSHOT_KEY) == 1

    @pytest.mark.asyncio
    async def test_local_bucket_wins_over_snapshot(self, limiter_clock):
        backend = InMemoryBlobBackend()
        store = snapshot_store(backend)
        config = RateLimitConfig(max_requests=2, window_ms=60_000)
        backend.put_raw(SNAPSHOT_KEY, json.dumps({"clients": {
            "ip-1": {"windowMs": 60_000, "timestamps": [0, 0]},
        }}), "application/json")
        limiter = RateLimiter(clock=limiter_clock, wall_clock=limiter_clock)
        limiter.is_allowed("refresh", "ip-1", config)

        assert await limiter.load_snapshot("refresh", store, SNAPSHOT_KEY) == 0
        assert limiter.is_allowed("refresh", "ip-1", config)

    @pytest.mark.asyncio
    async def test_read_only_store_still_admits(self, limiter_clock):
        backend = InMemoryBlobBackend()
        store = snapshot_store(backend, ObjectStoreConfig(read_only=True))
        limiter = RateLimiter(clock=limiter_clock, wall_clock=limiter_clock)
        config = RateLimitConfig(max_requests=1, window_ms=60_000)

        assert await limiter.is_allowed_and_persist("refresh", "ip-1", config, store, SNAPSHOT_KEY)
        assert not await limiter.is_allowed_and_persist("refresh", "ip-1", config, store, SNAPSHOT_KEY)
        assert backend.keys() == []

    @pytest.mark.asyncio
    async def test_failed_write_is_tolerated(self, limiter_clock):
        backend = InMemoryBlobBackend()
        backend.fail_next("put", RuntimeError("boom"))
        store = snapshot_store(backend)
        limiter = RateLimiter(clock=limiter_clock, wall_clock=limiter_clock)

        assert await limiter.is_allowed_and_persist(
            "refresh", "ip-1", RateLimitConfig(1, 60_000), store, SNAPSHOT_KEY
        )

        backend.fail_next("put", RuntimeError("boom"))
        assert not await limiter.save_snapshot("refresh", store, SNAPSHOT_KEY)
