"""
Integration Tests: Scenarios Across Services

Tests:
    - A client exhausting and regaining its request budget
    - Two processes contending for a job lock through the object store
"""

import pytest

from blobcoord.core.config import ObjectStoreConfig
from blobcoord.core.types import ManualClock
from blobcoord.locking.distributed_lock import DistributedLock
from blobcoord.ratelimit.limiter import RateLimitConfig, RateLimiter
from blobcoord.storage.backends import InMemoryBlobBackend
from blobcoord.storage.memory import StaticMemoryMonitor
from blobcoord.storage.object_store import ObjectStore
from blobcoord.tests.conftest import RecordingSleep


class TestScenarios:
    """End-to-end scenarios over in-memory fakes."""

    def test_client_budget_recovers_after_window(self):
        clock = ManualClock()
        limiter = RateLimiter(clock=clock)
        config = RateLimitConfig(max_requests=3, window_ms=60_000)

        admitted = [limiter.is_allowed("orders", "ip-1", config) for _ in range(4)]
        clock.advance(61_000)
        admitted.append(limiter.is_allowed("orders", "ip-1", config))

        assert admitted == [True, True, True, False, True]

    @pytest.mark.asyncio
    async def test_export_job_lock_handoff(self):
        clock = ManualClock(start_ms=1_700_000_000_000)
        backend = InMemoryBlobBackend()
        store = ObjectStore(
            backend,
            ObjectStoreConfig(),
            memory=StaticMemoryMonitor(),
            sleep=RecordingSleep(),
        )
        lock = DistributedLock.over(store, clock=clock)

        assert await lock.acquire("export-job", "p1", "export", 1_000)
        assert not await lock.acquire("export-job", "p2", "export", 1_000)

        # p1 never releases; its entry goes stale
        clock.advance(1_100)
        assert await lock.acquire("export-job", "p2", "export", 1_000)

        assert not await lock.release("export-job", "p1")
        assert await lock.release("export-job", "p2")
        assert backend.keys() == []
