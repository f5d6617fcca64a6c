#!/usr/bin/env python3
"""
Storage-Coordination Core

Entry point demonstrating the object store, the distributed lock and the
rate limiter. Runs against S3 when S3_BUCKET and credentials are set,
otherwise against the in-memory backend.

Usage:
    python -m blobcoord

    # Against a real bucket
    S3_BUCKET=my-bucket S3_ACCESS_KEY_ID=... S3_SECRET_ACCESS_KEY=... python -m blobcoord
"""

from __future__ import annotations

import asyncio
import sys

from blobcoord.core.config import CoordinationConfig
from blobcoord.core.types import ManualClock
from blobcoord.locking.distributed_lock import DistributedLock, make_instance_id
from blobcoord.observability.logging import LogLevel, setup_logging
from blobcoord.ratelimit.limiter import RateLimitConfig, RateLimiter
from blobcoord.storage.backends import BlobBackend, InMemoryBlobBackend
from blobcoord.storage.memory import MemoryHealthMonitor
from blobcoord.storage.object_store import ObjectStore
from blobcoord.storage.s3_backend import S3BlobBackend


async def demo() -> None:
    print("\n" + "=" * 60)
    print("Storage-Coordination Core - Demo")
    print("=" * 60 + "\n")

    config_result = CoordinationConfig.from_env()
    if config_result.is_err():
        print(f"Configuration error: {config_result.error}")
        sys.exit(1)
    config = config_result.unwrap()

    setup_logging(LogLevel.WARNING, json_output=False)

    backend: BlobBackend
    if config.object_store.missing_settings:
        backend = InMemoryBlobBackend()
        print("✓ Using in-memory backend (S3 not configured)")
    else:
        backend = S3BlobBackend(config.object_store)
        print(f"✓ Using S3 bucket {config.object_store.bucket}")

    store = ObjectStore(
        backend,
        config.object_store,
        memory=MemoryHealthMonitor(config.memory),
        retry_policy=config.retry,
    )

    # 1. JSON round trip
    outcome = await store.write_json("demo/state.json", {"hello": "world"})
    print(f"\n1. write_json -> {outcome.name}")
    print(f"   read_json  -> {await store.read_json('demo/state.json')}")

    # 2. Coalesced reads
    results = await asyncio.gather(*(store.read_object("demo/state.json") for _ in range(5)))
    print(f"2. 5 concurrent reads returned {len(set(results))} distinct result(s)")

    # 3. Lock contention with a hand-driven clock
    clock = ManualClock(start_ms=1_700_000_000_000)
    lock = DistributedLock.over(store, clock=clock)
    p1 = await lock.acquire("export-job", "p1", "nightly-export", 1000)
    p2 = await lock.acquire("export-job", "p2", "nightly-export", 1000)
    clock.advance(1100)
    p2_later = await lock.acquire("export-job", "p2", "nightly-export", 1000)
    print(f"3. p1={p1} p2={p2} p2 after 1100ms={p2_later}")
    await lock.release("export-job", "p2")
    print(f"   this process would use instance id {make_instance_id()}")

    # 4. Rate limiting
    limiter_clock = ManualClock()
    limiter = RateLimiter(clock=limiter_clock)
    limit = RateLimitConfig(max_requests=3, window_ms=60_000)
    admitted = [limiter.is_operation_allowed("orders", "ip-1", limit) for _ in range(4)]
    limiter_clock.advance(61_000)
    admitted.append(limiter.is_operation_allowed("orders", "ip-1", limit))
    print(f"4. orders/ip-1 admissions: {admitted}")

    await store.close()
    if isinstance(backend, S3BlobBackend):
        await backend.close()

    print("\n✓ Demo complete")
    print("=" * 60 + "\n")


async def main() -> None:
    """Main entry point."""
    try:
        await demo()
    except KeyboardInterrupt:
        print("\nInterrupted")


def run() -> None:
    """Synchronous entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
