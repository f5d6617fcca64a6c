"""
Shared fixtures: in-memory backend, hand-driven clock and a sleep that
records its delays instead of waiting.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from blobcoord.core.config import ObjectStoreConfig
from blobcoord.core.types import ManualClock
from blobcoord.observability.logging import reset_log_once
from blobcoord.storage.backends import InMemoryBlobBackend
from blobcoord.storage.memory import StaticMemoryMonitor
from blobcoord.storage.object_store import ObjectStore


class RecordingSleep:
    """
    Awaitable sleep replacement.

    Records each requested delay in seconds and, when given a clock,
    advances it by the same amount so waiting code observes time passing.
    """

    def __init__(self, clock: Optional[ManualClock] = None) -> None:
        self.calls: list[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(int(round(seconds * 1000)))
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def _reset_log_once():
    reset_log_once()
    yield
    reset_log_once()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start_ms=1_700_000_000_000)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def backend() -> InMemoryBlobBackend:
    return InMemoryBlobBackend()


@pytest.fixture
def memory() -> StaticMemoryMonitor:
    return StaticMemoryMonitor(pressure=False)


@pytest.fixture
def store(backend, memory, sleep) -> ObjectStore:
    return ObjectStore(backend, ObjectStoreConfig(), memory=memory, sleep=sleep)
