"""
Lock Store: the narrow storage view the distributed lock needs.

- ObjectLockStore: JSON lock entries in the object store
- InMemoryLockStore: dict-backed store for unit tests, with hooks to
  simulate a conditional create weaker than advertised and an
  unreachable read-back
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional, Protocol, runtime_checkable

from blobcoord.core import constants as C
from blobcoord.storage.object_store import (
    ObjectStore,
    ProbeResult,
    ProbeStatus,
    WriteOutcome,
)


def lock_path(lock_key: str) -> str:
    """Object key holding the entry for lock_key."""
    return f"{C.LOCK_KEY_PREFIX}{lock_key}{C.JSON_SUFFIX}"


@runtime_checkable
class LockStore(Protocol):
    """Storage operations used by DistributedLock."""

    async def read(self, path: str, *, verify: bool = False) -> ProbeResult:
        """
        Read an entry.

        verify=True is the read-back after a create: it goes to the
        bucket and retries transient not-found.
        """
        ...

    async def create_if_absent(self, path: str, body: str) -> WriteOutcome:
        ...

    async def delete(self, path: str) -> bool:
        ...

    async def list_paths(self, prefix: str) -> list[str]:
        ...


class ObjectLockStore:
    """LockStore over the coordination-safe object store."""

    __slots__ = ("_store",)

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    async def read(self, path: str, *, verify: bool = False) -> ProbeResult:
        return await self._store.probe_object(path, retry=verify)

    async def create_if_absent(self, path: str, body: str) -> WriteOutcome:
        return await self._store.write_object(
            path,
            body,
            "application/json",
            if_none_match="*",
        )

    async def delete(self, path: str) -> bool:
        return await self._store.delete_object(path)

    async def list_paths(self, prefix: str) -> list[str]:
        return await self._store.list_objects(prefix)


class InMemoryLockStore:
    """
    Dict-backed LockStore.

    Args:
        after_create: Called with (entries, path) right after a successful
            create, before the read-back. Lets a test overwrite the entry
            the way a competing writer would on a store whose conditional
            create is weaker than advertised.
        unreachable_read_back: Report UNREACHABLE on verified reads.
    """

    __slots__ = ("entries", "_after_create", "_unreachable_read_back", "deleted")

    def __init__(
        self,
        *,
        after_create: Optional[Callable[[dict[str, str], str], None]] = None,
        unreachable_read_back: bool = False,
    ) -> None:
        self.entries: dict[str, str] = {}
        self.deleted: list[str] = []
        self._after_create = after_create
        self._unreachable_read_back = unreachable_read_back

    async def read(self, path: str, *, verify: bool = False) -> ProbeResult:
        await asyncio.sleep(0)
        if verify and self._unreachable_read_back:
            return ProbeResult(ProbeStatus.UNREACHABLE)
        body = self.entries.get(path)
        if body is None:
            return ProbeResult(ProbeStatus.NOT_FOUND)
        return ProbeResult(ProbeStatus.FOUND, body)

    async def create_if_absent(self, path: str, body: str) -> WriteOutcome:
        await asyncio.sleep(0)
        if path in self.entries:
            return WriteOutcome.PRECONDITION_FAILED
        self.entries[path] = body
        if self._after_create is not None:
            self._after_create(self.entries, path)
        return WriteOutcome.WRITTEN

    async def delete(self, path: str) -> bool:
        await asyncio.sleep(0)
        self.deleted.append(path)
        return self.entries.pop(path, None) is not None

    async def list_paths(self, prefix: str) -> list[str]:
        await asyncio.sleep(0)
        return sorted(p for p in self.entries if p.startswith(prefix))
