"""
Locking module: advisory distributed lock over the object store.
"""

from blobcoord.locking.distributed_lock import DistributedLock, LockEntry, make_instance_id
from blobcoord.locking.lock_store import (
    InMemoryLockStore,
    LockStore,
    ObjectLockStore,
    lock_path,
)

__all__ = [
    "DistributedLock",
    "LockEntry",
    "make_instance_id",
    "InMemoryLockStore",
    "LockStore",
    "ObjectLockStore",
    "lock_path",
]
