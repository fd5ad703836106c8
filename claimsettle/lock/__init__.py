"""
Distributed locking and the shared key-value store.
"""
from .store import KeyValueStore, RedisKeyValueStore, MemoryKeyValueStore
from .distributed import DistributedLock, NOT_ACQUIRED

__all__ = [
    "KeyValueStore",
    "RedisKeyValueStore",
    "MemoryKeyValueStore",
    "DistributedLock",
    "NOT_ACQUIRED",
]
