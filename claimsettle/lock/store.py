"""
Key-value stores backing the distributed lock and the pending-work index.
"""
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Set

import redis
from cachetools import TLRUCache
from redis.exceptions import RedisError

from ..exceptions import LockStoreUnavailableError

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """
    Shared key-value cache with atomic set-if-absent-with-expiry and sets.
    """

    @abstractmethod
    def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        """
        Store ``value`` under ``key`` only if the key is absent.

        Args:
            key: Key to set
            value: Value to store
            ttl: Expiry in seconds

        Returns:
            True if the key was set, False if it already existed

        Raises:
            LockStoreUnavailableError: If the store cannot be reached
        """
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def add_member(self, set_key: str, member: str) -> None:
        pass

    @abstractmethod
    def remove_member(self, set_key: str, member: str) -> None:
        pass

    @abstractmethod
    def members(self, set_key: str) -> Set[str]:
        pass


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store (``SET NX PX`` for locks, Redis sets for the index)"""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[Any] = None):
        """
        Args:
            redis_url: Redis connection URL (redis://host:port/db)
            client: Pre-built redis client, used instead of ``redis_url``

        Raises:
            ValueError: If neither a URL nor a client is given
        """
        if client is None:
            if not redis_url:
                raise ValueError("redis_url or client must be provided")
            client = redis.from_url(redis_url, decode_responses=True)
        self.client = client

    def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        try:
            return bool(self.client.set(key, value, nx=True, px=int(ttl * 1000)))
        except RedisError as e:
            raise LockStoreUnavailableError(f"Lock store unavailable: {e}")

    def get(self, key: str) -> Optional[str]:
        try:
            value = self.client.get(key)
        except RedisError as e:
            raise LockStoreUnavailableError(f"Lock store unavailable: {e}")
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except RedisError as e:
            raise LockStoreUnavailableError(f"Lock store unavailable: {e}")

    def add_member(self, set_key: str, member: str) -> None:
        try:
            self.client.sadd(set_key, member)
        except RedisError as e:
            raise LockStoreUnavailableError(f"Lock store unavailable: {e}")

    def remove_member(self, set_key: str, member: str) -> None:
        try:
            self.client.srem(set_key, member)
        except RedisError as e:
            raise LockStoreUnavailableError(f"Lock store unavailable: {e}")

    def members(self, set_key: str) -> Set[str]:
        try:
            raw = self.client.smembers(set_key)
        except RedisError as e:
            raise LockStoreUnavailableError(f"Lock store unavailable: {e}")
        return {m.decode("utf-8") if isinstance(m, bytes) else m for m in raw}


def _entry_expiry(_key: str, entry: tuple, now: float) -> float:
    _value, ttl = entry
    if ttl is None:
        return math.inf
    return now + ttl


class MemoryKeyValueStore(KeyValueStore):
    """
    In-process store for single-worker deployments and tests.

    Entries expire per key through a ``TLRUCache``; ``timer`` can be replaced
    to control expiry in tests.
    """

    def __init__(self, maxsize: int = 100_000, timer: Callable[[], float] = time.monotonic):
        self._cache = TLRUCache(maxsize=maxsize, ttu=_entry_expiry, timer=timer)
        self._sets: Dict[str, Set[str]] = {}
        self._lock = threading.RLock()

    def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        with self._lock:
            self._cache.expire()
            if key in self._cache:
                return False
            self._cache[key] = (value, ttl)
            return True

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._cache.get(key)
            return entry[0] if entry else None

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def add_member(self, set_key: str, member: str) -> None:
        with self._lock:
            self._sets.setdefault(set_key, set()).add(member)

    def remove_member(self, set_key: str, member: str) -> None:
        with self._lock:
            self._sets.get(set_key, set()).discard(member)

    def members(self, set_key: str) -> Set[str]:
        with self._lock:
            return set(self._sets.get(set_key, set()))
