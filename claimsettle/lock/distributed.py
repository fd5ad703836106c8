"""
TTL-bounded mutual exclusion over a shared key-value store.
"""
import logging
import os
import socket
import uuid
from typing import Any, Callable, TypeVar, Union

from ..exceptions import LockStoreUnavailableError
from .store import KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCK_PREFIX = "lock:"


class _NotAcquired:
    """Sentinel returned by ``with_lock`` when the lock is held elsewhere"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_ACQUIRED"


NOT_ACQUIRED = _NotAcquired()


class DistributedLock:
    """
    Per-key lock whose record expires on its own after ``ttl`` seconds.

    A crashed holder never blocks an item forever; the next tick picks the
    item up once the record has expired. Release is unconditional.
    """

    def __init__(self, store: KeyValueStore, owner: str = None):
        self.store = store
        self.owner = owner or f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

    @staticmethod
    def _key(key: str) -> str:
        return f"{LOCK_PREFIX}{key}"

    def acquire(self, key: str, ttl: float) -> bool:
        """
        Take the lock if nobody holds it.

        Args:
            key: Item key, e.g. ``claim:<id>``
            ttl: Seconds until the lock expires on its own

        Returns:
            True if acquired, False if already held

        Raises:
            LockStoreUnavailableError: If the lock store cannot be reached
        """
        acquired = self.store.set_if_absent(self._key(key), self.owner, ttl)
        if not acquired:
            logger.debug(f"Lock {key} is held elsewhere")
        return acquired

    def release(self, key: str) -> None:
        """Delete the lock record; failures are logged and left to expiry"""
        try:
            self.store.delete(self._key(key))
        except LockStoreUnavailableError as e:
            logger.warning(f"Failed to release lock {key}, it will expire: {e}")

    def with_lock(self, key: str, ttl: float, fn: Callable[[], T]) -> Union[T, Any]:
        """
        Run ``fn`` while holding the lock.

        Args:
            key: Item key
            ttl: Lock expiry in seconds
            fn: Callable to run

        Returns:
            ``fn()``'s result, or ``NOT_ACQUIRED`` without calling ``fn``

        Raises:
            LockStoreUnavailableError: If the lock store cannot be reached
        """
        if not self.acquire(key, ttl):
            return NOT_ACQUIRED
        try:
            return fn()
        finally:
            self.release(key)
