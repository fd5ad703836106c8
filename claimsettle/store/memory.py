"""
In-process store for tests and single-worker deployments.
"""
import threading
from contextlib import contextmanager
from typing import Iterator

from .base import TableStore, Tables, empty_tables


class MemoryStore(TableStore):
    """Thread-safe dict-backed store"""

    def __init__(self):
        self._tables = empty_tables()
        self._lock = threading.RLock()

    @contextmanager
    def _transaction(self) -> Iterator[Tables]:
        with self._lock:
            yield self._tables
