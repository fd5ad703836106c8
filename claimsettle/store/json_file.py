"""
Process-safe JSON file store.
"""
import os
import json
import stat
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import portalocker

from ..exceptions import PersistenceError
from .base import TableStore, Tables, empty_tables

logger = logging.getLogger(__name__)


class JsonFileStore(TableStore):
    """
    Store kept in a single JSON file guarded by a portalocker file lock.

    Several worker processes on one host can share the file; every
    operation is a locked read-modify-write.
    """

    def __init__(self, store_path: Optional[str] = None, lock_timeout: int = 10):
        """
        Args:
            store_path: Path of the JSON file; defaults to ``SETTLE_STORE_PATH``
                or ``~/.claimsettle/store.json``
            lock_timeout: Seconds to wait for the file lock
        """
        if store_path:
            self.store_path = Path(store_path)
        else:
            self.store_path = Path(os.environ.get(
                "SETTLE_STORE_PATH",
                os.path.expanduser("~/.claimsettle/store.json")
            ))
        self.lock_timeout = lock_timeout
        self._thread_lock = threading.RLock()
        self._ensure_file()

    def _ensure_file(self) -> None:
        directory = self.store_path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            if not self.store_path.exists():
                with open(self.store_path, "w") as f:
                    json.dump(empty_tables(), f)
            # Sealed companion keys live here (0600)
            if os.name == "posix":
                os.chmod(self.store_path, stat.S_IRUSR | stat.S_IWUSR)
        except OSError as e:
            raise PersistenceError(f"Cannot initialize store at {self.store_path}: {e}")

    def _get_lock_path(self) -> str:
        return str(self.store_path) + ".lock"

    def _read(self) -> Tables:
        try:
            with open(self.store_path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            return empty_tables()
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Corrupt store file {self.store_path}: {e}")
        tables = empty_tables()
        tables.update(data)
        return tables

    def _write(self, tables: Tables) -> None:
        tmp_path = str(self.store_path) + ".tmp"
        with open(tmp_path, "w") as f:
            json.dump(tables, f, indent=2)
        os.replace(tmp_path, self.store_path)

    @contextmanager
    def _transaction(self) -> Iterator[Tables]:
        with self._thread_lock:
            try:
                lock = portalocker.Lock(self._get_lock_path(), timeout=self.lock_timeout)
                lock.acquire()
            except (portalocker.exceptions.LockException, OSError) as e:
                raise PersistenceError(f"Store lock unavailable: {e}")
            try:
                tables = self._read()
                before = json.dumps(tables, sort_keys=True)
                yield tables
                if json.dumps(tables, sort_keys=True) != before:
                    self._write(tables)
            except OSError as e:
                raise PersistenceError(f"Store I/O failed: {e}")
            finally:
                lock.release()
