"""
In-memory storage backend.

Holds the snapshot in process memory. Used by the test suite and by
``STORAGE_BACKEND=memory`` for throwaway ledgers.
"""

import copy
import threading
from typing import Any

from storage.base import StorageBackend, summarize_snapshot


class MemoryStorage(StorageBackend):
    """
    Snapshot kept in a private deep copy.

    ``save_count`` counts successful writes, which lets tests check that
    every committed transaction was persisted exactly once.
    """

    def __init__(self):
        self._snapshot: dict[str, Any] | None = None
        self._lock = threading.Lock()
        self.save_count = 0

    def load_snapshot(self) -> dict[str, Any] | None:
        with self._lock:
            return copy.deepcopy(self._snapshot)

    def save_snapshot(self, snapshot: dict[str, Any]) -> None:
        stored = copy.deepcopy(snapshot)
        with self._lock:
            self._snapshot = stored
            self.save_count += 1

    def is_available(self) -> bool:
        return True

    def get_version(self) -> int:
        with self._lock:
            return summarize_snapshot(self._snapshot)["version"]

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        with self._lock:
            info["has_data"] = self._snapshot is not None
            info["save_count"] = self.save_count
            info.update(summarize_snapshot(self._snapshot))
        return info

    def clear(self) -> None:
        with self._lock:
            self._snapshot = None
