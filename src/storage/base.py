"""
Storage backend interface for IPVault.

A backend holds the ledger snapshot: the dictionary produced by
``LedgerState.to_dict()`` after every committed transaction. The ledger
writes it inside the transaction, so a failed write rolls the transaction
back and the backend never holds a state the ledger did not commit.
"""

from abc import ABC, abstractmethod
from typing import Any


class StorageError(Exception):
    """Base exception for storage failures."""


class StorageConnectionError(StorageError):
    """The backend could not be reached or initialized."""


class StorageReadError(StorageError):
    """A stored snapshot could not be read or decoded."""


class StorageWriteError(StorageError):
    """A snapshot could not be encoded or written."""


def summarize_snapshot(snapshot: dict[str, Any] | None) -> dict[str, int]:
    """Version, asset count and open dispute count of a snapshot."""
    if not snapshot:
        return {"version": 0, "asset_count": 0, "open_dispute_count": 0}
    return {
        "version": snapshot.get("version", 0),
        "asset_count": len(snapshot.get("assets", [])),
        "open_dispute_count": sum(
            1 for dispute in snapshot.get("disputes", []) if not dispute.get("is_resolved")
        ),
    }


class StorageBackend(ABC):
    """Persists and restores the ledger snapshot."""

    @abstractmethod
    def load_snapshot(self) -> dict[str, Any] | None:
        """
        Latest saved snapshot, or None when nothing has been saved.

        Raises:
            StorageReadError: If the stored data cannot be read
        """

    @abstractmethod
    def save_snapshot(self, snapshot: dict[str, Any]) -> None:
        """
        Replace the stored snapshot.

        Raises:
            StorageWriteError: If the snapshot cannot be written
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the backend can currently accept writes."""

    def get_version(self) -> int:
        # Backends that can answer without loading everything override this
        return summarize_snapshot(self.load_snapshot())["version"]

    def get_info(self) -> dict[str, Any]:
        """Backend type and availability, extended by each backend."""
        return {
            "backend_type": type(self).__name__,
            "available": self.is_available(),
        }

    def close(self) -> None:
        """Release connections; a no-op for backends without any."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
