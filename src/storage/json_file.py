"""
JSON file storage backend.

The default backend. The snapshot is written as indented JSON, or as an
``ENC:1:`` blob when encryption at rest is enabled, through a temporary
file that is flushed to disk and renamed over the previous snapshot.
"""

import json
import os
import shutil
import threading
from datetime import datetime
from typing import Any

from encryption import EncryptionError, decrypt_snapshot, encrypt_snapshot, is_encrypted
from storage.base import (
    StorageBackend,
    StorageError,
    StorageReadError,
    StorageWriteError,
)


class JSONFileStorage(StorageBackend):
    """
    Ledger snapshot in a single local file.

    Args:
        file_path: Snapshot file location
        encryption_enabled: Encrypt the snapshot at rest
        encryption_key: Passphrase; falls back to IPVAULT_ENCRYPTION_KEY
    """

    def __init__(
        self,
        file_path: str = "ledger_data.json",
        encryption_enabled: bool = False,
        encryption_key: str | None = None,
    ):
        self.file_path = file_path
        self.encryption_enabled = encryption_enabled
        self._encryption_key = encryption_key
        self._lock = threading.Lock()

    @property
    def _temp_path(self) -> str:
        return f"{self.file_path}.tmp"

    def load_snapshot(self) -> dict[str, Any] | None:
        with self._lock:
            try:
                with open(self.file_path, encoding="utf-8") as f:
                    raw = f.read()
            except FileNotFoundError:
                return None
            except OSError as e:
                raise StorageReadError(f"Cannot read {self.file_path}: {e}") from e

        if not raw.strip():
            return None
        return self._decode(raw)

    def _decode(self, raw: str) -> dict[str, Any]:
        if is_encrypted(raw):
            if not self.encryption_enabled:
                raise StorageReadError(
                    f"{self.file_path} holds an encrypted snapshot but encryption is not enabled"
                )
            try:
                raw = decrypt_snapshot(raw, self._encryption_key)
            except EncryptionError as e:
                raise StorageReadError(f"Failed to decrypt snapshot: {e}") from e

        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageReadError(f"{self.file_path} is not valid JSON: {e}") from e

    def _encode(self, snapshot: dict[str, Any]) -> str:
        try:
            data = json.dumps(snapshot, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageWriteError(f"Snapshot is not serializable: {e}") from e

        if self.encryption_enabled:
            try:
                data = encrypt_snapshot(data, self._encryption_key)
            except EncryptionError as e:
                raise StorageWriteError(f"Failed to encrypt snapshot: {e}") from e
        return data

    def save_snapshot(self, snapshot: dict[str, Any]) -> None:
        data = self._encode(snapshot)

        with self._lock:
            try:
                with open(self._temp_path, "w", encoding="utf-8") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(self._temp_path, self.file_path)
            except OSError as e:
                raise StorageWriteError(f"Cannot write {self.file_path}: {e}") from e

    def is_available(self) -> bool:
        directory = os.path.dirname(self.file_path) or "."
        return os.path.isdir(directory) and os.access(directory, os.W_OK)

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        info["file_path"] = self.file_path
        info["encryption_enabled"] = self.encryption_enabled

        try:
            stat = os.stat(self.file_path)
        except OSError:
            info["file_exists"] = False
            return info

        info["file_exists"] = True
        info["file_size_bytes"] = stat.st_size
        info["last_modified"] = stat.st_mtime
        return info

    def delete(self) -> bool:
        """Remove the snapshot file. Returns False if there was none."""
        with self._lock:
            try:
                os.remove(self.file_path)
            except FileNotFoundError:
                return False
            return True

    def backup(self, backup_path: str | None = None) -> str:
        """
        Copy the snapshot file, by default next to it with a timestamp suffix.

        Returns:
            Path of the copy

        Raises:
            StorageError: If there is no snapshot file or the copy fails
        """
        if backup_path is None:
            backup_path = f"{self.file_path}.{datetime.now():%Y%m%d_%H%M%S}.backup"

        with self._lock:
            if not os.path.exists(self.file_path):
                raise StorageError(f"No snapshot at {self.file_path} to back up")
            try:
                shutil.copy2(self.file_path, backup_path)
            except OSError as e:
                raise StorageError(f"Backup failed: {e}") from e
        return backup_path
