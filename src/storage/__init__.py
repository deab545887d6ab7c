"""
Storage abstraction layer for IPVault.

This package provides pluggable backends that persist the ledger snapshot
after every committed transaction:

- JSON file (default, optionally encrypted at rest)
- PostgreSQL (for production deployments)
- Memory (for testing)

Usage:
    from storage import get_storage_backend

    storage = get_storage_backend()
    storage.save_snapshot(state.to_dict())
    data = storage.load_snapshot()
"""

import os
from typing import TYPE_CHECKING

from storage.base import (
    StorageBackend,
    StorageConnectionError,
    StorageError,
    StorageReadError,
    StorageWriteError,
)
from storage.json_file import JSONFileStorage
from storage.memory import MemoryStorage

# Lazy import for PostgreSQL to avoid requiring psycopg2
if TYPE_CHECKING:
    from storage.postgresql import PostgreSQLStorage

__all__ = [
    "JSONFileStorage",
    "MemoryStorage",
    "StorageBackend",
    "StorageConnectionError",
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
    "get_storage_backend",
]


def get_storage_backend(
    backend_type: str | None = None,
    data_file: str | None = None,
    database_url: str | None = None,
    encryption_enabled: bool = False,
    encryption_key: str | None = None,
) -> StorageBackend:
    """
    Build a storage backend from explicit arguments or the environment.

    Environment variables (used for arguments left as None):
        STORAGE_BACKEND: Backend type ("json", "postgresql", "memory")
        LEDGER_DATA_FILE: Path for JSON file storage (default: ledger_data.json)
        DATABASE_URL: PostgreSQL connection URL

    Returns:
        Configured StorageBackend instance
    """
    backend_type = (backend_type or os.getenv("STORAGE_BACKEND", "json")).lower()

    if backend_type == "json":
        data_file = data_file or os.getenv("LEDGER_DATA_FILE", "ledger_data.json")
        return JSONFileStorage(
            data_file,
            encryption_enabled=encryption_enabled,
            encryption_key=encryption_key,
        )

    elif backend_type == "postgresql" or backend_type == "postgres":
        database_url = database_url or os.getenv("DATABASE_URL")
        if not database_url:
            raise StorageError("DATABASE_URL environment variable required for PostgreSQL backend")
        from storage.postgresql import PostgreSQLStorage

        return PostgreSQLStorage(database_url)

    elif backend_type == "memory":
        return MemoryStorage()

    else:
        raise StorageError(f"Unknown storage backend: {backend_type}")
