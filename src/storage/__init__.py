"""
Secure storage layer for Stealth Notes.

This package provides pluggable key-value backends for the recipient's keys
and discovered notes:

- JSON vault file (default, AES-256-GCM encrypted per entry)
- Memory (for testing and ephemeral identities)

Usage:
    from storage import get_storage_backend

    storage = get_storage_backend(config)
    storage.set_item("default:public_key", public_hex)
    storage.get_item("default:private_key", authenticated=True)
"""

from typing import TYPE_CHECKING

from storage.base import (
    EntryLockedError,
    SecureStorageBackend,
    StorageError,
    StorageReadError,
    StorageWriteError,
)
from storage.json_file import JSONFileStorage
from storage.memory import MemoryStorage

if TYPE_CHECKING:
    from config import StealthConfig

__all__ = [
    "EntryLockedError",
    "JSONFileStorage",
    "MemoryStorage",
    "SecureStorageBackend",
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
    "get_storage_backend",
]


def get_storage_backend(config: "StealthConfig | None" = None) -> SecureStorageBackend:
    """
    Get the configured storage backend.

    Args:
        config: Loaded configuration; read from the environment when omitted

    Returns:
        Configured SecureStorageBackend instance
    """
    if config is None:
        from config import StealthConfig
        config = StealthConfig.from_env()

    backend_type = config.storage_backend.lower()

    if backend_type == "json":
        return JSONFileStorage(config.vault_file, vault_key=config.vault_key)

    elif backend_type == "memory":
        return MemoryStorage()

    else:
        raise StorageError(f"Unknown storage backend: {backend_type}")
