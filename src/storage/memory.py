"""
In-memory storage backend.

Useful for:
- Unit testing
- Ephemeral identities that must not touch disk
"""

import threading

from storage.base import EntryLockedError, SecureStorageBackend


class MemoryStorage(SecureStorageBackend):
    """
    In-memory secure storage.

    All data is lost when the process exits. Thread-safe operations.
    """

    def __init__(self):
        """Initialize empty memory storage."""
        # name -> (value, require_authentication)
        self._entries: dict[str, tuple[str, bool]] = {}
        self._lock = threading.RLock()

    def get_item(self, key: str, authenticated: bool = False) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, locked = entry
            if locked and not authenticated:
                raise EntryLockedError(f"Entry requires authentication: {key}")
            return value

    def set_item(self, key: str, value: str, require_authentication: bool = False) -> None:
        if not isinstance(value, str):
            raise TypeError("Storage values must be strings")
        with self._lock:
            self._entries[key] = (value, require_authentication)

    def delete_item(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)

    def is_available(self) -> bool:
        """Memory storage is always available."""
        return True

    def requires_authentication(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return bool(entry and entry[1])

    def clear(self) -> None:
        """Clear all stored data."""
        with self._lock:
            self._entries.clear()
