"""
Abstract base class for secure storage backends.

The core persists four kinds of records per identity: the private key
(authenticated entry), the public key, the key metadata, and the serialized
note list. Backends are simple string key-value stores; entries written with
require_authentication=True can only be read by callers that have passed the
authentication gate.
"""

from abc import ABC, abstractmethod
from typing import Any


class StorageError(Exception):
    """Base exception for storage-related errors."""
    pass


class StorageReadError(StorageError):
    """Raised when reading from storage fails."""
    pass


class StorageWriteError(StorageError):
    """Raised when writing to storage fails."""
    pass


class EntryLockedError(StorageError):
    """Raised when an authenticated entry is read without authentication."""
    pass


class SecureStorageBackend(ABC):
    """
    Abstract base class for secure key-value storage.

    All backends must implement these methods to provide a consistent
    interface for key and note persistence.
    """

    @abstractmethod
    def get_item(self, key: str, authenticated: bool = False) -> str | None:
        """
        Read an entry.

        Args:
            key: Entry name
            authenticated: Caller has passed the authentication gate

        Returns:
            Stored value, or None if the entry does not exist

        Raises:
            EntryLockedError: If the entry requires authentication and
                authenticated is False
            StorageReadError: If reading fails
        """
        pass

    @abstractmethod
    def set_item(self, key: str, value: str, require_authentication: bool = False) -> None:
        """
        Write an entry, replacing any previous value.

        Raises:
            StorageWriteError: If writing fails
        """
        pass

    @abstractmethod
    def delete_item(self, key: str) -> bool:
        """
        Delete an entry.

        Returns:
            True if the entry existed
        """
        pass

    @abstractmethod
    def keys(self) -> list[str]:
        """List entry names (never values)."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if the storage backend is available and ready.

        Returns:
            True if storage is accessible, False otherwise
        """
        pass

    def has_item(self, key: str) -> bool:
        return key in self.keys()

    def get_info(self) -> dict[str, Any]:
        """
        Get information about the storage backend.

        Returns:
            Dictionary with backend type, status, and entry count
        """
        return {
            "backend_type": self.__class__.__name__,
            "available": self.is_available(),
            "entry_count": len(self.keys()),
        }

    def close(self) -> None:
        """
        Close the storage and release resources.

        Default implementation does nothing.
        """
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - closes storage."""
        self.close()
        return False
