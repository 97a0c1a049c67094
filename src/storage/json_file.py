"""
JSON file storage backend.

This is the default storage backend. All entries live in a single vault file;
each value is encrypted with AES-256-GCM using the entry name as associated
data, so ciphertexts cannot be moved between entries. A vault key is
mandatory: there is no plaintext mode, and an unencrypted entry found on disk
is treated as tampering.

File layout:
    {
      "version": 1,
      "kdf": {"salt": "<base64>", "iterations": 600000},
      "entries": {
        "<name>": {"value": "VAULT:1:...", "require_authentication": true}
      }
    }
"""

import base64
import json
import logging
import os
import threading
from typing import Any

from encryption import (
    PBKDF2_ITERATIONS,
    EncryptionError,
    decrypt_value,
    encrypt_value,
    generate_salt,
    is_encrypted,
    resolve_vault_key,
)
from storage.base import (
    EntryLockedError,
    SecureStorageBackend,
    StorageError,
    StorageReadError,
    StorageWriteError,
)

logger = logging.getLogger(__name__)

VAULT_FORMAT_VERSION = 1
VAULT_FILE_MODE = 0o600


class JSONFileStorage(SecureStorageBackend):
    """
    Encrypted JSON vault file.

    Entries are cached in memory after the first load; every write rewrites
    the whole file atomically (write to temp, then rename). Thread-safe.
    """

    def __init__(
        self,
        file_path: str = "stealth_vault.json",
        vault_key: str | None = None,
        kdf_iterations: int = PBKDF2_ITERATIONS,
    ):
        """
        Initialize JSON file storage.

        Args:
            file_path: Path to the vault file
            vault_key: Base64 key or passphrase
            kdf_iterations: PBKDF2 iterations for passphrase keys

        Raises:
            StorageError: If no vault key is given
        """
        if not vault_key:
            raise StorageError(
                f"A vault key is required for {file_path}; set STEALTH_VAULT_KEY"
            )

        self.file_path = file_path
        self._vault_key_material = vault_key
        self._kdf_iterations = kdf_iterations
        self._kdf_iterations_effective = kdf_iterations
        self._lock = threading.RLock()

        self._entries: dict[str, dict[str, Any]] | None = None
        self._salt: bytes | None = None
        self._key: bytes | None = None

    # ------------------------------------------------------------------
    # File handling
    # ------------------------------------------------------------------

    def _load(self) -> dict[str, dict[str, Any]]:
        """Load the vault file once. Caller holds the lock."""
        if self._entries is not None:
            return self._entries

        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                raw_data = f.read()
        except FileNotFoundError:
            raw_data = ""
        except PermissionError as e:
            raise StorageReadError(f"Permission denied: {self.file_path}") from e
        except OSError as e:
            raise StorageReadError(f"Failed to read vault: {e}") from e

        if not raw_data.strip():
            self._salt = generate_salt()
            self._kdf_iterations_effective = self._kdf_iterations
            self._entries = {}
            return self._entries

        try:
            document = json.loads(raw_data)
        except json.JSONDecodeError as e:
            raise StorageReadError(f"Invalid JSON format: {e}") from e

        if document.get("version") != VAULT_FORMAT_VERSION:
            raise StorageReadError(
                f"Unsupported vault version: {document.get('version')!r}"
            )

        kdf = document.get("kdf") or {}
        try:
            self._salt = base64.b64decode(kdf["salt"])
            self._kdf_iterations_effective = int(kdf.get("iterations", self._kdf_iterations))
        except (KeyError, ValueError, TypeError) as e:
            raise StorageReadError("Vault KDF section is malformed") from e

        entries = document.get("entries")
        if not isinstance(entries, dict):
            raise StorageReadError("Vault entries section is malformed")

        self._entries = entries
        return self._entries

    def _save(self) -> None:
        """Write the cached entries to disk. Caller holds the lock."""
        document = {
            "version": VAULT_FORMAT_VERSION,
            "kdf": {
                "salt": base64.b64encode(self._salt).decode("utf-8"),
                "iterations": self._kdf_iterations_effective,
            },
            "entries": self._entries,
        }

        temp_path = f"{self.file_path}.tmp"
        try:
            data = json.dumps(document, indent=2, sort_keys=True)
            fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, VAULT_FILE_MODE)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())

            # Atomic rename
            os.replace(temp_path, self.file_path)
            os.chmod(self.file_path, VAULT_FILE_MODE)
        except PermissionError as e:
            raise StorageWriteError(f"Permission denied: {self.file_path}") from e
        except OSError as e:
            raise StorageWriteError(f"OS error: {e}") from e

    def _cipher_key(self) -> bytes:
        if self._key is None:
            self._key = resolve_vault_key(
                self._vault_key_material, self._salt, self._kdf_iterations_effective
            )
        return self._key

    # ------------------------------------------------------------------
    # SecureStorageBackend
    # ------------------------------------------------------------------

    def get_item(self, key: str, authenticated: bool = False) -> str | None:
        with self._lock:
            entry = self._load().get(key)
            if entry is None:
                return None

            if entry.get("require_authentication") and not authenticated:
                raise EntryLockedError(f"Entry requires authentication: {key}")

            value = entry.get("value")
            if not is_encrypted(value):
                raise StorageReadError(f"Vault entry {key} is not encrypted")

            try:
                return decrypt_value(value, self._cipher_key(), associated_data=key.encode())
            except EncryptionError as e:
                raise StorageReadError(f"Cannot decrypt entry {key}: {e}") from e

    def set_item(self, key: str, value: str, require_authentication: bool = False) -> None:
        if not isinstance(value, str):
            raise TypeError("Storage values must be strings")

        with self._lock:
            entries = self._load()
            try:
                stored = encrypt_value(value, self._cipher_key(), associated_data=key.encode())
            except EncryptionError as e:
                raise StorageWriteError(f"Cannot encrypt entry {key}: {e}") from e

            previous = entries.get(key)
            entries[key] = {
                "value": stored,
                "require_authentication": bool(require_authentication),
            }
            try:
                self._save()
            except StorageWriteError:
                # Keep the cache consistent with what is on disk
                if previous is None:
                    entries.pop(key, None)
                else:
                    entries[key] = previous
                raise

    def delete_item(self, key: str) -> bool:
        with self._lock:
            entries = self._load()
            previous = entries.pop(key, None)
            if previous is None:
                return False
            try:
                self._save()
            except StorageWriteError:
                entries[key] = previous
                raise
            return True

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._load())

    def is_available(self) -> bool:
        """
        Check if file storage is available.

        Returns:
            True if the vault directory exists and is writable
        """
        directory = os.path.dirname(self.file_path) or "."
        return os.path.isdir(directory) and os.access(directory, os.W_OK)

    def get_info(self) -> dict[str, Any]:
        """Get storage backend information."""
        info = super().get_info()
        info.update({
            "file_path": self.file_path,
            "file_exists": os.path.exists(self.file_path),
            "encryption_enabled": True,
        })

        if os.path.exists(self.file_path):
            try:
                stat = os.stat(self.file_path)
                info["file_size_bytes"] = stat.st_size
                info["last_modified"] = stat.st_mtime
            except OSError:
                pass

        return info

    def close(self) -> None:
        """Drop cached entries and the derived key."""
        with self._lock:
            self._entries = None
            self._key = None

    def destroy(self) -> bool:
        """
        Delete the vault file.

        Returns:
            True if deleted, False if file didn't exist
        """
        with self._lock:
            self.close()
            try:
                os.remove(self.file_path)
                return True
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StorageError(f"Failed to delete vault: {e}") from e
