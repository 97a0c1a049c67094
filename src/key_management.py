"""
Stealth Notes - Key Management

Owns the recipient's long-term X25519 key pair. The public key is handed out
to senders; the private key is only ever read back through the
authentication gate and is used exclusively for trial derivation.

Records (all prefixed with "<identity>:"):
    private_<keyId>   authenticated entry, hex private key
    public_<keyId>    hex public key
    auth_credential   enrolled authenticator credential (public data)
    key_info          JSON StoredKeyInfo, written last
"""

import json
import logging
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from authentication import AuthenticationGate, Credential
from retry import RetryConfig, retry_call
from stealth_crypto import (
    EntropySource,
    bytes_to_hex,
    coerce_key,
    generate_x25519_keypair,
    hex_to_bytes,
    public_key_from_private,
    short_hex,
    zeroize,
)
from stealth_exceptions import (
    AuthenticationRequired,
    IntegrityError,
    StorageError,
)
from storage.base import EntryLockedError, SecureStorageBackend

logger = logging.getLogger(__name__)

KEY_ID_BYTES = 16


@dataclass
class KeyPair:
    """Freshly generated key pair. private_key is a zeroizable bytearray."""

    public_key: bytes
    private_key: bytearray
    key_id: str
    created_at: str

    def __repr__(self) -> str:
        return f"KeyPair(key_id={self.key_id!r}, public_key={short_hex(bytes_to_hex(self.public_key))})"

    def wipe(self) -> None:
        zeroize(self.private_key)


@dataclass
class StoredKeyInfo:
    """Key metadata record. Never contains the private key."""

    key_id: str
    public_key: bytes
    created_at: str
    onchain_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key_id": self.key_id,
            "public_key": bytes_to_hex(self.public_key),
            "created_at": self.created_at,
            "onchain_id": self.onchain_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StoredKeyInfo":
        return cls(
            key_id=data["key_id"],
            public_key=hex_to_bytes(data["public_key"]),
            created_at=data["created_at"],
            onchain_id=data.get("onchain_id"),
        )


class KeyManager:
    """
    Generates, stores and guards the recipient key pair for one identity.

    Usage:
        manager = KeyManager(storage, AuthenticationGate(authenticator))
        info = manager.generate_and_store_keys()
        private_key = manager.get_private_key()  # runs the auth ceremony
    """

    def __init__(
        self,
        storage: SecureStorageBackend,
        gate: AuthenticationGate,
        identity: str = "default",
        entropy: EntropySource = os.urandom,
        retry_config: RetryConfig | None = None,
    ):
        self.storage = storage
        self.gate = gate
        self.identity = identity
        self._entropy = entropy
        self._retry = retry_config or RetryConfig()

    # ------------------------------------------------------------------
    # Record names
    # ------------------------------------------------------------------

    def _record(self, name: str) -> str:
        return f"{self.identity}:{name}"

    def _private_record(self, key_id: str) -> str:
        return self._record(f"private_{key_id}")

    def _public_record(self, key_id: str) -> str:
        return self._record(f"public_{key_id}")

    def _write(self, key: str, value: str, require_authentication: bool = False) -> None:
        retry_call(
            self.storage.set_item,
            args=(key, value),
            kwargs={"require_authentication": require_authentication},
            config=self._retry,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def generate_key_pair(self) -> KeyPair:
        """
        Generate a new X25519 key pair.

        Raises:
            EntropyError: If the entropy source is unavailable
        """
        private_key, public_key = generate_x25519_keypair(self._entropy)
        key_id = generate_key_id(self._entropy)
        key_pair = KeyPair(
            public_key=public_key,
            private_key=private_key,
            key_id=key_id,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        logger.info(
            "Generated X25519 key pair",
            extra={"key_id": key_id, "public_key": short_hex(bytes_to_hex(public_key))},
        )
        return key_pair

    def store(self, key_pair: KeyPair, onchain_id: str | None = None) -> StoredKeyInfo:
        """
        Persist a key pair. Idempotent: existing keys are never overwritten.

        The authenticator is enrolled before anything is written, so a private
        key is never stored without a way to unlock it.

        Returns:
            The stored key info (the pre-existing one if keys already exist)

        Raises:
            AuthenticationRequired: If no authenticator is configured
            StorageError: If persisting fails after retries
        """
        existing = self.get_key_info()
        if existing is not None:
            logger.info("Keys already exist, keeping stored key pair",
                        extra={"key_id": existing.key_id})
            return existing

        if public_key_from_private(key_pair.private_key) != key_pair.public_key:
            raise IntegrityError("Public key does not match private key", action="store")

        credential = self.gate.enroll()
        info = StoredKeyInfo(
            key_id=key_pair.key_id,
            public_key=key_pair.public_key,
            created_at=key_pair.created_at,
            onchain_id=onchain_id,
        )

        written: list[str] = []
        try:
            self._write(self._private_record(info.key_id),
                        bytes_to_hex(key_pair.private_key, prefix=False),
                        require_authentication=True)
            written.append(self._private_record(info.key_id))

            self._write(self._public_record(info.key_id), bytes_to_hex(info.public_key))
            written.append(self._public_record(info.key_id))

            self._write(self._record("auth_credential"), json.dumps(credential.to_dict()))
            written.append(self._record("auth_credential"))

            # key_info marks the set as complete
            self._write(self._record("key_info"), json.dumps(info.to_dict()))
        except StorageError:
            logger.error("Failed to store key pair, rolling back",
                         extra={"key_id": info.key_id})
            for name in written:
                self.storage.delete_item(name)
            raise

        logger.info("Stored key pair", extra={"key_id": info.key_id})
        return info

    def get_key_info(self) -> StoredKeyInfo | None:
        raw = self.storage.get_item(self._record("key_info"))
        if raw is None:
            return None
        try:
            return StoredKeyInfo.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            raise IntegrityError("Stored key info is malformed", action="get_key_info",
                                 cause=e) from e

    def has_keys(self) -> bool:
        return self.get_key_info() is not None

    def get_public_key(self) -> bytes | None:
        """Public key, or None if no keys exist. Never requires authentication."""
        info = self.get_key_info()
        return info.public_key if info else None

    def get_credential(self) -> Credential | None:
        raw = self.storage.get_item(self._record("auth_credential"))
        if raw is None:
            return None
        return Credential.from_dict(json.loads(raw))

    def get_private_key(self) -> bytes | None:
        """
        Read the private key after a successful authentication ceremony.

        Returns:
            32-byte private key, or None if no keys exist

        Raises:
            AuthenticationRequired: No authenticator, or the user cancelled
            AuthenticationFailed: The authentication response was rejected
            IntegrityError: Stored key material is missing or inconsistent
        """
        info = self.get_key_info()
        if info is None:
            return None

        credential = self.get_credential()
        if credential is None:
            raise IntegrityError("Authenticator credential record is missing",
                                 action="get_private_key")

        self.gate.authenticate(credential, purpose="get_private_key")

        try:
            raw = self.storage.get_item(self._private_record(info.key_id), authenticated=True)
        except EntryLockedError as e:
            raise AuthenticationRequired("Private key entry is locked",
                                         action="get_private_key", cause=e) from e
        if raw is None:
            raise IntegrityError("Private key record is missing", action="get_private_key",
                                 details={"key_id": info.key_id})

        private_key = coerce_key(raw, "stored private key")
        if public_key_from_private(private_key) != info.public_key:
            raise IntegrityError("Stored private key does not match public key",
                                 action="get_private_key", details={"key_id": info.key_id})

        logger.debug("Private key released", extra={"key_id": info.key_id})
        return private_key

    def delete(self) -> bool:
        """
        Purge every key record for this identity. Irreversible.

        Returns:
            True if keys existed
        """
        info = self.get_key_info()
        existed = info is not None
        # key_info first so a partial delete never looks like a complete key set
        self.storage.delete_item(self._record("key_info"))
        if info is not None:
            self.storage.delete_item(self._private_record(info.key_id))
            self.storage.delete_item(self._public_record(info.key_id))
        self.storage.delete_item(self._record("auth_credential"))
        if existed:
            logger.warning("Deleted key pair", extra={"key_id": info.key_id})
        return existed

    def generate_and_store_keys(self, onchain_id: str | None = None) -> StoredKeyInfo:
        """Return existing keys, or generate and store a new pair."""
        existing = self.get_key_info()
        if existing is not None:
            return existing

        key_pair = self.generate_key_pair()
        try:
            return self.store(key_pair, onchain_id=onchain_id)
        finally:
            key_pair.wipe()


def generate_key_id(entropy: EntropySource = secrets.token_bytes) -> str:
    """16 random bytes as hex."""
    return entropy(KEY_ID_BYTES).hex()
