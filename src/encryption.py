"""
Stealth Notes - Vault Encryption

Encrypts secure-storage entries at rest. Note records reveal which deposits a
user received, so they get the same protection as the private key.

Security Features:
- AES-256-GCM authenticated encryption
- Entry name bound as associated data (ciphertexts cannot be swapped between entries)
- PBKDF2-HMAC-SHA256 (600,000 iterations) when the vault key is a passphrase
- Random 96-bit nonce per encryption
"""

import base64
import binascii
import json
import secrets
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

# Constants
SALT_SIZE = 16  # 128 bits
NONCE_SIZE = 12  # 96 bits for GCM
KEY_SIZE = 32  # 256 bits
TAG_SIZE = 16
PBKDF2_ITERATIONS = 600_000  # OWASP recommended minimum for PBKDF2-HMAC-SHA256

# Encrypted value prefix, versioned
VAULT_PREFIX = "VAULT:1:"


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""
    pass


class KeyDerivationError(EncryptionError):
    """Raised when the vault key cannot be derived."""
    pass


def generate_vault_key() -> str:
    """
    Generate a random vault key.

    Returns:
        Base64-encoded 256-bit key, usable directly as STEALTH_VAULT_KEY
    """
    return base64.b64encode(secrets.token_bytes(KEY_SIZE)).decode("utf-8")


def generate_salt() -> bytes:
    return secrets.token_bytes(SALT_SIZE)


def derive_key(passphrase: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """
    Derive a 256-bit key from a passphrase with PBKDF2.

    Raises:
        KeyDerivationError: If the passphrase is empty
    """
    if not passphrase:
        raise KeyDerivationError("Passphrase cannot be empty")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def resolve_vault_key(
    key_material: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS
) -> bytes:
    """
    Turn configured key material into a raw AES key.

    A base64 string that decodes to exactly 32 bytes (as produced by
    generate_vault_key) is used directly; anything else is treated as a
    passphrase and stretched with PBKDF2 using the vault salt.
    """
    if not key_material:
        raise KeyDerivationError("Vault key material is empty")

    try:
        decoded = base64.b64decode(key_material, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""

    if len(decoded) == KEY_SIZE:
        return decoded
    return derive_key(key_material, salt, iterations)


def encrypt_value(
    data: str | bytes | dict[str, Any],
    key: bytes,
    associated_data: bytes | None = None,
) -> str:
    """
    Encrypt a value with AES-256-GCM.

    Args:
        data: String, bytes, or JSON-serializable dict
        key: Raw 32-byte key
        associated_data: Authenticated but unencrypted context (entry name)

    Returns:
        VAULT_PREFIX + base64(nonce || ciphertext || tag)
    """
    if len(key) != KEY_SIZE:
        raise EncryptionError(f"Vault key must be {KEY_SIZE} bytes")

    if isinstance(data, dict):
        payload = json.dumps(data, sort_keys=True).encode("utf-8")
    elif isinstance(data, str):
        payload = data.encode("utf-8")
    else:
        payload = bytes(data)

    nonce = secrets.token_bytes(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, payload, associated_data)
    return VAULT_PREFIX + base64.b64encode(nonce + ciphertext).decode("utf-8")


def decrypt_value(
    token: str,
    key: bytes,
    associated_data: bytes | None = None,
    return_type: str = "str",
) -> str | bytes | dict[str, Any]:
    """
    Decrypt a value produced by encrypt_value.

    Args:
        token: Encrypted value with VAULT_PREFIX
        key: Raw 32-byte key
        associated_data: Must match the value used at encryption time
        return_type: "str", "bytes", or "json"

    Raises:
        EncryptionError: On a wrong key, tampering, or a malformed token
    """
    if not is_encrypted(token):
        raise EncryptionError("Invalid encrypted value: missing prefix")

    try:
        blob = base64.b64decode(token[len(VAULT_PREFIX):], validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncryptionError("Invalid encrypted value: bad encoding") from e

    if len(blob) < NONCE_SIZE + TAG_SIZE:
        raise EncryptionError("Invalid encrypted value: too short")

    nonce, ciphertext = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, associated_data)
    except InvalidTag as e:
        raise EncryptionError("Decryption failed: wrong key or tampered data") from e

    if return_type == "bytes":
        return plaintext
    text = plaintext.decode("utf-8")
    if return_type == "json":
        return json.loads(text)
    return text


def is_encrypted(data: Any) -> bool:
    """Check if a value carries the vault prefix."""
    return isinstance(data, str) and data.startswith(VAULT_PREFIX)


__all__ = [
    "EncryptionError",
    "KeyDerivationError",
    "generate_vault_key",
    "generate_salt",
    "derive_key",
    "resolve_vault_key",
    "encrypt_value",
    "decrypt_value",
    "is_encrypted",
    "VAULT_PREFIX",
    "PBKDF2_ITERATIONS",
]
