"""
Stealth Notes - Primitive Cryptography

Building blocks shared by the sender and the recipient:
- X25519 key generation and key agreement
- HKDF-SHA256 with the fixed zero salt and the two domain labels
- Commitment computation: Poseidon2(secret || nullifier)
- Hex / field-element codecs and zeroization helpers

Both sides must run exactly the same derivation, so every constant used here
is part of the wire protocol and must not change.
"""

import os
import re
from collections.abc import Callable
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from poseidon_hash import BN254_SCALAR_FIELD, poseidon_hash_bytes
from stealth_exceptions import EntropyError, InvalidInputError, InvalidKeyError

# Constants
KEY_SIZE = 32  # X25519 keys and all derived values are 32 bytes
HKDF_SALT = bytes(32)
SECRET_INFO = b"string1"
NULLIFIER_INFO = b"string2"

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")

EntropySource = Callable[[int], bytes]


@dataclass(frozen=True)
class DerivedSecretMaterial:
    """Per-trial output of the shared-secret derivation."""

    shared_secret: bytes
    secret: bytes
    nullifier: bytes

    def __repr__(self) -> str:
        return "DerivedSecretMaterial(<redacted>)"


# ============================================================
# Codecs
# ============================================================

def strip_hex_prefix(value: str) -> str:
    return value[2:] if value[:2] in ("0x", "0X") else value


def bytes_to_hex(data: bytes, prefix: bool = True) -> str:
    """Encode bytes as lowercase hex, 0x-prefixed by default."""
    encoded = bytes(data).hex()
    return f"0x{encoded}" if prefix else encoded


def hex_to_bytes(value: str) -> bytes:
    """Decode hex with or without a 0x prefix."""
    cleaned = strip_hex_prefix(value.strip())
    if len(cleaned) % 2 or not _HEX_RE.match(cleaned):
        raise ValueError("Invalid hex string")
    return bytes.fromhex(cleaned)


def coerce_key(value: bytes | bytearray | str, name: str = "key") -> bytes:
    """
    Normalize a 32-byte key given as bytes or hex.

    Raises:
        InvalidKeyError: If the value does not decode to exactly 32 bytes
    """
    if isinstance(value, str):
        try:
            raw = hex_to_bytes(value)
        except ValueError as e:
            raise InvalidKeyError(f"{name} is not valid hex", action="coerce_key") from e
    elif isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
    else:
        raise InvalidKeyError(
            f"{name} must be bytes or hex, got {type(value).__name__}",
            action="coerce_key",
        )

    if len(raw) != KEY_SIZE:
        raise InvalidKeyError(
            f"{name} must be {KEY_SIZE} bytes, got {len(raw)}",
            length=len(raw),
            action="coerce_key",
        )
    return raw


def is_valid_public_key(value: bytes | str) -> bool:
    """Check that a value is a well-formed 32-byte X25519 public key encoding."""
    try:
        coerce_key(value, "public key")
        return True
    except InvalidKeyError:
        return False


def commitment_to_hex(value: int) -> str:
    """Encode a field element as a 0x-prefixed 32-byte big-endian hex string."""
    return f"0x{value:064x}"


def parse_commitment(value: int | str | bytes) -> int:
    """
    Parse an observed commitment into a field element.

    Accepted forms: int, 32-byte big-endian bytes, 0x-prefixed hex, bare
    64-character hex, or a decimal string.

    Raises:
        InvalidInputError: If the value is not a field element
    """
    if isinstance(value, bool):
        raise InvalidInputError("Commitment cannot be a boolean", action="parse_commitment")

    if isinstance(value, int):
        parsed = value
    elif isinstance(value, (bytes, bytearray)):
        if len(value) != KEY_SIZE:
            raise InvalidInputError(
                f"Commitment bytes must be {KEY_SIZE} long, got {len(value)}",
                action="parse_commitment",
            )
        parsed = int.from_bytes(value, "big")
    elif isinstance(value, str):
        text = value.strip()
        try:
            if text[:2] in ("0x", "0X"):
                parsed = int(text[2:], 16)
            elif len(text) == 2 * KEY_SIZE and _HEX_RE.match(text):
                parsed = int(text, 16)
            elif text.isdigit():
                parsed = int(text, 10)
            else:
                raise ValueError(text)
        except ValueError as e:
            raise InvalidInputError(
                "Commitment is not a valid number", action="parse_commitment"
            ) from e
    else:
        raise InvalidInputError(
            f"Unsupported commitment type {type(value).__name__}",
            action="parse_commitment",
        )

    if not 0 <= parsed < BN254_SCALAR_FIELD:
        raise InvalidInputError(
            "Commitment is outside the BN254 scalar field", action="parse_commitment"
        )
    return parsed


def short_hex(value: str | int, keep: int = 10) -> str:
    """Shorten a hex value for log lines."""
    text = commitment_to_hex(value) if isinstance(value, int) else str(value)
    return text if len(text) <= keep else f"{text[:keep]}..."


def zeroize(buffer: bytearray) -> None:
    """Overwrite a mutable buffer in place."""
    for i in range(len(buffer)):
        buffer[i] = 0


# ============================================================
# X25519
# ============================================================

def generate_x25519_keypair(entropy: EntropySource = os.urandom) -> tuple[bytearray, bytes]:
    """
    Generate an X25519 key pair from the given entropy source.

    Returns:
        Tuple of (private key as a zeroizable bytearray, public key bytes)

    Raises:
        EntropyError: If the entropy source fails or returns short output
    """
    try:
        seed = entropy(KEY_SIZE)
    except (NotImplementedError, OSError) as e:
        raise EntropyError(
            "No secure random source available", action="generate_keypair", cause=e
        ) from e

    if not isinstance(seed, (bytes, bytearray)) or len(seed) != KEY_SIZE:
        raise EntropyError(
            "Entropy source returned malformed output", action="generate_keypair"
        )

    private_key = X25519PrivateKey.from_private_bytes(bytes(seed))
    private_raw = bytearray(
        private_key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
    )
    public_raw = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return private_raw, public_raw


def public_key_from_private(private_key: bytes | bytearray) -> bytes:
    """Derive the X25519 public key for a private key."""
    key = X25519PrivateKey.from_private_bytes(coerce_key(private_key, "private key"))
    return key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)


def x25519_shared_secret(private_key: bytes | bytearray, public_key: bytes) -> bytes:
    """
    Compute the raw X25519 shared secret.

    Raises:
        InvalidKeyError: If either key has the wrong length
        InvalidInputError: If the peer key is a low-order point (all-zero output)
    """
    private = X25519PrivateKey.from_private_bytes(coerce_key(private_key, "private key"))
    peer = X25519PublicKey.from_public_bytes(coerce_key(public_key, "public key"))
    try:
        return private.exchange(peer)
    except ValueError as e:
        raise InvalidInputError(
            "Key agreement produced an all-zero secret", action="x25519"
        ) from e


# ============================================================
# Derivation
# ============================================================

def hkdf_sha256(ikm: bytes, info: bytes, length: int = KEY_SIZE) -> bytes:
    """HKDF-SHA256 with the protocol's 32-zero-byte salt."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=HKDF_SALT,
        info=info,
    )
    return hkdf.derive(ikm)


def derive_from_shared_secret(shared_secret: bytes) -> DerivedSecretMaterial:
    """Split a shared secret into the note secret and nullifier."""
    return DerivedSecretMaterial(
        shared_secret=shared_secret,
        secret=hkdf_sha256(shared_secret, SECRET_INFO),
        nullifier=hkdf_sha256(shared_secret, NULLIFIER_INFO),
    )


def derive_secret_material(
    private_key: bytes | bytearray, public_key: bytes
) -> DerivedSecretMaterial:
    """Key agreement followed by HKDF domain separation."""
    return derive_from_shared_secret(x25519_shared_secret(private_key, public_key))


def compute_commitment(secret: bytes, nullifier: bytes) -> int:
    """commitment = Poseidon2(secret || nullifier), one field limb per byte."""
    if len(secret) != KEY_SIZE or len(nullifier) != KEY_SIZE:
        raise InvalidInputError(
            "Secret and nullifier must be 32 bytes each", action="compute_commitment"
        )
    return poseidon_hash_bytes(secret, nullifier)


__all__ = [
    "KEY_SIZE",
    "HKDF_SALT",
    "SECRET_INFO",
    "NULLIFIER_INFO",
    "DerivedSecretMaterial",
    "bytes_to_hex",
    "hex_to_bytes",
    "coerce_key",
    "is_valid_public_key",
    "commitment_to_hex",
    "parse_commitment",
    "short_hex",
    "zeroize",
    "generate_x25519_keypair",
    "public_key_from_private",
    "x25519_shared_secret",
    "hkdf_sha256",
    "derive_from_shared_secret",
    "derive_secret_material",
    "compute_commitment",
]
