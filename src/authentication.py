"""
Stealth Notes - Authentication Gate

Access to the recipient's X25519 private key requires a fresh user
authentication. The gate runs a WebAuthn-style challenge-response ceremony:

1. begin_authentication() issues a random 32-byte challenge with an expiry
2. The authenticator signs the challenge with its Ed25519 credential key
3. verify_authentication() checks the signature against the enrolled
   credential public key; each challenge can be used once

Authenticators:
- PassphraseAuthenticator: credential key derived from a passphrase with
  PBKDF2-HMAC-SHA256 and a per-credential salt
- StaticAuthenticator: fixed in-process credential (tests, headless services)

A ceremony either completes, is cancelled by the user (AuthenticationRequired),
or fails verification (AuthenticationFailed).
"""

import base64
import logging
import secrets
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from encryption import PBKDF2_ITERATIONS, derive_key, generate_salt
from stealth_exceptions import AuthenticationFailed, AuthenticationRequired

logger = logging.getLogger(__name__)

CHALLENGE_SIZE = 32


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _unb64(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


@dataclass
class Credential:
    """Enrolled authenticator credential. Contains no secret material."""

    credential_id: str
    public_key: bytes
    authenticator_type: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "credential_id": self.credential_id,
            "public_key": _b64(self.public_key),
            "authenticator_type": self.authenticator_type,
            "params": self.params,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credential":
        return cls(
            credential_id=data["credential_id"],
            public_key=_unb64(data["public_key"]),
            authenticator_type=data.get("authenticator_type", "unknown"),
            params=data.get("params") or {},
        )


@dataclass
class AuthChallenge:
    """Active authentication challenge."""

    challenge_id: str
    challenge: bytes
    purpose: str
    credential: Credential
    created_at: float
    expires_at: float
    used: bool = False


class Authenticator(ABC):
    """Produces challenge signatures on behalf of the user."""

    authenticator_type = "abstract"

    @abstractmethod
    def enroll(self) -> Credential:
        """Create a credential for this authenticator."""
        pass

    @abstractmethod
    def sign_challenge(self, challenge: AuthChallenge) -> bytes | None:
        """
        Sign a challenge.

        Returns:
            Ed25519 signature over the challenge bytes, or None if the user
            cancelled
        """
        pass


class StaticAuthenticator(Authenticator):
    """
    Authenticator with an in-process Ed25519 key.

    Args:
        approve: When False every ceremony is cancelled
        signing_key: Optional fixed key (random otherwise)
    """

    authenticator_type = "static"

    def __init__(self, approve: bool = True, signing_key: Ed25519PrivateKey | None = None):
        self.approve = approve
        self._signing_key = signing_key or Ed25519PrivateKey.generate()
        self.prompts = 0

    def enroll(self) -> Credential:
        public_key = self._signing_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        return Credential(
            credential_id=secrets.token_hex(16),
            public_key=public_key,
            authenticator_type=self.authenticator_type,
        )

    def sign_challenge(self, challenge: AuthChallenge) -> bytes | None:
        self.prompts += 1
        if not self.approve:
            return None
        return self._signing_key.sign(challenge.challenge)


class PassphraseAuthenticator(Authenticator):
    """
    Authenticator whose credential key is stretched from a passphrase.

    Args:
        passphrase: Fixed passphrase, or a callable prompting for one
            (returning None cancels the ceremony)
        iterations: PBKDF2 iterations used at enrollment
    """

    authenticator_type = "passphrase"

    def __init__(
        self,
        passphrase: str | Callable[[str], str | None],
        iterations: int = PBKDF2_ITERATIONS,
    ):
        self._passphrase = passphrase
        self.iterations = iterations

    def _ask(self, purpose: str) -> str | None:
        if callable(self._passphrase):
            return self._passphrase(purpose)
        return self._passphrase

    @staticmethod
    def _signing_key(passphrase: str, salt: bytes, iterations: int) -> Ed25519PrivateKey:
        return Ed25519PrivateKey.from_private_bytes(derive_key(passphrase, salt, iterations))

    def enroll(self) -> Credential:
        passphrase = self._ask("enroll")
        if not passphrase:
            raise AuthenticationRequired(
                "Passphrase entry cancelled", action="enroll"
            )
        salt = generate_salt()
        key = self._signing_key(passphrase, salt, self.iterations)
        return Credential(
            credential_id=secrets.token_hex(16),
            public_key=key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw),
            authenticator_type=self.authenticator_type,
            params={"salt": _b64(salt), "iterations": self.iterations},
        )

    def sign_challenge(self, challenge: AuthChallenge) -> bytes | None:
        passphrase = self._ask(challenge.purpose)
        if not passphrase:
            return None
        params = challenge.credential.params
        key = self._signing_key(passphrase, _unb64(params["salt"]), int(params["iterations"]))
        return key.sign(challenge.challenge)


class AuthenticationGate:
    """
    Challenge-response gate in front of private key access.

    Usage:
        gate = AuthenticationGate(StaticAuthenticator())
        credential = gate.enroll()
        gate.authenticate(credential, purpose="get_private_key")
    """

    CHALLENGE_TIMEOUT_SECONDS = 60

    def __init__(
        self,
        authenticator: Authenticator | None = None,
        clock: Callable[[], float] = time.time,
        challenge_timeout: float | None = None,
    ):
        self.authenticator = authenticator
        self._clock = clock
        self.challenge_timeout = challenge_timeout or self.CHALLENGE_TIMEOUT_SECONDS
        self._challenges: dict[str, AuthChallenge] = {}
        self._lock = threading.Lock()

    def _require_authenticator(self, action: str) -> Authenticator:
        if self.authenticator is None:
            raise AuthenticationRequired("No authenticator is configured", action=action)
        return self.authenticator

    def enroll(self) -> Credential:
        """Enroll the configured authenticator."""
        credential = self._require_authenticator("enroll").enroll()
        logger.info(
            "Authenticator enrolled",
            extra={"credential_id": credential.credential_id,
                   "authenticator_type": credential.authenticator_type},
        )
        return credential

    def begin_authentication(self, credential: Credential, purpose: str) -> AuthChallenge:
        """Issue a single-use challenge for the given credential."""
        now = self._clock()
        challenge = AuthChallenge(
            challenge_id=secrets.token_hex(8),
            challenge=secrets.token_bytes(CHALLENGE_SIZE),
            purpose=purpose,
            credential=credential,
            created_at=now,
            expires_at=now + self.challenge_timeout,
        )
        with self._lock:
            self._purge_expired(now)
            self._challenges[challenge.challenge_id] = challenge
        return challenge

    def verify_authentication(self, challenge_id: str, signature: bytes) -> None:
        """
        Verify a challenge signature.

        Raises:
            AuthenticationFailed: Unknown, expired or reused challenge, or a
                signature that does not verify
        """
        with self._lock:
            challenge = self._challenges.get(challenge_id)
            if challenge is None:
                raise AuthenticationFailed("Challenge not found", action="verify")
            if challenge.used:
                raise AuthenticationFailed("Challenge already used", action="verify")
            # Single use even when verification below fails
            challenge.used = True
            if self._clock() > challenge.expires_at:
                raise AuthenticationFailed("Challenge expired", action="verify")

        try:
            public_key = Ed25519PublicKey.from_public_bytes(challenge.credential.public_key)
            public_key.verify(signature, challenge.challenge)
        except (InvalidSignature, ValueError) as e:
            logger.warning(
                "Authentication signature rejected",
                extra={"credential_id": challenge.credential.credential_id},
            )
            raise AuthenticationFailed(
                "Signature verification failed", action="verify", cause=e
            ) from e

    def authenticate(self, credential: Credential, purpose: str) -> None:
        """
        Run a full ceremony with the configured authenticator.

        Raises:
            AuthenticationRequired: No authenticator, or the user cancelled
            AuthenticationFailed: The response did not verify
        """
        authenticator = self._require_authenticator(purpose)
        challenge = self.begin_authentication(credential, purpose)
        signature = authenticator.sign_challenge(challenge)
        if signature is None:
            with self._lock:
                self._challenges.pop(challenge.challenge_id, None)
            raise AuthenticationRequired("Authentication cancelled by user", action=purpose)
        self.verify_authentication(challenge.challenge_id, signature)

    def _purge_expired(self, now: float) -> None:
        expired = [cid for cid, ch in self._challenges.items() if ch.used or now > ch.expires_at]
        for cid in expired:
            del self._challenges[cid]
