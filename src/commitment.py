"""
Stealth Notes - Commitment Generation and Trial Derivation

Sender side (CommitmentGenerator):
    R = fresh ephemeral X25519 key pair
    shared = X25519(R_priv, recipient_pub)
    secret = HKDF(shared, "string1"), nullifier = HKDF(shared, "string2")
    commitment = Poseidon2(secret || nullifier)
    publish (commitment, R_pub); R_priv is wiped

Recipient side (CommitmentVerifier):
    For every observed (commitment, R_pub), recompute the same chain with the
    recipient's private key. A match means the deposit is ours and yields the
    secret and nullifier needed to withdraw it.

Trial derivation never raises for bad ledger data: a malformed record is
simply not ours.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from chain_watcher import DepositObserved
from monitoring.metrics import MetricsCollector
from note_store import Note, NoteStatus, utc_now
from stealth_crypto import (
    EntropySource,
    bytes_to_hex,
    coerce_key,
    commitment_to_hex,
    compute_commitment,
    derive_secret_material,
    generate_x25519_keypair,
    is_valid_public_key,
    parse_commitment,
    public_key_from_private,
    short_hex,
    zeroize,
)
from stealth_exceptions import InvalidInputError, InvalidKeyError

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass(frozen=True)
class CommitmentResult:
    """What the sender publishes with the deposit."""

    commitment: int
    ephemeral_public_key: bytes

    @property
    def commitment_hex(self) -> str:
        return commitment_to_hex(self.commitment)

    def to_dict(self) -> dict[str, Any]:
        return {
            "commitment": self.commitment_hex,
            "ephemeral_public_key": bytes_to_hex(self.ephemeral_public_key),
        }


@dataclass(frozen=True)
class TrialResult:
    """Outcome of one trial derivation."""

    is_owner: bool
    secret: bytes | None = None
    nullifier: bytes | None = None
    commitment: int | None = None
    error: str | None = None

    def __repr__(self) -> str:
        return f"TrialResult(is_owner={self.is_owner}, error={self.error!r})"


class CommitmentGenerator:
    """
    Sender-side commitment construction.

    Args:
        entropy: CSPRNG used for ephemeral keys (injectable for tests)
    """

    def __init__(self, entropy: EntropySource = os.urandom):
        self._entropy = entropy

    @staticmethod
    def is_valid_public_key(value: bytes | str) -> bool:
        return is_valid_public_key(value)

    def create_commitment(self, recipient_public_key: bytes | str) -> CommitmentResult:
        """
        Create a one-time commitment for a recipient.

        Args:
            recipient_public_key: 32-byte X25519 key, raw or hex

        Raises:
            InvalidKeyError: If the key is not exactly 32 bytes
            EntropyError: If no secure randomness is available
            InvalidInputError: If the key is a low-order point
        """
        recipient = coerce_key(recipient_public_key, "recipient public key")
        ephemeral_private, _ = generate_x25519_keypair(self._entropy)
        try:
            return self.create_commitment_with_ephemeral(recipient, ephemeral_private)
        finally:
            zeroize(ephemeral_private)

    def create_commitment_with_ephemeral(
        self,
        recipient_public_key: bytes | str,
        ephemeral_private_key: bytes | bytearray,
    ) -> CommitmentResult:
        """Deterministic construction from a caller-supplied ephemeral key."""
        recipient = coerce_key(recipient_public_key, "recipient public key")
        ephemeral_public = public_key_from_private(ephemeral_private_key)
        material = derive_secret_material(ephemeral_private_key, recipient)
        commitment = compute_commitment(material.secret, material.nullifier)

        logger.debug(
            "Created commitment %s", short_hex(commitment_to_hex(commitment)),
            extra={"ephemeral_public_key": short_hex(bytes_to_hex(ephemeral_public))},
        )
        return CommitmentResult(commitment=commitment, ephemeral_public_key=ephemeral_public)


class CommitmentVerifier:
    """
    Recipient-side trial derivation.

    Args:
        max_workers: Thread pool size for verify_batch
        metrics: Optional collector for trials_total and verify_batch_ms
    """

    def __init__(
        self,
        max_workers: int = DEFAULT_MAX_WORKERS,
        metrics: MetricsCollector | None = None,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.max_workers = max_workers
        self.metrics = metrics

    @staticmethod
    def recompute_commitment(secret: bytes, nullifier: bytes) -> int:
        return compute_commitment(secret, nullifier)

    def try_derive(
        self,
        ephemeral_public_key: bytes | str,
        recipient_private_key: bytes | bytearray | str,
        observed_commitment: int | str | bytes,
    ) -> TrialResult:
        """
        Check whether an observed commitment was made for this recipient.

        Returns:
            TrialResult with is_owner=True plus secret/nullifier on a match,
            is_owner=False otherwise (with error set for malformed input)
        """
        try:
            observed = parse_commitment(observed_commitment)
            ephemeral = coerce_key(ephemeral_public_key, "ephemeral public key")
            material = derive_secret_material(recipient_private_key, ephemeral)
            computed = compute_commitment(material.secret, material.nullifier)
        except (InvalidKeyError, InvalidInputError) as e:
            return TrialResult(is_owner=False, error=e.message)

        if computed != observed:
            return TrialResult(is_owner=False)

        return TrialResult(
            is_owner=True,
            secret=material.secret,
            nullifier=material.nullifier,
            commitment=computed,
        )

    def _note_from_trial(self, deposit: DepositObserved, trial: TrialResult) -> Note:
        return Note(
            commitment=trial.commitment,
            secret=trial.secret,
            nullifier=trial.nullifier,
            leaf_index=deposit.leaf_index,
            amount=deposit.amount,
            received_at=utc_now().isoformat(),
            status=NoteStatus.AVAILABLE,
            block_number=deposit.block_number,
            timestamp=deposit.timestamp,
            transaction_hash=deposit.transaction_hash,
        )

    def verify_batch(
        self,
        deposits: list[DepositObserved],
        recipient_private_key: bytes | bytearray | str,
    ) -> list[Note]:
        """
        Run trial derivation over a batch of deposits.

        Trials run on a thread pool; matches are returned in input order.
        Malformed deposits are skipped, never raised.

        Raises:
            InvalidKeyError: If the recipient private key itself is malformed
        """
        private_key = coerce_key(recipient_private_key, "recipient private key")
        if not deposits:
            return []

        def trial(deposit: DepositObserved) -> TrialResult:
            return self.try_derive(deposit.ephemeral_public_key, private_key, deposit.commitment)

        if self.metrics:
            with self.metrics.timer("verify_batch_ms"):
                trials = self._run(trial, deposits)
            self.metrics.increment("trials_total", len(deposits))
        else:
            trials = self._run(trial, deposits)

        notes = []
        for deposit, result in zip(deposits, trials):
            if result.error:
                logger.debug("Skipping malformed deposit at leaf %s: %s",
                             deposit.leaf_index, result.error)
            if result.is_owner:
                notes.append(self._note_from_trial(deposit, result))
                logger.info("Found note %s (%s)", short_hex(commitment_to_hex(result.commitment)),
                            deposit.amount)
        return notes

    def _run(self, trial, deposits: list[DepositObserved]) -> list[TrialResult]:
        if self.max_workers == 1 or len(deposits) == 1:
            return [trial(d) for d in deposits]
        with ThreadPoolExecutor(max_workers=self.max_workers,
                                thread_name_prefix="stealth-trial") as pool:
            return list(pool.map(trial, deposits))
