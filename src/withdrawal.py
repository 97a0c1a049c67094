"""
Stealth Notes - Withdrawal Boundary

Hands a note's private witness to the external proof service and closes the
note's lifecycle once the withdrawal is confirmed. Proof generation itself is
out of scope; ProofService is the seam where a prover plugs in.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from note_store import Note, NoteStatus, NoteStore, SpendOutcome, verify_note_integrity
from stealth_crypto import bytes_to_hex, commitment_to_hex, short_hex
from stealth_exceptions import AlreadySpentError, IntegrityError, NoteNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WithdrawalProofInputs:
    """Private witness for the withdrawal circuit."""

    nullifier: bytes
    secret: bytes
    commitment: int
    leaf_index: int

    def __repr__(self) -> str:
        return (
            f"WithdrawalProofInputs(commitment={short_hex(commitment_to_hex(self.commitment))}, "
            f"leaf_index={self.leaf_index})"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "nullifier": bytes_to_hex(self.nullifier),
            "secret": bytes_to_hex(self.secret),
            "commitment": commitment_to_hex(self.commitment),
            "leaf_index": self.leaf_index,
        }


def prepare_withdrawal_proof_inputs(note: Note) -> WithdrawalProofInputs:
    """
    Build proof inputs for an available note.

    Raises:
        AlreadySpentError: If the note is spent
        IntegrityError: If the commitment does not match secret/nullifier
    """
    if note.status == NoteStatus.SPENT:
        raise AlreadySpentError(note.commitment_hex, action="prepare_withdrawal")
    if not verify_note_integrity(note):
        raise IntegrityError(
            "Note fails the commitment check",
            action="prepare_withdrawal",
            details={"commitment": short_hex(note.commitment_hex)},
        )
    return WithdrawalProofInputs(
        nullifier=note.nullifier,
        secret=note.secret,
        commitment=note.commitment,
        leaf_index=note.leaf_index,
    )


class ProofService(ABC):
    """External zero-knowledge prover."""

    @abstractmethod
    def generate_proof(self, inputs: WithdrawalProofInputs) -> dict[str, Any]:
        """Return a proof payload for the withdrawal transaction."""
        pass


class WithdrawalFlow:
    """
    Drives one note through prepare -> prove -> confirm.

    Usage:
        flow = WithdrawalFlow(note_store, prover)
        proof = flow.request_proof(commitment)
        ... submit the withdrawal transaction ...
        flow.confirm(commitment)
    """

    def __init__(self, note_store: NoteStore, proof_service: ProofService | None = None):
        self.note_store = note_store
        self.proof_service = proof_service

    def _get(self, commitment: int | str) -> Note:
        note = self.note_store.get_note(commitment)
        if note is None:
            raise NoteNotFoundError(str(commitment), action="withdrawal")
        return note

    def prepare(self, commitment: int | str) -> WithdrawalProofInputs:
        return prepare_withdrawal_proof_inputs(self._get(commitment))

    def request_proof(self, commitment: int | str) -> dict[str, Any]:
        """
        Prepare inputs and ask the proof service for a proof.

        Raises:
            RuntimeError: If no proof service is configured
        """
        if self.proof_service is None:
            raise RuntimeError("No proof service configured")
        inputs = self.prepare(commitment)
        logger.info("Requesting withdrawal proof for %s",
                    short_hex(commitment_to_hex(inputs.commitment)))
        return self.proof_service.generate_proof(inputs)

    def confirm(self, commitment: int | str) -> SpendOutcome:
        """Record that the withdrawal transaction was confirmed."""
        outcome = self.note_store.mark_spent(commitment)
        logger.info("Withdrawal confirmed (%s)", outcome.value)
        return outcome
