"""
Stealth Notes - Note Store

Durable set of the recipient's discovered notes with an available -> spent
lifecycle.

Guarantees:
- Every stored note satisfies commitment == Poseidon2(secret || nullifier);
  checked on insert and again whenever the set is loaded from storage
- Notes are keyed by commitment value: re-adding is a no-op
- A note is reported as spendable at most once; mark_spent is idempotent
- Unspent notes are never evicted

All mutations are serialized by one re-entrant lock and persisted as a single
record; a failed write leaves the in-memory set unchanged.
"""

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from retry import RetryConfig, retry_call
from stealth_crypto import (
    bytes_to_hex,
    commitment_to_hex,
    compute_commitment,
    hex_to_bytes,
    parse_commitment,
    short_hex,
)
from stealth_exceptions import (
    IntegrityError,
    InvalidInputError,
    NoteNotFoundError,
    NoteStoreFullError,
    StorageError,
)
from storage.base import SecureStorageBackend

logger = logging.getLogger(__name__)

NOTES_RECORD = "notes"
NOTES_FORMAT_VERSION = 1


class NoteStatus(str, Enum):
    AVAILABLE = "available"
    SPENT = "spent"


class OverflowPolicy(str, Enum):
    """What add_note does once the capacity bound is reached."""
    REJECT_NEW = "reject_new"
    EVICT_OLDEST_SPENT = "evict_oldest_spent"


class SpendOutcome(str, Enum):
    SPENT = "spent"
    ALREADY_SPENT = "already_spent"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Note:
    """A deposit the recipient can withdraw."""

    commitment: int
    secret: bytes
    nullifier: bytes
    leaf_index: int
    amount: str
    received_at: str
    status: NoteStatus = NoteStatus.AVAILABLE
    block_number: int = 0
    timestamp: int | None = None
    transaction_hash: str | None = None
    spent_at: str | None = None

    @property
    def id(self) -> str:
        return f"note_{commitment_to_hex(self.commitment)[2:18]}"

    @property
    def commitment_hex(self) -> str:
        return commitment_to_hex(self.commitment)

    @property
    def is_available(self) -> bool:
        return self.status == NoteStatus.AVAILABLE

    def __repr__(self) -> str:
        return (
            f"Note(id={self.id!r}, commitment={short_hex(self.commitment_hex)}, "
            f"leaf_index={self.leaf_index}, amount={self.amount!r}, status={self.status.value})"
        )

    def to_dict(self, include_secrets: bool = True) -> dict[str, Any]:
        data = {
            "id": self.id,
            "commitment": self.commitment_hex,
            "leaf_index": self.leaf_index,
            "amount": self.amount,
            "received_at": self.received_at,
            "status": self.status.value,
            "block_number": self.block_number,
            "timestamp": self.timestamp,
            "transaction_hash": self.transaction_hash,
            "spent_at": self.spent_at,
        }
        if include_secrets:
            data["secret"] = bytes_to_hex(self.secret)
            data["nullifier"] = bytes_to_hex(self.nullifier)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Note":
        return cls(
            commitment=parse_commitment(data["commitment"]),
            secret=hex_to_bytes(data["secret"]),
            nullifier=hex_to_bytes(data["nullifier"]),
            leaf_index=int(data["leaf_index"]),
            amount=str(data.get("amount", "0")),
            received_at=data["received_at"],
            status=NoteStatus(data.get("status", NoteStatus.AVAILABLE.value)),
            block_number=int(data.get("block_number", 0)),
            timestamp=data.get("timestamp"),
            transaction_hash=data.get("transaction_hash"),
            spent_at=data.get("spent_at"),
        )


def verify_note_integrity(note: Note) -> bool:
    """True if the note's commitment is the Poseidon hash of its secret and nullifier."""
    try:
        return compute_commitment(note.secret, note.nullifier) == note.commitment
    except InvalidInputError:
        return False


class NoteStore:
    """
    Thread-safe, persistent note set for one identity.

    Usage:
        store = NoteStore(storage, identity="alice", max_notes=100)
        store.add_note(note)
        for note in store.get_available_notes():
            ...
        store.mark_spent(note.commitment)
    """

    RECOMMEND_AFTER_HOURS = 5

    def __init__(
        self,
        storage: SecureStorageBackend,
        identity: str = "default",
        max_notes: int | None = None,
        overflow_policy: OverflowPolicy | str = OverflowPolicy.REJECT_NEW,
        retry_config: RetryConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        if max_notes is not None and max_notes < 1:
            raise ValueError("max_notes must be positive")

        self.storage = storage
        self.identity = identity
        self.max_notes = max_notes
        self.overflow_policy = OverflowPolicy(overflow_policy)
        self._retry = retry_config or RetryConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._notes: dict[int, Note] = self._load()

    @property
    def record_name(self) -> str:
        return f"{self.identity}:{NOTES_RECORD}"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> dict[int, Note]:
        """
        Load and integrity-check the persisted note set.

        Raises:
            IntegrityError: If the record is malformed or any note fails the
                commitment recompute check
        """
        raw = retry_call(self.storage.get_item, args=(self.record_name,), config=self._retry)
        if raw is None:
            return {}

        try:
            document = json.loads(raw)
            items = document["notes"] if isinstance(document, dict) else document
            notes = [Note.from_dict(item) for item in items]
        except (ValueError, KeyError, TypeError, InvalidInputError) as e:
            raise IntegrityError("Stored note set is malformed", action="load", cause=e) from e

        loaded: dict[int, Note] = {}
        for note in notes:
            if not verify_note_integrity(note):
                raise IntegrityError(
                    "Stored note fails the commitment check",
                    action="load",
                    details={"commitment": short_hex(note.commitment_hex)},
                )
            loaded[note.commitment] = note

        logger.info("Loaded %d notes", len(loaded), extra={"identity": self.identity})
        return loaded

    def _persist(self, notes: dict[int, Note]) -> None:
        document = {
            "version": NOTES_FORMAT_VERSION,
            "notes": [note.to_dict() for note in notes.values()],
        }
        retry_call(
            self.storage.set_item,
            args=(self.record_name, json.dumps(document)),
            config=self._retry,
        )

    def _commit(self, updated: dict[int, Note]) -> None:
        """Persist then swap in the new state. Caller holds the lock."""
        try:
            self._persist(updated)
        except StorageError:
            logger.error("Failed to persist note set, keeping previous state",
                         extra={"identity": self.identity})
            raise
        self._notes = updated

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def add_note(self, note: Note) -> bool:
        """
        Insert a note.

        Returns:
            True if added, False if a note with the same commitment exists

        Raises:
            InvalidInputError: If the commitment does not match secret/nullifier
            NoteStoreFullError: If full and the overflow policy rejects the note
            StorageError: If persisting fails after retries
        """
        if not verify_note_integrity(note):
            raise InvalidInputError(
                "Note commitment does not match its secret and nullifier",
                component="note_store",
                action="add_note",
                details={"commitment": short_hex(note.commitment_hex)},
            )

        with self._lock:
            if note.commitment in self._notes:
                logger.debug("Note already stored: %s", short_hex(note.commitment_hex))
                return False

            updated = dict(self._notes)
            if self.max_notes is not None and len(updated) >= self.max_notes:
                evicted = self._select_eviction(updated)
                if evicted is None:
                    logger.warning(
                        "Note store full, rejecting note %s", short_hex(note.commitment_hex),
                        extra={"capacity": self.max_notes, "policy": self.overflow_policy.value},
                    )
                    raise NoteStoreFullError(self.max_notes, self.overflow_policy.value,
                                             action="add_note")
                del updated[evicted]
                logger.info("Evicted spent note %s", short_hex(commitment_to_hex(evicted)))

            updated[note.commitment] = replace(note)
            self._commit(updated)

        logger.info(
            "New note added",
            extra={"note_id": note.id, "amount": note.amount, "leaf_index": note.leaf_index},
        )
        return True

    def _select_eviction(self, notes: dict[int, Note]) -> int | None:
        if self.overflow_policy != OverflowPolicy.EVICT_OLDEST_SPENT:
            return None
        # dict order is insertion order, so the first spent note is the oldest
        for commitment, stored in notes.items():
            if stored.status == NoteStatus.SPENT:
                return commitment
        return None

    def get_available_notes(self) -> list[Note]:
        with self._lock:
            return [replace(n) for n in self._notes.values() if n.status == NoteStatus.AVAILABLE]

    def get_all_notes(self) -> list[Note]:
        with self._lock:
            return [replace(n) for n in self._notes.values()]

    def get_note(self, commitment: int | str) -> Note | None:
        key = parse_commitment(commitment)
        with self._lock:
            note = self._notes.get(key)
            return replace(note) if note else None

    def has_note(self, commitment: int | str) -> bool:
        with self._lock:
            return parse_commitment(commitment) in self._notes

    def mark_spent(self, commitment: int | str) -> SpendOutcome:
        """
        Transition a note to spent.

        Returns:
            SpendOutcome.SPENT on the first call, ALREADY_SPENT afterwards

        Raises:
            NoteNotFoundError: If no note has this commitment
            StorageError: If persisting fails after retries
        """
        key = parse_commitment(commitment)
        with self._lock:
            note = self._notes.get(key)
            if note is None:
                raise NoteNotFoundError(commitment_to_hex(key), action="mark_spent")
            if note.status == NoteStatus.SPENT:
                return SpendOutcome.ALREADY_SPENT

            updated = dict(self._notes)
            updated[key] = replace(
                note, status=NoteStatus.SPENT, spent_at=self._clock().isoformat()
            )
            self._commit(updated)

        logger.info("Note marked as spent: %s", short_hex(commitment_to_hex(key)))
        return SpendOutcome.SPENT

    def clear(self) -> None:
        """Remove every note. Irreversible."""
        with self._lock:
            retry_call(self.storage.delete_item, args=(self.record_name,), config=self._retry)
            self._notes = {}
        logger.warning("All notes cleared", extra={"identity": self.identity})

    def get_notes_count(self) -> dict[str, int | None]:
        with self._lock:
            available = sum(1 for n in self._notes.values() if n.status == NoteStatus.AVAILABLE)
            return {
                "available": available,
                "total": len(self._notes),
                "max_notes": self.max_notes,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._notes)

    def format_note_for_display(self, note: Note, now: datetime | None = None) -> dict[str, Any]:
        """Summary of a note without secret material."""
        now = now or self._clock()
        try:
            received = datetime.fromisoformat(note.received_at)
        except ValueError:
            received = now
        if received.tzinfo is None:
            received = received.replace(tzinfo=timezone.utc)

        hours = max(0, int((now - received).total_seconds() // 3600))
        days = hours // 24
        if days > 0:
            time_ago = f"{days} day{'s' if days > 1 else ''} ago"
        elif hours > 0:
            time_ago = f"{hours} hour{'s' if hours > 1 else ''} ago"
        else:
            time_ago = "Just now"

        return {
            "id": note.id,
            "title": f"Note #{note.leaf_index + 1}",
            "amount": f"{note.amount} ETH",
            "time_ago": f"Received: {time_ago}",
            "status": note.status.value,
            "is_recommended": note.status == NoteStatus.AVAILABLE
            and hours >= self.RECOMMEND_AFTER_HOURS,
        }
