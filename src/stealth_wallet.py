"""
Stealth Notes - Wallet Facade

Wires the key manager, commitment services, note store, discovery engine and
withdrawal flow for one identity. This is the object the CLI and the HTTP API
talk to; every collaborator can be injected for tests.
"""

import logging
import os
from typing import Any

from authentication import AuthenticationGate, Authenticator
from chain_watcher import ChainWatcher, InMemoryChainWatcher
from commitment import CommitmentGenerator, CommitmentResult, CommitmentVerifier
from config import StealthConfig
from key_management import KeyManager
from monitoring.metrics import MetricsCollector
from note_discovery import NoteDiscoveryEngine, NotesListener, ScanReport
from note_store import Note, NoteStore, SpendOutcome
from stealth_crypto import EntropySource, bytes_to_hex
from storage import SecureStorageBackend, get_storage_backend
from withdrawal import (
    ProofService,
    WithdrawalFlow,
    WithdrawalProofInputs,
    prepare_withdrawal_proof_inputs,
)

logger = logging.getLogger(__name__)


class StealthWallet:
    """
    One identity's stealth wallet.

    Usage:
        wallet = StealthWallet(config, authenticator=PassphraseAuthenticator(pw))
        keys = wallet.generate_and_store_keys()
        wallet.start_scanning()
    """

    def __init__(
        self,
        config: StealthConfig | None = None,
        storage: SecureStorageBackend | None = None,
        authenticator: Authenticator | None = None,
        watcher: ChainWatcher | None = None,
        proof_service: ProofService | None = None,
        entropy: EntropySource = os.urandom,
        metrics: MetricsCollector | None = None,
    ):
        self.config = config or StealthConfig.from_env()
        self.storage = storage or get_storage_backend(self.config)
        self.metrics = metrics or MetricsCollector()
        self.watcher = watcher or InMemoryChainWatcher()

        self.gate = AuthenticationGate(authenticator)
        self.key_manager = KeyManager(
            self.storage,
            self.gate,
            identity=self.config.identity,
            entropy=entropy,
            retry_config=self.config.retry,
        )
        self.note_store = NoteStore(
            self.storage,
            identity=self.config.identity,
            max_notes=self.config.max_notes,
            overflow_policy=self.config.overflow_policy,
            retry_config=self.config.retry,
        )
        self.generator = CommitmentGenerator(entropy)
        self.verifier = CommitmentVerifier(
            max_workers=self.config.verify_workers, metrics=self.metrics
        )
        self.engine = NoteDiscoveryEngine(
            self.key_manager,
            self.watcher,
            self.note_store,
            verifier=self.verifier,
            start_block=self.config.scan_start_block,
            batch_size=self.config.scan_batch_size,
            poll_timeout=self.config.poll_timeout,
            retry_config=self.config.retry,
            metrics=self.metrics,
        )
        self.withdrawal = WithdrawalFlow(self.note_store, proof_service)

    @property
    def identity(self) -> str:
        return self.config.identity

    # Keys

    def generate_and_store_keys(self, onchain_id: str | None = None) -> dict[str, Any]:
        info = self.key_manager.generate_and_store_keys(onchain_id=onchain_id)
        return {"public_key": bytes_to_hex(info.public_key), "key_id": info.key_id}

    def get_public_key(self) -> str | None:
        public_key = self.key_manager.get_public_key()
        return bytes_to_hex(public_key) if public_key else None

    def delete_keys(self) -> bool:
        if self.engine.is_running:
            self.engine.stop()
        return self.key_manager.delete()

    # Sending

    def create_commitment(self, recipient_public_key: bytes | str) -> CommitmentResult:
        return self.generator.create_commitment(recipient_public_key)

    # Discovery

    def start_scanning(self) -> None:
        self.engine.start()

    def stop_scanning(self) -> None:
        self.engine.stop()

    def scan_once(self) -> ScanReport:
        return self.engine.scan_once()

    def on_notes_updated(self, callback: NotesListener) -> None:
        self.engine.on_notes_updated(callback)

    # Notes

    def list_available_notes(self) -> list[Note]:
        return self.note_store.get_available_notes()

    def list_all_notes(self) -> list[Note]:
        return self.note_store.get_all_notes()

    def prepare_withdrawal_proof_inputs(self, note: Note | int | str) -> WithdrawalProofInputs:
        if isinstance(note, Note):
            return prepare_withdrawal_proof_inputs(note)
        return self.withdrawal.prepare(note)

    def mark_spent(self, commitment: int | str) -> SpendOutcome:
        return self.withdrawal.confirm(commitment)

    def get_status(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "has_keys": self.key_manager.has_keys(),
            "scanner": self.engine.get_status(),
            "storage": self.storage.get_info(),
        }

    def close(self) -> None:
        if self.engine.is_running:
            self.engine.stop()
        self.watcher.close()
        self.storage.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
