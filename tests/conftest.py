"""
Pytest configuration and shared fixtures for Stealth Notes tests.

This module provides shared fixtures including:
- In-memory storage and a static authenticator
- Key manager / note store / discovery engine wired together
- Deterministic sender and recipient key material
- Retry configuration without real sleeps
"""

import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

# Keep tests independent of a developer's .env
for _name in list(os.environ):
    if _name.startswith("STEALTH_"):
        del os.environ[_name]


FAST_RETRY_KWARGS = {"max_retries": 2, "base_delay": 0.001, "max_delay": 0.01, "jitter": 0.0}
LOW_KDF_ITERATIONS = 1_000


@pytest.fixture
def fast_retry():
    """Retry configuration with millisecond delays."""
    from retry import RetryConfig
    return RetryConfig(**FAST_RETRY_KWARGS)


@pytest.fixture
def memory_storage():
    from storage.memory import MemoryStorage
    return MemoryStorage()


@pytest.fixture
def authenticator():
    from authentication import StaticAuthenticator
    return StaticAuthenticator()


@pytest.fixture
def gate(authenticator):
    from authentication import AuthenticationGate
    return AuthenticationGate(authenticator)


@pytest.fixture
def key_manager(memory_storage, gate, fast_retry):
    from key_management import KeyManager
    return KeyManager(memory_storage, gate, identity="alice", retry_config=fast_retry)


@pytest.fixture
def note_store(memory_storage, fast_retry):
    from note_store import NoteStore
    return NoteStore(memory_storage, identity="alice", retry_config=fast_retry)


@pytest.fixture
def recipient_keys():
    """(private_key bytes, public_key bytes) for a fixed recipient."""
    from stealth_crypto import public_key_from_private
    private_key = bytes(range(1, 33))
    return private_key, public_key_from_private(private_key)


@pytest.fixture
def other_keys():
    from stealth_crypto import public_key_from_private
    private_key = bytes([0x42] * 32)
    return private_key, public_key_from_private(private_key)


@pytest.fixture
def generator():
    from commitment import CommitmentGenerator
    return CommitmentGenerator()


@pytest.fixture
def verifier():
    from commitment import CommitmentVerifier
    return CommitmentVerifier(max_workers=2)


@pytest.fixture
def make_deposit(generator):
    """Factory building a DepositObserved addressed to a public key."""
    from chain_watcher import DepositObserved

    def _make(public_key, leaf_index=0, block_number=1, amount="1.0"):
        result = generator.create_commitment(public_key)
        return DepositObserved(
            commitment=result.commitment_hex,
            ephemeral_public_key=result.ephemeral_public_key,
            leaf_index=leaf_index,
            block_number=block_number,
            amount=amount,
        )

    return _make


@pytest.fixture
def make_note(recipient_keys, make_deposit, verifier):
    """Factory building a valid Note for the fixed recipient."""
    def _make(leaf_index=0, amount="1.0"):
        private_key, public_key = recipient_keys
        deposit = make_deposit(public_key, leaf_index=leaf_index, amount=amount)
        return verifier.verify_batch([deposit], private_key)[0]

    return _make
