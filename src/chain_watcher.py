"""
Stealth Notes - Chain Event Source

The discovery engine consumes deposit events through the ChainWatcher
interface; talking to an actual node is out of scope for this package.

InMemoryChainWatcher is a complete in-process implementation used by the
tests, by the CLI to replay exported event files, and by the HTTP API's
local mode. It supports redelivery and out-of-order delivery so the engine's
dedupe paths can be exercised.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DepositObserved:
    """
    A deposit event as published by the pool contract.

    Fields are kept as observed (the commitment may be a hex or decimal
    string); validation happens during trial derivation so a malformed record
    only ever results in a non-match.
    """

    commitment: int | str
    ephemeral_public_key: bytes | str
    leaf_index: int
    block_number: int = 0
    amount: str = "0"
    timestamp: int | None = None
    transaction_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        ephemeral = self.ephemeral_public_key
        if isinstance(ephemeral, (bytes, bytearray)):
            ephemeral = "0x" + bytes(ephemeral).hex()
        commitment = self.commitment
        if isinstance(commitment, int):
            commitment = f"0x{commitment:064x}"
        return {
            "commitment": commitment,
            "ephemeral_public_key": ephemeral,
            "leaf_index": self.leaf_index,
            "block_number": self.block_number,
            "amount": self.amount,
            "timestamp": self.timestamp,
            "transaction_hash": self.transaction_hash,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DepositObserved":
        """
        Build an event from a JSON object.

        Accepts the camelCase field names emitted by the contract ABI
        (ephemeralPublicKey / R_pub, leafIndex, blockNumber, transactionHash).
        """
        def pick(*names, default=None):
            for name in names:
                if name in data and data[name] is not None:
                    return data[name]
            return default

        return cls(
            commitment=pick("commitment"),
            ephemeral_public_key=pick("ephemeral_public_key", "ephemeralPublicKey", "R_pub", default=""),
            leaf_index=int(pick("leaf_index", "leafIndex", default=0)),
            block_number=int(pick("block_number", "blockNumber", default=0)),
            amount=str(pick("amount", default="0")),
            timestamp=pick("timestamp"),
            transaction_hash=pick("transaction_hash", "transactionHash"),
        )


class ChainWatcher(ABC):
    """
    Source of deposit events.

    Implementations must be safe to call from the scanner thread while other
    threads publish.
    """

    @abstractmethod
    def fetch_historical(self, from_block: int, to_block: int | None = None) -> list[DepositObserved]:
        """Return every deposit with from_block <= block_number <= to_block."""
        pass

    @abstractmethod
    def poll_events(self, timeout: float) -> list[DepositObserved]:
        """
        Wait up to timeout seconds for new deposits.

        Returns an empty list on timeout. May redeliver events.
        """
        pass

    @abstractmethod
    def latest_block(self) -> int:
        pass

    def close(self) -> None:
        pass


class InMemoryChainWatcher(ChainWatcher):
    """
    In-process deposit ledger.

    Usage:
        watcher = InMemoryChainWatcher()
        watcher.publish(DepositObserved(...))
        events = watcher.poll_events(timeout=1.0)
    """

    def __init__(self, events: list[DepositObserved] | None = None):
        self._history: list[DepositObserved] = []
        self._pending: deque[DepositObserved] = deque()
        self._cond = threading.Condition()
        self._failures: deque[Exception] = deque()
        for event in events or []:
            self._history.append(event)

    def publish(self, event: DepositObserved, deliver: bool = True) -> None:
        """Append an event to the ledger and queue it for live delivery."""
        with self._cond:
            self._history.append(event)
            if deliver:
                self._pending.append(event)
            self._cond.notify_all()

    def redeliver(self, event: DepositObserved) -> None:
        """Queue an already-published event again (at-least-once delivery)."""
        with self._cond:
            self._pending.append(event)
            self._cond.notify_all()

    def fail_next_poll(self, error: Exception) -> None:
        """Make the next poll_events call raise error."""
        with self._cond:
            self._failures.append(error)
            self._cond.notify_all()

    def fetch_historical(self, from_block: int, to_block: int | None = None) -> list[DepositObserved]:
        with self._cond:
            return [
                e for e in self._history
                if e.block_number >= from_block and (to_block is None or e.block_number <= to_block)
            ]

    def poll_events(self, timeout: float) -> list[DepositObserved]:
        with self._cond:
            if not self._pending and not self._failures:
                self._cond.wait(timeout)
            if self._failures:
                raise self._failures.popleft()
            events = list(self._pending)
            self._pending.clear()
            return events

    def latest_block(self) -> int:
        with self._cond:
            return max((e.block_number for e in self._history), default=0)

    def __len__(self) -> int:
        with self._cond:
            return len(self._history)

    @classmethod
    def from_file(cls, path: str) -> "InMemoryChainWatcher":
        """
        Load a JSON event export.

        The file holds either a list of events or {"events": [...]}.
        """
        with open(path, 'r', encoding='utf-8') as f:
            document = json.load(f)
        if isinstance(document, dict):
            document = document.get("events", [])
        if not isinstance(document, list):
            raise ValueError(f"{path}: expected a list of events")

        events = [DepositObserved.from_dict(item) for item in document]
        logger.info("Loaded %d deposit events from %s", len(events), path)
        return cls(events)

    def to_file(self, path: str) -> None:
        with self._cond:
            payload = {"events": [e.to_dict() for e in self._history]}
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2)
