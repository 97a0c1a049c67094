"""
Stealth Notes - Note Discovery Engine

Background scanner that turns the public deposit stream into the recipient's
note set.

Lifecycle:
    STOPPED --start()--> STARTING --(history replayed)--> LISTENING --stop()--> STOPPED

A stop whose join times out leaves the engine STOPPING until the thread
exits; start() waits for that thread before launching a new one.

start() fetches the private key through the authentication gate on the
caller's thread, so authentication errors surface immediately. History replay
and live polling run on one background thread. Stream and storage errors are
logged and retried with exponential backoff; the engine has no error state and
only stops when asked to. A stop takes effect at the next batch boundary.

Because every event is deduplicated by commitment value, redelivered,
reordered or replayed events are harmless. The scan cursor is not persisted:
a restart replays from the configured start block.
"""

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from chain_watcher import ChainWatcher, DepositObserved
from commitment import CommitmentVerifier
from key_management import KeyManager
from monitoring.logging import LoggingContext
from monitoring.metrics import MetricsCollector
from note_store import Note, NoteStore
from retry import Backoff, RetryConfig
from stealth_crypto import coerce_key, zeroize
from stealth_exceptions import KeysNotFoundError, NoteStoreFullError, ScannerBusyError

logger = logging.getLogger(__name__)

NotesListener = Callable[[list[Note]], None]


class ScannerState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    LISTENING = "listening"
    STOPPING = "stopping"


@dataclass
class ScanReport:
    """Counters for one process_events / scan_once call."""

    events_seen: int = 0
    notes_added: int = 0
    duplicates: int = 0
    rejected: int = 0
    cursor_block: int = 0
    interrupted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class NoteDiscoveryEngine:
    """
    Scans deposit events for notes addressed to this identity.

    Usage:
        engine = NoteDiscoveryEngine(key_manager, watcher, note_store)
        engine.on_notes_updated(lambda notes: print(len(notes)))
        engine.start()
        ...
        engine.stop()
    """

    def __init__(
        self,
        key_manager: KeyManager,
        watcher: ChainWatcher,
        note_store: NoteStore,
        verifier: CommitmentVerifier | None = None,
        start_block: int = 0,
        batch_size: int = 100,
        poll_timeout: float = 2.0,
        retry_config: RetryConfig | None = None,
        metrics: MetricsCollector | None = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        self.key_manager = key_manager
        self.watcher = watcher
        self.note_store = note_store
        self.metrics = metrics or MetricsCollector()
        self.verifier = verifier or CommitmentVerifier(metrics=self.metrics)
        self.start_block = start_block
        self.batch_size = batch_size
        self.poll_timeout = poll_timeout
        self.retry_config = retry_config or RetryConfig()

        self._state = ScannerState.STOPPED
        self._state_lock = threading.RLock()
        self._stop_event = threading.Event()
        self._listening_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._private_key: bytearray | None = None

        self._listeners: list[NotesListener] = []
        self._listeners_lock = threading.Lock()

        self.cursor_block = start_block
        self.events_seen = 0
        self.notes_discovered = 0
        self.error_count = 0
        self.last_error: str | None = None

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on_notes_updated(self, callback: NotesListener) -> None:
        """Register a callback receiving the available notes after each change."""
        with self._listeners_lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: NotesListener) -> None:
        with self._listeners_lock:
            self._listeners = [cb for cb in self._listeners if cb != callback]

    def _emit(self) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        if not listeners:
            return
        notes = self.note_store.get_available_notes()
        for callback in listeners:
            try:
                callback(notes)
            except Exception as e:
                logger.warning(f"Notes listener error: {e}")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ScannerState:
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state != ScannerState.STOPPED

    def _set_state(self, state: ScannerState) -> None:
        with self._state_lock:
            if self._state != state:
                logger.info("Scanner %s -> %s", self._state.value, state.value)
                self._state = state

    def get_status(self) -> dict[str, Any]:
        with self._listeners_lock:
            listener_count = len(self._listeners)
        return {
            "state": self.state.value,
            "start_block": self.start_block,
            "cursor_block": self.cursor_block,
            "events_seen": self.events_seen,
            "notes_discovered": self.notes_discovered,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "listeners": listener_count,
            "notes": self.note_store.get_notes_count(),
        }

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def _unlock_private_key(self) -> bytearray:
        private_key = self.key_manager.get_private_key()
        if private_key is None:
            raise KeysNotFoundError(
                "No key pair stored; generate keys first", action="start"
            )
        return bytearray(coerce_key(private_key, "private key"))

    def start(self) -> None:
        """
        Start scanning in the background.

        If a previous scan thread is still finishing its batch, wait for it
        first so at most one scan thread runs per identity.

        Raises:
            KeysNotFoundError: If no key pair exists
            AuthenticationRequired / AuthenticationFailed: From the gate
            ScannerBusyError: If the previous scan thread does not exit
        """
        with self._state_lock:
            if self._state not in (ScannerState.STOPPED, ScannerState.STOPPING):
                logger.warning("Scanner already running")
                return
            previous = self._thread

        if previous is not None and previous is not threading.current_thread():
            previous.join(self._join_timeout())
            if previous.is_alive():
                raise ScannerBusyError(
                    "Previous scan thread is still running", action="start"
                )

        with self._state_lock:
            if self._state not in (ScannerState.STOPPED, ScannerState.STOPPING):
                logger.warning("Scanner already running")
                return
            self._thread = None
            self._set_state(ScannerState.STARTING)

        try:
            private_key = self._unlock_private_key()
        except Exception:
            self._set_state(ScannerState.STOPPED)
            raise

        # Each run gets its own stop event so a late thread never sees a
        # later run's cleared event
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._run,
            args=(private_key, stop_event),
            daemon=True,
            name=f"note-discovery-{self.key_manager.identity}",
        )
        with self._state_lock:
            self._private_key = private_key
            self._stop_event = stop_event
            self._listening_event.clear()
            self._thread = thread
        thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """
        Stop at the next batch boundary and drop the private key.

        If the scan thread does not exit within timeout the state stays
        STOPPING until it does.
        """
        with self._state_lock:
            self._stop_event.set()
            thread = self._thread

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout if timeout is not None else self._join_timeout())

        self._drop_key()
        self._listening_event.clear()

        with self._state_lock:
            if thread is not None and thread.is_alive():
                logger.warning("Scanner thread did not stop within timeout")
                self._set_state(ScannerState.STOPPING)
                return
            if self._thread is thread:
                self._thread = None
            self._set_state(ScannerState.STOPPED)

    def wait_until_listening(self, timeout: float | None = None) -> bool:
        """Block until history replay has finished. Returns False on timeout."""
        return self._listening_event.wait(timeout)

    def _join_timeout(self) -> float:
        return self.poll_timeout * 2 + 5

    def _drop_key(self) -> None:
        with self._state_lock:
            private_key, self._private_key = self._private_key, None
        if private_key is not None:
            zeroize(private_key)

    def _finish_run(self) -> None:
        """Called by the scan thread on exit; completes a timed-out stop."""
        with self._state_lock:
            if self._thread is threading.current_thread():
                self._thread = None
                if self._state == ScannerState.STOPPING:
                    self._set_state(ScannerState.STOPPED)

    def _run(self, private_key: bytearray, stop_event: threading.Event) -> None:
        scan_id = uuid.uuid4().hex[:8]
        backoff = Backoff(self.retry_config)
        replayed = False
        pending: list[DepositObserved] = []

        with LoggingContext(identity=self.key_manager.identity, scan_id=scan_id):
            logger.info("Scanner started from block %d", self.start_block)
            try:
                while not stop_event.is_set():
                    try:
                        if not replayed:
                            if not pending:
                                pending = self.watcher.fetch_historical(self.start_block)
                                logger.info("Replaying %d historical events", len(pending))
                            report = self.process_events(pending, bytes(private_key), stop_event)
                            if report.interrupted:
                                break
                            pending = []
                            replayed = True
                            with self._state_lock:
                                if not stop_event.is_set():
                                    self._set_state(ScannerState.LISTENING)
                                    self._listening_event.set()
                            backoff.reset()
                            continue

                        if not pending:
                            pending = self.watcher.poll_events(self.poll_timeout)
                        if pending:
                            report = self.process_events(pending, bytes(private_key), stop_event)
                            if report.interrupted:
                                break
                            pending = []
                        backoff.reset()

                    except Exception as e:
                        delay = backoff.next_delay()
                        self.last_error = f"{type(e).__name__}: {e}"
                        self.metrics.increment("scan_errors_total")
                        self.error_count += 1
                        logger.warning(
                            "Scan error, retrying in %.2fs: %s", delay, e,
                            extra={"failures": backoff.failures},
                        )
                        stop_event.wait(delay)
            finally:
                self._finish_run()

            logger.info("Scanner stopped at block %d", self.cursor_block)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def process_events(
        self,
        events: list[DepositObserved],
        private_key: bytes | None = None,
        stop_event: threading.Event | None = None,
    ) -> ScanReport:
        """
        Trial-derive a list of events and store the matches.

        Events are processed in batches of batch_size; listeners are notified
        once per batch that changed the note set. When stop_event is given
        and set, the remaining batches are skipped and the report is marked
        interrupted.

        Raises:
            StorageError: If the note store cannot persist (events may be
                reprocessed safely)
        """
        if private_key is None:
            if self._private_key is None:
                raise KeysNotFoundError("Scanner is not unlocked", action="process_events")
            private_key = bytes(self._private_key)

        report = ScanReport(cursor_block=self.cursor_block)

        for start in range(0, len(events), self.batch_size):
            if start and stop_event is not None and stop_event.is_set():
                report.interrupted = True
                break

            batch = events[start:start + self.batch_size]
            notes = self.verifier.verify_batch(batch, private_key)

            added = 0
            for note in notes:
                try:
                    if self.note_store.add_note(note):
                        added += 1
                    else:
                        report.duplicates += 1
                except NoteStoreFullError as e:
                    report.rejected += 1
                    self.metrics.increment("notes_rejected_total")
                    logger.warning("Discovered note dropped: %s", e.message)

            report.events_seen += len(batch)
            report.notes_added += added
            self.events_seen += len(batch)
            self.notes_discovered += added
            if added:
                self.metrics.increment("notes_discovered_total", added)

            highest = max((e.block_number for e in batch), default=self.cursor_block)
            self.cursor_block = max(self.cursor_block, highest)
            report.cursor_block = self.cursor_block
            self.metrics.set_gauge("scan_cursor_block", self.cursor_block)

            if added:
                self._emit()

        if report.notes_added:
            logger.info(
                "Discovered %d new notes in %d events",
                report.notes_added, report.events_seen,
            )
        return report

    def scan_once(self) -> ScanReport:
        """
        Synchronously replay history from start_block.

        Unlocks the private key for the duration of the scan only.
        """
        private_key = self._unlock_private_key()
        try:
            events = self.watcher.fetch_historical(self.start_block)
            return self.process_events(events, bytes(private_key))
        finally:
            zeroize(private_key)
