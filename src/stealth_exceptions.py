"""
Stealth Notes - Exception Hierarchy

Every error raised by the commitment, discovery and note-storage components
derives from StealthProtocolError and carries a structured ErrorContext so it
can be logged as JSON without leaking secret material.

Storage failures live in the storage package (StorageError and friends) and
are re-exported here for callers that only want one import.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from storage.base import StorageError, StorageReadError, StorageWriteError


class ErrorSeverity(Enum):
    """Severity levels for stealth protocol errors."""
    LOW = "low"           # Expected misuse, caller can ignore
    MEDIUM = "medium"     # Local validation failure
    HIGH = "high"         # Access denied or persistence trouble
    CRITICAL = "critical" # Funds may be unrecoverable


@dataclass
class ErrorContext:
    """Structured context for error tracking."""
    component: str
    action: str
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    details: dict[str, Any] = field(default_factory=dict)
    severity: ErrorSeverity = ErrorSeverity.MEDIUM

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "component": self.component,
            "action": self.action,
            "timestamp": self.timestamp,
            "details": self.details,
            "severity": self.severity.value,
        }


class StealthProtocolError(Exception):
    """
    Base exception for the stealth commitment core.

    Details must never contain secrets, nullifiers or private keys; pass
    shortened commitments or key ids instead.
    """

    default_component = "stealth"
    default_severity = ErrorSeverity.MEDIUM

    def __init__(
        self,
        message: str,
        component: str | None = None,
        action: str = "unknown",
        severity: ErrorSeverity | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = ErrorContext(
            component=component or self.default_component,
            action=action,
            severity=severity or self.default_severity,
            details=details or {},
        )
        self.cause = cause

        if cause:
            self.__cause__ = cause

    @property
    def severity(self) -> ErrorSeverity:
        return self.context.severity

    @property
    def is_fatal(self) -> bool:
        """True when the error implies lost or corrupted funds-bearing data."""
        return self.context.severity == ErrorSeverity.CRITICAL

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        result = {
            "error_type": type(self).__name__,
            "message": self.message,
            **self.context.to_dict(),
        }
        if self.cause:
            result["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause),
            }
        return result

    def __str__(self) -> str:
        base = f"[{self.context.component}:{self.context.action}] {self.message}"
        if self.cause:
            base += f" (caused by: {self.cause})"
        return base


# =============================================================================
# Key and entropy errors
# =============================================================================

class EntropyError(StealthProtocolError):
    """No usable cryptographically secure random source."""

    default_component = "key_management"
    default_severity = ErrorSeverity.CRITICAL


class KeysNotFoundError(StealthProtocolError):
    """The identity has no stored key pair yet."""

    default_component = "key_management"
    default_severity = ErrorSeverity.MEDIUM


class InvalidKeyError(StealthProtocolError):
    """A public or private key has the wrong length or encoding."""

    default_component = "commitment"

    def __init__(self, message: str, length: int | None = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if length is not None:
            details["length"] = length
        super().__init__(message, details=details, **kwargs)
        self.length = length


class InvalidInputError(StealthProtocolError):
    """
    A ledger record or note is malformed.

    Raised locally during trial derivation; the batch driver converts it to
    is_owner=False so one bad record never aborts a scan.
    """

    default_component = "commitment"


# =============================================================================
# Authentication errors
# =============================================================================

class AuthenticationRequired(StealthProtocolError):
    """Private key access needs an authentication step that was not provided."""

    default_component = "authentication"
    default_severity = ErrorSeverity.HIGH


class AuthenticationFailed(StealthProtocolError):
    """The authentication response was wrong, expired or replayed."""

    default_component = "authentication"
    default_severity = ErrorSeverity.HIGH


# =============================================================================
# Note lifecycle errors
# =============================================================================

class NoteNotFoundError(StealthProtocolError):
    """No note with the given commitment is stored."""

    default_component = "note_store"
    default_severity = ErrorSeverity.LOW

    def __init__(self, commitment: str, **kwargs):
        super().__init__(
            f"Note not found: {commitment}",
            details={"commitment": commitment},
            **kwargs,
        )
        self.commitment = commitment


class AlreadySpentError(StealthProtocolError):
    """The note was already consumed by a withdrawal."""

    default_component = "note_store"
    default_severity = ErrorSeverity.LOW

    def __init__(self, commitment: str, **kwargs):
        super().__init__(
            f"Note already spent: {commitment}",
            details={"commitment": commitment},
            **kwargs,
        )
        self.commitment = commitment


class NoteStoreFullError(StealthProtocolError):
    """The capacity bound was reached and the overflow policy rejected the note."""

    default_component = "note_store"
    default_severity = ErrorSeverity.HIGH

    def __init__(self, capacity: int, policy: str, **kwargs):
        super().__init__(
            f"Note store is full ({capacity} notes, policy={policy})",
            details={"capacity": capacity, "policy": policy},
            **kwargs,
        )
        self.capacity = capacity
        self.policy = policy


class IntegrityError(StealthProtocolError):
    """
    A stored note fails the commitment recompute check.

    This means storage corruption or a sender/recipient protocol mismatch and
    is always fatal.
    """

    default_component = "note_store"
    default_severity = ErrorSeverity.CRITICAL


# =============================================================================
# Discovery errors
# =============================================================================

class ScannerBusyError(StealthProtocolError):
    """A previous scan thread for this identity has not exited yet."""

    default_component = "note_discovery"
    default_severity = ErrorSeverity.MEDIUM


__all__ = [
    "ErrorSeverity",
    "ErrorContext",
    "StealthProtocolError",
    "EntropyError",
    "KeysNotFoundError",
    "InvalidKeyError",
    "InvalidInputError",
    "AuthenticationRequired",
    "AuthenticationFailed",
    "NoteNotFoundError",
    "AlreadySpentError",
    "NoteStoreFullError",
    "IntegrityError",
    "ScannerBusyError",
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
]
