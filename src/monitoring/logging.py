"""
Structured logging for Stealth Notes.

Two output formats share one redaction pass:
- JSONFormatter: one JSON object per line, for log aggregation
- ConsoleFormatter: short colored lines for development

Note secrets, nullifiers, private keys and credentials never reach a handler;
32-byte hex values (commitments, public keys) are shortened in free text.
Per-thread context (identity, scan_id, request_id) is attached to every record.
"""

import json
import logging
import os
import re
import sys
import threading
from datetime import UTC, datetime
from typing import Any

REDACTED = "[REDACTED]"

# Field names whose values are dropped entirely
REDACTED_FIELDS = frozenset({
    "secret",
    "nullifier",
    "private_key",
    "shared_secret",
    "ephemeral_private_key",
    "vault_key",
    "passphrase",
    "password",
    "api_key",
    "token",
    "authorization",
    "credential_key",
})

_KEY_VALUE_RE = re.compile(
    r"(secret|nullifier|private[_-]?key|shared[_-]?secret|vault[_-]?key|"
    r"api[_-]?key|passphrase|password|token)"
    r"([\"']?\s*[:=]\s*[\"']?)([^\s\"',}{]+)",
    re.IGNORECASE,
)
_BEARER_RE = re.compile(r"(Bearer\s+)(\S+)", re.IGNORECASE)
_HEX32_RE = re.compile(r"\b(0x)?([a-fA-F0-9]{4})[a-fA-F0-9]{56}([a-fA-F0-9]{4})\b")

MAX_REDACTION_DEPTH = 10


def redact_string(text: str) -> str:
    """Redact key=value secrets and bearer tokens, shorten 32-byte hex."""
    if not isinstance(text, str):
        return text
    text = _KEY_VALUE_RE.sub(rf"\1\2{REDACTED}", text)
    text = _BEARER_RE.sub(rf"\1{REDACTED}", text)
    return _HEX32_RE.sub(r"\1\2...\3", text)


def redact_sensitive_data(data: Any, depth: int = 0, max_depth: int = MAX_REDACTION_DEPTH) -> Any:
    """
    Recursively redact a value destined for a log line.

    Dict entries named in REDACTED_FIELDS are replaced, raw bytes are never
    logged, strings go through redact_string.
    """
    if depth > max_depth:
        return "[MAX_DEPTH_EXCEEDED]"

    if isinstance(data, dict):
        return {
            key: REDACTED if str(key).lower().replace("-", "_") in REDACTED_FIELDS
            else redact_sensitive_data(value, depth + 1, max_depth)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item, depth + 1, max_depth) for item in data]
    if isinstance(data, (bytes, bytearray)):
        return "[REDACTED_BYTES]"
    if isinstance(data, str):
        return redact_string(data)
    return data


# ============================================================
# Thread-local context
# ============================================================

_log_context = threading.local()


def set_log_context(**kwargs) -> None:
    """Merge values into the current thread's log context."""
    if not hasattr(_log_context, "data"):
        _log_context.data = {}
    _log_context.data.update(kwargs)


def clear_log_context() -> None:
    _log_context.data = {}


def get_log_context() -> dict[str, Any]:
    return getattr(_log_context, "data", {})


class LoggingContext:
    """
    Temporarily add context to every log record of this thread.

    Usage:
        with LoggingContext(identity="alice", scan_id="3f2a"):
            logger.info("Scanning")
    """

    def __init__(self, **kwargs):
        self.context = kwargs
        self.previous_context: dict[str, Any] = {}

    def __enter__(self):
        self.previous_context = get_log_context().copy()
        set_log_context(**self.context)
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        _log_context.data = self.previous_context
        return False


# ============================================================
# Formatters
# ============================================================

# Attributes every LogRecord has; anything else came in through extra=
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


class _RedactingFormatter(logging.Formatter):
    """Shared extraction of message, context and extras, all redacted."""

    def redacted_parts(self, record: logging.LogRecord) -> tuple[str, dict, dict]:
        message = redact_string(record.getMessage())
        context = redact_sensitive_data(get_log_context())
        extras = redact_sensitive_data(
            {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}
        )
        return message, context, extras


class JSONFormatter(_RedactingFormatter):
    """
    One JSON object per record.

    {"timestamp": "...", "level": "INFO", "logger": "note_discovery",
     "message": "Discovered 2 new notes in 40 events",
     "context": {"identity": "alice", "scan_id": "3f2a"}, ...extras}
    """

    def format(self, record: logging.LogRecord) -> str:
        message, context, extras = self.redacted_parts(record)

        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        }
        if record.levelno >= logging.WARNING:
            entry["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if context:
            entry["context"] = context
        entry.update(extras)

        return json.dumps(entry, default=str)


class ConsoleFormatter(_RedactingFormatter):
    """Colored single-line output for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        message, context, extras = self.redacted_parts(record)
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]

        line = f"{color}{timestamp} {record.levelname[0]} [{record.name}]{self.RESET} {message}"
        if context:
            line += f" {color}(" + " ".join(f"{k}={v}" for k, v in context.items()) + f"){self.RESET}"
        if extras:
            line += " [" + ", ".join(f"{k}={v}" for k, v in extras.items()) + "]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(
    level: str = "INFO",
    json_output: bool | None = None,
    log_file: str | None = None,
) -> None:
    """
    Install a single stderr handler on the root logger.

    Args:
        level: Log level name
        json_output: JSON lines instead of console output (LOG_FORMAT when None)
        log_file: Also append JSON lines to this file
    """
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "").lower() == "json"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    # stderr keeps stdout clean for CLI JSON output
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
