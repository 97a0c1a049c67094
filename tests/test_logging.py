"""
Tests for structured logging and secret redaction.
"""

import json
import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from monitoring.logging import (
    ConsoleFormatter,
    JSONFormatter,
    LoggingContext,
    configure_logging,
    get_log_context,
    redact_sensitive_data,
    redact_string,
)

COMMITMENT_HEX = "0x" + "1234" + "ab" * 28 + "cdef"


def make_record(message, level=logging.INFO, **extra):
    record = logging.LogRecord("note_discovery", level, __file__, 10, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRedaction:
    """Tests for redact_string and redact_sensitive_data."""

    def test_key_value_secrets(self):
        text = redact_string("secret=abc123 nullifier: def456 private_key=0011")
        assert "abc123" not in text
        assert "def456" not in text
        assert "0011" not in text
        assert text.count("[REDACTED]") == 3

    def test_bearer_token(self):
        assert redact_string("Authorization: Bearer xyz.abc").endswith("Bearer [REDACTED]")

    def test_long_hex_is_shortened(self):
        text = redact_string(f"commitment {COMMITMENT_HEX} seen")
        assert text == "commitment 0x1234...cdef seen"

    def test_plain_text_untouched(self):
        assert redact_string("Scanner started from block 10") == "Scanner started from block 10"

    def test_dict_fields(self):
        data = {"secret": "s", "nested": {"nullifier": "n", "amount": "1.0"}, "Private-Key": "k"}
        redacted = redact_sensitive_data(data)
        assert redacted["secret"] == "[REDACTED]"
        assert redacted["nested"]["nullifier"] == "[REDACTED]"
        assert redacted["nested"]["amount"] == "1.0"
        assert redacted["Private-Key"] == "[REDACTED]"

    def test_bytes_never_logged(self):
        assert redact_sensitive_data({"blob": b"\x01\x02"}) == {"blob": "[REDACTED_BYTES]"}

    def test_lists(self):
        assert redact_sensitive_data([{"secret": 1}, "ok"]) == [{"secret": "[REDACTED]"}, "ok"]

    def test_max_depth(self):
        data = current = {}
        for _ in range(20):
            current["child"] = {}
            current = current["child"]
        text = json.dumps(redact_sensitive_data(data))
        assert "[MAX_DEPTH_EXCEEDED]" in text


class TestFormatters:
    """Tests for JSON and console formatters."""

    def test_json_formatter_structure(self):
        output = json.loads(JSONFormatter().format(make_record("Discovered 2 notes")))
        assert output["level"] == "INFO"
        assert output["logger"] == "note_discovery"
        assert output["message"] == "Discovered 2 notes"
        assert "timestamp" in output

    def test_json_formatter_redacts_extras(self):
        record = make_record("Found note", secret="0xdead", note_id="note_1")
        output = json.loads(JSONFormatter().format(record))
        assert output["secret"] == "[REDACTED]"
        assert output["note_id"] == "note_1"

    def test_json_formatter_location_for_warnings(self):
        output = json.loads(JSONFormatter().format(make_record("careful", level=logging.WARNING)))
        assert "location" in output

    def test_json_formatter_includes_context(self):
        with LoggingContext(identity="alice", scan_id="abcd"):
            output = json.loads(JSONFormatter().format(make_record("scan")))
        assert output["context"] == {"identity": "alice", "scan_id": "abcd"}

    def test_console_formatter_redacts(self):
        text = ConsoleFormatter().format(make_record("nullifier=ffff", private_key="x"))
        assert "ffff" not in text
        assert "private_key=[REDACTED]" in text


class TestLoggingContext:
    """Tests for thread-local context handling."""

    def test_context_restored(self):
        with LoggingContext(identity="outer"):
            with LoggingContext(scan_id="inner"):
                assert get_log_context() == {"identity": "outer", "scan_id": "inner"}
            assert get_log_context() == {"identity": "outer"}
        assert get_log_context() == {}


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_sets_level_and_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            self._check_configure()
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def _check_configure(self):
        configure_logging(level="DEBUG", json_output=True)
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        configure_logging(level="WARNING", json_output=False)
        assert isinstance(logging.getLogger().handlers[0].formatter, ConsoleFormatter)
