"""
Tests for environment-driven configuration.
"""

import os
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from config import ConfigError, StealthConfig


class TestDefaults:
    """Tests for default configuration."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = StealthConfig.from_env()
        assert config.identity == "default"
        assert config.storage_backend == "json"
        assert config.max_notes is None
        assert config.overflow_policy == "reject_new"
        assert config.scan_batch_size == 100
        assert config.auth_kdf_iterations == 600_000
        assert config.api_key is None
        assert config.require_api_key is True

    def test_to_dict_hides_secrets(self):
        config = StealthConfig(vault_key="super-secret", api_key="api-secret")
        data = config.to_dict()
        assert data["vault_encrypted"] is True
        assert data["api_key_required"] is True
        assert "super-secret" not in str(data)
        assert "api-secret" not in str(data)


class TestFromEnv:
    """Tests for parsing environment variables."""

    def test_reads_values(self):
        env = {
            "STEALTH_IDENTITY": "alice",
            "STEALTH_STORAGE_BACKEND": "MEMORY",
            "STEALTH_MAX_NOTES": "50",
            "STEALTH_OVERFLOW_POLICY": "evict_oldest_spent",
            "STEALTH_SCAN_START_BLOCK": "1000",
            "STEALTH_SCAN_BATCH_SIZE": "10",
            "STEALTH_POLL_TIMEOUT": "0.5",
            "STEALTH_VERIFY_WORKERS": "2",
            "STEALTH_AUTH_KDF_ITERATIONS": "1000",
            "STEALTH_API_KEY": "k",
            "STEALTH_REQUIRE_AUTH": "false",
            "LOG_LEVEL": "debug",
            "STEALTH_RETRY_MAX_ATTEMPTS": "7",
        }
        with patch.dict(os.environ, env, clear=True):
            config = StealthConfig.from_env()
        assert config.identity == "alice"
        assert config.storage_backend == "memory"
        assert config.max_notes == 50
        assert config.overflow_policy == "evict_oldest_spent"
        assert config.scan_start_block == 1000
        assert config.scan_batch_size == 10
        assert config.poll_timeout == 0.5
        assert config.verify_workers == 2
        assert config.auth_kdf_iterations == 1000
        assert config.api_key == "k"
        assert config.require_api_key is False
        assert config.log_level == "DEBUG"
        assert config.retry.max_retries == 7

    @pytest.mark.parametrize("name,value", [
        ("STEALTH_MAX_NOTES", "many"),
        ("STEALTH_MAX_NOTES", "0"),
        ("STEALTH_SCAN_BATCH_SIZE", "0"),
        ("STEALTH_POLL_TIMEOUT", "-1"),
        ("STEALTH_OVERFLOW_POLICY", "drop_random"),
        ("STEALTH_IDENTITY", "../etc"),
        ("STEALTH_RETRY_MAX_ATTEMPTS", "many"),
    ])
    def test_invalid_values(self, name, value):
        with patch.dict(os.environ, {name: value}, clear=True):
            with pytest.raises(ConfigError):
                StealthConfig.from_env()

    def test_config_error_is_value_error(self):
        assert issubclass(ConfigError, ValueError)
