"""
Stealth Notes - Configuration

All runtime settings come from environment variables (optionally loaded from a
.env file by the CLI). Values are parsed once into a StealthConfig and passed
down explicitly; no component reads the environment on its own.

Environment Variables:
    STEALTH_IDENTITY=default
    STEALTH_STORAGE_BACKEND=json          # json | memory
    STEALTH_VAULT_FILE=stealth_vault.json
    STEALTH_VAULT_KEY=<base64 key or passphrase>
    STEALTH_MAX_NOTES=                    # unset = unbounded
    STEALTH_OVERFLOW_POLICY=reject_new    # reject_new | evict_oldest_spent
    STEALTH_SCAN_START_BLOCK=0
    STEALTH_SCAN_BATCH_SIZE=100
    STEALTH_POLL_TIMEOUT=2.0
    STEALTH_VERIFY_WORKERS=4
    STEALTH_AUTH_KDF_ITERATIONS=600000
    STEALTH_PASSPHRASE=                   # CLI only; prompted when unset
    STEALTH_API_KEY=                      # X-API-Key value for the HTTP API
    STEALTH_REQUIRE_AUTH=true             # false = HTTP API open (local use only)
    STEALTH_RETRY_*                       # storage retry, see retry.py
    LOG_LEVEL=INFO
    LOG_FORMAT=console                    # console | json
"""

import os
import re
from dataclasses import dataclass, field

from retry import RetryConfig

_IDENTITY_RE = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")


class ConfigError(ValueError):
    """Raised when an environment variable has an unusable value."""
    pass


def _env_int(name: str, default: int | None, minimum: int = 0) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


@dataclass
class StealthConfig:
    """Runtime configuration for one wallet identity."""

    identity: str = "default"

    # Storage
    storage_backend: str = "json"
    vault_file: str = "stealth_vault.json"
    vault_key: str | None = None

    # Note store
    max_notes: int | None = None
    overflow_policy: str = "reject_new"

    # Discovery
    scan_start_block: int = 0
    scan_batch_size: int = 100
    poll_timeout: float = 2.0
    verify_workers: int = 4

    # Authentication
    auth_kdf_iterations: int = 600_000

    # HTTP API
    api_key: str | None = None
    require_api_key: bool = True

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    retry: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self):
        if not _IDENTITY_RE.match(self.identity):
            raise ConfigError(
                "STEALTH_IDENTITY may only contain letters, digits, '.', '_' and '-'"
            )
        if self.overflow_policy not in ("reject_new", "evict_oldest_spent"):
            raise ConfigError(f"Unknown overflow policy: {self.overflow_policy}")
        if self.scan_batch_size < 1:
            raise ConfigError("STEALTH_SCAN_BATCH_SIZE must be >= 1")
        if self.verify_workers < 1:
            raise ConfigError("STEALTH_VERIFY_WORKERS must be >= 1")

    @classmethod
    def from_env(cls) -> "StealthConfig":
        """Create configuration from environment variables."""
        try:
            retry = RetryConfig.from_env()
        except ValueError as e:
            raise ConfigError(str(e)) from e

        return cls(
            identity=os.getenv("STEALTH_IDENTITY", "default"),
            storage_backend=os.getenv("STEALTH_STORAGE_BACKEND", "json").lower(),
            vault_file=os.getenv("STEALTH_VAULT_FILE", "stealth_vault.json"),
            vault_key=os.getenv("STEALTH_VAULT_KEY") or None,
            max_notes=_env_int("STEALTH_MAX_NOTES", None, minimum=1),
            overflow_policy=os.getenv("STEALTH_OVERFLOW_POLICY", "reject_new").lower(),
            scan_start_block=_env_int("STEALTH_SCAN_START_BLOCK", 0),
            scan_batch_size=_env_int("STEALTH_SCAN_BATCH_SIZE", 100, minimum=1),
            poll_timeout=_env_float("STEALTH_POLL_TIMEOUT", 2.0),
            verify_workers=_env_int("STEALTH_VERIFY_WORKERS", 4, minimum=1),
            auth_kdf_iterations=_env_int("STEALTH_AUTH_KDF_ITERATIONS", 600_000, minimum=1),
            api_key=os.getenv("STEALTH_API_KEY") or None,
            require_api_key=os.getenv("STEALTH_REQUIRE_AUTH", "true").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "console").lower(),
            retry=retry,
        )

    def to_dict(self) -> dict:
        """Settings safe to display (no key material)."""
        return {
            "identity": self.identity,
            "storage_backend": self.storage_backend,
            "vault_file": self.vault_file,
            "vault_encrypted": self.vault_key is not None,
            "max_notes": self.max_notes,
            "overflow_policy": self.overflow_policy,
            "scan_start_block": self.scan_start_block,
            "scan_batch_size": self.scan_batch_size,
            "poll_timeout": self.poll_timeout,
            "verify_workers": self.verify_workers,
            "api_key_required": self.require_api_key,
            "api_key_configured": self.api_key is not None,
            "log_level": self.log_level,
            "log_format": self.log_format,
        }
