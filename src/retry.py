"""
Stealth Notes - Retry Logic with Exponential Backoff

Two places in the core talk to something that can fail transiently:
- Secure storage reads and writes (note list, key records)
- The chain event stream polled by the discovery scanner

Storage calls get a bounded number of retries through retry_call(); the
scanner never gives up on the stream and uses the unbounded Backoff schedule.

Usage:
    config = RetryConfig.from_env()
    retry_call(storage.set_item, args=(key, value), config=config)

    backoff = Backoff(config)
    delay = backoff.next_delay()   # after a failure
    backoff.reset()                # after a success

Environment Variables:
    STEALTH_RETRY_MAX_ATTEMPTS=3
    STEALTH_RETRY_BASE_DELAY=0.1
    STEALTH_RETRY_MAX_DELAY=30.0
    STEALTH_RETRY_EXPONENTIAL_BASE=2.0
    STEALTH_RETRY_JITTER=0.1
"""

import logging
import os
import random
import time
from dataclasses import dataclass
from typing import Any, Callable

from storage.base import EntryLockedError, StorageReadError, StorageWriteError

logger = logging.getLogger(__name__)

# Locked entries are a policy decision, not a transient fault
NEVER_RETRY = (EntryLockedError,)
DEFAULT_RETRYABLE = (StorageWriteError, StorageReadError, ConnectionError, TimeoutError)

# Past this many doublings every schedule sits at max_delay
MAX_BACKOFF_EXPONENT = 64


def _env_number(name: str, default: str, cast: Callable[[str], Any]) -> Any:
    raw = os.getenv(name, default).strip() or default
    try:
        value = cast(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value


@dataclass
class RetryConfig:
    """Backoff parameters shared by storage retries and the scan loop."""

    max_retries: int = 3
    base_delay: float = 0.1
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: float = 0.1  # fraction of the delay, applied in both directions

    retryable_exceptions: tuple = DEFAULT_RETRYABLE

    @classmethod
    def from_env(cls) -> "RetryConfig":
        """Create configuration from environment variables."""
        return cls(
            max_retries=_env_number("STEALTH_RETRY_MAX_ATTEMPTS", "3", int),
            base_delay=_env_number("STEALTH_RETRY_BASE_DELAY", "0.1", float),
            max_delay=_env_number("STEALTH_RETRY_MAX_DELAY", "30.0", float),
            exponential_base=_env_number("STEALTH_RETRY_EXPONENTIAL_BASE", "2.0", float),
            jitter=min(_env_number("STEALTH_RETRY_JITTER", "0.1", float), 1.0),
        )

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """
        Delay before retry number attempt (0-indexed).

        base_delay * exponential_base ** attempt, capped at max_delay, then
        moved by up to +/- jitter of itself.
        """
        attempt = min(attempt, MAX_BACKOFF_EXPONENT)
        try:
            delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)
        except OverflowError:
            delay = self.max_delay
        if self.jitter > 0:
            delay += delay * self.jitter * (2 * rng() - 1)
        return max(0.0, delay)

    def is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, NEVER_RETRY):
            return False
        return isinstance(error, self.retryable_exceptions)


def retry_call(
    func: Callable,
    args: tuple = (),
    kwargs: dict | None = None,
    config: RetryConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """
    Call func, retrying transient failures with exponential backoff.

    Raises:
        The first non-retryable exception immediately, or the last
        retryable one once max_retries retries are used up
    """
    config = config or RetryConfig()
    kwargs = kwargs or {}
    name = getattr(func, "__qualname__", getattr(func, "__name__", "call"))

    attempt = 0
    while True:
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not config.is_retryable(e):
                raise
            if attempt >= config.max_retries:
                logger.error("%s failed after %d retries: %s", name, attempt, e)
                raise

            delay = config.delay_for(attempt)
            attempt += 1
            logger.warning(
                "%s failed (%s), retry %d/%d in %.2fs",
                name, type(e).__name__, attempt, config.max_retries, delay,
            )
            sleep(delay)


class Backoff:
    """
    Unbounded backoff schedule for loops that must keep going.

    The discovery scanner never gives up on the event stream; it only slows
    down while the stream keeps failing.
    """

    def __init__(self, config: RetryConfig | None = None):
        self.config = config or RetryConfig()
        self.failures = 0

    def next_delay(self) -> float:
        delay = self.config.delay_for(self.failures)
        if self.failures < MAX_BACKOFF_EXPONENT:
            self.failures += 1
        return delay

    def reset(self) -> None:
        self.failures = 0
