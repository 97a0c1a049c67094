"""
Tests for Stealth Notes retry logic.

Tests:
- RetryConfig defaults, environment parsing and delay schedule
- Exception classification
- retry_call
- Backoff schedule used by the scanner
"""

import os
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from retry import MAX_BACKOFF_EXPONENT, Backoff, RetryConfig, retry_call
from storage.base import EntryLockedError, StorageReadError, StorageWriteError


def no_sleep(_delay):
    pass


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_default_config(self):
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.base_delay == 0.1
        assert config.max_delay == 30.0
        assert StorageWriteError in config.retryable_exceptions

    def test_from_env(self):
        env = {
            "STEALTH_RETRY_MAX_ATTEMPTS": "5",
            "STEALTH_RETRY_BASE_DELAY": "0.5",
            "STEALTH_RETRY_MAX_DELAY": "10",
            "STEALTH_RETRY_JITTER": "0",
        }
        with patch.dict(os.environ, env):
            config = RetryConfig.from_env()
        assert config.max_retries == 5
        assert config.base_delay == 0.5
        assert config.max_delay == 10.0
        assert config.jitter == 0.0

    def test_from_env_rejects_garbage(self):
        with patch.dict(os.environ, {"STEALTH_RETRY_MAX_ATTEMPTS": "many"}):
            with pytest.raises(ValueError, match="STEALTH_RETRY_MAX_ATTEMPTS"):
                RetryConfig.from_env()

    def test_from_env_rejects_negative(self):
        with patch.dict(os.environ, {"STEALTH_RETRY_BASE_DELAY": "-1"}):
            with pytest.raises(ValueError):
                RetryConfig.from_env()


class TestDelaySchedule:
    """Tests for RetryConfig.delay_for."""

    def test_exponential_growth(self):
        config = RetryConfig(base_delay=1.0, exponential_base=2.0, max_delay=100.0, jitter=0)
        assert [config.delay_for(i) for i in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=0)
        assert config.delay_for(10) == 5.0

    def test_huge_attempt_is_capped(self):
        config = RetryConfig(base_delay=1.0, exponential_base=10.0, max_delay=5.0, jitter=0)
        assert config.delay_for(5000) == 5.0

    def test_jitter_bounds(self):
        config = RetryConfig(base_delay=1.0, max_delay=10.0, jitter=0.5)
        assert config.delay_for(0, rng=lambda: 0.0) == 0.5
        assert config.delay_for(0, rng=lambda: 1.0) == 1.5
        for _ in range(50):
            assert 0.5 <= config.delay_for(0) <= 1.5


class TestIsRetryable:
    """Tests for exception classification."""

    def test_storage_faults_are_retried(self):
        config = RetryConfig()
        assert config.is_retryable(StorageWriteError("x"))
        assert config.is_retryable(StorageReadError("x"))
        assert config.is_retryable(ConnectionError("x"))

    def test_locked_entry_never_retried(self):
        config = RetryConfig(retryable_exceptions=(Exception,))
        assert not config.is_retryable(EntryLockedError("locked"))

    def test_other_errors_not_retried(self):
        assert not RetryConfig().is_retryable(ValueError("x"))


class TestRetryCall:
    """Tests for retry_call."""

    def test_success_first_try(self):
        assert retry_call(lambda: 42, sleep=no_sleep) == 42

    def test_retries_then_succeeds(self):
        calls = []
        delays = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise StorageWriteError("transient")
            return "ok"

        config = RetryConfig(max_retries=3, base_delay=1.0, jitter=0)
        assert retry_call(flaky, config=config, sleep=delays.append) == "ok"
        assert len(calls) == 3
        assert delays == [1.0, 2.0]

    def test_gives_up_after_max_retries(self):
        calls = []

        def always_fails():
            calls.append(1)
            raise StorageWriteError("down")

        with pytest.raises(StorageWriteError):
            retry_call(always_fails, config=RetryConfig(max_retries=2), sleep=no_sleep)
        assert len(calls) == 3

    def test_non_retryable_raises_immediately(self):
        calls = []

        def bad_input():
            calls.append(1)
            raise ValueError("bad")

        with pytest.raises(ValueError):
            retry_call(bad_input, sleep=no_sleep)
        assert len(calls) == 1

    def test_passes_args_and_kwargs(self):
        result = retry_call(lambda a, b=0: a + b, args=(1,), kwargs={"b": 2}, sleep=no_sleep)
        assert result == 3


class TestBackoff:
    """Tests for the unbounded scanner backoff."""

    def test_grows_and_resets(self):
        backoff = Backoff(RetryConfig(base_delay=1.0, exponential_base=2.0, max_delay=5.0, jitter=0))
        assert [backoff.next_delay() for _ in range(4)] == [1.0, 2.0, 4.0, 5.0]
        assert backoff.failures == 4
        backoff.reset()
        assert backoff.failures == 0
        assert backoff.next_delay() == 1.0

    def test_never_gives_up(self):
        backoff = Backoff(RetryConfig(max_retries=1, base_delay=0.1, max_delay=1.0, jitter=0))
        for _ in range(20):
            assert backoff.next_delay() <= 1.0

    def test_long_outage_stays_at_cap(self):
        """Thousands of consecutive failures keep returning max_delay."""
        backoff = Backoff(RetryConfig(base_delay=0.1, max_delay=30.0, jitter=0))
        delays = [backoff.next_delay() for _ in range(1100)]
        assert max(delays) == 30.0
        assert delays[-1] == 30.0
        assert backoff.failures == MAX_BACKOFF_EXPONENT
        assert backoff.next_delay() == 30.0

    def test_zero_delays_never_overflow(self):
        backoff = Backoff(RetryConfig(base_delay=0, max_delay=0, jitter=0))
        assert all(backoff.next_delay() == 0.0 for _ in range(1100))
