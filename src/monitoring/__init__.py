"""
Monitoring infrastructure for Stealth Notes.

This package provides:
- Metrics collection (counters, gauges, histograms)
- Structured logging with secret redaction
- Request timing middleware for the HTTP API

Usage:
    from monitoring import MetricsCollector, get_logger

    metrics = MetricsCollector()
    metrics.increment("trials_total", 100)

    logger = get_logger(__name__)
    logger.info("Scan finished", extra={"notes": 2})
"""

from monitoring.logging import (
    LoggingContext,
    configure_logging,
    get_logger,
    redact_sensitive_data,
    redact_string,
)
from monitoring.metrics import MetricsCollector

__all__ = [
    "LoggingContext",
    "MetricsCollector",
    "configure_logging",
    "get_logger",
    "redact_sensitive_data",
    "redact_string",
]
