"""
Flask middleware for request logging and metrics.

Provides:
- Request/response logging with timing
- Request ID tracking (X-Request-ID)
- Per-request metrics on the wallet's collector
"""

import logging
import time
import uuid

from flask import Flask, Response, g, request

from monitoring.logging import clear_log_context, set_log_context
from monitoring.metrics import MetricsCollector

logger = logging.getLogger("stealth.request")


def setup_request_logging(app: Flask, metrics: MetricsCollector) -> None:
    """
    Set up request logging middleware for a Flask app.

    Args:
        app: Flask application instance
        metrics: Collector that receives http_* metrics
    """

    @app.before_request
    def before_request():
        g.request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        g.start_time = time.perf_counter()
        set_log_context(
            request_id=g.request_id,
            method=request.method,
            path=request.path,
        )

    @app.after_request
    def after_request(response: Response) -> Response:
        _record_request_metrics(metrics, response.status_code)
        if hasattr(g, "request_id"):
            response.headers["X-Request-ID"] = g.request_id
        return response

    @app.teardown_request
    def teardown_request(exception=None):
        clear_log_context()
        if exception:
            logger.error(
                "Request failed with exception",
                exc_info=exception,
                extra={
                    "request_id": getattr(g, "request_id", "unknown"),
                    "path": request.path,
                    "method": request.method,
                },
            )


def _record_request_metrics(metrics: MetricsCollector, status_code: int) -> None:
    """Record metrics for a completed request."""
    duration_ms = 0.0
    if hasattr(g, "start_time"):
        duration_ms = (time.perf_counter() - g.start_time) * 1000

    path = normalize_path(request.path)
    metrics.increment(
        "http_requests_total",
        labels={"method": request.method, "path": path, "status": str(status_code)},
    )
    metrics.timing(
        "http_request_duration_ms",
        duration_ms,
        labels={"method": request.method, "path": path},
    )

    log_level = logging.INFO
    if status_code >= 500:
        log_level = logging.ERROR
    elif status_code >= 400:
        log_level = logging.WARNING

    logger.log(
        log_level,
        f"{request.method} {path} -> {status_code}",
        extra={
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2),
        },
    )


def normalize_path(path: str) -> str:
    """
    Normalize path for metrics labels.

    Commitments in URLs are replaced with a placeholder so they neither blow
    up label cardinality nor end up in metrics.
    """
    parts = path.strip("/").split("/")
    normalized = []

    for part in parts:
        cleaned = part[2:] if part[:2].lower() == "0x" else part
        if part.isdigit() and len(part) > 12:
            normalized.append(":commitment")
        elif len(cleaned) == 64 and all(c in "0123456789abcdef" for c in cleaned.lower()):
            normalized.append(":commitment")
        else:
            normalized.append(part)

    return "/" + "/".join(normalized) if normalized else "/"
