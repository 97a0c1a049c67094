"""
Monitoring and metrics API endpoints.

This blueprint provides:
- /metrics: Prometheus-compatible metrics endpoint
- /metrics/json: JSON format metrics
- /health: Basic health check
- /health/ready: Readiness probe (storage reachable)
"""

import time

from flask import Blueprint, Response, jsonify

from api.utils import get_wallet

monitoring_bp = Blueprint('monitoring', __name__)

_startup_time = time.time()


def _update_dynamic_metrics(wallet) -> None:
    counts = wallet.note_store.get_notes_count()
    wallet.metrics.set_gauge("notes_available", counts["available"])
    wallet.metrics.set_gauge("notes_total", counts["total"])


@monitoring_bp.route('/metrics', methods=['GET'])
def prometheus_metrics():
    """Metrics in Prometheus text exposition format."""
    wallet = get_wallet()
    _update_dynamic_metrics(wallet)
    return Response(wallet.metrics.to_prometheus(), mimetype='text/plain; charset=utf-8')


@monitoring_bp.route('/metrics/json', methods=['GET'])
def json_metrics():
    wallet = get_wallet()
    _update_dynamic_metrics(wallet)
    return jsonify(wallet.metrics.get_all())


@monitoring_bp.route('/health', methods=['GET'])
def health():
    """Service status and key statistics."""
    wallet = get_wallet()
    return jsonify({
        "status": "healthy",
        "service": "Stealth Notes API",
        "version": _get_version(),
        "uptime_seconds": time.time() - _startup_time,
        "checks": {
            "keys": {"status": "ok" if wallet.key_manager.has_keys() else "missing"},
            "scanner": {"state": wallet.engine.state.value},
            "storage": _check_storage(wallet),
        },
    })


@monitoring_bp.route('/health/ready', methods=['GET'])
def readiness():
    wallet = get_wallet()
    storage = _check_storage(wallet)
    if storage["status"] != "ok":
        return jsonify({"status": "not_ready", "issues": [f"storage: {storage['status']}"]}), 503
    return jsonify({"status": "ready"})


def _get_version() -> str:
    try:
        from importlib.metadata import PackageNotFoundError, version
        return version("stealth-notes")
    except PackageNotFoundError:
        return "0.1.0"


def _check_storage(wallet) -> dict:
    info = wallet.storage.get_info()
    return {
        "status": "ok" if info.get("available") else "unavailable",
        "backend": info.get("backend_type"),
    }
