"""
Shared utilities for the Stealth Notes API.

Decorators, error mapping and request helpers used by every blueprint.
"""

import logging
import secrets
from functools import wraps
from typing import Any

from flask import current_app, jsonify, request

from stealth_exceptions import (
    AlreadySpentError,
    AuthenticationFailed,
    AuthenticationRequired,
    IntegrityError,
    InvalidInputError,
    InvalidKeyError,
    KeysNotFoundError,
    NoteNotFoundError,
    NoteStoreFullError,
    ScannerBusyError,
    StealthProtocolError,
    StorageError,
)

logger = logging.getLogger(__name__)

WALLET_EXTENSION = "stealth_wallet"

# Most specific first
ERROR_STATUS = [
    (InvalidKeyError, 400),
    (InvalidInputError, 400),
    (AuthenticationRequired, 401),
    (AuthenticationFailed, 403),
    (KeysNotFoundError, 404),
    (NoteNotFoundError, 404),
    (AlreadySpentError, 409),
    (ScannerBusyError, 409),
    (NoteStoreFullError, 507),
    (IntegrityError, 500),
]


def get_wallet():
    """The StealthWallet bound to the running app."""
    return current_app.extensions[WALLET_EXTENSION]


def require_api_key(f):
    """Decorator to require API key authentication."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_app.config.get("STEALTH_REQUIRE_AUTH", True):
            return f(*args, **kwargs)

        provided_key = request.headers.get('X-API-Key')
        if not provided_key:
            return jsonify({
                "error": "API key required",
                "hint": "Provide API key in X-API-Key header"
            }), 401

        expected = current_app.config.get("STEALTH_API_KEY")
        if not expected:
            return jsonify({
                "error": "Server API key not configured",
                "hint": "Set STEALTH_API_KEY or STEALTH_REQUIRE_AUTH=false"
            }), 503

        if not secrets.compare_digest(provided_key, expected):
            return jsonify({"error": "Invalid API key"}), 403

        return f(*args, **kwargs)
    return decorated_function


def get_json_body() -> dict[str, Any]:
    """Request JSON object, or {} when the body is empty or not an object."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def error_response(error: Exception):
    """Map a protocol or storage error to a JSON response."""
    if isinstance(error, StorageError):
        logger.warning("Storage error in request: %s", error)
        return jsonify({"error": "Storage unavailable", "details": str(error)}), 503

    status = 500
    for error_type, code in ERROR_STATUS:
        if isinstance(error, error_type):
            status = code
            break

    payload = {"error": getattr(error, "message", str(error))}
    if isinstance(error, StealthProtocolError):
        payload["error_type"] = type(error).__name__
        if error.context.details:
            payload["details"] = error.context.details
        if error.is_fatal:
            logger.critical("Fatal protocol error: %s", error, extra={"error": error.to_dict()})

    return jsonify(payload), status


def register_error_handlers(app) -> None:
    app.register_error_handler(StealthProtocolError, error_response)
    app.register_error_handler(StorageError, error_response)
