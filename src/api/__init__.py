"""
Stealth Notes API Package.

Flask blueprints exposing one StealthWallet over HTTP.

Blueprints:
- keys: key generation and commitment creation
- notes: note listing, withdrawal inputs, spend confirmation, scanner control
- monitoring: health and metrics
"""

from flask import Flask

from api.keys import keys_bp
from api.monitoring import monitoring_bp
from api.notes import notes_bp
from api.utils import WALLET_EXTENSION, register_error_handlers
from monitoring.middleware import setup_request_logging

# Tuple format: (blueprint, url_prefix)
ALL_BLUEPRINTS = [
    (keys_bp, ''),
    (notes_bp, ''),
    (monitoring_bp, ''),
]


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    for blueprint, url_prefix in ALL_BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=url_prefix)


def create_app(
    wallet,
    api_key: str | None = None,
    require_api_key: bool | None = None,
) -> Flask:
    """
    Build the Flask app for a wallet.

    Args:
        wallet: StealthWallet served by this app
        api_key: Required X-API-Key value (defaults to the wallet config)
        require_api_key: Enforce the key (defaults to the wallet config);
            with enforcement on and no key configured, protected routes
            answer 503
    """
    app = Flask(__name__)
    app.config["STEALTH_API_KEY"] = api_key if api_key is not None else wallet.config.api_key
    app.config["STEALTH_REQUIRE_AUTH"] = (
        require_api_key if require_api_key is not None else wallet.config.require_api_key
    )
    app.extensions[WALLET_EXTENSION] = wallet

    register_blueprints(app)
    register_error_handlers(app)
    setup_request_logging(app, wallet.metrics)
    return app
