"""
IPVault - REST API Server

Builds the Flask application: one ledger over the configured storage
backend, the API blueprints, request logging, rate limiting and the
JSON error contract (every rejected request carries ``error``, ``code``,
``category`` and ``details``).
"""

import logging
import os

from flask import Flask, jsonify

from api import register_blueprints
from api.state import init_ledger
from api.utils import check_rate_limit, ledger_error_response, storage_error_response
from config import LedgerConfig
from ip_ledger import IPLedger
from ledger_exceptions import LedgerError
from monitoring import configure_logging, setup_request_logging
from storage import get_storage_backend
from storage.base import StorageError

logger = logging.getLogger(__name__)


def create_app(config: LedgerConfig | None = None, ledger: IPLedger | None = None) -> Flask:
    """
    Create the Flask application.

    Args:
        config: Settings; read from the environment when omitted
        ledger: Ledger to serve; built from ``config`` when omitted

    Returns:
        Configured Flask app
    """
    if config is None:
        config = ledger.config if ledger is not None else LedgerConfig.from_env()

    if ledger is None:
        storage = get_storage_backend(
            backend_type=config.storage_backend,
            data_file=config.data_file,
            database_url=config.database_url,
            encryption_enabled=config.encryption_enabled,
            encryption_key=config.encryption_key,
        )
        ledger = IPLedger(config=config, storage=storage)

    app = Flask(__name__)
    app.config['JSON_SORT_KEYS'] = False
    app.config.update(
        IPVAULT_API_KEY=config.api_key,
        IPVAULT_REQUIRE_AUTH=config.require_auth,
        RATE_LIMIT_REQUESTS=config.rate_limit_requests,
        RATE_LIMIT_WINDOW=config.rate_limit_window,
    )

    init_ledger(ledger)
    app.extensions["ipvault_ledger"] = ledger

    setup_request_logging(app, ledger.metrics)
    register_blueprints(app)
    _register_error_handlers(app)

    @app.before_request
    def enforce_rate_limit():
        exceeded = check_rate_limit()
        if exceeded:
            return jsonify(exceeded), 429
        return None

    logger.info(
        "IPVault API initialized",
        extra={
            "storage_backend": config.storage_backend,
            "require_auth": config.require_auth,
            "operator_configured": config.operator is not None,
        },
    )
    return app


def _register_error_handlers(app: Flask) -> None:
    app.register_error_handler(LedgerError, ledger_error_response)
    app.register_error_handler(StorageError, storage_error_response)

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 errors."""
        return jsonify({"error": "Endpoint not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 errors."""
        return jsonify({"error": "Internal server error"}), 500


def run_server(debug: bool = False):
    """Run the Flask development server."""
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"), log_file=os.getenv("LOG_FILE"))
    config = LedgerConfig.from_env()
    app = create_app(config)
    ledger = app.extensions["ipvault_ledger"]

    print(f"\n{'='*60}")
    print("IPVault API Server")
    print(f"{'='*60}")
    print(f"Listening on: http://{config.host}:{config.port}")
    print(f"Storage: {config.storage_backend}")
    print(f"Assets loaded: {len(ledger.list_assets())}")
    print(f"{'='*60}\n")

    app.run(host=config.host, port=config.port, debug=debug)


if __name__ == '__main__':
    run_server()
