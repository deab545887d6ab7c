#!/usr/bin/env python3
"""
IPVault Command Line Interface.

Provides commands for running and managing IPVault:
    - serve: Start the API server
    - check: Verify installation and configuration
    - info: Display system information
    - verify: Recompute derived state from the persisted ledger

Usage:
    ipvault serve [--host HOST] [--port PORT] [--debug] [--production] [--workers N]
    ipvault check
    ipvault info
    ipvault verify
    ipvault --version
"""

import argparse
import json
import os
import sys

# Ensure src is in path when running from source
if os.path.exists(os.path.join(os.path.dirname(__file__), "ip_ledger.py")):
    sys.path.insert(0, os.path.dirname(__file__))

__version__ = "0.1.0"


def _load_config():
    from config import LedgerConfig

    try:
        return LedgerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(2)


def _build_ledger(config):
    from ip_ledger import IPLedger
    from storage import get_storage_backend

    storage = get_storage_backend(
        backend_type=config.storage_backend,
        data_file=config.data_file,
        database_url=config.database_url,
        encryption_enabled=config.encryption_enabled,
        encryption_key=config.encryption_key,
    )
    return IPLedger(config=config, storage=storage)


def cmd_serve(args):
    """Start the IPVault API server."""
    from monitoring import configure_logging
    from server import create_app

    workers = args.workers or int(os.getenv("WORKERS", "1"))
    if args.production and workers != 1:
        # Worker processes would each hold a separate in-memory ledger
        print(
            f"Error: --workers {workers} is not supported; the ledger has a single writer, "
            "use one worker and raise THREADS for concurrency",
            file=sys.stderr,
        )
        return 2

    config = _load_config()
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"), log_file=os.getenv("LOG_FILE"))

    host = args.host or config.host
    port = args.port or config.port
    debug = args.debug or os.getenv("FLASK_DEBUG", "").lower() == "true"

    print(f"Starting IPVault API server on {host}:{port}")
    flask_app = create_app(config)

    if args.production:
        # Use gunicorn for production
        try:
            import gunicorn.app.base
        except ImportError:
            print("Error: gunicorn not installed. Install with: pip install ipvault[production]")
            sys.exit(1)

        class StandaloneApplication(gunicorn.app.base.BaseApplication):
            """Gunicorn WSGI application wrapper for production deployment."""

            def __init__(self, app, options=None):
                self.options = options or {}
                self.application = app
                super().__init__()

            def load_config(self):
                for key, value in self.options.items():
                    if key in self.cfg.settings and value is not None:
                        self.cfg.set(key.lower(), value)

            def load(self):
                return self.application

        options = {
            "bind": f"{host}:{port}",
            "workers": workers,
            "worker_class": "gthread",
            "threads": int(os.getenv("THREADS", 8)),
            "timeout": 120,
            "accesslog": "-",
            "errorlog": "-",
        }
        StandaloneApplication(flask_app, options).run()
    else:
        # Use Flask development server
        flask_app.run(host=host, port=port, debug=debug)
    return 0


def cmd_check(args):
    """Check installation and configuration."""
    print("IPVault Installation Check")
    print("=" * 40)

    checks = []

    try:
        import ip_ledger  # noqa: F401

        checks.append(("Core ledger", "OK"))
    except ImportError as e:
        checks.append(("Core ledger", f"FAIL: {e}"))

    try:
        import server  # noqa: F401

        checks.append(("Flask API", "OK"))
    except ImportError as e:
        checks.append(("Flask API", f"FAIL: {e}"))

    config = None
    try:
        from config import LedgerConfig

        config = LedgerConfig.from_env()
        checks.append(("Configuration", "OK"))
        if config.operator is None:
            checks.append(("Operator (IPVAULT_OPERATOR)", "WARN (not set; operator actions disabled)"))
        if config.require_auth and not config.api_key:
            checks.append(("API key (IPVAULT_API_KEY)", "WARN (auth required but no key set)"))
    except ValueError as e:
        checks.append(("Configuration", f"FAIL: {e}"))

    if config is not None:
        try:
            from storage import get_storage_backend

            storage = get_storage_backend(
                backend_type=config.storage_backend,
                data_file=config.data_file,
                database_url=config.database_url,
                encryption_enabled=config.encryption_enabled,
                encryption_key=config.encryption_key,
            )
            backend_name = storage.__class__.__name__
            status = "OK" if storage.is_available() else "WARN (not available)"
            checks.append((f"Storage ({backend_name})", status))
        except Exception as e:
            checks.append(("Storage", f"FAIL: {e}"))

    try:
        import cryptography  # noqa: F401

        checks.append(("Encryption support", "OK"))
    except ImportError:
        checks.append(("Encryption support", "SKIP (cryptography not installed)"))

    try:
        import psycopg2  # noqa: F401

        checks.append(("PostgreSQL support", "OK"))
    except ImportError:
        checks.append(("PostgreSQL support", "SKIP (psycopg2 not installed)"))

    print()
    all_ok = True
    for name, status in checks:
        icon = "✓" if status == "OK" else ("○" if "SKIP" in status or "WARN" in status else "✗")
        print(f"  {icon} {name}: {status}")
        if "FAIL" in status:
            all_ok = False

    print()
    if all_ok:
        print("All checks passed!")
        return 0
    else:
        print("Some checks failed. See above for details.")
        return 1


def cmd_info(args):
    """Display system information."""
    import platform

    print("IPVault System Information")
    print("=" * 40)
    print(f"Version: {__version__}")
    print(f"Python: {platform.python_version()}")
    print(f"Platform: {platform.platform()}")

    config = _load_config()

    print()
    print("Configuration:")
    for key, value in config.to_dict().items():
        print(f"  {key}: {value}")
    print(f"  LOG_LEVEL: {os.getenv('LOG_LEVEL', 'INFO (default)')}")
    print(f"  LOG_FORMAT: {os.getenv('LOG_FORMAT', 'console (default)')}")

    print()
    print("Storage:")
    try:
        ledger = _build_ledger(config)
        for key, value in ledger.storage.get_info().items():
            print(f"  {key}: {value}")
    except Exception as e:
        print(f"  Error: {e}")

    return 0


def cmd_verify(args):
    """Load the persisted ledger and recompute its derived state."""
    config = _load_config()
    ledger = _build_ledger(config)
    report = ledger.verify_derived_state()
    stats = ledger.get_statistics()

    print(json.dumps({"version": stats["version"], **report}, indent=2))
    return 0 if report["consistent"] else 1


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="ipvault",
        description="IPVault - IP asset ledger with royalties and dispute arbitration",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", help="Host to bind to (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, help="Port to bind to (default: 5000)")
    serve_parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    serve_parser.add_argument(
        "--production", action="store_true", help="Use gunicorn for production"
    )
    serve_parser.add_argument("--workers", type=int, help="Number of workers (production mode)")

    subparsers.add_parser("check", help="Check installation and configuration")
    subparsers.add_parser("info", help="Display system information")
    subparsers.add_parser("verify", help="Verify derived state of the persisted ledger")

    args = parser.parse_args()

    if args.command == "serve":
        sys.exit(cmd_serve(args))
    elif args.command == "check":
        sys.exit(cmd_check(args))
    elif args.command == "info":
        sys.exit(cmd_info(args))
    elif args.command == "verify":
        sys.exit(cmd_verify(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
