"""
Core ledger operations blueprint.

This blueprint handles the service-level routes:
- Health and readiness probes
- Ledger statistics and Prometheus metrics
- The audit trail
- Platform fee administration
"""

import time
from importlib.metadata import PackageNotFoundError, version

from flask import Blueprint, Response, jsonify, request

from .state import get_ledger
from .utils import (
    DEFAULT_PAGE_LIMIT,
    get_caller,
    get_int_arg,
    get_json_body,
    require_api_key,
    validate_json_schema,
)

core_bp = Blueprint("core", __name__)

_startup_time = time.time()


@core_bp.route("/health", methods=["GET"])
def health():
    """
    Basic health check endpoint.

    Returns service status, storage status and key counts.
    """
    ledger = get_ledger()
    stats = ledger.get_statistics()
    return jsonify({
        "status": "healthy",
        "service": "IPVault API",
        "version": _get_version(),
        "uptime_seconds": time.time() - _startup_time,
        "checks": {
            "ledger": {
                "status": "ok",
                "version": stats["version"],
                "assets": stats["assets"]["total"],
                "open_disputes": stats["disputes"]["open"],
            },
            "storage": _check_storage(ledger),
        },
    })


@core_bp.route("/health/live", methods=["GET"])
def liveness():
    """Liveness probe; fails only if the process needs a restart."""
    return jsonify({"status": "alive"})


@core_bp.route("/health/ready", methods=["GET"])
def readiness():
    """
    Readiness probe.

    Returns 503 when the storage backend cannot accept writes, since every
    state-changing request would then be rolled back.
    """
    storage = _check_storage(get_ledger())
    if storage["status"] == "error" or not storage["available"]:
        return jsonify({"status": "not_ready", "issues": [f"storage: {storage['status']}"]}), 503
    return jsonify({"status": "ready"})


@core_bp.route("/stats", methods=["GET"])
@require_api_key
def get_stats():
    """
    Get ledger statistics.

    Returns:
        Counts of assets, licenses, royalties, disputes and arbitrators,
        plus the platform fee settings
    """
    return jsonify(get_ledger().get_statistics())


@core_bp.route("/metrics", methods=["GET"])
def prometheus_metrics():
    """
    Prometheus-compatible metrics endpoint.

    Returns metrics in Prometheus text exposition format.
    """
    return Response(
        get_ledger().metrics.to_prometheus(),
        mimetype="text/plain; version=0.0.4; charset=utf-8",
    )


@core_bp.route("/metrics/json", methods=["GET"])
def json_metrics():
    """Metrics as JSON for debugging and dashboards."""
    return jsonify(get_ledger().metrics.get_all())


@core_bp.route("/events", methods=["GET"])
@require_api_key
def get_events():
    """
    Get the audit trail.

    Query params:
        type: Only events of this type (e.g. "pay_revenue")
        limit: Maximum events, most recent last (default 100, max 1000)
    """
    limit = get_int_arg("limit", DEFAULT_PAGE_LIMIT)
    events = get_ledger().get_events(event_type=request.args.get("type"), limit=limit)
    return jsonify({"count": len(events), "events": events})


@core_bp.route("/platform", methods=["GET"])
@require_api_key
def get_platform():
    """Get the current platform fee, its collector and fees collected so far."""
    return jsonify(get_ledger().get_platform_info())


@core_bp.route("/platform/fee", methods=["POST"])
@require_api_key
def set_platform_fee():
    """
    Change the platform fee (operator only).

    Request body:
        {
            "fee_bp": 250    // Required, 0..1000 basis points
        }
    """
    data = get_json_body()
    is_valid, error = validate_json_schema(data, required_fields={"fee_bp": int})
    if not is_valid:
        return jsonify({"error": error}), 400

    return jsonify(get_ledger().set_platform_fee(get_caller(), data["fee_bp"]))


@core_bp.route("/platform/fee-collector", methods=["POST"])
@require_api_key
def set_platform_fee_collector():
    """
    Change the account credited with platform fees (operator only).

    Request body:
        {
            "collector": "0x..."    // Required
        }
    """
    data = get_json_body()
    is_valid, error = validate_json_schema(
        data, required_fields={"collector": str}, max_lengths={"collector": 42}
    )
    if not is_valid:
        return jsonify({"error": error}), 400

    return jsonify(get_ledger().set_platform_fee_collector(get_caller(), data["collector"]))


def _get_version() -> str:
    try:
        return version("ipvault")
    except PackageNotFoundError:
        return "0.1.0"


def _check_storage(ledger) -> dict:
    """Check storage backend status."""
    storage = ledger.storage
    if storage is None:
        return {"status": "ok", "available": True, "backend": "none"}
    try:
        available = storage.is_available()
    except Exception as e:
        return {"status": "error", "available": False, "error": str(e)}
    return {
        "status": "ok" if available else "degraded",
        "available": available,
        "backend": storage.__class__.__name__,
    }
