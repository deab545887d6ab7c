"""
Arbitrator pool blueprint.

Arbitrators stake to join the pool, are seated on dispute panels by the
operator and may unstake once they sit on no unresolved dispute.
"""

from flask import Blueprint, jsonify

from .state import get_ledger
from .utils import (
    get_bool_arg,
    get_caller,
    get_json_body,
    require_api_key,
    validate_json_schema,
)

arbitrators_bp = Blueprint("arbitrators", __name__)


@arbitrators_bp.route("/arbitrators", methods=["POST"])
@require_api_key
def register_arbitrator():
    """
    Register the caller as an arbitrator.

    Request body:
        {
            "stake": 1000000000000000000    // Required, at least the minimum stake
        }

    Returns:
        The arbitrator record
    """
    data = get_json_body()
    is_valid, error = validate_json_schema(data, required_fields={"stake": int})
    if not is_valid:
        return jsonify({"error": error}), 400

    arbitrator = get_ledger().register_arbitrator(get_caller(), data["stake"])
    return jsonify(arbitrator), 201


@arbitrators_bp.route("/arbitrators/unstake", methods=["POST"])
@require_api_key
def unstake():
    """Leave the pool and return the caller's stake."""
    return jsonify(get_ledger().unstake(get_caller()))


@arbitrators_bp.route("/arbitrators", methods=["GET"])
@require_api_key
def list_arbitrators():
    """
    List arbitrators.

    Query params:
        active: Only active arbitrators when "true"
    """
    ledger = get_ledger()
    arbitrators = ledger.list_arbitrators(active_only=get_bool_arg("active"))
    return jsonify({
        "count": len(arbitrators),
        "active_count": ledger.active_arbitrator_count(),
        "arbitrators": arbitrators,
    })


@arbitrators_bp.route("/arbitrators/<address>", methods=["GET"])
@require_api_key
def get_arbitrator(address):
    return jsonify(get_ledger().get_arbitrator(address))
