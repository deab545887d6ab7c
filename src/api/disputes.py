"""
Dispute and arbitration blueprint.

This blueprint handles the dispute lifecycle:
- Raising disputes against an asset
- Seating an arbitrator panel and collecting decisions
- The three resolution paths (after cooldown, after deadline, and
  without arbitrators)
- Dispute and arbitration lookups
"""

from flask import Blueprint, jsonify

from dispute_arbitration import MAX_RATIONALE_LENGTH, MAX_REASON_LENGTH

from .state import get_ledger
from .utils import (
    DEFAULT_PAGE_LIMIT,
    get_bool_arg,
    get_caller,
    get_int_arg,
    get_json_body,
    paginate,
    require_api_key,
    validate_json_schema,
    validate_pagination_params,
)

disputes_bp = Blueprint("disputes", __name__)


@disputes_bp.route("/disputes", methods=["POST"])
@require_api_key
def raise_dispute():
    """
    Raise a dispute against an asset.

    While any dispute on an asset is unresolved the asset cannot be
    transferred.

    Request body:
        {
            "ip_asset_id": 1,                       // Required
            "reason": "Prior art: ..."              // Required
        }

    Returns:
        The new dispute
    """
    data = get_json_body()
    is_valid, error = validate_json_schema(
        data,
        required_fields={"ip_asset_id": int, "reason": str},
        max_lengths={"reason": MAX_REASON_LENGTH},
    )
    if not is_valid:
        return jsonify({"error": error}), 400

    dispute = get_ledger().raise_dispute(get_caller(), data["ip_asset_id"], data["reason"])
    return jsonify(dispute), 201


@disputes_bp.route("/disputes", methods=["GET"])
@require_api_key
def list_disputes():
    """
    List disputes.

    Query params:
        open: Only unresolved disputes when "true"
        limit: Maximum results (default 100)
        offset: Results to skip
    """
    limit, offset = validate_pagination_params(
        get_int_arg("limit", DEFAULT_PAGE_LIMIT), get_int_arg("offset", 0)
    )
    disputes = get_ledger().list_disputes(open_only=get_bool_arg("open"))
    return jsonify(paginate(disputes, limit, offset))


@disputes_bp.route("/disputes/<int:dispute_id>", methods=["GET"])
@require_api_key
def get_dispute(dispute_id):
    return jsonify(get_ledger().get_dispute(dispute_id))


@disputes_bp.route("/assets/<int:ip_asset_id>/disputes", methods=["GET"])
@require_api_key
def get_asset_disputes(ip_asset_id):
    disputes = get_ledger().get_asset_disputes(ip_asset_id)
    return jsonify({"ip_asset_id": ip_asset_id, "count": len(disputes), "disputes": disputes})


@disputes_bp.route("/disputes/<int:dispute_id>/arbitrators", methods=["POST"])
@require_api_key
def assign_arbitrators(dispute_id):
    """
    Seat an arbitrator panel on a dispute (operator only).

    Request body:
        {
            "arbitrators": ["0x...", "0x...", "0x..."]    // Required, 1 to 3 addresses
        }

    Returns:
        The opened arbitration, including its decision deadline
    """
    data = get_json_body()
    is_valid, error = validate_json_schema(data, required_fields={"arbitrators": list})
    if not is_valid:
        return jsonify({"error": error}), 400

    arbitration = get_ledger().assign_arbitrators(get_caller(), dispute_id, data["arbitrators"])
    return jsonify(arbitration), 201


@disputes_bp.route("/disputes/<int:dispute_id>/decisions", methods=["POST"])
@require_api_key
def submit_decision(dispute_id):
    """
    Record the calling arbitrator's vote.

    Request body:
        {
            "uphold": true,                 // Required
            "rationale": "..."              // Optional
        }

    Returns:
        The arbitration with updated tallies
    """
    data = get_json_body()
    is_valid, error = validate_json_schema(
        data,
        required_fields={"uphold": bool},
        optional_fields={"rationale": str},
        max_lengths={"rationale": MAX_RATIONALE_LENGTH},
    )
    if not is_valid:
        return jsonify({"error": error}), 400

    arbitration = get_ledger().submit_decision(
        get_caller(), dispute_id, data["uphold"], data.get("rationale") or ""
    )
    return jsonify(arbitration)


@disputes_bp.route("/disputes/<int:dispute_id>/resolve/cooldown", methods=["POST"])
@require_api_key
def resolve_after_cooldown(dispute_id):
    """Resolve an upheld dispute once the cooldown after quorum has elapsed (operator only)."""
    return jsonify(get_ledger().check_and_resolve_after_cooldown(get_caller(), dispute_id))


@disputes_bp.route("/disputes/<int:dispute_id>/resolve/deadline", methods=["POST"])
@require_api_key
def resolve_after_deadline(dispute_id):
    """Resolve a dispute whose decision deadline passed without an upheld quorum."""
    return jsonify(get_ledger().resolve_after_deadline(get_caller(), dispute_id))


@disputes_bp.route("/disputes/<int:dispute_id>/resolve/no-arbitrators", methods=["POST"])
@require_api_key
def resolve_without_arbitrators(dispute_id):
    """Close a dispute no panel was ever seated on (disputer only)."""
    return jsonify(get_ledger().resolve_without_arbitrators(get_caller(), dispute_id))


@disputes_bp.route("/arbitrations/<int:arbitration_id>", methods=["GET"])
@require_api_key
def get_arbitration(arbitration_id):
    return jsonify(get_ledger().get_arbitration(arbitration_id))
