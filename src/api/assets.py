"""
IP asset blueprint.

This blueprint handles everything keyed by an IP asset:
- Registration and lookup
- License minting, revocation and expiry
- Revenue payments and royalty claims
- Ownership transfer (blocked while disputes are open)
"""

from flask import Blueprint, jsonify, request

from ip_registry import MAX_REF_LENGTH, MAX_TERMS_LENGTH
from ledger_exceptions import InvalidInputError

from .state import get_ledger
from .utils import (
    DEFAULT_PAGE_LIMIT,
    get_caller,
    get_int_arg,
    get_json_body,
    paginate,
    require_api_key,
    validate_json_schema,
    validate_pagination_params,
)

assets_bp = Blueprint("assets", __name__)


# ============================================================
# Assets
# ============================================================

@assets_bp.route("/assets", methods=["POST"])
@require_api_key
def register_asset():
    """
    Register a new IP asset owned by the caller.

    Request body:
        {
            "content_hash": "sha256:...",     // Required
            "metadata_ref": "ipfs://...",     // Optional
            "is_encrypted": false             // Optional
        }

    Returns:
        The registered asset
    """
    data = get_json_body()
    is_valid, error = validate_json_schema(
        data,
        required_fields={"content_hash": str},
        optional_fields={"metadata_ref": str, "is_encrypted": bool},
        max_lengths={"content_hash": MAX_REF_LENGTH, "metadata_ref": MAX_REF_LENGTH},
    )
    if not is_valid:
        return jsonify({"error": error}), 400

    asset = get_ledger().register_ip(
        get_caller(),
        content_hash=data["content_hash"],
        metadata_ref=data.get("metadata_ref") or "",
        is_encrypted=bool(data.get("is_encrypted", False)),
    )
    return jsonify(asset), 201


@assets_bp.route("/assets", methods=["GET"])
@require_api_key
def list_assets():
    """
    List registered assets.

    Query params:
        owner: Only assets owned by this address
        limit: Maximum results (default 100)
        offset: Results to skip
    """
    limit, offset = validate_pagination_params(
        get_int_arg("limit", DEFAULT_PAGE_LIMIT), get_int_arg("offset", 0)
    )
    assets = get_ledger().list_assets(owner=request.args.get("owner"))
    return jsonify(paginate(assets, limit, offset))


@assets_bp.route("/assets/<int:ip_asset_id>", methods=["GET"])
@require_api_key
def get_asset(ip_asset_id):
    return jsonify(get_ledger().get_asset(ip_asset_id))


# ============================================================
# Licenses
# ============================================================

@assets_bp.route("/assets/<int:ip_asset_id>/licenses", methods=["POST"])
@require_api_key
def mint_license(ip_asset_id):
    """
    Mint a license on the caller's asset.

    The license's royalty share is carved out of the owner's share; the
    shares on an asset always add up to 10,000 basis points.

    Request body:
        {
            "licensee": "0x...",                 // Required
            "royalty_share_bp": 2500,            // Required, basis points
            "duration_seconds": 2592000,         // Required
            "commercial_use_allowed": true,      // Optional
            "terms_ref": "ipfs://..."            // Optional
        }

    Returns:
        The minted license
    """
    data = get_json_body()
    is_valid, error = validate_json_schema(
        data,
        required_fields={"licensee": str, "royalty_share_bp": int, "duration_seconds": int},
        optional_fields={"commercial_use_allowed": bool, "terms_ref": str},
        max_lengths={"licensee": 42, "terms_ref": MAX_TERMS_LENGTH},
    )
    if not is_valid:
        return jsonify({"error": error}), 400

    lic = get_ledger().mint_license(
        get_caller(),
        ip_asset_id,
        licensee=data["licensee"],
        royalty_share_bp=data["royalty_share_bp"],
        duration_seconds=data["duration_seconds"],
        commercial_use_allowed=bool(data.get("commercial_use_allowed", False)),
        terms_ref=data.get("terms_ref") or "",
    )
    return jsonify(lic), 201


@assets_bp.route("/assets/<int:ip_asset_id>/licenses", methods=["GET"])
@require_api_key
def get_asset_licenses(ip_asset_id):
    licenses = get_ledger().get_asset_licenses(ip_asset_id)
    return jsonify({"ip_asset_id": ip_asset_id, "count": len(licenses), "licenses": licenses})


@assets_bp.route("/assets/<int:ip_asset_id>/licenses/expire", methods=["POST"])
@require_api_key
def expire_licenses(ip_asset_id):
    """Deactivate licenses whose term has ended."""
    return jsonify(get_ledger().expire_licenses(ip_asset_id))


@assets_bp.route("/licenses/<int:license_id>", methods=["GET"])
@require_api_key
def get_license(license_id):
    return jsonify(get_ledger().get_license(license_id))


@assets_bp.route("/licenses/<int:license_id>/revoke", methods=["POST"])
@require_api_key
def revoke_license(license_id):
    """Revoke a license; only the asset owner may do this."""
    return jsonify(get_ledger().revoke_license(get_caller(), license_id))


# ============================================================
# Revenue & Royalties
# ============================================================

@assets_bp.route("/assets/<int:ip_asset_id>/revenue", methods=["POST"])
@require_api_key
def pay_revenue(ip_asset_id):
    """
    Pay revenue to an asset.

    The payment is split into the platform fee, each active license's share
    and the owner's share, which absorbs the rounding remainder.

    Request body:
        {
            "amount": 1000000    // Required, positive integer units
        }

    Returns:
        The breakdown that was credited
    """
    data = get_json_body()
    is_valid, error = validate_json_schema(data, required_fields={"amount": int})
    if not is_valid:
        return jsonify({"error": error}), 400

    breakdown = get_ledger().pay_revenue(get_caller(), ip_asset_id, data["amount"])
    return jsonify(breakdown), 201


@assets_bp.route("/assets/<int:ip_asset_id>/revenue/preview", methods=["GET"])
@require_api_key
def preview_revenue(ip_asset_id):
    """
    Preview how a payment would be split right now, without applying it.

    Query params:
        amount: Payment amount (required)
    """
    amount = get_int_arg("amount")
    if amount is None:
        raise InvalidInputError("Query parameter 'amount' is required", {"field": "amount"})
    return jsonify(get_ledger().preview_breakdown(ip_asset_id, amount))


@assets_bp.route("/assets/<int:ip_asset_id>/royalties/claim", methods=["POST"])
@require_api_key
def claim_royalties(ip_asset_id):
    """Pay out the caller's claimable balance on the asset."""
    return jsonify(get_ledger().claim_royalties(get_caller(), ip_asset_id))


@assets_bp.route("/assets/<int:ip_asset_id>/royalties/<account>", methods=["GET"])
@require_api_key
def get_royalty_info(ip_asset_id, account):
    return jsonify(get_ledger().get_royalty_info(ip_asset_id, account))


# ============================================================
# Transfers
# ============================================================

@assets_bp.route("/assets/<int:ip_asset_id>/transferable", methods=["GET"])
@require_api_key
def can_transfer(ip_asset_id):
    """Whether the asset can change hands, with any disputes blocking it."""
    return jsonify(get_ledger().can_transfer(ip_asset_id))


@assets_bp.route("/assets/<int:ip_asset_id>/transfer", methods=["POST"])
@require_api_key
def transfer_asset(ip_asset_id):
    """
    Transfer the caller's asset to a new owner.

    Request body:
        {
            "new_owner": "0x..."    // Required
        }

    Returns:
        The asset after transfer; 409 with the blocking dispute ids while
        any dispute on it is open
    """
    data = get_json_body()
    is_valid, error = validate_json_schema(
        data, required_fields={"new_owner": str}, max_lengths={"new_owner": 42}
    )
    if not is_valid:
        return jsonify({"error": error}), 400

    return jsonify(get_ledger().transfer_ip(get_caller(), ip_asset_id, data["new_owner"]))
