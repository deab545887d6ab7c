"""
IPVault - IP Asset & License Registry

Registration of IP assets and the license lifecycle.

Minting a license moves basis points from the owner's retained share to the
license, so for every asset:

    owner_royalty_share_bp + sum(license.royalty_share_bp) == 10,000

Revocation and expiry only deactivate a license; its basis points are not
returned to the owner.
"""

from ledger import BASIS_POINTS, IPAsset, LedgerState, License
from ledger_exceptions import (
    InvalidInputError,
    LicenseInactiveError,
    NotOwnerError,
    RoyaltyShareExceededError,
)

MAX_REF_LENGTH = 512
MAX_TERMS_LENGTH = 2_000


def _require_text(value, field_name: str, max_length: int, required: bool = True) -> str:
    if value is None:
        value = ""
    if not isinstance(value, str):
        raise InvalidInputError(f"{field_name} must be a string", {"field": field_name})
    value = value.strip()
    if required and not value:
        raise InvalidInputError(f"{field_name} is required", {"field": field_name})
    if len(value) > max_length:
        raise InvalidInputError(
            f"{field_name} exceeds {max_length} characters",
            {"field": field_name, "max_length": max_length},
        )
    return value


def register_ip(
    state: LedgerState,
    owner: str,
    content_hash: str,
    metadata_ref: str,
    is_encrypted: bool,
    now: int,
) -> IPAsset:
    """Create an IP asset owned by ``owner`` with the next sequential id."""
    content_hash = _require_text(content_hash, "content_hash", MAX_REF_LENGTH)
    metadata_ref = _require_text(metadata_ref, "metadata_ref", MAX_REF_LENGTH, required=False)
    if not isinstance(is_encrypted, bool):
        raise InvalidInputError("is_encrypted must be a boolean", {"field": "is_encrypted"})

    asset = IPAsset(
        ip_asset_id=state.allocate_asset_id(),
        owner=owner,
        content_hash=content_hash,
        metadata_ref=metadata_ref,
        is_encrypted=is_encrypted,
        registered_at=now,
    )
    state.assets[asset.ip_asset_id] = asset
    return asset


def mint_license(
    state: LedgerState,
    ip_asset_id: int,
    caller: str,
    licensee: str,
    royalty_share_bp: int,
    duration_seconds: int,
    commercial_use_allowed: bool,
    terms_ref: str,
    now: int,
) -> License:
    """
    Mint a license taking ``royalty_share_bp`` from the owner's share.

    Raises:
        AssetNotFoundError: unknown ip_asset_id
        NotOwnerError: caller does not own the asset
        InvalidInputError: malformed share, duration or terms
        RoyaltyShareExceededError: share exceeds the owner's remaining share
    """
    asset = state.get_asset(ip_asset_id)
    if caller != asset.owner:
        raise NotOwnerError(ip_asset_id, caller)

    if isinstance(royalty_share_bp, bool) or not isinstance(royalty_share_bp, int):
        raise InvalidInputError("royalty_share_bp must be an integer", {"field": "royalty_share_bp"})
    if royalty_share_bp < 0 or royalty_share_bp > BASIS_POINTS:
        raise InvalidInputError(
            f"royalty_share_bp must be between 0 and {BASIS_POINTS}",
            {"field": "royalty_share_bp", "value": royalty_share_bp},
        )
    if royalty_share_bp > asset.owner_royalty_share_bp:
        raise RoyaltyShareExceededError(royalty_share_bp, asset.owner_royalty_share_bp)

    if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int) or duration_seconds <= 0:
        raise InvalidInputError(
            "duration_seconds must be a positive integer",
            {"field": "duration_seconds", "value": duration_seconds},
        )
    if not isinstance(commercial_use_allowed, bool):
        raise InvalidInputError(
            "commercial_use_allowed must be a boolean", {"field": "commercial_use_allowed"}
        )
    terms_ref = _require_text(terms_ref, "terms_ref", MAX_TERMS_LENGTH, required=False)

    lic = License(
        license_id=state.allocate_license_id(),
        ip_asset_id=ip_asset_id,
        licensee=licensee,
        royalty_share_bp=royalty_share_bp,
        duration_seconds=duration_seconds,
        started_at=now,
        commercial_use_allowed=commercial_use_allowed,
        terms_ref=terms_ref,
    )
    state.licenses[lic.license_id] = lic
    asset.owner_royalty_share_bp -= royalty_share_bp
    return lic


def revoke_license(state: LedgerState, license_id: int, caller: str, now: int) -> License:
    """Deactivate a license; only the asset's current owner may revoke."""
    lic = state.get_license(license_id)
    asset = state.get_asset(lic.ip_asset_id)
    if caller != asset.owner:
        raise NotOwnerError(asset.ip_asset_id, caller)
    if not lic.is_active:
        raise LicenseInactiveError(license_id)

    lic.is_active = False
    lic.deactivated_at = now
    return lic


def expire_licenses(state: LedgerState, ip_asset_id: int, now: int) -> list[int]:
    """Mark every license past its term inactive; returns the ids changed."""
    state.get_asset(ip_asset_id)
    expired = []
    for lic in state.licenses_for_asset(ip_asset_id):
        if lic.is_active and now >= lic.expires_at:
            lic.is_active = False
            lic.deactivated_at = now
            expired.append(lic.license_id)
    return expired


def share_invariant_holds(state: LedgerState, ip_asset_id: int) -> bool:
    asset = state.get_asset(ip_asset_id)
    minted = sum(lic.royalty_share_bp for lic in state.licenses_for_asset(ip_asset_id))
    return asset.owner_royalty_share_bp + minted == BASIS_POINTS
