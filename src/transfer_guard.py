"""
IPVault - Transfer Guard

An IP asset with an unresolved dispute cannot change owner. Ownership
changes consult the guard first and fail with the full list of blocking
dispute ids so the caller can show exactly what stands in the way.
"""

from ledger import IPAsset, LedgerState
from ledger_exceptions import ActiveDisputesError, InvalidInputError, NotOwnerError


def blocking_dispute_ids(state: LedgerState, ip_asset_id: int) -> list[int]:
    """Ids of every unresolved dispute on the asset, ascending."""
    state.get_asset(ip_asset_id)
    return [d.dispute_id for d in state.disputes_for_asset(ip_asset_id) if not d.is_resolved]


def can_transfer(state: LedgerState, ip_asset_id: int) -> bool:
    return not blocking_dispute_ids(state, ip_asset_id)


def transfer(state: LedgerState, ip_asset_id: int, caller: str, new_owner: str) -> IPAsset:
    """
    Rewrite the owner of an asset.

    Raises:
        AssetNotFoundError: unknown ip_asset_id
        ActiveDisputesError: unresolved disputes block the transfer
        NotOwnerError: caller does not own the asset
        InvalidInputError: new_owner is already the owner
    """
    asset = state.get_asset(ip_asset_id)
    blocking = blocking_dispute_ids(state, ip_asset_id)
    if blocking:
        raise ActiveDisputesError(ip_asset_id, blocking)

    if caller != asset.owner:
        raise NotOwnerError(ip_asset_id, caller)
    if new_owner == asset.owner:
        raise InvalidInputError(
            "New owner must differ from the current owner",
            {"ip_asset_id": ip_asset_id, "new_owner": new_owner},
        )

    asset.owner = new_owner
    return asset
