"""
IPVault - Royalty Distribution Engine

Splits each revenue payment on an IP asset between the platform fee, the
asset's active licenses and the owner.

Distribution rules:
1. platform_fee = floor(amount * platform_fee_bp / 10,000)
2. remainder = amount - platform_fee
3. Each license active at payment time (is_active and not expired), in
   ascending license id, receives floor(remainder * share_bp / 10,000)
4. owner_amount = remainder - sum(license amounts)

Rounding dust from step 3 always lands with the owner, so no currency unit
is ever lost or created. License amounts accrue to a claimable balance per
(asset, licensee); the owner amount is paid out to the current owner at
payment time.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from ledger import (
    BASIS_POINTS,
    DEFAULT_PLATFORM_FEE_BP,
    LedgerState,
    require_positive_amount,
)
from ledger_exceptions import NothingToClaimError

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

PLATFORM_FEE_BP = DEFAULT_PLATFORM_FEE_BP
MAX_PLATFORM_FEE_BP = 1_000  # 10%


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class LicenseShare:
    """One license's cut of a payment."""

    license_id: int
    licensee: str
    share_bp: int
    amount: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "license_id": self.license_id,
            "licensee": self.licensee,
            "share_bp": self.share_bp,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class RoyaltyBreakdown:
    """Deterministic result of distributing one payment."""

    ip_asset_id: int
    total: int
    platform_fee_bp: int
    platform_fee: int
    remainder_after_fee: int
    license_shares: tuple[LicenseShare, ...] = field(default_factory=tuple)
    owner: str = ""
    owner_amount: int = 0

    @property
    def licensed_total(self) -> int:
        return sum(share.amount for share in self.license_shares)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ip_asset_id": self.ip_asset_id,
            "total": self.total,
            "platform_fee_bp": self.platform_fee_bp,
            "platform_fee": self.platform_fee,
            "remainder_after_fee": self.remainder_after_fee,
            "license_shares": [share.to_dict() for share in self.license_shares],
            "licensed_total": self.licensed_total,
            "owner": self.owner,
            "owner_amount": self.owner_amount,
        }


# =============================================================================
# Pure Computation
# =============================================================================

def compute_breakdown(
    state: LedgerState,
    ip_asset_id: int,
    payment_amount: int,
    now: int,
) -> RoyaltyBreakdown:
    """
    Compute the distribution of a payment without touching the state.

    Raises:
        InvalidAmountError: payment_amount is zero, negative or not an int
        AssetNotFoundError: unknown ip_asset_id
    """
    require_positive_amount(payment_amount, "payment_amount")
    asset = state.get_asset(ip_asset_id)

    fee_bp = state.platform_fee_bp
    platform_fee = payment_amount * fee_bp // BASIS_POINTS
    remainder = payment_amount - platform_fee

    shares = []
    for lic in state.licenses_for_asset(ip_asset_id):
        if not lic.is_active_at(now):
            continue
        amount = remainder * lic.royalty_share_bp // BASIS_POINTS
        shares.append(LicenseShare(
            license_id=lic.license_id,
            licensee=lic.licensee,
            share_bp=lic.royalty_share_bp,
            amount=amount,
        ))

    owner_amount = remainder - sum(share.amount for share in shares)

    return RoyaltyBreakdown(
        ip_asset_id=ip_asset_id,
        total=payment_amount,
        platform_fee_bp=fee_bp,
        platform_fee=platform_fee,
        remainder_after_fee=remainder,
        license_shares=tuple(shares),
        owner=asset.owner,
        owner_amount=owner_amount,
    )


# =============================================================================
# Engine
# =============================================================================

class RoyaltyEngine:
    """Applies payments and claims against a ledger state."""

    def apply_payment(
        self,
        state: LedgerState,
        ip_asset_id: int,
        payment_amount: int,
        now: int,
    ) -> RoyaltyBreakdown:
        """
        Distribute a payment and credit every party.

        Must run inside a ledger transaction. Validation happens entirely in
        ``compute_breakdown`` before the first write.
        """
        breakdown = compute_breakdown(state, ip_asset_id, payment_amount, now)
        asset = state.get_asset(ip_asset_id)

        asset.total_revenue += breakdown.total
        state.platform_fees_collected += breakdown.platform_fee

        for share in breakdown.license_shares:
            account = state.royalty_account(ip_asset_id, share.licensee)
            account.claimable += share.amount
            account.total_accumulated += share.amount

        # Owner is paid immediately; recorded for royalty info only
        owner_account = state.royalty_account(ip_asset_id, breakdown.owner)
        owner_account.total_accumulated += breakdown.owner_amount

        logger.debug(
            "Payment distributed",
            extra={
                "ip_asset_id": ip_asset_id,
                "total": breakdown.total,
                "platform_fee": breakdown.platform_fee,
                "license_count": len(breakdown.license_shares),
                "owner_amount": breakdown.owner_amount,
            },
        )
        return breakdown

    def claim(self, state: LedgerState, ip_asset_id: int, account: str, now: int) -> int:
        """
        Zero the claimable balance of ``account`` on the asset and return it.

        Raises:
            AssetNotFoundError: unknown ip_asset_id
            NothingToClaimError: balance is zero
        """
        state.get_asset(ip_asset_id)
        royalty_account = state.get_royalty_account(ip_asset_id, account)
        if royalty_account is None or royalty_account.claimable <= 0:
            raise NothingToClaimError(ip_asset_id, account)

        amount = royalty_account.claimable
        royalty_account.claimable = 0
        royalty_account.total_claimed += amount
        royalty_account.last_claimed_at = now
        return amount

    def royalty_info(self, state: LedgerState, ip_asset_id: int, account: str) -> dict[str, Any]:
        """Revenue and balance summary of ``account`` on an asset."""
        asset = state.get_asset(ip_asset_id)
        royalty_account = state.get_royalty_account(ip_asset_id, account)
        return {
            "ip_asset_id": ip_asset_id,
            "account": account,
            "total_revenue": asset.total_revenue,
            "claimable_amount": royalty_account.claimable if royalty_account else 0,
            "last_claimed_at": royalty_account.last_claimed_at if royalty_account else 0,
            "total_accumulated": royalty_account.total_accumulated if royalty_account else 0,
            "total_claimed": royalty_account.total_claimed if royalty_account else 0,
        }
