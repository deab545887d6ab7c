"""
IPVault - Arbitrator Pool Manager

Staked arbitrators who can be assigned to disputes.

- Registration locks a stake of at least the configured minimum.
- Unstaking returns the full stake, but only while the arbitrator has no
  active disputes.
- An arbitrator's active dispute count is derived from the authoritative
  collections (unresolved arbitrations listing the address whose dispute is
  unresolved). A cached counter on the Arbitrator record is maintained
  alongside it and ``verify_active_dispute_counts`` reports any divergence.

Re-registering after a clean unstake keeps reputation and case history;
only stake, activity flag and registration time are reset.
"""

import logging
from typing import Any

from ledger import Arbitrator, LedgerState, require_positive_amount
from ledger_exceptions import (
    AlreadyRegisteredError,
    ArbitratorHasActiveDisputesError,
    ArbitratorNotActiveError,
    BelowMinimumStakeError,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# 0.000000001 of an 18-decimal token
MIN_ARBITRATOR_STAKE = 1_000_000_000

REPUTATION_REWARD = 10


class ArbitratorPool:
    """Registration, unstaking and activity tracking of arbitrators."""

    def __init__(self, min_stake: int = MIN_ARBITRATOR_STAKE):
        self.min_stake = min_stake

    # =========================================================================
    # Membership
    # =========================================================================

    def register(self, state: LedgerState, address: str, stake: int, now: int) -> Arbitrator:
        """
        Register (or re-register) an arbitrator with a locked stake.

        Raises:
            InvalidAmountError: stake is not a positive integer
            BelowMinimumStakeError: stake < min_stake
            AlreadyRegisteredError: address is already an active arbitrator
        """
        require_positive_amount(stake, "stake")
        if stake < self.min_stake:
            raise BelowMinimumStakeError(stake, self.min_stake)

        existing = state.arbitrators.get(address)
        if existing is not None:
            if existing.is_active:
                raise AlreadyRegisteredError(address)
            existing.stake = stake
            existing.is_active = True
            existing.registered_at = now
            logger.debug("Arbitrator re-registered", extra={"address": address, "stake": stake})
            return existing

        arbitrator = Arbitrator(address=address, stake=stake, registered_at=now)
        state.arbitrators[address] = arbitrator
        return arbitrator

    def unstake(self, state: LedgerState, address: str) -> int:
        """
        Deactivate an arbitrator and return the refunded stake.

        Raises:
            ArbitratorNotRegisteredError: unknown address
            ArbitratorNotActiveError: already unstaked
            ArbitratorHasActiveDisputesError: still assigned to open disputes
        """
        arbitrator = state.get_arbitrator(address)
        if not arbitrator.is_active:
            raise ArbitratorNotActiveError([address])

        count = self.active_dispute_count(state, address)
        if count > 0:
            raise ArbitratorHasActiveDisputesError(address, count)

        refund = arbitrator.stake
        arbitrator.stake = 0
        arbitrator.is_active = False
        return refund

    # =========================================================================
    # Activity Tracking
    # =========================================================================

    def active_dispute_count(self, state: LedgerState, address: str) -> int:
        """Count open disputes the arbitrator is assigned to, from the collections."""
        count = 0
        for arbitration in state.arbitrations.values():
            if arbitration.is_resolved or address not in arbitration.arbitrators:
                continue
            dispute = state.disputes.get(arbitration.dispute_id)
            if dispute is not None and not dispute.is_resolved:
                count += 1
        return count

    def on_assigned(self, state: LedgerState, addresses: list[str]) -> None:
        """Bump the cached counters of a freshly assigned panel."""
        for address in addresses:
            state.arbitrators[address].active_dispute_count += 1

    def on_released(self, state: LedgerState, addresses: list[str]) -> None:
        """Drop the cached counters once a panel's dispute resolves."""
        for address in addresses:
            arbitrator = state.arbitrators.get(address)
            if arbitrator is not None and arbitrator.active_dispute_count > 0:
                arbitrator.active_dispute_count -= 1

    def record_case_outcome(
        self,
        state: LedgerState,
        addresses: list[str],
        matched: set[str],
    ) -> None:
        """Credit a resolved case to every panel member; reward those who matched."""
        for address in addresses:
            arbitrator = state.arbitrators.get(address)
            if arbitrator is None:
                continue
            arbitrator.total_cases += 1
            if address in matched:
                arbitrator.successful_cases += 1
                arbitrator.reputation += REPUTATION_REWARD

    def verify_active_dispute_counts(self, state: LedgerState) -> dict[str, dict[str, int]]:
        """
        Compare cached counters with recomputed counts.

        Returns:
            Mapping address -> {"cached", "derived"} for every divergent arbitrator
            (empty when the cache is consistent)
        """
        divergent = {}
        for address, arbitrator in state.arbitrators.items():
            derived = self.active_dispute_count(state, address)
            if derived != arbitrator.active_dispute_count:
                divergent[address] = {"cached": arbitrator.active_dispute_count, "derived": derived}
        return divergent

    # =========================================================================
    # Queries
    # =========================================================================

    def list_arbitrators(self, state: LedgerState, active_only: bool = False) -> list[Arbitrator]:
        arbitrators = sorted(state.arbitrators.values(), key=lambda a: a.registered_at)
        if active_only:
            arbitrators = [a for a in arbitrators if a.is_active]
        return arbitrators

    def active_count(self, state: LedgerState) -> int:
        return sum(1 for a in state.arbitrators.values() if a.is_active)

    def describe(self, state: LedgerState, address: str) -> dict[str, Any]:
        """Arbitrator record with the derived active dispute count."""
        arbitrator = state.get_arbitrator(address)
        info = arbitrator.to_dict()
        info["active_dispute_count"] = self.active_dispute_count(state, address)
        return info
