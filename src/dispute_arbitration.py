"""
IPVault - Dispute & Arbitration State Machine

Lifecycle of a challenge to an IP asset:

    raise_dispute
        -> AWAITING_ARBITRATORS
            -> assign_arbitrators -> ARBITRATORS_ASSIGNED
                -> submit_decision (uphold quorum reached) -> QUORUM_COOLDOWN
                    -> check_and_resolve_after_cooldown -> RESOLVED (upheld)
                -> resolve_after_deadline (no quorum)   -> RESOLVED (rejected)
            -> resolve_without_arbitrators            -> RESOLVED (auto_rejected)

Resolved is terminal. Deadlines are evaluated lazily when a resolving
request arrives; a dispute whose deadline passed stays put until someone
asks for resolution. Each transition either applies completely or raises a
typed error before writing anything.

Uphold quorum: 3 votes when 3 arbitrators sit on the panel, otherwise a
strict majority of the panel (1 of 1, 2 of 2).
"""

import logging
from typing import Any

from arbitrator_pool import ArbitratorPool
from ledger import (
    Arbitration,
    ArbitrationVote,
    Dispute,
    DisputeOutcome,
    LedgerState,
)
from ledger_exceptions import (
    AlreadyAssignedError,
    AlreadyResolvedError,
    AlreadyVotedError,
    ArbitrationNotFoundError,
    ArbitratorNotActiveError,
    ArbitratorsAssignedError,
    CooldownNotElapsedError,
    DeadlineNotReachedError,
    DeadlinePassedError,
    InvalidInputError,
    NotAssignedArbitratorError,
    NotDisputerError,
    QuorumNotReachedError,
    QuorumReachedError,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

DISPUTE_DECISION_WINDOW = 7 * 24 * 60 * 60  # 7 days
RESOLUTION_COOLDOWN = 24 * 60 * 60  # 24 hours
NO_ARBITRATOR_DEADLINE = 7 * 24 * 60 * 60  # 7 days

REQUIRED_UPHOLD_VOTES = 3
MIN_PANEL_SIZE = 1
MAX_PANEL_SIZE = 3

MAX_REASON_LENGTH = 2_000
MAX_RATIONALE_LENGTH = 5_000


def required_uphold_votes(panel_size: int) -> int:
    """Uphold votes needed to start the resolution cooldown."""
    if panel_size >= REQUIRED_UPHOLD_VOTES:
        return REQUIRED_UPHOLD_VOTES
    return panel_size // 2 + 1


class DisputeStateMachine:
    """Owns every dispute and arbitration transition."""

    def __init__(
        self,
        pool: ArbitratorPool,
        decision_window: int = DISPUTE_DECISION_WINDOW,
        resolution_cooldown: int = RESOLUTION_COOLDOWN,
        no_arbitrator_deadline: int = NO_ARBITRATOR_DEADLINE,
    ):
        self.pool = pool
        self.decision_window = decision_window
        self.resolution_cooldown = resolution_cooldown
        self.no_arbitrator_deadline = no_arbitrator_deadline

    # =========================================================================
    # Raise
    # =========================================================================

    def raise_dispute(
        self,
        state: LedgerState,
        ip_asset_id: int,
        disputer: str,
        reason: str,
        now: int,
    ) -> Dispute:
        """Open a dispute on an asset and mark the asset disputed."""
        asset = state.get_asset(ip_asset_id)
        if not isinstance(reason, str) or not reason.strip():
            raise InvalidInputError("Dispute reason is required", {"field": "reason"})
        reason = reason.strip()
        if len(reason) > MAX_REASON_LENGTH:
            raise InvalidInputError(
                f"Dispute reason exceeds {MAX_REASON_LENGTH} characters",
                {"field": "reason", "max_length": MAX_REASON_LENGTH},
            )

        dispute = Dispute(
            dispute_id=state.allocate_dispute_id(),
            ip_asset_id=ip_asset_id,
            disputer=disputer,
            reason=reason,
            raised_at=now,
        )
        state.disputes[dispute.dispute_id] = dispute
        asset.is_disputed = True
        return dispute

    # =========================================================================
    # Assign
    # =========================================================================

    def assign_arbitrators(
        self,
        state: LedgerState,
        dispute_id: int,
        addresses: list[str],
        now: int,
    ) -> Arbitration:
        """
        Seat a panel of 1-3 active arbitrators on an open dispute.

        All-or-nothing: a single inactive or unknown address rejects the
        whole assignment.
        """
        dispute = state.get_dispute(dispute_id)
        if dispute.is_resolved:
            raise AlreadyResolvedError(dispute_id)
        if dispute.arbitration_id != 0:
            raise AlreadyAssignedError(dispute_id, dispute.arbitration_id)

        if not MIN_PANEL_SIZE <= len(addresses) <= MAX_PANEL_SIZE:
            raise InvalidInputError(
                f"Between {MIN_PANEL_SIZE} and {MAX_PANEL_SIZE} arbitrators must be assigned",
                {"count": len(addresses)},
            )
        if len(set(addresses)) != len(addresses):
            raise InvalidInputError("Duplicate arbitrator addresses", {"addresses": list(addresses)})

        inactive = [
            address for address in addresses
            if address not in state.arbitrators or not state.arbitrators[address].is_active
        ]
        if inactive:
            raise ArbitratorNotActiveError(inactive)

        arbitration = Arbitration(
            arbitration_id=state.allocate_arbitration_id(),
            dispute_id=dispute_id,
            arbitrators=list(addresses),
            deadline=now + self.decision_window,
            required_uphold_votes=required_uphold_votes(len(addresses)),
            created_at=now,
        )
        state.arbitrations[arbitration.arbitration_id] = arbitration
        dispute.arbitration_id = arbitration.arbitration_id
        self.pool.on_assigned(state, arbitration.arbitrators)
        return arbitration

    # =========================================================================
    # Vote
    # =========================================================================

    def submit_decision(
        self,
        state: LedgerState,
        dispute_id: int,
        arbitrator: str,
        uphold: bool,
        rationale: str,
        now: int,
    ) -> Arbitration:
        """Record one arbitrator's vote; start the cooldown when quorum is hit."""
        if not isinstance(uphold, bool):
            raise InvalidInputError("uphold must be a boolean", {"field": "uphold"})
        if rationale is None:
            rationale = ""
        if not isinstance(rationale, str):
            raise InvalidInputError("Rationale must be a string", {"field": "rationale"})
        rationale = rationale.strip()
        if len(rationale) > MAX_RATIONALE_LENGTH:
            raise InvalidInputError(
                f"Rationale exceeds {MAX_RATIONALE_LENGTH} characters",
                {"field": "rationale", "max_length": MAX_RATIONALE_LENGTH},
            )

        dispute = state.get_dispute(dispute_id)
        arbitration = self._open_arbitration(state, dispute)
        if arbitrator not in arbitration.arbitrators:
            raise NotAssignedArbitratorError(dispute_id, arbitrator)
        if now >= arbitration.deadline:
            raise DeadlinePassedError(dispute_id, arbitration.deadline)
        if arbitrator in arbitration.votes:
            raise AlreadyVotedError(dispute_id, arbitrator)

        arbitration.votes[arbitrator] = ArbitrationVote(
            arbitrator=arbitrator,
            uphold=uphold,
            rationale=rationale,
            cast_at=now,
        )
        if uphold:
            arbitration.votes_for += 1
        else:
            arbitration.votes_against += 1
        arbitration.resolution = rationale

        if (
            arbitration.votes_for >= arbitration.required_uphold_votes
            and arbitration.uphold_quorum_reached_at == 0
        ):
            arbitration.uphold_quorum_reached_at = now
            logger.info(
                "Uphold quorum reached; resolution cooldown started",
                extra={"dispute_id": dispute_id, "votes_for": arbitration.votes_for},
            )
        return arbitration

    # =========================================================================
    # Resolve
    # =========================================================================

    def check_and_resolve_after_cooldown(
        self,
        state: LedgerState,
        dispute_id: int,
        now: int,
    ) -> Dispute:
        """Resolve as upheld once quorum was reached and the cooldown elapsed."""
        dispute = state.get_dispute(dispute_id)
        if dispute.is_resolved:
            raise AlreadyResolvedError(dispute_id)
        if dispute.arbitration_id == 0:
            raise QuorumNotReachedError(dispute_id, 0, REQUIRED_UPHOLD_VOTES)

        arbitration = state.get_arbitration(dispute.arbitration_id)
        if arbitration.uphold_quorum_reached_at == 0:
            raise QuorumNotReachedError(
                dispute_id, arbitration.votes_for, arbitration.required_uphold_votes
            )
        ready_at = arbitration.uphold_quorum_reached_at + self.resolution_cooldown
        if now < ready_at:
            raise CooldownNotElapsedError(dispute_id, ready_at, now)

        self._finalize(state, dispute, arbitration, DisputeOutcome.UPHELD, now)
        return dispute

    def resolve_after_deadline(
        self,
        state: LedgerState,
        dispute_id: int,
        now: int,
    ) -> Dispute:
        """Resolve as rejected when the voting window closed without quorum."""
        dispute = state.get_dispute(dispute_id)
        arbitration = self._open_arbitration(state, dispute)
        if arbitration.uphold_quorum_reached_at != 0:
            raise QuorumReachedError(dispute_id, arbitration.uphold_quorum_reached_at)
        if now < arbitration.deadline:
            raise DeadlineNotReachedError(dispute_id, arbitration.deadline, now)

        self._finalize(state, dispute, arbitration, DisputeOutcome.REJECTED, now)
        return dispute

    def resolve_without_arbitrators(
        self,
        state: LedgerState,
        dispute_id: int,
        caller: str,
        now: int,
    ) -> Dispute:
        """Auto-reject a dispute nobody was assigned to, on the disputer's request."""
        dispute = state.get_dispute(dispute_id)
        if dispute.is_resolved:
            raise AlreadyResolvedError(dispute_id)
        if dispute.arbitration_id != 0:
            raise ArbitratorsAssignedError(dispute_id, dispute.arbitration_id)
        if caller != dispute.disputer:
            raise NotDisputerError(dispute_id, caller)
        deadline = dispute.raised_at + self.no_arbitrator_deadline
        if now < deadline:
            raise DeadlineNotReachedError(dispute_id, deadline, now)

        self._finalize(state, dispute, None, DisputeOutcome.AUTO_REJECTED, now)
        return dispute

    # =========================================================================
    # Derived Flags
    # =========================================================================

    def unresolved_dispute_ids(self, state: LedgerState, ip_asset_id: int) -> list[int]:
        return [d.dispute_id for d in state.disputes_for_asset(ip_asset_id) if not d.is_resolved]

    def refresh_disputed_flag(self, state: LedgerState, ip_asset_id: int) -> bool:
        asset = state.get_asset(ip_asset_id)
        asset.is_disputed = bool(self.unresolved_dispute_ids(state, ip_asset_id))
        return asset.is_disputed

    def verify_disputed_flags(self, state: LedgerState) -> dict[int, dict[str, bool]]:
        """Assets whose cached is_disputed differs from the recomputed value."""
        divergent = {}
        for asset_id, asset in state.assets.items():
            derived = bool(self.unresolved_dispute_ids(state, asset_id))
            if derived != asset.is_disputed:
                divergent[asset_id] = {"cached": asset.is_disputed, "derived": derived}
        return divergent

    def describe(self, state: LedgerState, dispute: Dispute) -> dict[str, Any]:
        info = dispute.to_dict()
        info["state"] = state.dispute_state(dispute).value
        if dispute.arbitration_id:
            info["arbitration"] = state.get_arbitration(dispute.arbitration_id).to_dict()
        return info

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _open_arbitration(self, state: LedgerState, dispute: Dispute) -> Arbitration:
        if dispute.is_resolved:
            raise AlreadyResolvedError(dispute.dispute_id)
        if dispute.arbitration_id == 0:
            raise ArbitrationNotFoundError(dispute_id=dispute.dispute_id)
        arbitration = state.get_arbitration(dispute.arbitration_id)
        if arbitration.is_resolved:
            raise AlreadyResolvedError(dispute.dispute_id)
        return arbitration

    def _finalize(
        self,
        state: LedgerState,
        dispute: Dispute,
        arbitration: Arbitration | None,
        outcome: DisputeOutcome,
        now: int,
    ) -> None:
        dispute.is_resolved = True
        dispute.outcome = outcome
        dispute.resolved_at = now

        if arbitration is not None:
            arbitration.is_resolved = True
            upheld = outcome == DisputeOutcome.UPHELD
            matched = {
                address for address, vote in arbitration.votes.items()
                if vote.uphold == upheld
            }
            self.pool.on_released(state, arbitration.arbitrators)
            self.pool.record_case_outcome(state, arbitration.arbitrators, matched)

        self.refresh_disputed_flag(state, dispute.ip_asset_id)
