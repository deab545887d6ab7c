"""
Tests for the dispute and arbitration state machine.

Scenarios run through the ledger service so role checks, transactions
and derived flags are exercised together.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from conftest import (
    ALICE,
    ARB1,
    ARB2,
    ARB3,
    ARB4,
    DAY,
    DISPUTER,
    OPERATOR,
    STAKE,
)
from dispute_arbitration import required_uphold_votes
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
    DisputeNotFoundError,
    InvalidInputError,
    NotAssignedArbitratorError,
    NotDisputerError,
    NotOperatorError,
    QuorumNotReachedError,
    QuorumReachedError,
    UnauthorizedError,
)

WEEK = 7 * DAY


@pytest.fixture
def dispute(ledger, asset):
    return ledger.raise_dispute(DISPUTER, asset["ip_asset_id"], "Prior art exists")


@pytest.fixture
def panel(ledger, dispute, arbitrators):
    ledger.assign_arbitrators(OPERATOR, dispute["dispute_id"], arbitrators)
    return arbitrators


class TestQuorumRule:
    """Uphold votes needed for each panel size."""

    @pytest.mark.parametrize("size,required", [(1, 1), (2, 2), (3, 3)])
    def test_required_votes(self, size, required):
        assert required_uphold_votes(size) == required


class TestRaiseDispute:
    """Tests for opening disputes."""

    def test_raise_marks_asset_disputed(self, ledger, asset, dispute):
        assert dispute["dispute_id"] == 1
        assert dispute["state"] == "awaiting_arbitrators"
        assert dispute["arbitration_id"] == 0
        assert ledger.get_asset(asset["ip_asset_id"])["is_disputed"] is True

    def test_empty_reason_rejected(self, ledger, asset):
        with pytest.raises(InvalidInputError):
            ledger.raise_dispute(DISPUTER, asset["ip_asset_id"], "   ")

    def test_owner_may_raise_dispute(self, ledger, asset):
        d = ledger.raise_dispute(asset["owner"], asset["ip_asset_id"], "self-report")
        assert d["disputer"] == asset["owner"]


class TestAssignArbitrators:
    """Tests for seating a panel."""

    def test_assign_opens_arbitration(self, ledger, clock, dispute, arbitrators):
        arbitration = ledger.assign_arbitrators(OPERATOR, dispute["dispute_id"], arbitrators)

        assert arbitration["arbitrators"] == arbitrators
        assert arbitration["deadline"] == clock.now + WEEK
        assert arbitration["required_uphold_votes"] == 3
        assert ledger.get_dispute(dispute["dispute_id"])["state"] == "arbitrators_assigned"
        assert all(ledger.get_arbitrator(a)["active_dispute_count"] == 1 for a in arbitrators)

    def test_only_operator_assigns(self, ledger, dispute, arbitrators):
        with pytest.raises(NotOperatorError):
            ledger.assign_arbitrators(DISPUTER, dispute["dispute_id"], arbitrators)

    def test_assign_twice_rejected(self, ledger, dispute, panel):
        with pytest.raises(AlreadyAssignedError):
            ledger.assign_arbitrators(OPERATOR, dispute["dispute_id"], panel)

    def test_inactive_arbitrator_rejects_whole_panel(self, ledger, dispute, arbitrators):
        with pytest.raises(ArbitratorNotActiveError) as exc_info:
            ledger.assign_arbitrators(OPERATOR, dispute["dispute_id"], [ARB1, ARB4])

        assert exc_info.value.details["addresses"] == [ARB4]
        assert ledger.get_dispute(dispute["dispute_id"])["arbitration_id"] == 0
        assert ledger.get_arbitrator(ARB1)["active_dispute_count"] == 0
        assert ledger.verify_derived_state()["consistent"] is True

    @pytest.mark.parametrize("addresses", [[], [ARB1, ARB2, ARB3, ARB4], [ARB1, ARB1]])
    def test_bad_panel_size_or_duplicates(self, ledger, dispute, arbitrators, addresses):
        ledger.register_arbitrator(ARB4, STAKE)
        with pytest.raises(InvalidInputError):
            ledger.assign_arbitrators(OPERATOR, dispute["dispute_id"], addresses)

    def test_unknown_dispute(self, ledger, arbitrators):
        with pytest.raises(DisputeNotFoundError):
            ledger.assign_arbitrators(OPERATOR, 77, arbitrators)


class TestSubmitDecision:
    """Tests for arbitrator votes."""

    def test_votes_are_tallied(self, ledger, dispute, panel):
        ledger.submit_decision(ARB1, dispute["dispute_id"], True, "clear copy")
        arbitration = ledger.submit_decision(ARB2, dispute["dispute_id"], False, "independent")

        assert arbitration["votes_for"] == 1
        assert arbitration["votes_against"] == 1
        assert arbitration["uphold_quorum_reached_at"] == 0
        assert arbitration["resolution"] == "independent"

    def test_unassigned_arbitrator_rejected(self, ledger, dispute, panel):
        ledger.register_arbitrator(ARB4, STAKE)
        with pytest.raises(NotAssignedArbitratorError):
            ledger.submit_decision(ARB4, dispute["dispute_id"], True)

    def test_double_vote_rejected(self, ledger, dispute, panel):
        ledger.submit_decision(ARB1, dispute["dispute_id"], True)

        with pytest.raises(AlreadyVotedError):
            ledger.submit_decision(ARB1, dispute["dispute_id"], False)

        arbitration = ledger.get_dispute(dispute["dispute_id"])["arbitration"]
        assert arbitration["votes_for"] == 1
        assert arbitration["votes_against"] == 0

    def test_vote_after_deadline_rejected(self, ledger, clock, dispute, panel):
        clock.advance(WEEK)

        with pytest.raises(DeadlinePassedError):
            ledger.submit_decision(ARB1, dispute["dispute_id"], True)

    @pytest.mark.parametrize("rationale", [123, ["copied"], {"text": "copied"}])
    def test_non_string_rationale_rejected(self, ledger, dispute, panel, rationale):
        with pytest.raises(InvalidInputError):
            ledger.submit_decision(ARB1, dispute["dispute_id"], True, rationale)

        arbitration = ledger.get_dispute(dispute["dispute_id"])["arbitration"]
        assert arbitration["votes_for"] == 0
        assert arbitration["votes_against"] == 0

    def test_missing_rationale_allowed(self, ledger, dispute, panel):
        arbitration = ledger.submit_decision(ARB1, dispute["dispute_id"], True, None)

        assert arbitration["votes_for"] == 1

    def test_vote_without_panel(self, ledger, dispute, arbitrators):
        with pytest.raises(ArbitrationNotFoundError):
            ledger.submit_decision(ARB1, dispute["dispute_id"], True)

    def test_quorum_starts_cooldown(self, ledger, clock, dispute, panel):
        for arbitrator in panel:
            clock.advance(60)
            result = ledger.submit_decision(arbitrator, dispute["dispute_id"], True)

        assert result["uphold_quorum_reached_at"] == clock.now
        assert ledger.get_dispute(dispute["dispute_id"])["state"] == "quorum_cooldown"


class TestCooldownResolution:
    """Upheld disputes resolve once the cooldown after quorum has elapsed."""

    def test_upheld_after_cooldown(self, ledger, clock, asset, dispute, panel):
        for arbitrator in panel:
            ledger.submit_decision(arbitrator, dispute["dispute_id"], True)

        clock.advance(DAY - 1)
        with pytest.raises(CooldownNotElapsedError):
            ledger.check_and_resolve_after_cooldown(OPERATOR, dispute["dispute_id"])

        clock.advance(1)
        resolved = ledger.check_and_resolve_after_cooldown(OPERATOR, dispute["dispute_id"])

        assert resolved["is_resolved"] is True
        assert resolved["outcome"] == "upheld"
        assert resolved["state"] == "resolved"
        assert ledger.get_asset(asset["ip_asset_id"])["is_disputed"] is False
        for arbitrator in panel:
            info = ledger.get_arbitrator(arbitrator)
            assert info["active_dispute_count"] == 0
            assert info["reputation"] == 10
            assert info["successful_cases"] == 1

    def test_only_operator_resolves(self, ledger, clock, dispute, panel):
        for arbitrator in panel:
            ledger.submit_decision(arbitrator, dispute["dispute_id"], True)
        clock.advance(DAY)

        with pytest.raises(UnauthorizedError):
            ledger.check_and_resolve_after_cooldown(DISPUTER, dispute["dispute_id"])

    def test_no_quorum(self, ledger, dispute, panel):
        ledger.submit_decision(ARB1, dispute["dispute_id"], True)

        with pytest.raises(QuorumNotReachedError):
            ledger.check_and_resolve_after_cooldown(OPERATOR, dispute["dispute_id"])

    def test_no_panel(self, ledger, dispute):
        with pytest.raises(QuorumNotReachedError):
            ledger.check_and_resolve_after_cooldown(OPERATOR, dispute["dispute_id"])

    def test_single_arbitrator_panel(self, ledger, clock, dispute, arbitrators):
        ledger.assign_arbitrators(OPERATOR, dispute["dispute_id"], [ARB2])
        result = ledger.submit_decision(ARB2, dispute["dispute_id"], True)
        assert result["uphold_quorum_reached_at"] == clock.now

        clock.advance(DAY)
        resolved = ledger.check_and_resolve_after_cooldown(OPERATOR, dispute["dispute_id"])
        assert resolved["outcome"] == "upheld"

    def test_resolve_twice_rejected(self, ledger, clock, dispute, panel):
        for arbitrator in panel:
            ledger.submit_decision(arbitrator, dispute["dispute_id"], True, "r")
        clock.advance(DAY)
        ledger.check_and_resolve_after_cooldown(OPERATOR, dispute["dispute_id"])
        before = ledger.get_dispute(dispute["dispute_id"])

        with pytest.raises(AlreadyResolvedError):
            ledger.check_and_resolve_after_cooldown(OPERATOR, dispute["dispute_id"])
        with pytest.raises(AlreadyResolvedError):
            ledger.resolve_after_deadline(ALICE, dispute["dispute_id"])

        assert ledger.get_dispute(dispute["dispute_id"]) == before


class TestDeadlineResolution:
    """Disputes without an uphold quorum are rejected after the deadline."""

    def test_rejected_after_deadline(self, ledger, clock, asset, dispute, panel):
        ledger.submit_decision(ARB1, dispute["dispute_id"], True)
        ledger.submit_decision(ARB2, dispute["dispute_id"], False)

        with pytest.raises(DeadlineNotReachedError):
            ledger.resolve_after_deadline(ALICE, dispute["dispute_id"])

        clock.advance(WEEK)
        resolved = ledger.resolve_after_deadline(ALICE, dispute["dispute_id"])

        assert resolved["outcome"] == "rejected"
        assert ledger.get_asset(asset["ip_asset_id"])["is_disputed"] is False
        assert ledger.get_arbitrator(ARB2)["reputation"] == 10
        assert ledger.get_arbitrator(ARB1)["reputation"] == 0
        assert ledger.get_arbitrator(ARB3)["total_cases"] == 1

    def test_quorum_blocks_deadline_path(self, ledger, clock, dispute, panel):
        for arbitrator in panel:
            ledger.submit_decision(arbitrator, dispute["dispute_id"], True)
        clock.advance(WEEK)

        with pytest.raises(QuorumReachedError):
            ledger.resolve_after_deadline(ALICE, dispute["dispute_id"])

    def test_no_panel(self, ledger, clock, dispute):
        clock.advance(WEEK)

        with pytest.raises(ArbitrationNotFoundError):
            ledger.resolve_after_deadline(ALICE, dispute["dispute_id"])


class TestResolutionWithoutArbitrators:
    """Disputes nobody was assigned to can be closed by their disputer."""

    def test_disputer_auto_rejects_after_window(self, ledger, clock, asset, dispute):
        clock.advance(WEEK + 1)

        with pytest.raises(UnauthorizedError) as exc_info:
            ledger.resolve_without_arbitrators(ALICE, dispute["dispute_id"])
        assert isinstance(exc_info.value, NotDisputerError)

        resolved = ledger.resolve_without_arbitrators(DISPUTER, dispute["dispute_id"])

        assert resolved["outcome"] == "auto_rejected"
        assert resolved["is_resolved"] is True
        assert ledger.get_asset(asset["ip_asset_id"])["is_disputed"] is False

    def test_window_not_elapsed(self, ledger, clock, dispute):
        clock.advance(WEEK - 1)

        with pytest.raises(DeadlineNotReachedError):
            ledger.resolve_without_arbitrators(DISPUTER, dispute["dispute_id"])

    def test_panel_assigned(self, ledger, clock, dispute, panel):
        clock.advance(WEEK)

        with pytest.raises(ArbitratorsAssignedError):
            ledger.resolve_without_arbitrators(DISPUTER, dispute["dispute_id"])


class TestDisputedFlag:
    """An asset stays disputed while any of its disputes is open."""

    def test_flag_clears_only_after_last_dispute(self, ledger, clock, asset):
        first = ledger.raise_dispute(DISPUTER, asset["ip_asset_id"], "first")
        second = ledger.raise_dispute(ALICE, asset["ip_asset_id"], "second")
        clock.advance(WEEK)

        ledger.resolve_without_arbitrators(DISPUTER, first["dispute_id"])
        assert ledger.get_asset(asset["ip_asset_id"])["is_disputed"] is True

        ledger.resolve_without_arbitrators(ALICE, second["dispute_id"])
        assert ledger.get_asset(asset["ip_asset_id"])["is_disputed"] is False
        assert ledger.verify_derived_state()["consistent"] is True
