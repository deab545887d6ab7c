"""
Tests for the ledger state store.

Tests:
- Address and amount validation helpers
- Transaction commit, rollback and commit hooks
- Snapshot serialization
"""

import os
import sys
import threading

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import ip_registry
from conftest import ALICE, OWNER, START_TIME
from ledger import (
    MAX_EVENTS,
    DisputeOutcome,
    LedgerEvent,
    LedgerState,
    LedgerStore,
    normalize_address,
    require_positive_amount,
)
from ledger_exceptions import InvalidAddressError, InvalidAmountError


class TestValidationHelpers:
    """Tests for shared validation helpers."""

    def test_address_lowercased(self):
        mixed = "0x" + "AbCdEf" * 6 + "abcd"
        assert normalize_address(mixed) == mixed.lower()

    @pytest.mark.parametrize("value", ["", "0x123", "1" * 42, "0x" + "g" * 40, None, 42])
    def test_bad_address(self, value):
        with pytest.raises(InvalidAddressError) as exc_info:
            normalize_address(value, "licensee")
        assert exc_info.value.details["field"] == "licensee"

    def test_positive_amount(self):
        assert require_positive_amount(10**30) == 10**30

    @pytest.mark.parametrize("value", [0, -1, 2.0, "5", False])
    def test_bad_amount(self, value):
        with pytest.raises(InvalidAmountError):
            require_positive_amount(value)


class TestTransactions:
    """Tests for all-or-nothing mutation."""

    def test_commit_bumps_version(self):
        store = LedgerStore()

        with store.transaction() as state:
            ip_registry.register_ip(state, OWNER, "h", "", False, START_TIME)

        assert store.version == 1
        with store.read() as state:
            assert len(state.assets) == 1

    def test_failure_rolls_back(self):
        store = LedgerStore()

        with pytest.raises(RuntimeError):
            with store.transaction() as state:
                ip_registry.register_ip(state, OWNER, "h", "", False, START_TIME)
                raise RuntimeError("boom")

        assert store.version == 0
        with store.read() as state:
            assert state.assets == {}
            assert state.next_asset_id == 1

    def test_failing_commit_hook_rolls_back(self):
        store = LedgerStore()

        def hook(state):
            raise OSError("disk full")

        store.add_commit_hook(hook)

        with pytest.raises(OSError):
            with store.transaction() as state:
                ip_registry.register_ip(state, OWNER, "h", "", False, START_TIME)

        assert store.version == 0
        assert store.snapshot().assets == {}

    def test_rollback_keeps_audit_trail(self):
        store = LedgerStore()
        with store.transaction() as state:
            state.append_event(LedgerEvent("evt_1", "register_ip", START_TIME))

        with pytest.raises(RuntimeError):
            with store.transaction() as state:
                kept = state.events[0]
                state.append_event(LedgerEvent("evt_2", "mint_license", START_TIME))
                raise RuntimeError("boom")

        with store.read() as state:
            assert [e.event_id for e in state.events] == ["evt_1"]
            # Events are shared with the rollback copy, not duplicated
            assert state.events[0] is kept

    def test_rollback_restores_trimmed_events(self):
        state = LedgerState()
        state.events = [LedgerEvent(f"evt_{i}", "pay_revenue", START_TIME) for i in range(MAX_EVENTS)]
        store = LedgerStore(state)

        with pytest.raises(RuntimeError):
            with store.transaction() as state:
                state.append_event(LedgerEvent("evt_new", "pay_revenue", START_TIME))
                assert state.events[0].event_id == "evt_1"
                raise RuntimeError("boom")

        with store.read() as state:
            assert len(state.events) == MAX_EVENTS
            assert state.events[0].event_id == "evt_0"
            assert state.events[-1].event_id == f"evt_{MAX_EVENTS - 1}"

    def test_rollback_restores_mutated_record(self):
        store = LedgerStore()
        with store.transaction() as state:
            asset = ip_registry.register_ip(state, OWNER, "h", "", False, START_TIME)

        with pytest.raises(RuntimeError):
            with store.transaction() as state:
                state.get_asset(asset.ip_asset_id).total_revenue += 500
                raise RuntimeError("boom")

        with store.read() as state:
            assert state.get_asset(asset.ip_asset_id).total_revenue == 0

    def test_hook_sees_committed_version(self):
        store = LedgerStore()
        seen = []
        store.add_commit_hook(lambda state: seen.append(state.version))

        with store.transaction():
            pass
        with store.transaction():
            pass

        assert seen == [1, 2]

    def test_snapshot_is_independent(self):
        store = LedgerStore()
        with store.transaction() as state:
            ip_registry.register_ip(state, OWNER, "h", "", False, START_TIME)

        copy = store.snapshot()
        copy.assets[1].owner = ALICE

        with store.read() as state:
            assert state.assets[1].owner == OWNER

    def test_concurrent_transactions_serialize(self):
        store = LedgerStore()

        def register_many():
            for _ in range(50):
                with store.transaction() as state:
                    ip_registry.register_ip(state, OWNER, "h", "", False, START_TIME)

        threads = [threading.Thread(target=register_many) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        with store.read() as state:
            assert sorted(state.assets) == list(range(1, 201))
        assert store.version == 200


class TestSerialization:
    """Tests for snapshot serialization."""

    def test_round_trip_preserves_state(self):
        state = LedgerState()
        asset = ip_registry.register_ip(state, OWNER, "h", "m", True, START_TIME)
        ip_registry.mint_license(state, asset.ip_asset_id, OWNER, ALICE, 1_500, 60, True, "t", START_TIME)
        state.platform_fees_collected = 77
        state.version = 5

        restored = LedgerState.from_dict(state.to_dict())

        assert restored.to_dict() == state.to_dict()
        assert restored.next_license_id == 2
        assert restored.licenses[1].expires_at == START_TIME + 60

    def test_dispute_outcome_restored_as_enum(self):
        data = {
            "disputes": [{
                "dispute_id": 1,
                "ip_asset_id": 1,
                "disputer": ALICE,
                "reason": "r",
                "raised_at": START_TIME,
                "is_resolved": True,
                "arbitration_id": 0,
                "outcome": "auto_rejected",
                "resolved_at": START_TIME + 1,
            }],
        }

        state = LedgerState.from_dict(data)

        assert state.disputes[1].outcome is DisputeOutcome.AUTO_REJECTED
