"""
Tests for IP asset registration and the license lifecycle.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import ip_registry
from conftest import ALICE, BOB, OWNER, START_TIME
from ledger_exceptions import (
    AssetNotFoundError,
    InvalidInputError,
    LicenseInactiveError,
    LicenseNotFoundError,
    NotOwnerError,
    RoyaltyShareExceededError,
)

MONTH = 30 * 24 * 3600


def _asset(state, owner=OWNER):
    return ip_registry.register_ip(state, owner, "sha256:abc", "ipfs://x", False, START_TIME)


def _mint(state, asset_id, share_bp, caller=OWNER, licensee=ALICE, duration=MONTH, now=START_TIME):
    return ip_registry.mint_license(
        state, asset_id, caller, licensee, share_bp, duration, False, "terms", now
    )


class TestRegisterIP:
    """Tests for asset registration."""

    def test_sequential_ids_from_one(self, state):
        first = _asset(state)
        second = _asset(state, owner=BOB)

        assert first.ip_asset_id == 1
        assert second.ip_asset_id == 2
        assert state.next_asset_id == 3

    def test_initial_fields(self, state):
        asset = _asset(state)

        assert asset.owner == OWNER
        assert asset.registered_at == START_TIME
        assert asset.is_disputed is False
        assert asset.total_revenue == 0
        assert asset.owner_royalty_share_bp == 10_000

    def test_content_hash_required(self, state):
        with pytest.raises(InvalidInputError):
            ip_registry.register_ip(state, OWNER, "   ", "", False, START_TIME)
        assert state.assets == {}

    def test_metadata_too_long(self, state):
        with pytest.raises(InvalidInputError):
            ip_registry.register_ip(
                state, OWNER, "sha256:abc", "x" * (ip_registry.MAX_REF_LENGTH + 1), False, START_TIME
            )

    def test_is_encrypted_must_be_bool(self, state):
        with pytest.raises(InvalidInputError):
            ip_registry.register_ip(state, OWNER, "sha256:abc", "", "yes", START_TIME)


class TestMintLicense:
    """Tests for minting licenses against an asset."""

    def test_mint_moves_share_from_owner(self, state):
        asset = _asset(state)

        lic = _mint(state, asset.ip_asset_id, 2_500)

        assert lic.license_id == 1
        assert lic.is_active is True
        assert lic.expires_at == START_TIME + MONTH
        assert asset.owner_royalty_share_bp == 7_500
        assert ip_registry.share_invariant_holds(state, asset.ip_asset_id)

    def test_shares_may_reach_exactly_full(self, state):
        asset = _asset(state)
        _mint(state, asset.ip_asset_id, 6_000)
        _mint(state, asset.ip_asset_id, 4_000, licensee=BOB)

        assert asset.owner_royalty_share_bp == 0
        assert ip_registry.share_invariant_holds(state, asset.ip_asset_id)

    def test_share_exceeding_remaining_rejected(self, state):
        asset = _asset(state)
        _mint(state, asset.ip_asset_id, 6_000)

        with pytest.raises(RoyaltyShareExceededError) as exc_info:
            _mint(state, asset.ip_asset_id, 4_001, licensee=BOB)

        assert exc_info.value.details == {"requested_bp": 4_001, "available_bp": 4_000}
        assert len(state.licenses) == 1
        assert asset.owner_royalty_share_bp == 4_000

    def test_zero_share_license_allowed(self, state):
        asset = _asset(state)

        lic = _mint(state, asset.ip_asset_id, 0)

        assert lic.royalty_share_bp == 0
        assert asset.owner_royalty_share_bp == 10_000

    def test_non_owner_rejected(self, state):
        asset = _asset(state)

        with pytest.raises(NotOwnerError):
            _mint(state, asset.ip_asset_id, 1_000, caller=BOB)

    @pytest.mark.parametrize("share_bp", [-1, 10_001, "500", 12.5, True])
    def test_bad_share_rejected(self, state, share_bp):
        asset = _asset(state)

        with pytest.raises(InvalidInputError):
            _mint(state, asset.ip_asset_id, share_bp)

    @pytest.mark.parametrize("duration", [0, -5, "60"])
    def test_bad_duration_rejected(self, state, duration):
        asset = _asset(state)

        with pytest.raises(InvalidInputError):
            _mint(state, asset.ip_asset_id, 1_000, duration=duration)

    def test_unknown_asset(self, state):
        with pytest.raises(AssetNotFoundError):
            _mint(state, 99, 1_000)


class TestRevokeAndExpire:
    """Tests for deactivating licenses."""

    def test_revoke_keeps_share_allocated(self, state):
        asset = _asset(state)
        lic = _mint(state, asset.ip_asset_id, 3_000)

        ip_registry.revoke_license(state, lic.license_id, OWNER, START_TIME + 5)

        assert lic.is_active is False
        assert lic.deactivated_at == START_TIME + 5
        assert asset.owner_royalty_share_bp == 7_000
        assert ip_registry.share_invariant_holds(state, asset.ip_asset_id)

    def test_revoke_twice_rejected(self, state):
        asset = _asset(state)
        lic = _mint(state, asset.ip_asset_id, 3_000)
        ip_registry.revoke_license(state, lic.license_id, OWNER, START_TIME)

        with pytest.raises(LicenseInactiveError):
            ip_registry.revoke_license(state, lic.license_id, OWNER, START_TIME)

    def test_revoke_by_licensee_rejected(self, state):
        asset = _asset(state)
        lic = _mint(state, asset.ip_asset_id, 3_000)

        with pytest.raises(NotOwnerError):
            ip_registry.revoke_license(state, lic.license_id, ALICE, START_TIME)

    def test_revoke_unknown_license(self, state):
        with pytest.raises(LicenseNotFoundError):
            ip_registry.revoke_license(state, 5, OWNER, START_TIME)

    def test_expire_only_past_term(self, state):
        asset = _asset(state)
        short = _mint(state, asset.ip_asset_id, 1_000, duration=100)
        long = _mint(state, asset.ip_asset_id, 1_000, licensee=BOB, duration=1_000)

        expired = ip_registry.expire_licenses(state, asset.ip_asset_id, START_TIME + 100)

        assert expired == [short.license_id]
        assert short.is_active is False
        assert long.is_active is True

    def test_expire_is_idempotent(self, state):
        asset = _asset(state)
        _mint(state, asset.ip_asset_id, 1_000, duration=100)
        ip_registry.expire_licenses(state, asset.ip_asset_id, START_TIME + 200)

        assert ip_registry.expire_licenses(state, asset.ip_asset_id, START_TIME + 300) == []
