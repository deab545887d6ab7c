"""
Tests for the IPVault API endpoints.

This module provides test coverage for the HTTP surface including:
- Health, readiness and metrics endpoints
- API key authentication and the caller header
- Asset, license, revenue and royalty routes
- Dispute, arbitration and arbitrator pool routes
- The JSON error contract and status codes
- Rate limiting
"""

import dataclasses
import json

import pytest

from conftest import (
    ALICE,
    ARB1,
    ARB2,
    BOB,
    DAY,
    DISPUTER,
    OPERATOR,
    OWNER,
    STAKE,
    TEST_API_KEY,
)


def _post(client, url, payload, headers):
    return client.post(url, data=json.dumps(payload), headers=headers)


@pytest.fixture
def asset_id(flask_client, headers):
    response = _post(
        flask_client,
        "/assets",
        {"content_hash": "sha256:" + "cd" * 32, "metadata_ref": "ipfs://meta"},
        headers(OWNER),
    )
    assert response.status_code == 201
    return json.loads(response.data)["ip_asset_id"]


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_health_check_returns_healthy(self, flask_client):
        response = flask_client.get("/health")
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["status"] == "healthy"
        assert data["checks"]["storage"]["backend"] == "MemoryStorage"
        assert "version" in data

    def test_liveness_and_readiness(self, flask_client):
        assert flask_client.get("/health/live").status_code == 200
        assert json.loads(flask_client.get("/health/ready").data) == {"status": "ready"}

    def test_prometheus_metrics(self, flask_client, asset_id):
        response = flask_client.get("/metrics")

        assert response.status_code == 200
        assert response.mimetype == "text/plain"
        body = response.data.decode()
        assert 'ipvault_ledger_requests_total{operation="register_ip",outcome="committed"} 1' in body
        assert "ipvault_ledger_assets 1" in body


class TestAuthentication:
    """Tests for API key and caller identity checks."""

    def test_missing_api_key(self, flask_client, headers):
        response = flask_client.get("/assets", headers=headers(api_key=None))
        assert response.status_code == 401

    def test_invalid_api_key(self, flask_client, headers):
        response = flask_client.get("/assets", headers=headers(api_key="wrong"))
        assert response.status_code == 403

    def test_missing_caller_header(self, flask_client, headers):
        response = _post(flask_client, "/assets", {"content_hash": "sha256:x"}, headers())

        assert response.status_code == 403
        data = json.loads(response.data)
        assert data["code"] == "UNAUTHORIZED"
        assert data["details"] == {"header": "X-Caller-Address"}

    def test_auth_can_be_disabled(self, ledger_config, ledger):
        from server import create_app

        app = create_app(config=dataclasses.replace(ledger_config, require_auth=False), ledger=ledger)
        response = app.test_client().get("/assets")

        assert response.status_code == 200


class TestAssetEndpoints:
    """Tests for registration, licensing and revenue routes."""

    def test_register_and_fetch(self, flask_client, headers, asset_id):
        response = flask_client.get(f"/assets/{asset_id}", headers=headers())

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["owner"] == OWNER
        assert data["owner_royalty_share_bp"] == 10_000

    def test_register_missing_hash(self, flask_client, headers):
        response = _post(flask_client, "/assets", {"metadata_ref": "x"}, headers(OWNER))

        assert response.status_code == 400
        assert "content_hash" in json.loads(response.data)["error"]

    def test_unknown_asset(self, flask_client, headers):
        response = flask_client.get("/assets/404", headers=headers())

        assert response.status_code == 404
        data = json.loads(response.data)
        assert data["code"] == "ASSET_NOT_FOUND"
        assert data["category"] == "not_found"

    def test_list_assets_paginated(self, flask_client, headers):
        for _ in range(3):
            _post(flask_client, "/assets", {"content_hash": "sha256:x"}, headers(OWNER))
        _post(flask_client, "/assets", {"content_hash": "sha256:y"}, headers(BOB))

        page = json.loads(flask_client.get("/assets?limit=2&offset=1", headers=headers()).data)
        assert page["total"] == 4
        assert [a["ip_asset_id"] for a in page["items"]] == [2, 3]

        mine = json.loads(flask_client.get(f"/assets?owner={BOB}", headers=headers()).data)
        assert mine["total"] == 1

    def test_malformed_query_param(self, flask_client, headers):
        response = flask_client.get("/assets?limit=ten", headers=headers())
        assert response.status_code == 400

    def test_license_revenue_and_claim(self, flask_client, headers, asset_id):
        response = _post(
            flask_client,
            f"/assets/{asset_id}/licenses",
            {"licensee": ALICE, "royalty_share_bp": 1_000, "duration_seconds": 30 * DAY},
            headers(OWNER),
        )
        assert response.status_code == 201

        response = _post(flask_client, f"/assets/{asset_id}/revenue", {"amount": 1_000_000}, headers(BOB))
        assert response.status_code == 201
        breakdown = json.loads(response.data)
        assert breakdown["platform_fee"] == 25_000
        assert breakdown["owner_amount"] == 877_500

        info = json.loads(flask_client.get(f"/assets/{asset_id}/royalties/{ALICE}", headers=headers()).data)
        assert info["claimable_amount"] == 97_500

        response = _post(flask_client, f"/assets/{asset_id}/royalties/claim", {}, headers(ALICE))
        assert json.loads(response.data)["amount"] == 97_500

        response = _post(flask_client, f"/assets/{asset_id}/royalties/claim", {}, headers(ALICE))
        assert response.status_code == 409
        assert json.loads(response.data)["code"] == "NOTHING_TO_CLAIM"

    def test_share_overflow_rejected(self, flask_client, headers, asset_id):
        payload = {"licensee": ALICE, "royalty_share_bp": 10_001, "duration_seconds": DAY}

        response = _post(flask_client, f"/assets/{asset_id}/licenses", payload, headers(OWNER))

        assert response.status_code == 400

    def test_boolean_amount_rejected(self, flask_client, headers, asset_id):
        response = _post(flask_client, f"/assets/{asset_id}/revenue", {"amount": True}, headers(BOB))
        assert response.status_code == 400

    def test_revenue_preview(self, flask_client, headers, asset_id):
        response = flask_client.get(f"/assets/{asset_id}/revenue/preview?amount=1000", headers=headers())
        assert json.loads(response.data)["owner_amount"] == 975

        response = flask_client.get(f"/assets/{asset_id}/revenue/preview", headers=headers())
        assert response.status_code == 400

    def test_revoke_by_non_owner(self, flask_client, headers, asset_id):
        _post(
            flask_client,
            f"/assets/{asset_id}/licenses",
            {"licensee": ALICE, "royalty_share_bp": 500, "duration_seconds": DAY},
            headers(OWNER),
        )

        response = _post(flask_client, "/licenses/1/revoke", {}, headers(ALICE))
        assert response.status_code == 403
        assert json.loads(response.data)["code"] == "NOT_OWNER"

        response = _post(flask_client, "/licenses/1/revoke", {}, headers(OWNER))
        assert json.loads(response.data)["is_active"] is False


class TestDisputeEndpoints:
    """Tests for disputes, arbitration and transfers."""

    def test_transfer_blocked_by_dispute(self, flask_client, headers, asset_id):
        response = _post(
            flask_client, "/disputes", {"ip_asset_id": asset_id, "reason": "plagiarism"}, headers(DISPUTER)
        )
        assert response.status_code == 201
        dispute_id = json.loads(response.data)["dispute_id"]

        response = _post(flask_client, f"/assets/{asset_id}/transfer", {"new_owner": ALICE}, headers(OWNER))

        assert response.status_code == 409
        data = json.loads(response.data)
        assert data["code"] == "ACTIVE_DISPUTES"
        assert data["details"]["dispute_ids"] == [dispute_id]

        report = json.loads(flask_client.get(f"/assets/{asset_id}/transferable", headers=headers()).data)
        assert report["blocking_dispute_ids"] == [dispute_id]

    def test_arbitration_round_trip(self, flask_client, headers, asset_id, clock):
        for address in (ARB1, ARB2):
            response = _post(flask_client, "/arbitrators", {"stake": STAKE}, headers(address))
            assert response.status_code == 201

        dispute = json.loads(_post(
            flask_client, "/disputes", {"ip_asset_id": asset_id, "reason": "copied"}, headers(DISPUTER)
        ).data)
        dispute_id = dispute["dispute_id"]

        response = _post(
            flask_client, f"/disputes/{dispute_id}/arbitrators", {"arbitrators": [ARB1, ARB2]}, headers(DISPUTER)
        )
        assert response.status_code == 403

        response = _post(
            flask_client, f"/disputes/{dispute_id}/arbitrators", {"arbitrators": [ARB1, ARB2]}, headers(OPERATOR)
        )
        assert response.status_code == 201
        assert json.loads(response.data)["required_uphold_votes"] == 2

        response = _post(flask_client, "/arbitrators/unstake", {}, headers(ARB1))
        assert response.status_code == 409

        _post(flask_client, f"/disputes/{dispute_id}/decisions", {"uphold": False}, headers(ARB1))
        response = _post(
            flask_client, f"/disputes/{dispute_id}/resolve/deadline", {}, headers(BOB)
        )
        assert response.status_code == 409
        assert json.loads(response.data)["code"] == "DEADLINE_NOT_REACHED"

        clock.advance(7 * DAY)
        response = _post(flask_client, f"/disputes/{dispute_id}/resolve/deadline", {}, headers(BOB))
        assert response.status_code == 200
        assert json.loads(response.data)["outcome"] == "rejected"

        arbitrator = json.loads(flask_client.get(f"/arbitrators/{ARB1}", headers=headers()).data)
        assert arbitrator["reputation"] == 10
        assert arbitrator["active_dispute_count"] == 0

        response = _post(flask_client, "/arbitrators/unstake", {}, headers(ARB1))
        assert json.loads(response.data)["refund"] == STAKE

        listing = json.loads(flask_client.get("/arbitrators?active=true", headers=headers()).data)
        assert listing["active_count"] == 1

    def test_open_dispute_listing(self, flask_client, headers, asset_id):
        _post(flask_client, "/disputes", {"ip_asset_id": asset_id, "reason": "a"}, headers(DISPUTER))

        data = json.loads(flask_client.get("/disputes?open=true", headers=headers()).data)
        assert data["total"] == 1
        assert data["items"][0]["state"] == "awaiting_arbitrators"

        by_asset = json.loads(flask_client.get(f"/assets/{asset_id}/disputes", headers=headers()).data)
        assert by_asset["count"] == 1

    def test_unknown_dispute(self, flask_client, headers):
        response = flask_client.get("/disputes/9", headers=headers())
        assert response.status_code == 404


class TestPlatformEndpoints:
    """Tests for platform fee administration."""

    def test_operator_sets_fee(self, flask_client, headers):
        response = _post(flask_client, "/platform/fee", {"fee_bp": 500}, headers(OPERATOR))

        assert response.status_code == 200
        assert json.loads(flask_client.get("/platform", headers=headers()).data)["fee_bp"] == 500

    def test_non_operator_rejected(self, flask_client, headers):
        response = _post(flask_client, "/platform/fee", {"fee_bp": 500}, headers(OWNER))

        assert response.status_code == 403
        assert json.loads(response.data)["code"] == "NOT_OPERATOR"

    def test_events_listed(self, flask_client, headers, asset_id):
        data = json.loads(flask_client.get("/events?type=register_ip", headers=headers()).data)

        assert data["count"] == 1
        assert data["events"][0]["data"]["owner"] == OWNER


class TestErrorHandling:
    """Tests for error responses outside the ledger contract."""

    def test_unknown_route(self, flask_client):
        response = flask_client.get("/nope")
        assert response.status_code == 404
        assert json.loads(response.data) == {"error": "Endpoint not found"}

    def test_wrong_method(self, flask_client):
        response = flask_client.delete("/health")
        assert response.status_code == 405

    def test_non_json_body(self, flask_client):
        response = flask_client.post(
            "/assets",
            data="not json",
            headers={"X-API-Key": TEST_API_KEY, "X-Caller-Address": OWNER},
        )
        assert response.status_code == 400


class TestRateLimiting:
    """Tests for per-client rate limiting."""

    def test_requests_beyond_limit_rejected(self, ledger_config, ledger):
        from api.utils import rate_limit_store
        from server import create_app

        config = dataclasses.replace(ledger_config, rate_limit_requests=2, rate_limit_window=60)
        app = create_app(config=config, ledger=ledger)
        rate_limit_store.clear()
        client = app.test_client()

        assert client.get("/health/live").status_code == 200
        assert client.get("/health/live").status_code == 200
        response = client.get("/health/live")

        assert response.status_code == 429
        assert "retry_after" in json.loads(response.data)
        rate_limit_store.clear()

    def test_expired_clients_evicted(self, flask_client, monkeypatch):
        import time

        from api.utils import rate_limit_store, rate_limit_sweep

        stale = time.time() - 3600
        for i in range(50):
            rate_limit_store[f"10.0.0.{i}"] = {"count": 5, "window_start": stale}
        rate_limit_store["10.0.1.1"] = {"count": 1, "window_start": time.time()}
        monkeypatch.setitem(rate_limit_sweep, "last", 0.0)

        assert flask_client.get("/health/live").status_code == 200

        assert not any(ip.startswith("10.0.0.") for ip in rate_limit_store)
        assert "10.0.1.1" in rate_limit_store
        assert rate_limit_store["127.0.0.1"]["count"] == 1
        rate_limit_store.clear()

    def test_eviction_count(self):
        from api.utils import evict_expired_rate_limits, rate_limit_store

        rate_limit_store.clear()
        rate_limit_store["10.0.0.1"] = {"count": 3, "window_start": 1000.0}
        rate_limit_store["10.0.0.2"] = {"count": 3, "window_start": 1050.0}

        assert evict_expired_rate_limits(1100.0, 60) == 1
        assert list(rate_limit_store) == ["10.0.0.2"]
        rate_limit_store.clear()
