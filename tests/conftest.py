"""
Pytest configuration and shared fixtures for IPVault tests.

This module provides shared fixtures and test configuration including:
- A controllable clock for deadline and cooldown scenarios
- Ledger instances over in-memory storage with an isolated metrics collector
- Flask app setup with test configuration
- API authentication and caller headers
- Rate limiting reset between tests
"""

import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from config import LedgerConfig
from ip_ledger import IPLedger
from ledger import LedgerState
from monitoring.metrics import MetricsCollector
from storage.memory import MemoryStorage

TEST_API_KEY = "test-api-key-12345"

START_TIME = 1_700_000_000
DAY = 24 * 60 * 60

OPERATOR = "0x" + "0a" * 20
COLLECTOR = "0x" + "0c" * 20
OWNER = "0x" + "11" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
CAROL = "0x" + "c0" * 20
DISPUTER = "0x" + "d1" * 20
ARB1 = "0x" + "e1" * 20
ARB2 = "0x" + "e2" * 20
ARB3 = "0x" + "e3" * 20
ARB4 = "0x" + "e4" * 20

STAKE = 1_000_000_000


class FakeClock:
    """Clock returning a settable Unix time."""

    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def state():
    """A bare ledger state for engine-level tests."""
    return LedgerState()


@pytest.fixture
def ledger_config():
    return LedgerConfig(
        operator=OPERATOR,
        platform_fee_collector=COLLECTOR,
        storage_backend="memory",
        api_key=TEST_API_KEY,
        require_auth=True,
        rate_limit_requests=10000,
        rate_limit_window=1,
    )


@pytest.fixture
def memory_storage():
    return MemoryStorage()


@pytest.fixture
def metrics_collector():
    return MetricsCollector()


@pytest.fixture
def ledger(ledger_config, memory_storage, clock, metrics_collector):
    """Fresh ledger over in-memory storage with a controllable clock."""
    return IPLedger(
        config=ledger_config,
        storage=memory_storage,
        clock=clock,
        metrics=metrics_collector,
    )


@pytest.fixture
def asset(ledger):
    """An asset registered by OWNER."""
    return ledger.register_ip(OWNER, "sha256:" + "ab" * 32, "ipfs://meta")


@pytest.fixture
def arbitrators(ledger):
    """Three registered, active arbitrators."""
    for address in (ARB1, ARB2, ARB3):
        ledger.register_arbitrator(address, STAKE)
    return [ARB1, ARB2, ARB3]


@pytest.fixture
def flask_app(ledger_config, ledger):
    """Create Flask test app serving the fresh ledger."""
    from api.utils import rate_limit_store
    from server import create_app

    app = create_app(config=ledger_config, ledger=ledger)
    app.config['TESTING'] = True
    rate_limit_store.clear()
    return app


@pytest.fixture
def flask_client(flask_app):
    """Create Flask test client."""
    return flask_app.test_client()


@pytest.fixture
def headers():
    """Build request headers for a caller."""

    def _headers(caller: str | None = None, api_key: str | None = TEST_API_KEY) -> dict:
        result = {"Content-Type": "application/json"}
        if api_key is not None:
            result["X-API-Key"] = api_key
        if caller is not None:
            result["X-Caller-Address"] = caller
        return result

    return _headers
