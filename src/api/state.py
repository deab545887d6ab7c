"""
Shared state for the IPVault API.

Holds the one ledger instance every blueprint serves. ``server.create_app``
installs it with ``init_ledger``; blueprints reach it through
``get_ledger``.
"""

from ip_ledger import IPLedger

ledger: IPLedger | None = None


def init_ledger(instance: IPLedger) -> IPLedger:
    """Install the ledger served by the API."""
    global ledger
    ledger = instance
    return ledger


def get_ledger() -> IPLedger:
    if ledger is None:
        raise RuntimeError("Ledger not initialized; call init_ledger() first")
    return ledger
