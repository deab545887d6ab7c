"""
IPVault - Ledger State Store

Durable, key-indexed records for IP assets, licenses, royalty accounts,
disputes, arbitrations and arbitrators.

The store has a single logical writer. Every mutating request runs inside
``LedgerStore.transaction()``: the request sees the live state, and if it
raises, the state is restored to the snapshot taken when the transaction
began. Reads go through ``LedgerStore.read()`` or ``LedgerStore.snapshot()``
and always observe the state after the last committed mutation.

Amounts are integers in the smallest currency unit. Shares are basis
points out of 10,000. Timestamps are integer Unix seconds.
"""

import copy
import re
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ledger_exceptions import (
    ArbitrationNotFoundError,
    ArbitratorNotRegisteredError,
    AssetNotFoundError,
    DisputeNotFoundError,
    InvalidAddressError,
    InvalidAmountError,
    LicenseNotFoundError,
)

# =============================================================================
# Constants
# =============================================================================

BASIS_POINTS = 10_000

DEFAULT_PLATFORM_FEE_BP = 250  # 2.5%

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")

# Oldest audit events are dropped beyond this many
MAX_EVENTS = 10_000


# =============================================================================
# Validation Helpers
# =============================================================================

def normalize_address(value: Any, field_name: str = "address") -> str:
    """Validate an account address and return it in lower case."""
    if not isinstance(value, str) or not ADDRESS_PATTERN.match(value.strip()):
        raise InvalidAddressError(field_name, value)
    return value.strip().lower()


def require_positive_amount(value: Any, field_name: str = "amount") -> int:
    """Reject zero, negative and non-integer amounts."""
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidAmountError(field_name, value)
    return value


def account_key(ip_asset_id: int, account: str) -> str:
    return f"{ip_asset_id}:{account}"


# =============================================================================
# Enums
# =============================================================================

class DisputeState(Enum):
    """Lifecycle state of a dispute, derived from its fields."""
    AWAITING_ARBITRATORS = "awaiting_arbitrators"
    ARBITRATORS_ASSIGNED = "arbitrators_assigned"
    QUORUM_COOLDOWN = "quorum_cooldown"
    RESOLVED = "resolved"


class DisputeOutcome(Enum):
    """How a resolved dispute ended."""
    UPHELD = "upheld"  # Quorum of uphold votes and cooldown elapsed
    REJECTED = "rejected"  # Arbitration deadline passed without quorum
    AUTO_REJECTED = "auto_rejected"  # No arbitrators ever assigned


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class IPAsset:
    """A registered intellectual-property record."""

    ip_asset_id: int
    owner: str
    content_hash: str
    metadata_ref: str
    is_encrypted: bool
    registered_at: int
    is_disputed: bool = False
    total_revenue: int = 0
    owner_royalty_share_bp: int = BASIS_POINTS

    def to_dict(self) -> dict[str, Any]:
        return {
            "ip_asset_id": self.ip_asset_id,
            "owner": self.owner,
            "content_hash": self.content_hash,
            "metadata_ref": self.metadata_ref,
            "is_encrypted": self.is_encrypted,
            "is_disputed": self.is_disputed,
            "registered_at": self.registered_at,
            "total_revenue": self.total_revenue,
            "owner_royalty_share_bp": self.owner_royalty_share_bp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IPAsset":
        return cls(**data)


@dataclass
class License:
    """A license minted against an IP asset."""

    license_id: int
    ip_asset_id: int
    licensee: str
    royalty_share_bp: int
    duration_seconds: int
    started_at: int
    commercial_use_allowed: bool
    terms_ref: str
    is_active: bool = True
    deactivated_at: int | None = None

    @property
    def expires_at(self) -> int:
        return self.started_at + self.duration_seconds

    def is_active_at(self, now: int) -> bool:
        """Whether the license takes part in a distribution at ``now``."""
        return self.is_active and now < self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "license_id": self.license_id,
            "ip_asset_id": self.ip_asset_id,
            "licensee": self.licensee,
            "royalty_share_bp": self.royalty_share_bp,
            "duration_seconds": self.duration_seconds,
            "started_at": self.started_at,
            "expires_at": self.expires_at,
            "is_active": self.is_active,
            "commercial_use_allowed": self.commercial_use_allowed,
            "terms_ref": self.terms_ref,
            "deactivated_at": self.deactivated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "License":
        data = {k: v for k, v in data.items() if k != "expires_at"}
        return cls(**data)


@dataclass
class RoyaltyAccount:
    """Royalty position of one account on one asset."""

    ip_asset_id: int
    account: str
    claimable: int = 0  # Accrued, not yet claimed (licensees only)
    total_accumulated: int = 0  # Everything ever credited or paid out
    total_claimed: int = 0
    last_claimed_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ip_asset_id": self.ip_asset_id,
            "account": self.account,
            "claimable": self.claimable,
            "total_accumulated": self.total_accumulated,
            "total_claimed": self.total_claimed,
            "last_claimed_at": self.last_claimed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RoyaltyAccount":
        return cls(**data)


@dataclass
class Dispute:
    """A challenge to an IP asset's validity."""

    dispute_id: int
    ip_asset_id: int
    disputer: str
    reason: str
    raised_at: int
    is_resolved: bool = False
    arbitration_id: int = 0
    outcome: DisputeOutcome | None = None
    resolved_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "dispute_id": self.dispute_id,
            "ip_asset_id": self.ip_asset_id,
            "disputer": self.disputer,
            "reason": self.reason,
            "raised_at": self.raised_at,
            "is_resolved": self.is_resolved,
            "arbitration_id": self.arbitration_id,
            "outcome": self.outcome.value if self.outcome else None,
            "resolved_at": self.resolved_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Dispute":
        data = dict(data)
        data["outcome"] = DisputeOutcome(data["outcome"]) if data.get("outcome") else None
        return cls(**data)


@dataclass
class ArbitrationVote:
    """A single arbitrator's decision."""

    arbitrator: str
    uphold: bool
    rationale: str
    cast_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "arbitrator": self.arbitrator,
            "uphold": self.uphold,
            "rationale": self.rationale,
            "cast_at": self.cast_at,
        }


@dataclass
class Arbitration:
    """The arbitration panel and tally for one dispute."""

    arbitration_id: int
    dispute_id: int
    arbitrators: list[str]
    deadline: int
    required_uphold_votes: int
    created_at: int
    votes_for: int = 0
    votes_against: int = 0
    is_resolved: bool = False
    resolution: str = ""
    uphold_quorum_reached_at: int = 0
    votes: dict[str, ArbitrationVote] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "arbitration_id": self.arbitration_id,
            "dispute_id": self.dispute_id,
            "arbitrators": list(self.arbitrators),
            "deadline": self.deadline,
            "required_uphold_votes": self.required_uphold_votes,
            "created_at": self.created_at,
            "votes_for": self.votes_for,
            "votes_against": self.votes_against,
            "is_resolved": self.is_resolved,
            "resolution": self.resolution,
            "uphold_quorum_reached_at": self.uphold_quorum_reached_at,
            "votes": {k: v.to_dict() for k, v in self.votes.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Arbitration":
        data = dict(data)
        data["votes"] = {k: ArbitrationVote(**v) for k, v in data.get("votes", {}).items()}
        return cls(**data)


@dataclass
class Arbitrator:
    """A staked member of the arbitrator pool."""

    address: str
    stake: int
    registered_at: int
    reputation: int = 0
    total_cases: int = 0
    successful_cases: int = 0
    is_active: bool = True
    # Cached; the authoritative count is derived from open arbitrations
    active_dispute_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "stake": self.stake,
            "reputation": self.reputation,
            "total_cases": self.total_cases,
            "successful_cases": self.successful_cases,
            "is_active": self.is_active,
            "registered_at": self.registered_at,
            "active_dispute_count": self.active_dispute_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Arbitrator":
        return cls(**data)


@dataclass
class LedgerEvent:
    """Audit trail entry for a committed mutation."""

    event_id: str
    event_type: str
    timestamp: int
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "timestamp": self.timestamp,
            "data": self.data,
        }


# =============================================================================
# Ledger State
# =============================================================================

@dataclass
class LedgerState:
    """The complete authoritative ledger state."""

    assets: dict[int, IPAsset] = field(default_factory=dict)
    licenses: dict[int, License] = field(default_factory=dict)
    royalty_accounts: dict[str, RoyaltyAccount] = field(default_factory=dict)
    disputes: dict[int, Dispute] = field(default_factory=dict)
    arbitrations: dict[int, Arbitration] = field(default_factory=dict)
    arbitrators: dict[str, Arbitrator] = field(default_factory=dict)
    events: list[LedgerEvent] = field(default_factory=list)

    next_asset_id: int = 1
    next_license_id: int = 1
    next_dispute_id: int = 1
    next_arbitration_id: int = 1

    platform_fee_bp: int = DEFAULT_PLATFORM_FEE_BP
    platform_fee_collector: str | None = None
    platform_fees_collected: int = 0

    version: int = 0

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_asset(self, ip_asset_id: int) -> IPAsset:
        asset = self.assets.get(ip_asset_id)
        if asset is None:
            raise AssetNotFoundError(ip_asset_id)
        return asset

    def get_license(self, license_id: int) -> License:
        lic = self.licenses.get(license_id)
        if lic is None:
            raise LicenseNotFoundError(license_id)
        return lic

    def get_dispute(self, dispute_id: int) -> Dispute:
        dispute = self.disputes.get(dispute_id)
        if dispute is None:
            raise DisputeNotFoundError(dispute_id)
        return dispute

    def get_arbitration(self, arbitration_id: int) -> Arbitration:
        arbitration = self.arbitrations.get(arbitration_id)
        if arbitration is None:
            raise ArbitrationNotFoundError(arbitration_id=arbitration_id)
        return arbitration

    def get_arbitrator(self, address: str) -> Arbitrator:
        arbitrator = self.arbitrators.get(address)
        if arbitrator is None:
            raise ArbitratorNotRegisteredError(address)
        return arbitrator

    def licenses_for_asset(self, ip_asset_id: int) -> list[License]:
        """All licenses ever minted on an asset, ascending license id."""
        return sorted(
            (lic for lic in self.licenses.values() if lic.ip_asset_id == ip_asset_id),
            key=lambda lic: lic.license_id,
        )

    def disputes_for_asset(self, ip_asset_id: int) -> list[Dispute]:
        return sorted(
            (d for d in self.disputes.values() if d.ip_asset_id == ip_asset_id),
            key=lambda d: d.dispute_id,
        )

    def get_royalty_account(self, ip_asset_id: int, account: str) -> RoyaltyAccount | None:
        return self.royalty_accounts.get(account_key(ip_asset_id, account))

    def royalty_account(self, ip_asset_id: int, account: str) -> RoyaltyAccount:
        """Get or create the royalty account for ``(asset, account)``."""
        key = account_key(ip_asset_id, account)
        if key not in self.royalty_accounts:
            self.royalty_accounts[key] = RoyaltyAccount(ip_asset_id=ip_asset_id, account=account)
        return self.royalty_accounts[key]

    def dispute_state(self, dispute: Dispute) -> DisputeState:
        if dispute.is_resolved:
            return DisputeState.RESOLVED
        if dispute.arbitration_id == 0:
            return DisputeState.AWAITING_ARBITRATORS
        arbitration = self.arbitrations.get(dispute.arbitration_id)
        if arbitration and arbitration.uphold_quorum_reached_at:
            return DisputeState.QUORUM_COOLDOWN
        return DisputeState.ARBITRATORS_ASSIGNED

    # -------------------------------------------------------------------------
    # Sequence allocation
    # -------------------------------------------------------------------------

    def allocate_asset_id(self) -> int:
        value = self.next_asset_id
        self.next_asset_id += 1
        return value

    def allocate_license_id(self) -> int:
        value = self.next_license_id
        self.next_license_id += 1
        return value

    def allocate_dispute_id(self) -> int:
        value = self.next_dispute_id
        self.next_dispute_id += 1
        return value

    def allocate_arbitration_id(self) -> int:
        value = self.next_arbitration_id
        self.next_arbitration_id += 1
        return value

    def append_event(self, event: LedgerEvent) -> None:
        self.events.append(event)
        if len(self.events) > MAX_EVENTS:
            del self.events[: len(self.events) - MAX_EVENTS]

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "assets": [a.to_dict() for a in self.assets.values()],
            "licenses": [lic.to_dict() for lic in self.licenses.values()],
            "royalty_accounts": [r.to_dict() for r in self.royalty_accounts.values()],
            "disputes": [d.to_dict() for d in self.disputes.values()],
            "arbitrations": [a.to_dict() for a in self.arbitrations.values()],
            "arbitrators": [a.to_dict() for a in self.arbitrators.values()],
            "events": [e.to_dict() for e in self.events],
            "sequences": {
                "next_asset_id": self.next_asset_id,
                "next_license_id": self.next_license_id,
                "next_dispute_id": self.next_dispute_id,
                "next_arbitration_id": self.next_arbitration_id,
            },
            "platform": {
                "fee_bp": self.platform_fee_bp,
                "fee_collector": self.platform_fee_collector,
                "fees_collected": self.platform_fees_collected,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LedgerState":
        state = cls()
        state.version = data.get("version", 0)
        for item in data.get("assets", []):
            asset = IPAsset.from_dict(item)
            state.assets[asset.ip_asset_id] = asset
        for item in data.get("licenses", []):
            lic = License.from_dict(item)
            state.licenses[lic.license_id] = lic
        for item in data.get("royalty_accounts", []):
            acct = RoyaltyAccount.from_dict(item)
            state.royalty_accounts[account_key(acct.ip_asset_id, acct.account)] = acct
        for item in data.get("disputes", []):
            dispute = Dispute.from_dict(item)
            state.disputes[dispute.dispute_id] = dispute
        for item in data.get("arbitrations", []):
            arbitration = Arbitration.from_dict(item)
            state.arbitrations[arbitration.arbitration_id] = arbitration
        for item in data.get("arbitrators", []):
            arbitrator = Arbitrator.from_dict(item)
            state.arbitrators[arbitrator.address] = arbitrator
        state.events = [LedgerEvent(**e) for e in data.get("events", [])]

        sequences = data.get("sequences", {})
        state.next_asset_id = sequences.get("next_asset_id", 1)
        state.next_license_id = sequences.get("next_license_id", 1)
        state.next_dispute_id = sequences.get("next_dispute_id", 1)
        state.next_arbitration_id = sequences.get("next_arbitration_id", 1)

        platform = data.get("platform", {})
        state.platform_fee_bp = platform.get("fee_bp", DEFAULT_PLATFORM_FEE_BP)
        state.platform_fee_collector = platform.get("fee_collector")
        state.platform_fees_collected = platform.get("fees_collected", 0)
        return state


# =============================================================================
# Ledger Store
# =============================================================================

CommitHook = Callable[[LedgerState], None]


def _rollback_copy(state: LedgerState) -> LedgerState:
    """
    Copy of ``state`` for rollback.

    Events are never modified once appended, so the audit trail is copied
    as a list of the same event objects rather than deep-copied.
    """
    return copy.deepcopy(state, memo={id(state.events): list(state.events)})


class LedgerStore:
    """
    Single-writer owner of the ledger state.

    ``transaction()`` serializes mutations and restores the pre-transaction
    snapshot if the body (or a commit hook) raises. ``read()`` yields the
    committed state under the same lock so a reader never observes a
    mutation halfway through.
    """

    def __init__(self, state: LedgerState | None = None):
        self._state = state if state is not None else LedgerState()
        # RLock so a read inside a transaction on the same thread does not deadlock
        self._lock = threading.RLock()
        self._in_transaction = False
        self._commit_hooks: list[CommitHook] = []

    @property
    def version(self) -> int:
        with self._lock:
            return self._state.version

    def add_commit_hook(self, hook: CommitHook) -> None:
        """Register a callback run after each commit, still inside the lock."""
        self._commit_hooks.append(hook)

    @contextmanager
    def transaction(self) -> Iterator[LedgerState]:
        with self._lock:
            if self._in_transaction:
                # Nested request on the same thread joins the outer transaction
                yield self._state
                return

            backup = _rollback_copy(self._state)
            self._in_transaction = True
            try:
                yield self._state
                self._state.version += 1
                for hook in self._commit_hooks:
                    hook(self._state)
            except BaseException:
                self._state = backup
                raise
            finally:
                self._in_transaction = False

    @contextmanager
    def read(self) -> Iterator[LedgerState]:
        """Yield the committed state for read-only use."""
        with self._lock:
            yield self._state

    def snapshot(self) -> LedgerState:
        """Deep copy of the committed state."""
        with self._lock:
            return copy.deepcopy(self._state)

    def replace_state(self, state: LedgerState) -> None:
        """Swap in a state restored from storage."""
        with self._lock:
            self._state = state
