"""
IPVault - IP Ledger Service

The request surface of the ledger. Every state-changing request:

1. normalizes the caller and any addresses it carries,
2. runs as one ``LedgerStore`` transaction (all-or-nothing),
3. appends one audit event to the ledger inside that transaction,
4. is persisted to the configured storage backend before it commits,
5. is logged (INFO on commit, WARNING on rejection) and counted.

Reads run against the committed state under the store's lock and return
plain dictionaries, so callers never hold references into live state.
"""

import copy
import logging
import secrets
import time
from collections.abc import Callable
from typing import Any

import ip_registry
import transfer_guard
from arbitrator_pool import ArbitratorPool
from config import LedgerConfig
from dispute_arbitration import DisputeStateMachine
from ledger import (
    LedgerEvent,
    LedgerState,
    LedgerStore,
    normalize_address,
)
from ledger_exceptions import (
    InvalidInputError,
    LedgerError,
    NotOperatorError,
)
from monitoring.logging import LoggingContext
from monitoring.metrics import MetricsCollector, metrics as default_metrics
from royalty_engine import MAX_PLATFORM_FEE_BP, RoyaltyEngine, compute_breakdown
from storage.base import StorageBackend, StorageError

logger = logging.getLogger(__name__)

Clock = Callable[[], int]

DEFAULT_EVENT_LIMIT = 100
MAX_EVENT_LIMIT = 1_000


def system_clock() -> int:
    return int(time.time())


class IPLedger:
    """
    Single authoritative owner of IP assets, licenses, royalties, disputes
    and the arbitrator pool.
    """

    def __init__(
        self,
        config: LedgerConfig | None = None,
        storage: StorageBackend | None = None,
        clock: Clock | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self.config = config or LedgerConfig(storage_backend="memory")
        self.storage = storage
        self.clock = clock or system_clock
        self.metrics = metrics or default_metrics

        self.royalties = RoyaltyEngine()
        self.pool = ArbitratorPool(min_stake=self.config.min_arbitrator_stake)
        self.disputes = DisputeStateMachine(
            self.pool,
            decision_window=self.config.dispute_decision_window,
            resolution_cooldown=self.config.resolution_cooldown,
            no_arbitrator_deadline=self.config.no_arbitrator_deadline,
        )

        self.store = LedgerStore(self._initial_state())
        if self.storage is not None:
            self.store.add_commit_hook(self._persist)
        self._update_gauges()

    # =========================================================================
    # Setup & Persistence
    # =========================================================================

    def _initial_state(self) -> LedgerState:
        if self.storage is not None:
            snapshot = self.storage.load_snapshot()
            if snapshot:
                state = LedgerState.from_dict(snapshot)
                logger.info(
                    "Ledger restored from storage",
                    extra={
                        "version": state.version,
                        "assets": len(state.assets),
                        "disputes": len(state.disputes),
                    },
                )
                return state

        return self._fresh_state()

    def _fresh_state(self) -> LedgerState:
        """Empty ledger carrying the configured platform fee settings."""
        state = LedgerState()
        state.platform_fee_bp = self.config.platform_fee_bp
        state.platform_fee_collector = self.config.platform_fee_collector
        return state

    def _persist(self, state: LedgerState) -> None:
        self.storage.save_snapshot(state.to_dict())

    def reload(self) -> int:
        """Replace the in-memory state with the stored snapshot; returns its version."""
        if self.storage is None:
            raise StorageError("No storage backend configured")
        snapshot = self.storage.load_snapshot()
        state = LedgerState.from_dict(snapshot) if snapshot else self._fresh_state()
        self.store.replace_state(state)
        self._update_gauges()
        return state.version

    # =========================================================================
    # Request Execution
    # =========================================================================

    def _execute(
        self,
        operation: str,
        caller: str | None,
        apply: Callable[[LedgerState, int, str | None], tuple[Any, dict[str, Any] | None]],
    ) -> Any:
        """
        Run ``apply(state, now, caller)`` as one transaction.

        The caller is normalized first (None for requests open to anyone).
        ``apply`` returns ``(result, event_data)``; a non-None event_data is
        recorded as an audit event of type ``operation``.
        """
        start = time.perf_counter()
        with LoggingContext(operation=operation, caller=caller):
            try:
                if caller is not None:
                    caller = normalize_address(caller, "caller")
                with self.store.transaction() as state:
                    now = self.clock()
                    result, event_data = apply(state, now, caller)
                    if event_data is not None:
                        self._emit_event(state, operation, now, event_data)
            except LedgerError as e:
                self._count(operation, e.category)
                logger.warning(
                    "Request rejected: %s",
                    e.message,
                    extra={"error_code": e.code, "category": e.category},
                )
                raise
            except StorageError:
                self._count(operation, "storage_error")
                logger.error("Request rolled back: snapshot could not be persisted", exc_info=True)
                raise
            finally:
                self.metrics.timing(
                    "ledger_transaction_ms",
                    (time.perf_counter() - start) * 1000,
                    labels={"operation": operation},
                )

            self._count(operation, "committed")
            logger.info("Request committed", extra={"event_data": event_data or {}})
        self._update_gauges()
        return result

    def _emit_event(self, state: LedgerState, event_type: str, now: int, data: dict[str, Any]) -> None:
        state.append_event(LedgerEvent(
            event_id=f"evt_{secrets.token_hex(12)}",
            event_type=event_type,
            timestamp=now,
            data=data,
        ))

    def _count(self, operation: str, outcome: str) -> None:
        self.metrics.increment(
            "ledger_requests_total",
            labels={"operation": operation, "outcome": outcome},
        )

    def _update_gauges(self) -> None:
        with self.store.read() as state:
            assets = len(state.assets)
            open_disputes = sum(1 for d in state.disputes.values() if not d.is_resolved)
            active = self.pool.active_count(state)
        self.metrics.set_gauge("ledger_assets", assets)
        self.metrics.set_gauge("ledger_open_disputes", open_disputes)
        self.metrics.set_gauge("ledger_active_arbitrators", active)

    def _require_operator(self, caller: str, action: str) -> None:
        if self.config.operator is None or caller != self.config.operator:
            raise NotOperatorError(caller, action)

    # =========================================================================
    # IP Assets & Licenses
    # =========================================================================

    def register_ip(
        self,
        caller: str,
        content_hash: str,
        metadata_ref: str = "",
        is_encrypted: bool = False,
    ) -> dict[str, Any]:
        """Register an IP asset owned by the caller."""

        def apply(state, now, owner):
            asset = ip_registry.register_ip(
                state, owner, content_hash, metadata_ref, is_encrypted, now
            )
            return asset.to_dict(), {"ip_asset_id": asset.ip_asset_id, "owner": owner}

        return self._execute("register_ip", caller, apply)

    def mint_license(
        self,
        caller: str,
        ip_asset_id: int,
        licensee: str,
        royalty_share_bp: int,
        duration_seconds: int,
        commercial_use_allowed: bool = False,
        terms_ref: str = "",
    ) -> dict[str, Any]:
        """Mint a license on the caller's asset."""

        def apply(state, now, owner):
            licensee_address = normalize_address(licensee, "licensee")
            lic = ip_registry.mint_license(
                state, ip_asset_id, owner, licensee_address, royalty_share_bp,
                duration_seconds, commercial_use_allowed, terms_ref, now,
            )
            return lic.to_dict(), {
                "ip_asset_id": ip_asset_id,
                "license_id": lic.license_id,
                "licensee": licensee_address,
                "royalty_share_bp": royalty_share_bp,
            }

        return self._execute("mint_license", caller, apply)

    def revoke_license(self, caller: str, license_id: int) -> dict[str, Any]:

        def apply(state, now, owner):
            lic = ip_registry.revoke_license(state, license_id, owner, now)
            return lic.to_dict(), {"license_id": license_id, "ip_asset_id": lic.ip_asset_id}

        return self._execute("revoke_license", caller, apply)

    def expire_licenses(self, ip_asset_id: int) -> dict[str, Any]:
        """Deactivate every license on the asset whose term has ended."""

        def apply(state, now, _caller):
            expired = ip_registry.expire_licenses(state, ip_asset_id, now)
            event = {"ip_asset_id": ip_asset_id, "license_ids": expired} if expired else None
            return {"ip_asset_id": ip_asset_id, "expired_license_ids": expired}, event

        return self._execute("expire_licenses", None, apply)

    def get_asset(self, ip_asset_id: int) -> dict[str, Any]:
        with self.store.read() as state:
            return state.get_asset(ip_asset_id).to_dict()

    def list_assets(self, owner: str | None = None) -> list[dict[str, Any]]:
        if owner is not None:
            owner = normalize_address(owner, "owner")
        with self.store.read() as state:
            return [
                asset.to_dict()
                for asset in sorted(state.assets.values(), key=lambda a: a.ip_asset_id)
                if owner is None or asset.owner == owner
            ]

    def get_license(self, license_id: int) -> dict[str, Any]:
        with self.store.read() as state:
            return state.get_license(license_id).to_dict()

    def get_asset_licenses(self, ip_asset_id: int) -> list[dict[str, Any]]:
        with self.store.read() as state:
            state.get_asset(ip_asset_id)
            return [lic.to_dict() for lic in state.licenses_for_asset(ip_asset_id)]

    # =========================================================================
    # Revenue & Royalties
    # =========================================================================

    def pay_revenue(self, caller: str, ip_asset_id: int, amount: int) -> dict[str, Any]:
        """Distribute a revenue payment; returns the full breakdown."""

        def apply(state, now, payer):
            breakdown = self.royalties.apply_payment(state, ip_asset_id, amount, now)
            return breakdown.to_dict(), {
                "ip_asset_id": ip_asset_id,
                "payer": payer,
                "amount": amount,
                "platform_fee": breakdown.platform_fee,
                "fee_collector": state.platform_fee_collector,
                "owner": breakdown.owner,
                "owner_amount": breakdown.owner_amount,
                "license_amounts": {
                    str(share.license_id): share.amount for share in breakdown.license_shares
                },
            }

        result = self._execute("pay_revenue", caller, apply)
        self.metrics.increment("ledger_revenue_units_total", amount)
        self.metrics.increment("ledger_platform_fees_units_total", result["platform_fee"])
        return result

    def preview_breakdown(self, ip_asset_id: int, amount: int) -> dict[str, Any]:
        """Breakdown a payment would produce now, without applying it."""
        with self.store.read() as state:
            return compute_breakdown(state, ip_asset_id, amount, self.clock()).to_dict()

    def claim_royalties(self, caller: str, ip_asset_id: int) -> dict[str, Any]:
        """Pay out the caller's claimable balance on the asset."""

        def apply(state, now, account):
            amount = self.royalties.claim(state, ip_asset_id, account, now)
            result = {"ip_asset_id": ip_asset_id, "account": account, "amount": amount}
            return result, dict(result)

        return self._execute("claim_royalties", caller, apply)

    def get_royalty_info(self, ip_asset_id: int, account: str) -> dict[str, Any]:
        account = normalize_address(account, "account")
        with self.store.read() as state:
            return self.royalties.royalty_info(state, ip_asset_id, account)

    # =========================================================================
    # Platform Fee Administration
    # =========================================================================

    def set_platform_fee(self, caller: str, fee_bp: int) -> dict[str, Any]:
        """Change the platform fee (operator only, at most MAX_PLATFORM_FEE_BP)."""

        def apply(state, now, operator):
            self._require_operator(operator, "set_platform_fee")
            if isinstance(fee_bp, bool) or not isinstance(fee_bp, int):
                raise InvalidInputError("fee_bp must be an integer", {"field": "fee_bp"})
            if not 0 <= fee_bp <= MAX_PLATFORM_FEE_BP:
                raise InvalidInputError(
                    f"Platform fee must be between 0 and {MAX_PLATFORM_FEE_BP} bp",
                    {"field": "fee_bp", "value": fee_bp},
                )
            previous = state.platform_fee_bp
            state.platform_fee_bp = fee_bp
            return self._platform_info(state), {"previous_fee_bp": previous, "fee_bp": fee_bp}

        return self._execute("set_platform_fee", caller, apply)

    def set_platform_fee_collector(self, caller: str, collector: str) -> dict[str, Any]:

        def apply(state, now, operator):
            self._require_operator(operator, "set_platform_fee_collector")
            address = normalize_address(collector, "collector")
            previous = state.platform_fee_collector
            state.platform_fee_collector = address
            return self._platform_info(state), {"previous_collector": previous, "collector": address}

        return self._execute("set_platform_fee_collector", caller, apply)

    def get_platform_info(self) -> dict[str, Any]:
        with self.store.read() as state:
            return self._platform_info(state)

    def _platform_info(self, state: LedgerState) -> dict[str, Any]:
        return {
            "operator": self.config.operator,
            "fee_bp": state.platform_fee_bp,
            "max_fee_bp": MAX_PLATFORM_FEE_BP,
            "fee_collector": state.platform_fee_collector,
            "fees_collected": state.platform_fees_collected,
        }

    # =========================================================================
    # Disputes & Arbitration
    # =========================================================================

    def raise_dispute(self, caller: str, ip_asset_id: int, reason: str) -> dict[str, Any]:

        def apply(state, now, disputer):
            dispute = self.disputes.raise_dispute(state, ip_asset_id, disputer, reason, now)
            return self.disputes.describe(state, dispute), {
                "dispute_id": dispute.dispute_id,
                "ip_asset_id": ip_asset_id,
                "disputer": disputer,
            }

        return self._execute("raise_dispute", caller, apply)

    def assign_arbitrators(self, caller: str, dispute_id: int, arbitrators: list[str]) -> dict[str, Any]:
        """Seat a panel on a dispute (operator only)."""

        def apply(state, now, operator):
            self._require_operator(operator, "assign_arbitrators")
            if not isinstance(arbitrators, (list, tuple)):
                raise InvalidInputError(
                    "arbitrators must be a list of addresses", {"field": "arbitrators"}
                )
            addresses = [normalize_address(a, "arbitrators") for a in arbitrators]
            arbitration = self.disputes.assign_arbitrators(state, dispute_id, addresses, now)
            return arbitration.to_dict(), {
                "dispute_id": dispute_id,
                "arbitration_id": arbitration.arbitration_id,
                "arbitrators": addresses,
                "deadline": arbitration.deadline,
            }

        return self._execute("assign_arbitrators", caller, apply)

    def submit_decision(
        self,
        caller: str,
        dispute_id: int,
        uphold: bool,
        rationale: str = "",
    ) -> dict[str, Any]:

        def apply(state, now, arbitrator):
            arbitration = self.disputes.submit_decision(
                state, dispute_id, arbitrator, uphold, rationale, now
            )
            return arbitration.to_dict(), {
                "dispute_id": dispute_id,
                "arbitrator": arbitrator,
                "uphold": uphold,
                "votes_for": arbitration.votes_for,
                "votes_against": arbitration.votes_against,
                "quorum_reached_at": arbitration.uphold_quorum_reached_at,
            }

        return self._execute("submit_decision", caller, apply)

    def check_and_resolve_after_cooldown(self, caller: str, dispute_id: int) -> dict[str, Any]:
        """Resolve an upheld dispute once its cooldown elapsed (operator only)."""

        def apply(state, now, operator):
            self._require_operator(operator, "check_and_resolve_after_cooldown")
            dispute = self.disputes.check_and_resolve_after_cooldown(state, dispute_id, now)
            return self._resolution(state, dispute)

        return self._execute("check_and_resolve_after_cooldown", caller, apply)

    def resolve_after_deadline(self, caller: str, dispute_id: int) -> dict[str, Any]:

        def apply(state, now, _caller):
            dispute = self.disputes.resolve_after_deadline(state, dispute_id, now)
            return self._resolution(state, dispute)

        return self._execute("resolve_after_deadline", caller, apply)

    def resolve_without_arbitrators(self, caller: str, dispute_id: int) -> dict[str, Any]:

        def apply(state, now, disputer):
            dispute = self.disputes.resolve_without_arbitrators(state, dispute_id, disputer, now)
            return self._resolution(state, dispute)

        return self._execute("resolve_without_arbitrators", caller, apply)

    def _resolution(self, state: LedgerState, dispute) -> tuple[dict[str, Any], dict[str, Any]]:
        return self.disputes.describe(state, dispute), {
            "dispute_id": dispute.dispute_id,
            "ip_asset_id": dispute.ip_asset_id,
            "outcome": dispute.outcome.value,
            "asset_still_disputed": state.get_asset(dispute.ip_asset_id).is_disputed,
        }

    def get_dispute(self, dispute_id: int) -> dict[str, Any]:
        with self.store.read() as state:
            return self.disputes.describe(state, state.get_dispute(dispute_id))

    def list_disputes(self, open_only: bool = False) -> list[dict[str, Any]]:
        with self.store.read() as state:
            return [
                self.disputes.describe(state, d)
                for d in sorted(state.disputes.values(), key=lambda d: d.dispute_id)
                if not (open_only and d.is_resolved)
            ]

    def get_asset_disputes(self, ip_asset_id: int) -> list[dict[str, Any]]:
        with self.store.read() as state:
            state.get_asset(ip_asset_id)
            return [self.disputes.describe(state, d) for d in state.disputes_for_asset(ip_asset_id)]

    def has_active_disputes(self, ip_asset_id: int) -> bool:
        with self.store.read() as state:
            return not transfer_guard.can_transfer(state, ip_asset_id)

    def get_arbitration(self, arbitration_id: int) -> dict[str, Any]:
        with self.store.read() as state:
            return state.get_arbitration(arbitration_id).to_dict()

    # =========================================================================
    # Arbitrator Pool
    # =========================================================================

    def register_arbitrator(self, caller: str, stake: int) -> dict[str, Any]:

        def apply(state, now, address):
            arbitrator = self.pool.register(state, address, stake, now)
            return arbitrator.to_dict(), {"address": address, "stake": stake}

        return self._execute("register_arbitrator", caller, apply)

    def unstake(self, caller: str) -> dict[str, Any]:
        """Deactivate the caller as arbitrator and return the refunded stake."""

        def apply(state, now, address):
            refund = self.pool.unstake(state, address)
            result = {"address": address, "refund": refund}
            return result, dict(result)

        return self._execute("unstake", caller, apply)

    def get_arbitrator(self, address: str) -> dict[str, Any]:
        address = normalize_address(address, "address")
        with self.store.read() as state:
            return self.pool.describe(state, address)

    def list_arbitrators(self, active_only: bool = False) -> list[dict[str, Any]]:
        with self.store.read() as state:
            return [
                self.pool.describe(state, a.address)
                for a in self.pool.list_arbitrators(state, active_only=active_only)
            ]

    def active_arbitrator_count(self) -> int:
        with self.store.read() as state:
            return self.pool.active_count(state)

    # =========================================================================
    # Transfers
    # =========================================================================

    def can_transfer(self, ip_asset_id: int) -> dict[str, Any]:
        with self.store.read() as state:
            blocking = transfer_guard.blocking_dispute_ids(state, ip_asset_id)
        return {
            "ip_asset_id": ip_asset_id,
            "transferable": not blocking,
            "blocking_dispute_ids": blocking,
        }

    def transfer_ip(self, caller: str, ip_asset_id: int, new_owner: str) -> dict[str, Any]:

        def apply(state, now, owner):
            recipient = normalize_address(new_owner, "new_owner")
            asset = transfer_guard.transfer(state, ip_asset_id, owner, recipient)
            return asset.to_dict(), {
                "ip_asset_id": ip_asset_id,
                "from": owner,
                "to": recipient,
            }

        return self._execute("transfer_ip", caller, apply)

    # =========================================================================
    # Audit, Statistics & Verification
    # =========================================================================

    def get_events(
        self,
        event_type: str | None = None,
        limit: int = DEFAULT_EVENT_LIMIT,
    ) -> list[dict[str, Any]]:
        """Most recent audit events, newest last."""
        limit = max(1, min(limit, MAX_EVENT_LIMIT))
        with self.store.read() as state:
            events = [e for e in state.events if event_type is None or e.event_type == event_type]
            return [copy.deepcopy(e.to_dict()) for e in events[-limit:]]

    def get_statistics(self) -> dict[str, Any]:
        now = self.clock()
        with self.store.read() as state:
            licenses = list(state.licenses.values())
            disputes = list(state.disputes.values())
            return {
                "version": state.version,
                "assets": {
                    "total": len(state.assets),
                    "disputed": sum(1 for a in state.assets.values() if a.is_disputed),
                    "total_revenue": sum(a.total_revenue for a in state.assets.values()),
                },
                "licenses": {
                    "total": len(licenses),
                    "active": sum(1 for lic in licenses if lic.is_active_at(now)),
                },
                "royalties": {
                    "claimable": sum(r.claimable for r in state.royalty_accounts.values()),
                    "claimed": sum(r.total_claimed for r in state.royalty_accounts.values()),
                },
                "disputes": {
                    "total": len(disputes),
                    "open": sum(1 for d in disputes if not d.is_resolved),
                    "by_outcome": self._outcome_counts(disputes),
                },
                "arbitrators": {
                    "total": len(state.arbitrators),
                    "active": self.pool.active_count(state),
                },
                "platform": self._platform_info(state),
                "events": len(state.events),
            }

    def _outcome_counts(self, disputes) -> dict[str, int]:
        counts: dict[str, int] = {}
        for dispute in disputes:
            if dispute.outcome is not None:
                counts[dispute.outcome.value] = counts.get(dispute.outcome.value, 0) + 1
        return counts

    def verify_derived_state(self) -> dict[str, Any]:
        """
        Recompute cached flags from the authoritative collections.

        Returns:
            Dict with ``consistent`` plus any divergent assets, arbitrators
            and assets whose basis points no longer add up to 10,000
        """
        with self.store.read() as state:
            disputed = self.disputes.verify_disputed_flags(state)
            counts = self.pool.verify_active_dispute_counts(state)
            share_violations = [
                asset_id for asset_id in sorted(state.assets)
                if not ip_registry.share_invariant_holds(state, asset_id)
            ]

        consistent = not (disputed or counts or share_violations)
        if not consistent:
            logger.error(
                "Derived state diverged from collections",
                extra={
                    "disputed_flags": len(disputed),
                    "active_dispute_counts": len(counts),
                    "share_violations": len(share_violations),
                },
            )
        return {
            "consistent": consistent,
            "disputed_flags": {str(k): v for k, v in disputed.items()},
            "active_dispute_counts": counts,
            "share_invariant_violations": share_violations,
        }
