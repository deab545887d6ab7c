"""
IPVault - Ledger Exception Hierarchy

Every rejected request raises one of these. Errors fall into four categories
that callers can act on:

- not_found: unknown asset, license, dispute, arbitration or arbitrator
- invalid_input: bad amounts, malformed addresses, share sums over 10,000bp
- precondition_failed: the record is in the wrong state for the request
- unauthorized: the caller does not hold the role the request needs

All exceptions carry a stable ``code`` and a ``details`` dict so the caller
can show exactly what blocked the request (e.g. the blocking dispute ids).
"""

from typing import Any


class ErrorCategory:
    """Error categories reported to callers."""
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    PRECONDITION_FAILED = "precondition_failed"
    UNAUTHORIZED = "unauthorized"


HTTP_STATUS_BY_CATEGORY = {
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.INVALID_INPUT: 400,
    ErrorCategory.PRECONDITION_FAILED: 409,
    ErrorCategory.UNAUTHORIZED: 403,
}


class LedgerError(Exception):
    """
    Base exception for all ledger request failures.

    Subclasses set ``category`` and ``code``; instances carry the
    request-specific details.
    """

    category: str = ErrorCategory.PRECONDITION_FAILED
    code: str = "LEDGER_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CATEGORY.get(self.category, 500)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error": self.message,
            "code": self.code,
            "category": self.category,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# =============================================================================
# Category Bases
# =============================================================================

class NotFoundError(LedgerError):
    """A referenced record does not exist."""
    category = ErrorCategory.NOT_FOUND
    code = "NOT_FOUND"


class InvalidInputError(LedgerError):
    """The request carries malformed or out-of-range values."""
    category = ErrorCategory.INVALID_INPUT
    code = "INVALID_INPUT"


class PreconditionFailedError(LedgerError):
    """The target record is in the wrong state for the request."""
    category = ErrorCategory.PRECONDITION_FAILED
    code = "PRECONDITION_FAILED"


class UnauthorizedError(LedgerError):
    """The caller lacks the role the request requires."""
    category = ErrorCategory.UNAUTHORIZED
    code = "UNAUTHORIZED"


# =============================================================================
# Not Found
# =============================================================================

class AssetNotFoundError(NotFoundError):
    code = "ASSET_NOT_FOUND"

    def __init__(self, ip_asset_id: int):
        super().__init__(f"IP asset {ip_asset_id} not found", {"ip_asset_id": ip_asset_id})
        self.ip_asset_id = ip_asset_id


class LicenseNotFoundError(NotFoundError):
    code = "LICENSE_NOT_FOUND"

    def __init__(self, license_id: int):
        super().__init__(f"License {license_id} not found", {"license_id": license_id})
        self.license_id = license_id


class DisputeNotFoundError(NotFoundError):
    code = "DISPUTE_NOT_FOUND"

    def __init__(self, dispute_id: int):
        super().__init__(f"Dispute {dispute_id} not found", {"dispute_id": dispute_id})
        self.dispute_id = dispute_id


class ArbitrationNotFoundError(NotFoundError):
    code = "ARBITRATION_NOT_FOUND"

    def __init__(self, arbitration_id: int | None = None, dispute_id: int | None = None):
        if arbitration_id:
            message = f"Arbitration {arbitration_id} not found"
        else:
            message = f"No arbitrators assigned to dispute {dispute_id}"
        super().__init__(message, {"arbitration_id": arbitration_id, "dispute_id": dispute_id})


class ArbitratorNotRegisteredError(NotFoundError):
    code = "ARBITRATOR_NOT_REGISTERED"

    def __init__(self, address: str):
        super().__init__(f"Arbitrator {address} is not registered", {"address": address})
        self.address = address


# =============================================================================
# Invalid Input
# =============================================================================

class InvalidAmountError(InvalidInputError):
    code = "INVALID_AMOUNT"

    def __init__(self, field_name: str, value: Any):
        super().__init__(
            f"{field_name} must be a positive integer amount, got {value!r}",
            {"field": field_name, "value": value},
        )


class InvalidAddressError(InvalidInputError):
    code = "INVALID_ADDRESS"

    def __init__(self, field_name: str, value: Any):
        super().__init__(
            f"{field_name} is not a valid account address: {value!r}",
            {"field": field_name, "value": value},
        )


class RoyaltyShareExceededError(InvalidInputError):
    code = "ROYALTY_SHARE_EXCEEDED"

    def __init__(self, requested_bp: int, available_bp: int):
        super().__init__(
            f"Royalty share of {requested_bp}bp exceeds the owner's remaining {available_bp}bp",
            {"requested_bp": requested_bp, "available_bp": available_bp},
        )


class BelowMinimumStakeError(InvalidInputError):
    code = "BELOW_MINIMUM_STAKE"

    def __init__(self, stake: int, minimum: int):
        super().__init__(
            f"Stake {stake} is below the minimum arbitrator stake of {minimum}",
            {"stake": stake, "minimum_stake": minimum},
        )


# =============================================================================
# Precondition Failed
# =============================================================================

class NothingToClaimError(PreconditionFailedError):
    code = "NOTHING_TO_CLAIM"

    def __init__(self, ip_asset_id: int, account: str):
        super().__init__(
            f"No claimable royalties for {account} on IP asset {ip_asset_id}",
            {"ip_asset_id": ip_asset_id, "account": account},
        )


class ActiveDisputesError(PreconditionFailedError):
    """Raised by the transfer guard; lists every dispute blocking the transfer."""
    code = "ACTIVE_DISPUTES"

    def __init__(self, ip_asset_id: int, dispute_ids: list[int]):
        super().__init__(
            f"IP asset {ip_asset_id} has unresolved disputes: {dispute_ids}",
            {"ip_asset_id": ip_asset_id, "dispute_ids": list(dispute_ids)},
        )
        self.dispute_ids = list(dispute_ids)


class ArbitratorHasActiveDisputesError(PreconditionFailedError):
    code = "ARBITRATOR_HAS_ACTIVE_DISPUTES"

    def __init__(self, address: str, count: int):
        super().__init__(
            f"Arbitrator {address} still has {count} active dispute(s)",
            {"address": address, "count": count},
        )
        self.count = count


class AlreadyRegisteredError(PreconditionFailedError):
    code = "ALREADY_REGISTERED"

    def __init__(self, address: str):
        super().__init__(f"Arbitrator {address} is already registered and active", {"address": address})


class ArbitratorNotActiveError(PreconditionFailedError):
    code = "ARBITRATOR_NOT_ACTIVE"

    def __init__(self, addresses: list[str]):
        super().__init__(
            f"Arbitrator(s) not active: {addresses}",
            {"addresses": list(addresses)},
        )


class AlreadyAssignedError(PreconditionFailedError):
    code = "ALREADY_ASSIGNED"

    def __init__(self, dispute_id: int, arbitration_id: int):
        super().__init__(
            f"Dispute {dispute_id} already has arbitration {arbitration_id}",
            {"dispute_id": dispute_id, "arbitration_id": arbitration_id},
        )


class ArbitratorsAssignedError(PreconditionFailedError):
    code = "ARBITRATORS_ASSIGNED"

    def __init__(self, dispute_id: int, arbitration_id: int):
        super().__init__(
            f"Dispute {dispute_id} has arbitrators assigned (arbitration {arbitration_id})",
            {"dispute_id": dispute_id, "arbitration_id": arbitration_id},
        )


class NotAssignedArbitratorError(PreconditionFailedError):
    code = "NOT_ASSIGNED_ARBITRATOR"

    def __init__(self, dispute_id: int, address: str):
        super().__init__(
            f"{address} is not an assigned arbitrator for dispute {dispute_id}",
            {"dispute_id": dispute_id, "address": address},
        )


class AlreadyVotedError(PreconditionFailedError):
    code = "ALREADY_VOTED"

    def __init__(self, dispute_id: int, address: str):
        super().__init__(
            f"{address} has already voted on dispute {dispute_id}",
            {"dispute_id": dispute_id, "address": address},
        )


class DeadlinePassedError(PreconditionFailedError):
    code = "DEADLINE_PASSED"

    def __init__(self, dispute_id: int, deadline: int):
        super().__init__(
            f"Voting deadline for dispute {dispute_id} passed at {deadline}",
            {"dispute_id": dispute_id, "deadline": deadline},
        )


class DeadlineNotReachedError(PreconditionFailedError):
    code = "DEADLINE_NOT_REACHED"

    def __init__(self, dispute_id: int, deadline: int, now: int):
        super().__init__(
            f"Deadline for dispute {dispute_id} not reached ({deadline - now}s remaining)",
            {"dispute_id": dispute_id, "deadline": deadline, "seconds_remaining": deadline - now},
        )


class QuorumNotReachedError(PreconditionFailedError):
    code = "QUORUM_NOT_REACHED"

    def __init__(self, dispute_id: int, votes_for: int, required: int):
        super().__init__(
            f"Uphold quorum not reached for dispute {dispute_id} ({votes_for}/{required})",
            {"dispute_id": dispute_id, "votes_for": votes_for, "required_votes": required},
        )


class QuorumReachedError(PreconditionFailedError):
    code = "QUORUM_REACHED"

    def __init__(self, dispute_id: int, reached_at: int):
        super().__init__(
            f"Uphold quorum was reached for dispute {dispute_id}; resolve after the cooldown",
            {"dispute_id": dispute_id, "quorum_reached_at": reached_at},
        )


class CooldownNotElapsedError(PreconditionFailedError):
    code = "COOLDOWN_NOT_ELAPSED"

    def __init__(self, dispute_id: int, ready_at: int, now: int):
        super().__init__(
            f"Resolution cooldown for dispute {dispute_id} has {ready_at - now}s remaining",
            {"dispute_id": dispute_id, "ready_at": ready_at, "seconds_remaining": ready_at - now},
        )


class AlreadyResolvedError(PreconditionFailedError):
    code = "ALREADY_RESOLVED"

    def __init__(self, dispute_id: int):
        super().__init__(f"Dispute {dispute_id} is already resolved", {"dispute_id": dispute_id})


class LicenseInactiveError(PreconditionFailedError):
    code = "LICENSE_INACTIVE"

    def __init__(self, license_id: int):
        super().__init__(f"License {license_id} is already inactive", {"license_id": license_id})


# =============================================================================
# Unauthorized
# =============================================================================

class NotOwnerError(UnauthorizedError):
    code = "NOT_OWNER"

    def __init__(self, ip_asset_id: int, caller: str):
        super().__init__(
            f"{caller} is not the owner of IP asset {ip_asset_id}",
            {"ip_asset_id": ip_asset_id, "caller": caller},
        )


class NotOperatorError(UnauthorizedError):
    code = "NOT_OPERATOR"

    def __init__(self, caller: str, action: str):
        super().__init__(
            f"{caller} is not the ledger operator; '{action}' is privileged",
            {"caller": caller, "action": action},
        )


class NotDisputerError(UnauthorizedError):
    code = "NOT_DISPUTER"

    def __init__(self, dispute_id: int, caller: str):
        super().__init__(
            f"Only the original disputer may resolve dispute {dispute_id} without arbitrators",
            {"dispute_id": dispute_id, "caller": caller},
        )
