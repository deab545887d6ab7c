"""
IPVault - Configuration

All runtime settings come from the environment (optionally seeded from a
``.env`` file). ``LedgerConfig.from_env()`` validates every value up front so
a misconfigured deployment fails at start-up rather than on the first
request.
"""

import os
from dataclasses import dataclass, field, fields
from typing import Any

from dotenv import load_dotenv

from arbitrator_pool import MIN_ARBITRATOR_STAKE
from dispute_arbitration import (
    DISPUTE_DECISION_WINDOW,
    NO_ARBITRATOR_DEADLINE,
    RESOLUTION_COOLDOWN,
)
from ledger import DEFAULT_PLATFORM_FEE_BP, normalize_address
from ledger_exceptions import InvalidAddressError
from royalty_engine import MAX_PLATFORM_FEE_BP

STORAGE_BACKENDS = ("json", "memory", "postgresql", "postgres")

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _config_address(value, name: str) -> str:
    try:
        return normalize_address(value, name)
    except InvalidAddressError:
        raise ValueError(f"{name} must be a 0x-prefixed 40 hex character address") from None


def _env_address(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return _config_address(raw, name)


@dataclass
class LedgerConfig:
    """Validated runtime settings for the ledger and its HTTP surface."""

    # Ledger
    operator: str | None = None
    platform_fee_bp: int = DEFAULT_PLATFORM_FEE_BP
    platform_fee_collector: str | None = None
    min_arbitrator_stake: int = MIN_ARBITRATOR_STAKE
    dispute_decision_window: int = DISPUTE_DECISION_WINDOW
    resolution_cooldown: int = RESOLUTION_COOLDOWN
    no_arbitrator_deadline: int = NO_ARBITRATOR_DEADLINE

    # Persistence
    storage_backend: str = "json"
    data_file: str = "ledger_data.json"
    database_url: str | None = field(default=None, repr=False)
    encryption_enabled: bool = False
    encryption_key: str | None = field(default=None, repr=False)

    # API
    api_key: str | None = field(default=None, repr=False)
    require_auth: bool = True
    rate_limit_requests: int = 100
    rate_limit_window: int = 60
    host: str = "0.0.0.0"
    port: int = 5000

    def __post_init__(self):
        for name in ("operator", "platform_fee_collector"):
            value = getattr(self, name)
            if value is not None:
                setattr(self, name, _config_address(value, name))
        self.validate()

    def validate(self) -> None:
        if not 0 <= self.platform_fee_bp <= MAX_PLATFORM_FEE_BP:
            raise ValueError(
                f"platform_fee_bp must be between 0 and {MAX_PLATFORM_FEE_BP}, "
                f"got {self.platform_fee_bp}"
            )
        if self.min_arbitrator_stake <= 0:
            raise ValueError("min_arbitrator_stake must be positive")
        for name in ("dispute_decision_window", "resolution_cooldown", "no_arbitrator_deadline"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be a positive number of seconds")
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"storage_backend must be one of {', '.join(STORAGE_BACKENDS)}, "
                f"got {self.storage_backend!r}"
            )
        if self.storage_backend in ("postgresql", "postgres") and not self.database_url:
            raise ValueError("DATABASE_URL is required for the PostgreSQL backend")
        if self.encryption_enabled and not self.encryption_key:
            raise ValueError("IPVAULT_ENCRYPTION_KEY is required when encryption is enabled")
        if not 0 < self.port < 65536:
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> "LedgerConfig":
        """
        Build a config from environment variables.

        Raises:
            ValueError: a variable is present but malformed; the message
                names the variable
        """
        load_dotenv(dotenv_path)

        return cls(
            operator=_env_address("IPVAULT_OPERATOR"),
            platform_fee_bp=_env_int("IPVAULT_PLATFORM_FEE_BP", DEFAULT_PLATFORM_FEE_BP),
            platform_fee_collector=_env_address("IPVAULT_PLATFORM_FEE_COLLECTOR"),
            min_arbitrator_stake=_env_int(
                "IPVAULT_MIN_ARBITRATOR_STAKE", MIN_ARBITRATOR_STAKE, minimum=1
            ),
            dispute_decision_window=_env_int(
                "IPVAULT_DISPUTE_DECISION_WINDOW", DISPUTE_DECISION_WINDOW, minimum=1
            ),
            resolution_cooldown=_env_int(
                "IPVAULT_RESOLUTION_COOLDOWN", RESOLUTION_COOLDOWN, minimum=1
            ),
            no_arbitrator_deadline=_env_int(
                "IPVAULT_NO_ARBITRATOR_DEADLINE", NO_ARBITRATOR_DEADLINE, minimum=1
            ),
            storage_backend=os.getenv("STORAGE_BACKEND", "json").strip().lower(),
            data_file=os.getenv("LEDGER_DATA_FILE", "ledger_data.json"),
            database_url=os.getenv("DATABASE_URL") or None,
            encryption_enabled=_env_bool("IPVAULT_ENCRYPTION_ENABLED", False),
            encryption_key=os.getenv("IPVAULT_ENCRYPTION_KEY") or None,
            api_key=os.getenv("IPVAULT_API_KEY") or None,
            require_auth=_env_bool("IPVAULT_REQUIRE_AUTH", True),
            rate_limit_requests=_env_int("RATE_LIMIT_REQUESTS", 100, minimum=1),
            rate_limit_window=_env_int("RATE_LIMIT_WINDOW", 60, minimum=1),
            host=os.getenv("HOST", "0.0.0.0"),
            port=_env_int("PORT", 5000, minimum=1),
        )

    def to_dict(self) -> dict[str, Any]:
        """Settings with secrets masked, for `ipvault info` and logs."""
        secret_fields = ("database_url", "encryption_key", "api_key")
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in secret_fields:
                value = "***" if value else None
            result[f.name] = value
        return result
