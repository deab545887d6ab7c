"""
Shared utilities for the IPVault API.

This module contains common utilities, decorators, and helpers
used across all API blueprints. Settings are read from the Flask app
config, which ``server.create_app`` fills from ``LedgerConfig``.
"""

import ipaddress
import os
import secrets
import time
from functools import wraps
from typing import Any

from flask import current_app, jsonify, request

from ledger_exceptions import InvalidInputError, LedgerError, UnauthorizedError
from monitoring.middleware import CALLER_HEADER
from storage.base import StorageError

# Rate limiting state, keyed by client IP
rate_limit_store: dict[str, dict[str, Any]] = {}

# When expired windows were last swept out of rate_limit_store
rate_limit_sweep: dict[str, float] = {"last": 0.0}

# Bounded parameters
DEFAULT_PAGE_LIMIT = 100
MAX_RESULTS = 1000
MAX_OFFSET = 100000


# ============================================================
# Validation Utilities
# ============================================================

def validate_pagination_params(
    limit: int,
    offset: int = 0,
    max_limit: int = MAX_RESULTS,
    max_offset: int = MAX_OFFSET
) -> tuple:
    """
    Validate and bound pagination parameters.

    Args:
        limit: Requested limit
        offset: Requested offset
        max_limit: Maximum allowed limit
        max_offset: Maximum allowed offset

    Returns:
        Tuple of (bounded_limit, bounded_offset)
    """
    bounded_limit = max(1, min(int(limit) if limit else max_limit, max_limit))
    bounded_offset = max(0, min(int(offset) if offset else 0, max_offset))
    return bounded_limit, bounded_offset


def paginate(items: list, limit: int, offset: int) -> dict[str, Any]:
    """Slice a result list and wrap it with its paging metadata."""
    page = items[offset:offset + limit]
    return {
        "count": len(page),
        "total": len(items),
        "limit": limit,
        "offset": offset,
        "items": page,
    }


def validate_json_schema(
    data: dict[str, Any],
    required_fields: dict[str, type],
    optional_fields: dict[str, type] | None = None,
    max_lengths: dict[str, int] | None = None
) -> tuple:
    """
    Validate JSON payload against a simple schema.

    Booleans are rejected where an integer is expected, since ``True`` is
    an ``int`` to ``isinstance``.

    Args:
        data: The JSON data to validate
        required_fields: Dict mapping field names to expected types
        optional_fields: Dict mapping optional field names to expected types
        max_lengths: Dict mapping field names to maximum string lengths

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(data, dict):
        return False, "Request body must be a JSON object"

    for field_name, expected_type in required_fields.items():
        if field_name not in data:
            return False, f"Missing required field: {field_name}"
        if not _is_type(data[field_name], expected_type):
            return False, f"Field '{field_name}' must be of type {expected_type.__name__}"

    if optional_fields:
        for field_name, expected_type in optional_fields.items():
            if field_name in data and data[field_name] is not None:
                if not _is_type(data[field_name], expected_type):
                    return False, f"Field '{field_name}' must be of type {expected_type.__name__}"

    if max_lengths:
        for field_name, max_len in max_lengths.items():
            if field_name in data and isinstance(data[field_name], str):
                if len(data[field_name]) > max_len:
                    return False, f"Field '{field_name}' exceeds maximum length of {max_len}"

    return True, None


def _is_type(value: Any, expected_type: type) -> bool:
    if expected_type is int and isinstance(value, bool):
        return False
    return isinstance(value, expected_type)


def get_json_body() -> dict[str, Any]:
    """Request body as a dict; malformed or missing JSON yields an empty dict."""
    data = request.get_json(silent=True)
    return data if data is not None else {}


def get_caller() -> str:
    """
    The caller address supplied by the identity provider.

    Raises:
        UnauthorizedError: the header is missing
    """
    caller = request.headers.get(CALLER_HEADER, "").strip()
    if not caller:
        raise UnauthorizedError(
            f"Caller address required in {CALLER_HEADER} header",
            {"header": CALLER_HEADER},
        )
    return caller


def get_int_arg(name: str, default: int | None = None) -> int | None:
    """Integer query parameter; a malformed value is an input error."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidInputError(
            f"Query parameter '{name}' must be an integer", {"field": name}
        ) from None


def get_bool_arg(name: str, default: bool = False) -> bool:
    raw = request.args.get(name)
    if raw is None:
        return default
    return raw.lower() in ("true", "1", "yes")


# ============================================================
# Error Responses
# ============================================================

def ledger_error_response(error: LedgerError):
    """JSON body and status for a rejected ledger request."""
    return jsonify(error.to_dict()), error.http_status


def storage_error_response(error: StorageError):
    """Persistence failures roll the request back and report 503."""
    return jsonify({
        "error": "Ledger storage unavailable; request was not applied",
        "code": "STORAGE_UNAVAILABLE",
        "category": "storage_error",
    }), 503


# ============================================================
# IP and Rate Limiting Utilities
# ============================================================

def is_valid_ip(ip_str: str) -> bool:
    """
    Validate that a string is a valid IPv4 or IPv6 address.

    Args:
        ip_str: String to validate as IP address

    Returns:
        True if valid IP address, False otherwise
    """
    try:
        ipaddress.ip_address(ip_str.strip())
        return True
    except (ValueError, AttributeError):
        return False


# Only trust X-Forwarded-For headers from these IPs
TRUSTED_PROXIES = set(
    ip.strip() for ip in os.getenv("IPVAULT_TRUSTED_PROXIES", "").split(",")
    if ip.strip()
)


def get_client_ip() -> str:
    """
    Get client IP address, considering proxies.

    X-Forwarded-For is only honoured when the request came from a trusted
    proxy; the rightmost untrusted address in the chain is used.

    Configure trusted proxies via IPVAULT_TRUSTED_PROXIES env var.
    """
    remote_addr = request.remote_addr or 'unknown'

    if TRUSTED_PROXIES and remote_addr in TRUSTED_PROXIES:
        xff = request.headers.get('X-Forwarded-For')
        if xff:
            parts = [p.strip() for p in xff.split(',')]

            for ip in reversed(parts):
                if ip and is_valid_ip(ip) and ip not in TRUSTED_PROXIES:
                    return ip

            for ip in parts:
                if ip and is_valid_ip(ip):
                    return ip

    return remote_addr


def evict_expired_rate_limits(current_time: float, window: float) -> int:
    """Drop clients whose rate limit window has ended. Returns the number dropped."""
    expired = [
        client_ip
        for client_ip, client_data in list(rate_limit_store.items())
        if current_time - client_data["window_start"] > window
    ]
    for client_ip in expired:
        rate_limit_store.pop(client_ip, None)
    return len(expired)


def check_rate_limit() -> dict[str, Any] | None:
    """
    Check if client has exceeded rate limit.

    Returns:
        None if within limit, error dict if exceeded
    """
    max_requests = current_app.config.get("RATE_LIMIT_REQUESTS", 100)
    window = current_app.config.get("RATE_LIMIT_WINDOW", 60)

    client_ip = get_client_ip()
    current_time = time.time()

    if current_time - rate_limit_sweep["last"] > window:
        evict_expired_rate_limits(current_time, window)
        rate_limit_sweep["last"] = current_time

    if client_ip not in rate_limit_store:
        rate_limit_store[client_ip] = {
            "count": 0,
            "window_start": current_time
        }

    client_data = rate_limit_store[client_ip]

    if current_time - client_data["window_start"] > window:
        client_data["count"] = 0
        client_data["window_start"] = current_time

    if client_data["count"] >= max_requests:
        return {
            "error": "Rate limit exceeded",
            "retry_after": int(window - (current_time - client_data["window_start"]))
        }

    client_data["count"] += 1
    return None


# ============================================================
# Authentication Decorator
# ============================================================

def require_api_key(f):
    """Decorator to require API key authentication."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_app.config.get("IPVAULT_REQUIRE_AUTH", True):
            return f(*args, **kwargs)

        provided_key = request.headers.get('X-API-Key')

        if not provided_key:
            return jsonify({
                "error": "API key required",
                "hint": "Provide API key in X-API-Key header"
            }), 401

        api_key = current_app.config.get("IPVAULT_API_KEY")
        if not api_key:
            return jsonify({
                "error": "Server API key not configured",
                "hint": "Set IPVAULT_API_KEY environment variable"
            }), 503

        if not secrets.compare_digest(provided_key, api_key):
            return jsonify({"error": "Invalid API key"}), 403

        return f(*args, **kwargs)
    return decorated_function
