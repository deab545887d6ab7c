"""
Structured logging for IPVault.

Two formatters share one redaction pass:
- ``JSONFormatter`` for log aggregation (``LOG_FORMAT=json`` or any log file)
- ``ConsoleFormatter`` with colours for development

Every record carries the request context (request id, HTTP route, caller
address, ledger operation) set by the request middleware and by
``LoggingContext`` around each ledger request. Account addresses are logged
in full since they are the subject of the audit trail; credentials and
encrypted snapshot payloads are not.
"""

import json
import logging
import os
import re
import sys
import threading
from datetime import UTC, datetime
from typing import Any

# ============================================================
# Redaction
# ============================================================

_SECRET_PATTERNS = [
    # key=value and "key": "value" pairs naming a credential
    (
        re.compile(
            r"(api[_-]?key|x-api-key|encryption[_-]?key|password|passphrase|secret|token)"
            r"([\"']?\s*[:=]\s*[\"']?)([^\s\"',}{]+)",
            re.IGNORECASE,
        ),
        r"\1\2[REDACTED]",
    ),
    # Password inside a PostgreSQL DATABASE_URL
    (re.compile(r"(postgres(?:ql)?://[^:/\s]+:)([^@\s]+)(@)"), r"\1[REDACTED]\3"),
    # Encrypted snapshot payloads are large and useless in a log line
    (re.compile(r"ENC:1:[A-Za-z0-9+/=]{16,}"), "ENC:1:[ENCRYPTED]"),
]

REDACTED_FIELDS = frozenset({
    "api_key",
    "x_api_key",
    "encryption_key",
    "database_url",
    "password",
    "passphrase",
    "secret",
    "token",
    "authorization",
})

MAX_REDACTION_DEPTH = 8

# Attributes every LogRecord has; anything else arrived through ``extra=``
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


def redact_string(text: str) -> str:
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def redact(value: Any, depth: int = 0) -> Any:
    """Redact credentials from strings, dicts and lists, recursively."""
    if depth > MAX_REDACTION_DEPTH:
        return "[TRUNCATED]"
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        return {
            k: "[REDACTED]" if str(k).lower().replace("-", "_") in REDACTED_FIELDS
            else redact(v, depth + 1)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item, depth + 1) for item in value]
    return value


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRIBUTES}


# ============================================================
# Request Context
# ============================================================

_context = threading.local()


def set_request_context(**kwargs) -> None:
    if not hasattr(_context, "data"):
        _context.data = {}
    _context.data.update(kwargs)


def clear_request_context() -> None:
    _context.data = {}


def get_request_context() -> dict[str, Any]:
    return getattr(_context, "data", {})


class LoggingContext:
    """
    Temporarily add fields to the request context.

    Usage:
        with LoggingContext(operation="pay_revenue", caller=address):
            logger.info("Request committed")

    The previous context is restored on exit, so a ledger request run
    inside an HTTP request keeps the request id afterwards.
    """

    def __init__(self, **kwargs):
        self.context = {k: v for k, v in kwargs.items() if v is not None}
        self.previous: dict[str, Any] = {}

    def __enter__(self):
        self.previous = dict(get_request_context())
        set_request_context(**self.context)
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        clear_request_context()
        set_request_context(**self.previous)
        return False


# ============================================================
# Formatters
# ============================================================

class JSONFormatter(logging.Formatter):
    """
    One JSON object per line:

        {"timestamp": "...", "level": "WARNING", "logger": "ip_ledger",
         "message": "Request rejected: ...", "context": {"request_id": "1a2b3c4d",
         "operation": "mint_license", "caller": "0x..."}, "error_code": "NOT_OWNER",
         "location": {...}}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_string(record.getMessage()),
        }

        context = get_request_context()
        if context:
            entry["context"] = redact(context)

        entry.update(redact(_extra_fields(record)))

        if record.levelno >= logging.WARNING:
            entry["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Readable single-line output with a coloured level prefix."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        line = (
            f"{color}{timestamp} {record.levelname[0]} [{record.name}]{self.RESET} "
            f"{redact_string(record.getMessage())}"
        )

        context = get_request_context()
        if context:
            line += " (" + " ".join(f"{k}={v}" for k, v in redact(context).items()) + ")"

        extras = _extra_fields(record)
        if extras:
            line += " [" + ", ".join(f"{k}={v}" for k, v in redact(extras).items()) + "]"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ============================================================
# Setup
# ============================================================

def configure_logging(
    level: str = "INFO",
    json_output: bool | None = None,
    log_file: str | None = None,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name
        json_output: JSON lines on stdout; defaults to LOG_FORMAT=json
        log_file: Optional file that always receives JSON lines
    """
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "").lower() == "json"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    # Request lines come from our middleware
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
