"""
Monitoring and metrics infrastructure for IPVault.

This package provides:
- Application metrics collection (counters, gauges, histograms)
- Structured logging with JSON output
- Request timing middleware

Usage:
    from monitoring import metrics, get_logger

    metrics.increment("ledger_requests_total", labels={"operation": "pay_revenue"})
    metrics.timing("ledger_transaction_ms", 4.2)

    logger = get_logger(__name__)
    logger.info("Request committed", extra={"ip_asset_id": 1})
"""

from monitoring.logging import LoggingContext, configure_logging, get_logger
from monitoring.metrics import MetricsCollector, metrics
from monitoring.middleware import setup_request_logging

__all__ = [
    "LoggingContext",
    "MetricsCollector",
    "metrics",
    "get_logger",
    "configure_logging",
    "setup_request_logging",
]
