"""
Metrics collection for IPVault.

Thread-safe in-process metrics covering the ledger and its HTTP surface:
- Counters: requests per operation and outcome, revenue and fee units paid
- Gauges: registered assets, open disputes, active arbitrators, in-flight requests
- Histograms: ledger transaction and HTTP request latency

``to_prometheus()`` renders the text exposition format served at /metrics.
"""

import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

# Milliseconds; a ledger transaction includes one snapshot write
LATENCY_BUCKETS_MS = (0.5, 1, 2.5, 5, 10, 25, 50, 100, 250, 500, 1000, 5000)

METRIC_HELP = {
    "ledger_requests_total": "Ledger requests by operation and outcome",
    "ledger_transaction_ms": "Time spent inside a ledger transaction, including persistence",
    "ledger_revenue_units_total": "Revenue units paid into assets",
    "ledger_platform_fees_units_total": "Platform fee units collected",
    "ledger_assets": "Registered IP assets",
    "ledger_open_disputes": "Disputes not yet resolved",
    "ledger_active_arbitrators": "Arbitrators currently staked",
    "http_requests_total": "HTTP requests by method, route and status",
    "http_request_duration_ms": "HTTP request latency",
    "http_requests_active": "HTTP requests in flight",
}

Labels = dict[str, str] | None


@dataclass
class Histogram:
    """Cumulative bucket counts plus sum and count."""

    bounds: tuple[float, ...] = LATENCY_BUCKETS_MS
    bucket_counts: list[int] = field(default_factory=list)
    sum: float = 0.0
    count: int = 0

    def __post_init__(self):
        if not self.bucket_counts:
            # Final slot is the +Inf bucket
            self.bucket_counts = [0] * (len(self.bounds) + 1)

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        for i, bound in enumerate(self.bounds):
            if value <= bound:
                self.bucket_counts[i] += 1
        self.bucket_counts[-1] += 1

    def buckets(self) -> list[tuple[str, int]]:
        labels = [str(b) for b in self.bounds] + ["+Inf"]
        return list(zip(labels, self.bucket_counts))


class MetricsCollector:
    """
    Thread-safe metrics collector.

    Series are keyed by metric name and a canonical rendering of their
    labels, so ``{"operation": "x", "outcome": "y"}`` and the same labels
    in another order hit the same series.
    """

    def __init__(self, namespace: str = "ipvault"):
        self.namespace = namespace
        self._lock = threading.RLock()
        self._counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self._histograms: dict[str, dict[str, Histogram]] = defaultdict(dict)
        self._start_time = time.time()

    @staticmethod
    def _labels_key(labels: Labels) -> str:
        if not labels:
            return ""
        return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))

    # Counters

    def increment(self, name: str, value: int = 1, labels: Labels = None) -> None:
        with self._lock:
            self._counters[name][self._labels_key(labels)] += value

    def get_counter(self, name: str, labels: Labels = None) -> int:
        with self._lock:
            return self._counters[name].get(self._labels_key(labels), 0)

    # Gauges

    def set_gauge(self, name: str, value: float, labels: Labels = None) -> None:
        with self._lock:
            self._gauges[name][self._labels_key(labels)] = value

    def adjust_gauge(self, name: str, delta: float, labels: Labels = None) -> None:
        with self._lock:
            self._gauges[name][self._labels_key(labels)] += delta

    def get_gauge(self, name: str, labels: Labels = None) -> float:
        with self._lock:
            return self._gauges[name].get(self._labels_key(labels), 0.0)

    # Histograms

    def timing(self, name: str, value_ms: float, labels: Labels = None) -> None:
        """Record a latency observation in milliseconds."""
        with self._lock:
            series = self._histograms[name]
            key = self._labels_key(labels)
            if key not in series:
                series[key] = Histogram()
            series[key].observe(value_ms)

    def get_histogram(self, name: str, labels: Labels = None) -> Histogram | None:
        with self._lock:
            return self._histograms[name].get(self._labels_key(labels))

    # Export

    def get_all(self) -> dict[str, Any]:
        """Every series as JSON-friendly dicts, for /metrics/json."""
        with self._lock:
            return {
                "uptime_seconds": round(time.time() - self._start_time, 2),
                "counters": {name: self._flatten(values) for name, values in self._counters.items()},
                "gauges": {name: self._flatten(values) for name, values in self._gauges.items()},
                "histograms": {
                    name: {
                        key or "_total": {
                            "count": hist.count,
                            "sum": round(hist.sum, 3),
                            "avg": round(hist.sum / hist.count, 3) if hist.count else 0,
                            "buckets": dict(hist.buckets()),
                        }
                        for key, hist in series.items()
                    }
                    for name, series in self._histograms.items()
                },
            }

    @staticmethod
    def _flatten(values: dict[str, Any]) -> Any:
        # An unlabelled metric is reported as a bare number
        if set(values) == {""}:
            return values[""]
        return dict(values)

    def to_prometheus(self) -> str:
        """Render every series in the Prometheus text exposition format."""
        prefix = f"{self.namespace}_" if self.namespace else ""
        lines = [
            f"# HELP {prefix}uptime_seconds Seconds since the collector started",
            f"# TYPE {prefix}uptime_seconds gauge",
            f"{prefix}uptime_seconds {time.time() - self._start_time:.2f}",
        ]

        with self._lock:
            for kind, families in (("counter", self._counters), ("gauge", self._gauges)):
                for name, values in families.items():
                    metric = f"{prefix}{name}"
                    lines.extend(self._header(metric, name, kind))
                    lines.extend(_series(metric, key, value) for key, value in values.items())

            for name, series in self._histograms.items():
                metric = f"{prefix}{name}"
                lines.extend(self._header(metric, name, "histogram"))
                for key, hist in series.items():
                    for le, count in hist.buckets():
                        le_labels = f'{key},le="{le}"' if key else f'le="{le}"'
                        lines.append(f"{metric}_bucket{{{le_labels}}} {count}")
                    lines.append(_series(f"{metric}_sum", key, f"{hist.sum:.3f}"))
                    lines.append(_series(f"{metric}_count", key, hist.count))

        return "\n".join(lines) + "\n"

    @staticmethod
    def _header(metric: str, name: str, kind: str) -> list[str]:
        header = []
        if name in METRIC_HELP:
            header.append(f"# HELP {metric} {METRIC_HELP[name]}")
        header.append(f"# TYPE {metric} {kind}")
        return header

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._start_time = time.time()


def _series(metric: str, key: str, value: Any) -> str:
    if key:
        return f"{metric}{{{key}}} {value}"
    return f"{metric} {value}"


# Process-wide collector used when a ledger is built without its own
metrics = MetricsCollector()
