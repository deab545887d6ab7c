"""
Flask middleware for request logging and metrics.

Each request gets an id (taken from X-Request-ID when the client sends
one), a log context naming the route and caller, and one access log line
whose level follows the response status. HTTP metrics go to the same
collector the ledger reports into, so /metrics shows both.
"""

import re
import time
import uuid

from flask import Flask, Response, g, request

from monitoring.logging import clear_request_context, get_logger, set_request_context
from monitoring.metrics import MetricsCollector, metrics as default_metrics

logger = get_logger("ipvault.request")

CALLER_HEADER = "X-Caller-Address"
REQUEST_ID_HEADER = "X-Request-ID"

_ADDRESS_SEGMENT = re.compile(r"^0x[0-9a-fA-F]{40}$")


def setup_request_logging(app: Flask, collector: MetricsCollector | None = None) -> None:
    """
    Install request logging and HTTP metrics on ``app``.

    Args:
        app: Flask application instance
        collector: Collector for http_* metrics; the process-wide one if omitted
    """
    collector = collector or default_metrics

    @app.before_request
    def start_request():
        g.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        g.start_time = time.perf_counter()

        context = {"request_id": g.request_id, "route": f"{request.method} {request.path}"}
        caller = request.headers.get(CALLER_HEADER)
        if caller:
            context["caller"] = caller
        set_request_context(**context)

        collector.adjust_gauge("http_requests_active", 1)

    @app.after_request
    def finish_request(response: Response) -> Response:
        duration_ms = (time.perf_counter() - g.start_time) * 1000 if "start_time" in g else 0.0
        route = route_label(request.path)

        collector.increment(
            "http_requests_total",
            labels={"method": request.method, "route": route, "status": str(response.status_code)},
        )
        collector.timing("http_request_duration_ms", duration_ms, labels={"route": route})

        if response.status_code >= 500:
            log = logger.error
        elif response.status_code >= 400:
            log = logger.warning
        else:
            log = logger.info
        log(
            f"{request.method} {request.path} -> {response.status_code}",
            extra={"status_code": response.status_code, "duration_ms": round(duration_ms, 2)},
        )

        if "request_id" in g:
            response.headers[REQUEST_ID_HEADER] = g.request_id
        return response

    @app.teardown_request
    def end_request(exception=None):
        if exception is not None:
            logger.error("Request failed with exception", exc_info=exception)
        clear_request_context()
        collector.adjust_gauge("http_requests_active", -1)


def route_label(path: str) -> str:
    """
    Collapse a request path into a metrics label.

    Asset, dispute and license ids become ``:id`` and account addresses
    become ``:address`` so label cardinality stays bounded.
    """
    segments = []
    for segment in path.strip("/").split("/"):
        if segment.isdigit():
            segments.append(":id")
        elif _ADDRESS_SEGMENT.match(segment):
            segments.append(":address")
        else:
            segments.append(segment)
    return "/" + "/".join(segments)
