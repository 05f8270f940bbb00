"""
Prometheus metrics for the call tracker API.

This module provides:
- HTTP request counter (method, path, status)
- Call event outcome counter (type, result)
- Request latency histogram (method, path)
- Stale call counters/gauges for the reconciliation sweep and monitor

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

# HTTP request counter with labels for method, path, and status code
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# Call event processing outcome counter
# type: call_started, call_ended, unknown
# result: created, ended, or the error class name (e.g. DuplicateCallId)
call_events_total = Counter(
    "call_events_total",
    "Total call event processing outcomes",
    labelnames=["type", "result"]
)

# Request latency histogram in seconds
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

stale_calls_closed_total = Counter(
    "stale_calls_closed_total",
    "Calls force-closed by the reconciliation sweep",
)

overdue_calls = Gauge(
    "overdue_calls",
    "Calls still open past the reconciliation window at the last monitor check",
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]
    # Collapse per-call paths to avoid high-cardinality labels
    if normalized_path.startswith("/api/calls/"):
        normalized_path = "/api/calls/{call_id}"

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_call_event(event_type: str, result: str) -> None:
    call_events_total.labels(type=event_type, result=result).inc()


def record_reconciliation(closed: int) -> None:
    stale_calls_closed_total.inc(closed)


def record_overdue_calls(count: int) -> None:
    overdue_calls.set(count)


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
