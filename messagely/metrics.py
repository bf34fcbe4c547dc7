"""
Prometheus metrics for the messaging API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Authentication outcome counter (action, result)
- Message event counter (event)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

# HTTP request counter with labels for method, path, and status code
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# action: login, register
# result: success, invalid_credentials, validation_error, conflict
auth_requests_total = Counter(
    "auth_requests_total",
    "Total authentication outcomes",
    labelnames=["action", "result"]
)

# event: sent, read
message_events_total = Counter(
    "message_events_total",
    "Total message lifecycle events",
    labelnames=["event"]
)

# Request latency histogram in seconds (default buckets)
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template when known (e.g. /messages/{message_id}), else raw path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_auth_outcome(action: str, result: str) -> None:
    """Record a login or registration outcome."""
    auth_requests_total.labels(action=action, result=result).inc()


def record_message_event(event: str) -> None:
    """Record a message being sent or marked read."""
    message_events_total.labels(event=event).inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
