"""
Prometheus metrics for the dispatcher.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Scheduler tick counter (result) and running gauge
- Delivery outcome counter (result)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# result: ok, error
scheduler_ticks_total = Counter(
    "scheduler_ticks_total",
    "Total scheduler ticks by outcome",
    labelnames=["result"]
)

scheduler_running = Gauge(
    "scheduler_running",
    "1 while the dispatch scheduler is running, 0 otherwise"
)

# result: sent, failed, mark_failed
deliveries_total = Counter(
    "deliveries_total",
    "Total message delivery attempts by outcome",
    labelnames=["result"]
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
    # Normalize path to avoid high-cardinality labels
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


def record_tick(result: str) -> None:
    """Record one scheduler tick ("ok" or "error")."""
    scheduler_ticks_total.labels(result=result).inc()


def record_delivery(result: str) -> None:
    """
    Record a single message delivery outcome.

    Args:
        result: one of
            - "sent": delivered and marked sent
            - "failed": delivery client raised
            - "mark_failed": delivered, but the store update failed
    """
    deliveries_total.labels(result=result).inc()


def set_scheduler_running(running: bool) -> None:
    scheduler_running.set(1 if running else 0)


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    """
    Get the content type for Prometheus metrics.
    """
    return CONTENT_TYPE_LATEST
