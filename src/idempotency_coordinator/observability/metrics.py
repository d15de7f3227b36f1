"""Prometheus metrics for idempotency coordination.

Metrics include:

- Guarded request counters by status tag and HTTP status
- Handler duration histogram (fresh executions only)
- Locally in-flight keys gauge
- Store error counters by operation
- Cleanup operation tracking

Examples:
    Recording a replayed request::

        from idempotency_coordinator.observability.metrics import record_request

        record_request(status="cached", http_status=201)

    Recording a swallowed commit failure::

        from idempotency_coordinator.observability.metrics import record_store_error

        record_store_error("commit")
"""

from prometheus_client import Counter, Gauge, Histogram

# Labels: status (missing-key, created, cached, conflict, inflight, inflight-timeout)
requests_total = Counter(
    "idempotency_requests_total",
    "Total number of guarded requests by idempotency status",
    ["status", "http_status"],
)

handler_duration_seconds = Histogram(
    "idempotency_handler_duration_seconds",
    "Downstream handler execution time in seconds (fresh executions only)",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

inflight_keys = Gauge(
    "idempotency_inflight_keys",
    "Number of idempotency keys currently executing in this process",
)

store_errors_total = Counter(
    "idempotency_store_errors_total",
    "Store failures by operation",
    ["operation"],
)

cleanup_operations = Counter(
    "idempotency_cleanup_operations_total",
    "Total number of cleanup operations performed",
)

cleanup_records_removed = Counter(
    "idempotency_cleanup_records_removed_total",
    "Total number of expired records removed by cleanup",
)


def record_request(status: str, http_status: int) -> None:
    """Record a guarded request outcome.

    Examples:
        >>> record_request("cached", 201)
        >>> record_request("conflict", 409)
    """
    requests_total.labels(status=status, http_status=str(http_status)).inc()


def record_handler_duration(duration_seconds: float) -> None:
    """Record downstream handler execution time for a fresh execution."""
    handler_duration_seconds.observe(duration_seconds)


def set_inflight_keys(count: int) -> None:
    """Publish the size of the local in-flight guard."""
    inflight_keys.set(count)


def record_store_error(operation: str) -> None:
    """Record a store failure for ``operation`` (begin, commit, get, abort)."""
    store_errors_total.labels(operation=operation).inc()


def record_cleanup(records_removed: int) -> None:
    """Record a cleanup operation.

    Examples:
        >>> record_cleanup(42)
    """
    cleanup_operations.inc()
    cleanup_records_removed.inc(records_removed)
