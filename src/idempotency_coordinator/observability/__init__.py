"""Observability utilities for idempotency coordination.

This package provides monitoring and debugging capabilities:
- Prometheus metrics for outcomes, handler timing and store failures
- Structured logging with contextual information
"""

from idempotency_coordinator.observability.logging import configure_logging, get_logger
from idempotency_coordinator.observability.metrics import (
    record_cleanup,
    record_handler_duration,
    record_request,
    record_store_error,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "record_request",
    "record_handler_duration",
    "record_store_error",
    "record_cleanup",
]
