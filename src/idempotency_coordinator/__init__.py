"""
Idempotent request coordination for Python services.

This package ensures that side-effecting operations carrying the same
idempotency key run at most once, and that concurrent or retried requests
observe a single outcome: the original result, a conflict, or a replay.
"""

from idempotency_coordinator.config import IdempotencyConfig
from idempotency_coordinator.core.engine import CoordinationEngine, CoordinationResult
from idempotency_coordinator.core.replay import GuardedResponse
from idempotency_coordinator.core.sink import ResponseSink
from idempotency_coordinator.models import CachedResponse, CoordinationStatus, Request
from idempotency_coordinator.storage import MemoryStore, Store

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "CachedResponse",
    "CoordinationEngine",
    "CoordinationResult",
    "CoordinationStatus",
    "GuardedResponse",
    "IdempotencyConfig",
    "MemoryStore",
    "Request",
    "ResponseSink",
    "Store",
]
