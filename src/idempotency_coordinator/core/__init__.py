"""Core coordination logic.

This package contains the framework-agnostic business logic:
- Guard: process-local in-flight key map
- State machine: admission decisions (proceed, replay, conflict, in-flight)
- Sink: commit/abort once the handler's response is final
- Replay: response reconstruction from cached entries
- Engine: the orchestrator wrapped by transport adapters
- Cleanup: optional background sweep of expired records
"""

from idempotency_coordinator.core.engine import (
    Admission,
    CoordinationEngine,
    CoordinationResult,
)
from idempotency_coordinator.core.guard import InFlightGuard
from idempotency_coordinator.core.replay import GuardedResponse, replay_response
from idempotency_coordinator.core.sink import ResponseSink

__all__ = [
    "Admission",
    "CoordinationEngine",
    "CoordinationResult",
    "GuardedResponse",
    "InFlightGuard",
    "ResponseSink",
    "replay_response",
]
