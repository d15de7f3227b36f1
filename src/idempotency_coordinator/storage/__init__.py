"""Stores for idempotency coordination.

This package provides the Store protocol and the in-memory reference
implementation. Relational or key-value stores implement the same protocol
outside this package.

Available Stores:
    - MemoryStore: Single-process store with lock-guarded check-and-set
"""

from idempotency_coordinator.storage.base import FALLBACK_TTL_SECONDS, Store
from idempotency_coordinator.storage.memory import MemoryStore

__all__ = [
    "Store",
    "MemoryStore",
    "FALLBACK_TTL_SECONDS",
]
