"""Transport adapters for idempotency coordination.

The adapters convert framework-specific request/response objects to and
from the engine's transport-agnostic representation:

- asgi.py: ASGI middleware for FastAPI, Starlette, etc.
"""

from idempotency_coordinator.adapters.asgi import ASGIIdempotencyMiddleware

__all__ = ["ASGIIdempotencyMiddleware"]
