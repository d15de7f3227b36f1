"""End-to-end scenarios for idempotency coordination.

Each module drives a FastAPI app wrapped in the ASGI adapter through one
aspect of coordination: replay, conflicts, concurrency, expiry, failure
recovery and size limits.
"""
