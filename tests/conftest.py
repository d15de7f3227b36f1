"""
Pytest configuration and shared fixtures for idempotency_coordinator tests.
"""

from datetime import UTC, datetime, timedelta

import pytest

from idempotency_coordinator.models import CachedResponse
from idempotency_coordinator.storage.memory import MemoryStore

FP_A = "a" * 64
FP_B = "b" * 64


class FakeClock:
    """Controllable clock for the memory store."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    """Provide a fake clock starting at 2024-01-01 UTC."""
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryStore:
    """Provide a memory store driven by the fake clock."""
    return MemoryStore(clock=clock)


@pytest.fixture
def sample_idempotency_key() -> str:
    """Provide a sample idempotency key for tests."""
    return "abc-123"


@pytest.fixture
def cached_a() -> CachedResponse:
    """A cached 201 response produced by fingerprint FP_A."""
    return CachedResponse.from_body(
        status=201,
        body=b'{"id": 1}',
        headers={"content-type": "application/json", "location": "/orders/1"},
        fingerprint=FP_A,
    )
