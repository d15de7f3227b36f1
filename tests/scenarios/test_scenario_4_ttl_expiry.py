"""Scenario 4: TTL Expiry Conformance Tests

This module tests record lifetime through the ASGI adapter and the store:
- Requests before expiry are replayed
- After the TTL elapses the key is forgotten and the handler runs again
- Completing an operation does not extend its TTL
- An expired record no longer conflicts with a new request
- Orphaned in-flight records free the key once they expire
- The cleanup sweep reclaims expired records
"""

import asyncio
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from idempotency_coordinator.adapters.asgi import ASGIIdempotencyMiddleware
from idempotency_coordinator.config import IdempotencyConfig
from idempotency_coordinator.core.cleanup import start_cleanup_task, stop_cleanup_task
from idempotency_coordinator.fingerprint import compute_fingerprint
from idempotency_coordinator.models import RecordState
from idempotency_coordinator.storage.memory import MemoryStore

TTL_SECONDS = 60

execution_counter = {"count": 0}


@pytest.fixture(autouse=True)
def reset_counter() -> None:
    """Reset the execution counter before each test."""
    execution_counter["count"] = 0


@pytest.fixture
def config() -> IdempotencyConfig:
    """Create a config with a one-minute TTL."""
    return IdempotencyConfig(ttl_seconds=TTL_SECONDS)


def create_app(storage: MemoryStore, config: IdempotencyConfig) -> FastAPI:
    """Create a FastAPI app with idempotency middleware and test endpoints."""
    test_app = FastAPI()

    test_app.add_middleware(ASGIIdempotencyMiddleware, store=storage, config=config)

    @test_app.post("/api/payments", status_code=201)
    async def create_payment(body: dict[str, Any]) -> dict[str, Any]:
        execution_counter["count"] += 1
        return {"execution": execution_counter["count"]}

    return test_app


@pytest.fixture
def client(store: MemoryStore, config: IdempotencyConfig) -> TestClient:
    """Test client over the fake-clock store."""
    return TestClient(create_app(store, config))


def _post(client: TestClient, body: dict[str, Any], key: str = "ttl-key") -> Any:
    return client.post("/api/payments", json=body, headers={"Idempotency-Key": key})


# ============================================================================
# Replay window
# ============================================================================


def test_request_before_expiry_returns_cached(client: TestClient, clock) -> None:
    _post(client, {"a": 1})
    clock.advance(TTL_SECONDS - 1)

    response = _post(client, {"a": 1})

    assert response.headers["idempotency-status"] == "cached"
    assert response.json() == {"execution": 1}


def test_record_expires_after_ttl(client: TestClient, clock) -> None:
    """At the expiry instant the key is forgotten and the handler runs again."""
    _post(client, {"a": 1})
    clock.advance(TTL_SECONDS)

    response = _post(client, {"a": 1})

    assert response.status_code == 201
    assert response.headers["idempotency-status"] == "created"
    assert response.json() == {"execution": 2}


def test_expired_record_no_longer_conflicts(client: TestClient, clock) -> None:
    _post(client, {"a": 1})
    clock.advance(TTL_SECONDS + 1)

    response = _post(client, {"a": 2})

    assert response.status_code == 201
    assert response.headers["idempotency-status"] == "created"


def test_ttl_counts_from_begin(store: MemoryStore, clock) -> None:
    """A slow handler does not push back the expiry of its result."""

    def slow_app() -> FastAPI:
        test_app = FastAPI()
        test_app.add_middleware(
            ASGIIdempotencyMiddleware,
            store=store,
            config=IdempotencyConfig(ttl_seconds=TTL_SECONDS),
        )

        @test_app.post("/api/payments", status_code=201)
        async def create_payment(body: dict[str, Any]) -> dict[str, Any]:
            execution_counter["count"] += 1
            # The handler "takes" 40 seconds of store time
            clock.advance(40)
            return {"execution": execution_counter["count"]}

        return test_app

    client = TestClient(slow_app())
    _post(client, {"a": 1})
    clock.advance(TTL_SECONDS - 40)

    response = _post(client, {"a": 1})

    assert response.headers["idempotency-status"] == "created"


@pytest.mark.parametrize("ttl", [1, 30, 3600])
def test_different_ttl_values(store: MemoryStore, clock, ttl: int) -> None:
    client = TestClient(create_app(store, IdempotencyConfig(ttl_seconds=ttl)))
    _post(client, {"a": 1})

    clock.advance(ttl - 0.5)
    assert _post(client, {"a": 1}).headers["idempotency-status"] == "cached"

    clock.advance(0.5)
    assert _post(client, {"a": 1}).headers["idempotency-status"] == "created"


# ============================================================================
# Orphaned in-flight records
# ============================================================================


@pytest.mark.asyncio
async def test_orphaned_inflight_blocks_until_expiry(
    client: TestClient, store: MemoryStore, clock
) -> None:
    """A record left INFLIGHT by a crashed process frees the key after the TTL."""
    # Open the key as the crashed process would have, with the same fingerprint
    fingerprint = compute_fingerprint("POST", "/api/payments", {"a": 1})
    await store.begin("orphan", fingerprint, TTL_SECONDS)

    blocked = _post(client, {"a": 1}, key="orphan")
    assert blocked.status_code == 409
    assert blocked.headers["idempotency-status"] == "inflight"
    assert execution_counter["count"] == 0

    clock.advance(TTL_SECONDS)
    recovered = _post(client, {"a": 1}, key="orphan")

    assert recovered.status_code == 201
    assert recovered.headers["idempotency-status"] == "created"
    record = await store.get_record("orphan")
    assert record is not None
    assert record.state == RecordState.DONE


# ============================================================================
# Cleanup sweep
# ============================================================================


@pytest.mark.asyncio
async def test_cleanup_reclaims_expired_records(
    client: TestClient, store: MemoryStore, clock
) -> None:
    for i in range(5):
        _post(client, {"a": i}, key=f"key-{i}")
    assert len(store) == 5

    clock.advance(TTL_SECONDS)
    _post(client, {"a": 99}, key="fresh")

    cleanup = await start_cleanup_task(store, interval_seconds=60)
    await asyncio.sleep(0.05)
    await stop_cleanup_task(cleanup)

    assert len(store) == 1
    assert await store.get("fresh") is not None


@pytest.mark.asyncio
async def test_cleanup_with_empty_store(store: MemoryStore) -> None:
    assert await store.cleanup_expired() == 0
    assert await store.cleanup_expired() == 0
