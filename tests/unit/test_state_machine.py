"""Unit tests for the admission state machine.

Tests cover every transition out of LocalGuardCheck and StoreLookup,
the wait/reject sub-protocol, and guard release on every non-proceed path.
"""

import asyncio
import time

import pytest

from idempotency_coordinator.config import IdempotencyConfig
from idempotency_coordinator.core.guard import InFlightGuard
from idempotency_coordinator.core.state_machine import (
    admit,
    check_replay,
    handle_inflight,
    wait_for_completion,
)
from idempotency_coordinator.exceptions import (
    ConflictError,
    InFlightRejectedError,
    InFlightTimeoutError,
    StoreUnavailableError,
)
from idempotency_coordinator.models import BeginResult, CachedResponse, RecordState
from idempotency_coordinator.storage.memory import MemoryStore

FP_A = "a" * 64
FP_B = "b" * 64
KEY = "abc-123"

REJECT = IdempotencyConfig(in_flight={"strategy": "reject"})
WAIT = IdempotencyConfig(
    in_flight={"strategy": "wait", "wait_timeout_seconds": 0.3, "poll_interval_seconds": 0.01}
)


def _response(fingerprint: str = FP_A) -> CachedResponse:
    return CachedResponse.from_body(
        201, b'{"id": 1}', {"content-type": "application/json"}, fingerprint
    )


class FailingStore(MemoryStore):
    """Memory store whose selected operations raise StoreUnavailableError."""

    def __init__(self, failing: set[str]) -> None:
        super().__init__()
        self.failing = failing

    def _check(self, operation: str) -> None:
        if operation in self.failing:
            raise StoreUnavailableError(f"{operation} failed", operation=operation)

    async def begin(self, key: str, fingerprint: str, ttl_seconds: float) -> BeginResult:
        self._check("begin")
        return await super().begin(key, fingerprint, ttl_seconds)

    async def get(self, key: str) -> CachedResponse | None:
        self._check("get")
        return await super().get(key)


@pytest.fixture
def guard() -> InFlightGuard:
    """Provide an empty in-flight guard."""
    return InFlightGuard()


# ============================================================================
# Proceed
# ============================================================================


class TestProceed:
    """A fresh key lets the caller proceed."""

    @pytest.mark.asyncio
    async def test_fresh_key_proceeds(self, store: MemoryStore, guard: InFlightGuard) -> None:
        result = await admit(store, guard, KEY, FP_A, REJECT)

        assert result is None
        assert guard.peek(KEY) == FP_A
        record = await store.get_record(KEY)
        assert record is not None
        assert record.state == RecordState.INFLIGHT

    @pytest.mark.asyncio
    async def test_ttl_from_config(self, store: MemoryStore, guard: InFlightGuard, clock) -> None:
        config = IdempotencyConfig(ttl_seconds=30)

        await admit(store, guard, KEY, FP_A, config)

        record = await store.get_record(KEY)
        assert record is not None
        assert (record.expires_at - clock.now).total_seconds() == 30


# ============================================================================
# Local guard
# ============================================================================


class TestLocalGuard:
    """Duplicates in the same process are decided without the store."""

    @pytest.mark.asyncio
    async def test_local_conflict(self, guard: InFlightGuard) -> None:
        store = FailingStore({"get", "begin"})
        guard.claim(KEY, FP_A)

        with pytest.raises(ConflictError) as exc_info:
            await admit(store, guard, KEY, FP_B, REJECT)

        assert exc_info.value.stored_fingerprint == FP_A
        assert exc_info.value.request_fingerprint == FP_B
        assert guard.peek(KEY) == FP_A

    @pytest.mark.asyncio
    async def test_local_duplicate_rejected(self, store: MemoryStore, guard: InFlightGuard) -> None:
        guard.claim(KEY, FP_A)

        with pytest.raises(InFlightRejectedError) as exc_info:
            await admit(store, guard, KEY, FP_A, REJECT)

        assert exc_info.value.key == KEY
        assert guard.peek(KEY) == FP_A

    @pytest.mark.asyncio
    async def test_local_duplicate_waits_for_result(
        self, store: MemoryStore, guard: InFlightGuard
    ) -> None:
        """With the wait strategy the duplicate receives the first result."""
        assert await admit(store, guard, KEY, FP_A, WAIT) is None

        async def finish() -> None:
            await asyncio.sleep(0.05)
            await store.commit(KEY, _response())
            guard.release(KEY, FP_A)

        task = asyncio.create_task(finish())
        cached = await admit(store, guard, KEY, FP_A, WAIT)
        await task

        assert cached is not None
        assert cached.status == 201


# ============================================================================
# Store lookup
# ============================================================================


class TestStoreLookup:
    """Decisions taken by the store when the local guard is free."""

    @pytest.mark.asyncio
    async def test_done_same_fingerprint_replays(
        self, store: MemoryStore, guard: InFlightGuard
    ) -> None:
        await store.begin(KEY, FP_A, 60)
        await store.commit(KEY, _response())

        cached = await admit(store, guard, KEY, FP_A, REJECT)

        assert cached is not None
        assert cached.get_body_bytes() == b'{"id": 1}'
        assert KEY not in guard

    @pytest.mark.asyncio
    async def test_done_different_fingerprint_conflicts(
        self, store: MemoryStore, guard: InFlightGuard
    ) -> None:
        await store.begin(KEY, FP_A, 60)
        await store.commit(KEY, _response())

        with pytest.raises(ConflictError) as exc_info:
            await admit(store, guard, KEY, FP_B, REJECT)

        assert exc_info.value.stored_fingerprint == FP_A
        assert KEY not in guard

    @pytest.mark.asyncio
    async def test_remote_inflight_conflict(self, store: MemoryStore, guard: InFlightGuard) -> None:
        """INFLIGHT in the store, held by another process."""
        await store.begin(KEY, FP_A, 60)

        with pytest.raises(ConflictError) as exc_info:
            await admit(store, guard, KEY, FP_B, REJECT)

        assert exc_info.value.stored_fingerprint is None
        assert KEY not in guard

    @pytest.mark.asyncio
    async def test_remote_inflight_rejected(self, store: MemoryStore, guard: InFlightGuard) -> None:
        await store.begin(KEY, FP_A, 60)

        with pytest.raises(InFlightRejectedError):
            await admit(store, guard, KEY, FP_A, REJECT)

        assert KEY not in guard

    @pytest.mark.asyncio
    async def test_remote_inflight_wait_times_out(
        self, store: MemoryStore, guard: InFlightGuard
    ) -> None:
        await store.begin(KEY, FP_A, 60)

        started = time.monotonic()
        with pytest.raises(InFlightTimeoutError) as exc_info:
            await admit(store, guard, KEY, FP_A, WAIT)
        elapsed = time.monotonic() - started

        assert exc_info.value.waited_seconds >= 0.3
        assert elapsed < 2
        assert KEY not in guard
        # No result is guessed; the original attempt still owns the key
        record = await store.get_record(KEY)
        assert record is not None
        assert record.state == RecordState.INFLIGHT


# ============================================================================
# Store failures
# ============================================================================


class TestStoreFailures:
    """Store failures before the handler propagate and free the guard."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["get", "begin"])
    async def test_failure_propagates(self, guard: InFlightGuard, operation: str) -> None:
        store = FailingStore({operation})

        with pytest.raises(StoreUnavailableError) as exc_info:
            await admit(store, guard, KEY, FP_A, REJECT)

        assert exc_info.value.operation == operation
        assert KEY not in guard

    @pytest.mark.asyncio
    async def test_cancellation_frees_guard(self, guard: InFlightGuard) -> None:
        class SlowStore(MemoryStore):
            async def get(self, key: str) -> CachedResponse | None:
                await asyncio.sleep(10)
                return None

        task = asyncio.create_task(admit(SlowStore(), guard, KEY, FP_A, REJECT))
        await asyncio.sleep(0.01)
        assert KEY in guard

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert KEY not in guard


# ============================================================================
# Helpers
# ============================================================================


class TestHelpers:
    """Tests for check_replay, handle_inflight and wait_for_completion."""

    def test_check_replay_match(self) -> None:
        cached = _response()
        assert check_replay(cached, KEY, FP_A) is cached

    def test_check_replay_mismatch(self) -> None:
        with pytest.raises(ConflictError):
            check_replay(_response(), KEY, FP_B)

    @pytest.mark.asyncio
    async def test_handle_inflight_reject(self, store: MemoryStore) -> None:
        with pytest.raises(InFlightRejectedError) as exc_info:
            await handle_inflight(store, KEY, FP_A, REJECT.in_flight)

        assert exc_info.value.retry_after == 1

    @pytest.mark.asyncio
    async def test_wait_returns_immediately_when_done(self, store: MemoryStore) -> None:
        await store.commit(KEY, _response())

        cached = await wait_for_completion(store, KEY, FP_A, WAIT.in_flight)

        assert cached.status == 201

    @pytest.mark.asyncio
    async def test_wait_conflicting_result(self, store: MemoryStore) -> None:
        """The waited-for request may complete under another fingerprint."""
        await store.commit(KEY, _response(FP_B))

        with pytest.raises(ConflictError):
            await wait_for_completion(store, KEY, FP_A, WAIT.in_flight)

    @pytest.mark.asyncio
    async def test_wait_after_abort_times_out(self, store: MemoryStore) -> None:
        """An aborted original leaves nothing to replay."""
        await store.begin(KEY, FP_A, 60)

        async def abort_soon() -> None:
            await asyncio.sleep(0.02)
            await store.abort(KEY, FP_A)

        task = asyncio.create_task(abort_soon())
        with pytest.raises(InFlightTimeoutError):
            await wait_for_completion(store, KEY, FP_A, WAIT.in_flight)
        await task
