"""Admission state machine for idempotent operations.

This module decides, for one key and fingerprint, whether the caller may
execute the operation, must replay a cached response, or is rejected:

    LocalGuardCheck -> StoreLookup -> {Proceed | Replay | Conflict | WaitOrReject}

1. The process-local guard is claimed. If another local request holds the
   key: a different fingerprint is a conflict, the same fingerprint goes to
   the wait/reject sub-protocol.
2. The store is asked for a cached response (replay or conflict).
3. Otherwise Store.begin() decides: started proceeds, replay replays,
   conflict conflicts, inflight goes to the wait/reject sub-protocol.

The guard stays claimed only when the caller proceeds; every other path
releases it, including failures.

Examples:
    Admitting a request::

        from idempotency_coordinator.core.guard import InFlightGuard
        from idempotency_coordinator.core.state_machine import admit

        cached = await admit(store, guard, "payment-123", fingerprint, config)
        if cached is None:
            # We own the key; run the handler, then commit or abort
            ...
        else:
            # Replay cached
            ...
"""

import asyncio
import time

from idempotency_coordinator.config import IdempotencyConfig, InFlightConfig
from idempotency_coordinator.core.guard import InFlightGuard
from idempotency_coordinator.exceptions import (
    ConflictError,
    InFlightRejectedError,
    InFlightTimeoutError,
)
from idempotency_coordinator.models import BeginOutcome, CachedResponse
from idempotency_coordinator.observability.logging import get_logger
from idempotency_coordinator.storage.base import Store

logger = get_logger(__name__)


async def admit(
    store: Store,
    guard: InFlightGuard,
    key: str,
    fingerprint: str,
    config: IdempotencyConfig,
) -> CachedResponse | None:
    """Decide whether a request may proceed.

    Args:
        store: Shared store
        guard: Process-local in-flight guard
        key: Idempotency key
        fingerprint: Fingerprint of the request
        config: Configuration

    Returns:
        None if the caller now owns the key (guard claimed and store record
        started), otherwise the cached response to replay.

    Raises:
        ConflictError: The key belongs to a different request
        InFlightRejectedError: An identical request is running, strategy reject
        InFlightTimeoutError: Waiting for an identical request timed out
        StoreUnavailableError: The store failed before the handler ran
    """
    holder = guard.claim(key, fingerprint)
    if holder is not None:
        if holder != fingerprint:
            raise _conflict(key, holder, fingerprint)
        return await handle_inflight(store, key, fingerprint, config.in_flight)

    try:
        existing = await store.get(key)
        result = None
        if existing is None:
            result = await store.begin(key, fingerprint, config.ttl_seconds)
    except BaseException:
        guard.release(key, fingerprint)
        raise

    if result is not None and result.outcome == BeginOutcome.STARTED:
        return None

    guard.release(key, fingerprint)

    if existing is not None:
        return check_replay(existing, key, fingerprint)

    if result is None:
        raise RuntimeError(f"No store decision for key {key}")

    if result.outcome == BeginOutcome.REPLAY:
        if result.cached is None:
            raise RuntimeError("Store returned replay without a cached response")
        return check_replay(result.cached, key, fingerprint)

    if result.outcome == BeginOutcome.CONFLICT:
        raise _conflict(key, None, fingerprint)

    return await handle_inflight(store, key, fingerprint, config.in_flight)


def check_replay(cached: CachedResponse, key: str, fingerprint: str) -> CachedResponse:
    """Return ``cached`` if it belongs to ``fingerprint``.

    Raises:
        ConflictError: If the cached response was produced by another request
    """
    if cached.fingerprint != fingerprint:
        raise _conflict(key, cached.fingerprint, fingerprint)
    return cached


async def handle_inflight(
    store: Store,
    key: str,
    fingerprint: str,
    in_flight: InFlightConfig,
) -> CachedResponse:
    """Apply the wait/reject policy to an identical in-flight request.

    Raises:
        InFlightRejectedError: If the strategy is "reject"
        InFlightTimeoutError: If waiting timed out
        ConflictError: If the completed response belongs to another request
    """
    if in_flight.strategy == "reject":
        raise InFlightRejectedError(
            message=f"Request with key {key} is in flight",
            key=key,
        )

    return await wait_for_completion(store, key, fingerprint, in_flight)


async def wait_for_completion(
    store: Store,
    key: str,
    fingerprint: str,
    in_flight: InFlightConfig,
) -> CachedResponse:
    """Poll the store until the in-flight request's response is cached.

    The coroutine sleeps between polls so other operations keep running.

    Raises:
        InFlightTimeoutError: If no response appeared within the timeout
        ConflictError: If the cached response belongs to another request
    """
    timeout = in_flight.wait_timeout_seconds
    start_time = time.monotonic()

    logger.debug("idempotency.waiting", key=key, timeout_seconds=timeout)

    while True:
        cached = await store.get(key)
        if cached is not None:
            return check_replay(cached, key, fingerprint)

        elapsed = time.monotonic() - start_time
        if elapsed >= timeout:
            raise InFlightTimeoutError(
                message=f"Timed out after {elapsed:.2f}s waiting for key {key}",
                key=key,
                waited_seconds=elapsed,
            )

        await asyncio.sleep(min(in_flight.poll_interval_seconds, timeout - elapsed))


def _conflict(key: str, stored_fingerprint: str | None, request_fingerprint: str) -> ConflictError:
    return ConflictError(
        message=f"Request fingerprint mismatch for key {key}",
        key=key,
        stored_fingerprint=stored_fingerprint,
        request_fingerprint=request_fingerprint,
    )
