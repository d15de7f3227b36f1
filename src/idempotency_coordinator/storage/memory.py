"""In-memory reference store.

This module provides a single-process implementation of the Store protocol,
used as the default backing and in tests.

Concurrency:
    - All records live in one dict guarded by a single threading.Lock
    - Critical sections never await, so the lock is safe to share between
      event loops and threads and never blocks a loop for long
    - begin() performs check-and-set under the lock

Expiry:
    - Records are dropped when touched after their expiry (begin, get)
    - cleanup_expired() sweeps everything at once to bound memory in
      long-lived processes; see core.cleanup for a background task

Examples:
    Basic usage::

        from idempotency_coordinator.storage.memory import MemoryStore

        store = MemoryStore()

        result = await store.begin("payment-123", fingerprint, ttl_seconds=86400)
        if result.outcome is BeginOutcome.STARTED:
            response = await execute_request()
            await store.commit("payment-123", cached_response)

    Controlling time in tests::

        now = datetime(2024, 1, 1, tzinfo=UTC)
        store = MemoryStore(clock=lambda: now)
"""

import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from idempotency_coordinator.models import (
    BeginResult,
    CachedResponse,
    IdempotencyRecord,
    RecordState,
)
from idempotency_coordinator.observability.logging import get_logger
from idempotency_coordinator.storage.base import FALLBACK_TTL_SECONDS

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MemoryStore:
    """In-memory store with check-and-set semantics.

    Attributes:
        _records: Dictionary mapping keys to IdempotencyRecord objects.
        _lock: Lock protecting _records.
        _clock: Returns the current time as an aware UTC datetime.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._records: dict[str, IdempotencyRecord] = {}
        self._lock = threading.Lock()
        self._clock = clock or _utcnow

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    async def begin(self, key: str, fingerprint: str, ttl_seconds: float) -> BeginResult:
        """Open a new attempt cycle for ``key`` or report the existing one.

        Args:
            key: The idempotency key.
            fingerprint: SHA-256 fingerprint of the request.
            ttl_seconds: Lifetime of the new record.

        Returns:
            BeginResult per the Store decision table.
        """
        with self._lock:
            now = self._clock()
            existing = self._live_record(key, now)

            if existing is None:
                self._records[key] = IdempotencyRecord(
                    key=key,
                    fingerprint=fingerprint,
                    state=RecordState.INFLIGHT,
                    expires_at=now + timedelta(seconds=ttl_seconds),
                )
                return BeginResult.started()

            if existing.fingerprint != fingerprint:
                return BeginResult.conflict()

            if existing.state == RecordState.INFLIGHT:
                return BeginResult.inflight()

            if existing.response is None:
                raise RuntimeError(f"Record {key} is DONE but has no response")
            return BeginResult.replay(existing.response)

    async def commit(self, key: str, response: CachedResponse) -> None:
        """Store ``response`` as the DONE record for ``key``.

        The INFLIGHT record's expiry is kept. Without a live record the DONE
        record lives for FALLBACK_TTL_SECONDS. A live DONE record, or an
        INFLIGHT record held by another fingerprint, is never replaced.
        """
        with self._lock:
            now = self._clock()
            current = self._live_record(key, now)

            if current is None:
                self._records[key] = IdempotencyRecord(
                    key=key,
                    fingerprint=response.fingerprint,
                    state=RecordState.DONE,
                    expires_at=now + timedelta(seconds=FALLBACK_TTL_SECONDS),
                    response=response,
                )
                return

            if current.state == RecordState.DONE or current.fingerprint != response.fingerprint:
                logger.warning(
                    "idempotency.commit_skipped",
                    key=key,
                    state=current.state.value,
                    fingerprint_matches=current.fingerprint == response.fingerprint,
                )
                return

            self._records[key] = IdempotencyRecord(
                key=key,
                fingerprint=current.fingerprint,
                state=RecordState.DONE,
                expires_at=current.expires_at,
                response=response,
            )

    async def get(self, key: str) -> CachedResponse | None:
        """Return the cached response for a DONE, unexpired record."""
        with self._lock:
            record = self._live_record(key, self._clock())
            if record is not None and record.state == RecordState.DONE:
                return record.response
            return None

    async def abort(self, key: str, fingerprint: str | None = None) -> None:
        """Remove ``key`` if it is still INFLIGHT with a matching fingerprint."""
        with self._lock:
            record = self._records.get(key)
            if record is None or record.state != RecordState.INFLIGHT:
                return
            if fingerprint is None or record.fingerprint == fingerprint:
                del self._records[key]

    async def get_record(self, key: str) -> IdempotencyRecord | None:
        """Return the live record for ``key`` in any state (inspection helper)."""
        with self._lock:
            return self._live_record(key, self._clock())

    async def cleanup_expired(self) -> int:
        """Remove every expired record.

        Returns:
            The number of records removed.
        """
        with self._lock:
            now = self._clock()
            expired_keys = [key for key, record in self._records.items() if record.is_expired(now)]
            for key in expired_keys:
                del self._records[key]
            return len(expired_keys)

    def _live_record(self, key: str, now: datetime) -> IdempotencyRecord | None:
        # Caller holds the lock
        record = self._records.get(key)
        if record is not None and record.is_expired(now):
            del self._records[key]
            return None
        return record
