"""Store protocol for idempotency coordination.

This module defines the contract every backing store implements: the
durable half of the key/fingerprint state machine. The contract has four
operations and can be satisfied by an in-memory map, a relational table
keyed by key with a state column and an expiry index, or a key-value store
with conditional writes.

Examples:
    Implementing a custom store::

        from idempotency_coordinator.models import BeginResult, CachedResponse

        class RedisStore:
            async def begin(self, key, fingerprint, ttl_seconds) -> BeginResult:
                # SET key {"state": "inflight", "fp": ...} NX PX ttl
                ...

            async def commit(self, key, response: CachedResponse) -> None:
                # Overwrite value with the done record, KEEPTTL
                ...

            async def get(self, key) -> CachedResponse | None:
                ...

            async def abort(self, key, fingerprint=None) -> None:
                # Delete only if still inflight with the same fingerprint
                ...

Atomicity Requirements:
    All Store implementations MUST guarantee:

    1. **Check-and-set begin**: no two concurrent begin() calls on the same
       absent key may both observe STARTED. Use a mutex, compare-and-swap,
       ``SET ... NX`` or ``INSERT ... ON CONFLICT``.

    2. **Immutable completed records**: a DONE record is never rewritten in
       place; it is only replaced once its TTL has elapsed.

    3. **Expiry**: records whose expiry has passed are treated as absent by
       begin() and get().

    4. **Scoped abort**: abort() removes a record only while it is INFLIGHT
       and, when a fingerprint is given, only if it matches.

Error Handling:
    Backends raise StoreUnavailableError for infrastructure failures and
    never leak backend-specific exceptions.
"""

from typing import Protocol, runtime_checkable

from idempotency_coordinator.models import BeginResult, CachedResponse

# Lifetime of a DONE record committed without a matching INFLIGHT record
FALLBACK_TTL_SECONDS = 60


@runtime_checkable
class Store(Protocol):
    """Protocol defining the interface for idempotency stores.

    Decision table for begin():

    ========  ==================  =======  ============================
    existing  same fingerprint    expired  result
    ========  ==================  =======  ============================
    none      n/a                 n/a      STARTED (creates INFLIGHT)
    INFLIGHT  yes                 no       INFLIGHT
    INFLIGHT  no                  no       CONFLICT
    DONE      yes                 no       REPLAY (cached response)
    DONE      no                  no       CONFLICT
    any       n/a                 yes      STARTED (old record dropped)
    ========  ==================  =======  ============================
    """

    async def begin(self, key: str, fingerprint: str, ttl_seconds: float) -> BeginResult:
        """Atomically open a new attempt cycle for ``key`` or report why not.

        Args:
            key: The idempotency key.
            fingerprint: Fingerprint of the incoming request.
            ttl_seconds: Lifetime of the record from now.

        Returns:
            BeginResult following the decision table above.
        """
        ...

    async def commit(self, key: str, response: CachedResponse) -> None:
        """Transition the INFLIGHT record for ``key`` to DONE.

        The INFLIGHT record's expiry is preserved. If no live record
        exists, a DONE record is created with FALLBACK_TTL_SECONDS. A live
        DONE record, or an INFLIGHT record whose fingerprint differs from
        ``response.fingerprint``, is left untouched.
        """
        ...

    async def get(self, key: str) -> CachedResponse | None:
        """Return the cached response if ``key`` is DONE and unexpired.

        Expired records encountered here are removed.
        """
        ...

    async def abort(self, key: str, fingerprint: str | None = None) -> None:
        """Remove an INFLIGHT record so future retries may start fresh.

        A DONE record, or an INFLIGHT record with a different fingerprint,
        is left untouched.
        """
        ...
