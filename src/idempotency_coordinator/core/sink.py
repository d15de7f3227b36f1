"""Response sink handed to the transport when an operation proceeds.

The sink is the only coupling between the engine and a transport's
response object: the transport calls ``send`` exactly once with the final
status, body and headers, and the sink decides what the store remembers.

- status >= 500: the record is aborted so the operation may be retried
- 200..499 with a body: the response is committed for replay (4xx included)
- anything else: the record is aborted

Store failures at this point are logged and swallowed; the handler's real
response has already been produced and must reach the caller.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from idempotency_coordinator.core.guard import InFlightGuard
from idempotency_coordinator.exceptions import ResponseAlreadySentError
from idempotency_coordinator.models import CachedResponse
from idempotency_coordinator.observability.logging import get_logger
from idempotency_coordinator.observability.metrics import record_store_error
from idempotency_coordinator.storage.base import Store
from idempotency_coordinator.utils.headers import lowercase_headers

logger = get_logger(__name__)


def is_cacheable(status: int, body: bytes | str | None) -> bool:
    """Return True if a response with ``status`` and ``body`` is committed."""
    return body is not None and 200 <= status < 500


class ResponseSink:
    """Finalizes one proceeding operation.

    Attributes:
        key: Idempotency key owned by this operation
        fingerprint: Fingerprint of the request
        status: Final status once sent, None before
        body: Final body once sent, None before
        headers: Final lowercased headers once sent
    """

    def __init__(
        self,
        store: Store,
        guard: InFlightGuard,
        key: str,
        fingerprint: str,
    ) -> None:
        self.key = key
        self.fingerprint = fingerprint
        self.status: int | None = None
        self.body: bytes | str | None = None
        self.headers: dict[str, Any] = {}
        self._store = store
        self._guard = guard
        self._finalized = False

    @property
    def finalized(self) -> bool:
        return self._finalized

    async def send(
        self,
        status: int,
        body: bytes | str | None,
        headers: Mapping[str, Any] | Iterable[tuple[str, Any]] | None = None,
    ) -> None:
        """Finalize with the handler's response.

        Raises:
            ResponseAlreadySentError: If the sink was already finalized
        """
        self._mark_finalized()
        self.status = status
        self.body = body
        self.headers = lowercase_headers(headers or {})

        try:
            if body is not None and is_cacheable(status, body):
                await self._commit(status, body)
            else:
                await self._abort(reason="uncacheable", http_status=status)
        finally:
            self.release()

    async def abort(self) -> None:
        """Finalize after the handler failed without producing a response.

        Raises:
            ResponseAlreadySentError: If the sink was already finalized
        """
        self._mark_finalized()
        try:
            await self._abort(reason="handler_failed", http_status=None)
        finally:
            self.release()

    def release(self) -> None:
        """Free the local guard without touching the store.

        Used when the handler is cancelled: the store record is left to
        expire by TTL. Safe to call more than once.
        """
        self._guard.release(self.key, self.fingerprint)

    def _mark_finalized(self) -> None:
        if self._finalized:
            raise ResponseAlreadySentError(
                message=f"Response for key {self.key} was already sent",
                key=self.key,
            )
        self._finalized = True

    async def _commit(self, status: int, body: bytes | str) -> None:
        cached = CachedResponse.from_body(
            status=status,
            body=body,
            headers=self.headers,
            fingerprint=self.fingerprint,
        )
        try:
            await self._store.commit(self.key, cached)
        except Exception as e:
            record_store_error("commit")
            logger.error(
                "idempotency.commit_failed",
                key=self.key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        logger.debug("idempotency.committed", key=self.key, http_status=status)

    async def _abort(self, reason: str, http_status: int | None) -> None:
        try:
            await self._store.abort(self.key, self.fingerprint)
        except Exception as e:
            record_store_error("abort")
            logger.error(
                "idempotency.abort_failed",
                key=self.key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        logger.info("idempotency.aborted", key=self.key, reason=reason, http_status=http_status)
