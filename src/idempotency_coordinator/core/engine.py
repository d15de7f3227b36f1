"""Transport-agnostic coordination engine.

This module provides the orchestrator of the idempotency flow. It is
independent of any web framework and is wrapped by transport adapters.

For each operation the engine:
1. Skips methods that are not guarded
2. Extracts the idempotency key (or rejects when a key is required)
3. Computes the request fingerprint
4. Runs the admission state machine (local guard, then store)
5. Replays, rejects, or lets the handler run behind a ResponseSink
6. Commits or aborts through the sink and releases the local guard

Examples:
    Using the engine directly::

        from idempotency_coordinator.config import IdempotencyConfig
        from idempotency_coordinator.core.engine import CoordinationEngine
        from idempotency_coordinator.core.replay import GuardedResponse
        from idempotency_coordinator.models import Request
        from idempotency_coordinator.storage.memory import MemoryStore

        engine = CoordinationEngine(MemoryStore(), IdempotencyConfig())

        async def handler(request):
            return GuardedResponse(status=201, headers={}, body=b'{"ok": true}')

        request = Request(
            method="POST",
            path="/payments",
            headers={"Idempotency-Key": "abc-123"},
            body={"a": 1},
        )
        result = await engine.process(request, handler)
        result.status  # CoordinationStatus.CREATED

    Driving the sink from a transport::

        admission = await engine.admit(request)
        if admission.result is not None:
            return admission.result.response
        if admission.sink is not None:
            ...  # run the handler, then
            await admission.sink.send(status, body, headers)
"""

import json
import time
from collections.abc import Awaitable, Callable

from idempotency_coordinator.config import IdempotencyConfig
from idempotency_coordinator.core.guard import InFlightGuard
from idempotency_coordinator.core.replay import GuardedResponse, replay_response
from idempotency_coordinator.core.sink import ResponseSink
from idempotency_coordinator.core.state_machine import admit
from idempotency_coordinator.exceptions import (
    ConflictError,
    InFlightRejectedError,
    InFlightTimeoutError,
    MissingKeyError,
    StoreUnavailableError,
)
from idempotency_coordinator.fingerprint import fingerprint_request
from idempotency_coordinator.models import CoordinationStatus, Request
from idempotency_coordinator.observability.logging import get_logger
from idempotency_coordinator.observability.metrics import (
    record_handler_duration,
    record_request,
    record_store_error,
)
from idempotency_coordinator.storage.base import Store
from idempotency_coordinator.utils.headers import add_status_headers, get_header_value

logger = get_logger(__name__)

Handler = Callable[[Request], Awaitable[GuardedResponse]]


class CoordinationResult:
    """Result of coordinating one operation.

    Attributes:
        response: The response to return (fresh, replayed, or rejection)
        status: Status tag, None when the operation was not coordinated
        replayed: True if the response was replayed from the store
        key: The idempotency key, None when absent
        execution_time_ms: Handler time for fresh executions, None otherwise
    """

    def __init__(
        self,
        response: GuardedResponse,
        status: CoordinationStatus | None,
        replayed: bool,
        key: str | None,
        execution_time_ms: int | None = None,
    ) -> None:
        self.response = response
        self.status = status
        self.replayed = replayed
        self.key = key
        self.execution_time_ms = execution_time_ms


class Admission:
    """Outcome of the pre-handler phase.

    Exactly one of three shapes:

    - ``result`` set: answer with it, the handler must not run
    - ``sink`` set: run the handler and finalize through the sink
    - neither: the operation is not coordinated, run the handler as-is
    """

    def __init__(
        self,
        key: str | None = None,
        result: CoordinationResult | None = None,
        sink: ResponseSink | None = None,
    ) -> None:
        self.key = key
        self.result = result
        self.sink = sink


class CoordinationEngine:
    """Idempotency coordinator for one store and configuration.

    The engine owns the process-local in-flight guard, so a single engine
    instance should serve every request of a process for a given store.

    Attributes:
        store: Shared store
        config: Configuration
        guard: Process-local in-flight guard
    """

    def __init__(self, store: Store, config: IdempotencyConfig | None = None) -> None:
        self.store = store
        self.config = config or IdempotencyConfig()
        self.guard = InFlightGuard()

    def extract_key(self, request: Request) -> str | None:
        """Return the stripped idempotency key, or None if absent or empty."""
        value = get_header_value(request.headers, self.config.key_header_name)
        if value is None:
            return None
        value = value.strip()
        return value or None

    async def admit(self, request: Request) -> Admission:
        """Run the pre-handler phase for ``request``.

        Raises:
            StoreUnavailableError: If the store fails before the handler runs
        """
        if not self.config.is_guarded(request.method):
            return Admission()

        key = self.extract_key(request)

        try:
            if key is None:
                if not self.config.require_key:
                    logger.debug("idempotency.bypassed", reason="no_key", method=request.method)
                    return Admission()
                raise MissingKeyError(
                    message="Idempotency key is required",
                    header_name=self.config.key_header_name,
                )

            fingerprint = fingerprint_request(request, self.config.fingerprint)
            cached = await admit(self.store, self.guard, key, fingerprint, self.config)

        except MissingKeyError as e:
            logger.info("idempotency.missing_key", header=e.header_name)
            return self._reject(None, CoordinationStatus.MISSING_KEY, 400, e.message)

        except ConflictError as e:
            logger.warning("idempotency.conflict", key=e.key)
            return self._reject(e.key, CoordinationStatus.CONFLICT, 409, "Idempotency key conflict")

        except InFlightRejectedError as e:
            logger.info("idempotency.inflight_rejected", key=e.key)
            return self._reject(
                e.key, CoordinationStatus.INFLIGHT, 409, "Request in-flight, retry later"
            )

        except InFlightTimeoutError as e:
            logger.warning(
                "idempotency.inflight_timeout",
                key=e.key,
                waited_seconds=round(e.waited_seconds, 3),
            )
            return self._reject(
                e.key,
                CoordinationStatus.INFLIGHT_TIMEOUT,
                409,
                "In-flight request timeout, retry later",
            )

        except StoreUnavailableError as e:
            record_store_error(e.operation)
            logger.error(
                "idempotency.store_unavailable",
                key=key,
                operation=e.operation,
                error=str(e),
            )
            raise

        if cached is not None:
            response = replay_response(cached, key, self.config.replay.header_allow_list)
            record_request(CoordinationStatus.CACHED.value, response.status)
            logger.info("idempotency.replayed", key=key, http_status=response.status)
            return Admission(
                key=key,
                result=CoordinationResult(
                    response=response,
                    status=CoordinationStatus.CACHED,
                    replayed=True,
                    key=key,
                ),
            )

        return Admission(key=key, sink=ResponseSink(self.store, self.guard, key, fingerprint))

    async def process(self, request: Request, handler: Handler) -> CoordinationResult:
        """Coordinate ``request`` and run ``handler`` at most once per key.

        Handler exceptions are not transformed: the key is aborted so that
        a retry can start fresh, and the exception propagates.

        Args:
            request: The incoming request
            handler: Async function producing the response if allowed to run

        Returns:
            CoordinationResult with the response and status tag

        Raises:
            StoreUnavailableError: If the store fails before the handler runs
        """
        admission = await self.admit(request)

        if admission.result is not None:
            return admission.result

        sink = admission.sink
        if sink is None:
            response = await handler(request)
            return CoordinationResult(response=response, status=None, replayed=False, key=None)

        start_time = time.perf_counter()
        try:
            response = await handler(request)
            execution_time = time.perf_counter() - start_time
            await sink.send(response.status, response.body, response.headers)
        except Exception as e:
            if not sink.finalized:
                logger.warning(
                    "idempotency.handler_failed",
                    key=sink.key,
                    error_type=type(e).__name__,
                )
                await sink.abort()
            raise
        finally:
            # Covers cancellation: the store record is left to expire
            sink.release()

        execution_time_ms = int(execution_time * 1000)
        record_handler_duration(execution_time)
        record_request(CoordinationStatus.CREATED.value, response.status)
        logger.info(
            "idempotency.created",
            key=sink.key,
            http_status=response.status,
            execution_time_ms=execution_time_ms,
        )

        response.headers = add_status_headers(
            response.headers,
            sink.key,
            CoordinationStatus.CREATED,
            replayed=False,
        )

        return CoordinationResult(
            response=response,
            status=CoordinationStatus.CREATED,
            replayed=False,
            key=sink.key,
            execution_time_ms=execution_time_ms,
        )

    def _reject(
        self,
        key: str | None,
        status: CoordinationStatus,
        http_status: int,
        message: str,
    ) -> Admission:
        record_request(status.value, http_status)
        headers = add_status_headers(
            {"content-type": "application/json"},
            key,
            status,
            replayed=False,
        )
        response = GuardedResponse(
            status=http_status,
            headers=headers,
            body=json.dumps({"error": message}).encode("utf-8"),
        )
        return Admission(
            key=key,
            result=CoordinationResult(response=response, status=status, replayed=False, key=key),
        )
