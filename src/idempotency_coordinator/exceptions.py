"""Custom exceptions for idempotency coordination.

This module defines the exception hierarchy used throughout the coordinator
to signal rejections (missing key, conflict, in-flight) and backend failures.

Rejections are raised by the state machine and converted into caller-visible
responses by the engine. ``StoreUnavailableError`` raised before the handler
runs propagates to the host; raised after the handler ran, it is logged and
swallowed so the real response still reaches the caller.

Examples:
    Handling a conflict error::

        from idempotency_coordinator.exceptions import ConflictError

        try:
            cached = await admit(store, guard, key, fingerprint, config)
        except ConflictError as e:
            logger.warning("idempotency.conflict", key=e.key)
            return GuardedResponse(status=409, headers={}, body=b"...")

    Handling a storage error::

        from idempotency_coordinator.exceptions import StoreUnavailableError

        try:
            await store.commit(key, cached)
        except StoreUnavailableError as e:
            logger.error("idempotency.commit_failed", error=str(e))
"""


class IdempotencyError(Exception):
    """Base exception for all idempotency-related errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class MissingKeyError(IdempotencyError):
    """No idempotency key was presented and one is required.

    The handler never runs. The engine answers HTTP 400 with the
    ``missing-key`` status tag.

    Attributes:
        message: Human-readable error description.
        header_name: Name of the header the key was expected in.
    """

    def __init__(self, message: str, header_name: str) -> None:
        super().__init__(message)
        self.header_name = header_name


class ConflictError(IdempotencyError):
    """Same key, different fingerprint.

    Raised when a request reuses an idempotency key that belongs to a
    different request payload, whether that request is still running or
    has already completed. The handler never runs for the conflicting
    attempt; the engine answers HTTP 409.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key that conflicted.
        stored_fingerprint: The fingerprint already bound to the key, if known.
        request_fingerprint: The fingerprint of the incoming request.

    Examples:
        Raising a conflict error::

            if cached.fingerprint != fingerprint:
                raise ConflictError(
                    message=f"Fingerprint mismatch for key {key}",
                    key=key,
                    stored_fingerprint=cached.fingerprint,
                    request_fingerprint=fingerprint,
                )
    """

    def __init__(
        self,
        message: str,
        key: str,
        stored_fingerprint: str | None,
        request_fingerprint: str,
    ) -> None:
        super().__init__(message)
        self.key = key
        self.stored_fingerprint = stored_fingerprint
        self.request_fingerprint = request_fingerprint


class InFlightRejectedError(IdempotencyError):
    """An identical request is already running and the strategy is reject.

    The caller should retry after ``retry_after`` seconds.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key in flight.
        retry_after: Suggested retry delay in seconds.
    """

    def __init__(self, message: str, key: str, retry_after: int = 1) -> None:
        super().__init__(message)
        self.key = key
        self.retry_after = retry_after


class InFlightTimeoutError(IdempotencyError):
    """Waiting for an identical in-flight request exceeded the wait timeout.

    No partial result is guessed; the caller should retry.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key in flight.
        waited_seconds: How long the caller waited before giving up.
        retry_after: Suggested retry delay in seconds.
    """

    def __init__(
        self,
        message: str,
        key: str,
        waited_seconds: float,
        retry_after: int = 1,
    ) -> None:
        super().__init__(message)
        self.key = key
        self.waited_seconds = waited_seconds
        self.retry_after = retry_after


class StoreUnavailableError(IdempotencyError):
    """Store backend operation failed.

    Raised by store implementations when the backend cannot answer, for
    example on network failures, timeouts or an unavailable database.
    Implementations should wrap backend-specific exceptions in this type.

    Attributes:
        message: Human-readable error description.
        operation: The store operation that failed (begin, commit, get, abort).
        cause: The underlying exception, if any.

    Examples:
        Raising a store error::

            try:
                await redis.set(key, payload, nx=True, px=ttl_ms)
            except RedisError as e:
                raise StoreUnavailableError(
                    message=f"Failed to begin key in Redis: {e}",
                    operation="begin",
                    cause=e,
                ) from e
    """

    def __init__(
        self,
        message: str,
        operation: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.cause = cause


class ResponseAlreadySentError(IdempotencyError):
    """A response sink was finalized more than once.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key the sink belongs to.
    """

    def __init__(self, message: str, key: str) -> None:
        super().__init__(message)
        self.key = key
