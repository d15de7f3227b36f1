"""Core type definitions and models for idempotency coordination.

This module provides the fundamental data structures used throughout the
coordinator: the transport-agnostic request container, persisted records,
cached responses, store decisions, and the caller-visible status tags.

Examples:
    Creating a cached response::

        from idempotency_coordinator.models import CachedResponse

        cached = CachedResponse.from_body(
            status=201,
            body=b'{"id": "pay_123"}',
            headers={"content-type": "application/json"},
            fingerprint="a" * 64,
        )
        cached.get_body_bytes()  # b'{"id": "pay_123"}'

    Creating an in-flight record::

        from datetime import UTC, datetime, timedelta
        from idempotency_coordinator.models import IdempotencyRecord, RecordState

        record = IdempotencyRecord(
            key="payment-123",
            fingerprint="a" * 64,
            state=RecordState.INFLIGHT,
            expires_at=datetime.now(UTC) + timedelta(hours=24),
        )
"""

import base64
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

HeaderValue = str | list[str]
HeaderMap = dict[str, HeaderValue]


class Request:
    """Transport-agnostic view of an inbound operation.

    Transports convert their own request objects into this container
    before handing them to the engine.

    Attributes:
        method: HTTP method (POST, PUT, ...)
        path: URL path, optionally still carrying a query string
        query_params: Query parameters, values are strings or lists of strings
        headers: Request headers
        body: Raw bytes, text, or an already decoded JSON value
    """

    def __init__(
        self,
        method: str,
        path: str,
        query_params: Mapping[str, HeaderValue] | None = None,
        headers: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> None:
        self.method = method
        self.path = path
        self.query_params = dict(query_params or {})
        self.headers = dict(headers or {})
        self.body = body


class RecordState(str, Enum):
    """Persisted state of an idempotency key.

    Attributes:
        INFLIGHT: An operation has begun and not yet completed.
        DONE: The operation completed and its response is cached for replay.
    """

    INFLIGHT = "inflight"
    DONE = "done"


class BeginOutcome(str, Enum):
    """Decision returned by ``Store.begin``."""

    STARTED = "started"
    REPLAY = "replay"
    CONFLICT = "conflict"
    INFLIGHT = "inflight"


class CoordinationStatus(str, Enum):
    """Status tag surfaced to callers for every guarded operation.

    The values are stable across store backends and are echoed in the
    ``Idempotency-Status`` response header.
    """

    MISSING_KEY = "missing-key"
    CREATED = "created"
    CACHED = "cached"
    CONFLICT = "conflict"
    INFLIGHT = "inflight"
    INFLIGHT_TIMEOUT = "inflight-timeout"


def _validate_hex_fingerprint(v: str) -> str:
    if len(v) != 64:
        raise ValueError(f"Fingerprint must be exactly 64 characters, got {len(v)}")
    if not all(c in "0123456789abcdef" for c in v):
        raise ValueError("Fingerprint must contain only lowercase hex characters")
    return v


class CachedResponse(BaseModel):
    """A response produced by a completed operation, kept for replay.

    The body is base64-encoded so that binary and text payloads serialize
    the same way across every store backend.

    Attributes:
        status: HTTP status code of the original response.
        headers: Lowercased response headers, values may be lists.
        body_b64: Base64-encoded response body.
        fingerprint: Fingerprint of the request that produced the response.
        created_at: When the response was captured.
    """

    status: int = Field(
        ...,
        description="HTTP status code",
        ge=100,
        le=599,
        examples=[200, 201, 400, 422],
    )
    headers: HeaderMap = Field(
        default_factory=dict,
        description="Lowercased response headers",
        examples=[{"content-type": "application/json", "location": "/orders/1"}],
    )
    body_b64: str = Field(
        ...,
        description="Base64-encoded response body",
        examples=["eyJvcmRlcklkIjogIjEyMyJ9"],
    )
    fingerprint: str = Field(
        ...,
        description="SHA-256 fingerprint of the originating request",
        pattern=r"^[a-f0-9]{64}$",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Timestamp when the response was captured",
    )

    model_config = {"frozen": True}

    @field_validator("body_b64")
    @classmethod
    def validate_base64(cls, v: str) -> str:
        """Validate that the body is properly base64-encoded.

        Raises:
            ValueError: If the string is not valid base64.
        """
        try:
            base64.b64decode(v, validate=True)
        except Exception as e:
            raise ValueError(f"Invalid base64 encoding: {e}") from e
        return v

    @field_validator("headers")
    @classmethod
    def validate_lowercase_headers(cls, v: HeaderMap) -> HeaderMap:
        """Normalize header names to lowercase."""
        return {name.lower(): value for name, value in v.items()}

    @classmethod
    def from_body(
        cls,
        status: int,
        body: bytes | str,
        headers: HeaderMap | None,
        fingerprint: str,
        created_at: datetime | None = None,
    ) -> "CachedResponse":
        """Build a cached response from a raw bytes or text body.

        Text bodies are stored as their UTF-8 encoding.

        Examples:
            >>> cached = CachedResponse.from_body(201, "ok", {}, "a" * 64)
            >>> cached.get_body_bytes()
            b'ok'
        """
        raw = body.encode("utf-8") if isinstance(body, str) else bytes(body)
        return cls(
            status=status,
            headers=headers or {},
            body_b64=base64.b64encode(raw).decode("ascii"),
            fingerprint=fingerprint,
            created_at=created_at or datetime.now(UTC),
        )

    def get_body_bytes(self) -> bytes:
        """Decode and return the response body as bytes."""
        return base64.b64decode(self.body_b64)


class IdempotencyRecord(BaseModel):
    """The persisted unit for one idempotency key.

    Records are immutable: a transition to ``DONE`` replaces the record
    rather than mutating it.

    Attributes:
        key: The client-supplied idempotency key (case-sensitive).
        fingerprint: Fingerprint of the request that opened this cycle.
        state: ``INFLIGHT`` or ``DONE``.
        expires_at: Instant after which the record is treated as absent.
        response: The cached response, present only when ``DONE``.
    """

    key: str = Field(
        ...,
        description="Idempotency key provided by the client",
        min_length=1,
        examples=["abc-123", "order-create-7f3a"],
    )
    fingerprint: str = Field(
        ...,
        description="SHA-256 hash of request fingerprint (64 hex characters)",
    )
    state: RecordState = Field(
        ...,
        description="Current state of the key",
    )
    expires_at: datetime = Field(
        ...,
        description="Timestamp when the record expires",
    )
    response: CachedResponse | None = Field(
        default=None,
        description="Cached response (set when DONE)",
    )

    model_config = {"frozen": True}

    @field_validator("fingerprint")
    @classmethod
    def validate_fingerprint(cls, v: str) -> str:
        """Validate that the fingerprint is a lowercase SHA-256 hex string."""
        return _validate_hex_fingerprint(v)

    @model_validator(mode="after")
    def validate_response_matches_state(self) -> "IdempotencyRecord":
        """A response is present if and only if the record is DONE."""
        if self.state == RecordState.DONE and self.response is None:
            raise ValueError("response must be provided when state is DONE")
        if self.state == RecordState.INFLIGHT and self.response is not None:
            raise ValueError("response must be None when state is INFLIGHT")
        return self

    def is_expired(self, now: datetime) -> bool:
        """Return True once ``now`` has reached ``expires_at``."""
        return self.expires_at <= now


class BeginResult(BaseModel):
    """Result of ``Store.begin`` for one key.

    Attributes:
        outcome: One of started, replay, conflict, inflight.
        cached: The cached response, present only for ``REPLAY``.

    Examples:
        >>> BeginResult.started().outcome
        <BeginOutcome.STARTED: 'started'>
    """

    outcome: BeginOutcome
    cached: CachedResponse | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_cached_with_outcome(self) -> "BeginResult":
        """``cached`` is present if and only if the outcome is REPLAY."""
        if self.outcome == BeginOutcome.REPLAY and self.cached is None:
            raise ValueError("cached must be provided when outcome is replay")
        if self.outcome != BeginOutcome.REPLAY and self.cached is not None:
            raise ValueError("cached must be None unless outcome is replay")
        return self

    @classmethod
    def started(cls) -> "BeginResult":
        return cls(outcome=BeginOutcome.STARTED)

    @classmethod
    def replay(cls, cached: CachedResponse) -> "BeginResult":
        return cls(outcome=BeginOutcome.REPLAY, cached=cached)

    @classmethod
    def conflict(cls) -> "BeginResult":
        return cls(outcome=BeginOutcome.CONFLICT)

    @classmethod
    def inflight(cls) -> "BeginResult":
        return cls(outcome=BeginOutcome.INFLIGHT)
