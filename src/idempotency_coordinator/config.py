"""Configuration module for idempotency coordination.

This module provides the IdempotencyConfig class and its nested option
groups, controlling which methods are guarded, how long records live, how
concurrent duplicates are handled, how requests are fingerprinted and which
headers are replayed.

Example:
    Basic usage with defaults:

        >>> config = IdempotencyConfig()
        >>> config.enabled_methods
        ['POST', 'PUT', 'PATCH', 'DELETE']
        >>> config.in_flight.strategy
        'reject'

    Custom configuration:

        >>> config = IdempotencyConfig(
        ...     ttl_seconds=3600,
        ...     in_flight={"strategy": "wait", "wait_timeout_seconds": 3},
        ...     replay={"header_allow_list": ["Location"]},
        ... )
        >>> config.replay.header_allow_list
        ['location']

    Loading from environment:

        >>> import os
        >>> os.environ['IDEMPOTENCY_ENABLED_METHODS'] = 'POST,PUT'
        >>> os.environ['IDEMPOTENCY_IN_FLIGHT_STRATEGY'] = 'wait'
        >>> config = IdempotencyConfig.from_env()
"""

import os
from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from idempotency_coordinator.models import Request

# Valid HTTP methods for idempotency
VALID_HTTP_METHODS = {
    "GET",
    "HEAD",
    "POST",
    "PUT",
    "DELETE",
    "CONNECT",
    "OPTIONS",
    "TRACE",
    "PATCH",
}

MAX_TTL_SECONDS = 604800


def _split_list(v: Any, field_name: str) -> list[str]:
    if isinstance(v, str):
        # Handle comma-separated string (from environment variables)
        v = [item.strip() for item in v.split(",") if item.strip()]
    if not isinstance(v, list):
        raise ValueError(f"{field_name} must be a list or comma-separated string")
    return v


class InFlightConfig(BaseModel):
    """Handling of a request whose key is already being executed.

    Attributes:
        strategy: "reject" answers immediately with a retryable 409;
            "wait" polls the store until the first request completes.
        wait_timeout_seconds: Upper bound on waiting when strategy is "wait".
        poll_interval_seconds: Delay between store polls while waiting.
    """

    strategy: Literal["wait", "reject"] = Field(
        default="reject",
        description="Policy for concurrent duplicates: 'wait' or 'reject'",
    )
    wait_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Maximum time in seconds to wait for an in-flight request",
    )
    poll_interval_seconds: float = Field(
        default=0.1,
        gt=0,
        description="Delay in seconds between store polls while waiting",
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_poll_within_timeout(self) -> "InFlightConfig":
        """Polling more rarely than the timeout would never observe completion."""
        if self.poll_interval_seconds > self.wait_timeout_seconds:
            raise ValueError(
                "poll_interval_seconds must not exceed wait_timeout_seconds, "
                f"got {self.poll_interval_seconds} > {self.wait_timeout_seconds}"
            )
        return self


class FingerprintConfig(BaseModel):
    """Options for request fingerprinting.

    Attributes:
        include_query: Include sorted query parameters in the fingerprint.
        max_body_bytes: Canonical body is truncated to this many bytes
            before hashing. 0 means unlimited.
        custom: Optional discriminator called with the Request; a truthy
            return value becomes part of the fingerprint (e.g. a tenant id).
    """

    include_query: bool = Field(
        default=False,
        description="Include query parameters in the fingerprint",
    )
    max_body_bytes: int = Field(
        default=65536,
        ge=0,
        description="Maximum canonical body bytes to fingerprint (0=unlimited)",
    )
    custom: Callable[[Request], str | None] | None = Field(
        default=None,
        description="Caller-supplied discriminator",
    )

    model_config = {"frozen": True, "arbitrary_types_allowed": True}


class ReplayConfig(BaseModel):
    """Options for replaying cached responses.

    Attributes:
        header_allow_list: Header names (case-insensitive) replayed in
            addition to content-type. Deny rules always win.
    """

    header_allow_list: list[str] = Field(
        default_factory=list,
        description="Response headers replayed besides content-type",
    )

    model_config = {"frozen": True}

    @field_validator("header_allow_list", mode="before")
    @classmethod
    def validate_header_allow_list(cls, v: Any) -> list[str]:
        """Normalize allow-listed header names to lowercase.

        Example:
            >>> ReplayConfig(header_allow_list="Location, X-Request-Id").header_allow_list
            ['location', 'x-request-id']
        """
        return [header.lower() for header in _split_list(v, "header_allow_list")]


class IdempotencyConfig(BaseModel):
    """Configuration for the coordination engine.

    Attributes:
        ttl_seconds: Lifetime of a record from the moment it is begun.
            Completing an operation does not extend it. Must be in
            (0, 604800].
        enabled_methods: HTTP methods that are coordinated. Others pass
            through untouched. Defaults to the mutating methods.
        key_header_name: Request header carrying the idempotency key.
        require_key: Reject guarded requests without a key (HTTP 400).
        in_flight: Concurrent duplicate handling, see InFlightConfig.
        fingerprint: Fingerprinting options, see FingerprintConfig.
        replay: Replay options, see ReplayConfig.

    Note:
        This class is immutable (frozen=True). Create a new instance if you
        need different settings.
    """

    ttl_seconds: float = Field(
        default=86400,
        description="Time-to-live in seconds for idempotency records",
    )
    enabled_methods: list[str] = Field(
        default=["POST", "PUT", "PATCH", "DELETE"],
        description="List of HTTP methods that require idempotency checks",
    )
    key_header_name: str = Field(
        default="Idempotency-Key",
        min_length=1,
        description="Header carrying the idempotency key",
    )
    require_key: bool = Field(
        default=False,
        description="Reject guarded requests that carry no key",
    )
    in_flight: InFlightConfig = Field(default_factory=InFlightConfig)
    fingerprint: FingerprintConfig = Field(default_factory=FingerprintConfig)
    replay: ReplayConfig = Field(default_factory=ReplayConfig)

    model_config = {"frozen": True}

    @field_validator("enabled_methods", mode="before")
    @classmethod
    def validate_enabled_methods(cls, v: Any) -> list[str]:
        """Validate and normalize enabled HTTP methods.

        Raises:
            ValueError: If any method is not a valid HTTP method.

        Example:
            >>> IdempotencyConfig(enabled_methods=["post", "put"]).enabled_methods
            ['POST', 'PUT']
        """
        methods = [method.upper() for method in _split_list(v, "enabled_methods")]

        invalid_methods = set(methods) - VALID_HTTP_METHODS
        if invalid_methods:
            raise ValueError(
                f"Invalid HTTP methods: {', '.join(sorted(invalid_methods))}. "
                f"Valid methods are: {', '.join(sorted(VALID_HTTP_METHODS))}"
            )

        return methods

    @field_validator("ttl_seconds")
    @classmethod
    def validate_ttl_seconds(cls, v: float) -> float:
        """Validate TTL is within (0, 7 days]."""
        if not (0 < v <= MAX_TTL_SECONDS):
            raise ValueError(
                f"ttl_seconds must be greater than 0 and at most {MAX_TTL_SECONDS} (7 days), got {v}"
            )
        return v

    def is_guarded(self, method: str) -> bool:
        """Return True if requests with ``method`` are coordinated."""
        return method.upper() in self.enabled_methods

    @classmethod
    def from_env(cls, prefix: str = "IDEMPOTENCY_") -> "IdempotencyConfig":
        """Create configuration from environment variables.

        Variable names are the prefix followed by the uppercased field name;
        nested options use the group name as an infix, e.g.
        ``IDEMPOTENCY_IN_FLIGHT_STRATEGY``.

        Example:
            >>> import os
            >>> os.environ['IDEMPOTENCY_TTL_SECONDS'] = '3600'
            >>> os.environ['IDEMPOTENCY_REQUIRE_KEY'] = 'true'
            >>> config = IdempotencyConfig.from_env()
            >>> config.ttl_seconds, config.require_key
            (3600.0, True)

        Note:
            Missing variables fall back to the defaults. The fingerprint
            discriminator cannot be configured from the environment.

        Raises:
            ValidationError: If a variable holds an invalid value.
        """
        # (group, field), group None for top-level fields
        env_fields: list[tuple[str | None, str]] = [
            (None, "ttl_seconds"),
            (None, "enabled_methods"),
            (None, "key_header_name"),
            (None, "require_key"),
            ("in_flight", "strategy"),
            ("in_flight", "wait_timeout_seconds"),
            ("in_flight", "poll_interval_seconds"),
            ("fingerprint", "include_query"),
            ("fingerprint", "max_body_bytes"),
            ("replay", "header_allow_list"),
        ]

        config_dict: dict[str, Any] = {}

        for group, field_name in env_fields:
            name = f"{group}_{field_name}" if group else field_name
            env_value = os.environ.get(f"{prefix}{name.upper()}")
            if env_value is None:
                continue

            # Raw strings: pydantic coerces numbers and booleans, validators split lists
            if group:
                config_dict.setdefault(group, {})[field_name] = env_value.strip()
            else:
                config_dict[field_name] = env_value.strip()

        return cls(**config_dict)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "IdempotencyConfig":
        """Create configuration from a dictionary.

        Raises:
            ValidationError: If the dictionary contains invalid values.
        """
        return cls(**config_dict)
