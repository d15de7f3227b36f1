"""Header filtering and manipulation utilities for idempotency coordination.

This module provides functions for:
- Filtering cached response headers down to the set safe to replay
- Normalizing captured response headers
- Stamping the idempotency status headers on responses
"""

from collections.abc import Iterable, Mapping
from typing import Any

from idempotency_coordinator.models import CoordinationStatus, HeaderMap

# Never replayed, regardless of the allow-list
DENIED_HEADERS = frozenset({"set-cookie", "authorization", "www-authenticate"})

DENIED_PREFIXES = ("proxy-",)

# Recomputed by the transport for every response
LENGTH_HEADER = "content-length"

ALWAYS_REPLAYED_HEADERS = frozenset({"content-type"})

STATUS_HEADER = "Idempotency-Status"
REPLAYED_HEADER = "Idempotency-Replayed"
KEY_HEADER = "Idempotency-Key"
RETRY_AFTER_HEADER = "Retry-After"

RETRYABLE_STATUSES = frozenset({CoordinationStatus.INFLIGHT, CoordinationStatus.INFLIGHT_TIMEOUT})


def filter_replay_headers(
    headers: Mapping[str, Any],
    allow_list: Iterable[str] | None = None,
) -> HeaderMap:
    """Return the subset of cached headers that may be replayed.

    Deny rules are unconditional and checked before the allow-list:

    1. content-length is dropped
    2. set-cookie, authorization and www-authenticate are dropped
    3. any proxy-* header is dropped
    4. content-type is kept
    5. anything else is kept only if allow-listed

    Args:
        headers: Cached response headers
        allow_list: Extra header names to replay (case-insensitive)

    Returns:
        Filtered headers with lowercase names

    Example:
        >>> filter_replay_headers(
        ...     {"Content-Type": "application/json", "Set-Cookie": "s=1", "Location": "/o/1"},
        ...     ["location", "set-cookie"],
        ... )
        {'content-type': 'application/json', 'location': '/o/1'}
    """
    allowed = {name.lower() for name in allow_list or ()}
    safe: HeaderMap = {}

    for name, value in headers.items():
        name_lower = name.lower()
        if name_lower == LENGTH_HEADER:
            continue
        if name_lower in DENIED_HEADERS:
            continue
        if name_lower.startswith(DENIED_PREFIXES):
            continue
        if name_lower in ALWAYS_REPLAYED_HEADERS or name_lower in allowed:
            safe[name_lower] = value

    return safe


def lowercase_headers(headers: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> HeaderMap:
    """Normalize captured headers for caching.

    Lowercases names, drops None values, stringifies values and groups
    repeated names into lists. Accepts a mapping or a sequence of pairs.

    Example:
        >>> lowercase_headers([("Set-Cookie", "a=1"), ("set-cookie", "b=2"), ("X-N", 3)])
        {'set-cookie': ['a=1', 'b=2'], 'x-n': '3'}
    """
    items = headers.items() if isinstance(headers, Mapping) else headers
    result: HeaderMap = {}

    for name, value in items:
        if value is None:
            continue
        name_lower = name.lower()
        values = [str(v) for v in value] if isinstance(value, (list, tuple)) else [str(value)]

        existing = result.get(name_lower)
        if existing is None:
            result[name_lower] = values if isinstance(value, (list, tuple)) else values[0]
        elif isinstance(existing, list):
            existing.extend(values)
        else:
            result[name_lower] = [existing, *values]

    return result


def add_status_headers(
    headers: HeaderMap,
    idempotency_key: str | None,
    status: CoordinationStatus,
    replayed: bool = False,
) -> HeaderMap:
    """Add idempotency status headers to a response.

    Args:
        headers: Existing response headers
        idempotency_key: The key used for this request, if any
        status: Status tag for this outcome
        replayed: Whether the response is a replay

    Returns:
        New headers with status metadata added

    Example:
        >>> add_status_headers({"content-type": "text/plain"}, "abc-123",
        ...                    CoordinationStatus.CACHED, replayed=True)
        {'content-type': 'text/plain', 'Idempotency-Status': 'cached', 'Idempotency-Replayed': 'true', 'Idempotency-Key': 'abc-123'}
    """
    # Create new dict to avoid mutating original
    result = dict(headers)

    result[STATUS_HEADER] = status.value
    result[REPLAYED_HEADER] = "true" if replayed else "false"

    if idempotency_key is not None:
        result[KEY_HEADER] = idempotency_key

    if status in RETRYABLE_STATUSES:
        result[RETRY_AFTER_HEADER] = "1"

    return result


def get_header_value(
    headers: Mapping[str, str],
    header_name: str,
    default: str | None = None,
) -> str | None:
    """Get header value with case-insensitive lookup.

    Example:
        >>> get_header_value({"Idempotency-Key": "abc"}, "idempotency-key")
        'abc'
        >>> get_header_value({}, "missing", "default")
        'default'
    """
    header_name_lower = header_name.lower()

    for key, value in headers.items():
        if key.lower() == header_name_lower:
            return value

    return default
