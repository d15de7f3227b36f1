"""Request fingerprinting for idempotency.

The fingerprint is a SHA-256 digest over canonical representations of the
request components. Two requests sharing an idempotency key are treated as
the same request if and only if their fingerprints are equal.

Canonical parts, in order:
1. Method, uppercased
2. Path without query string
3. Query parameters sorted by name (only when include_query is set)
4. Caller-supplied discriminator (only when it yields a value)
5. Canonical body, truncated to max_body_bytes

Object keys are sorted at every nesting level and string member values are
stripped, so key order and incidental whitespace never change the digest.
Array order is significant.

Backslash and NUL are escaped inside every part before joining, so a raw
text body or discriminator containing NUL cannot shift part boundaries.
"""

import hashlib
import json
from collections.abc import Mapping
from typing import Any

from idempotency_coordinator.config import FingerprintConfig
from idempotency_coordinator.models import Request

DEFAULT_MAX_BODY_BYTES = 65536

# Parts are escaped so the delimiter never occurs inside one
PART_DELIMITER = b"\x00"

_ESCAPES = ((b"\\", b"\\\\"), (PART_DELIMITER, b"\\0"))


def compute_fingerprint(
    method: str,
    path: str,
    body: Any = None,
    query_params: Mapping[str, Any] | None = None,
    *,
    include_query: bool = False,
    discriminator: str | None = None,
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
) -> str:
    """Compute a deterministic fingerprint for a request.

    Args:
        method: HTTP method (e.g., "POST", "PUT")
        path: URL path, any query string is ignored
        body: Request body as bytes, text, or a decoded JSON value
        query_params: Query parameters, used only if include_query is True
        include_query: Include sorted query parameters in the fingerprint
        discriminator: Optional extra value, e.g. a tenant id
        max_body_bytes: Truncate the canonical body to this many bytes
            (0 = unlimited). Bodies differing only past the limit collide.

    Returns:
        Hexadecimal SHA-256 hash string (64 characters)

    Examples:
        >>> a = compute_fingerprint("post", "/orders", {"a": 1, "b": " x "})
        >>> b = compute_fingerprint("POST", "/orders?ignored=1", {"b": "x", "a": 1})
        >>> a == b
        True
    """
    parts: list[bytes] = [
        method.upper().encode("utf-8"),
        _canonicalize_path(path).encode("utf-8"),
    ]

    if include_query:
        parts.append(canonicalize_query(query_params or {}).encode("utf-8"))

    if discriminator:
        parts.append(discriminator.encode("utf-8"))

    canonical_body = canonicalize_body(body).encode("utf-8")
    if max_body_bytes > 0:
        canonical_body = canonical_body[:max_body_bytes]
    parts.append(canonical_body)

    return hashlib.sha256(PART_DELIMITER.join(_escape_part(part) for part in parts)).hexdigest()


def fingerprint_request(request: Request, options: FingerprintConfig | None = None) -> str:
    """Fingerprint a transport-agnostic Request using configured options.

    The custom discriminator, if configured, is called with the request.
    """
    if options is None:
        options = FingerprintConfig()

    discriminator = options.custom(request) if options.custom is not None else None

    return compute_fingerprint(
        method=request.method,
        path=request.path,
        body=request.body,
        query_params=request.query_params,
        include_query=options.include_query,
        discriminator=discriminator,
        max_body_bytes=options.max_body_bytes,
    )


def canonicalize_body(body: Any) -> str:
    """Return the canonical text form of a request body.

    Examples:
        >>> canonicalize_body({"b": [{"y": 1, "x": " s "}], "a": None})
        '{"a":null,"b":[{"x":"s","y":1}]}'
        >>> canonicalize_body(None)
        ''
    """
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body).decode("utf-8", errors="replace")
    if isinstance(body, (Mapping, list, tuple)):
        return _dumps(_sort_deep(body))
    if isinstance(body, (bool, int, float)):
        return _dumps(body)
    return str(body)


def canonicalize_query(query_params: Mapping[str, Any]) -> str:
    """Encode query parameters sorted by name as compact JSON pairs.

    Examples:
        >>> canonicalize_query({"b": "2", "a": ["1", "3"]})
        '[["a",["1","3"]],["b","2"]]'
    """
    entries = [[name, _stringify_query_value(value)] for name, value in query_params.items()]
    entries.sort(key=lambda entry: entry[0])
    return _dumps(entries)


def _canonicalize_path(path: str) -> str:
    path_only = (path or "/").split("?", 1)[0]
    return path_only or "/"


def _stringify_query_value(value: Any) -> str | list[str]:
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return str(value)


def _sort_deep(value: Any) -> Any:
    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for key in sorted(value, key=str):
            member = value[key]
            out[str(key)] = member.strip() if isinstance(member, str) else _sort_deep(member)
        return out
    if isinstance(value, (list, tuple)):
        return [_sort_deep(item) for item in value]
    return value


def _dumps(value: Any) -> str:
    # default=str stringifies scalars JSON has no encoding for (Decimal, datetime, UUID)
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def _escape_part(part: bytes) -> bytes:
    for raw, escaped in _ESCAPES:
        part = part.replace(raw, escaped)
    return part
