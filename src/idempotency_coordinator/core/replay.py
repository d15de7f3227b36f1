"""Response replay logic for idempotency coordination.

This module reconstructs responses from cached entries. The replay process:
1. Decodes the base64-encoded body
2. Filters cached headers through the replay policy (deny-list, then
   content-type, then the configured allow-list)
3. Adds the idempotency status headers (status ``cached``, replayed ``true``)

content-length is never copied; transports recompute it from the body.

Examples:
    Basic replay::

        from idempotency_coordinator.core.replay import replay_response

        response = replay_response(cached, "payment-123", ["location"])
        # response.status == cached.status
        # response.headers["Idempotency-Status"] == "cached"
        # response.headers["Idempotency-Replayed"] == "true"
"""

from collections.abc import Iterable

from idempotency_coordinator.models import CachedResponse, CoordinationStatus, HeaderMap
from idempotency_coordinator.utils.headers import add_status_headers, filter_replay_headers


class GuardedResponse:
    """A response produced by a handler, a replay, or a rejection.

    Attributes:
        status: HTTP status code
        headers: Response headers, values may be lists for repeated headers
        body: Response body as bytes
    """

    def __init__(self, status: int, headers: HeaderMap, body: bytes) -> None:
        self.status = status
        self.headers = headers
        self.body = body


def replay_response(
    cached: CachedResponse,
    key: str,
    allow_list: Iterable[str] | None = None,
) -> GuardedResponse:
    """Reconstruct a response from a cached entry.

    Args:
        cached: The cached response to replay
        key: The idempotency key for this request
        allow_list: Header names replayed besides content-type

    Returns:
        GuardedResponse marked as a replay

    Examples:
        >>> from idempotency_coordinator.models import CachedResponse
        >>> cached = CachedResponse.from_body(
        ...     201,
        ...     b'{"id": 1}',
        ...     {"content-type": "application/json", "set-cookie": "s=1"},
        ...     "a" * 64,
        ... )
        >>> response = replay_response(cached, "abc-123")
        >>> response.status, response.body
        (201, b'{"id": 1}')
        >>> "set-cookie" in response.headers
        False
    """
    headers = filter_replay_headers(cached.headers, allow_list)
    headers = add_status_headers(headers, key, CoordinationStatus.CACHED, replayed=True)

    return GuardedResponse(
        status=cached.status,
        headers=headers,
        body=cached.get_body_bytes(),
    )
