"""Utility modules for idempotency coordination."""

from .headers import (
    DENIED_HEADERS,
    add_status_headers,
    filter_replay_headers,
    get_header_value,
    lowercase_headers,
)

__all__ = [
    "filter_replay_headers",
    "lowercase_headers",
    "add_status_headers",
    "get_header_value",
    "DENIED_HEADERS",
]
