"""Structured logging configuration for idempotency coordination.

This module provides structured logging using structlog. Every event name is
namespaced (``idempotency.*`` for coordination decisions, ``cleanup.*`` for
the background sweep) and carries the idempotency key where one exists.

Cached payloads must never reach the logs. ``drop_payloads`` runs before any
renderer and removes body-like fields a caller passes by mistake.

Examples:
    Configure logging::

        from idempotency_coordinator.observability.logging import configure_logging

        configure_logging(level="INFO", json_output=True)

    Use the logger::

        from idempotency_coordinator.observability.logging import get_logger

        logger = get_logger(__name__)
        logger.info("idempotency.replayed", key="payment-123", http_status=201)

    Output (JSON)::

        {
            "event": "idempotency.replayed",
            "key": "payment-123",
            "http_status": 201,
            "level": "info",
            "timestamp": "2024-01-01T00:00:00.000000Z"
        }
"""

import logging
import sys
from typing import Any

import structlog
from structlog.typing import EventDict, WrappedLogger

PAYLOAD_FIELDS = frozenset({"body", "body_b64", "request_body", "response_body", "payload"})

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def drop_payloads(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    """Remove request and response bodies from a log event."""
    for field in PAYLOAD_FIELDS.intersection(event_dict):
        del event_dict[field]
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Configure structured logging for the application.

    Call once at startup, before the first coordinated request.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, emit JSON logs; if False, use console format

    Raises:
        ValueError: If level is not a known log level
    """
    level_name = level.upper()
    if level_name not in LEVELS:
        raise ValueError(f"level must be one of {', '.join(LEVELS)}, got {level!r}")
    numeric_level = getattr(logging, level_name)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        drop_payloads,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Get a structured logger named ``name`` (typically ``__name__``)."""
    return structlog.get_logger(name)
