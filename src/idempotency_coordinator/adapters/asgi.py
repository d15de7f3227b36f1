"""ASGI middleware adapter for FastAPI and Starlette applications.

This module wraps the coordination engine as ASGI middleware.

The middleware:
1. Converts Starlette requests to the internal Request format, decoding
   JSON bodies so fingerprints ignore key order and whitespace
2. Processes them through the coordination engine
3. Converts the resulting response back to a Starlette Response

Examples:
    FastAPI integration::

        from fastapi import FastAPI
        from idempotency_coordinator.adapters.asgi import ASGIIdempotencyMiddleware
        from idempotency_coordinator.config import IdempotencyConfig
        from idempotency_coordinator.storage.memory import MemoryStore

        app = FastAPI()

        app.add_middleware(
            ASGIIdempotencyMiddleware,
            store=MemoryStore(),
            config=IdempotencyConfig(replay={"header_allow_list": ["location"]}),
        )

        @app.post("/payments", status_code=201)
        async def create_payment(data: PaymentData):
            # This endpoint now runs at most once per idempotency key
            return {"status": "created"}
"""

import json
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import parse_qs

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response

from idempotency_coordinator.config import IdempotencyConfig
from idempotency_coordinator.core.engine import CoordinationEngine
from idempotency_coordinator.core.replay import GuardedResponse
from idempotency_coordinator.exceptions import StoreUnavailableError
from idempotency_coordinator.models import HeaderValue, Request
from idempotency_coordinator.storage.base import Store
from idempotency_coordinator.utils.headers import lowercase_headers


class ASGIIdempotencyMiddleware(BaseHTTPMiddleware):
    """ASGI middleware for idempotency coordination.

    Attributes:
        store: Store for idempotency records
        config: Configuration object
        engine: Coordination engine shared by all requests
    """

    def __init__(
        self,
        app: Any,
        store: Store,
        config: IdempotencyConfig | None = None,
    ) -> None:
        super().__init__(app)
        self.store = store
        self.config = config or IdempotencyConfig()
        self.engine = CoordinationEngine(store, self.config)

    async def dispatch(
        self,
        request: StarletteRequest,
        call_next: Callable[[StarletteRequest], Awaitable[Response]],
    ) -> Response:
        """Process an ASGI request with idempotency coordination.

        Args:
            request: The Starlette request object
            call_next: Function to call the next middleware/handler

        Returns:
            Starlette Response object
        """
        internal_request = await self._convert_request(request)

        async def handler(_req: Request) -> GuardedResponse:
            response = await call_next(request)

            body = b""
            if hasattr(response, "body_iterator"):
                async for chunk in response.body_iterator:
                    body += chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)
            else:
                body = bytes(getattr(response, "body", b""))

            return GuardedResponse(
                status=response.status_code,
                headers=lowercase_headers(response.headers.items()),
                body=body,
            )

        try:
            result = await self.engine.process(internal_request, handler)
        except StoreUnavailableError:
            return Response(
                content=json.dumps({"error": "Idempotency store unavailable"}),
                status_code=503,
                media_type="application/json",
                headers={"retry-after": "1"},
            )

        return self._convert_response(result.response)

    async def _convert_request(self, request: StarletteRequest) -> Request:
        """Convert a Starlette request to the internal Request format.

        JSON bodies are decoded; anything else is fingerprinted as raw bytes.
        """
        raw_body = await request.body()

        body: Any = raw_body
        content_type = request.headers.get("content-type", "")
        if raw_body and "json" in content_type.lower():
            try:
                body = json.loads(raw_body)
            except ValueError:
                body = raw_body

        query_params: dict[str, HeaderValue] = {}
        for name, values in parse_qs(request.url.query, keep_blank_values=True).items():
            query_params[name] = values[0] if len(values) == 1 else values

        return Request(
            method=request.method,
            path=request.url.path,
            query_params=query_params,
            headers=dict(request.headers.items()),
            body=body,
        )

    def _convert_response(self, response: GuardedResponse) -> Response:
        """Convert an internal response to a Starlette Response.

        content-length is recomputed by Starlette; repeated headers are
        appended one value at a time.
        """
        result = Response(content=response.body, status_code=response.status)

        for name, value in response.headers.items():
            if name.lower() == "content-length":
                continue
            values = value if isinstance(value, list) else [value]
            for item in values:
                result.headers.append(name, item)

        return result
