"""Demo FastAPI application with idempotency coordination.

Run with: python demo_app.py
Then try:
    curl -i -X POST localhost:8000/payments \
        -H 'Idempotency-Key: abc-123' -H 'X-Tenant-Id: t1' \
        -H 'Content-Type: application/json' -d '{"amount": 100}'
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import uvicorn
from fastapi import FastAPI, Response
from pydantic import BaseModel

from idempotency_coordinator.adapters.asgi import ASGIIdempotencyMiddleware
from idempotency_coordinator.config import IdempotencyConfig
from idempotency_coordinator.core.cleanup import start_cleanup_task, stop_cleanup_task
from idempotency_coordinator.models import Request
from idempotency_coordinator.observability.logging import configure_logging
from idempotency_coordinator.storage.memory import MemoryStore


def tenant_discriminator(request: Request) -> str | None:
    """Bind keys to the calling tenant so tenants cannot replay each other."""
    return request.headers.get("x-tenant-id")


store = MemoryStore()
config = IdempotencyConfig(
    ttl_seconds=86400,
    enabled_methods=["POST"],
    in_flight={"strategy": "wait", "wait_timeout_seconds": 3, "poll_interval_seconds": 0.1},
    fingerprint={"custom": tenant_discriminator},
    replay={"header_allow_list": ["location"]},
)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    configure_logging(level="INFO", json_output=False)
    cleanup = await start_cleanup_task(store, interval_seconds=300)
    yield
    await stop_cleanup_task(cleanup)


app = FastAPI(
    title="Idempotency Coordination Demo",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(ASGIIdempotencyMiddleware, store=store, config=config)


class PaymentRequest(BaseModel):
    amount: int
    currency: str = "USD"


class PaymentResponse(BaseModel):
    id: str
    status: str
    amount: int
    currency: str
    created_at: str


@app.get("/status")
async def get_status():
    """Health check - GET is not coordinated."""
    return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}


@app.post("/payments", response_model=PaymentResponse, status_code=201)
async def create_payment(payment: PaymentRequest, response: Response):
    """Create a payment. Retries with the same Idempotency-Key replay the result."""
    await asyncio.sleep(0.3)

    payment_id = f"pay_{uuid.uuid4().hex[:12]}"
    response.headers["Location"] = f"/payments/{payment_id}"

    return PaymentResponse(
        id=payment_id,
        status="success",
        amount=payment.amount,
        currency=payment.currency,
        created_at=datetime.now(UTC).isoformat(),
    )


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
