"""Public entrypoint for payment submission.

Wires the payment core together (ledger, Square client, rate limiters,
notifier) and exposes it over HTTP. This module is the only place that reads
the process-wide settings singleton.
"""

from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse

from teampay.common.config import settings
from teampay.common.db import SessionLocal
from teampay.common.logging import configure_logging, logger, trace_id_ctx
from teampay.common.metrics import (
    http_request_duration_seconds,
    http_requests_total,
    metrics_response,
    payment_latency_seconds,
    rate_limited_total,
)
from teampay.common.rate_limit import build_rate_limiters
from teampay.common.startup import check_payment_config, log_startup_config
from teampay.common.tracing import instrument_app, setup_tracing
from teampay.services.ledger.service import IdempotencyLedger
from teampay.services.notification.service import NotificationDispatcher, ResendEmailSender
from teampay.services.orchestrator.schemas import ChargeRequest, PaymentOut
from teampay.services.orchestrator.service import PaymentOrchestrator
from teampay.services.provider_adapter.client import SquareClient

configure_logging()
if settings.otel_enabled:
    setup_tracing(settings.service_name, settings.otel_exporter_otlp_endpoint, settings.square_environment)
check_payment_config(settings)
log_startup_config(
    settings,
    [
        "postgres_dsn",
        "square_environment",
        "square_location_id",
        "square_access_token",
        "rate_limit_backend",
        "idempotency_stale_seconds",
        "resend_api_key",
        "admin_email",
    ],
)

rate_limiters = build_rate_limiters(settings)
square = SquareClient.from_settings(settings)
notifier = NotificationDispatcher(
    SessionLocal,
    ResendEmailSender(settings.resend_api_key, settings.from_email, settings.support_email),
    settings,
    service_name=settings.service_name,
)
orchestrator = PaymentOrchestrator(
    SessionLocal,
    IdempotencyLedger(
        SessionLocal,
        stale_after_seconds=settings.idempotency_stale_seconds,
        bucket_seconds=settings.idempotency_bucket_seconds,
    ),
    square,
    rate_limiters,
    notifier,
    settings,
    service_name=settings.service_name,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Flush detached notification tasks and close the Square client on shutdown."""

    yield
    await notifier.drain()
    await square.close()


app = FastAPI(title="TeamPay Payments", lifespan=lifespan)
if settings.otel_enabled:
    instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency for every HTTP call."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


def client_ip(request: Request) -> str:
    """Best-effort caller address behind Cloudflare or a reverse proxy."""

    headers = request.headers
    forwarded = headers.get("x-forwarded-for")
    candidates = [
        headers.get("cf-connecting-ip"),
        forwarded.split(",")[0].strip() if forwarded else None,
        headers.get("x-real-ip"),
        request.client.host if request.client else None,
    ]
    for candidate in candidates:
        if candidate:
            return candidate
    return "unknown"


@app.post("/payments")
async def create_payment(
    req: ChargeRequest,
    request: Request,
    x_correlation_id: str | None = Header(default=None),
):
    """Submit one card payment into a collection."""

    trace_id_ctx.set(x_correlation_id or str(uuid4()))
    with payment_latency_seconds.labels(service=settings.service_name).time():
        result = await orchestrator.submit(req, client_ip(request))

    if result.success:
        return JSONResponse(result.to_response())
    if result.rate_limit_exceeded:
        return JSONResponse(
            result.to_response(),
            status_code=429,
            headers={"Retry-After": str(result.retry_after or 60)},
        )
    logger.info("payment submission rejected")
    return JSONResponse(result.to_response(), status_code=400)


@app.get("/payments/{payment_id}")
def get_payment(payment_id: str, request: Request):
    """Fetch one charge record."""

    limit = settings.api_rate_limit_per_minute
    check = rate_limiters["api"].check(f"api:{client_ip(request)}", limit)
    headers = {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(check.remaining),
        "X-RateLimit-Reset": check.reset.isoformat(),
    }
    if not check.allowed:
        retry_after = check.retry_after_seconds()
        rate_limited_total.labels(service=settings.service_name, scope="api").inc()
        headers["Retry-After"] = str(retry_after)
        return JSONResponse(
            {
                "error": "Too many requests",
                "message": f"Rate limit exceeded. Try again in {retry_after} seconds.",
            },
            status_code=429,
            headers=headers,
        )

    payment = orchestrator.get_payment(payment_id)
    if payment is None:
        return JSONResponse({"error": "payment not found"}, status_code=404, headers=headers)
    body = PaymentOut.model_validate(payment).model_dump(mode="json", by_alias=True)
    return JSONResponse(body, headers=headers)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
