"""Prometheus metric definitions shared across the payment core."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


payment_requests_total = Counter("payment_requests_total", "Total payment submissions", ["service"])
payment_success_total = Counter("payment_success_total", "Total successful charges", ["service"])
payment_failure_total = Counter(
    "payment_failure_total",
    "Total rejected or failed submissions",
    ["service", "reason"],
)
payment_duplicates_total = Counter(
    "payment_duplicates_total",
    "Submissions short-circuited by the idempotency ledger",
    ["service", "outcome"],
)
payment_latency_seconds = Histogram("payment_latency_seconds", "Payment latency seconds", ["service"])
rate_limited_total = Counter("rate_limited_total", "Requests denied by a rate limiter", ["service", "scope"])
retries_total = Counter("retries_total", "Retry count", ["service", "dependency"])
notifications_sent_total = Counter(
    "notifications_sent_total",
    "Notification deliveries by kind and outcome",
    ["service", "kind", "outcome"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
