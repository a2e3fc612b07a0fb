"""HTTP surface: status codes, rate-limit headers, and response shape."""

import pytest
from fastapi.testclient import TestClient

from teampay.common.rate_limit import RateLimiter
from teampay.services.api_gateway import main

from conftest import FakeSquare


@pytest.fixture
def client(monkeypatch, make_orchestrator, collection):
    monkeypatch.setattr(main, "orchestrator", make_orchestrator(FakeSquare()))
    monkeypatch.setattr(main, "rate_limiters", {"api": RateLimiter(), "payment": RateLimiter()})
    return TestClient(main.app)


def payload(**overrides):
    body = {
        "sourceId": "cnon:card-nonce-ok",
        "collectionSlug": "spring-fees",
        "amount": "25.00",
        "payerEmail": "payer@example.com",
        "payerName": "Alex Player",
    }
    body.update(overrides)
    return body


def test_successful_payment_returns_200(client):
    resp = client.post("/payments", json=payload(), headers={"x-correlation-id": "corr-1"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["paymentId"].startswith("sq_")
    assert body["payment"]["payerEmail"] == "payer@example.com"
    assert "isDuplicate" not in body


def test_repeat_submission_returns_original_charge(client):
    first = client.post("/payments", json=payload()).json()
    second = client.post("/payments", json=payload()).json()

    assert second["success"] is True
    assert second["isDuplicate"] is True
    assert second["paymentId"] == first["paymentId"]


def test_validation_failure_returns_400(client):
    resp = client.post("/payments", json=payload(amount="0.50"))

    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Minimum payment amount is $1.00"}


def test_rate_limited_submission_returns_429(monkeypatch, client, make_orchestrator, test_settings):
    strict = test_settings.model_copy(update={"payment_ip_limit": 1})
    monkeypatch.setattr(main, "orchestrator", make_orchestrator(FakeSquare(), settings=strict))

    client.post("/payments", json=payload(), headers={"x-forwarded-for": "203.0.113.7, 10.0.0.1"})
    resp = client.post(
        "/payments",
        json=payload(payerEmail="other@example.com"),
        headers={"x-forwarded-for": "203.0.113.7"},
    )

    assert resp.status_code == 429
    assert int(resp.headers["Retry-After"]) >= 1
    assert resp.json()["rateLimitExceeded"] is True


def test_get_payment_round_trip(client):
    created = client.post("/payments", json=payload()).json()

    resp = client.get(f"/payments/{created['payment']['id']}")

    assert resp.status_code == 200
    assert resp.json()["squarePaymentId"] == created["paymentId"]
    assert resp.headers["X-RateLimit-Limit"] == str(main.settings.api_rate_limit_per_minute)


def test_get_unknown_payment_returns_404(client):
    resp = client.get("/payments/does-not-exist")

    assert resp.status_code == 404
    assert "X-RateLimit-Remaining" in resp.headers


def test_get_payment_is_rate_limited(monkeypatch, client):
    monkeypatch.setattr(main.settings, "api_rate_limit_per_minute", 1)

    client.get("/payments/a")
    resp = client.get("/payments/b")

    assert resp.status_code == 429
    assert resp.headers["X-RateLimit-Remaining"] == "0"
    assert "Retry-After" in resp.headers


def test_health_and_metrics(client):
    assert client.get("/health").json() == {"ok": True}
    assert "http_requests_total" in client.get("/metrics").text
