"""Thin async client for the Square Payments API."""

from dataclasses import dataclass

import httpx

from teampay.common.errors import ProcessorError
from teampay.common.logging import logger


PRODUCTION_BASE_URL = "https://connect.squareup.com"
SANDBOX_BASE_URL = "https://connect.squareupsandbox.com"


@dataclass(frozen=True)
class ProcessorCharge:
    """The parts of a Square payment the core keeps."""

    id: str
    status: str
    receipt_url: str | None = None


class SquareClient:
    """Creates card charges; every call carries the caller's idempotency key."""

    def __init__(
        self,
        access_token: str,
        location_id: str,
        environment: str = "sandbox",
        square_version: str = "2024-12-18",
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.location_id = location_id
        self.environment = environment
        base_url = PRODUCTION_BASE_URL if environment == "production" else SANDBOX_BASE_URL
        self.http = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.headers = {
            "Authorization": f"Bearer {access_token}",
            "Square-Version": square_version,
            "Content-Type": "application/json",
        }

    @classmethod
    def from_settings(cls, settings) -> "SquareClient":
        return cls(
            access_token=settings.square_access_token,
            location_id=settings.square_location_id,
            environment=settings.square_environment,
            square_version=settings.square_version,
            timeout=settings.square_timeout_seconds,
        )

    async def create_payment(
        self,
        source_id: str,
        idempotency_key: str,
        amount_cents: int,
        currency: str,
        buyer_email: str | None = None,
        note: str | None = None,
    ) -> ProcessorCharge:
        """Issue one `CreatePayment` call; raise `ProcessorError` on any failure."""

        body = {
            "source_id": source_id,
            "idempotency_key": idempotency_key,
            "amount_money": {"amount": amount_cents, "currency": currency},
        }
        if self.location_id:
            body["location_id"] = self.location_id
        if buyer_email:
            body["buyer_email_address"] = buyer_email
        if note:
            # Square caps notes at 500 characters.
            body["note"] = note[:500]

        try:
            resp = await self.http.post("/v2/payments", headers=self.headers, json=body)
        except httpx.HTTPError as exc:
            logger.warning("square transport error: %s", type(exc).__name__)
            raise ProcessorError(detail=f"transport error: {type(exc).__name__}") from exc

        if resp.status_code >= 400:
            raise self._error_from_response(resp)

        payment = resp.json().get("payment") or {}
        if not payment.get("id"):
            raise ProcessorError(status_code=resp.status_code, detail="payment missing from response")
        logger.info("square payment created status=%s", payment.get("status"))
        return ProcessorCharge(
            id=payment["id"],
            status=payment.get("status", "UNKNOWN"),
            receipt_url=payment.get("receipt_url"),
        )

    @staticmethod
    def _error_from_response(resp: httpx.Response) -> ProcessorError:
        try:
            errors = resp.json().get("errors") or []
        except ValueError:
            errors = []
        first = errors[0] if errors else {}
        return ProcessorError(
            status_code=resp.status_code,
            error_code=first.get("code"),
            category=first.get("category"),
            detail=first.get("detail"),
        )

    async def close(self) -> None:
        await self.http.aclose()
