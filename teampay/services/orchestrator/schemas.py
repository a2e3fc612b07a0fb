"""Request/response schemas for payment submission."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from teampay.common.errors import PaymentError, RateLimitExceeded


class ChargeRequest(BaseModel):
    """Payment form payload.

    Fields are accepted loosely here; the orchestrator validates them after
    rate limiting so abusive callers are throttled before any parsing work.
    """

    model_config = ConfigDict(populate_by_name=True)

    source_id: str = Field(default="", alias="sourceId")
    collection_slug: str = Field(default="", alias="collectionSlug")
    amount: str = ""
    payer_email: str = Field(default="", alias="payerEmail")
    payer_name: str = Field(default="", alias="payerName")


class PaymentOut(BaseModel):
    """Charge record as returned to the payer."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    collection_id: str = Field(serialization_alias="collectionId")
    square_payment_id: str | None = Field(default=None, serialization_alias="squarePaymentId")
    amount: Decimal
    currency: str
    payer_email: str | None = Field(default=None, serialization_alias="payerEmail")
    payer_name: str | None = Field(default=None, serialization_alias="payerName")
    status: str
    created_at: datetime | None = Field(default=None, serialization_alias="createdAt")


class PaymentResult(BaseModel):
    """Outcome of one submission: either `success` or an `error` message."""

    success: bool = False
    payment: PaymentOut | None = None
    payment_id: str | None = Field(default=None, serialization_alias="paymentId")
    receipt_url: str | None = Field(default=None, serialization_alias="receiptUrl")
    is_duplicate: bool | None = Field(default=None, serialization_alias="isDuplicate")
    error: str | None = None
    rate_limit_exceeded: bool | None = Field(default=None, serialization_alias="rateLimitExceeded")
    retry_after: int | None = Field(default=None, exclude=True)

    @classmethod
    def failure(cls, message: str) -> "PaymentResult":
        return cls(error=message)

    @classmethod
    def from_error(cls, exc: PaymentError) -> "PaymentResult":
        if isinstance(exc, RateLimitExceeded):
            return cls(error=exc.message, rate_limit_exceeded=True, retry_after=exc.retry_after)
        return cls(error=exc.message)

    def to_response(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
