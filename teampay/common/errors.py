"""Failure taxonomy for payment submissions.

Every `PaymentError` carries a message that is safe to show to a payer.
Processor diagnostics live on `ProcessorError` attributes and are only logged.
"""


class PaymentError(Exception):
    """Base class for failures that end one submission attempt."""

    reason = "payment_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PaymentValidationError(PaymentError):
    reason = "validation"


class RateLimitExceeded(PaymentError):
    reason = "rate_limited"

    def __init__(self, retry_after: int) -> None:
        super().__init__(f"Too many payment attempts. Please wait {retry_after} seconds and try again.")
        self.retry_after = retry_after


class CollectionStateError(PaymentError):
    reason = "collection_state"


class DuplicateInFlightError(PaymentError):
    reason = "duplicate_in_flight"

    def __init__(self) -> None:
        super().__init__(
            "A payment with these details is still processing. Please wait a moment before trying again."
        )


class LedgerWriteError(PaymentError):
    reason = "ledger_write"

    def __init__(self) -> None:
        super().__init__("Failed to initialize payment. Please try again.")


class ProcessorError(Exception):
    """Failure reported by (or on the way to) the payment processor."""

    def __init__(
        self,
        status_code: int | None = None,
        error_code: str | None = None,
        category: str | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(detail or error_code or f"processor error status={status_code}")
        self.status_code = status_code
        self.error_code = error_code
        self.category = category
        self.detail = detail
