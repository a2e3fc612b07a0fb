"""Square error taxonomy: processor failures to payer-facing outcomes.

Error codes are the most specific signal and win over the HTTP status. Unknown
codes and statuses degrade to a generic, retryable message instead of leaking
processor detail.
"""

from dataclasses import dataclass

from teampay.common.logging import logger


@dataclass(frozen=True)
class ErrorClassification:
    message: str
    retryable: bool


GENERIC_FAILURE = ErrorClassification(
    "Payment processing failed. Please try again or contact support.", True
)

ERROR_CODE_TABLE: dict[str, ErrorClassification] = {
    "CARD_DECLINED": ErrorClassification(
        "Your card was declined. Please try a different payment method or contact your bank.", True
    ),
    "INSUFFICIENT_FUNDS": ErrorClassification(
        "Insufficient funds. Please try a different payment method.", True
    ),
    "CARD_EXPIRED": ErrorClassification(
        "Your card has expired. Please use a different payment method.", True
    ),
    "INVALID_CARD": ErrorClassification(
        "Invalid card information. Please check your card details and try again.", True
    ),
    "CVV_FAILURE": ErrorClassification("Invalid security code (CVV). Please check and try again.", True),
    "ADDRESS_VERIFICATION_FAILURE": ErrorClassification(
        "Address verification failed. Please check your billing address.", True
    ),
    "INVALID_EXPIRATION": ErrorClassification(
        "Invalid expiration date. Please check your card details.", True
    ),
    "GENERIC_DECLINE": ErrorClassification(
        "Payment was declined. Please try a different payment method.", True
    ),
    "PAN_FAILURE": ErrorClassification("Invalid card number. Please check and try again.", True),
    "ALLOWABLE_PIN_TRIES_EXCEEDED": ErrorClassification(
        "Too many PIN attempts. Please try again later or use a different card.", False
    ),
    "PAYMENT_LIMIT_EXCEEDED": ErrorClassification(
        "Payment limit exceeded. Please try a smaller amount or contact your bank.", True
    ),
    "CARD_NOT_SUPPORTED": ErrorClassification(
        "This card type is not supported. Please try a different payment method.", True
    ),
    "VERIFY_CVV": ErrorClassification("Please verify your security code (CVV) and try again.", True),
    "VERIFY_AVS": ErrorClassification("Please verify your billing address and try again.", True),
    "CARD_TOKEN_EXPIRED": ErrorClassification(
        "Payment session expired. Please refresh the page and try again.", False
    ),
    "CARD_TOKEN_USED": ErrorClassification("Payment already processed. Please refresh the page.", False),
    "AMOUNT_TOO_HIGH": ErrorClassification(
        "Payment amount is too high. Please try a smaller amount.", True
    ),
    "AMOUNT_TOO_LOW": ErrorClassification(
        "Payment amount is too low. Minimum amount is $1.00.", True
    ),
    "INVALID_REQUEST_ERROR": ErrorClassification(
        "Invalid payment request. Please refresh the page and try again.", False
    ),
    "RATE_LIMITED": ErrorClassification(
        "Too many payment attempts. Please wait a few minutes and try again.", False
    ),
    "UNAUTHORIZED": ErrorClassification(
        "Payment system authentication error. Please contact support.", False
    ),
    "FORBIDDEN": ErrorClassification("Payment not authorized. Please contact support.", False),
    "NOT_FOUND": ErrorClassification("Payment collection not found. Please contact support.", False),
}

_UNAVAILABLE = ErrorClassification(
    "Payment system temporarily unavailable. Please try again in a few minutes.", True
)

STATUS_CODE_TABLE: dict[int, ErrorClassification] = {
    400: ErrorClassification(
        "Invalid payment information. Please check your card details and try again.", True
    ),
    401: ERROR_CODE_TABLE["UNAUTHORIZED"],
    402: ERROR_CODE_TABLE["GENERIC_DECLINE"],
    403: ERROR_CODE_TABLE["FORBIDDEN"],
    404: ERROR_CODE_TABLE["NOT_FOUND"],
    409: ErrorClassification("Payment already processed or duplicate transaction detected.", False),
    422: ErrorClassification(
        "Invalid payment data. Please check your information and try again.", True
    ),
    # The gateway has its own cool-down for 429s; this layer does not retry them.
    429: ERROR_CODE_TABLE["RATE_LIMITED"],
    500: _UNAVAILABLE,
    502: _UNAVAILABLE,
    503: _UNAVAILABLE,
    504: _UNAVAILABLE,
}


def classify(error: BaseException) -> ErrorClassification:
    """Map any exception to a payer-facing message and a retry decision."""

    error_code = getattr(error, "error_code", None)
    status_code = getattr(error, "status_code", None)

    if error_code:
        return ERROR_CODE_TABLE.get(error_code, GENERIC_FAILURE)
    if status_code:
        return STATUS_CODE_TABLE.get(status_code, GENERIC_FAILURE)
    return GENERIC_FAILURE


def is_retryable_error(error: BaseException) -> bool:
    return classify(error).retryable


def log_processor_error(error: BaseException, context: str = "unknown") -> None:
    """Log processor diagnostics without tokens, card data, or free-text detail."""

    logger.error(
        "square_error context=%s status_code=%s error_code=%s category=%s",
        context,
        getattr(error, "status_code", None),
        getattr(error, "error_code", None),
        getattr(error, "category", None),
    )
