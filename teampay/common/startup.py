"""Boot-time configuration checks and redacted config logging."""

from teampay.common.logging import logger


SECRET_MARKERS = ("key", "secret", "password", "token", "dsn")
SQUARE_ENVIRONMENTS = ("sandbox", "production")
EMAIL_FIELDS = ("resend_api_key", "from_email", "admin_email", "app_url")


class MissingConfigError(RuntimeError):
    """Raised when the payment core cannot start with the given settings."""

    def __init__(self, problems: list[str]) -> None:
        super().__init__(f"Missing or invalid configuration: {', '.join(problems)}")
        self.problems = problems


def redact(field: str, value) -> str:
    if value in (None, ""):
        return "<unset>"
    if any(marker in field.lower() for marker in SECRET_MARKERS):
        return "<redacted>"
    return str(value)


def check_payment_config(settings) -> list[str]:
    """Fail fast on unusable Square settings; return the email fields left blank.

    Email is optional: without it receipts and admin alerts are skipped, but
    charges still go through.
    """

    problems = []
    if not settings.square_access_token:
        problems.append("SQUARE_ACCESS_TOKEN")
    if settings.square_environment not in SQUARE_ENVIRONMENTS:
        problems.append('SQUARE_ENVIRONMENT (must be "sandbox" or "production")')
    if settings.square_environment == "production" and not settings.square_location_id:
        problems.append("SQUARE_LOCATION_ID")
    # Pending reservations are refreshed before each attempt, so the window
    # must outlast one attempt plus the longest backoff.
    heartbeat_gap = settings.square_timeout_seconds + settings.retry_max_delay_seconds
    if settings.idempotency_stale_seconds <= heartbeat_gap:
        problems.append(f"IDEMPOTENCY_STALE_SECONDS (must exceed {heartbeat_gap:g})")
    if problems:
        raise MissingConfigError(problems)

    missing_email = [field.upper() for field in EMAIL_FIELDS if not getattr(settings, field)]
    if missing_email:
        logger.warning("email settings missing, notifications will fail: %s", ", ".join(missing_email))
    return missing_email


def log_startup_config(settings, fields: list[str]) -> None:
    """Log selected settings with secret-like values redacted."""

    config = {"service": settings.service_name}
    for field in fields:
        config[field] = redact(field, getattr(settings, field, None))
    logger.info("startup_config=%s", config)
