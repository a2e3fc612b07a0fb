"""Central environment-driven settings for the payment core.

Loaded once per process at the composition root (`api_gateway.main`). Services
receive the settings object through their constructors instead of importing
the module-level singleton.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "teampay-api"
    log_level: str = "INFO"
    postgres_dsn: str
    redis_url: str = "redis://redis:6379/0"
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    otel_enabled: bool = True

    square_access_token: str
    square_location_id: str = ""
    square_environment: str = "sandbox"
    square_version: str = "2024-12-18"
    square_token_prefixes: tuple[str, ...] = ("cnon:", "ccof:")
    square_timeout_seconds: float = 15.0
    currency: str = "USD"

    rate_limit_backend: str = "memory"
    payment_ip_limit: int = 10
    payment_email_limit: int = 5
    payment_fingerprint_limit: int = 3
    api_rate_limit_per_minute: int = 60

    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 10.0
    retry_backoff_multiplier: float = 2.0

    idempotency_stale_seconds: int = 30
    idempotency_bucket_seconds: int = 60

    min_payment_amount: float = 1.0
    max_payment_amount: float = 10_000.0
    target_overage_ratio: float = 1.10

    resend_api_key: str = ""
    from_email: str = "noreply@empirefootballgroup.com"
    admin_email: str = "admin@empirefootballgroup.com"
    # admin_id -> address, JSON in the environment.
    collection_admin_emails: dict[str, str] = {}
    support_email: str = "support@empirefootballgroup.com"
    app_url: str = "http://localhost:3000"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
