"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from decimal import Decimal

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Public frontend base, used for download and invoice links in e-mails.
    platform_url: str = "http://localhost:3000"
    # Public API base, used for token download links.
    api_base_url: str = "http://localhost:8000"
    currency: str = "EUR"
    cors_origins: str = ""
    # Comma-separated; X-Forwarded-For is honoured only from these hosts
    trusted_proxy_ips: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # PAYMENT PROCESSOR (Stripe)
    # ===========================================
    stripe_webhook_secret: str  # Required, no default
    stripe_webhook_tolerance_seconds: int = 300

    # ===========================================
    # SETTLEMENT
    # ===========================================
    # Charged amount vs. product price: absolute noise floor and relative hard limit.
    price_tolerance_abs: Decimal = Decimal("0.01")
    price_tolerance_ratio: Decimal = Decimal("0.10")
    # Metadata platform fee vs. tier fee: deviation above this flags the sale for review.
    platform_fee_review_tolerance: Decimal = Decimal("0.05")
    affiliate_clearing_days: int = 7

    # ===========================================
    # DOWNLOADS
    # ===========================================
    download_token_max_clicks: int = 3
    download_token_expiry_days: int = 30

    # ===========================================
    # INVOICES
    # ===========================================
    invoice_vat_rate: Decimal = Decimal("0.19")
    invoice_token_valid_days: int = 365
    invoice_number_prefix: str = "INV"

    # ===========================================
    # E-MAIL (Resend HTTP API)
    # ===========================================
    email_provider_api_key: str = ""  # Optional - empty disables sending
    email_api_url: str = "https://api.resend.com/emails"
    email_from: str = "Marketplace <noreply@example.com>"
    email_timeout: float = 10.0

    # ===========================================
    # WORKERS
    # ===========================================
    celery_task_retry_delay: int = 5
    celery_task_max_retries: int = 5
    celery_task_time_limit: int = 300
    # Settled sales still unconfirmed after the grace period get their side effects re-enqueued
    side_effect_sweep_grace_minutes: int = 15
    side_effect_sweep_lookback_hours: int = 48

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        """Get trusted proxy IPs as a set."""
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    @field_validator("price_tolerance_ratio", "invoice_vat_rate")
    @classmethod
    def validate_ratio(cls, v: Decimal) -> Decimal:
        """Ratios are fractions, not percentages."""
        if v < 0 or v >= 1:
            raise ValueError("must be a fraction in [0, 1)")
        return v

    @field_validator("stripe_webhook_secret")
    @classmethod
    def validate_webhook_secret(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("stripe_webhook_secret must not be empty")
        return v

    @field_validator("download_token_max_clicks")
    @classmethod
    def validate_max_clicks(cls, v: int) -> int:
        if v < 1:
            raise ValueError("download_token_max_clicks must be at least 1")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
