"""
Application Configuration - Pydantic Settings for type-safe config.

FAIL FAST - Critical config is validated at startup.
"""

import sys
from decimal import Decimal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 20
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Tokenhub Settlement API"
    api_version: str = "0.1.0"
    api_description: str = "Token redemption and settlement service"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "tokenhub-api"

    # Settlement
    upstream_timeout_seconds: float = 60.0
    upstream_user_agent: str = "Tokenhub-Settlement/1.0"
    # Regular tokens are charged per unit unless this is set
    price_regular_tokens_by_value: bool = False

    # Refunds
    refund_window_minutes: int = 60
    refund_workflow_url: str = ""
    refund_workflow_timeout_seconds: float = 30.0

    # Batched credential lookup
    credential_lookup_url: str = ""
    credential_lookup_client_id: str = ""
    credential_lookup_product_name: str = "GET-OAUTH2-TOKEN"
    lookup_concurrency: int = 10
    lookup_timeout_seconds: float = 75.0
    lookup_max_items: int = 100

    # Inbox reading
    inbox_token_url: str = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
    inbox_messages_url: str = (
        "https://graph.microsoft.com/v1.0/me/mailFolders/inbox/messages"
        "?$top=50&$orderby=receivedDateTime desc"
    )
    inbox_scope: str = "https://graph.microsoft.com/.default offline_access"
    inbox_allowed_products: str = "HOTMAIL-NEW-LIVE-1-12H,OUTLOOK-NEW-LIVE-1-12H"
    inbox_max_items: int = 10
    inbox_timeout_seconds: float = 30.0

    # Scheduled sweeps
    sweeps_enabled: bool = False
    refund_sweep_interval_seconds: int = 300
    quantity_sync_interval_seconds: int = 600
    restock_interval_seconds: int = 300
    # Price sync rewrites products.value; off unless explicitly enabled
    price_sync_enabled: bool = False
    price_sync_interval_seconds: int = 3600
    price_sync_exchange_rate: Decimal = Decimal("26200")  # source currency units per credit
    price_sync_default_value: Decimal = Decimal("1")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.lookup_concurrency < 1:
            errors.append("LOOKUP_CONCURRENCY must be at least 1")

        if self.refund_window_minutes < 0:
            errors.append("REFUND_WINDOW_MINUTES cannot be negative")

        if self.price_sync_exchange_rate <= 0:
            errors.append("PRICE_SYNC_EXCHANGE_RATE must be positive")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url

    @property
    def inbox_allowed_product_names(self) -> list[str]:
        """Product names whose transactions may be used for inbox reading."""
        return [name.strip() for name in self.inbox_allowed_products.split(",") if name.strip()]


# Global settings instance - validates at import time
settings = Settings()
