"""
Application Configuration - Pydantic Settings for type-safe config.

A missing DATABASE_URL is allowed: the dashboard then runs unconfigured and
every report renders empty. Malformed values still FAIL FAST at startup.
"""

import re
import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_SCHEMA_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ConfigurationError(Exception):
    """Raised when configuration is present but invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - empty means "not configured" (fail-open reads)
    database_url: str = ""
    db_schema: str = "public"  # staging uses e.g. DB_SCHEMA=test
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "ViveBien Admin Dashboard"
    api_version: str = "0.1.0"
    api_description: str = "Operator dashboard for the ViveBien WhatsApp health companion"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "vivebien-admin-dashboard"

    # Subscription Configuration
    subscription_plan: str = "premium_monthly"
    subscription_monthly_allowance: int = 50
    subscription_default_extension_days: int = 30
    subscription_strict_transitions: bool = False

    # Credit balance warning thresholds
    credits_low_threshold: int = 10
    credits_critical_threshold: int = 5

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate configuration that is present but malformed.

        An empty DATABASE_URL is not an error; it switches the dashboard into
        its unconfigured mode.
        """
        errors: list[str] = []

        if self.database_url and not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not _SCHEMA_NAME.match(self.db_schema):
            errors.append(f"DB_SCHEMA must be a plain identifier, got: {self.db_schema!r}")

        if self.credits_critical_threshold > self.credits_low_threshold:
            errors.append("CREDITS_CRITICAL_THRESHOLD must not exceed CREDITS_LOW_THRESHOLD")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CONFIGURATION ERROR - APPLICATION CANNOT START",
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
    def database_configured(self) -> bool:
        """Whether a database connection string was supplied."""
        return bool(self.database_url)

    @property
    def async_database_url(self) -> str:
        """Database URL rewritten for the asyncpg driver."""
        url = self.database_url
        for prefix in ("postgresql+asyncpg://", "postgresql://", "postgres://"):
            if url.startswith(prefix):
                return "postgresql+asyncpg://" + url[len(prefix) :]
        return url

    @property
    def schema_translate_map(self) -> dict[str | None, str] | None:
        """Route unqualified tables to DB_SCHEMA unless it is the default schema."""
        if self.db_schema == "public":
            return None
        return {None: self.db_schema}


# Global settings instance - validates at import time
settings = Settings()
