"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

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
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False  # Apply pending Alembic revisions in lifespan

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Guitar Dice API"
    api_version: str = "0.1.0"
    api_description: str = "Dice roll quotas, referrals and chat relay for Guitar Dice"
    environment: str = "development"  # development or production
    allowed_origins: str = ""  # Comma-separated extra origins accepted by CSRF checks
    forwarded_allow_ips: str = "127.0.0.1"  # Proxies whose X-Forwarded-* headers are trusted

    # Session cookie (shared by REST and the chat socket)
    session_secret_key: str = ""
    session_cookie_name: str = "guitar_dice_session"
    session_max_age: int = 7 * 24 * 3600
    session_https_only: bool = False

    # Quota ledger
    default_dice_rolls_limit: int = 5
    daily_ad_reward_limit: int = 5
    # Ad rewards stay off until a trusted ad attestation exists
    ad_rewards_enabled: bool = False

    # Chat
    chat_default_room: str = "public"
    chat_max_message_length: int = 1000
    chat_history_default_limit: int = 50
    chat_history_max_limit: int = 100
    chat_upload_dir: str = "uploads/chat"
    chat_upload_url_prefix: str = "/uploads/chat"
    chat_max_upload_bytes: int = 5 * 1024 * 1024
    chat_max_audio_seconds: int = 30

    # Rate limiting (window seconds / max requests)
    mutation_rate_window: int = 60
    mutation_rate_max: int = 20
    referral_rate_window: int = 300
    referral_rate_max: int = 5
    socket_connection_rate_window: int = 60
    socket_connection_rate_max: int = 10
    socket_event_rate_window: int = 60
    socket_event_rate_max: int = 30
    rate_limit_sweep_interval: int = 300

    # Admin maintenance endpoints (referral processing, ad resets)
    admin_api_token: str = ""

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # Stripe secret key (sk_test_... or sk_live_...)
    stripe_webhook_secret: str = ""  # Stripe webhook signing secret (whsec_...)

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "guitar-dice-api"
    trace_sample_rate: float = 1.0  # 1.0 = 100% sampling

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

        if not self.session_secret_key:
            errors.append("SESSION_SECRET_KEY is required but empty or missing")
        elif len(self.session_secret_key) < 32:
            errors.append("SESSION_SECRET_KEY must be at least 32 characters")

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
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def extra_allowed_origins(self) -> list[str]:
        """Configured origins accepted in addition to the request host."""
        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)
        return origins


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
