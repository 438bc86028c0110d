"""Application settings and configuration.

This module defines all configuration options for the dual-store sync engine.
Settings are loaded from environment variables with sensible defaults.
Feature flags and backend modes are read separately through
``dualstore.core.backend_mode`` so that they can be flipped per process
without touching this class.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Dualstore Sync", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Relational store. An absent URL means "not configured", not an error.
    database_url: str | None = Field(default=None, alias="DATABASE_URL")
    pool_size: int = Field(default=10, alias="PG_POOL_MAX")
    pool_max_overflow: int = Field(default=0, alias="PG_POOL_OVERFLOW")
    pool_timeout_seconds: float = Field(default=5.0, alias="PG_CONNECT_TIMEOUT_SECONDS")
    pool_recycle_seconds: int = Field(default=1800, alias="PG_POOL_RECYCLE_SECONDS")
    idle_timeout_seconds: float = Field(default=10.0, alias="PG_IDLE_TIMEOUT_SECONDS")
    ssl_mode: str | None = Field(default=None, alias="PGSSLMODE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Legacy tabular store (REST API)
    legacy_api_url: str = Field(default="https://api.airtable.com/v0", alias="LEGACY_API_URL")
    legacy_api_key: str | None = Field(default=None, alias="LEGACY_API_KEY")
    legacy_base_id: str | None = Field(default=None, alias="LEGACY_BASE_ID")
    legacy_http_timeout_seconds: float = Field(
        default=10.0,
        alias="LEGACY_HTTP_TIMEOUT_SECONDS",
    )

    # Outbox drain
    sync_batch_size: int = Field(default=20, alias="SYNC_BATCH_SIZE")
    sync_max_retries: int = Field(default=6, alias="SYNC_MAX_RETRIES")
    sync_retry_base_seconds: int = Field(default=5, alias="SYNC_RETRY_BASE_SECONDS")
    sync_retry_max_seconds: int = Field(default=3600, alias="SYNC_RETRY_MAX_SECONDS")
    sync_poll_interval_seconds: float = Field(default=2.0, alias="SYNC_POLL_INTERVAL_SECONDS")
    sync_claim_timeout_seconds: int = Field(default=300, alias="SYNC_CLAIM_TIMEOUT_SECONDS")
    sync_user_poll_seconds: float = Field(default=60.0, alias="SYNC_USER_FALLBACK_POLL_SECONDS")
    sync_full_poll_seconds: float = Field(default=120.0, alias="SYNC_FULL_POLL_SECONDS")

    # Shared secrets
    legacy_webhook_secret: str | None = Field(default=None, alias="LEGACY_WEBHOOK_SECRET")
    sync_admin_secret: str | None = Field(default=None, alias="SYNC_ADMIN_SECRET")
    inbound_sync_secret: str | None = Field(default=None, alias="LEGACY_INBOUND_SYNC_SECRET")

    # Notification scheduling and delivery
    notification_default_timezone: str = Field(
        default="Europe/Brussels",
        alias="NOTIFICATION_DEFAULT_TIMEZONE",
    )
    notification_batch_size: int = Field(default=20, alias="NOTIFICATION_BATCH_SIZE")
    notification_max_retries: int = Field(default=6, alias="NOTIFICATION_MAX_RETRIES")
    notification_retry_base_seconds: int = Field(
        default=5,
        alias="NOTIFICATION_RETRY_BASE_SECONDS",
    )
    notification_reconcile_seconds: int = Field(
        default=120,
        alias="NOTIFICATION_RECONCILE_SECONDS",
    )
    notification_lookahead_days: int = Field(default=14, alias="NOTIFICATION_LOOKAHEAD_DAYS")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def database_configured(self) -> bool:
        """Return True when a relational connection string is present."""
        return bool(self.database_url and self.database_url.strip())

    @property
    def database_url_sync(self) -> str | None:
        """Return a sync-compatible database URL for tooling such as Alembic."""
        url = self.database_url
        if url and url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def legacy_configured(self) -> bool:
        """Return True when the legacy REST API can be reached."""
        return bool(self.legacy_api_key and self.legacy_base_id)


settings = Settings()
