"""
Escalation Engine Configuration.

Pydantic Settings v2 — loads from .env, environment variables.

Only process-level settings live here. Escalation behavior (channel
toggles, reminder caps, quorum) is stored in the database and re-read on
every run, see escalation_engine.escalation.settings_store.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ──────────────────────────────────────────────────────
    app_name: str = "Escalation Engine"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # ── API ───────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8010, alias="API_PORT")
    api_prefix: str = "/api/v1"
    allowed_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        alias="CORS_ORIGINS",
    )

    # ── Database ─────────────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite+aiosqlite:///./escalation.db",
        alias="DATABASE_URL",
    )
    db_pool_size: int = Field(default=10, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=20, alias="DB_MAX_OVERFLOW")
    db_pool_recycle: int = Field(default=3600, alias="DB_POOL_RECYCLE")

    # ── Auth ──────────────────────────────────────────────────────────────
    jwt_secret: str = Field(
        default="dev-jwt-secret-change-in-production",
        alias="JWT_SECRET",
    )
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = Field(default=480, alias="JWT_EXPIRE_MINUTES")
    trigger_api_key: str = Field(
        default="", alias="TRIGGER_API_KEY",
        description="Shared secret for cron trigger endpoints (empty = open)",
    )

    # ── Escalation ────────────────────────────────────────────────────────
    escalation_timezone: str = Field(default="America/Sao_Paulo", alias="ESCALATION_TIMEZONE")
    deadline_check_interval_minutes: int = Field(default=15, alias="DEADLINE_CHECK_INTERVAL_MINUTES")
    reminder_cron_hour: int = Field(default=9, alias="REMINDER_CRON_HOUR")
    quorum_check_interval_minutes: int = Field(default=60, alias="QUORUM_CHECK_INTERVAL_MINUTES")

    # ── Messaging gateway (Z-API) ─────────────────────────────────────────
    zapi_base_url: str = Field(default="https://api.z-api.io", alias="ZAPI_BASE_URL")
    zapi_instance_id: str = Field(default="", alias="ZAPI_INSTANCE_ID")
    zapi_token: str = Field(default="", alias="ZAPI_TOKEN")
    zapi_client_token: str = Field(default="", alias="ZAPI_CLIENT_TOKEN")
    zapi_timeout_seconds: float = Field(default=10.0, alias="ZAPI_TIMEOUT_SECONDS")

    # ── Compliance gate ───────────────────────────────────────────────────
    compliance_exempt_paths: List[str] = Field(
        default=["/mandatory-content", "/auth", "/forgot-password"],
        alias="COMPLIANCE_EXEMPT_PATHS",
    )
    fulfillment_path_template: str = Field(
        default="/mandatory-content/{obligation_id}",
        alias="FULFILLMENT_PATH_TEMPLATE",
    )

    # ── Operational ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="console", alias="LOG_FORMAT")

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses an async driver."""
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    @property
    def gateway_configured(self) -> bool:
        return bool(self.zapi_instance_id and self.zapi_token)


settings = Settings()
