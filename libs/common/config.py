from functools import lru_cache
from typing import Literal
from urllib.parse import urlparse
import os

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Centralised configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=("env.example", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    app_env: Literal["local", "dev", "prod"] = Field(default="local", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    postgres_host: str = Field(default="localhost", alias="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, alias="POSTGRES_PORT")
    postgres_db: str = Field(default="flowershop", alias="POSTGRES_DB")
    postgres_user: str = Field(default="flowershop", alias="POSTGRES_USER")
    postgres_password: str = Field(default="flowershop", alias="POSTGRES_PASSWORD")
    postgres_ssl_mode: str = Field(default="prefer", alias="POSTGRES_SSL_MODE")

    @model_validator(mode="after")
    def parse_database_url(self):
        """Split a hosted DATABASE_URL into its components."""
        db_url = os.getenv("DATABASE_URL")
        if db_url and db_url.startswith("postgres"):
            parsed = urlparse(db_url)
            self.postgres_user = parsed.username or self.postgres_user
            self.postgres_password = parsed.password or self.postgres_password
            self.postgres_host = parsed.hostname or self.postgres_host
            self.postgres_port = parsed.port or self.postgres_port
            self.postgres_db = parsed.path.lstrip("/") if parsed.path else self.postgres_db
        return self

    # Call-verification provider (SMS.ru callcheck)
    sms_ru_api_id: str = Field(default="", alias="SMS_RU_API_ID")
    sms_ru_api_base: str = Field(default="https://sms.ru", alias="SMS_RU_API_BASE")
    call_webhook_secret: str | None = Field(default=None, alias="CALL_WEBHOOK_SECRET")

    verification_window_seconds: int = Field(default=300, alias="VERIFICATION_WINDOW_SECONDS")
    verification_poll_interval_seconds: float = Field(default=3.0, alias="VERIFICATION_POLL_INTERVAL_SECONDS")
    verification_cooldown_seconds: int = Field(default=600, alias="VERIFICATION_COOLDOWN_SECONDS")
    verification_attempts_limit: int = Field(default=5, alias="VERIFICATION_ATTEMPTS_LIMIT")
    verification_attempts_window_seconds: int = Field(
        default=24 * 60 * 60, alias="VERIFICATION_ATTEMPTS_WINDOW_SECONDS"
    )

    jwt_secret: str = Field(default="jwt-secret", alias="JWT_SECRET")
    jwt_alg: str = Field(default="HS256", alias="JWT_ALG")
    session_cookie_name: str = Field(default="user_phone", alias="SESSION_COOKIE_NAME")
    session_ttl_days: int = Field(default=30, alias="SESSION_TTL_DAYS")
    cookie_secure: bool = Field(default=False, alias="COOKIE_SECURE")

    admin_password: str | None = Field(default=None, alias="ADMIN_PASSWORD")
    service_key: str | None = Field(default=None, alias="SERVICE_KEY")
    admin_session_hours: int = Field(default=24, alias="ADMIN_SESSION_HOURS")

    bonus_expire_days: int = Field(default=180, alias="BONUS_EXPIRE_DAYS")
    bonus_expiry_skip_if_active: bool = Field(default=False, alias="BONUS_EXPIRY_SKIP_IF_ACTIVE")

    telegram_bot_token: str | None = Field(default=None, alias="TELEGRAM_BOT_TOKEN")
    telegram_chat_id: str | None = Field(default=None, alias="TELEGRAM_CHAT_ID")

    @property
    def database_url(self) -> str:
        """Get database URL, preferring DATABASE_URL if available."""
        db_url = os.getenv("DATABASE_URL")
        if db_url:
            # Convert postgres:// to postgresql+asyncpg:// for SQLAlchemy
            if db_url.startswith("postgres://"):
                return db_url.replace("postgres://", "postgresql+asyncpg://", 1)
            if db_url.startswith("postgresql://"):
                return db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
            return db_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def uses_postgres(self) -> bool:
        return self.database_url.startswith("postgresql")

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return AppSettings()  # type: ignore[arg-type]
