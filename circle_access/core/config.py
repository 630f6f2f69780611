from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    DB_URL: str
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 5.0

    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_COOKIE_NAME: str = "access_token"

    PUBLIC_BASE_URL: str = "https://merocircle.app"
    ENVIRONMENT: str = "production"
    CRON_SECRET: str | None = None

    STREAM_API_KEY: str | None = None
    STREAM_API_SECRET: str | None = None
    STREAM_BASE_URL: str = Field(
        default="https://chat.stream-io-api.com",
        validation_alias=AliasChoices("STREAM_BASE_URL", "STREAM_API_URL"),
    )
    STREAM_TIMEOUT_SECONDS: float = 10.0
    STREAM_CHANNEL_OP_TIMEOUT_SECONDS: float = 15.0

    # Gateways that never push cancellation events; the expiry sweep owns them.
    EXPIRY_POLL_GATEWAYS: list[str] = ["esewa", "khalti"]
    SUBSCRIPTION_EXPIRY_ENABLED: bool = True
    SUBSCRIPTION_EXPIRY_INTERVAL_HOURS: int = 24
    SUBSCRIPTION_EXPIRY_INITIAL_DELAY_SECONDS: int = 60

    UNSUBSCRIBE_LOCK_TIMEOUT_SECONDS: int = 60
    # Signs the one-click unsubscribe links in notification emails.
    UNSUBSCRIBE_SECRET: str = "change-me"
    UNSUBSCRIBE_TOKEN_EXPIRE_DAYS: int = 30

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[1].parent / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()
