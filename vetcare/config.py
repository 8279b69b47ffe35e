"""Application configuration."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="VetCare Appointments", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./vetcare.db",
        alias="DATABASE_URL",
    )

    # Redis
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")

    # Locking
    lock_backend: str = Field(
        default="local",
        alias="LOCK_BACKEND",
        description="'local' for a single process, 'redis' for several workers",
    )
    lock_timeout_seconds: float = Field(default=5.0, gt=0, alias="LOCK_TIMEOUT_SECONDS")
    # Redis lock auto-expiry if a worker dies while holding it
    lock_lease_seconds: float = Field(default=30.0, gt=0, alias="LOCK_LEASE_SECONDS")

    # Scheduling
    slot_minutes: int = Field(default=30, gt=0, le=240, alias="SLOT_MINUTES")
    workday_start: str = Field(default="09:00", alias="WORKDAY_START")
    workday_end: str = Field(default="17:00", alias="WORKDAY_END")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    # Notifications
    # Upper bound on the post-commit notifier call
    notify_timeout_seconds: float = Field(default=5.0, gt=0, alias="NOTIFY_TIMEOUT_SECONDS")

    @property
    def async_database_url(self) -> str:
        """Get the database URL with an async driver."""
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
