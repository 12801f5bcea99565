from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "StaffSync"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # Which half of the split domain this process serves.
    service_role: Literal["company", "user"] = "company"
    database_url: str = "postgresql+asyncpg://staffsync:staffsync@db:5432/staffsync"
    auto_create_schema: bool = False

    # Peer service (the user service for a company process, and vice versa).
    # Unset means an in-memory peer, which is only useful for local development.
    peer_base_url: str | None = None
    peer_timeout_seconds: float = 2.0
    peer_unavailable_policy: Literal["abort", "degrade"] = "abort"
    unlink_on_delete: Literal["deferred", "eager"] = "deferred"

    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:8000"]


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
