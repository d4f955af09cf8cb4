"""Application configuration for the demo tools backend."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed runtime settings for the demo tool APIs."""

    # The repository uses one shared `.env` file for the bridge and this
    # backend; the bridge sends TOOL_API_TOKEN as its bearer token.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    BACKEND_PORT: int = Field(default=4002, ge=1, le=65535)
    TOOL_API_TOKEN: str = ""
    LOG_LEVEL: str = "info"
    DEMO_TIMEZONE: str = "Europe/Madrid"
    DEMO_CURRENCY: str = "EUR"


settings = Settings()
