# src/nexustrack/config.py
"""
Application settings, loaded from the environment and an optional `.env` file.

The upstream API key is deliberately optional here: the subscription manager
refuses to start without it (see `SubscriptionManager.__init__`) so the web
surface can still report a useful status instead of crashing on import.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment / DB
    ENV: str = Field(default="dev")
    DATABASE_URL: str = Field(default="sqlite:///./nexustrack.db")

    # Nexus Mods (upstream)
    NEXUS_API_KEY: str | None = None
    NEXUS_API_URL: str = "https://api.nexusmods.com/v2/graphql"
    NEXUS_V1_URL: str = "https://api.nexusmods.com/v1"
    NEXUS_PAGE_SIZE: int = Field(default=50, ge=1, le=50)
    NEXUS_MAX_PAGES: int = Field(default=20, ge=1)
    NEXUS_TIMEOUT: float = 20.0

    # Discord (destination)
    DISCORD_BOT_TOKEN: str | None = None
    DISCORD_API_URL: str = "https://discord.com/api/v10"
    DISCORD_TIMEOUT: float = 10.0
    WEBHOOK_NAME: str = "Nexus Mods Updates"

    # Polling
    POLL_INTERVAL_SECONDS: int = Field(default=600, ge=10)
    FIRST_POLL_DELAY_SECONDS: int = Field(default=90, ge=0)
    MAX_ITEM_ERRORS: int = Field(default=10, ge=1)
    UNREACHABLE_RETENTION_DAYS: int = Field(default=7, ge=0)

    # API / Security
    API_KEY: str | None = None


settings = Settings()
