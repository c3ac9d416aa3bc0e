"""Application configuration."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    discord_bot_token: str = Field(default="", alias="DISCORD_BOT_TOKEN")
    database_url: str = Field(
        default="postgresql+asyncpg://localhost/requestbot",
        alias="DATABASE_URL",
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")
    # Both the expiration sweep and the schedule sweep run on this interval.
    sweep_interval_seconds: float = Field(default=10.0, alias="SWEEP_INTERVAL_SECONDS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    # Comma-separated guild ids to register commands in (empty = global commands).
    default_guilds: str = Field(default="", alias="DEFAULT_GUILDS")
    stats_default_days: int = Field(default=30, alias="STATS_DEFAULT_DAYS")

    @property
    def default_guild_ids(self) -> list[int]:
        return [int(g.strip()) for g in self.default_guilds.split(",") if g.strip()]


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings once per process."""

    return Settings()
