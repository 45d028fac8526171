"""guildbell configuration schema — YAML + Pydantic + env override."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from guildbell.core.cron.expressions import is_valid_timezone
from guildbell.core.cron.types import DEFAULT_TIMEZONE


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class SchedulerConfig(BaseModel):
    """Timer behaviour and the timezone used by reminders without one."""

    default_timezone: str = DEFAULT_TIMEZONE
    misfire_grace_s: int = 300
    sync_interval_s: int = Field(default=60, ge=0)  # 0 = no store polling

    @field_validator("default_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        if not is_valid_timezone(value):
            raise ValueError(f"unknown timezone: {value}")
        return value


class DiscordConfig(BaseModel):
    """Outbound Discord REST delivery."""

    token: str = ""
    api_base: str = "https://discord.com/api/v10"
    timeout_s: float = 30.0


class EventsConfig(BaseModel):
    """Local event discovery (events.*)."""

    provider: str = "mock"  # 'mock' | 'http'
    api_url: str = ""
    api_key: str = ""
    cache_ttl_s: int = 3600
    max_results: int = 10


class DatabaseConfig(BaseModel):
    path: str = "data/guildbell.db"


class LoggingConfig(BaseModel):
    level: str = "INFO"


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings — env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: env vars > .env > YAML (init kwargs) > defaults

    Env override examples:
        GUILDBELL_DISCORD__TOKEN=...
        GUILDBELL_DATABASE__PATH=data/prod.db
        GUILDBELL_SCHEDULER__DEFAULT_TIMEZONE=Europe/Istanbul
    """

    model_config = SettingsConfigDict(
        env_prefix="GUILDBELL_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        # YAML arrives as init kwargs; env must win over it.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @property
    def discord_enabled(self) -> bool:
        """True when a bot token is set."""
        return bool(self.discord.token)
