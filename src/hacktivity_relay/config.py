"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Hacktivity Relay, loading and validating environment variables at
startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class HackerOneSettings(BaseSettings):
    """HackerOne GraphQL feed settings."""

    model_config = SettingsConfigDict(
        env_prefix="HACKERONE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_key: SecretStr = Field(
        alias="HACKERONE_API_KEY",
        description="Bearer token for the HackerOne GraphQL API",
    )
    graphql_url: str = Field(
        default="https://hackerone.com/graphql",
        alias="HACKERONE_GRAPHQL_URL",
        description="HackerOne GraphQL endpoint",
    )
    page_size: int = Field(
        default=25,
        alias="HACKERONE_PAGE_SIZE",
        description="Number of reports requested per poll",
        ge=1,
        le=100,
    )
    timeout_seconds: float = Field(
        default=15.0,
        alias="HACKERONE_TIMEOUT_SECONDS",
        description="HTTP timeout for feed requests",
        gt=0,
    )

    @field_validator("graphql_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate GraphQL endpoint format."""
        if not v.startswith("https://"):
            raise ValueError("HACKERONE_GRAPHQL_URL must be an HTTPS endpoint")
        return v


class DiscordSettings(BaseSettings):
    """Discord bot settings."""

    model_config = SettingsConfigDict(
        env_prefix="DISCORD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    bot_token: SecretStr = Field(
        alias="DISCORD_BOT_TOKEN",
        description="Discord bot token used for the gateway and REST API",
    )
    api_base: str = Field(
        default="https://discord.com/api/v10",
        alias="DISCORD_API_BASE",
        description="Discord REST API base URL",
    )
    setup_command: str = Field(
        default=".setup",
        alias="DISCORD_SETUP_COMMAND",
        description="Message text that registers the monitoring channel",
        min_length=1,
    )


class StorageSettings(BaseSettings):
    """Persistence settings for the ledger and destination registry."""

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend: Literal["file", "redis"] = Field(
        default="file",
        alias="STORAGE_BACKEND",
        description="Where the ledger and channel registry are kept",
    )
    ledger_path: str = Field(
        default="log.txt",
        alias="STORAGE_LEDGER_PATH",
        description="Append-only file of relayed report IDs",
    )
    channel_path: str = Field(
        default="channel.txt",
        alias="STORAGE_CHANNEL_PATH",
        description="File holding the monitoring channel ID",
    )
    redis_url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string (redis backend only)",
    )
    redis_key_prefix: str = Field(
        default="hacktivity:",
        alias="REDIS_KEY_PREFIX",
        description="Prefix for all Redis keys",
    )

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class MonitorSettings(BaseSettings):
    """Polling and pacing settings for the dispatch loop."""

    model_config = SettingsConfigDict(
        env_prefix="MONITOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    poll_interval_seconds: float = Field(
        default=900.0,
        alias="MONITOR_POLL_INTERVAL_SECONDS",
        description="Seconds between feed polls",
        ge=1,
    )
    send_delay_seconds: float = Field(
        default=5.0,
        alias="MONITOR_SEND_DELAY_SECONDS",
        description="Pause between consecutive notifications",
        ge=0,
    )
    max_items_per_cycle: int = Field(
        default=25,
        alias="MONITOR_MAX_ITEMS_PER_CYCLE",
        description="Upper bound on notifications sent in one cycle",
        ge=1,
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from hacktivity_relay.config import get_settings

        settings = get_settings()
        print(settings.storage.ledger_path)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Nested configuration groups
    hackerone: HackerOneSettings = Field(default_factory=HackerOneSettings)
    discord: DiscordSettings = Field(default_factory=DiscordSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    health_port: int = Field(
        default=8080,
        alias="HEALTH_PORT",
        description="HTTP port for health and metrics endpoints (0 disables)",
        ge=0,
        le=65535,
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Log notifications instead of sending them",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "hackerone": {
                "graphql_url": self.hackerone.graphql_url,
                "api_key": "(set)" if self.hackerone.api_key.get_secret_value() else "(not set)",
                "page_size": str(self.hackerone.page_size),
            },
            "discord": {
                "bot_token": "(set)" if self.discord.bot_token.get_secret_value() else "(not set)",
                "setup_command": self.discord.setup_command,
            },
            "storage_backend": self.storage.backend,
            "storage_location": (
                self._redact_url(self.storage.redis_url)
                if self.storage.backend == "redis"
                else f"{self.storage.ledger_path}, {self.storage.channel_path}"
            ),
            "poll_interval": f"{self.monitor.poll_interval_seconds:g}s",
            "send_delay": f"{self.monitor.send_delay_seconds:g}s",
            "log_level": self.log_level,
            "health_port": str(self.health_port),
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
