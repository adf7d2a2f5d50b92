"""Configuration management for QuestSync.

This module provides centralized configuration management using pydantic-settings,
supporting environment variables, .env files, and runtime configuration overrides.
The oracle API key is handled as a SecretStr.

Example:
    >>> from questsync.core.config import get_settings
    >>> settings = get_settings()
    >>> settings.game.max_tool_rounds
    5

Environment Variables:
    QUESTSYNC_ORACLE_API_KEY: API key for the narrative agent
    QUESTSYNC_ORACLE_MODEL: Chat model used for narration
    QUESTSYNC_GAME_MAX_TOOL_ROUNDS: Auto-continuation bound per turn
    QUESTSYNC_GAME_SUMMARY_INTERVAL: Messages between story summaries
    QUESTSYNC_STORAGE_DATABASE_PATH: Path to the SQLite save database
    QUESTSYNC_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from questsync.core.constants import (
    DEFAULT_GRID_COLS,
    DEFAULT_GRID_ROWS,
    DEFAULT_MAX_TOOL_ROUNDS,
    DEFAULT_SUMMARY_INTERVAL,
)
from questsync.core.exceptions import ConfigurationError


class OracleSettings(BaseSettings):
    """Configuration for the narrative agent connection.

    Attributes:
        api_key: API key for the OpenAI-compatible endpoint.
        base_url: Optional alternative endpoint (e.g. an OpenRouter URL).
        model: Chat model used for narration and tool calling.
        summary_model: Cheaper model used for rolling story summaries.
        image_model: Image model used for location backgrounds.
        temperature: Sampling temperature for narration.
        max_attempts: Total attempts per oracle call, first try included.
        initial_retry_delay: Delay before the first retry, doubled each retry.
        max_retry_delay: Upper bound for a single retry delay.
        timeout_seconds: Per-request timeout.
    """

    model_config = SettingsConfigDict(
        env_prefix="QUESTSYNC_ORACLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_key: SecretStr | None = Field(
        default=None,
        description="API key for the narrative agent",
    )
    base_url: str | None = Field(
        default=None,
        description="Alternative OpenAI-compatible endpoint",
    )
    model: str = Field(
        default="gpt-4o",
        description="Narration model",
    )
    summary_model: str = Field(
        default="gpt-4o-mini",
        description="Story summary model",
    )
    image_model: str = Field(
        default="gpt-image-1",
        description="Location image model",
    )
    temperature: float = Field(
        default=0.9,
        ge=0.0,
        le=2.0,
        description="Narration sampling temperature",
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per oracle call",
    )
    initial_retry_delay: float = Field(
        default=2.0,
        ge=0.0,
        description="Seconds before the first retry",
    )
    max_retry_delay: float = Field(
        default=30.0,
        ge=0.0,
        description="Maximum seconds between retries",
    )
    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        le=300,
        description="API request timeout",
    )

    @model_validator(mode="after")
    def validate_retry_delays(self) -> "OracleSettings":
        """Ensure the initial retry delay does not exceed the maximum.

        Returns:
            Self if validation passes.

        Raises:
            ConfigurationError: If initial_retry_delay > max_retry_delay.
        """
        if self.initial_retry_delay > self.max_retry_delay:
            raise ConfigurationError(
                f"initial_retry_delay ({self.initial_retry_delay}) must not exceed "
                f"max_retry_delay ({self.max_retry_delay})",
                config_key="initial_retry_delay",
            )
        return self

    @property
    def has_credentials(self) -> bool:
        """Check whether an API key is configured."""
        return self.api_key is not None and bool(self.api_key.get_secret_value())


class GameSettings(BaseSettings):
    """Configuration for turn processing and the battle map.

    Attributes:
        max_tool_rounds: Tool-result batches sent back per turn before giving up.
        summary_interval: Transcript length modulus that triggers a summary.
        grid_cols: Battle map width in cells.
        grid_rows: Battle map height in cells.
        opening_prompt: Utterance sent (not echoed) to start a new adventure.
    """

    model_config = SettingsConfigDict(
        env_prefix="QUESTSYNC_GAME_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_tool_rounds: int = Field(
        default=DEFAULT_MAX_TOOL_ROUNDS,
        ge=1,
        le=20,
        description="Auto-continuation bound per turn",
    )
    summary_interval: int = Field(
        default=DEFAULT_SUMMARY_INTERVAL,
        ge=2,
        description="Messages between story summaries",
    )
    grid_cols: int = Field(default=DEFAULT_GRID_COLS, ge=1, description="Grid width")
    grid_rows: int = Field(default=DEFAULT_GRID_ROWS, ge=1, description="Grid height")
    opening_prompt: str = Field(
        default="Begin the adventure. Describe where I am and what is happening.",
        description="First utterance of a new adventure",
    )


class StorageSettings(BaseSettings):
    """Configuration for local save storage.

    Attributes:
        database_path: SQLite file for save slots. None uses the home directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="QUESTSYNC_STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_path: Path | None = Field(
        default=None,
        description="Path to the SQLite save database",
    )


class Settings(BaseSettings):
    """Main application settings aggregating all configuration domains.

    Attributes:
        app_name: Application name.
        app_version: Application version string.
        debug: Enable debug mode.
        log_level: Application logging level.
        json_logs: Emit JSON log lines instead of console output.
        oracle: Narrative agent settings.
        game: Turn engine and map settings.
        storage: Save storage settings.
    """

    model_config = SettingsConfigDict(
        env_prefix="QUESTSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    app_name: str = Field(default="QuestSync", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    json_logs: bool = Field(default=False, description="JSON log output")

    oracle: OracleSettings = Field(default_factory=OracleSettings)
    game: GameSettings = Field(default_factory=GameSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @property
    def is_production(self) -> bool:
        """Check if running in production mode.

        Returns:
            True if not in debug mode.
        """
        return not self.debug


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The application Settings instance.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    try:
        return Settings()
    except ConfigurationError:
        raise
    except Exception as exc:
        raise ConfigurationError(
            f"Failed to load application settings: {exc}",
            details={"original_error": str(exc)},
        ) from exc


def clear_settings_cache() -> None:
    """Clear the settings cache, forcing a reload on next access."""
    get_settings.cache_clear()


__all__ = [
    "OracleSettings",
    "GameSettings",
    "StorageSettings",
    "Settings",
    "get_settings",
    "clear_settings_cache",
]
