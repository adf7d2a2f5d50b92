"""Tests for configuration management."""

from __future__ import annotations

from pathlib import Path

import pytest

from questsync.core.config import (
    GameSettings,
    OracleSettings,
    Settings,
    StorageSettings,
    clear_settings_cache,
    get_settings,
)
from questsync.core.exceptions import ConfigurationError


class TestOracleSettings:
    """Tests for OracleSettings configuration."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test default model and retry values."""
        monkeypatch.delenv("QUESTSYNC_ORACLE_API_KEY", raising=False)
        settings = OracleSettings(_env_file=None)
        assert settings.model == "gpt-4o"
        assert settings.max_attempts == 3
        assert settings.initial_retry_delay == 2.0
        assert not settings.has_credentials

    def test_api_key_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the API key is read as a secret."""
        monkeypatch.setenv("QUESTSYNC_ORACLE_API_KEY", "sk-test")
        settings = OracleSettings(_env_file=None)
        assert settings.has_credentials
        assert settings.api_key is not None
        assert settings.api_key.get_secret_value() == "sk-test"
        assert "sk-test" not in repr(settings)

    def test_empty_api_key_is_not_credentials(self) -> None:
        """Test an empty key counts as missing."""
        settings = OracleSettings(api_key="", _env_file=None)
        assert not settings.has_credentials

    def test_retry_delay_validation(self) -> None:
        """Test initial delay cannot exceed the maximum."""
        with pytest.raises(ConfigurationError):
            OracleSettings(initial_retry_delay=10.0, max_retry_delay=1.0, _env_file=None)


class TestGameSettings:
    """Tests for GameSettings configuration."""

    def test_defaults(self) -> None:
        """Test turn bound and grid defaults."""
        settings = GameSettings(_env_file=None)
        assert settings.max_tool_rounds == 5
        assert settings.summary_interval == 10
        assert (settings.grid_cols, settings.grid_rows) == (20, 15)

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test environment overrides."""
        monkeypatch.setenv("QUESTSYNC_GAME_MAX_TOOL_ROUNDS", "3")
        assert GameSettings(_env_file=None).max_tool_rounds == 3


class TestStorageSettings:
    """Tests for StorageSettings configuration."""

    def test_custom_path(self, tmp_path: Path) -> None:
        """Test a custom database path."""
        settings = StorageSettings(database_path=tmp_path / "db.sqlite")
        assert settings.database_path == tmp_path / "db.sqlite"


class TestSettingsSingleton:
    """Tests for the cached settings accessor."""

    def test_cached(self) -> None:
        """Test get_settings returns the same instance."""
        assert get_settings() is get_settings()

    def test_clear_cache(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test clearing the cache reloads from the environment."""
        first = get_settings()
        monkeypatch.setenv("QUESTSYNC_LOG_LEVEL", "DEBUG")
        clear_settings_cache()
        second = get_settings()
        assert first is not second
        assert second.log_level == "DEBUG"

    def test_is_production(self) -> None:
        """Test production flag follows debug."""
        assert Settings(debug=False).is_production
        assert not Settings(debug=True).is_production
