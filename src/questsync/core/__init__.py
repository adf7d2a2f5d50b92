"""Core module providing configuration, logging, and base exceptions.

Exports:
    Exceptions:
        QuestSyncError: Base exception for all application errors.
        ConfigurationError, GameEngineError, OracleError, SyncError,
        PersistenceError and their subclasses.

    Configuration:
        Settings: Main application settings class.
        get_settings: Get the settings singleton.
        clear_settings_cache: Force settings reload.

    Logging:
        configure_logging: Set up application logging.
        get_logger: Get a configured logger instance.
        bind_context: Add context to log entries.
        clear_context: Clear logging context.
"""

from __future__ import annotations

from questsync.core.config import (
    GameSettings,
    OracleSettings,
    Settings,
    StorageSettings,
    clear_settings_cache,
    get_settings,
)
from questsync.core.exceptions import (
    TRANSIENT_ORACLE_ERRORS,
    ConfigurationError,
    GameEngineError,
    InterruptPendingError,
    InvalidGameStateError,
    OracleConnectionError,
    OracleError,
    OracleRateLimitError,
    OracleResponseError,
    OracleUnavailableError,
    PersistenceError,
    QuestSyncError,
    SessionNotFoundError,
    SessionStoreError,
    StateLoadError,
    SyncAuthorityError,
    SyncError,
    ToolExecutionError,
)
from questsync.core.logging import (
    bind_context,
    clear_context,
    configure_from_settings,
    configure_logging,
    get_logger,
)


__all__ = [
    # Base exception
    "QuestSyncError",
    # Exceptions
    "ConfigurationError",
    "GameEngineError",
    "InvalidGameStateError",
    "InterruptPendingError",
    "ToolExecutionError",
    "OracleError",
    "OracleConnectionError",
    "OracleResponseError",
    "OracleRateLimitError",
    "OracleUnavailableError",
    "TRANSIENT_ORACLE_ERRORS",
    "SyncError",
    "SessionStoreError",
    "SessionNotFoundError",
    "SyncAuthorityError",
    "PersistenceError",
    "StateLoadError",
    # Configuration
    "Settings",
    "OracleSettings",
    "GameSettings",
    "StorageSettings",
    "get_settings",
    "clear_settings_cache",
    # Logging
    "configure_logging",
    "configure_from_settings",
    "get_logger",
    "bind_context",
    "clear_context",
]
