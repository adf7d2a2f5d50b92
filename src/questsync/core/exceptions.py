"""Custom exception hierarchy for QuestSync.

This module defines the exception hierarchy shared by every layer of the
application. All exceptions inherit from QuestSyncError, enabling unified
error handling at the application boundary while preserving domain-specific
context.

Example:
    >>> from questsync.core.exceptions import OracleRateLimitError
    >>> raise OracleRateLimitError("Too many requests", retry_after_seconds=2.0)
"""

from __future__ import annotations

from typing import Any


class QuestSyncError(Exception):
    """Base exception for all QuestSync errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary containing additional error context.
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        """Initialize the base exception.

        Args:
            message: Human-readable error description.
            details: Optional dictionary containing additional error context.
        """
        self.message = message
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the exception message with optional details.

        Returns:
            Formatted error message including any provided details.
        """
        if self.details:
            detail_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} [{detail_str}]"
        return self.message

    def __repr__(self) -> str:
        """Return a detailed string representation of the exception."""
        return f"{self.__class__.__name__}(message={self.message!r}, details={self.details!r})"


# =============================================================================
# Configuration
# =============================================================================


class ConfigurationError(QuestSyncError):
    """Raised when application configuration is invalid or incomplete.

    A missing oracle credential is reported through this class when a turn
    cannot start; it is never fatal to the whole process.
    """

    def __init__(
        self,
        message: str,
        *,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize configuration error with config key context.

        Args:
            message: Human-readable error description.
            config_key: The configuration key that caused the error.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if config_key:
            combined_details["config_key"] = config_key
        super().__init__(message, details=combined_details)


# =============================================================================
# Game Engine Domain Exceptions
# =============================================================================


class GameEngineError(QuestSyncError):
    """Base exception for turn engine, tool and roll errors."""


class InvalidGameStateError(GameEngineError):
    """Raised when a state transition violates the engine's invariants."""

    def __init__(
        self,
        message: str,
        *,
        current_state: str | None = None,
        expected_states: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize invalid game state error with state context.

        Args:
            message: Human-readable error description.
            current_state: The current invalid state identifier.
            expected_states: List of valid states that were expected.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if current_state:
            combined_details["current_state"] = current_state
        if expected_states:
            combined_details["expected_states"] = expected_states
        super().__init__(message, details=combined_details)


class InterruptPendingError(InvalidGameStateError):
    """Raised when a roll interrupt is captured while another is still pending.

    The turn engine never captures twice without a resolution in between, so
    this signals a logic error rather than a user mistake.
    """


class ToolExecutionError(GameEngineError):
    """Raised when a tool call is routed to the executor that it must not run."""

    def __init__(
        self,
        message: str,
        *,
        tool_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize tool execution error.

        Args:
            message: Human-readable error description.
            tool_name: Wire name of the offending tool.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if tool_name:
            combined_details["tool_name"] = tool_name
        super().__init__(message, details=combined_details)


# =============================================================================
# Narrative Oracle Exceptions
# =============================================================================


class OracleError(QuestSyncError):
    """Base exception for narrative-agent communication failures."""

    def __init__(
        self,
        message: str,
        *,
        model: str | None = None,
        provider: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize oracle error with model context.

        Args:
            message: Human-readable error description.
            model: Name of the model involved.
            provider: Name of the provider (e.g., 'openai').
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if model:
            combined_details["model"] = model
        if provider:
            combined_details["provider"] = provider
        super().__init__(message, details=combined_details)


class OracleConnectionError(OracleError):
    """Raised when the oracle cannot be reached (network, timeout, bad key)."""


class OracleResponseError(OracleError):
    """Raised when the oracle answers with an error or an unusable payload."""


class OracleRateLimitError(OracleError):
    """Raised when the oracle rejects a call because of rate limiting (HTTP 429)."""

    def __init__(
        self,
        message: str,
        *,
        retry_after_seconds: float | None = None,
        model: str | None = None,
        provider: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize rate limit error with retry context.

        Args:
            message: Human-readable error description.
            retry_after_seconds: Seconds to wait before retrying, if known.
            model: Name of the model involved.
            provider: Name of the provider.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if retry_after_seconds is not None:
            combined_details["retry_after_seconds"] = retry_after_seconds
        super().__init__(message, model=model, provider=provider, details=combined_details)


class OracleUnavailableError(OracleError):
    """Raised when the oracle service is temporarily unavailable (HTTP 503)."""


TRANSIENT_ORACLE_ERRORS: tuple[type[OracleError], ...] = (
    OracleRateLimitError,
    OracleUnavailableError,
)
"""Failure classes retried by the oracle retry wrapper. Nothing else is retried."""


# =============================================================================
# Multiplayer Relay Exceptions
# =============================================================================


class SyncError(QuestSyncError):
    """Base exception for multiplayer relay errors."""

    def __init__(
        self,
        message: str,
        *,
        session_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize sync error with session context.

        Args:
            message: Human-readable error description.
            session_id: Relay session identifier.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if session_id:
            combined_details["session_id"] = session_id
        super().__init__(message, details=combined_details)


class SessionStoreError(SyncError):
    """Raised when the relay store cannot complete a read or write."""


class SessionNotFoundError(SyncError):
    """Raised when joining a relay session that does not exist."""


class SyncAuthorityError(SyncError):
    """Raised when a participant attempts a relay write it does not own."""


# =============================================================================
# Persistence Exceptions
# =============================================================================


class PersistenceError(QuestSyncError):
    """Base exception for local save/load failures."""


class StateLoadError(PersistenceError):
    """Raised when a persisted document cannot be turned into a GameState.

    Loading is all-or-nothing: when this is raised, no part of the document
    has been applied to live state.
    """


__all__ = [
    "QuestSyncError",
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
]
