"""Tests for the exception hierarchy."""

from __future__ import annotations

import pytest

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


class TestQuestSyncError:
    """Tests for the base QuestSyncError exception."""

    def test_basic_message(self) -> None:
        """Test exception with basic message."""
        exc = QuestSyncError("Test error message")
        assert exc.message == "Test error message"
        assert exc.details == {}
        assert str(exc) == "Test error message"

    def test_with_details(self) -> None:
        """Test exception with additional details."""
        exc = QuestSyncError("Test error", details={"key": "value", "count": 42})
        assert exc.details == {"key": "value", "count": 42}
        assert "key='value'" in str(exc)
        assert "count=42" in str(exc)

    def test_repr(self) -> None:
        """Test exception repr output."""
        repr_str = repr(QuestSyncError("Test", details={"x": 1}))
        assert "QuestSyncError" in repr_str
        assert "Test" in repr_str


class TestConfigurationError:
    """Tests for ConfigurationError."""

    def test_config_key(self) -> None:
        """Test the offending key lands in details."""
        exc = ConfigurationError("Missing key", config_key="oracle.api_key")
        assert exc.details["config_key"] == "oracle.api_key"


class TestEngineExceptions:
    """Tests for turn engine exceptions."""

    def test_invalid_state_context(self) -> None:
        """Test current and expected states are recorded."""
        exc = InvalidGameStateError(
            "Bad transition",
            current_state="client",
            expected_states=["solo", "host"],
        )
        assert exc.details["current_state"] == "client"
        assert exc.details["expected_states"] == ["solo", "host"]

    def test_interrupt_pending_is_state_error(self) -> None:
        """Test the overwrite guard is an invalid-state error."""
        assert issubclass(InterruptPendingError, InvalidGameStateError)
        assert issubclass(InterruptPendingError, GameEngineError)

    def test_tool_execution_error(self) -> None:
        """Test the tool name is recorded."""
        exc = ToolExecutionError("No", tool_name="request_roll")
        assert exc.details["tool_name"] == "request_roll"


class TestOracleExceptions:
    """Tests for oracle exceptions."""

    def test_model_and_provider(self) -> None:
        """Test model context is recorded."""
        exc = OracleResponseError("Boom", model="gpt-4o", provider="openai")
        assert exc.details == {"model": "gpt-4o", "provider": "openai"}

    def test_rate_limit_retry_after(self) -> None:
        """Test retry-after is kept."""
        exc = OracleRateLimitError("Slow down", retry_after_seconds=2.5)
        assert exc.details["retry_after_seconds"] == 2.5

    def test_rate_limit_without_retry_after(self) -> None:
        """Test retry-after is omitted when unknown."""
        exc = OracleRateLimitError("Slow down")
        assert "retry_after_seconds" not in exc.details

    @pytest.mark.parametrize(
        "exc_class",
        [OracleConnectionError, OracleResponseError, OracleRateLimitError, OracleUnavailableError],
    )
    def test_inherit_from_oracle_error(self, exc_class: type[OracleError]) -> None:
        """Test all oracle errors share a base."""
        assert issubclass(exc_class, OracleError)
        assert issubclass(exc_class, QuestSyncError)

    def test_only_rate_limit_and_unavailable_are_transient(self) -> None:
        """Test the retried set."""
        assert set(TRANSIENT_ORACLE_ERRORS) == {OracleRateLimitError, OracleUnavailableError}


class TestSyncExceptions:
    """Tests for relay exceptions."""

    @pytest.mark.parametrize("exc_class", [SessionStoreError, SessionNotFoundError, SyncAuthorityError])
    def test_session_id(self, exc_class: type[SyncError]) -> None:
        """Test the session id is recorded."""
        exc = exc_class("Relay problem", session_id="ABC1234")
        assert isinstance(exc, SyncError)
        assert exc.details["session_id"] == "ABC1234"


class TestPersistenceExceptions:
    """Tests for persistence exceptions."""

    def test_state_load_error(self) -> None:
        """Test load errors are persistence errors."""
        assert issubclass(StateLoadError, PersistenceError)
