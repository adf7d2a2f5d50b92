"""Pytest configuration and shared fixtures.

This module provides common fixtures and fakes for the QuestSync test
suite. The narrative oracle is always replaced by a scripted fake; no test
touches the network.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from questsync.core.config import Settings, StorageSettings
from questsync.dm.oracle import OraclePayload, OracleReply
from questsync.dm.retry import RetryPolicy
from questsync.models.game_state import AbilityScores, Character, GameState, Message
from questsync.storage.database import Database
from questsync.sync.store import InMemorySessionStore


if TYPE_CHECKING:
    from collections.abc import Generator


# =============================================================================
# Fakes
# =============================================================================


class ScriptedSession:
    """OracleSession that plays back queued replies.

    Queued exceptions are raised instead of returned. When the script runs
    out, a plain narration reply is returned.
    """

    def __init__(self, replies: Sequence[OracleReply | Exception] = ()) -> None:
        self.replies: list[OracleReply | Exception] = list(replies)
        self.sent: list[Any] = []

    def queue(self, *replies: OracleReply | Exception) -> None:
        self.replies.extend(replies)

    async def send(self, payload: OraclePayload) -> OracleReply:
        self.sent.append(payload if isinstance(payload, str) else list(payload))
        if not self.replies:
            return OracleReply(text="The story continues.")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class ScriptedOracle:
    """NarrativeOracle fake handing out ScriptedSessions."""

    def __init__(self, *, configured: bool = True) -> None:
        self.configured = configured
        self.script: list[OracleReply | Exception] = []
        self.sessions: list[ScriptedSession] = []
        self.resumed_transcripts: list[list[Message]] = []
        self.summaries: list[str | Exception] = []
        self.summarize_calls: list[tuple[str, list[Message]]] = []

    def _open(self) -> ScriptedSession | None:
        if not self.configured:
            return None
        session = ScriptedSession(self.script)
        self.script = []
        self.sessions.append(session)
        return session

    def create_session(
        self,
        character: Character,
        prior_summary: str | None = None,
    ) -> ScriptedSession | None:
        return self._open()

    def resume_session(
        self,
        character: Character,
        transcript: Sequence[Message],
        prior_summary: str | None = None,
    ) -> ScriptedSession | None:
        self.resumed_transcripts.append(list(transcript))
        return self._open()

    async def summarize(self, current_summary: str, recent: Sequence[Message]) -> str:
        self.summarize_calls.append((current_summary, list(recent)))
        if self.summaries:
            outcome = self.summaries.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return f"Summary of {len(recent)} entries"


class FakeImageGenerator:
    """ImageGenerator fake returning a fixed URL."""

    def __init__(self, url: str | None = "https://img.example/scene.png") -> None:
        self.url = url
        self.calls: list[tuple[str, str]] = []

    async def generate_location(self, name: str, description: str) -> str | None:
        self.calls.append((name, description))
        return self.url


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Reset the settings cache before and after each test."""
    from questsync.core.config import clear_settings_cache

    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with a temporary save database and no API key."""
    return Settings(storage=StorageSettings(database_path=tmp_path / "saves.db"))


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Retry policy without waits."""
    return RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0)


# =============================================================================
# Model Fixtures
# =============================================================================


@pytest.fixture
def character() -> Character:
    """A wounded rogue with dexterity 14 and a small inventory."""
    return Character(
        name="Lyra",
        race="Elf",
        character_class="Rogue",
        level=3,
        stats=AbilityScores(strength=8, dexterity=14, constitution=12, wisdom=13),
        inventory=["Rope", "torch", "Dagger"],
        hp=5,
        max_hp=20,
        armor_class=14,
    )


@pytest.fixture
def state(character: Character) -> GameState:
    """A fresh game state for the sample character."""
    return GameState(character=character)


# =============================================================================
# Collaborator Fixtures
# =============================================================================


@pytest.fixture
def oracle() -> ScriptedOracle:
    """A configured scripted oracle."""
    return ScriptedOracle()


@pytest.fixture
def unconfigured_oracle() -> ScriptedOracle:
    """A scripted oracle that behaves as if no API key were set."""
    return ScriptedOracle(configured=False)


@pytest.fixture
def session() -> ScriptedSession:
    """An empty scripted session."""
    return ScriptedSession()


@pytest.fixture
def image_generator() -> FakeImageGenerator:
    return FakeImageGenerator()


@pytest.fixture
def store() -> InMemorySessionStore:
    """An in-process relay store."""
    return InMemorySessionStore()


@pytest.fixture
def database(tmp_path: Path) -> Database:
    """A save database in a temporary directory."""
    return Database(tmp_path / "questsync.db")
