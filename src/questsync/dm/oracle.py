"""Interfaces for the narrative oracle and its collaborators.

The turn engine talks to the narrative agent only through these protocols,
so the OpenAI-backed implementation and the scripted fakes used in tests are
interchangeable.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from questsync.engine.tools import ToolCall, ToolResult
from questsync.models.game_state import Character, Message


OraclePayload = str | Sequence[ToolResult]
"""What a session accepts: a user utterance or a batch of tool results."""


@dataclass
class OracleReply:
    """One oracle response.

    Attributes:
        text: Narration to show, if any.
        tool_calls: Tool calls in the order the oracle issued them.
    """

    text: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)


@runtime_checkable
class OracleSession(Protocol):
    """A stateful conversation bound to one character."""

    async def send(self, payload: OraclePayload) -> OracleReply:
        """Send an utterance or a batch of tool results.

        Raises:
            OracleError: If the call fails.
        """
        ...


@runtime_checkable
class NarrativeOracle(Protocol):
    """Factory for oracle sessions plus one-shot summarization."""

    def create_session(
        self,
        character: Character,
        prior_summary: str | None = None,
    ) -> OracleSession | None:
        """Open a fresh session. Returns None when credentials are missing."""
        ...

    def resume_session(
        self,
        character: Character,
        transcript: Sequence[Message],
        prior_summary: str | None = None,
    ) -> OracleSession | None:
        """Open a session primed with an earlier transcript.

        Returns None when credentials are missing.
        """
        ...

    async def summarize(self, current_summary: str, recent: Sequence[Message]) -> str:
        """Fold recent transcript entries into the running story summary."""
        ...


@runtime_checkable
class ImageGenerator(Protocol):
    """Produces location illustrations."""

    async def generate_location(self, name: str, description: str) -> str | None:
        """Return an image reference (URL or data URL), or None on failure."""
        ...


__all__ = [
    "OraclePayload",
    "OracleReply",
    "OracleSession",
    "NarrativeOracle",
    "ImageGenerator",
]
