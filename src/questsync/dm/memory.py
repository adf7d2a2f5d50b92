"""Rolling story summary.

Long adventures outgrow any context window. Every few transcript entries the
recent messages are folded into a single summary text, which replaces the
previous one wholesale and is passed to new oracle sessions as prior context.

When to summarize is a pluggable policy so tests can use small fixtures.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from questsync.core.constants import DEFAULT_SUMMARY_INTERVAL, FIELD_STORY_SUMMARY, FIELD_TRANSCRIPT
from questsync.core.exceptions import OracleError
from questsync.core.logging import get_logger


if TYPE_CHECKING:
    from questsync.dm.oracle import NarrativeOracle
    from questsync.engine.turn_engine import TurnEngine
    from questsync.models.game_state import Message

logger = get_logger(__name__)


# =============================================================================
# Policies
# =============================================================================


class SummaryPolicy(Protocol):
    """Decides when the transcript should be summarized."""

    def should_summarize(self, transcript_length: int) -> bool:
        """Return True when a summary should run at this length."""
        ...


@dataclass(frozen=True)
class EveryNMessages:
    """Summarize whenever the transcript length is a positive multiple of N."""

    interval: int = DEFAULT_SUMMARY_INTERVAL

    def __post_init__(self) -> None:
        if self.interval < 1:
            raise ValueError(f"interval must be positive, got {self.interval}")

    def should_summarize(self, transcript_length: int) -> bool:
        return transcript_length > 0 and transcript_length % self.interval == 0


# =============================================================================
# Summarizer
# =============================================================================


class StorySummarizer:
    """Turn listener that keeps ``story_summary`` up to date.

    Summaries run as background tasks on the engine so a slow summary never
    delays a turn. A failed summary keeps the previous text.

    Attributes:
        oracle: Oracle used for the summary call.
        policy: When to summarize.
        window: How many recent entries feed each summary.
    """

    def __init__(
        self,
        oracle: NarrativeOracle,
        policy: SummaryPolicy | None = None,
        *,
        window: int | None = None,
    ) -> None:
        self.oracle = oracle
        self.policy = policy or EveryNMessages()
        self.window = window or getattr(self.policy, "interval", DEFAULT_SUMMARY_INTERVAL)
        self._engine: TurnEngine | None = None
        self._running = False
        self._checked_length = 0

    def bind(self, engine: TurnEngine) -> "StorySummarizer":
        """Attach to an engine and listen to its messages."""
        self._engine = engine
        self._checked_length = len(engine.state.transcript)
        engine.add_listener(self)
        return self

    async def on_message(self, message: Message) -> None:
        self._check()

    async def on_state_changed(self, fields: frozenset[str]) -> None:
        # Relayed entries are adopted in bulk and announced as a field change
        if FIELD_TRANSCRIPT in fields:
            self._check()

    def _check(self) -> None:
        """Start a summary if the transcript passed a policy boundary since the last check.

        Every length between the last check and now is tested, so entries
        that arrive several at a time cannot step over a boundary.
        """
        engine = self._engine
        if engine is None or self._running:
            return
        length = len(engine.state.transcript)
        passed = range(self._checked_length + 1, length + 1)
        self._checked_length = length
        if not any(self.policy.should_summarize(n) for n in passed):
            return
        self._running = True
        engine.spawn(self._summarize(engine), name="story-summary")

    async def _summarize(self, engine: TurnEngine) -> None:
        state = engine.state
        recent = state.transcript[-self.window:]
        try:
            summary = await self.oracle.summarize(state.story_summary, recent)
        except OracleError as exc:
            logger.warning("Story summary failed, keeping previous", error=str(exc))
            return
        finally:
            self._running = False

        if not summary or summary == state.story_summary:
            return
        state.story_summary = summary
        logger.info("Story summary updated", length=len(summary))
        await engine.notify_state_changed(frozenset({FIELD_STORY_SUMMARY}))


__all__ = [
    "SummaryPolicy",
    "EveryNMessages",
    "StorySummarizer",
]
