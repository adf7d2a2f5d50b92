"""Turn engine driving the conversation with the narrative oracle.

The engine sends an utterance, shows the reply, executes returned tool
calls and sends their results back, looping until the oracle stops calling
tools, a roll is requested, or the round bound is reached.

State machine::

    IDLE -> AWAITING_ORACLE -> EXECUTING_TOOLS -> AWAITING_ORACLE -> ... -> IDLE
                                      |
                                      +-> AWAITING_INTERRUPT --resolve_roll--> AWAITING_ORACLE

Turns are serialized: a second submission waits for the first to finish.
While a roll is pending, submissions are rejected until ``resolve_roll``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from questsync.core.constants import DEFAULT_MAX_TOOL_ROUNDS, FIELD_LOCATION
from questsync.core.exceptions import ConfigurationError, OracleError, QuestSyncError
from questsync.core.logging import get_logger
from questsync.engine.rolls import (
    PendingInterrupt,
    RollRequest,
    RollResolution,
    RollResolver,
    roll_d20,
)
from questsync.engine.tools import (
    LocationImageEffect,
    ToolCall,
    ToolExecutor,
    ToolKind,
    ToolResult,
)
from questsync.models.game_state import GameState, Message


if TYPE_CHECKING:
    from questsync.dm.oracle import ImageGenerator, OraclePayload, OracleReply, OracleSession

logger = get_logger(__name__)


NOT_CONFIGURED_TEXT = "The narrator is not configured. Set an API key and try again."
ORACLE_FAILURE_TEXT = "The Dungeon Master lost their train of thought... ({error})"
ROUND_LIMIT_TEXT = "The Dungeon Master kept acting without pause; the turn was ended after {rounds} rounds."


# =============================================================================
# Turn Status
# =============================================================================


class TurnStatus(StrEnum):
    """Where the engine is in the current turn."""

    IDLE = "idle"
    """No turn in progress."""

    AWAITING_ORACLE = "awaiting_oracle"
    """An oracle request is in flight."""

    EXECUTING_TOOLS = "executing_tools"
    """Tool calls from the last reply are being applied."""

    AWAITING_INTERRUPT = "awaiting_interrupt"
    """The turn is suspended until the player resolves a roll."""


class TurnOutcome(StrEnum):
    """How a submit or resolve call ended."""

    COMPLETED = "completed"
    """The oracle replied without further tool calls."""

    INTERRUPTED = "interrupted"
    """A roll was requested; the turn resumes on resolve_roll."""

    ROUND_LIMIT = "round_limit"
    """The oracle kept calling tools and the turn was cut."""

    FAILED = "failed"
    """The oracle was unavailable or not configured."""

    REJECTED = "rejected"
    """Nothing was done (roll pending, or no roll to resolve)."""

    RELAYED = "relayed"
    """A multiplayer client posted the utterance for the host to play."""


@dataclass
class TurnResult:
    """Result of a submit or resolve call.

    Attributes:
        outcome: How the call ended.
        rounds: Oracle requests made.
        replies: Oracle replies received, in order.
        tool_results: Results of executed tools, in order.
        interrupt: The pending interrupt when outcome is INTERRUPTED.
        resolution: The roll resolution when the call resolved a roll.
        error: The error behind a FAILED outcome.
    """

    outcome: TurnOutcome
    rounds: int = 0
    replies: list[OracleReply] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    interrupt: PendingInterrupt | None = None
    resolution: RollResolution | None = None
    error: QuestSyncError | None = None


class TurnListener(Protocol):
    """Observer of transcript appends and world-state changes."""

    async def on_message(self, message: Message) -> None:
        """Called after a message is appended to the transcript."""
        ...

    async def on_state_changed(self, fields: frozenset[str]) -> None:
        """Called after document fields of the state changed."""
        ...


# =============================================================================
# Turn Engine
# =============================================================================


class TurnEngine:
    """Drives one GameState through oracle turns.

    Attributes:
        state: The owned game state.
        session: Oracle session, or None when not configured.
        resolver: Single-slot roll interrupt holder.
        executor: Tool executor bound to the same state.
        image_generator: Optional location illustrator.
        max_tool_rounds: Oracle requests allowed per turn.
    """

    def __init__(
        self,
        state: GameState,
        *,
        session: OracleSession | None = None,
        resolver: RollResolver | None = None,
        executor: ToolExecutor | None = None,
        image_generator: ImageGenerator | None = None,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    ) -> None:
        if max_tool_rounds < 1:
            raise ValueError(f"max_tool_rounds must be positive, got {max_tool_rounds}")
        self.state = state
        self.session = session
        self.resolver = resolver or RollResolver(state)
        self.executor = executor or ToolExecutor(state)
        self.image_generator = image_generator
        self.max_tool_rounds = max_tool_rounds
        self._status = TurnStatus.IDLE
        self._lock = asyncio.Lock()
        self._listeners: list[TurnListener] = []
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def status(self) -> TurnStatus:
        """Current state machine status."""
        return self._status

    def attach(self, session: OracleSession | None) -> None:
        """Bind (or replace) the oracle session."""
        self.session = session

    def add_listener(self, listener: TurnListener) -> None:
        """Register a listener for messages and state changes."""
        self._listeners.append(listener)

    def remove_listener(self, listener: TurnListener) -> None:
        """Unregister a listener. Unknown listeners are ignored."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def is_awaiting_roll(self) -> bool:
        """Check whether free-text input is blocked by a pending roll."""
        return self.resolver.is_awaiting_roll()

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def submit(
        self,
        utterance: str,
        *,
        echo: bool = True,
        sender_id: str | None = None,
    ) -> TurnResult:
        """Play one turn from a user utterance.

        Args:
            utterance: What the player says or does.
            echo: Append the utterance to the transcript first. False when
                the entry is already there (relayed from a client) or for
                hidden prompts such as the opening line.
            sender_id: Participant who typed the utterance.

        Returns:
            The turn result.
        """
        if self.is_awaiting_roll():
            logger.info("Submission rejected: roll pending", sender_id=sender_id)
            return TurnResult(outcome=TurnOutcome.REJECTED)

        async with self._lock:
            if self.is_awaiting_roll():
                logger.info("Submission rejected: roll pending", sender_id=sender_id)
                return TurnResult(outcome=TurnOutcome.REJECTED)

            if echo:
                await self.record(Message.user(utterance, sender_id=sender_id))
            return await self._run(utterance)

    async def resolve_roll(self, raw: int | None = None) -> TurnResult:
        """Resolve the pending roll and resume the suspended turn.

        Args:
            raw: Natural die value. None rolls a d20 for the player.

        Returns:
            The turn result. REJECTED when no roll was pending.
        """
        async with self._lock:
            value = roll_d20() if raw is None else raw
            resolution = self.resolver.resolve(value)
            if resolution is None:
                logger.info("Roll resolution ignored: nothing pending")
                return TurnResult(outcome=TurnOutcome.REJECTED)
            await self._announce(resolution.message)

            if resolution.batch is None:
                return TurnResult(
                    outcome=TurnOutcome.INTERRUPTED,
                    interrupt=self.resolver.pending,
                    resolution=resolution,
                )

            self._status = TurnStatus.AWAITING_ORACLE
            result = await self._run(resolution.batch)
            result.resolution = resolution
            return result

    # -------------------------------------------------------------------------
    # Turn loop
    # -------------------------------------------------------------------------

    async def _run(self, payload: OraclePayload) -> TurnResult:
        result = TurnResult(outcome=TurnOutcome.COMPLETED)
        if self.session is None:
            error = ConfigurationError(NOT_CONFIGURED_TEXT, config_key="oracle.api_key")
            logger.warning("Turn failed: oracle not configured")
            await self.record(Message.system(NOT_CONFIGURED_TEXT, is_error=True))
            self._status = TurnStatus.IDLE
            result.outcome = TurnOutcome.FAILED
            result.error = error
            return result

        try:
            while True:
                self._status = TurnStatus.AWAITING_ORACLE
                reply = await self.session.send(payload)
                result.rounds += 1
                result.replies.append(reply)
                if reply.text:
                    await self.record(Message.agent(reply.text))

                if not reply.tool_calls:
                    break

                if result.rounds >= self.max_tool_rounds:
                    logger.warning(
                        "Round limit reached, ending turn",
                        rounds=result.rounds,
                        unexecuted=len(reply.tool_calls),
                    )
                    await self.record(Message.system(ROUND_LIMIT_TEXT.format(rounds=result.rounds)))
                    result.outcome = TurnOutcome.ROUND_LIMIT
                    break

                self._status = TurnStatus.EXECUTING_TOOLS
                batch, rolls = await self._execute_batch(reply.tool_calls)
                result.tool_results.extend(batch)

                if rolls:
                    result.interrupt = self.resolver.capture(rolls[0], batch, queued=rolls[1:])
                    result.outcome = TurnOutcome.INTERRUPTED
                    self._status = TurnStatus.AWAITING_INTERRUPT
                    return result

                payload = batch
        except OracleError as exc:
            logger.error(
                "Oracle call failed, ending turn",
                error=exc.message,
                error_type=type(exc).__name__,
                rounds=result.rounds,
            )
            await self.record(
                Message.system(ORACLE_FAILURE_TEXT.format(error=exc.message), is_error=True)
            )
            result.outcome = TurnOutcome.FAILED
            result.error = exc

        self._status = TurnStatus.IDLE
        return result

    async def _execute_batch(
        self,
        calls: Iterable[ToolCall],
    ) -> tuple[list[ToolResult], list[RollRequest]]:
        """Execute auto tools in order and collect roll requests."""
        results: list[ToolResult] = []
        rolls: list[RollRequest] = []
        changed: set[str] = set()

        for call in calls:
            if call.kind is ToolKind.REQUEST_ROLL:
                rolls.append(RollRequest.from_call(call))
                continue
            outcome = self.executor.execute(call)
            results.append(outcome.to_result(call))
            changed |= outcome.changed_fields
            if outcome.log is not None:
                await self.record(Message.system(outcome.log))
            if outcome.effect is not None:
                self.spawn(self._illustrate(outcome.effect), name="location-image")

        if changed:
            await self.notify_state_changed(frozenset(changed))
        return results, rolls

    async def _illustrate(self, effect: LocationImageEffect) -> None:
        """Generate a location image and clear the generating flag."""
        image_url: str | None = None
        if self.image_generator is not None:
            try:
                image_url = await self.image_generator.generate_location(effect.name, effect.description)
            except Exception:
                logger.exception("Location image generation failed", location=effect.name)

        location = self.state.location
        if location.name != effect.name:
            # A newer location replaced this one while generating
            return
        location.is_generating = False
        if image_url:
            location.image_url = image_url
        await self.notify_state_changed(frozenset({FIELD_LOCATION}))

    # -------------------------------------------------------------------------
    # Transcript & notifications
    # -------------------------------------------------------------------------

    async def record(self, message: Message) -> Message:
        """Append a message to the transcript and notify listeners."""
        self.state.append_message(message)
        await self._announce(message)
        return message

    async def _announce(self, message: Message) -> None:
        for listener in list(self._listeners):
            try:
                await listener.on_message(message)
            except Exception:
                logger.exception("Turn listener failed", listener=type(listener).__name__)

    async def notify_state_changed(self, fields: frozenset[str]) -> None:
        """Tell listeners which document fields changed."""
        for listener in list(self._listeners):
            try:
                await listener.on_state_changed(fields)
            except Exception:
                logger.exception("Turn listener failed", listener=type(listener).__name__)

    # -------------------------------------------------------------------------
    # Background tasks
    # -------------------------------------------------------------------------

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        """Run a coroutine in the background without blocking the turn."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Background task failed",
                task=task.get_name(),
                error=str(task.exception()),
            )

    async def drain_background(self) -> None:
        """Wait until every background task, including ones they spawn, is done."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


__all__ = [
    "TurnStatus",
    "TurnOutcome",
    "TurnResult",
    "TurnListener",
    "TurnEngine",
]
