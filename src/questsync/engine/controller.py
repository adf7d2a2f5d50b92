"""Game controller: the command surface of QuestSync.

A front end (terminal, web, chat bot) drives the whole application through
six commands:

1. ``start_new_session`` - begin an adventure for a character
2. ``load_session`` / ``load_saved`` - restore a persisted document
3. ``submit`` - play an utterance
4. ``resolve_roll`` - answer a pending roll
5. ``host_multiplayer`` - publish the game to a relay store
6. ``join_multiplayer`` - mirror someone else's game

The controller owns the wiring: oracle sessions wrapped in retry, the
story summarizer, the location illustrator and the relay.

Example:
    >>> controller = GameController(OpenAIOracle())
    >>> await controller.start_new_session(character)
    >>> result = await controller.submit("I open the door")
    >>> if result.outcome is TurnOutcome.INTERRUPTED:
    ...     await controller.resolve_roll()
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from questsync.core.config import Settings, get_settings
from questsync.core.exceptions import (
    InvalidGameStateError,
    SessionStoreError,
    StateLoadError,
)
from questsync.core.logging import get_logger
from questsync.dm.memory import EveryNMessages, StorySummarizer
from questsync.dm.oracle import ImageGenerator, NarrativeOracle, OracleSession
from questsync.dm.retry import RetryingSession, RetryPolicy
from questsync.engine.rolls import RollResolver
from questsync.engine.tools import ToolExecutor
from questsync.engine.turn_engine import TurnEngine, TurnOutcome, TurnResult
from questsync.models.game_state import Character, GameState, Message, new_id
from questsync.storage.database import Database, SaveRecord, get_database
from questsync.sync.session_sync import SessionSync
from questsync.sync.store import SessionStore


logger = get_logger(__name__)

GAME_LOADED_TEXT = "Game loaded."
RESUME_FAILED_TEXT = "Game loaded, but the narrator could not be reached. Set an API key to continue."


@dataclass
class LoadResult:
    """Outcome of a load command.

    Attributes:
        ok: Whether the document was applied.
        error: Why loading failed. Live state is untouched in that case.
    """

    ok: bool
    error: StateLoadError | None = None


class GameController:
    """Facade over one local game, optionally shared through a relay.

    Attributes:
        oracle: Narrative oracle, or None to play without narration.
        settings: Application settings.
        image_generator: Location illustrator.
        participant_id: This participant's relay id.
        state: Current game state (None before start or load).
        engine: Turn engine (None before start and for relay clients).
        sync: Relay link while in a multiplayer session.
    """

    def __init__(
        self,
        oracle: NarrativeOracle | None = None,
        *,
        settings: Settings | None = None,
        image_generator: ImageGenerator | None = None,
        database: Database | None = None,
        retry_policy: RetryPolicy | None = None,
        participant_id: str | None = None,
    ) -> None:
        self.oracle = oracle
        self.settings = settings or get_settings()
        self.image_generator = image_generator
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings.oracle)
        self.participant_id = participant_id or new_id()
        self._database = database
        self.state: GameState | None = None
        self.engine: TurnEngine | None = None
        self.sync: SessionSync | None = None

    @property
    def database(self) -> Database:
        if self._database is None:
            self._database = get_database()
        return self._database

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    def _wrap(self, session: OracleSession | None) -> OracleSession | None:
        if session is None:
            return None
        return RetryingSession(session, self.retry_policy)

    def _build_engine(self, state: GameState, session: OracleSession | None) -> TurnEngine:
        game = self.settings.game
        engine = TurnEngine(
            state,
            session=self._wrap(session),
            resolver=RollResolver(state),
            executor=ToolExecutor(state, grid_cols=game.grid_cols, grid_rows=game.grid_rows),
            image_generator=self.image_generator,
            max_tool_rounds=game.max_tool_rounds,
        )
        if self.oracle is not None:
            StorySummarizer(self.oracle, EveryNMessages(game.summary_interval)).bind(engine)
        return engine

    def _install(self, state: GameState, session: OracleSession | None) -> TurnEngine:
        self.leave_multiplayer()
        self.state = state
        self.engine = self._build_engine(state, session)
        return self.engine

    def _require_engine(self) -> TurnEngine:
        if self.engine is None:
            raise InvalidGameStateError(
                "No local game is running",
                current_state="client" if self.sync is not None else "empty",
                expected_states=["solo", "host"],
            )
        return self.engine

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def start_new_session(self, character: Character) -> TurnResult:
        """Begin a new adventure and play the opening turn.

        Without a configured oracle the opening turn fails with a
        configuration-error transcript entry; nothing is raised.
        """
        session = self.oracle.create_session(character) if self.oracle is not None else None
        engine = self._install(GameState(character=character), session)
        logger.info("New adventure started", character=character.name, narrated=session is not None)
        return await engine.submit(self.settings.game.opening_prompt, echo=False)

    async def load_session(self, document: Mapping[str, Any]) -> LoadResult:
        """Replace the current game with a persisted document.

        Loading is all-or-nothing: a malformed document leaves the current
        game untouched.
        """
        try:
            state = GameState.from_document(document)
        except StateLoadError as exc:
            logger.warning("Load rejected", error=exc.message)
            return LoadResult(ok=False, error=exc)

        session = None
        if self.oracle is not None:
            session = self.oracle.resume_session(
                state.character,
                state.transcript,
                state.story_summary or None,
            )
        engine = self._install(state, session)
        if session is None:
            await engine.record(Message.system(RESUME_FAILED_TEXT, is_error=True))
        else:
            await engine.record(Message.system(GAME_LOADED_TEXT))
        logger.info("Game loaded", character=state.character.name, messages=len(state.transcript))
        return LoadResult(ok=True)

    async def load_saved(self, save_id: str) -> LoadResult:
        """Load a save slot from the local database."""
        record = self.database.get_save(save_id)
        if record is None:
            return LoadResult(ok=False, error=StateLoadError("No such save", details={"save_id": save_id}))
        try:
            document = record.get_document()
        except StateLoadError as exc:
            logger.warning("Save slot unreadable", save_id=save_id, error=exc.message)
            return LoadResult(ok=False, error=exc)
        return await self.load_session(document)

    async def submit(self, text: str) -> TurnResult:
        """Play an utterance.

        Relay clients post the utterance for the host instead; the result
        is then RELAYED (or FAILED if the relay write did not go through).
        """
        if self.sync is not None and not self.sync.is_host:
            message = await self.sync.post_utterance(text)
            if message is None:
                return TurnResult(
                    outcome=TurnOutcome.FAILED,
                    error=SessionStoreError("Utterance not delivered", session_id=self.sync.session_id),
                )
            return TurnResult(outcome=TurnOutcome.RELAYED)
        return await self._require_engine().submit(text, sender_id=self.participant_id)

    async def resolve_roll(self, raw: int | None = None) -> TurnResult:
        """Resolve the pending roll. Relay clients have none to resolve."""
        if self.engine is None:
            return TurnResult(outcome=TurnOutcome.REJECTED)
        return await self.engine.resolve_roll(raw)

    async def host_multiplayer(self, store: SessionStore) -> SessionSync:
        """Publish the current game and return the relay link.

        Raises:
            InvalidGameStateError: If no local game is running.
            SessionStoreError: If the relay document cannot be created.
        """
        engine = self._require_engine()
        self.leave_multiplayer()
        self.sync = await SessionSync.host(
            store,
            engine.state,
            engine,
            self.participant_id,
            grid_cols=self.settings.game.grid_cols,
            grid_rows=self.settings.game.grid_rows,
        )
        return self.sync

    async def join_multiplayer(
        self,
        store: SessionStore,
        session_id: str,
        character: Character | None = None,
    ) -> SessionSync:
        """Join a hosted game as a client.

        Args:
            store: Relay store.
            session_id: Code shared by the host (case-insensitive).
            character: The joining player's sheet. Defaults to the sheet of
                the current game.

        Raises:
            InvalidGameStateError: If there is no character to join with.
            SessionNotFoundError: If the code is unknown.
        """
        if character is None:
            if self.state is None:
                raise InvalidGameStateError(
                    "A character is required to join a session",
                    current_state="empty",
                )
            character = self.state.character
        state = GameState(character=character)
        self.leave_multiplayer()
        sync = await SessionSync.join(
            store,
            state,
            session_id,
            self.participant_id,
            grid_cols=self.settings.game.grid_cols,
            grid_rows=self.settings.game.grid_rows,
        )
        self.state = state
        self.engine = None
        self.sync = sync
        return sync

    def leave_multiplayer(self) -> None:
        """Close the relay link, keeping the local game."""
        if self.sync is not None:
            self.sync.close()
            self.sync = None

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Current game as a persisted document."""
        if self.state is None:
            raise InvalidGameStateError("No game to snapshot", current_state="empty")
        return self.state.to_document()

    def save(self, name: str, save_id: str | None = None) -> SaveRecord:
        """Write the current game to a save slot."""
        if self.state is None:
            raise InvalidGameStateError("No game to save", current_state="empty")
        return self.database.save_game(name, self.state, save_id=save_id)

    async def drain(self) -> None:
        """Wait for background work (images, summaries, relayed turns)."""
        if self.engine is not None:
            await self.engine.drain_background()


__all__ = [
    "GAME_LOADED_TEXT",
    "RESUME_FAILED_TEXT",
    "LoadResult",
    "GameController",
]
