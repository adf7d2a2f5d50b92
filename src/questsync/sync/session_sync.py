"""Multiplayer session relay.

One participant hosts: it owns the oracle session and is the only writer of
world fields. Clients post their own utterances to the shared transcript and
mirror everything else from the relay document. Any participant may move map
tokens; the store's last write wins.

Write ownership:

    ============  =========================  ======================
    field         host                       client
    ============  =========================  ======================
    transcript    any entry                  own user entries only
    world fields  broadcasts on change       never (mirrors)
    mapTokens     writes                     writes
    ============  =========================  ======================

The relay is eventually consistent. Store failures are logged and never
abort a turn; the host's local state stays authoritative.
"""

from __future__ import annotations

import secrets
import string
from collections.abc import Iterable
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from questsync.core.constants import (
    DEFAULT_GRID_COLS,
    DEFAULT_GRID_ROWS,
    FIELD_HOST_ID,
    FIELD_MAP_TOKENS,
    FIELD_REVISION,
    FIELD_TRANSCRIPT,
    SESSION_ID_LENGTH,
    WORLD_FIELDS,
)
from questsync.core.exceptions import (
    InvalidGameStateError,
    SessionNotFoundError,
    StateLoadError,
    SyncAuthorityError,
    SyncError,
)
from questsync.core.logging import bind_context, clear_context, get_logger
from questsync.models.enums import Author
from questsync.models.game_state import GameState, GridPosition, Message, new_id


if TYPE_CHECKING:
    from questsync.engine.turn_engine import TurnEngine
    from questsync.sync.store import Document, SessionStore, Unsubscribe

logger = get_logger(__name__)

_SESSION_ALPHABET = string.ascii_uppercase + string.digits
_MIRRORED_FIELDS = WORLD_FIELDS | {FIELD_MAP_TOKENS}


class SyncRole(StrEnum):
    """Participant role in a relay session."""

    HOST = "host"
    CLIENT = "client"


def generate_session_id() -> str:
    """Generate a shareable session code (upper-case letters and digits)."""
    return "".join(secrets.choice(_SESSION_ALPHABET) for _ in range(SESSION_ID_LENGTH))


def normalize_session_id(session_id: str) -> str:
    """Normalize a typed session code."""
    return session_id.strip().upper()


class SessionSync:
    """Keeps one GameState in step with a relay document.

    Use ``SessionSync.host`` or ``SessionSync.join`` rather than the
    constructor; both return a subscribed instance.

    Attributes:
        store: Relay store.
        state: Local game state.
        session_id: Relay session code.
        participant_id: This participant's id (stamped on its utterances).
        role: Host or client.
        engine: Turn engine (host only).
    """

    def __init__(
        self,
        store: SessionStore,
        state: GameState,
        *,
        session_id: str,
        participant_id: str,
        role: SyncRole,
        engine: TurnEngine | None = None,
        grid_cols: int = DEFAULT_GRID_COLS,
        grid_rows: int = DEFAULT_GRID_ROWS,
    ) -> None:
        if role is SyncRole.HOST and engine is None:
            raise ValueError("a host needs a turn engine")
        self.store = store
        self.state = state
        self.session_id = session_id
        self.participant_id = participant_id
        self.role = role
        self.engine = engine
        self.grid_cols = grid_cols
        self.grid_rows = grid_rows
        self._unsubscribe: Unsubscribe | None = None
        self._last_revision = 0
        self._triggered: set[str] = set()
        self._unsent: set[str] = set()

    @property
    def is_host(self) -> bool:
        return self.role is SyncRole.HOST

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @classmethod
    async def host(
        cls,
        store: SessionStore,
        state: GameState,
        engine: TurnEngine,
        participant_id: str | None = None,
        **kwargs: Any,
    ) -> "SessionSync":
        """Publish the current game as a new relay session.

        Args:
            store: Relay store.
            state: The host's game state (becomes the initial document).
            engine: The host's turn engine.
            participant_id: Host participant id. Generated when omitted.
            **kwargs: Grid size overrides.

        Returns:
            A subscribed host relay.

        Raises:
            SessionStoreError: If the document cannot be created.
        """
        participant_id = participant_id or new_id()
        session_id = generate_session_id()
        while await store.exists(session_id):
            session_id = generate_session_id()

        document = state.to_document()
        document[FIELD_HOST_ID] = participant_id
        await store.create(session_id, document)

        sync = cls(
            store,
            state,
            session_id=session_id,
            participant_id=participant_id,
            role=SyncRole.HOST,
            engine=engine,
            **kwargs,
        )
        engine.add_listener(sync)
        await sync._subscribe()
        logger.info("Hosting session", session_id=session_id, participant_id=participant_id)
        return sync

    @classmethod
    async def join(
        cls,
        store: SessionStore,
        state: GameState,
        session_id: str,
        participant_id: str | None = None,
        **kwargs: Any,
    ) -> "SessionSync":
        """Join an existing relay session as a client.

        The transcript, world fields and map tokens are adopted from the
        relay document. The client's own character sheet is kept.

        Raises:
            SessionNotFoundError: If no session has this code.
            StateLoadError: If the relay document is malformed (nothing is
                applied in that case).
        """
        session_id = normalize_session_id(session_id)
        document = await store.get(session_id)
        if document is None:
            raise SessionNotFoundError("No session with this code", session_id=session_id)

        state.adopt_fields(document, [FIELD_TRANSCRIPT, *sorted(_MIRRORED_FIELDS)])

        sync = cls(
            store,
            state,
            session_id=session_id,
            participant_id=participant_id or new_id(),
            role=SyncRole.CLIENT,
            **kwargs,
        )
        sync._last_revision = document.get(FIELD_REVISION, 0)
        await sync._subscribe()
        logger.info(
            "Joined session",
            session_id=session_id,
            participant_id=sync.participant_id,
            transcript=len(state.transcript),
        )
        return sync

    async def _subscribe(self) -> None:
        bind_context(session_id=self.session_id, role=self.role.value)
        self._unsubscribe = await self.store.subscribe(self.session_id, self._on_change)

    def close(self) -> None:
        """Stop listening to the relay and to the engine."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.engine is not None:
            self.engine.remove_listener(self)
        clear_context()
        logger.info("Left session", session_id=self.session_id)

    # -------------------------------------------------------------------------
    # Ownership
    # -------------------------------------------------------------------------

    def _check_append(self, message: Message) -> None:
        if self.is_host:
            return
        if message.author is not Author.USER or message.sender_id != self.participant_id:
            raise SyncAuthorityError(
                "Clients may only append their own utterances",
                session_id=self.session_id,
                details={"author": message.author.value, "sender_id": message.sender_id},
            )

    def _check_update(self, keys: Iterable[str]) -> None:
        if self.is_host:
            return
        forbidden = sorted(set(keys) - {FIELD_MAP_TOKENS})
        if forbidden:
            raise SyncAuthorityError(
                "Clients may not write world fields",
                session_id=self.session_id,
                details={"fields": forbidden},
            )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def append_entry(self, message: Message) -> bool:
        """Append a transcript entry to the relay.

        Returns:
            True if the store accepted the write.

        Raises:
            SyncAuthorityError: If this participant may not write the entry.
        """
        self._check_append(message)
        if self._unsent:
            await self.broadcast(())
        entry = message.model_dump(mode="json", by_alias=True)
        try:
            await self.store.append_to_transcript(self.session_id, entry)
        except SyncError as exc:
            logger.warning(
                "Relay append failed",
                session_id=self.session_id,
                message_id=message.id,
                error=exc.message,
            )
            return False
        return True

    async def broadcast(self, keys: Iterable[str]) -> bool:
        """Write the given document fields from local state to the relay.

        Fields from earlier failed broadcasts are written along with them.
        Until they are, incoming copies of those fields are not adopted, so
        the local values survive the outage.

        Returns:
            True if the store accepted the write.

        Raises:
            SyncAuthorityError: If a client tries to write world fields.
        """
        keys = set(keys)
        self._check_update(keys)
        keys |= self._unsent
        if not keys:
            return True
        partial = self.state.to_partial_document(keys)
        try:
            await self.store.update_fields(self.session_id, partial)
        except SyncError as exc:
            self._unsent = keys
            logger.warning(
                "Relay update failed",
                session_id=self.session_id,
                fields=sorted(keys),
                error=exc.message,
            )
            return False
        if self._unsent:
            logger.info("Resent fields after relay outage", fields=sorted(self._unsent))
            self._unsent = set()
        return True

    async def post_utterance(self, text: str) -> Message | None:
        """Post a client utterance for the host to act on.

        The entry reaches the local transcript through the relay echo.

        Returns:
            The posted message, or None if the relay write failed.

        Raises:
            InvalidGameStateError: When called on the host, whose utterances
                are ordinary turns on its engine.
        """
        if self.is_host:
            raise InvalidGameStateError(
                "The host submits utterances to its turn engine",
                current_state=self.role.value,
                expected_states=[SyncRole.CLIENT.value],
            )
        message = Message.user(text, sender_id=self.participant_id)
        if not await self.append_entry(message):
            return None
        return message

    async def move_token(self, token_id: str, x: int, y: int) -> GridPosition | None:
        """Move a map token, clamped to the grid, and publish all tokens.

        Returns:
            The position actually applied, or None for an unknown token.
        """
        token = self.state.token_by_id(token_id)
        if token is None:
            logger.warning("Move ignored: unknown token", token_id=token_id)
            return None
        span = token.footprint_size
        position = GridPosition(
            x=max(0, min(x, self.grid_cols - span)),
            y=max(0, min(y, self.grid_rows - span)),
        )
        token.grid_position = position
        await self.broadcast([FIELD_MAP_TOKENS])
        return position

    # -------------------------------------------------------------------------
    # Engine listener (host)
    # -------------------------------------------------------------------------

    async def on_message(self, message: Message) -> None:
        await self.append_entry(message)

    async def on_state_changed(self, fields: frozenset[str]) -> None:
        relayed = fields & _MIRRORED_FIELDS
        if relayed:
            await self.broadcast(relayed)

    # -------------------------------------------------------------------------
    # Reconcile
    # -------------------------------------------------------------------------

    async def _on_change(self, document: Document) -> None:
        revision = document.get(FIELD_REVISION)
        if revision is not None:
            if revision <= self._last_revision:
                logger.debug("Stale relay revision skipped", revision=revision)
                return
            self._last_revision = revision

        try:
            fresh = self._adopt_transcript(document)
            mirrored = self.state.adopt_fields(document, self._adoptable_fields())
        except StateLoadError as exc:
            logger.warning(
                "Relay document rejected",
                session_id=self.session_id,
                revision=revision,
                error=exc.message,
            )
            return

        logger.debug(
            "Relay reconciled",
            revision=revision,
            new_entries=len(fresh),
            fields=mirrored,
        )
        if self.engine is not None and fresh:
            self._trigger_turns(self.engine, fresh)
            await self.engine.notify_state_changed(frozenset({FIELD_TRANSCRIPT}))

    def _adoptable_fields(self) -> set[str]:
        """Fields to mirror from the relay, minus any still waiting to be resent."""
        fields = {FIELD_MAP_TOKENS} if self.is_host else set(_MIRRORED_FIELDS)
        return fields - self._unsent

    def _adopt_transcript(self, document: Document) -> list[Message]:
        """Adopt the incoming transcript when it is longer than ours.

        Returns:
            Entries that were not known locally, in transcript order.
        """
        incoming = document.get(FIELD_TRANSCRIPT) or []
        if len(incoming) <= len(self.state.transcript):
            return []
        known = self.state.message_ids()
        self.state.adopt_fields(document, [FIELD_TRANSCRIPT])
        return [m for m in self.state.transcript if m.id not in known]

    def _trigger_turns(self, engine: TurnEngine, fresh: Iterable[Message]) -> None:
        self._triggered &= self.state.message_ids()
        for message in fresh:
            if message.author is not Author.USER:
                continue
            if message.sender_id is None or message.sender_id == self.participant_id:
                continue
            if message.id in self._triggered:
                continue
            self._triggered.add(message.id)
            logger.info(
                "Relayed utterance, starting turn",
                message_id=message.id,
                sender_id=message.sender_id,
            )
            engine.spawn(
                engine.submit(message.text, echo=False, sender_id=message.sender_id),
                name=f"relay-turn-{message.id}",
            )


__all__ = [
    "SyncRole",
    "SessionSync",
    "generate_session_id",
    "normalize_session_id",
]
