"""Integration tests for hosting and joining a shared game."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from questsync.core.config import Settings
from questsync.core.exceptions import InvalidGameStateError, SessionNotFoundError
from questsync.dm.oracle import OracleReply
from questsync.dm.retry import RetryPolicy
from questsync.engine.controller import GameController
from questsync.engine.tools import ToolCall
from questsync.engine.turn_engine import TurnOutcome
from questsync.models.enums import Author
from questsync.models.game_state import Character
from questsync.storage.database import Database
from questsync.sync.store import InMemorySessionStore


async def settle(store: InMemorySessionStore, *controllers: GameController) -> None:
    for _ in range(5):
        await store.flush()
        for controller in controllers:
            await controller.drain()


@pytest.fixture
def guest_character() -> Character:
    return Character(name="Bram", race="Dwarf", character_class="Cleric", hp=18, max_hp=18)


@pytest.fixture
def host(oracle: Any, settings: Settings, database: Database, fast_retry: RetryPolicy) -> GameController:
    return GameController(
        oracle,
        settings=settings,
        database=database,
        retry_policy=fast_retry,
        participant_id="host",
    )


@pytest.fixture
def guest(settings: Settings, database: Database) -> GameController:
    return GameController(settings=settings, database=database, participant_id="guest")


class TestMultiplayerFlow:
    """Test a host and a client sharing one adventure."""

    def test_guest_utterance_round_trip(
        self,
        oracle: Any,
        host: GameController,
        guest: GameController,
        store: InMemorySessionStore,
        character: Character,
        guest_character: Character,
    ) -> None:
        """A guest speaks, the host's narrator answers, both transcripts agree."""
        oracle.script = [
            OracleReply(text="The tavern falls silent."),
            OracleReply(
                text="A stranger waves back.",
                tool_calls=[
                    ToolCall(
                        name="update_location",
                        arguments={"name": "Gilded Goose", "description": "A smoky tavern"},
                        call_id="c1",
                    )
                ],
            ),
        ]

        async def play() -> TurnOutcome:
            await host.start_new_session(character)
            sync = await host.host_multiplayer(store)
            await guest.join_multiplayer(store, sync.session_id.lower(), guest_character)
            result = await guest.submit("I wave at the stranger")
            await settle(store, host, guest)
            host.leave_multiplayer()
            guest.leave_multiplayer()
            return result.outcome

        outcome = asyncio.run(play())

        assert outcome is TurnOutcome.RELAYED
        assert host.state is not None
        assert guest.state is not None
        assert oracle.sessions[0].sent.count("I wave at the stranger") == 1
        host_view = [(m.id, m.text) for m in host.state.transcript]
        guest_view = [(m.id, m.text) for m in guest.state.transcript]
        assert guest_view == host_view
        assert guest.state.transcript[1].author is Author.USER
        assert guest.state.transcript[1].sender_id == "guest"
        assert guest.state.location.name == "Gilded Goose"
        assert guest.state.character.name == "Bram"
        assert host.state.character.name == "Lyra"

    def test_guest_has_no_engine(
        self,
        host: GameController,
        guest: GameController,
        store: InMemorySessionStore,
        character: Character,
        guest_character: Character,
    ) -> None:
        """A guest cannot resolve rolls or host its mirrored game."""

        async def play() -> TurnOutcome:
            await host.start_new_session(character)
            sync = await host.host_multiplayer(store)
            await guest.join_multiplayer(store, sync.session_id, guest_character)
            try:
                with pytest.raises(InvalidGameStateError):
                    await guest.host_multiplayer(store)
                return (await guest.resolve_roll(12)).outcome
            finally:
                host.leave_multiplayer()
                guest.leave_multiplayer()

        assert asyncio.run(play()) is TurnOutcome.REJECTED
        assert guest.engine is None

    def test_relay_outage_reported_to_guest(
        self,
        host: GameController,
        guest: GameController,
        store: InMemorySessionStore,
        character: Character,
        guest_character: Character,
    ) -> None:
        """A failed post surfaces as a failed turn, not an exception."""

        async def play() -> TurnOutcome:
            await host.start_new_session(character)
            sync = await host.host_multiplayer(store)
            await guest.join_multiplayer(store, sync.session_id, guest_character)
            store.fail_writes = True
            result = await guest.submit("Hello?")
            host.leave_multiplayer()
            guest.leave_multiplayer()
            return result.outcome

        assert asyncio.run(play()) is TurnOutcome.FAILED

    def test_join_unknown_session(self, guest: GameController, store: InMemorySessionStore, guest_character: Character) -> None:
        """An unknown code is reported and nothing is joined."""
        with pytest.raises(SessionNotFoundError):
            asyncio.run(guest.join_multiplayer(store, "ZZZZZZZ", guest_character))
        assert guest.sync is None
        assert guest.state is None

    def test_join_needs_character(self, guest: GameController, store: InMemorySessionStore) -> None:
        """Joining without any sheet is refused."""
        with pytest.raises(InvalidGameStateError):
            asyncio.run(guest.join_multiplayer(store, "ABC1234"))

    def test_host_keeps_playing_after_leaving(
        self,
        oracle: Any,
        host: GameController,
        store: InMemorySessionStore,
        character: Character,
    ) -> None:
        """Leaving the relay keeps the local game running."""

        async def play() -> TurnOutcome:
            await host.start_new_session(character)
            sync = await host.host_multiplayer(store)
            host.leave_multiplayer()
            result = await host.submit("I carry on alone")
            document = await store.get(sync.session_id)
            assert document is not None
            assert all(entry["text"] != "I carry on alone" for entry in document["transcript"])
            return result.outcome

        assert asyncio.run(play()) is TurnOutcome.COMPLETED
