"""QuestSync - an AI-narrated tabletop adventure with shared multiplayer sessions.

A narrative oracle (any OpenAI-compatible chat model) tells the story and
asks for world changes through tool calls. Python owns the truth: it
applies hit point changes, inventory, quests, notes and combat, rolls the
dice, and relays the game to other players.

Example:
    >>> from questsync import GameController, Character
    >>> from questsync.dm import OpenAIOracle
    >>>
    >>> controller = GameController(OpenAIOracle())
    >>> hero = Character(name="Lyra", race="Elf", character_class="Rogue", hp=9, max_hp=9)
    >>> await controller.start_new_session(hero)
    >>> await controller.submit("I sneak past the guards")

Modules:
    core: Configuration, logging, and the exception hierarchy.
    models: Pydantic models for the game state and its persisted document.
    engine: Tool executor, roll interrupts, the turn engine and the controller.
    dm: Oracle interfaces, the OpenAI adapter, retry and story summaries.
    sync: Multiplayer relay store and session sync.
    storage: SQLite save slots.
"""

from __future__ import annotations

from questsync.core.config import Settings, get_settings
from questsync.core.exceptions import QuestSyncError
from questsync.core.logging import configure_logging, get_logger
from questsync.engine.controller import GameController, LoadResult
from questsync.engine.turn_engine import TurnOutcome, TurnResult
from questsync.models.game_state import Character, GameState


__version__ = "0.1.0"
__all__ = [
    "__version__",
    "QuestSyncError",
    "Settings",
    "get_settings",
    "configure_logging",
    "get_logger",
    "Character",
    "GameState",
    "GameController",
    "LoadResult",
    "TurnOutcome",
    "TurnResult",
]
