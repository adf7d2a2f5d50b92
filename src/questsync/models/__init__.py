"""Data models for QuestSync.

Exports the enums and the pydantic models that make up ``GameState`` and its
persisted document.
"""

from __future__ import annotations

from questsync.models.enums import (
    Ability,
    Author,
    CombatAction,
    Faction,
    InventoryAction,
    NoteCategory,
    QuestStatus,
)
from questsync.models.game_state import (
    AbilityScores,
    Character,
    Combatant,
    CombatState,
    GameState,
    GridPosition,
    LocationState,
    MapToken,
    Message,
    Note,
    Quest,
    new_id,
    utcnow,
)


__all__ = [
    # Enums
    "Ability",
    "Author",
    "CombatAction",
    "Faction",
    "InventoryAction",
    "NoteCategory",
    "QuestStatus",
    # Models
    "AbilityScores",
    "Character",
    "Combatant",
    "CombatState",
    "GameState",
    "GridPosition",
    "LocationState",
    "MapToken",
    "Message",
    "Note",
    "Quest",
    # Helpers
    "new_id",
    "utcnow",
]
