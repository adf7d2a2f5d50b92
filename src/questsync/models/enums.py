"""Enumeration types for QuestSync.

This module defines the closed vocabularies shared by the game state, the
tool executor and the relay layer: transcript authors, quest statuses, note
categories, combat factions and the action verbs accepted by tools.
"""

from __future__ import annotations

from enum import StrEnum


class Author(StrEnum):
    """Who produced a transcript entry."""

    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class QuestStatus(StrEnum):
    """Lifecycle status of a quest."""

    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class NoteCategory(StrEnum):
    """Journal entry categories."""

    NPC = "npc"
    LOCATION = "location"
    LORE = "lore"
    OTHER = "other"


class Faction(StrEnum):
    """Side a combatant or map token fights for.

    Players and allies are spawned on the left edge of the battle map,
    enemies on the right edge.
    """

    PLAYER = "player"
    ENEMY = "enemy"
    ALLY = "ally"

    @property
    def is_friendly(self) -> bool:
        """Check whether this faction fights alongside the player.

        Returns:
            True for players and allies.
        """
        return self is not Faction.ENEMY


class CombatAction(StrEnum):
    """Verbs accepted by the manage_combat tool."""

    START = "start"
    END = "end"
    UPDATE = "update"


class InventoryAction(StrEnum):
    """Verbs accepted by the modify_inventory tool."""

    ADD = "add"
    REMOVE = "remove"


class Ability(StrEnum):
    """The six ability scores.

    Roll requests name one of these (or ``initiative``) to pick the
    modifier applied to the raw die value.
    """

    STR = "strength"
    DEX = "dexterity"
    CON = "constitution"
    INT = "intelligence"
    WIS = "wisdom"
    CHA = "charisma"

    @property
    def full_name(self) -> str:
        """Get the capitalized ability name.

        Returns:
            Full ability name (e.g., 'Strength' for STR).
        """
        return self.value.capitalize()


__all__ = [
    "Author",
    "QuestStatus",
    "NoteCategory",
    "Faction",
    "CombatAction",
    "InventoryAction",
    "Ability",
]
