"""Application-wide constants for QuestSync.

This module defines constants shared by the engine, the oracle adapter and
the relay layer, including turn bounds, map geometry and wire field names.
"""

from __future__ import annotations

# =============================================================================
# Turn Processing
# =============================================================================

DEFAULT_MAX_TOOL_ROUNDS = 5
"""Tool-result batches sent back to the oracle per turn before the turn is cut."""

DEFAULT_SUMMARY_INTERVAL = 10
"""Transcript length modulus that triggers a rolling story summary."""

GENERIC_TOOL_RESULT = "Function executed."
"""Result returned to the oracle for unknown or malformed tool calls."""

SKIPPED_TOOL_RESULT = "Skipped: turn ended"
"""Result used to answer tool calls left unexecuted by the round limit."""

SYSTEM_REPLAY_PREFIX = "[System Info]: "
"""Prefix marking system transcript entries when replayed to the oracle."""

# =============================================================================
# Ability Scores
# =============================================================================

ABILITY_NAMES = (
    "strength",
    "dexterity",
    "constitution",
    "intelligence",
    "wisdom",
    "charisma",
)
"""The six ability scores, in sheet order."""

INITIATIVE = "initiative"
"""Roll request ability that uses the dexterity modifier."""

# =============================================================================
# Battle Map
# =============================================================================

DEFAULT_GRID_COLS = 20
"""Battle map width in cells."""

DEFAULT_GRID_ROWS = 15
"""Battle map height in cells."""

DEFAULT_FOOTPRINT = 1
"""Cells per side occupied by a token spawned from combat."""

# =============================================================================
# Relay Document
# =============================================================================

SESSION_ID_LENGTH = 7
"""Length of the shareable multiplayer session code."""

FIELD_CHARACTER = "character"
FIELD_TRANSCRIPT = "transcript"
FIELD_LOCATION = "location"
FIELD_QUESTS = "quests"
FIELD_NOTES = "notes"
FIELD_STORY_SUMMARY = "storySummary"
FIELD_COMBAT_STATE = "combatState"
FIELD_MAP_TOKENS = "mapTokens"
FIELD_TIMESTAMP = "timestamp"
FIELD_HOST_ID = "hostId"
FIELD_REVISION = "revision"

WORLD_FIELDS = frozenset({
    FIELD_LOCATION,
    FIELD_COMBAT_STATE,
    FIELD_QUESTS,
    FIELD_NOTES,
    FIELD_STORY_SUMMARY,
})
"""Document fields written only by the host."""
