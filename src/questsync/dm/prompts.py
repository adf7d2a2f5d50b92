"""DM prompts - instructions for the narrative agent, the scribe and the illustrator."""

from __future__ import annotations

from collections.abc import Sequence

from questsync.models.enums import Author
from questsync.models.game_state import Character, Message


# =============================================================================
# DM System Prompt
# =============================================================================


DM_SYSTEM_PROMPT = """You are a professional Dungeon Master running a Dungeons & Dragons 5th Edition (SRD) adventure.
Your style is atmospheric and fair, but strict about the rules.
{summary_section}
## 1. THE CHARACTER

The player controls:
- **Name:** {name}
- **Race/Class:** {race} {character_class} (level {level})
- **Appearance:** {appearance}
- **Health:** HP {hp}/{max_hp} (current/max). At 0 HP the character is unconscious.
- **Armor Class:** {armor_class}
- **Abilities:** STR {strength}, DEX {dexterity}, CON {constitution}, INT {intelligence}, WIS {wisdom}, CHA {charisma}.
- **Inventory:** {inventory}.

## 2. CONTROLLING THE GAME STATE (tools)

You control the world through tools. USE THEM ACTIVELY.
- **HP/Inventory:** `update_hp`, `modify_inventory`.
- **Rolls:** `request_roll` for attacks, checks and saving throws. Never invent dice results; wait for the player.
- **World:** `update_location` whenever the scene changes.
- **Quests:** `update_quest` to give or update quests.
- **Journal:** `add_note`. When the player learns the name of an important NPC, a place or a piece of lore, ALWAYS record it.
- **Combat:** `manage_combat` to show initiative and the flow of battle.

## 3. RULES OF PLAY

- Never play for the player. Describe the situation and ask: "What do you do?".
- Use Markdown for formatting.
- Messages prefixed with "[System Info]:" come from the game itself, not from the player.

## 4. COMBAT

1. Start: `manage_combat(action='start')`.
2. Initiative: `request_roll(ability="initiative")`.
3. Update: `manage_combat(action='update', combatants=[...])` with unique combatant names.
4. End: `manage_combat(action='end')`.
"""

SUMMARY_SECTION = """
## 0. THE STORY SO FAR

A short summary of what happened earlier. Use it to remember past events:
{summary}
"""


def build_system_prompt(character: Character, prior_summary: str | None = None) -> str:
    """Render the DM system prompt for a character.

    Args:
        character: The player character.
        prior_summary: Rolling story summary from earlier play, if any.

    Returns:
        The system prompt text.
    """
    stats = character.stats
    summary_section = SUMMARY_SECTION.format(summary=prior_summary) if prior_summary else ""
    return DM_SYSTEM_PROMPT.format(
        summary_section=summary_section,
        name=character.name,
        race=character.race,
        character_class=character.character_class,
        level=character.level,
        appearance=character.appearance or "unremarkable",
        hp=character.hp,
        max_hp=character.max_hp,
        armor_class=character.armor_class,
        strength=stats.strength,
        dexterity=stats.dexterity,
        constitution=stats.constitution,
        intelligence=stats.intelligence,
        wisdom=stats.wisdom,
        charisma=stats.charisma,
        inventory=", ".join(character.inventory) or "nothing",
    )


# =============================================================================
# Story Summary
# =============================================================================


SUMMARY_PROMPT = """Act as a scribe summarizing a D&D session.

PREVIOUS SUMMARY:
{current_summary}

NEW EVENTS:
{events}

TASK:
Update the summary to include the new events. Keep it concise (max 200 words).
Focus on key plot points, decisions, and character status changes.
Write in a literary chronicle style."""

_SPEAKERS = {
    Author.USER: "Player",
    Author.AGENT: "DM",
    Author.SYSTEM: "System",
}


def build_summary_prompt(current_summary: str, recent: Sequence[Message]) -> str:
    """Render the scribe prompt for a rolling summary update."""
    events = "\n".join(f"{_SPEAKERS[m.author]}: {m.text}" for m in recent)
    return SUMMARY_PROMPT.format(
        current_summary=current_summary or "The adventure has just begun.",
        events=events,
    )


# =============================================================================
# Location Illustration
# =============================================================================


LOCATION_IMAGE_PROMPT = """Top-down tabletop RPG battle map.
Scene: {name}. {description}

Perspective: orthographic top-down view, suitable for a 2D grid.
Style: high quality fantasy digital art, detailed textures, neutral lighting, realistic scale.
No grid lines and no UI elements on the image."""


def build_location_image_prompt(name: str, description: str) -> str:
    """Render the illustration prompt for a location."""
    return LOCATION_IMAGE_PROMPT.format(name=name, description=description)


__all__ = [
    "DM_SYSTEM_PROMPT",
    "SUMMARY_PROMPT",
    "LOCATION_IMAGE_PROMPT",
    "build_system_prompt",
    "build_summary_prompt",
    "build_location_image_prompt",
]
