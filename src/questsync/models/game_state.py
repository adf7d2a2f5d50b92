"""Game state models for QuestSync.

This module defines the canonical value object shared by the turn engine, the
tool executor and the multiplayer relay. Models carry data and invariants only;
mutation lives in the engine.

Python attributes are snake_case. The persisted document (used for both local
saves and the relay store) uses camelCase keys produced by the alias generator,
so ``GameState.to_document()`` and ``GameState.from_document()`` are the only
two places the wire shape is decided.

Models:
    Character: Identity, ability scores, hit points and inventory.
    LocationState: The single current location.
    Quest: A quest log entry, keyed by a stable id.
    Note: An immutable journal entry.
    CombatState: Initiative tracker with ordered combatants.
    MapToken: A battle map token.
    Message: One transcript entry.
    GameState: The root aggregate.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Annotated, Any
from uuid import uuid4

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

from questsync.core.constants import (
    ABILITY_NAMES,
    DEFAULT_FOOTPRINT,
    FIELD_CHARACTER,
    FIELD_COMBAT_STATE,
    FIELD_LOCATION,
    FIELD_MAP_TOKENS,
    FIELD_NOTES,
    FIELD_QUESTS,
    FIELD_STORY_SUMMARY,
    FIELD_TIMESTAMP,
    FIELD_TRANSCRIPT,
)
from questsync.core.exceptions import StateLoadError
from questsync.models.enums import Author, Faction, NoteCategory, QuestStatus


def new_id() -> str:
    """Generate a fresh identifier for messages, quests and notes."""
    return uuid4().hex[:12]


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class DocumentModel(BaseModel):
    """Base model for everything that travels in the persisted document."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# =============================================================================
# Character
# =============================================================================


class AbilityScores(DocumentModel):
    """The six ability scores of a character."""

    strength: Annotated[int, Field(ge=1, le=30)] = 10
    dexterity: Annotated[int, Field(ge=1, le=30)] = 10
    constitution: Annotated[int, Field(ge=1, le=30)] = 10
    intelligence: Annotated[int, Field(ge=1, le=30)] = 10
    wisdom: Annotated[int, Field(ge=1, le=30)] = 10
    charisma: Annotated[int, Field(ge=1, le=30)] = 10

    def score(self, ability: str) -> int | None:
        """Look up a score by ability name.

        Args:
            ability: Lower-case ability name (e.g. 'dexterity').

        Returns:
            The score, or None if the name is not one of the six abilities.
        """
        key = ability.strip().lower()
        if key not in ABILITY_NAMES:
            return None
        return getattr(self, key)


class Character(DocumentModel):
    """The player character bound to an oracle session.

    Attributes:
        name: Character name.
        race: Character race.
        character_class: Character class (persisted as ``class``).
        level: Character level.
        stats: Ability scores.
        inventory: Ordered item names.
        appearance: Free-text visual description.
        hp: Current hit points, always within ``[0, max_hp]``.
        max_hp: Maximum hit points.
        armor_class: Armor value (persisted as ``ac``).
        avatar_url: Optional generated portrait reference.
    """

    name: str = Field(min_length=1)
    race: str = ""
    character_class: str = Field(
        default="",
        validation_alias=AliasChoices("class", "characterClass", "character_class"),
        serialization_alias="class",
    )
    level: Annotated[int, Field(ge=1, le=20)] = 1
    stats: AbilityScores = Field(default_factory=AbilityScores)
    inventory: list[str] = Field(default_factory=list)
    appearance: str = ""
    hp: int = Field(ge=0)
    max_hp: int = Field(ge=1)
    armor_class: int = Field(
        default=10,
        ge=0,
        validation_alias=AliasChoices("ac", "armorClass", "armor_class"),
        serialization_alias="ac",
    )
    avatar_url: str | None = None

    @model_validator(mode="after")
    def validate_hp(self) -> "Character":
        """Ensure current hit points do not exceed the maximum."""
        if self.hp > self.max_hp:
            raise ValueError(f"hp ({self.hp}) cannot exceed max_hp ({self.max_hp})")
        return self


# =============================================================================
# World
# =============================================================================


class LocationState(DocumentModel):
    """The current location, with its optional generated image."""

    name: str = ""
    description: str = ""
    image_url: str | None = None
    is_generating: bool = False


class Quest(DocumentModel):
    """A quest log entry. The id never changes once assigned."""

    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    status: QuestStatus = QuestStatus.ACTIVE


class Note(DocumentModel):
    """A journal entry. Notes are appended and never edited."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    title: str
    content: str
    category: NoteCategory = NoteCategory.OTHER
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Combat & Map
# =============================================================================


class Combatant(DocumentModel):
    """An initiative tracker entry. The name identifies it within a combat."""

    name: str = Field(min_length=1)
    initiative: int = 0
    faction: Faction = Faction.ENEMY
    is_current_turn: bool = False
    health_status: str | None = None


class CombatState(DocumentModel):
    """Initiative tracker state."""

    active: bool = False
    combatants: list[Combatant] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_names(self) -> "CombatState":
        """Combatant names must be unique while combat is active."""
        if self.active:
            names = [c.name for c in self.combatants]
            if len(names) != len(set(names)):
                raise ValueError("combatant names must be unique while combat is active")
        return self

    def names(self) -> list[str]:
        """Combatant names in tracker order."""
        return [c.name for c in self.combatants]


class GridPosition(DocumentModel):
    """A cell on the battle map grid."""

    x: int = Field(ge=0)
    y: int = Field(ge=0)


class MapToken(DocumentModel):
    """A token on the battle map.

    Tokens spawned from combat use the combatant name as their id.
    """

    id: str = Field(min_length=1)
    faction: Faction = Faction.ENEMY
    grid_position: GridPosition
    footprint_size: Annotated[int, Field(ge=1)] = DEFAULT_FOOTPRINT


# =============================================================================
# Transcript
# =============================================================================


class Message(DocumentModel):
    """One transcript entry.

    Attributes:
        id: Unique message identifier.
        text: Message body.
        author: Who produced the entry.
        created_at: Creation time.
        is_error: Marks system entries that report a failure.
        sender_id: Participant that typed a user entry, if known.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    text: str
    author: Author
    created_at: datetime = Field(default_factory=utcnow)
    is_error: bool = False
    sender_id: str | None = None

    @classmethod
    def user(cls, text: str, *, sender_id: str | None = None) -> "Message":
        """Create a user-authored entry."""
        return cls(text=text, author=Author.USER, sender_id=sender_id)

    @classmethod
    def agent(cls, text: str) -> "Message":
        """Create an oracle-authored entry."""
        return cls(text=text, author=Author.AGENT)

    @classmethod
    def system(cls, text: str, *, is_error: bool = False) -> "Message":
        """Create a system entry, optionally flagged as an error."""
        return cls(text=text, author=Author.SYSTEM, is_error=is_error)


# =============================================================================
# Root Aggregate
# =============================================================================


_KEY_TO_FIELD: dict[str, str] = {
    FIELD_CHARACTER: "character",
    FIELD_TRANSCRIPT: "transcript",
    FIELD_LOCATION: "location",
    FIELD_QUESTS: "quests",
    FIELD_NOTES: "notes",
    FIELD_STORY_SUMMARY: "story_summary",
    FIELD_COMBAT_STATE: "combat_state",
    FIELD_MAP_TOKENS: "map_tokens",
}


class GameState(DocumentModel):
    """Root aggregate for one adventure.

    The transcript is append-only and its order is the record of what
    happened. ``notes`` is kept newest-first. ``quests`` preserves insertion
    order with the newest quest first.
    """

    character: Character
    transcript: list[Message] = Field(default_factory=list)
    location: LocationState = Field(default_factory=LocationState)
    quests: dict[str, Quest] = Field(default_factory=dict)
    notes: list[Note] = Field(default_factory=list)
    story_summary: str = ""
    combat_state: CombatState = Field(default_factory=CombatState)
    map_tokens: list[MapToken] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_identities(self) -> "GameState":
        """Quest keys must match quest ids and token ids must be unique."""
        for key, quest in self.quests.items():
            if key != quest.id:
                raise ValueError(f"quest key {key!r} does not match quest id {quest.id!r}")
        token_ids = [t.id for t in self.map_tokens]
        if len(token_ids) != len(set(token_ids)):
            raise ValueError("map token ids must be unique")
        return self

    # -------------------------------------------------------------------------
    # Queries & helpers
    # -------------------------------------------------------------------------

    def append_message(self, message: Message) -> Message:
        """Append an entry to the transcript."""
        self.transcript.append(message)
        return message

    def message_ids(self) -> set[str]:
        """Ids of every transcript entry."""
        return {m.id for m in self.transcript}

    def find_quest(self, quest_id: str | None = None, title: str | None = None) -> Quest | None:
        """Find a quest whose id or title matches.

        Args:
            quest_id: Quest id to match.
            title: Quest title to match.

        Returns:
            The first matching quest, or None.
        """
        for quest in self.quests.values():
            if (quest_id is not None and quest.id == quest_id) or (
                title is not None and quest.title == title
            ):
                return quest
        return None

    def token_by_id(self, token_id: str) -> MapToken | None:
        """Find a map token by id."""
        for token in self.map_tokens:
            if token.id == token_id:
                return token
        return None

    # -------------------------------------------------------------------------
    # Persisted document
    # -------------------------------------------------------------------------

    def to_document(self) -> dict[str, Any]:
        """Serialize to the persisted document shape.

        Returns:
            JSON-compatible dict with the persisted keys and a timestamp
            in epoch milliseconds.
        """
        document = self.model_dump(mode="json", by_alias=True)
        document[FIELD_TIMESTAMP] = int(utcnow().timestamp() * 1000)
        return document

    def to_partial_document(self, keys: Iterable[str]) -> dict[str, Any]:
        """Serialize only the given document keys.

        Args:
            keys: camelCase document keys (e.g. 'combatState').

        Returns:
            JSON-compatible dict holding just those keys.
        """
        names = {_KEY_TO_FIELD[key] for key in keys}
        return self.model_dump(mode="json", by_alias=True, include=names)

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "GameState":
        """Rebuild a GameState from a persisted document.

        Args:
            document: Mapping in the persisted document shape. Unknown keys
                such as ``timestamp`` or relay metadata are ignored.

        Returns:
            The validated GameState.

        Raises:
            StateLoadError: If the document is not a mapping or fails
                validation. Nothing is returned in that case.
        """
        if not isinstance(document, Mapping):
            raise StateLoadError(
                "Persisted document must be a mapping",
                details={"type": type(document).__name__},
            )
        try:
            return cls.model_validate(dict(document))
        except ValidationError as exc:
            raise StateLoadError(
                f"Persisted document is invalid: {exc.error_count()} error(s)",
                details={"errors": [e["loc"] for e in exc.errors()]},
            ) from exc

    def adopt_fields(self, document: Mapping[str, Any], keys: Iterable[str]) -> list[str]:
        """Replace the given fields with the values from an incoming document.

        All keys are validated together before any is applied, so a bad
        value leaves this state untouched.

        Args:
            document: Incoming document (may be partial).
            keys: camelCase keys to adopt; keys missing from the document
                are skipped.

        Returns:
            The keys that were applied.

        Raises:
            StateLoadError: If the merged values fail validation.
        """
        present = [key for key in keys if key in document]
        if not present:
            return []
        merged = self.model_dump(mode="json", by_alias=True)
        merged.update({key: document[key] for key in present})
        incoming = type(self).from_document(merged)
        for key in present:
            name = _KEY_TO_FIELD[key]
            setattr(self, name, getattr(incoming, name))
        return present


__all__ = [
    "new_id",
    "utcnow",
    "AbilityScores",
    "Character",
    "LocationState",
    "Quest",
    "Note",
    "Combatant",
    "CombatState",
    "GridPosition",
    "MapToken",
    "Message",
    "GameState",
]
