"""World-mutation tools called by the narrative oracle.

This module maps one oracle tool call to exactly one deterministic mutation
of the owned ``GameState``, a short result string sent back to the oracle,
and an optional log line for the transcript. Execution never blocks: the
only slow effect (location image generation) is returned as a value for the
caller to run in the background.

Tools:
    update_hp: Adjust current hit points, clamped to [0, max_hp]
    modify_inventory: Add an item or remove the first matching one
    request_roll: Ask the player for a die roll (handled by the roll resolver)
    update_location: Replace the current location and trigger an image
    update_quest: Create or update a quest by id or title
    add_note: Add a journal entry
    manage_combat: Start, end or update the initiative tracker
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from questsync.core.constants import (
    DEFAULT_FOOTPRINT,
    DEFAULT_GRID_COLS,
    DEFAULT_GRID_ROWS,
    FIELD_CHARACTER,
    FIELD_COMBAT_STATE,
    FIELD_LOCATION,
    FIELD_MAP_TOKENS,
    FIELD_NOTES,
    FIELD_QUESTS,
    GENERIC_TOOL_RESULT,
)
from questsync.core.exceptions import ToolExecutionError
from questsync.core.logging import get_logger
from questsync.models.enums import (
    CombatAction,
    Faction,
    InventoryAction,
    NoteCategory,
    QuestStatus,
)
from questsync.models.game_state import (
    Combatant,
    CombatState,
    GameState,
    GridPosition,
    LocationState,
    MapToken,
    Note,
    Quest,
    new_id,
)


logger = get_logger(__name__)


# =============================================================================
# Tool Kinds & Calls
# =============================================================================


class ToolKind(StrEnum):
    """Recognized tool names. Values are the wire names and must not change."""

    UPDATE_HP = "update_hp"
    MODIFY_INVENTORY = "modify_inventory"
    REQUEST_ROLL = "request_roll"
    UPDATE_LOCATION = "update_location"
    UPDATE_QUEST = "update_quest"
    ADD_NOTE = "add_note"
    MANAGE_COMBAT = "manage_combat"
    UNRECOGNIZED = "unrecognized"
    """Fallback for any name the oracle invents."""

    @classmethod
    def parse(cls, name: str) -> "ToolKind":
        """Resolve a wire name, falling back to UNRECOGNIZED."""
        try:
            kind = cls(name)
        except ValueError:
            return cls.UNRECOGNIZED
        return kind


@dataclass
class ToolCall:
    """A tool call requested by the oracle.

    Attributes:
        name: Wire name of the tool.
        arguments: Decoded argument record.
        call_id: Identifier the oracle uses to match the result.
    """

    name: str
    arguments: dict[str, Any]
    call_id: str

    @property
    def kind(self) -> ToolKind:
        """The recognized tool kind for this call."""
        return ToolKind.parse(self.name)


@dataclass
class ToolResult:
    """Result of one tool call, as sent back to the oracle."""

    name: str
    call_id: str
    result: str


@dataclass
class LocationImageEffect:
    """Background image generation requested by update_location."""

    name: str
    description: str


@dataclass
class ToolOutcome:
    """Everything a single tool execution produced.

    Attributes:
        result: Short result string for the oracle.
        log: Transcript line for the players, if any.
        changed_fields: Document keys touched by the mutation.
        effect: Slow side effect for the caller to run in the background.
    """

    result: str
    log: str | None = None
    changed_fields: frozenset[str] = field(default_factory=frozenset)
    effect: LocationImageEffect | None = None

    def to_result(self, call: ToolCall) -> ToolResult:
        """Pair this outcome's result string with the call it answers."""
        return ToolResult(name=call.name, call_id=call.call_id, result=self.result)


# =============================================================================
# Argument Models
# =============================================================================


class _ToolArgs(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("*", mode="before")
    @classmethod
    def _lower_enums(cls, value: Any, info: Any) -> Any:
        if info.field_name in {"action", "status", "category", "faction"} and isinstance(value, str):
            return value.strip().lower()
        return value


class UpdateHpArgs(_ToolArgs):
    amount: int
    reason: str = ""


class ModifyInventoryArgs(_ToolArgs):
    item: str = Field(min_length=1)
    action: InventoryAction


class RequestRollArgs(_ToolArgs):
    ability: str = Field(min_length=1)
    skill: str | None = None
    dc: int | None = None
    reason: str = ""


class UpdateLocationArgs(_ToolArgs):
    name: str = Field(min_length=1)
    description: str = ""


class UpdateQuestArgs(_ToolArgs):
    id: str = "new"
    title: str = Field(min_length=1)
    description: str | None = None
    status: QuestStatus = QuestStatus.ACTIVE


class AddNoteArgs(_ToolArgs):
    title: str = Field(min_length=1)
    content: str = ""
    category: NoteCategory = Field(
        default=NoteCategory.OTHER,
        validation_alias=AliasChoices("category", "type"),
    )


class CombatantArgs(_ToolArgs):
    name: str = Field(min_length=1)
    initiative: int = 0
    faction: Faction = Field(
        default=Faction.ENEMY,
        validation_alias=AliasChoices("faction", "type"),
    )
    is_current_turn: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_current_turn", "isCurrentTurn"),
    )
    health_status: str | None = Field(
        default=None,
        validation_alias=AliasChoices("health_status", "healthStatus", "hpStatus"),
    )


class ManageCombatArgs(_ToolArgs):
    action: CombatAction
    combatants: list[CombatantArgs] | None = None


# =============================================================================
# Wire Schema
# =============================================================================


@dataclass
class ToolDefinition:
    """Definition of an oracle tool.

    Attributes:
        kind: Tool kind (its value is the wire name).
        description: Human-readable description for the oracle.
        parameters: JSON schema for the argument record.
    """

    kind: ToolKind
    description: str
    parameters: dict[str, Any]

    def to_openai_schema(self) -> dict[str, Any]:
        """Convert to OpenAI function schema."""
        return {
            "type": "function",
            "function": {
                "name": self.kind.value,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


_COMBATANT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "Unique combatant name"},
        "initiative": {"type": "integer", "description": "Initiative total"},
        "faction": {"type": "string", "enum": [f.value for f in Faction]},
        "isCurrentTurn": {"type": "boolean"},
        "healthStatus": {"type": "string", "description": "Short status, e.g. 'Wounded'"},
    },
    "required": ["name", "initiative", "faction"],
}


TOOL_DEFINITIONS: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        kind=ToolKind.UPDATE_HP,
        description="Change the player's hit points. Use negative amounts for damage and positive for healing.",
        parameters={
            "type": "object",
            "properties": {
                "amount": {"type": "integer", "description": "HP change (negative = damage)"},
                "reason": {"type": "string", "description": "Why HP changed"},
            },
            "required": ["amount", "reason"],
        },
    ),
    ToolDefinition(
        kind=ToolKind.MODIFY_INVENTORY,
        description="Add an item to or remove an item from the player's inventory.",
        parameters={
            "type": "object",
            "properties": {
                "item": {"type": "string", "description": "Item name"},
                "action": {"type": "string", "enum": [a.value for a in InventoryAction]},
            },
            "required": ["item", "action"],
        },
    ),
    ToolDefinition(
        kind=ToolKind.REQUEST_ROLL,
        description=(
            "Ask the player to roll a d20 for an ability check, skill check, saving throw "
            "or initiative. Stop narrating and wait for the result."
        ),
        parameters={
            "type": "object",
            "properties": {
                "ability": {
                    "type": "string",
                    "description": "Ability name (strength, dexterity, ...) or 'initiative'",
                },
                "skill": {"type": "string", "description": "Skill, if any (e.g. stealth)"},
                "dc": {"type": "integer", "description": "Difficulty class, if known"},
                "reason": {"type": "string", "description": "What the roll is for"},
            },
            "required": ["ability", "reason"],
        },
    ),
    ToolDefinition(
        kind=ToolKind.UPDATE_LOCATION,
        description="Move the scene to a new location. Triggers a background illustration.",
        parameters={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Location name"},
                "description": {"type": "string", "description": "Visual description"},
            },
            "required": ["name", "description"],
        },
    ),
    ToolDefinition(
        kind=ToolKind.UPDATE_QUEST,
        description="Create a quest (id 'new') or update an existing quest by id or title.",
        parameters={
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Quest id, or 'new'"},
                "title": {"type": "string"},
                "description": {"type": "string"},
                "status": {"type": "string", "enum": [s.value for s in QuestStatus]},
            },
            "required": ["id", "title", "status"],
        },
    ),
    ToolDefinition(
        kind=ToolKind.ADD_NOTE,
        description="Record an important NPC, place or piece of lore in the player's journal.",
        parameters={
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "content": {"type": "string"},
                "category": {"type": "string", "enum": [c.value for c in NoteCategory]},
            },
            "required": ["title", "content", "category"],
        },
    ),
    ToolDefinition(
        kind=ToolKind.MANAGE_COMBAT,
        description=(
            "Control the initiative tracker: 'start' opens it, 'update' replaces the "
            "combatant list, 'end' closes it."
        ),
        parameters={
            "type": "object",
            "properties": {
                "action": {"type": "string", "enum": [a.value for a in CombatAction]},
                "combatants": {"type": "array", "items": _COMBATANT_SCHEMA},
            },
            "required": ["action"],
        },
    ),
)


def get_tool_definition(kind: ToolKind) -> ToolDefinition | None:
    """Get a tool definition by kind."""
    for definition in TOOL_DEFINITIONS:
        if definition.kind is kind:
            return definition
    return None


def get_tools_as_openai_schema() -> list[dict[str, Any]]:
    """Get all tools in OpenAI function calling schema format."""
    return [definition.to_openai_schema() for definition in TOOL_DEFINITIONS]


# =============================================================================
# Executor
# =============================================================================


class ToolExecutor:
    """Applies oracle tool calls to an owned GameState.

    Every call produces exactly one outcome. Unknown names and argument
    records that fail validation are logged and answered with a generic
    result without touching state.

    Example:
        >>> executor = ToolExecutor(state)
        >>> outcome = executor.execute(ToolCall("update_hp", {"amount": -3, "reason": "trap"}, "c1"))
        >>> outcome.result
        'Success, current hp 8/11'
    """

    def __init__(
        self,
        state: GameState,
        *,
        grid_cols: int = DEFAULT_GRID_COLS,
        grid_rows: int = DEFAULT_GRID_ROWS,
    ) -> None:
        self.state = state
        self.grid_cols = grid_cols
        self.grid_rows = grid_rows
        self._handlers: dict[ToolKind, tuple[type[_ToolArgs], Callable[[Any], ToolOutcome]]] = {
            ToolKind.UPDATE_HP: (UpdateHpArgs, self._update_hp),
            ToolKind.MODIFY_INVENTORY: (ModifyInventoryArgs, self._modify_inventory),
            ToolKind.UPDATE_LOCATION: (UpdateLocationArgs, self._update_location),
            ToolKind.UPDATE_QUEST: (UpdateQuestArgs, self._update_quest),
            ToolKind.ADD_NOTE: (AddNoteArgs, self._add_note),
            ToolKind.MANAGE_COMBAT: (ManageCombatArgs, self._manage_combat),
        }

    def execute(self, call: ToolCall) -> ToolOutcome:
        """Apply one tool call.

        Args:
            call: The tool call to apply.

        Returns:
            The outcome of the call.

        Raises:
            ToolExecutionError: If called with a roll request, which must go
                through the roll resolver instead.
        """
        kind = call.kind
        if kind is ToolKind.REQUEST_ROLL:
            raise ToolExecutionError(
                "Roll requests are resolved by the player, not executed",
                tool_name=call.name,
            )
        if kind is ToolKind.UNRECOGNIZED:
            logger.warning("Unknown tool called", tool=call.name, call_id=call.call_id)
            return ToolOutcome(result=GENERIC_TOOL_RESULT)

        model, handler = self._handlers[kind]
        try:
            args = model.model_validate(call.arguments or {})
        except ValidationError as exc:
            logger.warning(
                "Malformed tool call",
                tool=call.name,
                call_id=call.call_id,
                errors=exc.error_count(),
            )
            return ToolOutcome(result=GENERIC_TOOL_RESULT)

        outcome = handler(args)
        logger.info(
            "Tool executed",
            tool=call.name,
            call_id=call.call_id,
            changed=sorted(outcome.changed_fields),
        )
        return outcome

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _update_hp(self, args: UpdateHpArgs) -> ToolOutcome:
        character = self.state.character
        character.hp = min(character.max_hp, max(0, character.hp + args.amount))
        change = f"+{args.amount}" if args.amount > 0 else str(args.amount)
        reason = f" ({args.reason})" if args.reason else ""
        return ToolOutcome(
            result=f"Success, current hp {character.hp}/{character.max_hp}",
            log=f"**[System]:** HP changed: {change}{reason}",
            changed_fields=frozenset({FIELD_CHARACTER}),
        )

    def _modify_inventory(self, args: ModifyInventoryArgs) -> ToolOutcome:
        inventory = self.state.character.inventory
        if args.action is InventoryAction.ADD:
            inventory.append(args.item)
            log = f"**[System]:** Item gained: *{args.item}*"
        else:
            needle = args.item.lower()
            index = next(
                (i for i, item in enumerate(inventory) if needle in item.lower()),
                None,
            )
            if index is None:
                return ToolOutcome(result="Success")
            removed = inventory.pop(index)
            log = f"**[System]:** Item lost: *{removed}*"
        return ToolOutcome(
            result="Success",
            log=log,
            changed_fields=frozenset({FIELD_CHARACTER}),
        )

    def _update_location(self, args: UpdateLocationArgs) -> ToolOutcome:
        previous = self.state.location
        self.state.location = LocationState(
            name=args.name,
            description=args.description,
            image_url=previous.image_url,
            is_generating=True,
        )
        return ToolOutcome(
            result="Location updated; generation triggered",
            changed_fields=frozenset({FIELD_LOCATION}),
            effect=LocationImageEffect(name=args.name, description=args.description),
        )

    def _update_quest(self, args: UpdateQuestArgs) -> ToolOutcome:
        lookup_id = None if args.id == "new" else args.id
        existing = self.state.find_quest(quest_id=lookup_id, title=args.title)
        if existing is not None:
            existing.title = args.title
            existing.status = args.status
            if args.description:
                existing.description = args.description
        else:
            quest = Quest(
                id=lookup_id or new_id(),
                title=args.title,
                description=args.description or "",
                status=args.status,
            )
            self.state.quests = {quest.id: quest, **self.state.quests}

        headline = {
            QuestStatus.ACTIVE: "New quest",
            QuestStatus.COMPLETED: "Quest completed",
            QuestStatus.FAILED: "Quest failed",
        }[args.status]
        return ToolOutcome(
            result=f"Quest {args.title} is now {args.status.value}",
            log=f"**[Journal]:** {headline}: *{args.title}*",
            changed_fields=frozenset({FIELD_QUESTS}),
        )

    def _add_note(self, args: AddNoteArgs) -> ToolOutcome:
        note = Note(title=args.title, content=args.content, category=args.category)
        self.state.notes.insert(0, note)
        return ToolOutcome(
            result="Note added",
            log=f"**[Diary]:** New entry about *{args.title}*",
            changed_fields=frozenset({FIELD_NOTES}),
        )

    def _manage_combat(self, args: ManageCombatArgs) -> ToolOutcome:
        result = f"Combat {args.action.value}"
        if args.action is CombatAction.START:
            self.state.combat_state = CombatState(active=True, combatants=[])
            return ToolOutcome(
                result=result,
                log="**[COMBAT STARTED]** Roll for initiative!",
                changed_fields=frozenset({FIELD_COMBAT_STATE}),
            )
        if args.action is CombatAction.END:
            self.state.combat_state = CombatState(active=False, combatants=[])
            self.state.map_tokens = []
            return ToolOutcome(
                result=result,
                log="**[COMBAT ENDED]**",
                changed_fields=frozenset({FIELD_COMBAT_STATE, FIELD_MAP_TOKENS}),
            )

        combatants = _unique_combatants(args.combatants or [])
        self.state.combat_state = CombatState(active=True, combatants=combatants)
        self._align_tokens(combatants)
        return ToolOutcome(
            result=result,
            changed_fields=frozenset({FIELD_COMBAT_STATE, FIELD_MAP_TOKENS}),
        )

    # -------------------------------------------------------------------------
    # Map tokens
    # -------------------------------------------------------------------------

    def _align_tokens(self, combatants: list[Combatant]) -> None:
        """Keep one token per combatant, keyed by combatant name."""
        names = {c.name for c in combatants}
        tokens = [t for t in self.state.map_tokens if t.id in names]
        occupied = {(t.grid_position.x, t.grid_position.y) for t in tokens}
        present = {t.id for t in tokens}

        for combatant in combatants:
            if combatant.name in present:
                continue
            position = self._spawn_position(combatant.faction, occupied)
            occupied.add((position.x, position.y))
            tokens.append(
                MapToken(
                    id=combatant.name,
                    faction=combatant.faction,
                    grid_position=position,
                    footprint_size=DEFAULT_FOOTPRINT,
                )
            )
        self.state.map_tokens = tokens

    def _spawn_position(self, faction: Faction, occupied: set[tuple[int, int]]) -> GridPosition:
        """First free cell on the faction's edge column, every other row first."""
        if faction.is_friendly:
            x = min(2, self.grid_cols - 1)
        else:
            x = max(0, self.grid_cols - 3)
        rows = [*range(1, self.grid_rows, 2), *range(0, self.grid_rows, 2)]
        for y in rows:
            if (x, y) not in occupied:
                return GridPosition(x=x, y=y)
        return GridPosition(x=x, y=0)


def _unique_combatants(entries: list[CombatantArgs]) -> list[Combatant]:
    """Build combatants, suffixing repeated names ("Goblin", "Goblin 2")."""
    seen: dict[str, int] = {}
    taken = {e.name for e in entries}
    combatants: list[Combatant] = []
    for entry in entries:
        name = entry.name
        if name in seen:
            count = seen[name]
            candidate = f"{name} {count + 1}"
            while candidate in taken:
                count += 1
                candidate = f"{name} {count + 1}"
            seen[name] = count + 1
            taken.add(candidate)
            name = candidate
        else:
            seen[name] = 1
        combatants.append(
            Combatant(
                name=name,
                initiative=entry.initiative,
                faction=entry.faction,
                is_current_turn=entry.is_current_turn,
                health_status=entry.health_status,
            )
        )
    return combatants


__all__ = [
    "ToolKind",
    "ToolCall",
    "ToolResult",
    "ToolOutcome",
    "LocationImageEffect",
    "ToolDefinition",
    "TOOL_DEFINITIONS",
    "RequestRollArgs",
    "get_tool_definition",
    "get_tools_as_openai_schema",
    "ToolExecutor",
]
