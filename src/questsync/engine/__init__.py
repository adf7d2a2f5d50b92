"""Turn engine for QuestSync.

Submodules:
    tools: Oracle tool schema and the ToolExecutor that applies tool calls
    rolls: Roll interrupts and their resolution (d20 library)
    turn_engine: The send / execute / send-back loop
    controller: The command facade (import it from its module)

Example:
    >>> from questsync.engine import TurnEngine, TurnOutcome
    >>> engine = TurnEngine(state, session=session)
    >>> result = await engine.submit("I search the room")
    >>> if result.outcome is TurnOutcome.INTERRUPTED:
    ...     result = await engine.resolve_roll()
"""

from __future__ import annotations

# =============================================================================
# Tools
# =============================================================================
from questsync.engine.tools import (
    TOOL_DEFINITIONS,
    LocationImageEffect,
    ToolCall,
    ToolDefinition,
    ToolExecutor,
    ToolKind,
    ToolOutcome,
    ToolResult,
    get_tool_definition,
    get_tools_as_openai_schema,
)

# =============================================================================
# Rolls
# =============================================================================
from questsync.engine.rolls import (
    PendingInterrupt,
    RollRequest,
    RollResolution,
    RollResolver,
    ability_modifier,
    roll_d20,
)

# =============================================================================
# Turn Engine
# =============================================================================
from questsync.engine.turn_engine import (
    TurnEngine,
    TurnListener,
    TurnOutcome,
    TurnResult,
    TurnStatus,
)


__all__ = [
    # Tools
    "ToolKind",
    "ToolCall",
    "ToolResult",
    "ToolOutcome",
    "ToolDefinition",
    "LocationImageEffect",
    "TOOL_DEFINITIONS",
    "get_tool_definition",
    "get_tools_as_openai_schema",
    "ToolExecutor",
    # Rolls
    "RollRequest",
    "PendingInterrupt",
    "RollResolution",
    "RollResolver",
    "ability_modifier",
    "roll_d20",
    # Turn Engine
    "TurnStatus",
    "TurnOutcome",
    "TurnResult",
    "TurnListener",
    "TurnEngine",
]
