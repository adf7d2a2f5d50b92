"""Dice-roll interrupts.

When the oracle asks for a roll, the turn cannot continue until a human
supplies the die value. The resolver holds that suspended turn in a single
slot: the roll request, the auto-tool results from the same batch that are
waiting to be sent, and any further roll requests queued behind it.

The slot is owned by one ``RollResolver`` instance and handed to the turn
engine by reference. There is no module-level pending state.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from uuid import uuid4

import d20
from pydantic import ValidationError

from questsync.core.constants import INITIATIVE
from questsync.core.exceptions import InterruptPendingError
from questsync.core.logging import get_logger
from questsync.engine.tools import RequestRollArgs, ToolCall, ToolKind, ToolResult
from questsync.models.enums import Ability
from questsync.models.game_state import AbilityScores, GameState, Message


logger = get_logger(__name__)


# =============================================================================
# Roll Data
# =============================================================================


@dataclass(frozen=True)
class RollRequest:
    """A roll the oracle asked the player to make.

    Attributes:
        call_id: Id of the request_roll call this roll answers.
        ability: Ability name or 'initiative'.
        skill: Optional skill name.
        dc: Optional difficulty class.
        reason: Why the roll was requested.
    """

    call_id: str
    ability: str
    skill: str | None = None
    dc: int | None = None
    reason: str = ""

    @classmethod
    def from_call(cls, call: ToolCall) -> "RollRequest":
        """Build a request from a request_roll tool call.

        A malformed argument record still yields a request so the oracle
        receives an answer for its call id.
        """
        try:
            args = RequestRollArgs.model_validate(call.arguments or {})
        except ValidationError:
            logger.warning("Malformed roll request", call_id=call.call_id)
            ability = (call.arguments or {}).get("ability")
            return cls(call_id=call.call_id, ability=str(ability or "check"))
        return cls(
            call_id=call.call_id,
            ability=args.ability,
            skill=args.skill,
            dc=args.dc,
            reason=args.reason,
        )

    @property
    def label(self) -> str:
        """Short check name used in the transcript."""
        if self.skill:
            return f"{self.ability} ({self.skill})"
        return self.ability


@dataclass
class PendingInterrupt:
    """A suspended turn waiting for a die value.

    Attributes:
        request: The roll currently awaiting resolution.
        deferred_results: Auto-tool results from the same batch, held back.
        queued: Further roll requests from the same batch, in order.
        completed: Results of rolls already resolved in this batch.
        request_id: Identifier of this interrupt.
    """

    request: RollRequest
    deferred_results: list[ToolResult] = field(default_factory=list)
    queued: list[RollRequest] = field(default_factory=list)
    completed: list[ToolResult] = field(default_factory=list)
    request_id: str = field(default_factory=lambda: uuid4().hex)


@dataclass
class RollResolution:
    """Result of resolving the pending roll.

    ``batch`` is None while more rolls from the same batch are still queued;
    the last resolution carries the full batch to send to the oracle.
    """

    request: RollRequest
    raw: int
    modifier: int
    total: int
    message: Message
    batch: list[ToolResult] | None


# =============================================================================
# Helpers
# =============================================================================


def ability_modifier(stats: AbilityScores, ability: str) -> int:
    """Modifier for a roll on the given ability.

    Initiative uses dexterity. Names that are not one of the six abilities
    get no modifier.

    Args:
        stats: Character ability scores.
        ability: Requested ability name.

    Returns:
        floor((score - 10) / 2), or 0 for unknown names.
    """
    key = ability.strip().lower()
    if key == INITIATIVE:
        key = Ability.DEX.value
    score = stats.score(key)
    if score is None:
        return 0
    return (score - 10) // 2


def roll_d20() -> int:
    """Roll a single d20 for a player who lets the application roll."""
    return d20.roll("1d20").total


def roll_result_text(total: int, dc: int | None) -> str:
    """Result string sent to the oracle for a resolved roll."""
    text = f"Player rolled: {total}"
    if dc is not None:
        verdict = "success" if total >= dc else "failure"
        text += f" vs DC {dc} ({verdict})"
    return text


# =============================================================================
# Resolver
# =============================================================================


class RollResolver:
    """Holds at most one pending roll interrupt for a GameState.

    Example:
        >>> resolver = RollResolver(state)
        >>> resolver.capture(RollRequest("call_1", "dexterity"), [])
        >>> resolution = resolver.resolve(17)
        >>> resolver.is_awaiting_roll()
        False
    """

    def __init__(self, state: GameState) -> None:
        self.state = state
        self._pending: PendingInterrupt | None = None

    @property
    def pending(self) -> PendingInterrupt | None:
        """The current interrupt, if any."""
        return self._pending

    def is_awaiting_roll(self) -> bool:
        """Check whether a roll must be resolved before play continues."""
        return self._pending is not None

    def capture(
        self,
        request: RollRequest,
        deferred_results: Sequence[ToolResult],
        *,
        queued: Sequence[RollRequest] = (),
    ) -> PendingInterrupt:
        """Suspend the turn on a roll request.

        Args:
            request: The first roll request of the batch.
            deferred_results: Auto-tool results computed in the same batch.
            queued: Later roll requests of the same batch, in order.

        Returns:
            The captured interrupt.

        Raises:
            InterruptPendingError: If an interrupt is already pending.
        """
        if self._pending is not None:
            raise InterruptPendingError(
                "A roll interrupt is already pending",
                current_state="awaiting_interrupt",
                details={
                    "pending_call_id": self._pending.request.call_id,
                    "new_call_id": request.call_id,
                },
            )
        self._pending = PendingInterrupt(
            request=request,
            deferred_results=list(deferred_results),
            queued=list(queued),
        )
        logger.info(
            "Roll interrupt captured",
            call_id=request.call_id,
            ability=request.ability,
            dc=request.dc,
            deferred=len(deferred_results),
            queued=len(queued),
        )
        return self._pending

    def resolve(self, raw: int) -> RollResolution | None:
        """Resolve the pending roll with a raw die value.

        Appends the check to the transcript. If more rolls from the same
        batch are queued, the next one becomes pending and the returned
        resolution carries no batch.

        Args:
            raw: The natural die value (1-20).

        Returns:
            The resolution, or None if nothing was pending.

        Raises:
            ValueError: If raw is not a d20 face.
        """
        pending = self._pending
        if pending is None:
            logger.info("Stale roll resolution ignored", raw=raw)
            return None
        if not 1 <= raw <= 20:
            raise ValueError(f"Die value must be between 1 and 20, got {raw}")

        request = pending.request
        modifier = ability_modifier(self.state.character.stats, request.ability)
        total = raw + modifier
        sign = "+" if modifier >= 0 else "-"
        message = self.state.append_message(
            Message.system(
                f"[🎲 {request.label} Check]: Rolled {raw} {sign} {abs(modifier)} = **{total}**"
            )
        )
        result = ToolResult(
            name=ToolKind.REQUEST_ROLL.value,
            call_id=request.call_id,
            result=roll_result_text(total, request.dc),
        )
        completed = [*pending.completed, result]

        if pending.queued:
            self._pending = PendingInterrupt(
                request=pending.queued[0],
                deferred_results=pending.deferred_results,
                queued=pending.queued[1:],
                completed=completed,
            )
            batch = None
        else:
            self._pending = None
            batch = [*pending.deferred_results, *completed]

        logger.info(
            "Roll resolved",
            call_id=request.call_id,
            raw=raw,
            modifier=modifier,
            total=total,
            remaining=len(pending.queued),
        )
        return RollResolution(
            request=request,
            raw=raw,
            modifier=modifier,
            total=total,
            message=message,
            batch=batch,
        )

    def clear(self) -> None:
        """Drop any pending interrupt (used when a different game is loaded)."""
        if self._pending is not None:
            logger.info("Roll interrupt discarded", call_id=self._pending.request.call_id)
        self._pending = None


__all__ = [
    "RollRequest",
    "PendingInterrupt",
    "RollResolution",
    "RollResolver",
    "ability_modifier",
    "roll_d20",
    "roll_result_text",
]
