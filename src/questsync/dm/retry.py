"""Retry policy for oracle calls.

This is the only place retries happen. Rate-limit and service-unavailable
failures are retried with exponential backoff; everything else propagates on
the first failure.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from questsync.core.exceptions import TRANSIENT_ORACLE_ERRORS
from questsync.core.logging import get_logger
from questsync.dm.oracle import OraclePayload, OracleReply, OracleSession


if TYPE_CHECKING:
    from questsync.core.config import OracleSettings

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    Attributes:
        max_attempts: Total attempts, first try included.
        initial_delay: Seconds before the first retry; doubled each retry.
        max_delay: Upper bound for a single delay.
    """

    max_attempts: int = 3
    initial_delay: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls, settings: OracleSettings) -> "RetryPolicy":
        """Build a policy from oracle settings."""
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay=settings.initial_retry_delay,
            max_delay=settings.max_retry_delay,
        )

    def retrying(self) -> AsyncRetrying:
        """Create a tenacity controller for one call."""
        return AsyncRetrying(
            retry=retry_if_exception_type(TRANSIENT_ORACLE_ERRORS),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.initial_delay, max=self.max_delay),
            before_sleep=_log_retry,
            reraise=True,
        )


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Oracle call failed, retrying",
        attempt=retry_state.attempt_number,
        wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error=type(exc).__name__ if exc else None,
    )


async def call_with_retry(policy: RetryPolicy, func: Callable[[], Awaitable[T]]) -> T:
    """Await ``func`` under the retry policy.

    Args:
        policy: Retry policy to apply.
        func: Zero-argument coroutine factory, called once per attempt.

    Returns:
        The first successful result.

    Raises:
        OracleError: The last transient failure once attempts are exhausted,
            or any non-transient failure immediately.
    """
    async for attempt in policy.retrying():
        with attempt:
            return await func()
    raise AssertionError("unreachable: tenacity re-raises on exhaustion")


class RetryingSession:
    """Wraps an OracleSession so every send goes through the retry policy."""

    def __init__(self, session: OracleSession, policy: RetryPolicy | None = None) -> None:
        self.session = session
        self.policy = policy or RetryPolicy()

    async def send(self, payload: OraclePayload) -> OracleReply:
        """Send with retries on transient failures."""
        return await call_with_retry(self.policy, lambda: self.session.send(payload))


__all__ = [
    "RetryPolicy",
    "RetryingSession",
    "call_with_retry",
]
