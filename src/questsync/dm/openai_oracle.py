"""OpenAI-compatible narrative oracle.

Implements ``NarrativeOracle`` and ``ImageGenerator`` over ``openai.AsyncOpenAI``.
Any OpenAI-compatible endpoint works (set ``QUESTSYNC_ORACLE_BASE_URL`` for
OpenRouter and similar). The client's own retries are disabled; transient
failures surface as ``OracleRateLimitError`` / ``OracleUnavailableError`` and
are retried by ``questsync.dm.retry``.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from openai import (
    APIConnectionError,
    APIStatusError,
    AsyncOpenAI,
    OpenAIError,
    RateLimitError,
)

from questsync.core.config import OracleSettings, get_settings
from questsync.core.constants import SKIPPED_TOOL_RESULT, SYSTEM_REPLAY_PREFIX
from questsync.core.exceptions import (
    OracleConnectionError,
    OracleError,
    OracleRateLimitError,
    OracleResponseError,
    OracleUnavailableError,
)
from questsync.core.logging import get_logger
from questsync.dm.oracle import OraclePayload, OracleReply
from questsync.dm.prompts import (
    build_location_image_prompt,
    build_summary_prompt,
    build_system_prompt,
)
from questsync.engine.tools import ToolCall, get_tools_as_openai_schema
from questsync.models.enums import Author
from questsync.models.game_state import Character, Message


logger = get_logger(__name__)

_PROVIDER = "openai"


# =============================================================================
# Error Mapping
# =============================================================================


def _map_error(exc: Exception, model: str) -> OracleError:
    """Translate an openai exception into the oracle error hierarchy."""
    if isinstance(exc, RateLimitError):
        retry_after = exc.response.headers.get("retry-after") if exc.response else None
        try:
            retry_after_seconds = float(retry_after) if retry_after else None
        except ValueError:
            retry_after_seconds = None
        return OracleRateLimitError(
            f"Rate limit exceeded: {exc}",
            retry_after_seconds=retry_after_seconds,
            model=model,
            provider=_PROVIDER,
        )
    if isinstance(exc, APIConnectionError):
        return OracleConnectionError(
            f"Failed to connect to oracle: {exc}",
            model=model,
            provider=_PROVIDER,
        )
    if isinstance(exc, APIStatusError):
        if exc.status_code == 429:
            return OracleRateLimitError(f"Rate limit exceeded: {exc}", model=model, provider=_PROVIDER)
        if exc.status_code == 503:
            return OracleUnavailableError(
                f"Oracle temporarily unavailable: {exc}",
                model=model,
                provider=_PROVIDER,
                details={"status_code": exc.status_code},
            )
        return OracleResponseError(
            f"Oracle API error: {exc}",
            model=model,
            provider=_PROVIDER,
            details={"status_code": exc.status_code},
        )
    return OracleResponseError(f"Oracle call failed: {exc}", model=model, provider=_PROVIDER)


def create_client(settings: OracleSettings) -> AsyncOpenAI | None:
    """Create an async client, or None when no API key is configured.

    The client never retries on its own.
    """
    if settings.api_key is None or not settings.has_credentials:
        return None
    return AsyncOpenAI(
        api_key=settings.api_key.get_secret_value(),
        base_url=settings.base_url,
        timeout=settings.timeout_seconds,
        max_retries=0,
    )


def _parse_tool_calls(message: Any) -> list[ToolCall]:
    """Parse tool calls from a chat completion message.

    Unparseable argument JSON becomes an empty record; the executor then
    treats the call as malformed.
    """
    tool_calls: list[ToolCall] = []
    for tc in message.tool_calls or []:
        try:
            arguments = json.loads(tc.function.arguments or "{}")
        except json.JSONDecodeError:
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}
        tool_calls.append(ToolCall(name=tc.function.name, arguments=arguments, call_id=tc.id))
    return tool_calls


def build_history(transcript: Sequence[Message]) -> list[dict[str, Any]]:
    """Replay a transcript as chat messages.

    Error entries are dropped. System entries become user turns with a
    prefix so the model can tell them from player speech.
    """
    history: list[dict[str, Any]] = []
    for message in transcript:
        if message.is_error:
            continue
        if message.author is Author.AGENT:
            history.append({"role": "assistant", "content": message.text})
        elif message.author is Author.SYSTEM:
            history.append({"role": "user", "content": f"{SYSTEM_REPLAY_PREFIX}{message.text}"})
        else:
            history.append({"role": "user", "content": message.text})
    return history


# =============================================================================
# Session
# =============================================================================


class OpenAIOracleSession:
    """A chat-completions conversation with tool calling.

    History is only extended when a call succeeds, so a failed send can be
    retried or abandoned without leaving the conversation half-written.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: str,
        temperature: float,
        system_prompt: str,
        history: Sequence[dict[str, Any]] = (),
    ) -> None:
        self._client = client
        self.model = model
        self.temperature = temperature
        self._messages: list[dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            *history,
        ]
        self._open_call_ids: list[str] = []

    @property
    def messages(self) -> list[dict[str, Any]]:
        """Committed conversation, system prompt first."""
        return list(self._messages)

    def _build_turn(self, payload: OraclePayload) -> list[dict[str, Any]]:
        if isinstance(payload, str):
            turn = [
                {"role": "tool", "tool_call_id": call_id, "content": SKIPPED_TOOL_RESULT}
                for call_id in self._open_call_ids
            ]
            turn.append({"role": "user", "content": payload})
            return turn

        answered = {result.call_id for result in payload}
        turn = [
            {"role": "tool", "tool_call_id": result.call_id, "content": result.result}
            for result in payload
        ]
        turn.extend(
            {"role": "tool", "tool_call_id": call_id, "content": SKIPPED_TOOL_RESULT}
            for call_id in self._open_call_ids
            if call_id not in answered
        )
        return turn

    async def send(self, payload: OraclePayload) -> OracleReply:
        """Send an utterance or tool results and return the reply.

        Raises:
            OracleError: On any API failure (mapped by status).
        """
        messages = [*self._messages, *self._build_turn(payload)]
        logger.debug(
            "Sending to oracle",
            model=self.model,
            kind="utterance" if isinstance(payload, str) else "tool_results",
            messages=len(messages),
        )
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                tools=get_tools_as_openai_schema(),
                tool_choice="auto",
                temperature=self.temperature,
            )
        except OpenAIError as exc:
            raise _map_error(exc, self.model) from exc

        if not response.choices:
            raise OracleResponseError("Oracle returned no choices", model=self.model, provider=_PROVIDER)

        message = response.choices[0].message
        tool_calls = _parse_tool_calls(message)
        assistant: dict[str, Any] = {"role": "assistant", "content": message.content}
        if message.tool_calls:
            assistant["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.function.name,
                        "arguments": tc.function.arguments,
                    },
                }
                for tc in message.tool_calls
            ]

        self._messages = [*messages, assistant]
        self._open_call_ids = [call.call_id for call in tool_calls]

        logger.info(
            "Oracle replied",
            model=self.model,
            tool_calls=len(tool_calls),
            text_preview=(message.content or "")[:80],
        )
        return OracleReply(text=message.content or None, tool_calls=tool_calls)


# =============================================================================
# Oracle
# =============================================================================


class OpenAIOracle:
    """NarrativeOracle backed by an OpenAI-compatible chat API.

    Example:
        >>> oracle = OpenAIOracle()
        >>> session = oracle.create_session(character)
        >>> if session is None:
        ...     print("No API key configured")
    """

    def __init__(
        self,
        settings: OracleSettings | None = None,
        *,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.settings = settings or get_settings().oracle
        self._client = client

    def _get_client(self) -> AsyncOpenAI | None:
        """Get or create the client. None when no API key is configured."""
        if self._client is None:
            self._client = create_client(self.settings)
        return self._client

    def _session(
        self,
        character: Character,
        prior_summary: str | None,
        history: Sequence[dict[str, Any]],
    ) -> OpenAIOracleSession | None:
        client = self._get_client()
        if client is None:
            logger.warning("Oracle session not created: API key missing")
            return None
        return OpenAIOracleSession(
            client,
            model=self.settings.model,
            temperature=self.settings.temperature,
            system_prompt=build_system_prompt(character, prior_summary),
            history=history,
        )

    def create_session(
        self,
        character: Character,
        prior_summary: str | None = None,
    ) -> OpenAIOracleSession | None:
        """Open a fresh session for a character."""
        return self._session(character, prior_summary, ())

    def resume_session(
        self,
        character: Character,
        transcript: Sequence[Message],
        prior_summary: str | None = None,
    ) -> OpenAIOracleSession | None:
        """Open a session primed with an earlier transcript."""
        history = build_history(transcript)
        logger.info("Resuming oracle session", replayed=len(history))
        return self._session(character, prior_summary, history)

    async def summarize(self, current_summary: str, recent: Sequence[Message]) -> str:
        """Fold recent entries into the running story summary.

        Raises:
            OracleError: If the summary call fails or no client is configured.
        """
        client = self._get_client()
        if client is None:
            raise OracleConnectionError("No API key configured", provider=_PROVIDER)
        try:
            response = await client.chat.completions.create(
                model=self.settings.summary_model,
                messages=[{"role": "user", "content": build_summary_prompt(current_summary, recent)}],
                temperature=0.3,
            )
        except OpenAIError as exc:
            raise _map_error(exc, self.settings.summary_model) from exc
        if not response.choices:
            return current_summary
        return response.choices[0].message.content or current_summary


class OpenAIImageGenerator:
    """ImageGenerator backed by the OpenAI images API."""

    def __init__(
        self,
        settings: OracleSettings | None = None,
        *,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.settings = settings or get_settings().oracle
        self._client = client

    async def generate(self, prompt: str) -> str | None:
        """Generate an illustration and return a URL or data URL.

        Failures are logged and reported as None.
        """
        if self._client is None:
            self._client = create_client(self.settings)
        if self._client is None:
            return None
        try:
            response = await self._client.images.generate(
                model=self.settings.image_model,
                prompt=prompt,
                size="1536x1024",
            )
        except OpenAIError as exc:
            logger.warning("Image generation failed", error=str(exc), model=self.settings.image_model)
            return None
        if not response.data:
            return None
        image = response.data[0]
        if image.b64_json:
            return f"data:image/png;base64,{image.b64_json}"
        return image.url

    async def generate_location(self, name: str, description: str) -> str | None:
        """Illustrate a location."""
        return await self.generate(build_location_image_prompt(name, description))


__all__ = [
    "OpenAIOracle",
    "OpenAIOracleSession",
    "OpenAIImageGenerator",
    "build_history",
]
