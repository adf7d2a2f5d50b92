"""Tests for the OpenAI-backed oracle.

The client is replaced by a namespace with async fakes; no request leaves
the process.
"""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any

import httpx
import pytest
from openai import APIConnectionError, APIStatusError, InternalServerError, RateLimitError

from questsync.core.config import OracleSettings
from questsync.core.exceptions import (
    OracleConnectionError,
    OracleRateLimitError,
    OracleResponseError,
    OracleUnavailableError,
)
from questsync.dm.openai_oracle import (
    OpenAIImageGenerator,
    OpenAIOracle,
    OpenAIOracleSession,
    _map_error,
    _parse_tool_calls,
    build_history,
)
from questsync.engine.tools import ToolCall, ToolResult
from questsync.models.game_state import Character, Message


_REQUEST = httpx.Request("POST", "https://api.example/v1/chat/completions")


def _response(status: int, headers: dict[str, str] | None = None) -> httpx.Response:
    return httpx.Response(status, headers=headers, request=_REQUEST)


def _tool_call(call_id: str, name: str, arguments: Any) -> SimpleNamespace:
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=raw))


def _completion(content: str | None = None, tool_calls: list[SimpleNamespace] | None = None) -> SimpleNamespace:
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeClient:
    """Stands in for AsyncOpenAI."""

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.requests: list[dict[str, Any]] = []
        self.image_requests: list[dict[str, Any]] = []
        self.images_result: Any = None
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))
        self.images = SimpleNamespace(generate=self._generate)

    async def _create(self, **kwargs: Any) -> Any:
        self.requests.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def _generate(self, **kwargs: Any) -> Any:
        self.image_requests.append(kwargs)
        if isinstance(self.images_result, Exception):
            raise self.images_result
        return self.images_result


def _session(client: FakeClient, history: list[dict[str, Any]] | None = None) -> OpenAIOracleSession:
    return OpenAIOracleSession(
        client,  # type: ignore[arg-type]
        model="test-model",
        temperature=0.7,
        system_prompt="You are the DM.",
        history=history or [],
    )


class TestErrorMapping:
    """Tests for translating client errors."""

    def test_rate_limit(self) -> None:
        """Test 429 maps to a rate-limit error with retry-after."""
        exc = RateLimitError("slow down", response=_response(429, {"retry-after": "3"}), body=None)
        mapped = _map_error(exc, "m")
        assert isinstance(mapped, OracleRateLimitError)
        assert mapped.details["retry_after_seconds"] == 3.0

    def test_unavailable(self) -> None:
        """Test 503 maps to unavailable."""
        exc = InternalServerError("busy", response=_response(503), body=None)
        assert isinstance(_map_error(exc, "m"), OracleUnavailableError)

    def test_other_status(self) -> None:
        """Test other statuses are not transient."""
        exc = APIStatusError("bad", response=_response(400), body=None)
        mapped = _map_error(exc, "m")
        assert isinstance(mapped, OracleResponseError)
        assert mapped.details["status_code"] == 400

    def test_connection(self) -> None:
        """Test transport failures map to connection errors."""
        exc = APIConnectionError(request=_REQUEST)
        assert isinstance(_map_error(exc, "m"), OracleConnectionError)


class TestParseToolCalls:
    """Tests for tool-call parsing."""

    def test_parses_arguments(self) -> None:
        """Test JSON arguments are decoded in order."""
        message = SimpleNamespace(
            tool_calls=[
                _tool_call("c1", "update_hp", {"amount": -2, "reason": "hit"}),
                _tool_call("c2", "add_note", {"title": "T", "content": "C", "category": "lore"}),
            ]
        )
        calls = _parse_tool_calls(message)
        assert [c.call_id for c in calls] == ["c1", "c2"]
        assert calls[0] == ToolCall(name="update_hp", arguments={"amount": -2, "reason": "hit"}, call_id="c1")

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]"])
    def test_bad_arguments_become_empty(self, raw: str) -> None:
        """Test undecodable arguments give an empty record."""
        calls = _parse_tool_calls(SimpleNamespace(tool_calls=[_tool_call("c1", "update_hp", raw)]))
        assert calls[0].arguments == {}


class TestBuildHistory:
    """Tests for transcript replay."""

    def test_roles_and_prefix(self) -> None:
        """Test speakers map to roles and errors are dropped."""
        history = build_history(
            [
                Message.user("I enter"),
                Message.agent("A hall."),
                Message.system("HP changed: -1"),
                Message.system("Oracle down", is_error=True),
            ]
        )
        assert history == [
            {"role": "user", "content": "I enter"},
            {"role": "assistant", "content": "A hall."},
            {"role": "user", "content": "[System Info]: HP changed: -1"},
        ]


class TestOpenAIOracleSession:
    """Tests for the chat session."""

    def test_utterance_reply(self) -> None:
        """Test text and tool calls come back and history grows."""
        client = FakeClient(_completion("Hello.", [_tool_call("c1", "update_hp", {"amount": 1, "reason": "x"})]))
        session = _session(client)

        reply = asyncio.run(session.send("Hi"))

        assert reply.text == "Hello."
        assert [c.name for c in reply.tool_calls] == ["update_hp"]
        assert client.requests[0]["tool_choice"] == "auto"
        assert [m["role"] for m in session.messages] == ["system", "user", "assistant"]
        assert session.messages[-1]["tool_calls"][0]["id"] == "c1"

    def test_tool_results_sent_as_tool_messages(self) -> None:
        """Test results answer the open calls."""
        client = FakeClient(
            _completion(None, [_tool_call("c1", "update_hp", {"amount": 1, "reason": "x"})]),
            _completion("Done."),
        )
        session = _session(client)
        asyncio.run(session.send("Hi"))

        reply = asyncio.run(session.send([ToolResult("update_hp", "c1", "Success, current hp 6/20")]))

        assert reply.text == "Done."
        sent = client.requests[1]["messages"]
        assert sent[-1] == {"role": "tool", "tool_call_id": "c1", "content": "Success, current hp 6/20"}

    def test_unanswered_calls_are_skipped(self) -> None:
        """Test open calls get a skipped answer before the next utterance."""
        client = FakeClient(
            _completion(None, [_tool_call("c1", "update_hp", {"amount": 1, "reason": "x"})]),
            _completion("Okay."),
        )
        session = _session(client)
        asyncio.run(session.send("Hi"))

        asyncio.run(session.send("Something else"))

        sent = client.requests[1]["messages"]
        assert sent[-2] == {"role": "tool", "tool_call_id": "c1", "content": "Skipped: turn ended"}
        assert sent[-1] == {"role": "user", "content": "Something else"}

    def test_failure_does_not_commit(self) -> None:
        """Test a failed send leaves history untouched."""
        client = FakeClient(InternalServerError("busy", response=_response(503), body=None), _completion("Back."))
        session = _session(client, history=[{"role": "user", "content": "earlier"}])
        before = session.messages

        with pytest.raises(OracleUnavailableError):
            asyncio.run(session.send("Hi"))
        assert session.messages == before

        asyncio.run(session.send("Hi"))
        assert [m["content"] for m in session.messages[1:]] == ["earlier", "Hi", "Back."]

    def test_no_choices(self) -> None:
        """Test an empty completion is a response error."""
        client = FakeClient(SimpleNamespace(choices=[]))
        with pytest.raises(OracleResponseError):
            asyncio.run(_session(client).send("Hi"))


class TestOpenAIOracle:
    """Tests for session creation and summaries."""

    def test_no_key_means_no_session(self, character: Character) -> None:
        """Test a missing key yields None."""
        oracle = OpenAIOracle(OracleSettings(api_key=None, _env_file=None))
        assert oracle.create_session(character) is None

    def test_resume_replays_transcript(self, character: Character) -> None:
        """Test resumed sessions carry the replayed history."""
        oracle = OpenAIOracle(OracleSettings(_env_file=None), client=FakeClient())  # type: ignore[arg-type]
        session = oracle.resume_session(character, [Message.user("I wait"), Message.agent("Time passes.")], "Recap")
        assert session is not None
        roles = [m["role"] for m in session.messages]
        assert roles == ["system", "user", "assistant"]
        assert "Recap" in session.messages[0]["content"]

    def test_summarize(self) -> None:
        """Test the summary text is returned."""
        client = FakeClient(_completion("They crossed the bridge."))
        oracle = OpenAIOracle(OracleSettings(_env_file=None), client=client)  # type: ignore[arg-type]
        summary = asyncio.run(oracle.summarize("", [Message.user("I cross")]))
        assert summary == "They crossed the bridge."
        assert "Player: I cross" in client.requests[0]["messages"][0]["content"]


class TestOpenAIImageGenerator:
    """Tests for location illustration."""

    def test_data_url(self) -> None:
        """Test base64 payloads become data URLs."""
        client = FakeClient()
        client.images_result = SimpleNamespace(data=[SimpleNamespace(b64_json="AAAA", url=None)])
        generator = OpenAIImageGenerator(OracleSettings(_env_file=None), client=client)  # type: ignore[arg-type]
        url = asyncio.run(generator.generate_location("Crypt", "Dark"))
        assert url == "data:image/png;base64,AAAA"
        assert "Scene: Crypt. Dark" in client.image_requests[0]["prompt"]

    def test_failure_returns_none(self) -> None:
        """Test client errors are reported as no image."""
        client = FakeClient()
        client.images_result = APIConnectionError(request=_REQUEST)
        generator = OpenAIImageGenerator(OracleSettings(_env_file=None), client=client)  # type: ignore[arg-type]
        assert asyncio.run(generator.generate("a map")) is None
