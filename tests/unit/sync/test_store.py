"""Tests for the in-process relay store."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from questsync.core.exceptions import SessionNotFoundError, SessionStoreError
from questsync.sync.store import InMemorySessionStore


class Collector:
    def __init__(self) -> None:
        self.documents: list[dict[str, Any]] = []

    async def __call__(self, document: dict[str, Any]) -> None:
        self.documents.append(document)


class TestWrites:
    """Tests for create, append and update."""

    def test_create_sets_revision(self, store: InMemorySessionStore) -> None:
        """Test a new document starts at revision 1 with a transcript."""

        async def run() -> dict[str, Any] | None:
            await store.create("ABC1234", {"hostId": "h"})
            return await store.get("ABC1234")

        document = asyncio.run(run())
        assert document == {"hostId": "h", "transcript": [], "revision": 1}

    def test_get_missing(self, store: InMemorySessionStore) -> None:
        """Test an unknown session reads as None."""
        assert asyncio.run(store.get("NOPE000")) is None
        assert asyncio.run(store.exists("NOPE000")) is False

    def test_append_skips_duplicates(self, store: InMemorySessionStore) -> None:
        """Test an equal entry is only stored once."""
        entry = {"id": "m1", "text": "hi"}

        async def run() -> dict[str, Any] | None:
            await store.create("S", {})
            await store.append_to_transcript("S", entry)
            await store.append_to_transcript("S", dict(entry))
            return await store.get("S")

        document = asyncio.run(run())
        assert document is not None
        assert document["transcript"] == [entry]
        assert document["revision"] == 2

    def test_update_fields_last_write_wins(self, store: InMemorySessionStore) -> None:
        """Test only named fields change and revision cannot be forced."""

        async def run() -> dict[str, Any] | None:
            await store.create("S", {"notes": [], "quests": []})
            await store.update_fields("S", {"notes": [{"title": "a"}], "revision": 99})
            await store.update_fields("S", {"notes": [{"title": "b"}]})
            return await store.get("S")

        document = asyncio.run(run())
        assert document is not None
        assert document["notes"] == [{"title": "b"}]
        assert document["quests"] == []
        assert document["revision"] == 3

    def test_get_returns_copy(self, store: InMemorySessionStore) -> None:
        """Test callers cannot mutate the stored document."""

        async def run() -> dict[str, Any] | None:
            await store.create("S", {})
            document = await store.get("S")
            assert document is not None
            document["transcript"].append({"id": "x"})
            return await store.get("S")

        document = asyncio.run(run())
        assert document is not None
        assert document["transcript"] == []

    def test_missing_session_rejected(self, store: InMemorySessionStore) -> None:
        """Test writes to an unknown session raise."""
        with pytest.raises(SessionNotFoundError):
            asyncio.run(store.update_fields("NOPE", {"notes": []}))
        with pytest.raises(SessionNotFoundError):
            asyncio.run(store.append_to_transcript("NOPE", {"id": "m"}))

    def test_fail_writes(self, store: InMemorySessionStore) -> None:
        """Test the failure switch makes every write raise."""
        store.fail_writes = True
        with pytest.raises(SessionStoreError) as exc_info:
            asyncio.run(store.create("S", {}))
        assert exc_info.value.details["session_id"] == "S"


class TestSubscribe:
    """Tests for change notifications."""

    def test_snapshot_then_changes_in_order(self, store: InMemorySessionStore) -> None:
        """Test the current document arrives first, then each revision."""
        collector = Collector()

        async def run() -> None:
            await store.create("S", {})
            await store.subscribe("S", collector)
            await store.append_to_transcript("S", {"id": "m1"})
            await store.update_fields("S", {"notes": []})
            await store.flush()

        asyncio.run(run())
        assert [d["revision"] for d in collector.documents] == [1, 2, 3]

    def test_unsubscribe_stops_delivery(self, store: InMemorySessionStore) -> None:
        """Test no notifications arrive after unsubscribing."""
        collector = Collector()

        async def run() -> None:
            await store.create("S", {})
            unsubscribe = await store.subscribe("S", collector)
            await store.flush()
            unsubscribe()
            await store.update_fields("S", {"notes": []})
            await store.flush()

        asyncio.run(run())
        assert [d["revision"] for d in collector.documents] == [1]

    def test_failing_subscriber_keeps_receiving(self, store: InMemorySessionStore) -> None:
        """Test a subscriber error does not stop its delivery loop."""
        seen: list[int] = []

        async def on_change(document: dict[str, Any]) -> None:
            seen.append(document["revision"])
            if document["revision"] == 1:
                raise RuntimeError("boom")

        async def run() -> None:
            await store.create("S", {})
            await store.subscribe("S", on_change)
            await store.update_fields("S", {"notes": []})
            await store.flush()

        asyncio.run(run())
        assert seen == [1, 2]

    def test_flush_waits_for_slow_subscriber(self, store: InMemorySessionStore) -> None:
        """Test flush returns only after a subscriber that yields has seen every write."""
        seen: list[int] = []

        async def on_change(document: dict[str, Any]) -> None:
            for _ in range(3):
                await asyncio.sleep(0)
            seen.append(document["revision"])

        async def run() -> None:
            await store.create("S", {})
            await store.subscribe("S", on_change)
            await store.update_fields("S", {"notes": []})
            await store.update_fields("S", {"quests": []})
            await store.flush()

        asyncio.run(run())
        assert seen == [1, 2, 3]

    def test_flush_without_subscribers(self, store: InMemorySessionStore) -> None:
        """Test flush returns at once when nobody listens."""
        asyncio.run(store.flush())

    def test_subscribe_unknown(self, store: InMemorySessionStore) -> None:
        """Test subscribing to an unknown session raises."""
        with pytest.raises(SessionNotFoundError):
            asyncio.run(store.subscribe("NOPE", Collector()))
