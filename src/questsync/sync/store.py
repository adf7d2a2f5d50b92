"""Relay store interface and in-process implementation.

The relay is a document store keyed by session id. It offers field-level
last-write-wins updates, a duplicate-safe append for transcript entries, and
push notifications carrying the whole document after every change.

``InMemorySessionStore`` implements the same semantics inside one process. It
backs local multiplayer (several participants on one event loop) and the test
suite.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from questsync.core.constants import FIELD_REVISION, FIELD_TRANSCRIPT
from questsync.core.exceptions import SessionNotFoundError, SessionStoreError
from questsync.core.logging import get_logger


logger = get_logger(__name__)

Document = dict[str, Any]
OnChange = Callable[[Document], Awaitable[None]]
Unsubscribe = Callable[[], None]


class SessionStore(Protocol):
    """Document store used to relay a session between participants."""

    async def create(self, session_id: str, document: Document) -> None:
        """Create (or overwrite) a session document."""
        ...

    async def exists(self, session_id: str) -> bool:
        """Check whether a session document exists."""
        ...

    async def get(self, session_id: str) -> Document | None:
        """Read a session document, or None if it does not exist."""
        ...

    async def subscribe(self, session_id: str, on_change: OnChange) -> Unsubscribe:
        """Deliver the current document, then every later version, to ``on_change``."""
        ...

    async def append_to_transcript(self, session_id: str, entry: Document) -> None:
        """Append an entry unless an equal entry is already present."""
        ...

    async def update_fields(self, session_id: str, partial: Document) -> None:
        """Replace the given top-level fields; other fields are untouched."""
        ...


@dataclass
class _Subscription:
    session_id: str
    on_change: OnChange
    queue: asyncio.Queue[Document] = field(default_factory=asyncio.Queue)
    worker: asyncio.Task[None] | None = None
    pending: int = 0

    def put(self, document: Document) -> None:
        self.pending += 1
        self.queue.put_nowait(document)


class InMemorySessionStore:
    """In-process SessionStore.

    Every write bumps the document's ``revision``. Each subscriber has its
    own delivery queue, so notifications reach it asynchronously and in
    write order. Subscribers receive deep copies.

    Attributes:
        fail_writes: When True, every write raises ``SessionStoreError``.
    """

    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}
        self._subscriptions: dict[str, list[_Subscription]] = {}
        self.fail_writes = False

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def exists(self, session_id: str) -> bool:
        return session_id in self._documents

    async def get(self, session_id: str) -> Document | None:
        document = self._documents.get(session_id)
        return copy.deepcopy(document) if document is not None else None

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _check_writable(self, session_id: str, *, must_exist: bool = True) -> None:
        if self.fail_writes:
            raise SessionStoreError("Relay store unavailable", session_id=session_id)
        if must_exist and session_id not in self._documents:
            raise SessionNotFoundError("Session does not exist", session_id=session_id)

    async def create(self, session_id: str, document: Document) -> None:
        self._check_writable(session_id, must_exist=False)
        stored = copy.deepcopy(document)
        stored.setdefault(FIELD_TRANSCRIPT, [])
        stored[FIELD_REVISION] = 1
        self._documents[session_id] = stored
        logger.debug("Session document created", session_id=session_id)
        self._publish(session_id)

    async def append_to_transcript(self, session_id: str, entry: Document) -> None:
        self._check_writable(session_id)
        document = self._documents[session_id]
        transcript = document.setdefault(FIELD_TRANSCRIPT, [])
        if entry in transcript:
            return
        transcript.append(copy.deepcopy(entry))
        document[FIELD_REVISION] += 1
        self._publish(session_id)

    async def update_fields(self, session_id: str, partial: Document) -> None:
        self._check_writable(session_id)
        document = self._documents[session_id]
        for key, value in partial.items():
            if key == FIELD_REVISION:
                continue
            document[key] = copy.deepcopy(value)
        document[FIELD_REVISION] += 1
        self._publish(session_id)

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    async def subscribe(self, session_id: str, on_change: OnChange) -> Unsubscribe:
        if session_id not in self._documents:
            raise SessionNotFoundError("Session does not exist", session_id=session_id)
        subscription = _Subscription(session_id=session_id, on_change=on_change)
        subscription.worker = asyncio.get_running_loop().create_task(
            self._deliver(subscription),
            name=f"relay-{session_id}",
        )
        self._subscriptions.setdefault(session_id, []).append(subscription)
        subscription.put(copy.deepcopy(self._documents[session_id]))

        def unsubscribe() -> None:
            subscribers = self._subscriptions.get(session_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if subscription.worker is not None:
                subscription.worker.cancel()

        return unsubscribe

    def _publish(self, session_id: str) -> None:
        snapshot = self._documents[session_id]
        for subscription in self._subscriptions.get(session_id, []):
            subscription.put(copy.deepcopy(snapshot))

    async def _deliver(self, subscription: _Subscription) -> None:
        while True:
            document = await subscription.queue.get()
            try:
                await subscription.on_change(document)
            except Exception:
                logger.exception("Subscriber failed", session_id=subscription.session_id)
            finally:
                subscription.pending -= 1

    async def flush(self) -> None:
        """Wait until every queued notification has been delivered."""
        while any(
            s.pending
            for subscribers in self._subscriptions.values()
            for s in subscribers
        ):
            await asyncio.sleep(0)


__all__ = [
    "Document",
    "OnChange",
    "Unsubscribe",
    "SessionStore",
    "InMemorySessionStore",
]
