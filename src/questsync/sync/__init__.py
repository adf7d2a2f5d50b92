"""Multiplayer relay: the shared session document and who may write it."""

from questsync.sync.session_sync import (
    SessionSync,
    SyncRole,
    generate_session_id,
    normalize_session_id,
)
from questsync.sync.store import InMemorySessionStore, SessionStore

__all__ = [
    "SessionStore",
    "InMemorySessionStore",
    "SessionSync",
    "SyncRole",
    "generate_session_id",
    "normalize_session_id",
]
