"""Local save slots for QuestSync."""

from questsync.storage.database import (
    Database,
    SaveRecord,
    get_database,
    reset_database,
)

__all__ = [
    "Database",
    "SaveRecord",
    "get_database",
    "reset_database",
]
