"""SQLite save slots for QuestSync.

Each save slot stores the persisted game document exactly as
``GameState.to_document()`` produces it, the same shape the relay store
carries, so a save can be loaded locally or published to a session.

Storage location: ~/.questsync/questsync.db (override with
``QUESTSYNC_STORAGE_DATABASE_PATH``).
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Generator
from uuid import uuid4

from questsync.core.config import get_settings
from questsync.core.exceptions import StateLoadError
from questsync.core.logging import get_logger
from questsync.models.game_state import GameState


logger = get_logger(__name__)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class SaveRecord:
    """A saved game.

    Attributes:
        id: Unique save identifier.
        name: User-provided save name.
        character_name: Name of the saved character, for listings.
        document_json: Serialized persisted document.
        created_at: When the save slot was created.
        updated_at: When the save slot was last written.
    """

    id: str
    name: str
    character_name: str
    document_json: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: tuple[Any, ...]) -> SaveRecord:
        """Create from database row."""
        return cls(
            id=row[0],
            name=row[1],
            character_name=row[2],
            document_json=row[3],
            created_at=datetime.fromisoformat(row[4]),
            updated_at=datetime.fromisoformat(row[5]),
        )

    def get_document(self) -> dict[str, Any]:
        """Parse the stored document.

        Raises:
            StateLoadError: If the stored JSON is corrupt.
        """
        try:
            return json.loads(self.document_json)
        except json.JSONDecodeError as exc:
            raise StateLoadError(
                "Saved document is not valid JSON",
                details={"save_id": self.id, "error": str(exc)},
            ) from exc

    def load_state(self) -> GameState:
        """Rebuild the saved GameState (all-or-nothing)."""
        return GameState.from_document(self.get_document())


# =============================================================================
# Database Class
# =============================================================================


class Database:
    """SQLite database holding save slots."""

    SCHEMA_VERSION = 1

    def __init__(self, db_path: str | Path | None = None) -> None:
        """Initialize database.

        Args:
            db_path: Path to database file. If None, uses default location.
        """
        self.db_path = Path(db_path) if db_path is not None else self._get_default_path()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()
        logger.info("Database initialized", path=str(self.db_path))

    @staticmethod
    def _get_default_path() -> Path:
        configured = get_settings().storage.database_path
        if configured is not None:
            return configured
        return Path.home() / ".questsync" / "questsync.db"

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with proper cleanup."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS saves (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    character_name TEXT NOT NULL,
                    document_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_saves_updated
                ON saves(updated_at DESC)
            """)
            cursor.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,),
            )

    # =========================================================================
    # Save Operations
    # =========================================================================

    def save_game(
        self,
        name: str,
        state: GameState,
        save_id: str | None = None,
    ) -> SaveRecord:
        """Write a save slot.

        Args:
            name: Save name.
            state: Game state to persist.
            save_id: Existing slot to overwrite. A new slot is created when
                None or when no slot has this id.

        Returns:
            The saved record.
        """
        now = datetime.now()
        document_json = json.dumps(state.to_document())
        character_name = state.character.name
        created_at = now

        with self._get_connection() as conn:
            cursor = conn.cursor()
            if save_id:
                cursor.execute("SELECT created_at FROM saves WHERE id = ?", (save_id,))
                row = cursor.fetchone()
                if row:
                    created_at = datetime.fromisoformat(row[0])
                    cursor.execute("""
                        UPDATE saves
                        SET name = ?, character_name = ?, document_json = ?, updated_at = ?
                        WHERE id = ?
                    """, (name, character_name, document_json, now.isoformat(), save_id))
                else:
                    self._insert(cursor, save_id, name, character_name, document_json, now)
            else:
                save_id = str(uuid4())
                self._insert(cursor, save_id, name, character_name, document_json, now)

        logger.info("Game saved", save_id=save_id, name=name, messages=len(state.transcript))
        return SaveRecord(
            id=save_id,
            name=name,
            character_name=character_name,
            document_json=document_json,
            created_at=created_at,
            updated_at=now,
        )

    @staticmethod
    def _insert(
        cursor: sqlite3.Cursor,
        save_id: str,
        name: str,
        character_name: str,
        document_json: str,
        now: datetime,
    ) -> None:
        cursor.execute("""
            INSERT INTO saves (id, name, character_name, document_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (save_id, name, character_name, document_json, now.isoformat(), now.isoformat()))

    def get_save(self, save_id: str) -> SaveRecord | None:
        """Get a save slot by ID."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT id, name, character_name, document_json, created_at, updated_at
                FROM saves WHERE id = ?
            """, (save_id,))
            row = cursor.fetchone()
            if row:
                return SaveRecord.from_row(tuple(row))
            return None

    def list_saves(self) -> list[SaveRecord]:
        """Get all save slots, most recently updated first."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT id, name, character_name, document_json, created_at, updated_at
                FROM saves ORDER BY updated_at DESC
            """)
            return [SaveRecord.from_row(tuple(row)) for row in cursor.fetchall()]

    def delete_save(self, save_id: str) -> bool:
        """Delete a save slot.

        Returns:
            True if deleted, False if not found.
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM saves WHERE id = ?", (save_id,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info("Save deleted", save_id=save_id)
        return deleted


# =============================================================================
# Singleton Instance
# =============================================================================


_database_instance: Database | None = None


def get_database() -> Database:
    """Get the global database instance."""
    global _database_instance

    if _database_instance is None:
        _database_instance = Database()

    return _database_instance


def reset_database() -> None:
    """Forget the global instance (the next call reopens from settings)."""
    global _database_instance
    _database_instance = None


__all__ = [
    "Database",
    "SaveRecord",
    "get_database",
    "reset_database",
]
