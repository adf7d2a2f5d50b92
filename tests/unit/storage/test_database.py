"""Tests for SQLite save slots."""

from __future__ import annotations

from pathlib import Path

import pytest

from questsync.core.config import Settings, StorageSettings
from questsync.core.exceptions import StateLoadError
from questsync.models.game_state import GameState, Message
from questsync.storage.database import Database, SaveRecord, get_database, reset_database


class TestSaveSlots:
    """Tests for writing and reading saves."""

    def test_save_and_get(self, database: Database, state: GameState) -> None:
        """Test a save can be read back as the same state."""
        state.append_message(Message.agent("You wake in a cell."))
        record = database.save_game("Prison Break", state)

        loaded = database.get_save(record.id)

        assert loaded is not None
        assert loaded.name == "Prison Break"
        assert loaded.character_name == "Lyra"
        restored = loaded.load_state()
        assert restored.character == state.character
        assert [m.text for m in restored.transcript] == ["You wake in a cell."]

    def test_document_shape(self, database: Database, state: GameState) -> None:
        """Test the stored JSON uses persisted document keys."""
        record = database.save_game("Slot", state)
        document = record.get_document()
        assert {"character", "transcript", "storySummary", "mapTokens", "timestamp"} <= set(document)
        assert document["character"]["class"] == "Rogue"

    def test_overwrite_keeps_created_at(self, database: Database, state: GameState) -> None:
        """Test overwriting a slot keeps its creation time."""
        first = database.save_game("Slot", state)
        state.story_summary = "Later."
        second = database.save_game("Slot v2", state, save_id=first.id)

        assert second.id == first.id
        assert second.created_at == first.created_at
        assert len(database.list_saves()) == 1
        loaded = database.get_save(first.id)
        assert loaded is not None
        assert loaded.name == "Slot v2"
        assert loaded.load_state().story_summary == "Later."

    def test_unknown_save_id_inserts(self, database: Database, state: GameState) -> None:
        """Test an explicit id that does not exist creates the slot."""
        record = database.save_game("Slot", state, save_id="fixed-id")
        assert database.get_save("fixed-id") is not None
        assert record.id == "fixed-id"

    def test_list_newest_first(self, database: Database, state: GameState) -> None:
        """Test listings are ordered by last update."""
        older = database.save_game("Older", state)
        newer = database.save_game("Newer", state)
        database.save_game("Older", state, save_id=older.id)

        names = [s.name for s in database.list_saves()]
        assert names == ["Older", "Newer"]
        assert newer.id in {s.id for s in database.list_saves()}

    def test_delete(self, database: Database, state: GameState) -> None:
        """Test deleting reports whether a slot existed."""
        record = database.save_game("Slot", state)
        assert database.delete_save(record.id) is True
        assert database.delete_save(record.id) is False
        assert database.get_save(record.id) is None


class TestSaveRecord:
    """Tests for parsing stored documents."""

    def test_corrupt_json(self) -> None:
        """Test corrupt JSON is a load error."""
        record = SaveRecord.from_row(("s1", "Slot", "Lyra", "{broken", "2024-01-01T00:00:00", "2024-01-01T00:00:00"))
        with pytest.raises(StateLoadError):
            record.load_state()

    def test_invalid_document(self) -> None:
        """Test a well-formed but invalid document is a load error."""
        record = SaveRecord.from_row(("s1", "Slot", "Lyra", '{"character": {"name": ""}}', "2024-01-01T00:00:00", "2024-01-01T00:00:00"))
        with pytest.raises(StateLoadError):
            record.load_state()


class TestDefaultDatabase:
    """Tests for the shared instance."""

    def test_path_from_settings(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the default path comes from storage settings."""
        target = tmp_path / "nested" / "saves.db"
        monkeypatch.setattr(
            "questsync.storage.database.get_settings",
            lambda: Settings(storage=StorageSettings(database_path=target)),
        )
        reset_database()
        try:
            assert get_database().db_path == target
            assert target.exists()
        finally:
            reset_database()
