"""Tests for configuration loading and path resolution."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from pocketnotes.config import PocketNotesConfig


class TestEnvironment:
    """Settings come from POCKETNOTES_* variables."""

    def test_defaults(self, monkeypatch):
        for name in (
            "POCKETNOTES_DATABASE_PATH",
            "POCKETNOTES_ALLOW_DESTRUCTIVE_RESET",
            "POCKETNOTES_BACKUP_DIR",
        ):
            monkeypatch.delenv(name, raising=False)
        cfg = PocketNotesConfig()
        assert cfg.database_path == Path("data/db/note_database.db")
        assert cfg.allow_destructive_reset is False
        assert cfg.backup_dir is None

    def test_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("POCKETNOTES_DATABASE_PATH", str(tmp_path / "n.db"))
        monkeypatch.setenv("POCKETNOTES_ALLOW_DESTRUCTIVE_RESET", "yes")
        monkeypatch.setenv("POCKETNOTES_BUSY_TIMEOUT", "2.5")
        cfg = PocketNotesConfig()
        assert cfg.get_db_path() == tmp_path / "n.db"
        assert cfg.allow_destructive_reset is True
        assert cfg.busy_timeout == 2.5

    def test_invalid_log_level(self, monkeypatch):
        monkeypatch.setenv("POCKETNOTES_LOG_LEVEL", "LOUD")
        with pytest.raises(ValidationError):
            PocketNotesConfig()

    def test_negative_timeout(self):
        with pytest.raises(ValidationError):
            PocketNotesConfig(busy_timeout=-1)


class TestPaths:
    """Relative paths resolve against base_dir."""

    def test_relative_paths(self, tmp_path):
        cfg = PocketNotesConfig(
            base_dir=tmp_path,
            database_path=Path("db/notes.db"),
            preferences_path=Path("prefs/ui.yaml"),
        )
        assert cfg.get_db_path() == tmp_path / "db" / "notes.db"
        assert (tmp_path / "db").is_dir()
        assert cfg.get_preferences_path() == tmp_path / "prefs" / "ui.yaml"

    def test_backup_dir_defaults_to_database_dir(self, tmp_path):
        cfg = PocketNotesConfig(base_dir=tmp_path, database_path=Path("db/notes.db"))
        assert cfg.get_backup_dir() == tmp_path / "db"

    def test_explicit_backup_dir(self, tmp_path):
        cfg = PocketNotesConfig(base_dir=tmp_path, backup_dir=Path("bak"))
        assert cfg.get_backup_dir() == tmp_path / "bak"
        assert (tmp_path / "bak").is_dir()
