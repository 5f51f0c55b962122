"""Common test fixtures for PocketNotes."""

import tempfile
from pathlib import Path

import pytest

from pocketnotes.config import config
from pocketnotes.observability import metrics
from pocketnotes.services.note_synchronizer import NoteSynchronizer
from pocketnotes.storage.category_repository import CategoryRepository
from pocketnotes.storage.database import NoteDatabase
from pocketnotes.storage.note_repository import NoteRepository
from pocketnotes.storage.preferences import PreferenceStore
from tests.fakes import FakeClock


@pytest.fixture
def temp_dirs():
    """Create temporary directories for the database and preferences."""
    with tempfile.TemporaryDirectory() as db_dir:
        with tempfile.TemporaryDirectory() as prefs_dir:
            yield Path(db_dir), Path(prefs_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    db_dir, prefs_dir = temp_dirs
    monkeypatch.setattr(config, "base_dir", db_dir)
    monkeypatch.setattr(config, "database_path", db_dir / "test_notes.db")
    monkeypatch.setattr(config, "preferences_path", prefs_dir / "ui_prefs.yaml")
    monkeypatch.setattr(config, "backup_dir", db_dir / "backups")
    monkeypatch.setattr(config, "allow_destructive_reset", False)
    yield config


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Keep the global metrics collector independent between tests."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock():
    """Clock that only moves when the test advances it."""
    return FakeClock()


@pytest.fixture
def database(test_config, clock):
    """Open a migrated file database with a fake clock."""
    db = NoteDatabase(test_config.get_db_path(), clock=clock)
    yield db
    db.close()


@pytest.fixture
def note_repository(database):
    """Create a test note repository."""
    return NoteRepository(database)


@pytest.fixture
def category_repository(database):
    """Create a test category repository."""
    return CategoryRepository(database)


@pytest.fixture
def synchronizer(note_repository, category_repository):
    """Create a synchronizer and cancel its subscriptions afterwards."""
    sync = NoteSynchronizer(note_repository, category_repository)
    yield sync
    sync.close()


@pytest.fixture
def preference_store(test_config):
    """Create a preference store on a temporary file."""
    store = PreferenceStore(test_config.get_preferences_path())
    yield store
    store.close()
