"""Storage layer for PocketNotes."""

from pocketnotes.storage.category_repository import CategoryRepository
from pocketnotes.storage.database import NoteDatabase
from pocketnotes.storage.live import InvalidationTracker, LiveQuery, Subscription
from pocketnotes.storage.migrations import LATEST_VERSION, Migration, MigrationManager
from pocketnotes.storage.note_repository import NoteRepository
from pocketnotes.storage.preferences import PreferenceStore

__all__ = [
    "CategoryRepository",
    "InvalidationTracker",
    "LATEST_VERSION",
    "LiveQuery",
    "Migration",
    "MigrationManager",
    "NoteDatabase",
    "NoteRepository",
    "PreferenceStore",
    "Subscription",
]
