"""Tests for the NoteDatabase handle."""
import threading

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from pocketnotes.exceptions import (
    ErrorCode,
    NoteNotFoundError,
    StorageError,
    TransientStorageError,
)
from pocketnotes.models.db_models import DBNote
from pocketnotes.models.schema import Note
from pocketnotes.storage.database import NoteDatabase, translate_error
from pocketnotes.storage.migrations import LATEST_VERSION
from pocketnotes.storage.note_repository import NoteRepository
from tests.fakes import RecordingSubscriber


class TestOpening:
    """Opening creates or upgrades the schema."""

    def test_memory_database(self):
        with NoteDatabase(":memory:") as db:
            assert db.path is None
            assert db.schema_version == LATEST_VERSION
            repo = NoteRepository(db)
            note_id = repo.insert(Note(title="t", content="c"))
            assert repo.get(note_id).title == "t"
        assert db.closed

    def test_file_database_persists(self, test_config):
        path = test_config.get_db_path()
        with NoteDatabase(path) as db:
            NoteRepository(db).insert(Note(title="kept", content=""))
        with NoteDatabase(path) as db:
            assert [n.title for n in NoteRepository(db).get_all().get()] == ["kept"]

    def test_from_config(self, test_config):
        with NoteDatabase.from_config() as db:
            assert db.path == test_config.get_db_path()

    def test_health(self, database, note_repository):
        note_repository.insert(Note(title="t", content="c"))
        health = database.check_health()
        assert health["healthy"] is True
        assert health["schema_version"] == LATEST_VERSION
        assert health["note_count"] == 1
        assert health["category_count"] == 0


class TestWriteTransactions:
    """write() commits atomically and notifies afterwards."""

    def test_rollback_on_error(self, database, note_repository):
        received = RecordingSubscriber()
        note_repository.get_all().subscribe(received)

        with pytest.raises(NoteNotFoundError):
            with database.write("notes", operation="two_step") as session:
                session.add(DBNote(title="half", content="", modified_at=0))
                session.flush()
                raise NoteNotFoundError(1)

        assert note_repository.get_all().get() == []
        assert received.values == [[]]

    def test_observers_run_after_lock_release(self, database, note_repository):
        """Another thread can write from inside an observer callback."""
        acquired = []

        def try_lock():
            got = database._write_lock.acquire(timeout=2)
            if got:
                database._write_lock.release()
            acquired.append(got)

        def check(value):
            if value:
                worker = threading.Thread(target=try_lock)
                worker.start()
                worker.join()

        note_repository.get_all().subscribe(check)
        note_repository.insert(Note(title="t", content=""))

        assert acquired == [True]

    def test_close_is_idempotent(self, database):
        database.close()
        database.close()
        assert database.closed


class TestTranslateError:
    """Driver exceptions map to store errors."""

    def test_integrity(self):
        error = translate_error(
            IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")),
            "insert_note",
        )
        assert error.code == ErrorCode.CONSTRAINT_VIOLATION
        assert not error.retryable

    @pytest.mark.parametrize(
        "message", ["database is locked", "database is busy", "disk I/O error"]
    )
    def test_transient(self, message):
        error = translate_error(
            OperationalError("UPDATE", {}, Exception(message)), "update_note"
        )
        assert isinstance(error, TransientStorageError)
        assert error.operation == "update_note"

    def test_other_operational(self):
        error = translate_error(
            OperationalError("SELECT", {}, Exception("no such table: x")), "read"
        )
        assert type(error) is StorageError
        assert error.code == ErrorCode.STORAGE_WRITE_FAILED


class TestMemoryStore:
    """A :memory: store shares one connection between threads."""

    def test_read_waits_for_open_write(self):
        """A read from another thread neither fails nor discards the write."""
        with NoteDatabase(":memory:") as db:
            repo = NoteRepository(db)
            write_open = threading.Event()
            seen = []
            errors = []

            def reader():
                write_open.wait(timeout=5)
                try:
                    seen.append([n.title for n in repo.get_all().get()])
                except StorageError as e:
                    errors.append(e)

            thread = threading.Thread(target=reader)
            thread.start()
            with db.write("notes", operation="slow_insert") as session:
                session.add(DBNote(title="kept", content="", modified_at=0))
                session.flush()
                write_open.set()
                # Give the reader time to collide with the open transaction
                thread.join(timeout=0.3)
            thread.join(timeout=5)

            assert errors == []
            assert seen == [["kept"]]
            assert [n.title for n in repo.get_all().get()] == ["kept"]
