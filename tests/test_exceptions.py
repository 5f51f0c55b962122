"""Tests for the exception hierarchy."""
from pocketnotes.exceptions import (
    ErrorCode,
    MigrationError,
    NoteNotFoundError,
    NoteValidationError,
    PocketNotesError,
    StorageError,
    TransientStorageError,
    is_retryable,
)


class TestErrorDetails:
    def test_not_found(self):
        error = NoteNotFoundError(5)
        assert error.code == ErrorCode.NOTE_NOT_FOUND
        assert str(error) == "[NOTE_NOT_FOUND] Note with ID 5 not found (note_id=5)"

    def test_to_dict(self):
        data = NoteValidationError("bad", field="title", value="x" * 300).to_dict()
        assert data["error"] == "NoteValidationError"
        assert data["code_name"] == "NOTE_VALIDATION_FAILED"
        assert data["retryable"] is False
        assert len(data["details"]["value"]) == 100

    def test_storage_error_hides_path(self):
        error = StorageError("failed", path="/home/user/data/notes.db")
        assert error.details["path_hint"] == "notes.db"

    def test_migration_versions(self):
        error = MigrationError(
            "step failed",
            from_version=3,
            to_version=4,
            original_error=ValueError("x"),
        )
        assert isinstance(error, StorageError)
        assert error.details["from_version"] == 3
        assert error.details["to_version"] == 4
        assert error.operation == "migrate"


class TestRetryable:
    """Only transient storage errors may be retried."""

    def test_transient(self):
        error = TransientStorageError("locked", operation="insert_note")
        assert error.code == ErrorCode.STORAGE_BUSY
        assert is_retryable(error)

    def test_permanent(self):
        assert not is_retryable(StorageError("broken"))
        assert not is_retryable(PocketNotesError("nope"))
        assert not is_retryable(ValueError("plain"))
