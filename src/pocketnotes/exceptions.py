"""Custom exceptions for PocketNotes.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002

    # Category errors (3xxx)
    CATEGORY_NOT_FOUND = 3001
    CATEGORY_INVALID = 3002
    CATEGORY_ALREADY_EXISTS = 3003

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    STORAGE_CONNECTION_FAILED = 4004
    STORAGE_BUSY = 4005
    CONSTRAINT_VIOLATION = 4006

    # Migration errors (45xx)
    MIGRATION_FAILED = 4501
    MIGRATION_PATH_MISSING = 4502
    MIGRATION_DOWNGRADE = 4503

    # Preference errors (5xxx)
    PREFERENCE_READ_FAILED = 5001
    PREFERENCE_WRITE_FAILED = 5002
    PREFERENCE_INVALID = 5003

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001
    CONFIG_MISSING = 6002

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001


class PocketNotesError(Exception):
    """Base exception for all PocketNotes errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    retryable = False

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NoteNotFoundError(PocketNotesError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: int, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID {note_id} not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id},
        )
        self.note_id = note_id


class CategoryNotFoundError(PocketNotesError):
    """Raised when a category cannot be found."""

    def __init__(self, category_id: int, message: Optional[str] = None):
        super().__init__(
            message or f"Category with ID {category_id} not found",
            code=ErrorCode.CATEGORY_NOT_FOUND,
            details={"category_id": category_id},
        )
        self.category_id = category_id


class ValidationError(PocketNotesError):
    """Raised for general validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class NoteValidationError(ValidationError):
    """Raised when note data fails validation."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.NOTE_VALIDATION_FAILED,
    ):
        super().__init__(message, field=field, value=value, code=code)


class CategoryError(PocketNotesError):
    """Raised for category-related errors."""

    def __init__(
        self,
        message: str,
        category_name: Optional[str] = None,
        code: ErrorCode = ErrorCode.CATEGORY_INVALID,
    ):
        details = {}
        if category_name:
            details["category_name"] = category_name

        super().__init__(message, code=code, details=details)
        self.category_name = category_name


class StorageError(PocketNotesError):
    """Raised for storage/persistence errors that retrying will not fix."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages
            details["path_hint"] = path.split("/")[-1] if "/" in path else path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class TransientStorageError(StorageError):
    """Raised when the store is temporarily unavailable (locked, busy, I/O).

    The failed write was not applied; the caller may retry it.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_BUSY,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message, operation=operation, code=code, original_error=original_error
        )


class MigrationError(StorageError):
    """Raised when the schema cannot be brought to the current version.

    Fatal to startup: the database is left at the last fully applied version.

    Attributes:
        from_version: Version found on disk
        to_version: Version the step was migrating to (or the target)
    """

    def __init__(
        self,
        message: str,
        from_version: Optional[int] = None,
        to_version: Optional[int] = None,
        code: ErrorCode = ErrorCode.MIGRATION_FAILED,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            operation="migrate",
            code=code,
            original_error=original_error,
        )
        self.from_version = from_version
        self.to_version = to_version
        if from_version is not None:
            self.details["from_version"] = from_version
        if to_version is not None:
            self.details["to_version"] = to_version


class PreferenceError(PocketNotesError):
    """Raised when the preference file cannot be read or written."""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        code: ErrorCode = ErrorCode.PREFERENCE_WRITE_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if key:
            details["key"] = key
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.key = key
        self.original_error = original_error


class ConfigurationError(PocketNotesError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID,
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key


def is_retryable(error: BaseException) -> bool:
    """Whether a failed operation may be retried unchanged."""
    return bool(getattr(error, "retryable", False))
