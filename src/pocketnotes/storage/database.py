"""Store handle: engine, schema upgrade, write serialization, notifications."""

import logging
import threading
from concurrent.futures import Executor
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Union

from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from pocketnotes.config import config
from pocketnotes.exceptions import (
    ErrorCode,
    MigrationError,
    PocketNotesError,
    StorageError,
    TransientStorageError,
)
from pocketnotes.models.db_models import (
    DBCategory,
    DBNote,
    create_db_engine,
    get_session_factory,
)
from pocketnotes.models.schema import utc_now
from pocketnotes.storage.live import InvalidationTracker
from pocketnotes.storage.migrations import MigrationManager

logger = logging.getLogger(__name__)

# sqlite3 messages for conditions that clear up on their own
_TRANSIENT_MARKERS = ("database is locked", "database is busy", "disk i/o error")


def translate_error(error: SQLAlchemyError, operation: str) -> StorageError:
    """Map a SQLAlchemy exception onto the store's error taxonomy."""
    if isinstance(error, IntegrityError):
        return StorageError(
            f"Constraint violated during {operation}",
            operation=operation,
            code=ErrorCode.CONSTRAINT_VIOLATION,
            original_error=error,
        )
    if isinstance(error, OperationalError):
        message = str(error.orig if error.orig is not None else error).lower()
        if any(marker in message for marker in _TRANSIENT_MARKERS):
            return TransientStorageError(
                f"Store temporarily unavailable during {operation}",
                operation=operation,
                original_error=error,
            )
    return StorageError(
        f"Storage failure during {operation}",
        operation=operation,
        code=ErrorCode.STORAGE_WRITE_FAILED,
        original_error=error,
    )


class NoteDatabase:
    """Explicitly constructed handle to one note database file.

    Opening the handle upgrades the schema to the latest version. All writes
    go through :meth:`write`, which serializes them, commits or rolls back
    as a unit, and then tells the invalidation tracker which tables changed.
    The application root owns the handle and must :meth:`close` it.

    Args:
        path: SQLite file or ``":memory:"``. Defaults to the configured path.
        clock: Source of "now" for timestamps written by the repositories.
        executor: Optional executor for re-running live queries off the
            writer's thread.
        allow_destructive_reset: Back up and recreate the schema when no
            migration path exists. Defaults to the configured value.
        migrate: Run the migration manager on open.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        *,
        clock: Callable = utc_now,
        executor: Optional[Executor] = None,
        allow_destructive_reset: Optional[bool] = None,
        migrate: bool = True,
        migrations: Optional[MigrationManager] = None,
    ) -> None:
        if path is None:
            self.path: Optional[Path] = config.get_db_path()
        elif str(path) == ":memory:":
            self.path = None
        else:
            self.path = Path(path)

        self.clock = clock
        self.engine = create_db_engine(self.path or ":memory:")
        self.session_factory = get_session_factory(self.engine)
        self.tracker = InvalidationTracker(executor)
        self.migrations = migrations or MigrationManager()
        self._write_lock = threading.RLock()
        self._closed = False

        reset_allowed = (
            config.allow_destructive_reset
            if allow_destructive_reset is None
            else allow_destructive_reset
        )
        if migrate:
            self._upgrade(reset_allowed)

        logger.info(
            f"NoteDatabase opened: path={self.path or ':memory:'}, "
            f"schema_version={self.schema_version}"
        )

    @classmethod
    def from_config(cls, **kwargs: Any) -> "NoteDatabase":
        """Open the database named by the global configuration."""
        return cls(config.get_db_path(), **kwargs)

    def _upgrade(self, reset_allowed: bool) -> None:
        try:
            self.migrations.migrate(self.engine)
        except MigrationError as e:
            recoverable = e.code in (
                ErrorCode.MIGRATION_PATH_MISSING,
                ErrorCode.MIGRATION_DOWNGRADE,
            )
            if not (reset_allowed and recoverable):
                self.engine.dispose()
                raise
            logger.warning(f"Schema upgrade impossible ({e}); resetting database")
            self.migrations.reset(
                self.engine,
                database_path=self.path,
                backup_dir=config.get_backup_dir() if self.path else None,
            )

    @property
    def schema_version(self) -> int:
        return self.migrations.current_version(self.engine)

    @contextmanager
    def read(self) -> Iterator[Session]:
        """Session for a one-shot read.

        A ``:memory:`` store has a single shared connection, so its reads
        wait for any open write instead of running beside it.
        """
        guard = self._write_lock if self.path is None else nullcontext()
        try:
            with guard, self.session_factory() as session:
                yield session
        except PocketNotesError:
            raise
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to read from the note database",
                operation="read",
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    @contextmanager
    def write(self, *tables: str, operation: str = "write") -> Iterator[Session]:
        """Serialized write transaction touching ``tables``.

        The transaction commits when the block exits normally; observers of
        ``tables`` are notified after the commit and after the write lock is
        released. Nothing is notified when the block raises.
        """
        if self._closed:
            raise StorageError(
                "Note database is closed",
                operation=operation,
                code=ErrorCode.STORAGE_CONNECTION_FAILED,
            )
        with self._write_lock:
            try:
                with self.session_factory() as session:
                    with session.begin():
                        yield session
            except PocketNotesError:
                raise
            except SQLAlchemyError as e:
                error = translate_error(e, operation)
                logger.error(f"{operation} failed: {e}")
                raise error from e
        self.tracker.notify(tables)

    def check_health(self) -> Dict[str, Any]:
        """Integrity check plus row counts, for diagnostics."""
        with self.read() as session:
            integrity = session.execute(text("PRAGMA integrity_check")).scalar()
            note_count = session.scalar(select(func.count(DBNote.id)))
            category_count = session.scalar(select(func.count(DBCategory.category_id)))
        return {
            "healthy": integrity == "ok",
            "integrity_check": integrity,
            "schema_version": self.schema_version,
            "note_count": note_count,
            "category_count": category_count,
        }

    def close(self) -> None:
        """Stop notifications and release every pooled connection."""
        if self._closed:
            return
        self._closed = True
        self.tracker.close()
        self.engine.dispose()
        logger.debug("NoteDatabase closed")

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "NoteDatabase":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
