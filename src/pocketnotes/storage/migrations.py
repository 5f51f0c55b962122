"""Schema versions and forward-only migrations for the note database.

The on-disk version lives in ``PRAGMA user_version`` (0 means a brand-new
file). Each :class:`Migration` moves the schema from one version to a later
one; the manager finds a path, then applies every step in its own
transaction and bumps the version inside that same transaction. A failing
step rolls back completely and raises :class:`MigrationError`, leaving the
file at the last version that fully applied.

Version history:
    1  notes(id, title, content, modified_at)
    2  + created_at, location, notification_time, is_favorite, category,
       is_markdown_enabled
    3  free-text category normalized into categories and
       note_category_cross_ref; notes rebuilt without the category column
    4  + indexes on both cross-reference columns
    5  + categories.emoji
    6  + notes.is_notification_persistent
    7  + notes.is_secret (vault)
"""

import logging
import shutil
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import sqlalchemy as sa
from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from sqlalchemy.engine import Connection, Engine

from pocketnotes.exceptions import ErrorCode, MigrationError
from pocketnotes.models.db_models import Base
from pocketnotes.models.schema import DEFAULT_CATEGORY_EMOJI, utc_now
from pocketnotes.observability import timed_operation

logger = logging.getLogger(__name__)

LATEST_VERSION = 7


@dataclass(frozen=True)
class Migration:
    """One forward step of the schema.

    Attributes:
        from_version: Version the script expects to find.
        to_version: Version the file is stamped with afterwards.
        script: Receives Alembic ``Operations`` bound to the live connection.
        description: One line for the logs.
    """

    from_version: int
    to_version: int
    script: Callable[[Operations], None]
    description: str = ""

    def __post_init__(self) -> None:
        if self.to_version <= self.from_version:
            raise ValueError(
                f"Migration {self.from_version}->{self.to_version} must move forward"
            )


# ---------------------------------------------------------------------------
# Inspection helpers (structural steps are guarded so they can be replayed)
# ---------------------------------------------------------------------------


def _has_table(op: Operations, table: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(table)


def _has_column(op: Operations, table: str, column: str) -> bool:
    columns = sa.inspect(op.get_bind()).get_columns(table)
    return any(col["name"] == column for col in columns)


def _has_index(op: Operations, table: str, index: str) -> bool:
    indexes = sa.inspect(op.get_bind()).get_indexes(table)
    return any(idx["name"] == index for idx in indexes)


def _add_columns(op: Operations, table: str, *columns: sa.Column) -> None:
    for column in columns:
        if not _has_column(op, table, column.name):
            op.add_column(table, column)


def _flag(name: str) -> sa.Column:
    return sa.Column(name, sa.Boolean(), nullable=False, server_default=sa.text("0"))


# ---------------------------------------------------------------------------
# Version scripts
# ---------------------------------------------------------------------------


def create_v1_schema(op: Operations) -> None:
    """Baseline layout of the first released version."""
    if _has_table(op, "notes"):
        return
    op.create_table(
        "notes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("modified_at", sa.Integer(), nullable=False),
        sqlite_autoincrement=True,
    )


def _migrate_1_2(op: Operations) -> None:
    _add_columns(
        op,
        "notes",
        sa.Column("created_at", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("location", sa.Text(), nullable=True),
        sa.Column("notification_time", sa.Integer(), nullable=True),
        _flag("is_favorite"),
        sa.Column("category", sa.Text(), nullable=True),
        _flag("is_markdown_enabled"),
    )


_NOTE_COLUMNS_V3 = (
    "id, title, content, modified_at, created_at, location, "
    "notification_time, is_favorite, is_markdown_enabled"
)


def _migrate_2_3(op: Operations) -> None:
    if not _has_table(op, "categories"):
        op.create_table(
            "categories",
            sa.Column("category_id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("name", sa.Text(), nullable=False),
            sqlite_autoincrement=True,
        )
    if not _has_table(op, "note_category_cross_ref"):
        op.create_table(
            "note_category_cross_ref",
            sa.Column("note_id", sa.Integer(), primary_key=True, autoincrement=False),
            sa.Column("category_id", sa.Integer(), primary_key=True, autoincrement=False),
        )

    if not _has_column(op, "notes", "category"):
        return

    # One category per distinct name, ignoring case and surrounding blanks.
    # casefold() is registered on every connection by create_db_engine.
    op.execute(
        """
        INSERT INTO categories (name)
        SELECT MIN(TRIM(category)) FROM notes
        WHERE category IS NOT NULL AND TRIM(category) <> ''
        GROUP BY casefold(TRIM(category))
        ORDER BY MIN(id)
        """
    )
    op.execute(
        """
        INSERT OR IGNORE INTO note_category_cross_ref (note_id, category_id)
        SELECT notes.id, categories.category_id
        FROM notes
        JOIN categories
            ON casefold(TRIM(notes.category)) = casefold(categories.name)
        """
    )

    # SQLite cannot drop a column in place: create new, copy, drop old, rename
    op.create_table(
        "notes_new",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("modified_at", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("location", sa.Text(), nullable=True),
        sa.Column("notification_time", sa.Integer(), nullable=True),
        _flag("is_favorite"),
        _flag("is_markdown_enabled"),
        sqlite_autoincrement=True,
    )
    op.execute(
        f"INSERT INTO notes_new ({_NOTE_COLUMNS_V3}) "
        f"SELECT {_NOTE_COLUMNS_V3} FROM notes"
    )
    op.drop_table("notes")
    op.rename_table("notes_new", "notes")


def _migrate_3_4(op: Operations) -> None:
    for column in ("note_id", "category_id"):
        index_name = f"index_note_category_cross_ref_{column}"
        if not _has_index(op, "note_category_cross_ref", index_name):
            op.create_index(index_name, "note_category_cross_ref", [column])


def _migrate_4_5(op: Operations) -> None:
    _add_columns(
        op,
        "categories",
        sa.Column(
            "emoji",
            sa.Text(),
            nullable=False,
            server_default=sa.text(f"'{DEFAULT_CATEGORY_EMOJI}'"),
        ),
    )


def _migrate_5_6(op: Operations) -> None:
    _add_columns(op, "notes", _flag("is_notification_persistent"))


def _migrate_6_7(op: Operations) -> None:
    _add_columns(op, "notes", _flag("is_secret"))


MIGRATIONS: List[Migration] = [
    Migration(0, 1, create_v1_schema, "create baseline notes table"),
    Migration(1, 2, _migrate_1_2, "add timestamps, location, reminder and flag columns"),
    Migration(2, 3, _migrate_2_3, "normalize free-text category into join tables"),
    Migration(3, 4, _migrate_3_4, "index note/category cross references"),
    Migration(4, 5, _migrate_4_5, "add category emoji"),
    Migration(5, 6, _migrate_5_6, "add persistent-notification flag"),
    Migration(6, 7, _migrate_6_7, "add vault flag"),
]


# ---------------------------------------------------------------------------
# Version bookkeeping
# ---------------------------------------------------------------------------


def get_user_version(conn: Connection) -> int:
    return int(conn.exec_driver_sql("PRAGMA user_version").scalar() or 0)


def set_user_version(conn: Connection, version: int) -> None:
    # PRAGMA does not take bound parameters
    conn.exec_driver_sql(f"PRAGMA user_version = {int(version)}")


def create_latest_schema(conn: Connection) -> None:
    """Create every table of the latest version from the table models."""
    Base.metadata.create_all(conn)


class MigrationManager:
    """Brings a database file to the latest schema version.

    Args:
        migrations: Registered steps. Several steps may start at the same
            version; the path with the fewest steps wins.
        latest_version: Version a fresh database is created at.
        create_latest: Builds the latest schema on an empty database.
    """

    def __init__(
        self,
        migrations: Sequence[Migration] = MIGRATIONS,
        latest_version: int = LATEST_VERSION,
        create_latest: Callable[[Connection], None] = create_latest_schema,
    ) -> None:
        self.latest_version = latest_version
        self._create_latest = create_latest
        self._steps: Dict[int, List[Migration]] = {}
        seen = set()
        for migration in migrations:
            key = (migration.from_version, migration.to_version)
            if key in seen:
                raise ValueError(f"Duplicate migration {key[0]}->{key[1]}")
            seen.add(key)
            self._steps.setdefault(migration.from_version, []).append(migration)
        for steps in self._steps.values():
            # Prefer the longest jump when paths are equally short
            steps.sort(key=lambda m: m.to_version, reverse=True)

    def current_version(self, engine: Engine) -> int:
        with engine.connect() as conn:
            return get_user_version(conn)

    def find_path(self, from_version: int, to_version: int) -> List[Migration]:
        """Shortest forward path of migrations between two versions.

        Raises:
            MigrationError: If no registered chain connects the versions.
        """
        if from_version == to_version:
            return []
        if from_version > to_version:
            raise MigrationError(
                f"Database version {from_version} is newer than {to_version}; "
                "downgrades are not supported",
                from_version=from_version,
                to_version=to_version,
                code=ErrorCode.MIGRATION_DOWNGRADE,
            )

        previous: Dict[int, Migration] = {}
        queue = deque([from_version])
        visited = {from_version}
        while queue:
            version = queue.popleft()
            if version == to_version:
                break
            for migration in self._steps.get(version, []):
                nxt = migration.to_version
                if nxt > to_version or nxt in visited:
                    continue
                visited.add(nxt)
                previous[nxt] = migration
                queue.append(nxt)

        if to_version not in previous:
            raise MigrationError(
                f"No migration path from version {from_version} to {to_version}",
                from_version=from_version,
                to_version=to_version,
                code=ErrorCode.MIGRATION_PATH_MISSING,
            )

        path: List[Migration] = []
        version = to_version
        while version != from_version:
            step = previous[version]
            path.append(step)
            version = step.from_version
        path.reverse()
        return path

    def migrate(self, engine: Engine, target_version: Optional[int] = None) -> int:
        """Upgrade the database and return the version it ends at.

        A database with no version and no tables is created directly at the
        latest version. Anything else is upgraded one transaction per step.

        Raises:
            MigrationError: If there is no path or a step fails.
        """
        target = self.latest_version if target_version is None else target_version

        with engine.connect() as conn:
            current = get_user_version(conn)
            has_tables = bool(sa.inspect(conn).get_table_names())

        if current == 0:
            if has_tables:
                raise MigrationError(
                    "Database has tables but no schema version; refusing to guess",
                    from_version=0,
                    to_version=target,
                    code=ErrorCode.MIGRATION_PATH_MISSING,
                )
            if target == self.latest_version:
                self._create_fresh(engine)
                return self.latest_version

        path = self.find_path(current, target)
        for migration in path:
            self._apply(engine, migration)
        if path:
            logger.info(f"Database migrated from version {current} to {target}")
        return target

    def _create_fresh(self, engine: Engine) -> None:
        with timed_operation("create_schema", version=self.latest_version):
            try:
                with engine.begin() as conn:
                    self._create_latest(conn)
                    set_user_version(conn, self.latest_version)
            except Exception as e:
                raise MigrationError(
                    f"Failed to create schema version {self.latest_version}: {e}",
                    from_version=0,
                    to_version=self.latest_version,
                    original_error=e,
                ) from e
        logger.info(f"Created new database at schema version {self.latest_version}")

    def _apply(self, engine: Engine, migration: Migration) -> None:
        logger.info(
            f"Migrating schema {migration.from_version} -> {migration.to_version}: "
            f"{migration.description}"
        )
        with timed_operation(
            "migrate",
            from_version=migration.from_version,
            to_version=migration.to_version,
        ):
            try:
                with engine.begin() as conn:
                    found = get_user_version(conn)
                    if found != migration.from_version:
                        raise MigrationError(
                            f"Expected schema version {migration.from_version}, "
                            f"found {found}",
                            from_version=found,
                            to_version=migration.to_version,
                        )
                    op = Operations(MigrationContext.configure(conn))
                    migration.script(op)
                    set_user_version(conn, migration.to_version)
            except MigrationError:
                raise
            except Exception as e:
                logger.error(
                    f"Migration {migration.from_version}->{migration.to_version} "
                    f"failed and was rolled back: {e}"
                )
                raise MigrationError(
                    f"Migration {migration.from_version}->{migration.to_version} "
                    f"failed: {e}",
                    from_version=migration.from_version,
                    to_version=migration.to_version,
                    original_error=e,
                ) from e

    def reset(
        self,
        engine: Engine,
        database_path: Optional[Path] = None,
        backup_dir: Optional[Path] = None,
    ) -> Optional[Path]:
        """Last resort: back the file up, drop everything, recreate at latest.

        Returns:
            Path to the backup copy, if one was made.
        """
        backup_path = None
        if database_path is not None and database_path.exists():
            timestamp = utc_now().strftime("%Y%m%d_%H%M%S")
            target_dir = backup_dir or database_path.parent
            target_dir.mkdir(parents=True, exist_ok=True)
            backup_path = target_dir / f"{database_path.stem}.backup.{timestamp}.bak"
            # Fold the WAL into the main file so the copy is complete
            raw = engine.raw_connection()
            try:
                raw.cursor().execute("PRAGMA wal_checkpoint(TRUNCATE)")
            finally:
                raw.close()
            shutil.copy(database_path, backup_path)
            logger.warning(f"Backed up database to: {backup_path}")

        logger.warning(
            "DESTRUCTIVE RESET: dropping all tables and recreating schema "
            f"version {self.latest_version}"
        )
        with engine.begin() as conn:
            metadata = sa.MetaData()
            metadata.reflect(bind=conn)
            metadata.drop_all(bind=conn)
            set_user_version(conn, 0)
            self._create_latest(conn)
            set_user_version(conn, self.latest_version)
        return backup_path
