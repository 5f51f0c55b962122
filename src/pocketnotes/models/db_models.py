"""SQLAlchemy table models for PocketNotes (latest schema version)."""
from pathlib import Path
from typing import Optional, Union

from sqlalchemy import (Boolean, Column, Index, Integer, Table, Text,
                        create_engine, event, text)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from pocketnotes.config import config
from pocketnotes.models.schema import DEFAULT_CATEGORY_EMOJI

# Create base class for SQLAlchemy models
Base = declarative_base()

# Many-to-many association between notes and categories. No foreign keys:
# rows may outlive the note or category they point at.
note_category_cross_ref = Table(
    "note_category_cross_ref",
    Base.metadata,
    Column("note_id", Integer, primary_key=True, autoincrement=False),
    Column("category_id", Integer, primary_key=True, autoincrement=False),
    Index("index_note_category_cross_ref_note_id", "note_id"),
    Index("index_note_category_cross_ref_category_id", "category_id"),
)


class DBNote(Base):
    """Database model for a note.

    Timestamps are epoch milliseconds. Column order matches what the
    migration chain produces so fresh and upgraded files are identical.
    """
    __tablename__ = "notes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    modified_at = Column(Integer, nullable=False)
    created_at = Column(Integer, nullable=False, server_default=text("0"))
    location = Column(Text, nullable=True)
    notification_time = Column(Integer, nullable=True)
    is_favorite = Column(Boolean, nullable=False, server_default=text("0"))
    is_markdown_enabled = Column(Boolean, nullable=False, server_default=text("0"))
    is_notification_persistent = Column(
        Boolean, nullable=False, server_default=text("0")
    )
    is_secret = Column(Boolean, nullable=False, server_default=text("0"))

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id={self.id}, title='{self.title}')>"


class DBCategory(Base):
    """Database model for a category."""
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    category_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    emoji = Column(
        Text, nullable=False, server_default=text(f"'{DEFAULT_CATEGORY_EMOJI}'")
    )

    def __repr__(self) -> str:
        """Return string representation of category."""
        return f"<Category(id={self.category_id}, name='{self.name}')>"


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


def create_db_engine(
    database_path: Optional[Union[str, Path]] = None,
    busy_timeout: Optional[float] = None,
) -> Engine:
    """Create an engine with the connection settings the store relies on.

    - WAL journal and NORMAL synchronous mode for crash resilience
    - pysqlite's implicit transaction handling is switched off and BEGIN is
      emitted explicitly, so DDL inside a migration step is transactional
    - a ``casefold()`` SQL function for Unicode-aware case-insensitive search

    Args:
        database_path: SQLite file, or ``":memory:"``. Defaults to config.
        busy_timeout: Seconds to wait on a locked database.
    """
    timeout = config.busy_timeout if busy_timeout is None else busy_timeout
    connect_args = {"check_same_thread": False, "timeout": timeout}

    if database_path is not None and str(database_path) == ":memory:":
        engine = create_engine(
            "sqlite://", poolclass=StaticPool, connect_args=connect_args
        )
    else:
        db_path = Path(database_path) if database_path else config.get_db_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        # SQLite is single-writer, so a small pool is enough
        engine = create_engine(
            f"sqlite:///{db_path}",
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=5,
            pool_timeout=30,
            pool_pre_ping=True,
            connect_args=connect_args,
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        dbapi_connection.create_function("casefold", 1, _casefold, deterministic=True)
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def get_session_factory(engine: Engine):
    """Get a session factory for the database."""
    return sessionmaker(bind=engine, expire_on_commit=False)
