"""Repository for note storage and retrieval."""

import logging
import warnings
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, not_, or_, select, update
from sqlalchemy.orm import Session

from pocketnotes.exceptions import NoteNotFoundError, NoteValidationError
from pocketnotes.models.db_models import DBCategory, DBNote, note_category_cross_ref
from pocketnotes.models.schema import (
    Category,
    Note,
    NoteWithCategories,
    from_millis,
    to_millis,
)
from pocketnotes.observability import traced
from pocketnotes.storage.database import NoteDatabase
from pocketnotes.storage.live import LiveQuery
from pocketnotes.utils import escape_like_pattern

logger = logging.getLogger(__name__)

NOTES = "notes"
CATEGORIES = "categories"
CROSS_REF = "note_category_cross_ref"

_NEWEST_FIRST = (DBNote.modified_at.desc(), DBNote.id.desc())


def validate_note(note: Note) -> Note:
    """Re-run model validation, reporting failures as NoteValidationError.

    Notes built with ``model_construct`` or mutated through ``__dict__``
    skip pydantic's checks; nothing reaches the table without them.
    """
    try:
        return Note.model_validate(note.model_dump(exclude_unset=True))
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise NoteValidationError(
            f"Invalid note: {first.get('msg', e)}",
            field=field,
            value=first.get("input"),
        ) from e


class NoteRepository:
    """Typed queries and mutations over the ``notes`` table.

    Reads come in two flavours: live queries (``get_*``) that re-emit after
    every committed write touching their tables, and one-shot reads
    (``get``, ``search``, ``get_with_notifications``).

    Deleting a note removes only its row. Cross references that point at it
    stay until the caller removes them (see
    :meth:`CategoryRepository.remove_all_for_note`).
    """

    def __init__(self, database: NoteDatabase):
        """Initialize the note repository.

        Args:
            database: Open store handle shared with the other repositories.
        """
        self.database = database

    # -- conversion -------------------------------------------------------

    @staticmethod
    def _to_model(db_note: DBNote) -> Note:
        return Note(
            id=db_note.id,
            title=db_note.title,
            content=db_note.content,
            created_at=from_millis(db_note.created_at),
            modified_at=from_millis(db_note.modified_at),
            location=db_note.location,
            notification_time=db_note.notification_time,
            is_favorite=bool(db_note.is_favorite),
            is_markdown_enabled=bool(db_note.is_markdown_enabled),
            is_notification_persistent=bool(db_note.is_notification_persistent),
            is_secret=bool(db_note.is_secret),
        )

    @staticmethod
    def _to_columns(note: Note) -> Dict[str, Any]:
        return {
            "title": note.title,
            "content": note.content,
            "created_at": to_millis(note.created_at),
            "modified_at": to_millis(note.modified_at),
            "location": note.location,
            "notification_time": note.notification_time,
            "is_favorite": note.is_favorite,
            "is_markdown_enabled": note.is_markdown_enabled,
            "is_notification_persistent": note.is_notification_persistent,
            "is_secret": note.is_secret,
        }

    def _live(self, name: str, fetch, tables: Iterable[str] = (NOTES,)) -> LiveQuery:
        return LiveQuery(self.database.tracker, tables, fetch, name=name)

    def _select_notes(self, *criteria) -> List[Note]:
        with self.database.read() as session:
            query = select(DBNote).where(*criteria).order_by(*_NEWEST_FIRST)
            return [self._to_model(row) for row in session.scalars(query)]

    # -- writes -----------------------------------------------------------

    @traced("insert_note")
    def insert(self, note: Note) -> int:
        """Insert a note and return the id the store assigned.

        Timestamps the caller did not set explicitly are taken from the
        database clock.

        Raises:
            NoteValidationError: If the note fails model validation.
            StorageError: If the id is already taken or the write fails.
        """
        note = validate_note(note)
        now = self.database.clock()
        columns = self._to_columns(note)
        if "created_at" not in note.model_fields_set:
            columns["created_at"] = to_millis(now)
        if "modified_at" not in note.model_fields_set:
            columns["modified_at"] = to_millis(now)

        with self.database.write(NOTES, operation="insert_note") as session:
            db_note = DBNote(**columns)
            if note.id is not None:
                db_note.id = note.id
            session.add(db_note)
            session.flush()
            note_id = db_note.id

        logger.debug(f"Inserted note {note_id}: {note.title!r}")
        return note_id

    @traced("update_note")
    def update(self, note: Note) -> Note:
        """Replace every column of an existing note.

        ``modified_at`` is stamped with the database clock but never moves
        backwards from the stored value.

        Returns:
            The note as written.

        Raises:
            NoteValidationError: If the note has no id or fails validation.
            NoteNotFoundError: If no note has that id.
        """
        note = validate_note(note)
        if note.id is None:
            raise NoteValidationError("Cannot update a note without an id", field="id")

        with self.database.write(NOTES, operation="update_note") as session:
            db_note = session.get(DBNote, note.id)
            if db_note is None:
                raise NoteNotFoundError(note.id)
            columns = self._to_columns(note)
            columns["modified_at"] = max(
                to_millis(self.database.clock()), db_note.modified_at or 0
            )
            for key, value in columns.items():
                setattr(db_note, key, value)
            written = self._to_model(db_note)

        return written

    @traced("delete_note")
    def delete(self, note: Union[Note, int]) -> None:
        """Delete a note row. Cross references are left in place.

        Raises:
            NoteNotFoundError: If no note has that id.
        """
        note_id = note.id if isinstance(note, Note) else note
        with self.database.write(NOTES, operation="delete_note") as session:
            db_note = session.get(DBNote, note_id)
            if db_note is None:
                raise NoteNotFoundError(note_id)
            session.delete(db_note)
        logger.debug(f"Deleted note {note_id}")

    def _update_columns(self, note_id: int, operation: str, **values) -> None:
        with self.database.write(NOTES, operation=operation) as session:
            result = session.execute(
                update(DBNote)
                .where(DBNote.id == note_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NoteNotFoundError(note_id)

    @traced("toggle_favorite")
    def toggle_favorite(self, note_id: int) -> None:
        """Flip the favorite flag in place. ``modified_at`` is not touched."""
        self._update_columns(
            note_id, "toggle_favorite", is_favorite=not_(DBNote.is_favorite)
        )

    @traced("set_markdown_enabled")
    def set_markdown_enabled(self, note_id: int, enabled: bool) -> None:
        self._update_columns(
            note_id, "set_markdown_enabled", is_markdown_enabled=bool(enabled)
        )

    @traced("clear_reminder_state")
    def clear_reminder_state(self, note_id: int) -> None:
        """Drop the reminder offset and the persistent-notification flag."""
        self._update_columns(
            note_id,
            "clear_reminder_state",
            notification_time=None,
            is_notification_persistent=False,
        )

    # -- one-shot reads ---------------------------------------------------

    def get(self, note_id: int) -> Optional[Note]:
        """Current state of one note, or None."""
        with self.database.read() as session:
            db_note = session.get(DBNote, note_id)
            return self._to_model(db_note) if db_note is not None else None

    @traced("search_notes")
    def search(self, query: str) -> List[Note]:
        """Notes whose title or content contains ``query``, ignoring case.

        LIKE wildcards in ``query`` match literally.
        """
        pattern = f"%{escape_like_pattern(query.casefold())}%"
        return self._select_notes(
            or_(
                func.casefold(DBNote.title).like(pattern, escape="\\"),
                func.casefold(DBNote.content).like(pattern, escape="\\"),
            )
        )

    @traced("get_with_notifications")
    def get_with_notifications(self) -> List[Note]:
        """Notes with a pending reminder, for re-scheduling after restart."""
        return self._select_notes(
            DBNote.notification_time.is_not(None), DBNote.notification_time > 0
        )

    # -- live reads -------------------------------------------------------

    def get_by_id(self, note_id: int) -> LiveQuery[Optional[Note]]:
        return self._live(f"note[{note_id}]", lambda: self.get(note_id))

    def get_all(self, include_secret: bool = True) -> LiveQuery[List[Note]]:
        """Every note, newest ``modified_at`` first (ties by id, newest first)."""
        if include_secret:
            return self._live("all_notes", self._select_notes)
        return self._live(
            "visible_notes", lambda: self._select_notes(DBNote.is_secret.is_(False))
        )

    def get_favorites(self) -> LiveQuery[List[Note]]:
        return self._live(
            "favorite_notes", lambda: self._select_notes(DBNote.is_favorite.is_(True))
        )

    def get_with_location(self) -> LiveQuery[List[Note]]:
        return self._live(
            "located_notes", lambda: self._select_notes(DBNote.location.is_not(None))
        )

    def get_secret(self) -> LiveQuery[List[Note]]:
        """Vault contents."""
        return self._live(
            "secret_notes", lambda: self._select_notes(DBNote.is_secret.is_(True))
        )

    def get_by_category(self, category_name: str) -> LiveQuery[List[Note]]:
        """Notes filed under the category named ``category_name``.

        .. deprecated::
            Names are not stable keys; use :meth:`get_by_category_id`.
        """
        warnings.warn(
            "get_by_category(name) is deprecated; use get_by_category_id()",
            DeprecationWarning,
            stacklevel=2,
        )
        wanted = category_name.strip().casefold()

        def fetch() -> List[Note]:
            return self._select_notes(
                DBNote.id.in_(
                    select(note_category_cross_ref.c.note_id)
                    .join(
                        DBCategory,
                        DBCategory.category_id == note_category_cross_ref.c.category_id,
                    )
                    .where(func.casefold(DBCategory.name) == wanted)
                )
            )

        return self._live(
            f"notes_by_category[{category_name}]", fetch, (NOTES, CATEGORIES, CROSS_REF)
        )

    def get_by_category_id(self, category_id: int) -> LiveQuery[List[Note]]:
        def fetch() -> List[Note]:
            return self._select_notes(
                DBNote.id.in_(
                    select(note_category_cross_ref.c.note_id).where(
                        note_category_cross_ref.c.category_id == category_id
                    )
                )
            )

        return self._live(
            f"notes_by_category_id[{category_id}]", fetch, (NOTES, CROSS_REF)
        )

    @staticmethod
    def _categories_by_note(
        session: Session, note_ids: List[int]
    ) -> Dict[int, List[Category]]:
        result: Dict[int, List[Category]] = {note_id: [] for note_id in note_ids}
        if not note_ids:
            return result
        rows = session.execute(
            select(note_category_cross_ref.c.note_id, DBCategory)
            .join(
                DBCategory,
                DBCategory.category_id == note_category_cross_ref.c.category_id,
            )
            .where(note_category_cross_ref.c.note_id.in_(note_ids))
            .order_by(DBCategory.name, DBCategory.category_id)
        ).all()
        for note_id, db_category in rows:
            result[note_id].append(
                Category(
                    category_id=db_category.category_id,
                    name=db_category.name,
                    emoji=db_category.emoji,
                )
            )
        return result

    def _notes_with_categories(self, *criteria) -> List[NoteWithCategories]:
        with self.database.read() as session:
            rows = session.scalars(
                select(DBNote).where(*criteria).order_by(*_NEWEST_FIRST)
            ).all()
            notes = [self._to_model(row) for row in rows]
            categories = self._categories_by_note(session, [n.id for n in notes])
        return [
            NoteWithCategories(note=note, categories=categories[note.id])
            for note in notes
        ]

    def get_with_categories(
        self, note_id: int
    ) -> LiveQuery[Optional[NoteWithCategories]]:
        def fetch() -> Optional[NoteWithCategories]:
            found = self._notes_with_categories(DBNote.id == note_id)
            return found[0] if found else None

        return self._live(
            f"note_with_categories[{note_id}]", fetch, (NOTES, CATEGORIES, CROSS_REF)
        )

    def get_all_with_categories(self) -> LiveQuery[List[NoteWithCategories]]:
        return self._live(
            "all_notes_with_categories",
            self._notes_with_categories,
            (NOTES, CATEGORIES, CROSS_REF),
        )
