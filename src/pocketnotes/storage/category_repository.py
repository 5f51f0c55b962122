"""Repository for categories and note/category cross references."""
import logging
from typing import List, Optional, Union

from sqlalchemy import delete, func, insert, select

from pocketnotes.exceptions import (
    CategoryError,
    CategoryNotFoundError,
    ErrorCode,
    NoteNotFoundError,
)
from pocketnotes.models.db_models import DBCategory, DBNote, note_category_cross_ref
from pocketnotes.models.schema import (
    Category,
    CategoryWithNotes,
    NoteCategoryCrossRef,
)
from pocketnotes.observability import traced
from pocketnotes.storage.database import NoteDatabase
from pocketnotes.storage.live import LiveQuery
from pocketnotes.storage.note_repository import (
    CATEGORIES,
    CROSS_REF,
    NOTES,
    NoteRepository,
)

logger = logging.getLogger(__name__)


def _category_id(category: Union[Category, int]) -> Optional[int]:
    return category.category_id if isinstance(category, Category) else category


class CategoryRepository:
    """Repository for managing categories.

    Names are unique ignoring case and surrounding whitespace. The check
    runs inside the serialized write, so two writers cannot both create
    "Work" and "work".
    """

    def __init__(self, database: NoteDatabase):
        """Initialize the category repository.

        Args:
            database: Open store handle shared with the note repository.
        """
        self.database = database

    @staticmethod
    def _to_model(db_category: DBCategory) -> Category:
        return Category(
            category_id=db_category.category_id,
            name=db_category.name,
            emoji=db_category.emoji,
        )

    @staticmethod
    def _name_taken(session, name: str, exclude_id: Optional[int] = None) -> bool:
        query = select(DBCategory.category_id).where(
            func.casefold(DBCategory.name) == name.casefold()
        )
        if exclude_id is not None:
            query = query.where(DBCategory.category_id != exclude_id)
        return session.scalar(query.limit(1)) is not None

    # -- categories -------------------------------------------------------

    @traced("insert_category")
    def insert(self, category: Category) -> int:
        """Create a category and return its id.

        Raises:
            CategoryError: If a category with the same name already exists.
        """
        category = Category.model_validate(category.model_dump(exclude_unset=True))
        with self.database.write(CATEGORIES, operation="insert_category") as session:
            if self._name_taken(session, category.name):
                raise CategoryError(
                    f"Category '{category.name}' already exists",
                    category_name=category.name,
                    code=ErrorCode.CATEGORY_ALREADY_EXISTS,
                )
            db_category = DBCategory(name=category.name, emoji=category.emoji)
            if category.category_id is not None:
                db_category.category_id = category.category_id
            session.add(db_category)
            session.flush()
            category_id = db_category.category_id
        logger.debug(f"Inserted category {category_id}: {category.name!r}")
        return category_id

    @traced("update_category")
    def update(self, category: Category) -> None:
        """Rename a category or change its emoji.

        Raises:
            CategoryNotFoundError: If the category does not exist.
            CategoryError: If the new name belongs to another category.
        """
        if category.category_id is None:
            raise CategoryError("Cannot update a category without an id")
        with self.database.write(CATEGORIES, operation="update_category") as session:
            db_category = session.get(DBCategory, category.category_id)
            if db_category is None:
                raise CategoryNotFoundError(category.category_id)
            if self._name_taken(session, category.name, category.category_id):
                raise CategoryError(
                    f"Category '{category.name}' already exists",
                    category_name=category.name,
                    code=ErrorCode.CATEGORY_ALREADY_EXISTS,
                )
            db_category.name = category.name
            db_category.emoji = category.emoji

    @traced("delete_category")
    def delete(self, category: Union[Category, int]) -> None:
        """Delete a category row. Its cross references are left in place.

        Raises:
            CategoryNotFoundError: If the category does not exist.
        """
        category_id = _category_id(category)
        with self.database.write(CATEGORIES, operation="delete_category") as session:
            db_category = session.get(DBCategory, category_id)
            if db_category is None:
                raise CategoryNotFoundError(category_id)
            session.delete(db_category)

    def get(self, category_id: int) -> Optional[Category]:
        with self.database.read() as session:
            db_category = session.get(DBCategory, category_id)
            return self._to_model(db_category) if db_category is not None else None

    def list_all(self) -> List[Category]:
        """All categories ordered by name (one-shot)."""
        with self.database.read() as session:
            rows = session.scalars(
                select(DBCategory).order_by(DBCategory.name, DBCategory.category_id)
            )
            return [self._to_model(row) for row in rows]

    def get_all(self) -> LiveQuery[List[Category]]:
        """All categories ordered by name, re-emitted on change."""
        return LiveQuery(
            self.database.tracker, (CATEGORIES,), self.list_all, name="categories"
        )

    def get_all_names(self) -> List[str]:
        return [category.name for category in self.list_all()]

    def find_by_name(self, name: str) -> Optional[Category]:
        """Case-insensitive lookup of a category by name."""
        with self.database.read() as session:
            db_category = session.scalar(
                select(DBCategory)
                .where(func.casefold(DBCategory.name) == name.strip().casefold())
                .limit(1)
            )
            return self._to_model(db_category) if db_category is not None else None

    def get_with_notes(self, category_id: int) -> LiveQuery[Optional[CategoryWithNotes]]:
        """A category with its notes (newest first), or None once deleted."""

        def fetch() -> Optional[CategoryWithNotes]:
            with self.database.read() as session:
                db_category = session.get(DBCategory, category_id)
                if db_category is None:
                    return None
                rows = session.scalars(
                    select(DBNote)
                    .join(
                        note_category_cross_ref,
                        note_category_cross_ref.c.note_id == DBNote.id,
                    )
                    .where(note_category_cross_ref.c.category_id == category_id)
                    .order_by(DBNote.modified_at.desc(), DBNote.id.desc())
                )
                return CategoryWithNotes(
                    category=self._to_model(db_category),
                    notes=[NoteRepository._to_model(row) for row in rows],
                )

        return LiveQuery(
            self.database.tracker,
            (NOTES, CATEGORIES, CROSS_REF),
            fetch,
            name=f"category_with_notes[{category_id}]",
        )

    # -- cross references -------------------------------------------------

    @traced("add_category_to_note")
    def add_to_note(self, note_id: int, category_id: int) -> None:
        """File a note under a category. Adding an existing link is a no-op.

        Raises:
            NoteNotFoundError: If the note does not exist.
            CategoryNotFoundError: If the category does not exist.
        """
        with self.database.write(CROSS_REF, operation="add_category_to_note") as session:
            if session.get(DBNote, note_id) is None:
                raise NoteNotFoundError(note_id)
            if session.get(DBCategory, category_id) is None:
                raise CategoryNotFoundError(category_id)
            session.execute(
                insert(note_category_cross_ref)
                .prefix_with("OR IGNORE")
                .values(note_id=note_id, category_id=category_id)
            )

    @traced("remove_category_from_note")
    def remove_from_note(self, note_id: int, category_id: int) -> bool:
        """Remove one link. Returns False if it did not exist."""
        with self.database.write(
            CROSS_REF, operation="remove_category_from_note"
        ) as session:
            result = session.execute(
                delete(note_category_cross_ref).where(
                    note_category_cross_ref.c.note_id == note_id,
                    note_category_cross_ref.c.category_id == category_id,
                )
            )
            return result.rowcount > 0

    @traced("remove_all_categories_for_note")
    def remove_all_for_note(self, note_id: int) -> int:
        """Remove every link of a note. Returns how many were removed."""
        with self.database.write(
            CROSS_REF, operation="remove_all_categories_for_note"
        ) as session:
            result = session.execute(
                delete(note_category_cross_ref).where(
                    note_category_cross_ref.c.note_id == note_id
                )
            )
            return result.rowcount

    @traced("remove_all_notes_for_category")
    def remove_all_for_category(self, category_id: int) -> int:
        """Remove every link to a category. Returns how many were removed."""
        with self.database.write(
            CROSS_REF, operation="remove_all_notes_for_category"
        ) as session:
            result = session.execute(
                delete(note_category_cross_ref).where(
                    note_category_cross_ref.c.category_id == category_id
                )
            )
            return result.rowcount

    def get_cross_refs(self, note_id: Optional[int] = None) -> List[NoteCategoryCrossRef]:
        with self.database.read() as session:
            query = select(
                note_category_cross_ref.c.note_id, note_category_cross_ref.c.category_id
            ).order_by(
                note_category_cross_ref.c.note_id, note_category_cross_ref.c.category_id
            )
            if note_id is not None:
                query = query.where(note_category_cross_ref.c.note_id == note_id)
            return [
                NoteCategoryCrossRef(note_id=row.note_id, category_id=row.category_id)
                for row in session.execute(query)
            ]

    def find_orphaned_cross_refs(self) -> List[NoteCategoryCrossRef]:
        """Links whose note or category no longer exists.

        Nothing cascades on delete, so these accumulate when a note or
        category is removed without clearing its links first.
        """
        with self.database.read() as session:
            rows = session.execute(
                select(
                    note_category_cross_ref.c.note_id,
                    note_category_cross_ref.c.category_id,
                )
                .where(
                    ~note_category_cross_ref.c.note_id.in_(select(DBNote.id))
                    | ~note_category_cross_ref.c.category_id.in_(
                        select(DBCategory.category_id)
                    )
                )
                .order_by(
                    note_category_cross_ref.c.note_id,
                    note_category_cross_ref.c.category_id,
                )
            )
            return [
                NoteCategoryCrossRef(note_id=row.note_id, category_id=row.category_id)
                for row in rows
            ]
