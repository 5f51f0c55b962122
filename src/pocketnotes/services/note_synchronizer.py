"""In-memory note state kept in step with the store.

The synchronizer is what a screen talks to. It holds plain snapshots
(``all_notes``, ``favorite_notes``, ``secret_notes``, ``categories``,
``current_note``) that are replaced whenever the live query behind them
re-emits, and it turns UI intents into repository writes. Snapshots are
only ever updated from the store, so a failed write leaves them exactly as
they were.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union

from pocketnotes.config import config
from pocketnotes.exceptions import (
    CategoryError,
    ErrorCode,
    NoteNotFoundError,
    NoteValidationError,
    PocketNotesError,
)
from pocketnotes.models.schema import (
    Category,
    CategoryWithNotes,
    Note,
    NoteWithCategories,
)
from pocketnotes.storage.category_repository import CategoryRepository
from pocketnotes.storage.live import LiveQuery, Subscription
from pocketnotes.storage.note_repository import NoteRepository
from pocketnotes.utils import extract_markdown_title, looks_like_random_id

logger = logging.getLogger(__name__)

# Title the editor gives a note the user never named
UNTITLED_TITLE = "Untitled note"

Listener = Callable[[str], None]


class NoteSynchronizer:
    """Observable note state for one owner (a screen or the whole app).

    Every ``load_*`` call binds a snapshot attribute to a live query for the
    synchronizer's lifetime. :meth:`close` cancels all of them.

    Args:
        notes: Note repository.
        categories: Category repository on the same database.
        clock: Source of "now"; defaults to the database clock.
    """

    def __init__(
        self,
        notes: NoteRepository,
        categories: CategoryRepository,
        clock: Optional[Callable] = None,
    ):
        self.note_repository = notes
        self.category_repository = categories
        self.clock = clock or notes.database.clock

        self.all_notes: List[Note] = []
        self.favorite_notes: List[Note] = []
        self.secret_notes: List[Note] = []
        self.categories: List[Category] = []
        self.current_note: Optional[Note] = None
        self.current_note_with_categories: Optional[NoteWithCategories] = None
        self.category_with_notes: Optional[CategoryWithNotes] = None
        self.last_imported_note_id: Optional[int] = None
        self.last_error: Optional[PocketNotesError] = None

        self._lock = threading.RLock()
        self._bindings: Dict[str, Tuple[LiveQuery, Subscription]] = {}
        self._listeners: List[Listener] = []
        self._closed = False

    # -- plumbing ---------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        """Call ``listener(attribute_name)`` after any snapshot changes."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, attribute: str) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(attribute)
            except Exception:
                logger.exception(f"Listener failed handling change of {attribute}")

    def _bind(self, attribute: str, query: LiveQuery) -> None:
        """Replace whatever fed ``attribute`` with ``query``."""
        if self._closed:
            raise RuntimeError("NoteSynchronizer is closed")

        def on_value(value) -> None:
            with self._lock:
                if self._bindings.get(attribute, (None,))[0] is not query:
                    return
                setattr(self, attribute, value)
            self._emit(attribute)

        with self._lock:
            previous = self._bindings.pop(attribute, None)
            self._bindings[attribute] = (query, None)
        if previous is not None:
            previous[1].cancel()
        subscription = query.subscribe(on_value)
        with self._lock:
            self._bindings[attribute] = (query, subscription)

    def _unbind(self, attribute: str) -> None:
        with self._lock:
            binding = self._bindings.pop(attribute, None)
        if binding is not None and binding[1] is not None:
            binding[1].cancel()

    @property
    def bound_attributes(self) -> List[str]:
        with self._lock:
            return sorted(self._bindings)

    @contextmanager
    def _reporting(self, operation: str) -> Iterator[None]:
        """Remember and announce a failed write, then let it propagate."""
        try:
            yield
        except PocketNotesError as e:
            self._record_failure(operation, e)
            raise

    def _record_failure(self, operation: str, error: PocketNotesError) -> None:
        logger.warning(f"{operation} failed: {error}")
        with self._lock:
            self.last_error = error
        self._emit("last_error")

    def clear_error(self) -> None:
        with self._lock:
            self.last_error = None

    def refresh(self) -> None:
        """Re-run every bound query (changes are delivered as usual)."""
        with self._lock:
            queries = [query for query, _ in self._bindings.values()]
        for query in queries:
            query.refresh()

    def close(self) -> None:
        """Cancel every subscription. The synchronizer cannot be reused."""
        with self._lock:
            self._closed = True
            bindings = list(self._bindings.values())
            self._bindings.clear()
            self._listeners.clear()
        for _, subscription in bindings:
            if subscription is not None:
                subscription.cancel()
        logger.debug("NoteSynchronizer closed")

    def __enter__(self) -> "NoteSynchronizer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -- loading ----------------------------------------------------------

    def load_all(self, include_secret: bool = False) -> None:
        """Keep ``all_notes`` current. Vault notes are left out by default."""
        self._bind("all_notes", self.note_repository.get_all(include_secret))

    def load_favorites(self) -> None:
        self._bind("favorite_notes", self.note_repository.get_favorites())

    def load_secret(self) -> None:
        """Keep ``secret_notes`` current (call only once the vault is unlocked)."""
        self._bind("secret_notes", self.note_repository.get_secret())

    def load_categories(self) -> None:
        self._bind("categories", self.category_repository.get_all())

    def load_one(self, note_id: int) -> None:
        """Make ``current_note`` follow one note, replacing any earlier one."""
        self._bind("current_note", self.note_repository.get_by_id(note_id))

    def observe_note_with_categories(self, note_id: int) -> None:
        self._bind(
            "current_note_with_categories",
            self.note_repository.get_with_categories(note_id),
        )

    def load_category_with_notes(self, category_id: int) -> None:
        self._bind(
            "category_with_notes",
            self.category_repository.get_with_notes(category_id),
        )

    def clear_current_note(self) -> None:
        self._unbind("current_note")
        with self._lock:
            self.current_note = None
        self._emit("current_note")

    # -- editing ----------------------------------------------------------

    def stage_edit(self, transform: Callable[[Note], Note]) -> Optional[Note]:
        """Apply ``transform`` to the in-memory current note without saving.

        Returns:
            The staged note, or None when no note is loaded.

        Raises:
            NoteValidationError: If the transform changes the note's id.
        """
        with self._lock:
            current = self.current_note
            if current is None:
                return None
            staged = transform(current)
            if staged.id != current.id:
                raise NoteValidationError(
                    "An edit cannot change the note id", field="id", value=staged.id
                )
            self.current_note = staged
        self._emit("current_note")
        return staged

    def commit_edit(self) -> Optional[Note]:
        """Persist the staged current note with ``modified_at`` set to now."""
        with self._lock:
            current = self.current_note
        if current is None:
            return None
        with self._reporting("commit_edit"):
            return self.note_repository.update(
                current.model_copy(update={"modified_at": self.clock()})
            )

    # -- notes ------------------------------------------------------------

    def create(self, note: Note) -> int:
        """Insert a new note stamped with the current time; returns its id."""
        now = self.clock()
        with self._reporting("create_note"):
            return self.note_repository.insert(
                note.model_copy(update={"created_at": now, "modified_at": now})
            )

    def update(self, note: Note) -> Note:
        with self._reporting("update_note"):
            return self.note_repository.update(
                note.model_copy(update={"modified_at": self.clock()})
            )

    def delete(self, note: Union[Note, int]) -> None:
        """Delete a note together with its category links."""
        note_id = note.id if isinstance(note, Note) else note
        with self._reporting("delete_note"):
            self.category_repository.remove_all_for_note(note_id)
            self.note_repository.delete(note_id)
        with self._lock:
            cleared = self.current_note is not None and self.current_note.id == note_id
            if cleared:
                self.current_note = None
        if cleared:
            self._emit("current_note")

    def toggle_favorite(self, note_id: int) -> None:
        with self._reporting("toggle_favorite"):
            self.note_repository.toggle_favorite(note_id)

    def toggle_markdown(self, note_id: int, enabled: bool) -> None:
        with self._reporting("toggle_markdown"):
            self.note_repository.set_markdown_enabled(note_id, enabled)

    def search(self, query: str) -> List[Note]:
        """One-shot case-insensitive search over titles and contents."""
        return self.note_repository.search(query)

    # -- reminders --------------------------------------------------------

    def _rewrite(self, note_id: int, operation: str, **changes) -> Note:
        with self._reporting(operation):
            note = self.note_repository.get(note_id)
            if note is None:
                raise NoteNotFoundError(note_id)
            changes["modified_at"] = self.clock()
            return self.note_repository.update(note.model_copy(update=changes))

    def schedule_reminder(self, note_id: int, minutes: int) -> Note:
        """Record a reminder offset. Delivery is up to the notifier."""
        return self._rewrite(note_id, "schedule_reminder", notification_time=minutes)

    def schedule_quick_reminder(
        self, note_id: int, minutes_from_now: int, persistent: bool = False
    ) -> Note:
        return self._rewrite(
            note_id,
            "schedule_quick_reminder",
            notification_time=minutes_from_now,
            is_notification_persistent=persistent,
        )

    def clear_reminder(self, note_id: int) -> Note:
        return self._rewrite(
            note_id,
            "clear_reminder",
            notification_time=None,
            is_notification_persistent=False,
        )

    def reminder_delivered(self, note_id: int) -> Optional[Note]:
        """Called once a reminder was shown; clears it without touching
        ``modified_at``.

        Returns:
            The note as it was when the reminder fired, or None if the note
            no longer exists (nothing should be shown then).
        """
        note = self.note_repository.get(note_id)
        if note is None:
            logger.info(f"Reminder for deleted note {note_id} ignored")
            return None
        with self._reporting("reminder_delivered"):
            self.note_repository.clear_reminder_state(note_id)
        return note

    def pending_reminders(self) -> List[Note]:
        """Notes whose reminders must be re-armed (e.g. after a restart)."""
        return self.note_repository.get_with_notifications()

    # -- import -----------------------------------------------------------

    @staticmethod
    def _usable_title(title: str) -> Optional[str]:
        title = (title or "").strip()
        if not title or title == UNTITLED_TITLE or looks_like_random_id(title):
            return None
        return title

    def import_external_note(self, title: str, content: str, as_markdown: bool) -> int:
        """Save text shared from elsewhere as a new note and return its id.

        Markdown imports prefer the first heading as the title. Otherwise
        the supplied title is used unless it is blank, the untitled
        placeholder, or looks like a file id.
        """
        computed = None
        if as_markdown:
            computed = extract_markdown_title(content)
        computed = computed or self._usable_title(title) or config.imported_note_title

        note_id = self.create(
            Note(title=computed, content=content, is_markdown_enabled=as_markdown)
        )
        with self._lock:
            self.last_imported_note_id = note_id
        self._emit("last_imported_note_id")
        logger.info(f"Imported external note {note_id}: {computed!r}")
        return note_id

    # -- categories -------------------------------------------------------

    def insert_category(self, category: Category) -> int:
        """Create a category.

        Raises:
            CategoryError: If the name is already used (ignoring case).
        """
        with self._reporting("insert_category"):
            return self.category_repository.insert(category)

    def create_category(self, name: str, emoji: Optional[str] = None) -> int:
        """Create a category from a bare name (trimmed, unique ignoring case)."""
        if not name or not name.strip():
            error = CategoryError(
                "Category name cannot be empty", code=ErrorCode.CATEGORY_INVALID
            )
            self._record_failure("insert_category", error)
            raise error
        category = Category(name=name, emoji=emoji or config.default_category_emoji)
        return self.insert_category(category)

    def update_category(self, category: Category) -> None:
        with self._reporting("update_category"):
            self.category_repository.update(category)

    def delete_category(self, category: Union[Category, int]) -> None:
        """Delete a category together with its note links."""
        category_id = (
            category.category_id if isinstance(category, Category) else category
        )
        with self._reporting("delete_category"):
            self.category_repository.remove_all_for_category(category_id)
            self.category_repository.delete(category_id)

    def add_category_to_note(self, note_id: int, category_id: int) -> None:
        with self._reporting("add_category_to_note"):
            self.category_repository.add_to_note(note_id, category_id)

    def remove_category_from_note(self, note_id: int, category_id: int) -> None:
        with self._reporting("remove_category_from_note"):
            self.category_repository.remove_from_note(note_id, category_id)

    def remove_all_categories_from_note(self, note_id: int) -> None:
        with self._reporting("remove_all_categories_from_note"):
            self.category_repository.remove_all_for_note(note_id)

    def get_category_names(self) -> List[str]:
        return self.category_repository.get_all_names()
