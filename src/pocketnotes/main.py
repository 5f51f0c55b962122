#!/usr/bin/env python
"""Command-line entry point for PocketNotes.

The CLI is the application root: it opens the note database (running any
pending migrations), wires the repositories and synchronizer to it, runs
one command and closes everything again.
"""
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from pocketnotes import __version__
from pocketnotes.config import config
from pocketnotes.exceptions import MigrationError, PocketNotesError
from pocketnotes.models.schema import Note
from pocketnotes.observability import configure_logging, metrics
from pocketnotes.services.note_synchronizer import NoteSynchronizer
from pocketnotes.storage.category_repository import CategoryRepository
from pocketnotes.storage.database import NoteDatabase
from pocketnotes.storage.note_repository import NoteRepository
from pocketnotes.storage.preferences import PreferenceStore

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="pocketnotes", description="PocketNotes local note store"
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("POCKETNOTES_DATABASE_PATH"),
    )
    parser.add_argument(
        "--preferences-path",
        help="YAML preference file path",
        type=str,
        default=os.environ.get("POCKETNOTES_PREFERENCES_PATH"),
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("POCKETNOTES_LOG_LEVEL", "WARNING"),
    )
    parser.add_argument(
        "--log-dir", help="Directory for rotating log files", type=str, default=None
    )
    parser.add_argument(
        "--allow-destructive-reset",
        action="store_true",
        help="Back up and recreate the database if it cannot be migrated",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("migrate", help="Bring the database to the latest schema")

    list_cmd = commands.add_parser("list", help="List notes, newest first")
    list_cmd.add_argument("--favorites", action="store_true")
    list_cmd.add_argument("--secret", action="store_true", help="List vault notes")
    list_cmd.add_argument("--category", type=int, help="Only notes in this category id")

    add_cmd = commands.add_parser("add", help="Create a note")
    add_cmd.add_argument("title")
    add_cmd.add_argument("content")
    add_cmd.add_argument("--markdown", action="store_true")
    add_cmd.add_argument("--favorite", action="store_true")
    add_cmd.add_argument("--secret", action="store_true")
    add_cmd.add_argument("--location", help="'lat,long'")
    add_cmd.add_argument(
        "--category", action="append", default=[], help="Category name (repeatable)"
    )

    search_cmd = commands.add_parser("search", help="Search titles and contents")
    search_cmd.add_argument("query")

    fav_cmd = commands.add_parser("favorite", help="Toggle a note's favorite flag")
    fav_cmd.add_argument("note_id", type=int)

    del_cmd = commands.add_parser("delete", help="Delete a note and its category links")
    del_cmd.add_argument("note_id", type=int)

    prefs_cmd = commands.add_parser("prefs", help="Show or change preferences")
    prefs_cmd.add_argument("--theme", help="system, light, dark or dark_plus")
    prefs_cmd.add_argument("--start-action", help="notes or quick_note")
    prefs_cmd.add_argument("--filter", dest="filter_type")

    return parser.parse_args(argv)


def update_config(args: argparse.Namespace) -> None:
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.preferences_path:
        config.preferences_path = Path(args.preferences_path)
    if args.allow_destructive_reset:
        config.allow_destructive_reset = True


def format_note(note: Note) -> str:
    flags = ""
    if note.is_favorite:
        flags += "*"
    if note.is_secret:
        flags += "S"
    if note.has_reminder:
        flags += "R"
    stamp = note.modified_at.strftime("%Y-%m-%d %H:%M")
    return f"{note.id:>5} {flags:<3} {stamp}  {note.title}"


def _print_notes(notes: List[Note]) -> None:
    if not notes:
        print("No notes.")
    for note in notes:
        print(format_note(note))


def run_command(args: argparse.Namespace, database: NoteDatabase) -> int:
    """Execute one parsed command against an open database."""
    notes = NoteRepository(database)
    categories = CategoryRepository(database)

    if args.command == "migrate":
        print(f"Schema version {database.schema_version}")
        return 0

    if args.command == "prefs":
        prefs = PreferenceStore(config.get_preferences_path())
        try:
            if args.theme:
                prefs.set_theme_mode(args.theme)
            if args.start_action:
                prefs.set_start_action(args.start_action)
            if args.filter_type:
                prefs.set_filter_type(args.filter_type)
            print(f"theme_mode: {prefs.get_theme_mode().value}")
            print(f"start_action: {prefs.get_start_action().value}")
            print(f"filter_type: {prefs.get_filter_type()}")
        finally:
            prefs.close()
        return 0

    with NoteSynchronizer(notes, categories) as sync:
        if args.command == "list":
            if args.category is not None:
                _print_notes(notes.get_by_category_id(args.category).get())
            elif args.favorites:
                _print_notes(notes.get_favorites().get())
            elif args.secret:
                _print_notes(notes.get_secret().get())
            else:
                _print_notes(notes.get_all(include_secret=False).get())
        elif args.command == "add":
            note_id = sync.create(
                Note(
                    title=args.title,
                    content=args.content,
                    is_markdown_enabled=args.markdown,
                    is_favorite=args.favorite,
                    is_secret=args.secret,
                    location=args.location,
                )
            )
            for name in args.category:
                category = categories.find_by_name(name)
                category_id = (
                    category.category_id if category else sync.create_category(name)
                )
                sync.add_category_to_note(note_id, category_id)
            print(f"Created note {note_id}")
        elif args.command == "search":
            _print_notes(sync.search(args.query))
        elif args.command == "favorite":
            sync.toggle_favorite(args.note_id)
            note = notes.get(args.note_id)
            print(f"Note {args.note_id} favorite: {note.is_favorite}")
        elif args.command == "delete":
            sync.delete(args.note_id)
            print(f"Deleted note {args.note_id}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Run the PocketNotes command line."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    if args.log_dir or config.log_dir:
        try:
            configure_logging(
                log_dir=args.log_dir or config.log_dir, level=log_level, console=True
            )
        except OSError as e:
            # Fall back to basic console logging if file logging fails
            logging.basicConfig(level=log_level)
            logger.warning(f"Failed to configure file logging: {e}")
    else:
        logging.basicConfig(level=log_level)

    try:
        database = NoteDatabase(config.get_db_path())
    except MigrationError as e:
        logger.error(f"Failed to open database: {e}")
        print(f"error: {e}", file=sys.stderr)
        return 2

    try:
        return run_command(args, database)
    except PocketNotesError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        database.close()
        logger.debug(f"Operation summary: {metrics.get_summary()}")


if __name__ == "__main__":
    sys.exit(main())
