"""
PocketNotes - the local persistence and state core of a note-taking app.

Notes, categories, favorites, reminders and a secret-note vault are kept in a
versioned SQLite file; UI preferences live in a separate YAML file. Readers
subscribe to live queries that re-emit whenever a write changes their result.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pocketnotes")
except PackageNotFoundError:
    __version__ = "0.7.0"
