"""Configuration module for PocketNotes."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from pocketnotes import __version__

# Project-root .env first, then the user-level one next to the data files.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

_USER_ENV = Path.home() / ".pocketnotes" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class PocketNotesConfig(BaseModel):
    """Configuration for the PocketNotes store."""

    # Base directory that relative paths are resolved against
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("POCKETNOTES_BASE_DIR", "."))
    )
    # Relational store
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("POCKETNOTES_DATABASE_PATH", "data/db/note_database.db")
        )
    )
    # Key-value preference store, independent of the relational file
    preferences_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("POCKETNOTES_PREFERENCES_PATH", "data/ui_prefs.yaml")
        )
    )
    # Where backups go before an explicit destructive reset
    backup_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("POCKETNOTES_BACKUP_DIR"))
            if os.getenv("POCKETNOTES_BACKUP_DIR")
            else None
        )
    )
    # Recreate the schema when no migration path exists. Off unless asked for.
    allow_destructive_reset: bool = Field(
        default_factory=lambda: _env_flag("POCKETNOTES_ALLOW_DESTRUCTIVE_RESET", "false")
    )
    # Seconds SQLite waits on a locked database before raising
    busy_timeout: float = Field(
        default_factory=lambda: float(os.getenv("POCKETNOTES_BUSY_TIMEOUT", "30"))
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("POCKETNOTES_LOG_LEVEL", "INFO")
    )
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("POCKETNOTES_LOG_DIR"))
            if os.getenv("POCKETNOTES_LOG_DIR")
            else None
        )
    )
    app_version: str = Field(default=__version__)
    # Glyph given to categories created without one
    default_category_emoji: str = Field(
        default_factory=lambda: os.getenv("POCKETNOTES_DEFAULT_EMOJI", "📁")
    )
    # Title used when an imported note has nothing better
    imported_note_title: str = Field(default="Imported note")

    @model_validator(mode="after")
    def _validate_settings(self) -> "PocketNotesConfig":
        """Reject settings the store cannot run with."""
        if self.busy_timeout < 0:
            raise ValueError("busy_timeout must be >= 0")
        if self.log_level.upper() not in (
            "DEBUG",
            "INFO",
            "WARNING",
            "ERROR",
            "CRITICAL",
        ):
            raise ValueError(f"Unknown log level: {self.log_level}")
        if self.allow_destructive_reset:
            logger.warning(
                "Destructive schema reset is enabled; an unmigratable database "
                "will be backed up and recreated empty."
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_path(self) -> Path:
        """Absolute path of the SQLite file, creating its directory."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return db_path

    def get_preferences_path(self) -> Path:
        """Absolute path of the preference file, creating its directory."""
        prefs_path = self.get_absolute_path(self.preferences_path)
        prefs_path.parent.mkdir(parents=True, exist_ok=True)
        return prefs_path

    def get_backup_dir(self) -> Path:
        """Directory for pre-reset backups (defaults to the database's)."""
        if self.backup_dir is None:
            return self.get_db_path().parent
        backup_dir = self.get_absolute_path(self.backup_dir)
        backup_dir.mkdir(parents=True, exist_ok=True)
        return backup_dir


# Create a global config instance
config = PocketNotesConfig()
