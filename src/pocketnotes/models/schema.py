"""Data models for PocketNotes."""

import datetime
import re
from datetime import timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_CATEGORY_EMOJI = "📁"

# "lat,long" with optional whitespace around the comma
_LOCATION_PATTERN = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$")


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC."""
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def to_millis(dt_value: datetime.datetime) -> int:
    """Epoch milliseconds, the on-disk timestamp format."""
    return int(ensure_timezone_aware(dt_value).timestamp() * 1000)


def from_millis(value: Optional[int]) -> datetime.datetime:
    """Inverse of :func:`to_millis`; ``None`` and 0 both map to the epoch."""
    return datetime.datetime.fromtimestamp((value or 0) / 1000, tz=timezone.utc)


def validate_location(value: str) -> str:
    """Validate a ``"lat,long"`` string and normalize it to ``"lat,long"``.

    Raises:
        ValueError: If the value is not two numbers in range.
    """
    match = _LOCATION_PATTERN.match(value)
    if not match:
        raise ValueError("Location must be formatted as 'lat,long'")
    lat, lon = float(match.group(1)), float(match.group(2))
    if not -90.0 <= lat <= 90.0:
        raise ValueError(f"Latitude out of range: {lat}")
    if not -180.0 <= lon <= 180.0:
        raise ValueError(f"Longitude out of range: {lon}")
    return f"{match.group(1)},{match.group(2)}"


class ThemeMode(str, Enum):
    """Theme selection stored in the preference file."""

    SYSTEM = "system"
    LIGHT = "light"
    DARK = "dark"
    DARK_PLUS = "dark_plus"  # OLED black


class StartAction(str, Enum):
    """What the app shows on launch."""

    NOTES = "notes"
    QUICK_NOTE = "quick_note"


class AvatarStyle(str, Enum):
    """Shape of the profile avatar container."""

    CIRCLE = "circle"
    ROUNDED = "rounded"
    SQUIRCLE = "squircle"
    CUT_CORNER = "cut"


class Note(BaseModel):
    """A note as stored in the ``notes`` table."""

    id: Optional[int] = Field(
        default=None, description="Store-assigned ID (None until inserted)"
    )
    title: str = Field(..., description="Title of the note (may be empty)")
    content: str = Field(..., description="Body; Markdown when enabled")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    modified_at: datetime.datetime = Field(
        default_factory=utc_now, description="Last full-record write (UTC)"
    )
    location: Optional[str] = Field(default=None, description="'lat,long' or None")
    notification_time: Optional[int] = Field(
        default=None, ge=0, description="Reminder offset in minutes"
    )
    is_favorite: bool = False
    is_markdown_enabled: bool = False
    is_notification_persistent: bool = False
    is_secret: bool = Field(default=False, description="Kept in the vault")

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: Optional[int]) -> Optional[int]:
        """IDs are positive rowids."""
        if v is not None and v <= 0:
            raise ValueError("Note ID must be positive")
        return v

    @field_validator("created_at", "modified_at")
    @classmethod
    def validate_timestamps(cls, v: datetime.datetime) -> datetime.datetime:
        """Naive datetimes are taken as UTC."""
        return ensure_timezone_aware(v)

    @field_validator("location")
    @classmethod
    def check_location(cls, v: Optional[str]) -> Optional[str]:
        """Blank locations are treated as no location."""
        if v is None or not v.strip():
            return None
        return validate_location(v)

    @property
    def has_reminder(self) -> bool:
        return bool(self.notification_time)


class Category(BaseModel):
    """A user-defined category with a display glyph."""

    category_id: Optional[int] = Field(default=None, description="Store-assigned ID")
    name: str = Field(..., description="Display name, unique ignoring case")
    emoji: str = Field(default=DEFAULT_CATEGORY_EMOJI, description="Display glyph")

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Names are trimmed and must not be empty."""
        v = v.strip()
        if not v:
            raise ValueError("Category name cannot be empty")
        return v

    @field_validator("emoji")
    @classmethod
    def validate_emoji(cls, v: str) -> str:
        return v.strip() or DEFAULT_CATEGORY_EMOJI

    def __str__(self) -> str:
        return f"{self.emoji} {self.name}"


class NoteCategoryCrossRef(BaseModel):
    """Association row between a note and a category."""

    note_id: int
    category_id: int

    model_config = {"frozen": True}


class NoteWithCategories(BaseModel):
    """A note together with the categories it is filed under."""

    note: Note
    categories: List[Category] = Field(default_factory=list)


class CategoryWithNotes(BaseModel):
    """A category together with the notes filed under it."""

    category: Category
    notes: List[Note] = Field(default_factory=list)


class UserProfile(BaseModel):
    """Profile fields kept in the preference file."""

    first_name: str = ""
    last_name: str = ""
    birth_date: str = ""
    profile_image_uri: str = ""

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)
