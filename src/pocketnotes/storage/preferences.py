"""Key-value store for UI and profile preferences.

The preferences live in one small YAML file next to (but independent of)
the note database. Keys are read with a default when absent, writes are
last-write-wins and replace the file atomically. There is no versioning
and no migration: unknown keys are kept, malformed values read as the
default.
"""

import logging
import os
import threading
from concurrent.futures import Executor
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Type, TypeVar, Union

import yaml

from pocketnotes.config import config
from pocketnotes.exceptions import ErrorCode, PreferenceError
from pocketnotes.models.schema import AvatarStyle, StartAction, ThemeMode, UserProfile
from pocketnotes.storage.live import InvalidationTracker, LiveQuery

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

FILTER_TYPE = "filter_type"
SELECTED_CATEGORY_ID = "selected_category_id"
LAST_ROUTE = "last_route"
THEME_MODE = "theme_mode"
START_ACTION = "start_action"
AVATAR_STYLE = "avatar_style"
PROFILE_FIELDS = ("first_name", "last_name", "birth_date", "profile_image_uri")

DEFAULT_FILTER_TYPE = "all"
MAX_ROUTE_LENGTH = 200


class PreferenceStore:
    """Typed accessors over a YAML preference file.

    Args:
        path: Preference file. Defaults to the configured path.
        executor: Optional executor for delivering observed changes.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self.path = Path(path) if path else config.get_preferences_path()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._tracker = InvalidationTracker(executor)
        self._readers: Dict[str, Callable[[], Any]] = {
            FILTER_TYPE: self.get_filter_type,
            SELECTED_CATEGORY_ID: self.get_selected_category_id,
            LAST_ROUTE: self.get_last_route,
            THEME_MODE: self.get_theme_mode,
            START_ACTION: self.get_start_action,
            AVATAR_STYLE: self.get_avatar_style,
        }
        for field in PROFILE_FIELDS:
            self._readers[field] = lambda field=field: self._get_str(field, "")

    # -- file access ------------------------------------------------------

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.warning(f"Preference file {self.path} is corrupt, using defaults: {e}")
            return {}
        except OSError as e:
            raise PreferenceError(
                f"Failed to read preferences from {self.path.name}",
                code=ErrorCode.PREFERENCE_READ_FAILED,
                original_error=e,
            ) from e
        if not isinstance(data, dict):
            if data is not None:
                logger.warning(
                    f"Preference file {self.path} does not hold a mapping, using defaults"
                )
            return {}
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        # Atomic write via temp file
        temp_file = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, sort_keys=True, allow_unicode=True)
            os.replace(temp_file, self.path)
        except OSError as e:
            raise PreferenceError(
                f"Failed to write preferences to {self.path.name}",
                code=ErrorCode.PREFERENCE_WRITE_FAILED,
                original_error=e,
            ) from e

    def _write(self, **changes: Any) -> None:
        """Apply ``changes`` (a value of None removes the key) and notify."""
        with self._lock:
            data = self._load()
            for key, value in changes.items():
                if value is None:
                    data.pop(key, None)
                else:
                    data[key] = value
            self._save(data)
        self._tracker.notify(changes.keys())

    def _get_raw(self, key: str) -> Any:
        with self._lock:
            return self._load().get(key)

    def _get_str(self, key: str, default: Optional[str]) -> Optional[str]:
        value = self._get_raw(key)
        if value is None:
            return default
        return str(value)

    def _get_enum(self, key: str, enum_type: Type[E], default: E) -> E:
        value = self._get_raw(key)
        if value is None:
            return default
        try:
            return enum_type(value)
        except ValueError:
            logger.warning(f"Ignoring unknown {key} value {value!r}")
            return default

    def _set_enum(self, key: str, value: Union[E, str], enum_type: Type[E], default: E) -> E:
        try:
            member = enum_type(value)
        except ValueError:
            logger.warning(
                f"Rejected {key} value {value!r}; falling back to {default.value!r}"
            )
            member = default
        self._write(**{key: member.value})
        return member

    # -- filter / navigation ----------------------------------------------

    def get_filter_type(self) -> str:
        return self._get_str(FILTER_TYPE, DEFAULT_FILTER_TYPE)

    def set_filter_type(self, filter_type: str) -> None:
        self._write(**{FILTER_TYPE: str(filter_type)})

    def get_selected_category_id(self) -> Optional[int]:
        """Selected category, or None. Negative stored values mean none."""
        value = self._get_raw(SELECTED_CATEGORY_ID)
        try:
            category_id = int(value) if value is not None else -1
        except (TypeError, ValueError):
            return None
        return category_id if category_id >= 0 else None

    def set_selected_category_id(self, category_id: Optional[int]) -> None:
        self._write(
            **{SELECTED_CATEGORY_ID: int(category_id) if category_id is not None else None}
        )

    def get_last_route(self) -> Optional[str]:
        return self._get_str(LAST_ROUTE, None)

    def set_last_route(self, route: str) -> None:
        """Remember the last screen; long routes are cut to 200 characters."""
        self._write(**{LAST_ROUTE: route[:MAX_ROUTE_LENGTH]})

    # -- appearance -------------------------------------------------------

    def get_theme_mode(self) -> ThemeMode:
        return self._get_enum(THEME_MODE, ThemeMode, ThemeMode.SYSTEM)

    def set_theme_mode(self, mode: Union[ThemeMode, str]) -> ThemeMode:
        """Store a theme mode. Unrecognized values store the default.

        Returns:
            The mode actually stored.
        """
        return self._set_enum(THEME_MODE, mode, ThemeMode, ThemeMode.SYSTEM)

    def get_start_action(self) -> StartAction:
        return self._get_enum(START_ACTION, StartAction, StartAction.NOTES)

    def set_start_action(self, action: Union[StartAction, str]) -> StartAction:
        return self._set_enum(START_ACTION, action, StartAction, StartAction.NOTES)

    def get_avatar_style(self) -> AvatarStyle:
        return self._get_enum(AVATAR_STYLE, AvatarStyle, AvatarStyle.CIRCLE)

    def set_avatar_style(self, style: Union[AvatarStyle, str]) -> AvatarStyle:
        return self._set_enum(AVATAR_STYLE, style, AvatarStyle, AvatarStyle.CIRCLE)

    # -- profile ----------------------------------------------------------

    def get_profile(self) -> UserProfile:
        with self._lock:
            data = self._load()
        return UserProfile(
            **{
                field: str(data[field]) if data.get(field) is not None else ""
                for field in PROFILE_FIELDS
            }
        )

    def set_profile(self, profile: UserProfile) -> None:
        """Store every profile field; empty fields are removed from the file."""
        self._write(
            **{field: getattr(profile, field) or None for field in PROFILE_FIELDS}
        )

    # -- observation ------------------------------------------------------

    def get(self, key: str) -> Any:
        """Typed value of ``key`` (default when absent)."""
        try:
            reader = self._readers[key]
        except KeyError:
            raise PreferenceError(
                f"Unknown preference key: {key}",
                key=key,
                code=ErrorCode.PREFERENCE_INVALID,
            ) from None
        return reader()

    def observe(self, key: str) -> LiveQuery:
        """Live value of ``key``: current value first, then every change."""
        if key not in self._readers:
            raise PreferenceError(
                f"Unknown preference key: {key}",
                key=key,
                code=ErrorCode.PREFERENCE_INVALID,
            )
        return LiveQuery(self._tracker, (key,), lambda: self.get(key), name=f"pref[{key}]")

    def clear(self) -> None:
        """Remove every stored preference."""
        with self._lock:
            keys = list(self._load().keys())
            self._save({})
        self._tracker.notify(keys)

    def close(self) -> None:
        self._tracker.close()
