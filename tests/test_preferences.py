"""Tests for the YAML-backed preference store."""
import logging

import pytest
import yaml

from pocketnotes.exceptions import ErrorCode, PreferenceError
from pocketnotes.models.schema import AvatarStyle, StartAction, ThemeMode, UserProfile
from pocketnotes.storage.preferences import (
    LAST_ROUTE,
    MAX_ROUTE_LENGTH,
    THEME_MODE,
    PreferenceStore,
)
from tests.fakes import RecordingSubscriber


class TestDefaults:
    """Absent keys read as their defaults."""

    def test_fresh_store(self, preference_store):
        assert preference_store.get_filter_type() == "all"
        assert preference_store.get_selected_category_id() is None
        assert preference_store.get_last_route() is None
        assert preference_store.get_theme_mode() == ThemeMode.SYSTEM
        assert preference_store.get_start_action() == StartAction.NOTES
        assert preference_store.get_avatar_style() == AvatarStyle.CIRCLE
        assert preference_store.get_profile() == UserProfile()

    def test_file_not_created_by_reads(self, preference_store):
        preference_store.get_theme_mode()
        assert not preference_store.path.exists()


class TestReadWrite:
    """Values survive a reopen and the file stays plain YAML."""

    def test_round_trip_across_instances(self, test_config):
        path = test_config.get_preferences_path()
        store = PreferenceStore(path)
        store.set_filter_type("favorites")
        store.set_selected_category_id(3)
        store.set_last_route("notes/detail/4")
        store.set_theme_mode(ThemeMode.DARK_PLUS)
        store.set_start_action("quick_note")
        store.set_avatar_style(AvatarStyle.SQUIRCLE)
        store.close()

        reopened = PreferenceStore(path)
        assert reopened.get_filter_type() == "favorites"
        assert reopened.get_selected_category_id() == 3
        assert reopened.get_last_route() == "notes/detail/4"
        assert reopened.get_theme_mode() == ThemeMode.DARK_PLUS
        assert reopened.get_start_action() == StartAction.QUICK_NOTE
        assert reopened.get_avatar_style() == AvatarStyle.SQUIRCLE

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        assert data[THEME_MODE] == "dark_plus"

    def test_clearing_selected_category(self, preference_store):
        preference_store.set_selected_category_id(5)
        preference_store.set_selected_category_id(None)
        assert preference_store.get_selected_category_id() is None

    def test_negative_category_reads_as_none(self, preference_store):
        preference_store.set_selected_category_id(-1)
        assert preference_store.get_selected_category_id() is None

    def test_long_route_truncated(self, preference_store):
        preference_store.set_last_route("x" * 500)
        assert len(preference_store.get_last_route()) == MAX_ROUTE_LENGTH

    def test_invalid_enum_stores_default(self, preference_store, caplog):
        preference_store.set_theme_mode(ThemeMode.DARK)
        with caplog.at_level(logging.WARNING):
            stored = preference_store.set_theme_mode("sepia")
        assert stored == ThemeMode.SYSTEM
        assert preference_store.get_theme_mode() == ThemeMode.SYSTEM
        assert "sepia" in caplog.text

    def test_unknown_stored_value_reads_as_default(self, preference_store):
        preference_store.path.write_text("start_action: bogus\n", encoding="utf-8")
        assert preference_store.get_start_action() == StartAction.NOTES

    def test_unknown_keys_preserved(self, preference_store):
        preference_store.path.write_text("future_key: 1\n", encoding="utf-8")
        preference_store.set_filter_type("secret")
        data = yaml.safe_load(preference_store.path.read_text(encoding="utf-8"))
        assert data["future_key"] == 1

    def test_profile(self, preference_store):
        preference_store.set_profile(
            UserProfile(first_name="Ada", last_name="Lovelace", birth_date="1815-12-10")
        )
        profile = preference_store.get_profile()
        assert profile.display_name == "Ada Lovelace"
        assert profile.birth_date == "1815-12-10"

        preference_store.set_profile(UserProfile(first_name="Ada"))
        assert preference_store.get_profile().last_name == ""
        data = yaml.safe_load(preference_store.path.read_text(encoding="utf-8"))
        assert "last_name" not in data

    def test_clear(self, preference_store):
        preference_store.set_theme_mode(ThemeMode.LIGHT)
        preference_store.clear()
        assert preference_store.get_theme_mode() == ThemeMode.SYSTEM


class TestCorruption:
    """A damaged file degrades to defaults instead of failing."""

    def test_corrupt_yaml(self, preference_store):
        preference_store.path.write_text("theme_mode: [unclosed\n", encoding="utf-8")
        assert preference_store.get_theme_mode() == ThemeMode.SYSTEM
        preference_store.set_theme_mode(ThemeMode.DARK)
        assert preference_store.get_theme_mode() == ThemeMode.DARK

    def test_non_mapping(self, preference_store):
        preference_store.path.write_text("- just\n- a list\n", encoding="utf-8")
        assert preference_store.get_filter_type() == "all"

    def test_unreadable_path(self, tmp_path):
        directory = tmp_path / "prefs.yaml"
        directory.mkdir()
        store = PreferenceStore(directory)
        with pytest.raises(PreferenceError) as exc_info:
            store.get_theme_mode()
        assert exc_info.value.code == ErrorCode.PREFERENCE_READ_FAILED


class TestObservation:
    """observe() behaves like a live query keyed by preference."""

    def test_observe_emits_changes(self, preference_store):
        received = RecordingSubscriber()
        preference_store.observe(THEME_MODE).subscribe(received)

        preference_store.set_theme_mode(ThemeMode.DARK)
        preference_store.set_theme_mode(ThemeMode.DARK)
        preference_store.set_theme_mode(ThemeMode.LIGHT)

        assert received.values == [ThemeMode.SYSTEM, ThemeMode.DARK, ThemeMode.LIGHT]

    def test_other_keys_do_not_emit(self, preference_store):
        received = RecordingSubscriber()
        preference_store.observe(LAST_ROUTE).subscribe(received)

        preference_store.set_filter_type("favorites")

        assert received.values == [None]

    def test_profile_field_observable(self, preference_store):
        received = RecordingSubscriber()
        preference_store.observe("first_name").subscribe(received)

        preference_store.set_profile(UserProfile(first_name="Grace"))

        assert received.values == ["", "Grace"]

    def test_unknown_key(self, preference_store):
        with pytest.raises(PreferenceError) as exc_info:
            preference_store.observe("font_size")
        assert exc_info.value.code == ErrorCode.PREFERENCE_INVALID
        with pytest.raises(PreferenceError):
            preference_store.get("font_size")
