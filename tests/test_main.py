"""Tests for the command-line entry point."""
import pytest

from pocketnotes.main import main, parse_args
from tests.fakes import create_v1_database, set_user_version


@pytest.fixture
def cli(test_config, tmp_path, monkeypatch):
    """Run main() against temporary files."""
    db_path = tmp_path / "cli.db"
    prefs_path = tmp_path / "prefs.yaml"
    monkeypatch.delenv("POCKETNOTES_LOG_DIR", raising=False)
    monkeypatch.setattr(test_config, "log_dir", None)

    def run(*argv):
        return main(
            [
                "--database-path",
                str(db_path),
                "--preferences-path",
                str(prefs_path),
                *argv,
            ]
        )

    run.db_path = db_path
    return run


class TestParseArgs:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])

    def test_add_categories(self):
        args = parse_args(["add", "T", "C", "--category", "a", "--category", "b"])
        assert args.category == ["a", "b"]


class TestCommands:
    """End-to-end runs of single commands."""

    def test_migrate_reports_version(self, cli, capsys):
        assert cli("migrate") == 0
        assert "Schema version 7" in capsys.readouterr().out

    def test_add_list_search(self, cli, capsys):
        assert cli("add", "Shopping", "milk, eggs", "--category", "Home") == 0
        assert "Created note 1" in capsys.readouterr().out

        assert cli("list") == 0
        assert "Shopping" in capsys.readouterr().out

        assert cli("search", "EGGS") == 0
        assert "Shopping" in capsys.readouterr().out

        assert cli("list", "--category", "1") == 0
        assert "Shopping" in capsys.readouterr().out

    def test_secret_notes_listed_separately(self, cli, capsys):
        cli("add", "Vault", "pin", "--secret")
        capsys.readouterr()

        cli("list")
        assert "No notes." in capsys.readouterr().out
        cli("list", "--secret")
        assert "Vault" in capsys.readouterr().out

    def test_favorite_and_delete(self, cli, capsys):
        cli("add", "Shopping", "milk")
        capsys.readouterr()

        assert cli("favorite", "1") == 0
        assert "favorite: True" in capsys.readouterr().out
        cli("list", "--favorites")
        assert "Shopping" in capsys.readouterr().out

        assert cli("delete", "1") == 0
        cli("list")
        assert "No notes." in capsys.readouterr().out

    def test_missing_note_is_error(self, cli, capsys):
        assert cli("delete", "9") == 1
        assert "NOTE_NOT_FOUND" in capsys.readouterr().err

    def test_prefs(self, cli, capsys):
        assert cli("prefs", "--theme", "dark", "--filter", "favorites") == 0
        out = capsys.readouterr().out
        assert "theme_mode: dark" in out
        assert "filter_type: favorites" in out

        cli("prefs")
        assert "theme_mode: dark" in capsys.readouterr().out

    def test_legacy_file_upgraded(self, cli, capsys):
        create_v1_database(cli.db_path, [("Old", "note", 1000)])
        assert cli("list") == 0
        assert "Old" in capsys.readouterr().out

    def test_newer_schema_refused(self, cli, capsys):
        cli("migrate")
        set_user_version(cli.db_path, 99)
        capsys.readouterr()

        assert cli("list") == 2
        assert "MIGRATION_DOWNGRADE" in capsys.readouterr().err
