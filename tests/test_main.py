"""Tests for the command line entry point."""
import json

import pytest

from measly_notes.main import main, parse_args, run_command, update_config


class TestParseArgs:
    """Argument parsing."""

    def test_search_with_tag_flag(self):
        args = parse_args(["--log-level", "DEBUG", "search", "project", "--tag"])
        assert args.command == "search"
        assert args.query == "project"
        assert args.tag is True
        assert args.log_level == "DEBUG"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])

    def test_update_config(self, test_config, tmp_path):
        args = parse_args(["--notes-dir", str(tmp_path / "n"), "trash"])
        update_config(args)
        assert test_config.notes_dir == tmp_path / "n"


class TestRunCommand:
    """Subcommands against a live service."""

    def test_reconcile(self, notes_service, notes_dir):
        (notes_dir / "new.md").write_text("# New", encoding="utf-8")
        output = run_command(notes_service, parse_args(["reconcile"]))
        assert len(output["created_note_ids"]) == 1
        assert output["warnings"] == []

    def test_search_and_tags(self, notes_service):
        note = notes_service.create_note("Fox", "quick brown fox")
        notes_service.add_tag_to_note(note.id, "animals", 0)

        hits = run_command(notes_service, parse_args(["search", "quick"]))
        assert [h["note"]["id"] for h in hits] == [note.id]
        assert hits[0]["match_type"] == "content"

        assert run_command(notes_service, parse_args(["tags"]))["animals"] == 1
        assert run_command(notes_service, parse_args(["tags", "--top", "5"])) == ["animals"]

    def test_hierarchy_and_trash(self, notes_service):
        note = notes_service.create_note("Gone", "")
        notes_service.add_tag_to_note(note.id, "deleted", 0)
        assert run_command(notes_service, parse_args(["hierarchy"])) == {
            "hierarchy": {},
            "uncategorizedNotes": [],
        }
        trash = run_command(notes_service, parse_args(["trash"]))
        assert [n["id"] for n in trash] == [note.id]


def test_main_prints_json(test_config, monkeypatch, capsys):
    monkeypatch.setattr("measly_notes.main.configure_logging", lambda **kwargs: None)
    assert main(["trash"]) == 0
    assert json.loads(capsys.readouterr().out) == []
