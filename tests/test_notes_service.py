"""Tests for the NotesService facade."""
from pathlib import Path

import pytest

from measly_notes.exceptions import NoteNotFoundError, StorageError
from measly_notes.storage.note_files import parse_canonical_name


class TestNoteLifecycle:
    """Create, load, save, retitle and delete."""

    def test_create_writes_canonical_file(self, notes_service, notes_dir):
        note = notes_service.create_note("Groceries", "milk\neggs")
        path = Path(note.file_path)
        assert path.parent == notes_dir
        assert parse_canonical_name(path.name)[1] == note.file_token
        assert path.read_text(encoding="utf-8") == "milk\neggs"
        assert notes_service.load_note(note.id) == "milk\neggs"

    def test_failed_row_creation_removes_file(self, notes_service, notes_dir, monkeypatch):
        def fail(*args, **kwargs):
            raise StorageError("database is locked", operation="create_note")

        monkeypatch.setattr(notes_service.note_repository, "create_note", fail)
        with pytest.raises(StorageError):
            notes_service.create_note("Doomed", "body")
        assert list(notes_dir.iterdir()) == []

    def test_save_updates_file_timestamps_and_index(self, notes_service):
        note = notes_service.create_note("Draft", "first version")
        saved = notes_service.save_note(note.id, "second edition")

        assert Path(note.file_path).read_text(encoding="utf-8") == "second edition"
        assert saved.updated_at >= note.updated_at
        assert saved.last_edited == saved.updated_at
        assert notes_service.search_notes("first") == []
        assert [r.note.id for r in notes_service.search_notes("edition")] == [note.id]

    def test_load_repairs_cp1252(self, notes_service):
        note = notes_service.create_note("Legacy", "")
        Path(note.file_path).write_bytes(b"caf\xe9")
        assert notes_service.load_note(note.id) == "café"
        assert Path(note.file_path).read_bytes() == "café".encode("utf-8")

    def test_load_unknown_note(self, notes_service):
        with pytest.raises(NoteNotFoundError):
            notes_service.load_note(404)

    def test_title_update_is_searchable(self, notes_service):
        note = notes_service.create_note("Old name", "body")
        notes_service.update_note_title(note.id, "Quokka sightings")
        assert notes_service.get_note(note.id).title == "Quokka sightings"
        assert [r.note.id for r in notes_service.search_notes("quokka")] == [note.id]

    def test_delete_removes_everything(self, notes_service):
        note = notes_service.create_note("Bye", "farewell text")
        notes_service.add_tag_to_note(note.id, "misc", 0)

        assert notes_service.delete_note(note.id) is True

        assert not Path(note.file_path).exists()
        assert notes_service.get_note(note.id) is None
        assert notes_service.search_notes("farewell") == []
        assert notes_service.get_tags_with_counts()["misc"] == 0
        assert notes_service.delete_note(note.id) is False

    def test_delete_with_missing_file(self, notes_service):
        note = notes_service.create_note("Bye", "")
        Path(note.file_path).unlink()
        assert notes_service.delete_note(note.id) is True
        assert notes_service.get_note(note.id) is None


class TestListing:
    """Pages and the default page size."""

    def test_default_per_page_from_config(self, notes_service, test_config, monkeypatch):
        monkeypatch.setattr(test_config, "notes_per_page", 2)
        for i in range(3):
            notes_service.create_note(f"n{i}", "")
        page = notes_service.get_notes_page(1)
        assert page.per_page == 2
        assert len(page.notes) == 2
        assert page.total == 3

    def test_last_edited_follows_saves(self, notes_service):
        first = notes_service.create_note("first", "")
        notes_service.create_note("second", "")
        notes_service.save_note(first.id, "touched")
        assert notes_service.get_last_edited_note().id == first.id


class TestMaintenance:
    """Index rebuild."""

    def test_rebuild_index_reads_files(self, notes_service):
        a = notes_service.create_note("A", "alpha")
        notes_service.create_note("B", "beta")
        Path(a.file_path).write_text("gamma", encoding="utf-8")

        assert notes_service.rebuild_index() == 2

        assert [r.note.id for r in notes_service.search_notes("gamma")] == [a.id]
        assert notes_service.search_notes("alpha") == []
