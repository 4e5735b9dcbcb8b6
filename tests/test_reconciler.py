"""Tests for reconciling the notes directory with the note store."""
import os
from pathlib import Path

from measly_notes.exceptions import ErrorCode, StorageError
from measly_notes.storage.note_files import (
    CANONICAL_NAME_PATTERN,
    canonical_file_name,
    parse_canonical_name,
)
from measly_notes.storage.reconciler import Reconciler


def _tag_names(notes_service, note_id):
    return [link.tag.name for link in notes_service.get_note_tags(note_id)]


class TestNewFiles:
    """Files the store has never seen."""

    def test_new_file_becomes_canonical_note(self, notes_service, notes_dir):
        source = notes_dir / "hello.md"
        source.write_text("# My Title\nSome body text", encoding="utf-8")

        result = notes_service.reconcile()

        assert len(result.created_note_ids) == 1
        note = notes_service.get_note(result.created_note_ids[0])
        assert note.title == "My Title"
        assert not source.exists()
        bound = Path(note.file_path)
        assert bound.exists()
        assert bound.parent == notes_dir
        assert CANONICAL_NAME_PATTERN.match(bound.name)
        assert parse_canonical_name(bound.name)[1] == note.file_token
        assert result.warnings == []

    def test_title_falls_back_to_file_stem(self, notes_service, notes_dir):
        (notes_dir / "shopping list.md").write_text("", encoding="utf-8")
        result = notes_service.reconcile()
        assert notes_service.get_note(result.created_note_ids[0]).title == "shopping list"

    def test_new_note_is_searchable(self, notes_service, notes_dir):
        (notes_dir / "idea.md").write_text("# Idea\nzeppelin garden", encoding="utf-8")
        result = notes_service.reconcile()
        hits = notes_service.search_notes("zeppelin")
        assert [r.note.id for r in hits] == result.created_note_ids

    def test_unknown_token_is_kept(self, notes_service, notes_dir):
        """A canonical file from another store keeps its token and date."""
        name = "21-03-04_05-06_ABCDEFGH1.md"
        (notes_dir / name).write_text("carried over", encoding="utf-8")

        result = notes_service.reconcile()

        note = notes_service.get_note(result.created_note_ids[0])
        assert note.file_token == "ABCDEFGH1"
        assert Path(note.file_path).name == name
        assert note.created_at == parse_canonical_name(name)[0]
        assert result.updated_paths == []

    def test_second_run_is_a_noop(self, notes_service, notes_dir):
        (notes_dir / "one.md").write_text("# One", encoding="utf-8")
        notes_service.create_note("Two", "two body")
        first = notes_service.reconcile()
        assert first.changed

        second = notes_service.reconcile()

        assert not second.changed
        assert second.warnings == []
        assert sorted(p.name for p in notes_dir.iterdir()) == sorted(
            Path(n.file_path).name for n in notes_service.note_repository.get_all()
        )


class TestBoundFiles:
    """Files already bound to a note."""

    def test_bound_file_is_canonicalized(self, notes_service, notes_dir):
        path = notes_dir / "plain.md"
        path.write_text("# Plain", encoding="utf-8")
        note = notes_service.note_repository.create_note("Plain", str(path))
        assert note.file_token is None

        result = notes_service.reconcile()

        reloaded = notes_service.get_note(note.id)
        assert reloaded.file_token is not None
        assert Path(reloaded.file_path).name == canonical_file_name(
            note.created_at, reloaded.file_token
        )
        assert not path.exists()
        assert [u.note_id for u in result.updated_paths] == [note.id]
        assert result.updated_paths[0].old_path == str(path)
        assert result.created_note_ids == []

    def test_missing_last_edited_is_backfilled(self, notes_service):
        note = notes_service.create_note("Fresh", "body")
        notes_service.note_repository.update_note_last_edited(note.id, None)

        notes_service.reconcile()

        assert notes_service.get_note(note.id).last_edited is not None

    def test_failed_row_update_restores_file(self, notes_service, notes_dir, monkeypatch):
        path = notes_dir / "plain.md"
        path.write_text("# Plain", encoding="utf-8")
        note = notes_service.note_repository.create_note("Plain", str(path))

        def fail(*args, **kwargs):
            raise StorageError("database is locked", operation="rebind_file")

        monkeypatch.setattr(notes_service.note_repository, "rebind_file", fail)
        result = notes_service.reconcile()

        assert path.exists()
        assert [p.name for p in notes_dir.iterdir()] == ["plain.md"]
        assert notes_service.get_note(note.id).file_path == str(path)
        assert [w.code for w in result.warnings] == [ErrorCode.RECONCILE_UPDATE_FAILED]

    def test_failed_rename_leaves_bound_note_alone(self, notes_service, notes_dir, monkeypatch):
        path = notes_dir / "plain.md"
        path.write_text("# Plain", encoding="utf-8")
        note = notes_service.note_repository.create_note("Plain", str(path))

        def fail(src, dst):
            raise StorageError("read-only", operation="rename", path=str(src))

        monkeypatch.setattr("measly_notes.storage.reconciler.rename_note_file", fail)
        result = notes_service.reconcile()

        reloaded = notes_service.get_note(note.id)
        assert reloaded.file_path == str(path)
        assert reloaded.file_token is None
        assert [w.code for w in result.warnings] == [ErrorCode.RECONCILE_RENAME_FAILED]
        assert result.marked_deleted_note_ids == []


class TestRebinding:
    """Unbound files matched to notes whose file went missing."""

    def test_rebind_by_title(self, notes_service, notes_dir):
        note = notes_service.create_note("Meeting notes", "# Meeting notes\nagenda")
        original = Path(note.file_path)
        moved = notes_dir / "renamed-by-user.md"
        os.rename(original, moved)

        result = notes_service.reconcile()

        assert result.created_note_ids == []
        assert result.marked_deleted_note_ids == []
        assert notes_service.get_note(note.id).file_path == str(original)
        assert original.exists()
        assert not moved.exists()

    def test_rebind_by_token_corrects_creation_time(self, notes_service, notes_dir):
        note = notes_service.create_note("Diary", "nothing matching the title")
        moved = notes_dir / f"20-01-02_10-30_{note.file_token}.md"
        os.rename(note.file_path, moved)

        result = notes_service.reconcile()

        reloaded = notes_service.get_note(note.id)
        assert reloaded.file_path == str(moved)
        assert reloaded.created_at == parse_canonical_name(moved.name)[0]
        assert moved.exists()
        assert result.created_note_ids == []
        assert result.marked_deleted_note_ids == []

    def test_rebind_legacy_id_name(self, notes_service, notes_dir):
        note = notes_service.note_repository.create_note("Lost", str(notes_dir / "gone.md"))
        legacy = notes_dir / f"{note.id}.md"
        legacy.write_text("# Something else", encoding="utf-8")

        result = notes_service.reconcile()

        reloaded = notes_service.get_note(note.id)
        assert reloaded.file_token is not None
        assert Path(reloaded.file_path).name == canonical_file_name(
            note.created_at, reloaded.file_token
        )
        assert not legacy.exists()
        assert result.created_note_ids == []
        assert result.marked_deleted_note_ids == []

    def test_copied_file_with_live_token_becomes_new_note(self, notes_service, notes_dir):
        note = notes_service.create_note("Original", "copy body")
        copy = notes_dir / f"20-01-02_10-30_{note.file_token}.md"
        copy.write_text("copy body", encoding="utf-8")

        result = notes_service.reconcile()

        assert len(result.created_note_ids) == 1
        created = notes_service.get_note(result.created_note_ids[0])
        assert created.file_token != note.file_token
        assert notes_service.get_note(note.id).file_path == note.file_path
        assert Path(note.file_path).exists()


class TestMissingFiles:
    """Notes whose file disappeared go to the trash."""

    def test_missing_file_marked_deleted(self, notes_service):
        note = notes_service.create_note("Doomed", "body")
        notes_service.add_tag_to_note(note.id, "work", 0)
        os.remove(note.file_path)

        result = notes_service.reconcile()

        assert result.marked_deleted_note_ids == [note.id]
        assert _tag_names(notes_service, note.id) == ["deleted", "work"]
        assert notes_service.get_note(note.id) is not None
        assert [n.id for n in notes_service.get_trash_notes()] == [note.id]

    def test_already_trashed_not_reported_again(self, notes_service):
        note = notes_service.create_note("Doomed", "body")
        os.remove(note.file_path)
        notes_service.reconcile()

        assert notes_service.reconcile().marked_deleted_note_ids == []

    def test_mark_missing_disabled(self, notes_service):
        note = notes_service.create_note("Doomed", "body")
        os.remove(note.file_path)

        result = notes_service.reconcile(mark_missing=False)

        assert result.marked_deleted_note_ids == []
        assert _tag_names(notes_service, note.id) == []


class TestFailures:
    """Directory and per-file failures."""

    def test_unlistable_directory_gives_empty_result(self, notes_service, notes_dir):
        notes_service.create_note("Kept", "body")
        reconciler = Reconciler(
            notes_service.note_repository,
            notes_service.tag_repository,
            notes_service.fts_index,
            notes_dir / "does-not-exist",
        )

        result = reconciler.reconcile()

        assert not result.changed
        assert result.warnings == []
        assert notes_service.get_trash_notes() == []

    def test_rename_failure_still_creates_note(self, notes_service, notes_dir, monkeypatch):
        source = notes_dir / "stuck.md"
        source.write_text("# Stuck", encoding="utf-8")

        def fail(src, dst):
            raise StorageError("permission denied", operation="rename", path=str(src))

        monkeypatch.setattr("measly_notes.storage.reconciler.rename_note_file", fail)
        result = notes_service.reconcile()

        assert len(result.created_note_ids) == 1
        note = notes_service.get_note(result.created_note_ids[0])
        assert note.file_path == str(source)
        assert note.title == "Stuck"
        assert [w.code for w in result.warnings] == [ErrorCode.RECONCILE_RENAME_FAILED]
        assert result.warnings[0].details["file"] == "stuck.md"
