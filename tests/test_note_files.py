"""Tests for note file naming and filesystem access."""
import datetime

import pytest

from measly_notes.exceptions import StorageError
from measly_notes.storage.note_files import (
    canonical_file_name,
    delete_note_file,
    list_markdown_files,
    parse_canonical_name,
    parse_legacy_id_name,
    read_note_text,
    rename_note_file,
    stat_note_file,
    write_note_text,
)


class TestFileNames:
    """Canonical and legacy filename handling."""

    def test_canonical_name_round_trip(self):
        local = datetime.datetime(2024, 2, 29, 23, 5).astimezone()
        name = canonical_file_name(local, "AB12CD34E")
        assert name == "24-02-29_23-05_AB12CD34E.md"
        created, token = parse_canonical_name(name)
        assert token == "AB12CD34E"
        assert created == local
        assert created.tzinfo == datetime.timezone.utc

    @pytest.mark.parametrize("name", [
        "24-02-30_10-00_AB12CD34E.md",
        "24-13-01_10-00_AB12CD34E.md",
        "24-01-01_10-00_ab12cd34e.md",
        "24-01-01_10-00_AB12CD34.md",
        "notes.md",
    ])
    def test_non_canonical_names(self, name):
        assert parse_canonical_name(name) is None

    def test_legacy_names(self):
        assert parse_legacy_id_name("42.md") == 42
        assert parse_legacy_id_name("42a.md") is None
        assert parse_legacy_id_name("24-01-01_10-00_AB12CD34E.md") is None


class TestReadWrite:
    """Reading with encoding repair, writing, renaming and deleting."""

    def test_write_then_read(self, tmp_path):
        path = tmp_path / "note.md"
        write_note_text(path, "héllo\nwörld")
        assert read_note_text(path) == "héllo\nwörld"
        assert [p.name for p in tmp_path.iterdir()] == ["note.md"]

    def test_missing_file_reads_empty(self, tmp_path):
        assert read_note_text(tmp_path / "nope.md") == ""

    def test_cp1252_file_is_decoded(self, tmp_path):
        path = tmp_path / "legacy.md"
        path.write_bytes("café – naïve".encode("cp1252"))
        assert read_note_text(path) == "café – naïve"
        # Without repair the bytes stay as they were
        assert path.read_bytes() == "café – naïve".encode("cp1252")

    def test_cp1252_repair_rewrites_utf8(self, tmp_path):
        path = tmp_path / "legacy.md"
        path.write_bytes(b"caf\xe9")
        assert read_note_text(path, repair_encoding=True) == "café"
        assert path.read_bytes() == "café".encode("utf-8")

    def test_undefined_cp1252_bytes_pass_through(self, tmp_path):
        path = tmp_path / "odd.md"
        path.write_bytes(b"a\x81b")
        assert read_note_text(path) == "a\x81b"

    def test_rename_refuses_existing_destination(self, tmp_path):
        src, dst = tmp_path / "a.md", tmp_path / "b.md"
        src.write_text("a", encoding="utf-8")
        dst.write_text("b", encoding="utf-8")
        with pytest.raises(StorageError):
            rename_note_file(src, dst)
        assert src.read_text(encoding="utf-8") == "a"
        assert dst.read_text(encoding="utf-8") == "b"

    def test_rename_moves_file(self, tmp_path):
        src = tmp_path / "a.md"
        src.write_text("a", encoding="utf-8")
        dst = rename_note_file(src, tmp_path / "b.md")
        assert dst.read_text(encoding="utf-8") == "a"
        assert not src.exists()

    def test_delete(self, tmp_path):
        path = tmp_path / "a.md"
        path.write_text("a", encoding="utf-8")
        assert delete_note_file(path) is True
        assert delete_note_file(path) is False

    def test_stat(self, tmp_path):
        path = tmp_path / "a.md"
        path.write_text("a", encoding="utf-8")
        times = stat_note_file(path)
        assert times.modified.tzinfo is not None
        assert times.born <= times.modified + datetime.timedelta(seconds=1)
        assert stat_note_file(tmp_path / "missing.md") is None


class TestListing:
    """Directory enumeration."""

    def test_lists_markdown_files_sorted(self, tmp_path):
        for name in ("b.md", "a.MD", "c.txt"):
            (tmp_path / name).write_text("x", encoding="utf-8")
        (tmp_path / "sub.md").mkdir()
        assert [p.name for p in list_markdown_files(tmp_path)] == ["a.MD", "b.md"]

    def test_missing_directory_raises(self, tmp_path):
        with pytest.raises(StorageError):
            list_markdown_files(tmp_path / "missing")
