"""Common test fixtures for the Measly Notes core."""

import tempfile
from pathlib import Path

import pytest

from measly_notes.config import config
from measly_notes.models.db_models import get_session_factory, init_db
from measly_notes.observability import metrics
from measly_notes.services.notes_service import NotesService
from measly_notes.storage.fts_index import FtsIndex
from measly_notes.storage.note_repository import NoteRepository
from measly_notes.storage.tag_repository import TagRepository


@pytest.fixture
def temp_dirs():
    """Create temporary directories for notes and data."""
    with tempfile.TemporaryDirectory() as notes_dir:
        with tempfile.TemporaryDirectory() as data_dir:
            yield Path(notes_dir).resolve(), Path(data_dir).resolve()


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    notes_dir, data_dir = temp_dirs
    monkeypatch.setattr(config, "data_dir", data_dir)
    monkeypatch.setattr(config, "notes_dir", notes_dir)
    monkeypatch.setattr(config, "database_path", data_dir / "test_notes.db")
    yield config


@pytest.fixture
def engine():
    """An isolated in-memory database per test."""
    engine = init_db(in_memory=True)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def fts_index(engine, session_factory):
    return FtsIndex(engine, session_factory)


@pytest.fixture
def tag_repository(session_factory):
    return TagRepository(session_factory)


@pytest.fixture
def note_repository(session_factory, fts_index):
    return NoteRepository(session_factory, fts_index)


@pytest.fixture
def notes_dir(temp_dirs):
    return temp_dirs[0]


@pytest.fixture
def notes_service(test_config, engine, notes_dir):
    """Create a NotesService over the temp notes directory and in-memory store."""
    metrics.reset()
    yield NotesService(notes_dir=notes_dir, engine=engine)


@pytest.fixture
def make_note(note_repository, notes_dir):
    """Factory creating a note row (and an empty file) without the service."""
    counter = {"n": 0}

    def _make(title="Note", **kwargs):
        counter["n"] += 1
        path = notes_dir / f"fixture-{counter['n']}.md"
        path.write_text(f"# {title}\n", encoding="utf-8")
        return note_repository.create_note(title, str(path), **kwargs)

    return _make
