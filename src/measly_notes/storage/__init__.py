"""Storage layer for the Measly Notes core."""

from measly_notes.storage.fts_index import FtsIndex
from measly_notes.storage.note_repository import NoteRepository
from measly_notes.storage.reconciler import Reconciler
from measly_notes.storage.tag_repository import TagRepository

__all__ = [
    "FtsIndex",
    "NoteRepository",
    "Reconciler",
    "TagRepository",
]
