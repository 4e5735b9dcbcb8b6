"""Service layer for the Measly Notes core."""

from measly_notes.services.category_service import CategoryService
from measly_notes.services.notes_service import NotesService
from measly_notes.services.search_service import SearchService

__all__ = [
    "CategoryService",
    "NotesService",
    "SearchService",
]
