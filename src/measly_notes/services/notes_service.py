"""Service layer exposing the note operations to the UI shell."""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from measly_notes.config import config
from measly_notes.exceptions import NoteNotFoundError, StorageError
from measly_notes.models.db_models import get_session_factory, init_db
from measly_notes.models.schema import (
    CategoryHierarchy,
    Note,
    NotesPage,
    NoteTag,
    NoteUiState,
    ReconcileResult,
    SearchResult,
    Tag,
    utc_now,
)
from measly_notes.observability import traced
from measly_notes.services.category_service import CategoryService
from measly_notes.services.search_service import SearchService
from measly_notes.storage.fts_index import FtsIndex
from measly_notes.storage.note_files import (
    canonical_file_name,
    delete_note_file,
    ensure_notes_dir,
    read_note_text,
    write_note_text,
)
from measly_notes.storage.note_repository import NoteRepository
from measly_notes.storage.reconciler import Reconciler
from measly_notes.storage.tag_repository import TagRepository

logger = logging.getLogger(__name__)


class NotesService:
    """Service for managing notes, their files, tags and search."""

    def __init__(
        self,
        notes_dir: Optional[Union[str, Path]] = None,
        engine: Optional[Any] = None,
    ):
        """Initialize the service.

        Args:
            notes_dir: Directory holding the .md files. Defaults to the
                configured notes directory.
            engine: Pre-configured SQLAlchemy engine (e.g. an in-memory one
                in tests). Created from config when None.
        """
        self.notes_dir = ensure_notes_dir(notes_dir or config.get_notes_dir())
        self.engine = engine if engine is not None else init_db()
        session_factory = get_session_factory(self.engine)

        self.fts_index = FtsIndex(self.engine, session_factory)
        self.tag_repository = TagRepository(
            session_factory, top_tags_window_days=config.top_tags_window_days
        )
        self.note_repository = NoteRepository(session_factory, self.fts_index)
        self.reconciler = Reconciler(
            self.note_repository, self.tag_repository, self.fts_index, self.notes_dir
        )
        self.search_service = SearchService(self.note_repository, self.fts_index)
        self.category_service = CategoryService(self.note_repository)

    def _require_note(self, note_id: int) -> Note:
        note = self.note_repository.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def _reindex(self, note: Note, content: str) -> None:
        try:
            self.fts_index.upsert(note.id, note.title, content)
        except StorageError as e:
            # The file and row are saved; search falls back to scanning
            logger.warning(f"Note {note.id} saved but not indexed: {e}")

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    @traced()
    def create_note(self, title: str, content: str = "") -> Note:
        """Create a note: canonical file, row and index entry."""
        token = self.note_repository.generate_file_token()
        created_at = utc_now()
        path = self.notes_dir / canonical_file_name(created_at, token)
        write_note_text(path, content)
        try:
            note = self.note_repository.create_note(
                title, str(path), file_token=token, created_at=created_at
            )
        except Exception:
            delete_note_file(path)
            raise
        self._reindex(note, content)
        logger.info(f"Created note {note.id} '{title}'")
        return note

    @traced()
    def get_note(self, note_id: int) -> Optional[Note]:
        return self.note_repository.get(note_id)

    @traced()
    def load_note(self, note_id: int) -> str:
        """Read a note's content; cp1252 files are rewritten as UTF-8 on the way."""
        note = self._require_note(note_id)
        return read_note_text(note.file_path, repair_encoding=True)

    @traced()
    def save_note(self, note_id: int, content: str) -> Note:
        """Write content to the note's file, bump its timestamps and reindex it."""
        note = self._require_note(note_id)
        write_note_text(note.file_path, content)
        note = self.note_repository.update_note(note_id)
        self._reindex(note, content)
        return note

    @traced()
    def update_note_title(self, note_id: int, title: str) -> Note:
        note = self.note_repository.update_note_title(note_id, title)
        self._reindex(note, read_note_text(note.file_path))
        return note

    @traced()
    def delete_note(self, note_id: int) -> bool:
        """Remove a note's file, row, links and index entry. Unknown ids are a no-op."""
        note = self.note_repository.get(note_id)
        if note is None:
            return False
        if not delete_note_file(note.file_path):
            logger.debug(f"File for note {note_id} was already gone")
        return self.note_repository.delete_note(note_id)

    @traced()
    def get_notes_page(self, page: int, per_page: Optional[int] = None) -> NotesPage:
        return self.note_repository.get_notes_page(page, per_page or config.notes_per_page)

    @traced()
    def get_trash_notes(self) -> List[Note]:
        return self.note_repository.get_trash_notes()

    @traced()
    def get_last_edited_note(self) -> Optional[Note]:
        return self.note_repository.get_last_edited_note()

    @traced()
    def get_ui_state(self, note_id: int) -> NoteUiState:
        return self.note_repository.get_ui_state(note_id)

    @traced()
    def save_ui_state(
        self, note_id: int, update: Union[NoteUiState, Dict[str, Any]]
    ) -> NoteUiState:
        return self.note_repository.save_ui_state(note_id, update)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    @traced()
    def add_tag_to_note(self, note_id: int, tag_name: str, position: int) -> NoteTag:
        return self.tag_repository.add_tag_to_note(note_id, tag_name, position)

    @traced()
    def remove_tag_from_note(self, note_id: int, tag_id: int) -> None:
        self.tag_repository.remove_tag_from_note(note_id, tag_id)

    @traced()
    def reorder_note_tags(self, note_id: int, ordered_tag_ids: Iterable[int]) -> None:
        self.tag_repository.reorder_note_tags(note_id, ordered_tag_ids)

    @traced()
    def get_note_tags(self, note_id: int) -> List[NoteTag]:
        return self.tag_repository.get_note_tags(note_id)

    @traced()
    def get_all_tags(self) -> List[Tag]:
        return self.tag_repository.get_all_tags()

    @traced()
    def get_tags_with_counts(self) -> Dict[str, int]:
        return self.tag_repository.get_tags_with_counts()

    @traced()
    def get_top_tags(self, limit: int = 10) -> List[Tag]:
        return self.tag_repository.get_top_tags(limit)

    @traced()
    def rename_tag(self, tag_id: int, new_name: str) -> Tag:
        return self.tag_repository.rename_tag(tag_id, new_name)

    # ------------------------------------------------------------------
    # Search and categories
    # ------------------------------------------------------------------

    @traced()
    def search_notes(self, query: str) -> List[SearchResult]:
        return self.search_service.search_notes(query)

    @traced()
    def search_notes_by_tag(self, tag_name: str) -> List[SearchResult]:
        return self.search_service.search_notes_by_tag(tag_name)

    @traced()
    def get_category_hierarchy(self) -> CategoryHierarchy:
        return self.category_service.get_category_hierarchy()

    @traced()
    def get_hierarchy_for_tag(self, tag_name: str) -> CategoryHierarchy:
        return self.category_service.get_hierarchy_for_tag(tag_name)

    @traced()
    def get_notes_by_primary_tag(self) -> Dict[str, List[Note]]:
        return self.category_service.get_notes_by_primary_tag()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    @traced()
    def reconcile(self, mark_missing: bool = True) -> ReconcileResult:
        """Bring the store in line with the notes directory."""
        return self.reconciler.reconcile(mark_missing=mark_missing)

    @traced()
    def rebuild_index(self) -> int:
        """Reindex every note from its file. Returns the number of notes indexed."""
        self.fts_index.clear()
        count = 0
        for note in self.note_repository.get_all():
            self.fts_index.upsert(note.id, note.title, read_note_text(note.file_path))
            count += 1
        logger.info(f"Rebuilt search index with {count} notes")
        return count
