"""Repository for note metadata records."""

import datetime
import logging
import os
import secrets
import string
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pydantic
from sqlalchemy import and_, exists, func, select
from sqlalchemy.orm import Session, joinedload

from measly_notes.exceptions import (
    ErrorCode,
    NoteNotFoundError,
    ValidationError,
)
from measly_notes.models.db_models import DBNote, DBNoteTag, DBTag
from measly_notes.models.schema import (
    DELETED_TAG,
    FILE_TOKEN_PATTERN,
    PROTECTED_TAGS,
    Note,
    NotesPage,
    NoteUiState,
    ensure_timezone_aware,
    to_db_datetime,
    utc_now,
)
from measly_notes.storage.base import storage_errors
from measly_notes.storage.fts_index import FtsIndex
from measly_notes.storage.tag_repository import TagRepository
from measly_notes.utils import escape_like_pattern, validate_id

logger = logging.getLogger(__name__)

TOKEN_ALPHABET = string.ascii_uppercase + string.digits
TOKEN_LENGTH = 9


class NoteRepository:
    """Repository for note rows.

    The note body lives in a Markdown file; this repository owns the row
    that binds a note id to its file path and token, the per-note UI state,
    and (together with the FTS index) the lifecycle of its index entry.
    """

    def __init__(self, session_factory, fts_index: Optional[FtsIndex] = None):
        """Initialize the note repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
            fts_index: Index whose rows are removed together with notes.
        """
        self.session_factory = session_factory
        self.fts_index = fts_index

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        """Convert a SQLAlchemy DBNote to a domain Note."""
        return Note(
            id=db_note.id,
            title=db_note.title,
            file_path=db_note.file_path,
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
            last_edited=ensure_timezone_aware(db_note.last_edited),
            file_token=db_note.file_token,
            progress_preview=db_note.progress_preview or 0.0,
            progress_edit=db_note.progress_edit or 0.0,
            cursor_pos=db_note.cursor_pos,
            scroll_top=db_note.scroll_top,
        )

    @staticmethod
    def _require(session: Session, note_id: int) -> DBNote:
        db_note = session.get(DBNote, note_id)
        if db_note is None:
            raise NoteNotFoundError(note_id)
        return db_note

    @staticmethod
    def _check_token(token: Optional[str]) -> None:
        if token is not None and not FILE_TOKEN_PATTERN.match(token):
            raise ValidationError(
                "file_token must be 9 uppercase alphanumeric characters",
                field="file_token",
                value=token,
            )

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    def create_note(
        self,
        title: str,
        file_path: str,
        file_token: Optional[str] = None,
        created_at: Optional[datetime.datetime] = None,
        updated_at: Optional[datetime.datetime] = None,
    ) -> Note:
        """Create a note row bound to ``file_path``.

        Timestamps default to now (``created_at = updated_at = last_edited``).
        The protected tags are bootstrapped on first use and the UI state
        starts cleared.
        """
        if not isinstance(title, str):
            raise ValidationError("title must be a string", field="title", value=title)
        self._check_token(file_token)
        now = utc_now()
        created = to_db_datetime(created_at or now)
        updated = to_db_datetime(updated_at or created_at or now)

        with storage_errors("create_note"), self.session_factory() as session:
            for name in PROTECTED_TAGS:
                TagRepository._get_or_create(session, name)
            db_note = DBNote(
                title=title,
                file_path=os.path.abspath(file_path),
                created_at=created,
                updated_at=updated,
                last_edited=updated,
                file_token=file_token,
                progress_preview=0.0,
                progress_edit=0.0,
                cursor_pos=None,
                scroll_top=None,
            )
            session.add(db_note)
            session.commit()
            logger.debug(f"Created note {db_note.id} at {os.path.basename(file_path)}")
            return self._db_note_to_model(db_note)

    def get(self, note_id: int) -> Optional[Note]:
        """Get a note by id, or None."""
        validate_id(note_id, "note_id")
        with storage_errors("get_note", write=False), self.session_factory() as session:
            db_note = session.get(DBNote, note_id)
            return self._db_note_to_model(db_note) if db_note else None

    def get_by_ids(self, note_ids: Sequence[int]) -> List[Note]:
        """Get several notes, in the order of ``note_ids``; unknown ids are skipped."""
        if not note_ids:
            return []
        with storage_errors("get_by_ids", write=False), self.session_factory() as session:
            rows = session.scalars(select(DBNote).where(DBNote.id.in_(list(note_ids)))).all()
            by_id = {row.id: row for row in rows}
            return [self._db_note_to_model(by_id[i]) for i in note_ids if i in by_id]

    def get_all(self) -> List[Note]:
        """Get every note, most recently updated first."""
        with storage_errors("get_all_notes", write=False), self.session_factory() as session:
            rows = session.scalars(
                select(DBNote).order_by(DBNote.updated_at.desc(), DBNote.id.desc())
            ).all()
            return [self._db_note_to_model(row) for row in rows]

    def get_by_file_path(self, file_path: str) -> Optional[Note]:
        """Get the note bound to a file path, or None."""
        with storage_errors("get_by_file_path", write=False), self.session_factory() as session:
            db_note = session.scalar(
                select(DBNote).where(DBNote.file_path == os.path.abspath(file_path))
            )
            return self._db_note_to_model(db_note) if db_note else None

    def get_by_token(self, file_token: str) -> Optional[Note]:
        """Get the note owning a file token, or None."""
        with storage_errors("get_by_token", write=False), self.session_factory() as session:
            db_note = session.scalar(select(DBNote).where(DBNote.file_token == file_token))
            return self._db_note_to_model(db_note) if db_note else None

    def get_all_with_tag_names(self) -> List[Tuple[Note, List[str]]]:
        """Every note paired with its tag names in position order."""
        with storage_errors("get_all_with_tag_names", write=False), self.session_factory() as session:
            rows = session.execute(
                select(DBNote)
                .options(joinedload(DBNote.tag_links).joinedload(DBNoteTag.tag))
                .order_by(DBNote.updated_at.desc(), DBNote.id.desc())
            ).unique().scalars().all()
            return [
                (
                    self._db_note_to_model(row),
                    [link.tag.name for link in sorted(row.tag_links, key=lambda l: l.position)],
                )
                for row in rows
            ]

    def find_by_tag_fragment(self, fragment: str) -> List[Note]:
        """Notes carrying a tag whose name contains ``fragment`` (case-insensitive).

        Ordered by the matching tag's position, then ``updated_at``
        descending; each note appears once, at its best position.
        """
        pattern = f"%{escape_like_pattern(fragment.strip().lower())}%"
        best_position = func.min(DBNoteTag.position).label("best_position")
        stmt = (
            select(DBNote, best_position)
            .join(DBNoteTag, DBNoteTag.note_id == DBNote.id)
            .join(DBTag, DBTag.id == DBNoteTag.tag_id)
            .where(func.lower(DBTag.name).like(pattern, escape="\\"))
            .group_by(DBNote.id)
            .order_by(best_position, DBNote.updated_at.desc(), DBNote.id.desc())
        )
        with storage_errors("find_by_tag_fragment", write=False), self.session_factory() as session:
            return [self._db_note_to_model(row[0]) for row in session.execute(stmt).all()]

    def get_last_edited_note(self) -> Optional[Note]:
        """The note with the most recent non-null ``last_edited``."""
        with storage_errors("get_last_edited_note", write=False), self.session_factory() as session:
            db_note = session.scalar(
                select(DBNote)
                .where(DBNote.last_edited.isnot(None))
                .order_by(DBNote.last_edited.desc(), DBNote.id.desc())
                .limit(1)
            )
            return self._db_note_to_model(db_note) if db_note else None

    def get_notes_page(self, page: int, per_page: int) -> NotesPage:
        """One page of notes by ``updated_at`` descending.

        Notes whose position-0 tag is protected (trashed or archived) are
        left out of both the page and the total. Pages are 1-based.

        Raises:
            ValidationError: If page or per_page is not a positive integer.
        """
        for name, value in (("page", page), ("per_page", per_page)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValidationError(
                    f"{name} must be a positive integer",
                    field=name,
                    value=value,
                    code=ErrorCode.INVALID_PAGE,
                )

        hidden = exists().where(
            and_(
                DBNoteTag.note_id == DBNote.id,
                DBNoteTag.position == 0,
                DBNoteTag.tag_id == DBTag.id,
                DBTag.name.in_(PROTECTED_TAGS),
            )
        )
        with storage_errors("get_notes_page", write=False), self.session_factory() as session:
            total = session.scalar(
                select(func.count()).select_from(DBNote).where(~hidden)
            ) or 0
            rows = session.scalars(
                select(DBNote)
                .where(~hidden)
                .order_by(DBNote.updated_at.desc(), DBNote.id.desc())
                .offset((page - 1) * per_page)
                .limit(per_page)
            ).all()
            notes = [self._db_note_to_model(row) for row in rows]
        return NotesPage(notes=notes, total=total, page=page, per_page=per_page)

    def get_trash_notes(self) -> List[Note]:
        """Notes tagged 'deleted' at any position, most recently updated first."""
        stmt = (
            select(DBNote)
            .join(DBNoteTag, DBNoteTag.note_id == DBNote.id)
            .join(DBTag, DBTag.id == DBNoteTag.tag_id)
            .where(DBTag.name == DELETED_TAG)
            .order_by(DBNote.updated_at.desc(), DBNote.id.desc())
        )
        with storage_errors("get_trash_notes", write=False), self.session_factory() as session:
            return [self._db_note_to_model(row) for row in session.scalars(stmt).all()]

    # ------------------------------------------------------------------
    # Narrow setters
    # ------------------------------------------------------------------

    def _update(self, operation: str, note_id: int, **values: Any) -> Note:
        validate_id(note_id, "note_id")
        with storage_errors(operation), self.session_factory() as session:
            db_note = self._require(session, note_id)
            for key, value in values.items():
                setattr(db_note, key, value)
            session.commit()
            return self._db_note_to_model(db_note)

    def update_note(self, note_id: int) -> Note:
        """Mark a note as saved: bump ``updated_at`` and ``last_edited``."""
        now = to_db_datetime(utc_now())
        return self._update("update_note", note_id, updated_at=now, last_edited=now)

    def update_note_title(self, note_id: int, title: str) -> Note:
        """Set the title and bump ``updated_at``."""
        if not isinstance(title, str):
            raise ValidationError("title must be a string", field="title", value=title)
        return self._update(
            "update_note_title", note_id, title=title, updated_at=to_db_datetime(utc_now())
        )

    def update_note_file_path(self, note_id: int, file_path: str) -> Note:
        return self._update(
            "update_note_file_path", note_id, file_path=os.path.abspath(file_path)
        )

    def update_note_created_at(self, note_id: int, created_at: datetime.datetime) -> Note:
        return self._update(
            "update_note_created_at", note_id, created_at=to_db_datetime(created_at)
        )

    def update_note_last_edited(
        self, note_id: int, last_edited: Optional[datetime.datetime]
    ) -> Note:
        return self._update(
            "update_note_last_edited", note_id, last_edited=to_db_datetime(last_edited)
        )

    def set_file_token(self, note_id: int, file_token: str) -> Note:
        self._check_token(file_token)
        return self._update("set_file_token", note_id, file_token=file_token)

    def rebind_file(
        self,
        note_id: int,
        file_path: str,
        file_token: Optional[str] = None,
        created_at: Optional[datetime.datetime] = None,
    ) -> Note:
        """Update path, and optionally token and creation time, in one transaction."""
        values: Dict[str, Any] = {"file_path": os.path.abspath(file_path)}
        if file_token is not None:
            self._check_token(file_token)
            values["file_token"] = file_token
        if created_at is not None:
            values["created_at"] = to_db_datetime(created_at)
        return self._update("rebind_file", note_id, **values)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_note(self, note_id: int) -> bool:
        """Delete a note row, its tag links and its index entry together.

        Unknown ids are a no-op. The caller removes the file.

        Returns:
            True if a row was deleted.
        """
        validate_id(note_id, "note_id")
        with storage_errors("delete_note"), self.session_factory() as session:
            db_note = session.get(DBNote, note_id)
            if db_note is None:
                return False
            session.delete(db_note)
            if self.fts_index is not None:
                self.fts_index.remove_in_session(session, note_id)
            session.commit()
        logger.info(f"Deleted note {note_id}")
        return True

    # ------------------------------------------------------------------
    # UI state
    # ------------------------------------------------------------------

    def get_ui_state(self, note_id: int) -> NoteUiState:
        validate_id(note_id, "note_id")
        with storage_errors("get_ui_state", write=False), self.session_factory() as session:
            db_note = self._require(session, note_id)
            return NoteUiState(
                progress_preview=db_note.progress_preview or 0.0,
                progress_edit=db_note.progress_edit or 0.0,
                cursor_pos=db_note.cursor_pos,
                scroll_top=db_note.scroll_top,
            )

    def save_ui_state(
        self, note_id: int, update: Union[NoteUiState, Dict[str, Any]]
    ) -> NoteUiState:
        """Persist only the UI-state fields present in ``update``.

        ``update`` may be a NoteUiState (fields the caller set explicitly are
        written) or a plain mapping. Unknown keys are rejected.
        """
        validate_id(note_id, "note_id")
        if not isinstance(update, NoteUiState):
            try:
                update = NoteUiState(**dict(update))
            except (TypeError, pydantic.ValidationError) as e:
                raise ValidationError(
                    f"Invalid UI state: {e}", field="ui_state", value=update
                ) from e

        values = update.model_dump(exclude_unset=True)

        with storage_errors("save_ui_state"), self.session_factory() as session:
            db_note = self._require(session, note_id)
            for key, value in values.items():
                setattr(db_note, key, value)
            session.commit()
        return self.get_ui_state(note_id)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def generate_file_token(self) -> str:
        """Generate a file token not used by any note."""
        with storage_errors("generate_file_token", write=False), self.session_factory() as session:
            while True:
                token = "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))
                taken = session.scalar(
                    select(DBNote.id).where(DBNote.file_token == token)
                )
                if taken is None:
                    return token
