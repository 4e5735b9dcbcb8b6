"""Synchronization between the notes directory and the note store.

A run enumerates the ``.md`` files in the notes directory and brings the
database into agreement with them:

1. files already bound to a note are renamed to their canonical
   ``YY-MM-DD_hh-mm_TOKEN.md`` name;
2. unbound files are rebound to a note whose file went missing (same
   title, owned token, or legacy ``<id>.md`` name) or become new notes;
3. notes whose file is gone are moved to the trash by tagging them
   'deleted'. Rows are never deleted here.

Problems with individual files are collected as ReconcileWarning on the
result; a run only gives up (with an empty result) when the directory
itself cannot be listed.
"""
import datetime
import logging
from pathlib import Path
from typing import Dict, Optional, Set

from measly_notes.exceptions import ErrorCode, MeaslyNotesError, ReconcileWarning, StorageError
from measly_notes.models.schema import DELETED_TAG, Note, PathUpdate, ReconcileResult, utc_now
from measly_notes.storage.fts_index import FtsIndex
from measly_notes.storage.markdown_parser import derive_title
from measly_notes.storage.note_files import (
    canonical_file_name,
    list_markdown_files,
    normalize_path,
    parse_canonical_name,
    parse_legacy_id_name,
    read_note_text,
    rename_note_file,
    stat_note_file,
)
from measly_notes.storage.note_repository import NoteRepository
from measly_notes.storage.tag_repository import TagRepository

logger = logging.getLogger(__name__)

# A canonical filename only has minute resolution
CREATED_AT_TOLERANCE = datetime.timedelta(seconds=60)


class Reconciler:
    """Reconciles note rows with the files in one notes directory."""

    def __init__(
        self,
        note_repository: NoteRepository,
        tag_repository: TagRepository,
        fts_index: FtsIndex,
        notes_dir: Path,
    ):
        self.note_repository = note_repository
        self.tag_repository = tag_repository
        self.fts_index = fts_index
        self.notes_dir = Path(notes_dir)

    def reconcile(self, mark_missing: bool = True) -> ReconcileResult:
        """Run one reconciliation pass.

        Args:
            mark_missing: Tag notes whose file is gone as 'deleted'.

        Returns:
            What changed, plus any per-file warnings.
        """
        result = ReconcileResult()
        try:
            files = list_markdown_files(self.notes_dir)
        except StorageError as e:
            logger.warning(f"Skipping reconciliation, notes directory unavailable: {e}")
            return result

        on_disk = {normalize_path(path): path for path in files}
        bound: Set[str] = set()
        missing: Dict[int, Note] = {}

        for note in self.note_repository.get_all():
            key = normalize_path(note.file_path)
            if key in on_disk:
                bound.add(key)
                self._canonicalize_bound(note, on_disk[key], result)
            else:
                missing[note.id] = note

        for path in files:
            if normalize_path(path) in bound:
                continue
            self._reconcile_unbound(path, missing, result)

        if mark_missing:
            self._mark_missing(missing.values(), result)

        if result.changed or result.warnings:
            logger.info(
                f"Reconciled {self.notes_dir}: {len(result.created_note_ids)} created, "
                f"{len(result.updated_paths)} paths updated, "
                f"{len(result.marked_deleted_note_ids)} marked deleted, "
                f"{len(result.warnings)} warnings"
            )
        return result

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def _canonicalize_bound(self, note: Note, path: Path, result: ReconcileResult) -> None:
        times = stat_note_file(path)
        if times is None:
            self._warn(result, "Cannot stat note file", path, ErrorCode.RECONCILE_STAT_FAILED)
        elif note.last_edited is None:
            try:
                self.note_repository.update_note_last_edited(note.id, times.modified)
            except MeaslyNotesError as e:
                self._warn(result, "Cannot backfill last_edited", path,
                           ErrorCode.RECONCILE_UPDATE_FAILED, e)

        parsed = parse_canonical_name(path.name)
        if parsed is not None and note.file_token and parsed[1] == note.file_token:
            return
        # A failed rename leaves both the file and the row as they were
        self._bind(note, path, result, keep_on_rename_failure=False)

    def _reconcile_unbound(
        self, path: Path, missing: Dict[int, Note], result: ReconcileResult
    ) -> None:
        content = read_note_text(path)
        title = derive_title(content, path.stem)

        owner = self._find_by_title(title, missing)
        if owner is not None:
            logger.info(f"Rebinding {path.name} to note {owner.id} by title")
            self._rebind_missing(owner, path, content, missing, result)
            return

        parsed = parse_canonical_name(path.name)
        if parsed is not None:
            file_created, token = parsed
            owner = self.note_repository.get_by_token(token)
            if owner is not None and owner.id in missing:
                created_at = None
                if abs(file_created - owner.created_at) > CREATED_AT_TOLERANCE:
                    created_at = file_created
                self._rebind_missing(
                    owner, path, content, missing, result,
                    created_at=created_at, rename=False,
                )
                return
            if owner is None:
                # Token not known to this store (e.g. a fresh database): keep it
                self._create_from_file(path, title, content, result,
                                       token=token, created_at=file_created)
                return

        legacy_id = parse_legacy_id_name(path.name)
        if legacy_id is not None and legacy_id in missing:
            self._rebind_missing(missing[legacy_id], path, content, missing, result)
            return

        self._create_from_file(path, title, content, result)

    def _mark_missing(self, notes, result: ReconcileResult) -> None:
        for note in notes:
            try:
                if self.tag_repository.note_has_tag(note.id, DELETED_TAG):
                    continue
                self.tag_repository.add_tag_to_note(note.id, DELETED_TAG, 0)
            except MeaslyNotesError as e:
                self._warn(result, "Cannot mark note with missing file as deleted",
                           note.file_path, ErrorCode.RECONCILE_UPDATE_FAILED, e)
                continue
            logger.info(f"Note {note.id} lost its file, moved to trash")
            result.marked_deleted_note_ids.append(note.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _find_by_title(title: str, missing: Dict[int, Note]) -> Optional[Note]:
        # TODO: scope by recency or content similarity; two notes sharing a
        # first line (e.g. "# Untitled") can be rebound to the wrong row.
        wanted = title.strip().lower()
        for note in missing.values():
            if note.title.strip().lower() == wanted:
                return note
        return None

    def _rebind_missing(
        self,
        note: Note,
        path: Path,
        content: str,
        missing: Dict[int, Note],
        result: ReconcileResult,
        created_at: Optional[datetime.datetime] = None,
        rename: bool = True,
    ) -> None:
        final = self._bind(note, path, result, created_at=created_at, rename=rename)
        if final is None:
            return
        missing.pop(note.id, None)
        self._index(note.id, note.title, content, final, result)

    def _bind(
        self,
        note: Note,
        path: Path,
        result: ReconcileResult,
        created_at: Optional[datetime.datetime] = None,
        rename: bool = True,
        keep_on_rename_failure: bool = True,
    ) -> Optional[Path]:
        """Bind ``note`` to ``path``, renaming the file to its canonical name.

        When the rename fails the note is still bound to the original path,
        unless ``keep_on_rename_failure`` is False. If the row update fails
        after a successful rename, the rename is undone.

        Returns:
            The path the note is bound to, or None if nothing was bound.
        """
        token = note.file_token or self.note_repository.generate_file_token()
        final = path
        if rename:
            target = self.notes_dir / canonical_file_name(created_at or note.created_at, token)
            if normalize_path(target) != normalize_path(path):
                try:
                    final = rename_note_file(path, target)
                except StorageError as e:
                    self._warn(result, "Cannot rename note file", path,
                               ErrorCode.RECONCILE_RENAME_FAILED, e)
                    if not keep_on_rename_failure:
                        return None

        try:
            self.note_repository.rebind_file(
                note.id, str(final), file_token=token, created_at=created_at
            )
        except MeaslyNotesError as e:
            if final is not path:
                self._undo_rename(final, path)
            self._warn(result, "Cannot update note path", path,
                       ErrorCode.RECONCILE_UPDATE_FAILED, e)
            return None

        if normalize_path(final) != normalize_path(note.file_path):
            result.updated_paths.append(
                PathUpdate(note_id=note.id, old_path=note.file_path, new_path=str(final))
            )
        return final

    def _create_from_file(
        self,
        path: Path,
        title: str,
        content: str,
        result: ReconcileResult,
        token: Optional[str] = None,
        created_at: Optional[datetime.datetime] = None,
    ) -> None:
        times = stat_note_file(path)
        if times is None:
            self._warn(result, "Cannot stat note file", path, ErrorCode.RECONCILE_STAT_FAILED)
        now = utc_now()
        created = created_at or (times.born if times else now)
        updated = times.modified if times else now
        token = token or self.note_repository.generate_file_token()

        final = path
        target = self.notes_dir / canonical_file_name(created, token)
        if normalize_path(target) != normalize_path(path):
            try:
                final = rename_note_file(path, target)
            except StorageError as e:
                self._warn(result, "Cannot rename note file", path,
                           ErrorCode.RECONCILE_RENAME_FAILED, e)

        try:
            note = self.note_repository.create_note(
                title, str(final), file_token=token, created_at=created, updated_at=updated
            )
        except MeaslyNotesError as e:
            if final is not path:
                self._undo_rename(final, path)
            self._warn(result, "Cannot create note for file", path,
                       ErrorCode.RECONCILE_UPDATE_FAILED, e)
            return

        logger.info(f"Created note {note.id} for new file {final.name}")
        result.created_note_ids.append(note.id)
        self._index(note.id, title, content, final, result)

    def _index(
        self, note_id: int, title: str, content: str, path: Path, result: ReconcileResult
    ) -> None:
        try:
            self.fts_index.upsert(note_id, title, content)
        except StorageError as e:
            self._warn(result, "Cannot index note", path, ErrorCode.INDEX_FAILED, e)

    @staticmethod
    def _undo_rename(current: Path, original: Path) -> None:
        try:
            rename_note_file(current, original)
        except StorageError as e:
            logger.error(f"Could not restore {original.name} after failed update: {e}")

    @staticmethod
    def _warn(
        result: ReconcileResult,
        message: str,
        path,
        code: ErrorCode,
        error: Optional[Exception] = None,
    ) -> None:
        warning = ReconcileWarning(message, str(path), code=code, original_error=error)
        logger.warning(str(warning))
        result.warnings.append(warning)
