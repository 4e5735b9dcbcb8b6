"""Repository for tags and position-ordered note-tag links."""
import datetime
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, delete, desc, func, or_, select, text, update
from sqlalchemy.orm import Session

from measly_notes.exceptions import (
    ErrorCode,
    NoteNotFoundError,
    ProtectedTagError,
    TagNotFoundError,
    ValidationError,
)
from measly_notes.models.db_models import DBNote, DBNoteTag, DBTag
from measly_notes.models.schema import (
    ARCHIVED_TAG,
    DELETED_TAG,
    PROTECTED_TAGS,
    NoteTag,
    Tag,
    is_protected_tag,
    to_db_datetime,
    utc_now,
)
from measly_notes.storage.base import storage_errors
from measly_notes.utils import normalize_tag_name, validate_id

logger = logging.getLogger(__name__)


def _other_protected(name: str) -> str:
    return ARCHIVED_TAG if name == DELETED_TAG else DELETED_TAG


class TagRepository:
    """Repository for managing tags and their links to notes.

    Every mutation of a note's links leaves that note's positions as the
    dense sequence ``0..n-1``, with a protected tag (if any) at position 0.
    Each public method runs in a single session transaction.
    """

    def __init__(self, session_factory, top_tags_window_days: int = 90):
        """Initialize the tag repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
            top_tags_window_days: Recency window for get_top_tags().
        """
        self.session_factory = session_factory
        self.top_tags_window_days = top_tags_window_days

    # ------------------------------------------------------------------
    # In-session helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _get_or_create(session: Session, name: str) -> DBTag:
        """Get or create a tag row by already-normalized name."""
        # INSERT OR IGNORE tolerates a concurrent creator of the same name
        session.execute(
            text("INSERT OR IGNORE INTO tags (name) VALUES (:name)"),
            {"name": name},
        )
        return session.scalar(select(DBTag).where(DBTag.name == name))

    @staticmethod
    def _links_for_note(session: Session, note_id: int) -> List[DBNoteTag]:
        return list(
            session.scalars(
                select(DBNoteTag)
                .where(DBNoteTag.note_id == note_id)
                .order_by(DBNoteTag.position, DBNoteTag.tag_id)
            ).all()
        )

    @staticmethod
    def _assign_positions(
        links: Sequence[DBNoteTag], new_link: Optional[DBNoteTag] = None
    ) -> None:
        """Rewrite positions as 0..n-1 ordered by prior position.

        Protected tags are pinned to the front; the freshly inserted link
        wins a tie with an existing link at the same position.
        """
        ordered = sorted(
            links,
            key=lambda link: (
                0 if is_protected_tag(link.tag.name) else 1,
                link.position,
                0 if link is new_link else 1,
            ),
        )
        for index, link in enumerate(ordered):
            link.position = index

    def _renormalize(self, session: Session, note_id: int) -> None:
        links = self._links_for_note(session, note_id)
        self._assign_positions(links)

    @staticmethod
    def _require_note(session: Session, note_id: int) -> DBNote:
        db_note = session.get(DBNote, note_id)
        if db_note is None:
            raise NoteNotFoundError(note_id)
        return db_note

    @staticmethod
    def _normalized_or_raise(name: str) -> str:
        if not isinstance(name, str):
            raise ValidationError("Tag name must be a string", field="name", value=name)
        normalized = normalize_tag_name(name)
        if not normalized:
            raise ValidationError(
                "Tag name cannot be empty", field="name", value=name,
                code=ErrorCode.VALIDATION_FAILED,
            )
        return normalized

    @staticmethod
    def _to_note_tag(link: DBNoteTag) -> NoteTag:
        return NoteTag(
            note_id=link.note_id,
            tag_id=link.tag_id,
            position=link.position,
            tag=Tag(id=link.tag.id, name=link.tag.name),
        )

    def add_in_session(
        self, session: Session, note_id: int, tag_name: str, position: int
    ) -> DBNoteTag:
        """Link a tag to a note inside an existing session (no commit)."""
        self._require_note(session, note_id)
        db_tag = self._get_or_create(session, self._normalized_or_raise(tag_name))

        protected = is_protected_tag(db_tag.name)
        if protected:
            position = 0

        links = self._links_for_note(session, note_id)
        kept: List[DBNoteTag] = []
        for link in links:
            if link.tag_id == db_tag.id:
                session.delete(link)
            elif protected and link.tag.name == _other_protected(db_tag.name):
                # 'deleted' and 'archived' never coexist on a note
                session.delete(link)
            else:
                kept.append(link)
        session.flush()

        if position == 0:
            for link in kept:
                link.position += 1

        new_link = DBNoteTag(note_id=note_id, tag=db_tag, position=position)
        session.add(new_link)
        self._assign_positions(kept + [new_link], new_link=new_link)
        session.flush()
        return new_link

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def create_or_get_tag(self, name: str) -> Tag:
        """Get an existing tag or create a new one. Idempotent.

        Raises:
            ValidationError: If the name normalizes to an empty string.
        """
        normalized = self._normalized_or_raise(name)
        with storage_errors("create_or_get_tag"), self.session_factory() as session:
            db_tag = self._get_or_create(session, normalized)
            session.commit()
            return Tag(id=db_tag.id, name=db_tag.name)

    def ensure_protected_tags(self) -> None:
        """Make sure both protected tags exist."""
        with storage_errors("ensure_protected_tags"), self.session_factory() as session:
            for name in PROTECTED_TAGS:
                self._get_or_create(session, name)
            session.commit()

    def get_tag(self, tag_id: int) -> Optional[Tag]:
        """Get a tag by id, or None."""
        validate_id(tag_id, "tag_id")
        with storage_errors("get_tag", write=False), self.session_factory() as session:
            db_tag = session.get(DBTag, tag_id)
            return Tag(id=db_tag.id, name=db_tag.name) if db_tag else None

    def get_tag_by_name(self, name: str) -> Optional[Tag]:
        """Get a tag by (unnormalized) name, or None."""
        normalized = normalize_tag_name(name)
        with storage_errors("get_tag_by_name", write=False), self.session_factory() as session:
            db_tag = session.scalar(select(DBTag).where(DBTag.name == normalized))
            return Tag(id=db_tag.id, name=db_tag.name) if db_tag else None

    def get_all_tags(self) -> List[Tag]:
        """Get all tags ordered by name."""
        with storage_errors("get_all_tags", write=False), self.session_factory() as session:
            db_tags = session.scalars(select(DBTag).order_by(DBTag.name)).all()
            return [Tag(id=t.id, name=t.name) for t in db_tags]

    def get_tags_with_counts(self) -> Dict[str, int]:
        """Get all tags with the number of notes linked to each."""
        with storage_errors("get_tags_with_counts", write=False), self.session_factory() as session:
            result = session.execute(
                select(DBTag.name, func.count(DBNoteTag.note_id))
                .select_from(DBTag)
                .outerjoin(DBNoteTag, DBTag.id == DBNoteTag.tag_id)
                .group_by(DBTag.name)
                .order_by(DBTag.name)
            ).all()
            return {name: count for name, count in result}

    def get_top_tags(self, limit: int) -> List[Tag]:
        """Most used tags on recently touched notes.

        A note counts when it was created, updated or edited within the
        recency window. Protected tags are never reported.
        """
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise ValidationError("limit must be an integer", field="limit", value=limit)
        if limit < 1:
            return []
        cutoff = to_db_datetime(
            utc_now() - datetime.timedelta(days=self.top_tags_window_days)
        )
        usage = func.count(DBNoteTag.note_id).label("usage_count")
        stmt = (
            select(DBTag.id, DBTag.name, usage)
            .join(DBNoteTag, DBTag.id == DBNoteTag.tag_id)
            .join(DBNote, DBNoteTag.note_id == DBNote.id)
            .where(
                or_(
                    DBNote.updated_at >= cutoff,
                    DBNote.created_at >= cutoff,
                    and_(DBNote.last_edited.isnot(None), DBNote.last_edited >= cutoff),
                )
            )
            .where(DBTag.name.notin_(PROTECTED_TAGS))
            .group_by(DBTag.id, DBTag.name)
            .order_by(desc(usage), DBTag.name)
            .limit(limit)
        )
        with storage_errors("get_top_tags", write=False), self.session_factory() as session:
            return [Tag(id=row.id, name=row.name) for row in session.execute(stmt)]

    def rename_tag(self, tag_id: int, new_name: str) -> Tag:
        """Rename a tag, merging into an existing tag on name collision.

        When the normalized new name already belongs to another tag, every
        link on the old tag moves to that tag unless the note already has
        it (the duplicate is dropped), and the old tag row is removed.

        Returns:
            The surviving tag.

        Raises:
            TagNotFoundError: If no tag has this id.
            ProtectedTagError: If the tag is protected, or the new name is.
            ValidationError: If the new name normalizes to nothing.
        """
        validate_id(tag_id, "tag_id")
        normalized = self._normalized_or_raise(new_name)

        with storage_errors("rename_tag"), self.session_factory() as session:
            db_tag = session.get(DBTag, tag_id)
            if db_tag is None:
                raise TagNotFoundError(tag_id)
            if is_protected_tag(db_tag.name):
                raise ProtectedTagError(db_tag.name)
            if is_protected_tag(normalized):
                raise ProtectedTagError(
                    normalized, message=f"Cannot rename a tag onto protected tag '{normalized}'"
                )
            if normalized == db_tag.name:
                return Tag(id=db_tag.id, name=db_tag.name)

            target = session.scalar(select(DBTag).where(DBTag.name == normalized))
            if target is None:
                db_tag.name = normalized
                session.commit()
                logger.info(f"Renamed tag {tag_id} to '{normalized}'")
                return Tag(id=db_tag.id, name=db_tag.name)

            target_id = target.id
            note_ids = list(
                session.scalars(
                    select(DBNoteTag.note_id).where(DBNoteTag.tag_id == tag_id)
                ).all()
            )
            already_linked = set(
                session.scalars(
                    select(DBNoteTag.note_id).where(
                        DBNoteTag.tag_id == target_id, DBNoteTag.note_id.in_(note_ids)
                    )
                ).all()
            ) if note_ids else set()

            if already_linked:
                session.execute(
                    delete(DBNoteTag)
                    .where(
                        DBNoteTag.tag_id == tag_id,
                        DBNoteTag.note_id.in_(already_linked),
                    )
                    .execution_options(synchronize_session=False)
                )
            session.execute(
                update(DBNoteTag)
                .where(DBNoteTag.tag_id == tag_id)
                .values(tag_id=target_id)
                .execution_options(synchronize_session=False)
            )
            session.execute(
                delete(DBTag)
                .where(DBTag.id == tag_id)
                .execution_options(synchronize_session=False)
            )
            session.expire_all()
            for note_id in note_ids:
                self._renormalize(session, note_id)
            session.commit()

            logger.info(
                f"Merged tag {tag_id} into '{normalized}' ({target_id}): "
                f"{len(note_ids)} links moved, {len(already_linked)} duplicates dropped"
            )
            return Tag(id=target_id, name=normalized)

    # ------------------------------------------------------------------
    # Note links
    # ------------------------------------------------------------------

    def add_tag_to_note(self, note_id: int, tag_name: str, position: int) -> NoteTag:
        """Add a tag to a note at a position.

        Protected tags always land at position 0 and evict the other
        protected tag. Inserting at position 0 shifts every existing link
        up first. Any existing link for the same tag is replaced.

        Returns:
            The inserted link with its final (normalized) position.

        Raises:
            NoteNotFoundError: If the note does not exist.
            ValidationError: On a bad id, position or tag name.
        """
        validate_id(note_id, "note_id")
        if isinstance(position, bool) or not isinstance(position, int) or position < 0:
            raise ValidationError(
                "position must be a non-negative integer", field="position", value=position
            )
        with storage_errors("add_tag_to_note"), self.session_factory() as session:
            link = self.add_in_session(session, note_id, tag_name, position)
            result = self._to_note_tag(link)
            session.commit()
            return result

    def remove_tag_from_note(self, note_id: int, tag_id: int) -> None:
        """Remove a tag from a note and close the gap. Missing links are a no-op."""
        validate_id(note_id, "note_id")
        validate_id(tag_id, "tag_id")
        with storage_errors("remove_tag_from_note"), self.session_factory() as session:
            links = self._links_for_note(session, note_id)
            remaining = [link for link in links if link.tag_id != tag_id]
            if len(remaining) == len(links):
                return
            for link in links:
                if link.tag_id == tag_id:
                    session.delete(link)
            session.flush()
            self._assign_positions(remaining)
            session.commit()

    def reorder_note_tags(self, note_id: int, ordered_tag_ids: Iterable[int]) -> None:
        """Write positions from a full permutation of the note's tag ids.

        Protected tags are pulled to the front (keeping their relative
        order); the remaining tags follow in the given order.

        Raises:
            ValidationError: If the ids are not a permutation of the note's tags.
        """
        validate_id(note_id, "note_id")
        ordered = list(ordered_tag_ids)
        for tag_id in ordered:
            validate_id(tag_id, "tag_id")

        with storage_errors("reorder_note_tags"), self.session_factory() as session:
            self._require_note(session, note_id)
            links = self._links_for_note(session, note_id)
            by_tag_id = {link.tag_id: link for link in links}
            if len(ordered) != len(set(ordered)) or set(ordered) != set(by_tag_id):
                raise ValidationError(
                    "ordered_tag_ids must be a permutation of the note's tag ids",
                    field="ordered_tag_ids",
                    value=ordered,
                )
            protected = [i for i in ordered if is_protected_tag(by_tag_id[i].tag.name)]
            others = [i for i in ordered if not is_protected_tag(by_tag_id[i].tag.name)]
            for index, tag_id in enumerate(protected + others):
                by_tag_id[tag_id].position = index
            session.commit()

    def get_note_tags(self, note_id: int) -> List[NoteTag]:
        """Get a note's links ordered by position, with tags expanded."""
        validate_id(note_id, "note_id")
        with storage_errors("get_note_tags", write=False), self.session_factory() as session:
            return [self._to_note_tag(link) for link in self._links_for_note(session, note_id)]

    def note_has_tag(self, note_id: int, tag_name: str) -> bool:
        """Whether a note carries the tag at any position."""
        normalized = normalize_tag_name(tag_name)
        with storage_errors("note_has_tag", write=False), self.session_factory() as session:
            found = session.scalar(
                select(DBNoteTag.note_id)
                .join(DBTag, DBNoteTag.tag_id == DBTag.id)
                .where(DBNoteTag.note_id == note_id, DBTag.name == normalized)
            )
            return found is not None
