"""FTS5 full-text index over note titles and file content.

The index is a standalone FTS5 table whose rows mirror the Markdown files;
it is written explicitly on every save and never read back as the source
of truth. When the SQLite build lacks FTS5 the index reports itself
unavailable: writes become no-ops and queries raise, so callers fall
through to a manual scan.
"""
import logging
import sqlite3
from typing import Any, Callable, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from measly_notes.exceptions import ErrorCode, StorageError

logger = logging.getLogger(__name__)

# Inline expressions are cut to this length before being spliced into SQL
INLINE_EXPRESSION_MAX = 2000


class FtsIndex:
    """FTS5 full-text index with graceful degradation.

    Args:
        engine: SQLAlchemy engine used for database access.
        session_factory: Callable returning a context-manager session.
        available: Whether FTS5 was created successfully (see ``init_fts5``).
    """

    def __init__(
        self,
        engine: Any,
        session_factory: Callable,
        available: Optional[bool] = None,
    ) -> None:
        self.engine = engine
        self._session_factory = session_factory
        self.available: bool = self._probe() if available is None else available

    def _probe(self) -> bool:
        try:
            with self._session_factory() as session:
                session.execute(text("SELECT count(*) FROM notes_fts"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"FTS5 index unavailable, search will scan files: {e}")
            return False

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_in_session(
        self, session: Session, note_id: int, title: str, content: str
    ) -> None:
        """Replace a note's index row inside an existing session (no commit)."""
        if not self.available:
            return
        session.execute(
            text("DELETE FROM notes_fts WHERE note_id = :note_id"),
            {"note_id": note_id},
        )
        session.execute(
            text(
                "INSERT INTO notes_fts (note_id, title, content) "
                "VALUES (:note_id, :title, :content)"
            ),
            {"note_id": note_id, "title": title or "", "content": content or ""},
        )

    def remove_in_session(self, session: Session, note_id: int) -> None:
        """Drop a note's index row inside an existing session (no commit)."""
        if not self.available:
            return
        session.execute(
            text("DELETE FROM notes_fts WHERE note_id = :note_id"),
            {"note_id": note_id},
        )

    def upsert(self, note_id: int, title: str, content: str) -> None:
        """Index (or reindex) a note. Delete and insert share one transaction.

        Raises:
            StorageError: If the index could not be written.
        """
        try:
            with self._session_factory() as session:
                self.upsert_in_session(session, note_id, title, content)
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to index note {note_id}: {e}")
            raise StorageError(
                f"Failed to index note {note_id}",
                operation="fts_upsert",
                code=ErrorCode.INDEX_FAILED,
                original_error=e,
            ) from e

    def remove(self, note_id: int) -> None:
        """Remove a note from the index. Unknown ids are a no-op."""
        try:
            with self._session_factory() as session:
                self.remove_in_session(session, note_id)
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to remove note {note_id} from index: {e}")
            raise StorageError(
                f"Failed to remove note {note_id} from index",
                operation="fts_remove",
                code=ErrorCode.INDEX_FAILED,
                original_error=e,
            ) from e

    def clear(self) -> None:
        """Remove every row from the index."""
        if not self.available:
            return
        with self._session_factory() as session:
            session.execute(text("DELETE FROM notes_fts"))
            session.commit()

    def count(self) -> int:
        """Number of indexed notes (0 when FTS5 is unavailable)."""
        if not self.available:
            return 0
        with self._session_factory() as session:
            return session.execute(text("SELECT count(*) FROM notes_fts")).scalar() or 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def match(self, expression: str, limit: int) -> List[int]:
        """Note ids matching an FTS5 expression, best rank first.

        The expression is bound as a parameter.

        Raises:
            StorageError: If FTS5 is unavailable or rejected the query.
        """
        sql = text("""
            SELECT note_id
            FROM notes_fts
            WHERE notes_fts MATCH :query
            ORDER BY rank
            LIMIT :limit
        """)
        return self._run_match(sql, {"query": expression, "limit": limit}, expression)

    def match_inline(self, expression: str, limit: int) -> List[int]:
        """Same as match(), with the expression embedded as an escaped literal.

        Used as a second attempt when a driver refuses the bound form.
        """
        literal = self.escape_inline(expression)
        sql = text(f"""
            SELECT note_id
            FROM notes_fts
            WHERE notes_fts MATCH '{literal}'
            ORDER BY rank
            LIMIT :limit
        """)
        return self._run_match(sql, {"limit": limit}, expression)

    @staticmethod
    def escape_inline(expression: str) -> str:
        """Escape single quotes and cap the length of an inline MATCH literal."""
        return expression[:INLINE_EXPRESSION_MAX].replace("'", "''")

    def _run_match(self, sql, params, expression: str) -> List[int]:
        if not self.available:
            raise StorageError(
                "FTS5 index unavailable", operation="fts_match",
                code=ErrorCode.INDEX_FAILED,
            )
        try:
            with self._session_factory() as session:
                rows = session.execute(sql, params).fetchall()
        except (sqlite3.Error, SQLAlchemyError) as e:
            logger.warning(f"FTS5 query failed for '{expression}': {e}")
            raise StorageError(
                "FTS5 query failed",
                operation="fts_match",
                code=ErrorCode.INDEX_FAILED,
                original_error=e,
            ) from e

        note_ids: List[int] = []
        for row in rows:
            try:
                note_ids.append(int(row[0]))
            except (TypeError, ValueError):
                logger.debug(f"Skipping index row with bad note id {row[0]!r}")
        return note_ids
