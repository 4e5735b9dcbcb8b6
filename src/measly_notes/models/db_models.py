"""SQLAlchemy database models for the Measly Notes core."""
import logging
from typing import Optional

from sqlalchemy import (Column, DateTime, Float, ForeignKey, Index, Integer,
                        String, Text, create_engine, event, inspect, text)
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from measly_notes.config import config

logger = logging.getLogger(__name__)

# Create base class for SQLAlchemy models
Base = declarative_base()


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(Text, nullable=False)
    file_path = Column(Text, nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False, index=True)
    last_edited = Column(DateTime, nullable=True, index=True)
    file_token = Column(String(9), nullable=True, unique=True)
    progress_preview = Column(Float, nullable=False, default=0.0)
    progress_edit = Column(Float, nullable=False, default=0.0)
    cursor_pos = Column(Integer, nullable=True)
    scroll_top = Column(Float, nullable=True)

    # Relationships
    tag_links = relationship(
        "DBNoteTag",
        back_populates="note",
        cascade="all, delete-orphan",
        order_by="DBNoteTag.position",
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id={self.id}, title='{self.title}')>"


class DBTag(Base):
    """Database model for a tag."""
    __tablename__ = "tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)

    # Relationships
    note_links = relationship("DBNoteTag", back_populates="tag")

    def __repr__(self) -> str:
        """Return string representation of tag."""
        return f"<Tag(id={self.id}, name='{self.name}')>"


class DBNoteTag(Base):
    """Position-ordered association between a note and a tag."""
    __tablename__ = "note_tags"
    note_id = Column(
        Integer, ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id = Column(Integer, ForeignKey("tags.id"), primary_key=True)
    position = Column(Integer, nullable=False)

    note = relationship("DBNote", back_populates="tag_links")
    tag = relationship("DBTag", back_populates="note_links")

    __table_args__ = (
        Index("idx_note_tags_note", "note_id"),
        Index("idx_note_tags_tag", "tag_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<NoteTag(note_id={self.note_id}, tag_id={self.tag_id}, "
            f"position={self.position})>"
        )


# Columns added after the first release; older stores get them on startup
_UI_STATE_COLUMNS = {
    "file_token": "VARCHAR(9)",
    "progress_preview": "FLOAT NOT NULL DEFAULT 0",
    "progress_edit": "FLOAT NOT NULL DEFAULT 0",
    "cursor_pos": "INTEGER",
    "scroll_top": "FLOAT",
}


def init_db(db_url: Optional[str] = None, in_memory: bool = False):
    """Initialize the database with hardened configuration.

    Applies SQLite settings for crash resilience (WAL journal, NORMAL sync)
    and enables foreign keys so note_tags rows follow their note.
    An in-memory store shares one connection across sessions (StaticPool),
    which gives each test an isolated, throwaway database.

    Returns:
        The configured SQLAlchemy engine.
    """
    if in_memory:
        engine = create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            db_url or config.get_db_url(),
            pool_pre_ping=True,
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            # WAL mode: writes go to separate journal, preventing corruption on crash
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    Base.metadata.create_all(engine)

    _migrate_add_ui_state_columns(engine)

    init_fts5(engine)

    return engine


def _migrate_add_ui_state_columns(engine) -> None:
    """Migration: add file-token and UI-state columns to older stores.

    SQLite doesn't support IF NOT EXISTS for ADD COLUMN, so we check
    the schema first. This is idempotent and safe to run multiple times.
    """
    inspector = inspect(engine)
    columns = {col["name"] for col in inspector.get_columns("notes")}
    missing = [name for name in _UI_STATE_COLUMNS if name not in columns]
    if not missing:
        return

    with engine.connect() as conn:
        for name in missing:
            conn.execute(
                text(f"ALTER TABLE notes ADD COLUMN {name} {_UI_STATE_COLUMNS[name]}")
            )
        if "file_token" in missing:
            conn.execute(text(
                "CREATE UNIQUE INDEX IF NOT EXISTS ix_notes_file_token "
                "ON notes(file_token)"
            ))
        conn.commit()
    logger.info(f"Migrated notes table, added columns: {', '.join(missing)}")


def init_fts5(engine) -> bool:
    """Initialize the FTS5 virtual table for note title and content.

    The table is standalone (not an external-content table): its content
    mirrors the Markdown file and is written explicitly on every save.

    Returns:
        True if FTS5 is usable, False if the SQLite build lacks it.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("""
                CREATE VIRTUAL TABLE IF NOT EXISTS notes_fts USING fts5(
                    note_id UNINDEXED,
                    title,
                    content
                )
            """))
            conn.commit()
        return True
    except OperationalError as e:
        logger.error(f"Failed to create FTS table; FTS5 may be unavailable: {e}")
        return False


def get_session_factory(engine=None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
