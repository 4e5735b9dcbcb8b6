"""Data models for the Measly Notes core."""

import datetime
import re
from dataclasses import dataclass, field
from datetime import timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from measly_notes.exceptions import ReconcileWarning

DELETED_TAG = "deleted"
ARCHIVED_TAG = "archived"
# Mutually exclusive on a note, pinned to position 0, never renamed
PROTECTED_TAGS = (DELETED_TAG, ARCHIVED_TAG)

# 9 uppercase alphanumerics embedded in canonical note filenames
FILE_TOKEN_PATTERN = re.compile(r"^[A-Z0-9]{9}$")


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Treat naive datetimes (as read back from SQLite) as UTC."""
    if dt_value is None:
        return None
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def to_db_datetime(dt_value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Convert a datetime to the naive-UTC form stored in SQLite."""
    if dt_value is None:
        return None
    if dt_value.tzinfo is None:
        return dt_value
    return dt_value.astimezone(timezone.utc).replace(tzinfo=None)


def is_protected_tag(name: str) -> bool:
    """Whether a (normalized) tag name is one of the protected tags."""
    return name in PROTECTED_TAGS


class MatchType(str, Enum):
    """Where a search result matched."""

    TITLE = "title"
    CONTENT = "content"
    TAG = "tag"


class Tag(BaseModel):
    """A normalized, globally unique tag."""

    id: int = Field(..., description="Tag row id")
    name: str = Field(..., description="Normalized tag name")

    model_config = {"validate_assignment": True, "frozen": True}

    @property
    def is_protected(self) -> bool:
        return is_protected_tag(self.name)

    def __str__(self) -> str:
        """Return string representation of tag."""
        return self.name


class NoteTag(BaseModel):
    """A position-ordered link between a note and a tag."""

    note_id: int
    tag_id: int
    position: int = Field(..., ge=0)
    tag: Optional[Tag] = None

    model_config = {"frozen": True}


class Note(BaseModel):
    """Metadata record for a note whose body lives in a Markdown file."""

    id: int = Field(..., gt=0, description="Stable identity of the note")
    title: str = Field(..., description="Display title")
    file_path: str = Field(..., description="Absolute path of the bound .md file")
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)
    last_edited: Optional[datetime.datetime] = None
    file_token: Optional[str] = Field(
        default=None, description="Token used in the canonical filename"
    )
    progress_preview: float = 0.0
    progress_edit: float = 0.0
    cursor_pos: Optional[int] = Field(default=None, ge=0)
    scroll_top: Optional[float] = None

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("file_token")
    @classmethod
    def validate_file_token(cls, v: Optional[str]) -> Optional[str]:
        """Tokens are exactly 9 uppercase alphanumerics."""
        if v is None:
            return None
        if not FILE_TOKEN_PATTERN.match(v):
            raise ValueError("file_token must be 9 uppercase alphanumeric characters")
        return v


class NoteUiState(BaseModel):
    """Per-note editor/preview state.

    Used both as the read model and as a partial update: only fields the
    caller explicitly sets are written (``model_dump(exclude_unset=True)``).
    """

    progress_preview: float = 0.0
    progress_edit: float = 0.0
    cursor_pos: Optional[int] = Field(default=None, ge=0)
    scroll_top: Optional[float] = None

    model_config = {"extra": "forbid"}


class SnippetSegment(BaseModel):
    """A run of snippet text, optionally highlighted. Plain text, not HTML."""

    text: str
    highlight: bool = False


class SearchResult(BaseModel):
    """A note matched by a text or tag search."""

    note: Note
    match_type: MatchType
    snippet: Optional[List[SnippetSegment]] = None

    @property
    def snippet_text(self) -> str:
        return "".join(seg.text for seg in self.snippet or [])

    @property
    def highlighted(self) -> List[str]:
        return [seg.text for seg in self.snippet or [] if seg.highlight]


class NotesPage(BaseModel):
    """One page of date-ordered notes plus the total for pagination."""

    notes: List[Note]
    total: int
    page: int
    per_page: int

    @property
    def total_pages(self) -> int:
        return max(1, -(-self.total // self.per_page))


class CategoryNode(BaseModel):
    """A node of the category tree.

    Depth 0 is a primary tag, 1 secondary, 2 tertiary. ``notes`` holds the
    notes whose deepest label is this node; ``children`` is keyed by the next
    tag name.
    """

    name: str
    depth: int = 0
    notes: List[Note] = Field(default_factory=list)
    children: Dict[str, "CategoryNode"] = Field(default_factory=dict)

    def note_count(self) -> int:
        return len(self.notes) + sum(c.note_count() for c in self.children.values())

    def to_dict(self) -> Any:
        """Render as nested ``{notes, secondary: {..., tertiary: {...}}}`` maps.

        Tertiary nodes are leaves and render as plain note lists.
        """
        notes = [n.model_dump(mode="json") for n in self.notes]
        if self.depth >= 2:
            return notes
        child_key = "secondary" if self.depth == 0 else "tertiary"
        return {
            "notes": notes,
            child_key: {name: child.to_dict() for name, child in self.children.items()},
        }


CategoryNode.model_rebuild()


class CategoryHierarchy(BaseModel):
    """Projection of every note into the primary/secondary/tertiary tree."""

    hierarchy: Dict[str, CategoryNode] = Field(default_factory=dict)
    uncategorized_notes: List[Note] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hierarchy": {name: node.to_dict() for name, node in self.hierarchy.items()},
            "uncategorizedNotes": [
                n.model_dump(mode="json") for n in self.uncategorized_notes
            ],
        }


@dataclass(frozen=True)
class PathUpdate:
    """A note whose bound file path changed during reconciliation."""

    note_id: int
    old_path: str
    new_path: str


@dataclass
class ReconcileResult:
    """What a reconciliation run changed.

    Attributes:
        created_note_ids: Notes created for previously unknown files.
        updated_paths: Notes whose file was renamed or rebound.
        marked_deleted_note_ids: Notes newly tagged 'deleted' for a missing file.
        warnings: Non-fatal per-file problems (never raised).
    """

    created_note_ids: List[int] = field(default_factory=list)
    updated_paths: List[PathUpdate] = field(default_factory=list)
    marked_deleted_note_ids: List[int] = field(default_factory=list)
    warnings: List[ReconcileWarning] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(
            self.created_note_ids or self.updated_paths or self.marked_deleted_note_ids
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "created_note_ids": list(self.created_note_ids),
            "updated_paths": [
                {"note_id": u.note_id, "old_path": u.old_path, "new_path": u.new_path}
                for u in self.updated_paths
            ],
            "marked_deleted_note_ids": list(self.marked_deleted_note_ids),
            "warnings": [w.to_dict() for w in self.warnings],
        }
