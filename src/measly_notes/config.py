"""Configuration module for the Measly Notes core."""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from measly_notes import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

logger = logging.getLogger(__name__)


def resolve_data_dir() -> Path:
    """Resolve the data directory for the current layout.

    A packaged (frozen) build keeps its data folder next to the executable;
    a development checkout uses ``./data`` under the working directory.
    ``MEASLY_NOTES_DATA_DIR`` overrides both.
    """
    override = os.getenv("MEASLY_NOTES_DATA_DIR")
    if override:
        return Path(override)
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent / "data"
    return Path.cwd() / "data"


class MeaslyNotesConfig(BaseModel):
    """Configuration for the notes core."""

    # Root of all persisted state
    data_dir: Path = Field(default_factory=resolve_data_dir)
    # Directory holding the .md files; relative paths resolve against data_dir
    notes_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("MEASLY_NOTES_NOTES_DIR", "notes"))
    )
    # SQLite store holding notes, tags, note_tags and notes_fts
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("MEASLY_NOTES_DATABASE_PATH", "notes.db")
        )
    )
    notes_per_page: int = Field(
        default_factory=lambda: int(os.getenv("MEASLY_NOTES_PER_PAGE", "20"))
    )
    search_max_results: int = Field(
        default_factory=lambda: int(os.getenv("MEASLY_NOTES_SEARCH_MAX_RESULTS", "200"))
    )
    snippet_radius: int = Field(
        default_factory=lambda: int(os.getenv("MEASLY_NOTES_SNIPPET_RADIUS", "50"))
    )
    # Window used by top-tags statistics
    top_tags_window_days: int = Field(
        default_factory=lambda: int(os.getenv("MEASLY_NOTES_TOP_TAGS_DAYS", "90"))
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("MEASLY_NOTES_LOG_LEVEL", "INFO")
    )
    app_version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_limits(self) -> "MeaslyNotesConfig":
        """Reject limits that would make paging or searching meaningless."""
        if self.notes_per_page < 1:
            raise ValueError("notes_per_page must be >= 1")
        if self.search_max_results < 1:
            raise ValueError("search_max_results must be >= 1")
        if self.snippet_radius < 0:
            raise ValueError("snippet_radius must be >= 0")
        if self.top_tags_window_days < 1:
            raise ValueError("top_tags_window_days must be >= 1")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on data_dir."""
        if path.is_absolute():
            return path
        return (self.data_dir / path).resolve()

    def get_notes_dir(self) -> Path:
        """Get the absolute notes directory."""
        return self.get_absolute_path(self.notes_dir)

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = MeaslyNotesConfig()
