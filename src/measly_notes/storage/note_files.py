"""Filesystem access for note Markdown files.

Every call here tolerates not-found and permission errors the way its
caller needs: reads degrade to an empty string, deletes and stats report
failure through their return value, and writes/renames raise StorageError
so the caller can keep the database unchanged.
"""
import codecs
import datetime
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

from measly_notes.exceptions import ErrorCode, StorageError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# YY-MM-DD_hh-mm_TOKEN.md (local time, token is the durable identity)
CANONICAL_NAME_PATTERN = re.compile(
    r"^(\d{2})-(\d{2})-(\d{2})_(\d{2})-(\d{2})_([A-Z0-9]{9})\.md$"
)
# Files written by the very first releases were named after the note id
LEGACY_ID_NAME_PATTERN = re.compile(r"^(\d+)\.md$")

_CP1252_ERRORS = "measly_notes_cp1252_passthrough"


def _cp1252_passthrough(exc: UnicodeError) -> Tuple[str, int]:
    """Map bytes cp1252 leaves undefined (0x81, 0x8D, ...) to the same code point."""
    if isinstance(exc, UnicodeDecodeError):
        bad = exc.object[exc.start:exc.end]
        return "".join(chr(b) for b in bad), exc.end
    raise exc


codecs.register_error(_CP1252_ERRORS, _cp1252_passthrough)


@dataclass(frozen=True)
class FileTimes:
    """Filesystem timestamps of a note file (UTC)."""

    born: datetime.datetime
    modified: datetime.datetime


def normalize_path(path: PathLike) -> str:
    """Normalize a path for comparing stored file paths with directory entries."""
    return os.path.normcase(os.path.abspath(os.fspath(path)))


def canonical_file_name(created_at: datetime.datetime, token: str) -> str:
    """Build ``YY-MM-DD_hh-mm_TOKEN.md`` from a creation time (shown in local time)."""
    local = created_at.astimezone() if created_at.tzinfo else created_at
    return f"{local.strftime('%y-%m-%d_%H-%M')}_{token}.md"


def parse_canonical_name(name: str) -> Optional[Tuple[datetime.datetime, str]]:
    """Parse a canonical filename into (creation time as aware UTC, token).

    Returns None when the name is not canonical or its date is impossible.
    """
    match = CANONICAL_NAME_PATTERN.match(name)
    if not match:
        return None
    yy, mo, dd, hh, mi, token = match.groups()
    try:
        local = datetime.datetime(2000 + int(yy), int(mo), int(dd), int(hh), int(mi))
    except ValueError:
        return None
    # Naive local wall time -> aware, then to UTC for comparison with the store
    return local.astimezone().astimezone(datetime.timezone.utc), token


def parse_legacy_id_name(name: str) -> Optional[int]:
    """Return the note id encoded in a legacy ``<id>.md`` filename."""
    match = LEGACY_ID_NAME_PATTERN.match(name)
    return int(match.group(1)) if match else None


def ensure_notes_dir(notes_dir: PathLike) -> Path:
    """Create the notes directory if needed and return it as an absolute Path."""
    path = Path(notes_dir).resolve()
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(
            "Failed to create notes directory",
            operation="mkdir",
            path=str(path),
            code=ErrorCode.STORAGE_WRITE_FAILED,
            original_error=e,
        ) from e
    return path


def list_markdown_files(notes_dir: PathLike) -> List[Path]:
    """List ``.md`` files directly inside the notes directory, sorted by name.

    Raises:
        StorageError: If the directory cannot be listed.
    """
    try:
        with os.scandir(notes_dir) as entries:
            files = [
                Path(entry.path).resolve()
                for entry in entries
                if entry.name.lower().endswith(".md") and entry.is_file()
            ]
    except OSError as e:
        raise StorageError(
            "Cannot list notes directory",
            operation="readdir",
            path=str(notes_dir),
            original_error=e,
        ) from e
    return sorted(files, key=lambda p: p.name)


def stat_note_file(path: PathLike) -> Optional[FileTimes]:
    """Return birth/modification times, or None if the file cannot be stat'ed.

    Birth time comes from ``st_birthtime`` where the platform records it;
    elsewhere the earlier of ctime and mtime stands in.
    """
    try:
        st = os.stat(path)
    except OSError as e:
        logger.debug(f"stat failed for {path}: {e}")
        return None
    born_ts = getattr(st, "st_birthtime", None)
    if born_ts is None:
        born_ts = min(st.st_ctime, st.st_mtime)
    tz = datetime.timezone.utc
    return FileTimes(
        born=datetime.datetime.fromtimestamp(born_ts, tz),
        modified=datetime.datetime.fromtimestamp(st.st_mtime, tz),
    )


def read_note_text(path: PathLike, repair_encoding: bool = False) -> str:
    """Read a note file as text.

    Files that are not valid UTF-8 are decoded as Windows-1252. With
    ``repair_encoding`` the decoded text is written back as UTF-8 so the
    next read is clean. Missing or unreadable files read as ``""``.
    """
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        logger.debug(f"Cannot read note file {path}: {e}")
        return ""

    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        pass

    text = data.decode("cp1252", errors=_CP1252_ERRORS)
    if repair_encoding:
        try:
            write_note_text(path, text)
            logger.info(f"Re-encoded {Path(path).name} from cp1252 to UTF-8")
        except StorageError as e:
            logger.warning(f"Could not rewrite {Path(path).name} as UTF-8: {e}")
    return text


def write_note_text(path: PathLike, content: str) -> Path:
    """Write note content as UTF-8 via a temp file and atomic replace.

    Raises:
        StorageError: If the file cannot be written.
    """
    target = Path(path)
    tmp_name = None
    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=".", suffix=".tmp", dir=str(target.parent)
        )
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(tmp_name, target)
    except OSError as e:
        if tmp_name and os.path.exists(tmp_name):
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.debug(f"Could not remove temp file {tmp_name}")
        raise StorageError(
            "Failed to write note file",
            operation="write",
            path=str(target),
            code=ErrorCode.STORAGE_WRITE_FAILED,
            original_error=e,
        ) from e
    return target


def rename_note_file(src: PathLike, dst: PathLike) -> Path:
    """Rename a note file, refusing to overwrite a different existing file.

    Raises:
        StorageError: If the rename failed; the source is left in place.
    """
    src_path, dst_path = Path(src), Path(dst)
    if normalize_path(src_path) == normalize_path(dst_path):
        return dst_path
    try:
        if dst_path.exists():
            raise FileExistsError(f"{dst_path.name} already exists")
        os.rename(src_path, dst_path)
    except OSError as e:
        raise StorageError(
            "Failed to rename note file",
            operation="rename",
            path=str(src_path),
            code=ErrorCode.STORAGE_WRITE_FAILED,
            original_error=e,
        ) from e
    return dst_path


def delete_note_file(path: PathLike) -> bool:
    """Delete a note file. Returns False if it was missing or could not be removed."""
    try:
        os.unlink(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Error deleting note file {Path(path).name}: {e}")
        return False
