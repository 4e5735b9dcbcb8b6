"""Utility functions for the Measly Notes core."""
import re
from typing import Any

from measly_notes.exceptions import ErrorCode, ValidationError

_WHITESPACE_RUN = re.compile(r"\s+")


def normalize_tag_name(name: str) -> str:
    """Normalize a tag name for storage and comparison.

    Examples:
        "  Work Stuff " -> "work-stuff"
        "Deleted" -> "deleted"
    """
    return _WHITESPACE_RUN.sub("-", name.strip().lower())


def validate_id(value: Any, field: str = "id") -> int:
    """Validate a note or tag id supplied by a caller.

    Ids are positive integers; bools and numeric strings are rejected so that
    malformed IPC payloads never reach the database.

    Raises:
        ValidationError: If the value is not a positive int.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f"{field} must be an integer", field=field, value=value,
            code=ErrorCode.INVALID_ID,
        )
    if value < 1:
        raise ValidationError(
            f"{field} must be positive", field=field, value=value,
            code=ErrorCode.INVALID_ID,
        )
    return value


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Args:
        value: User input string that may contain LIKE wildcards

    Returns:
        String with '%', '_', and '\\' escaped for use with ``ESCAPE '\\'``

    Example:
        >>> escape_like_pattern("100% done")
        '100\\% done'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)
