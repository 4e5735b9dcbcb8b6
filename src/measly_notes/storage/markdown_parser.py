"""Title derivation for Markdown note files.

Files dropped into the notes directory by other tools carry no metadata
record, so the reconciler derives a display title from the text itself.
YAML frontmatter (as written by Obsidian and similar editors) is honoured
when present.
"""
import logging
import re
from typing import Any, Dict, Optional, Tuple

import frontmatter
import yaml

logger = logging.getLogger(__name__)

_HEADING_PREFIX = re.compile(r"^#+\s*")


def split_frontmatter(content: str) -> Tuple[Dict[str, Any], str]:
    """Split content into (frontmatter metadata, body).

    Malformed frontmatter is treated as plain body text.
    """
    try:
        post = frontmatter.loads(content)
    except (ValueError, yaml.YAMLError) as e:
        logger.debug(f"Ignoring malformed frontmatter: {e}")
        return {}, content
    metadata = post.metadata if isinstance(post.metadata, dict) else {}
    return metadata, post.content


def first_line_title(body: str) -> Optional[str]:
    """First non-empty line with any leading ``#`` heading marker stripped."""
    for line in body.splitlines():
        candidate = _HEADING_PREFIX.sub("", line.strip().lstrip("\ufeff")).strip()
        if candidate:
            return candidate
    return None


def derive_title(content: str, fallback: str) -> str:
    """Derive a note title from file content.

    Order: frontmatter ``title``, then the first non-empty line, then
    ``fallback`` (normally the filename stem).
    """
    if not content:
        return fallback
    metadata, body = split_frontmatter(content)
    title = metadata.get("title")
    if isinstance(title, str) and title.strip():
        return title.strip()
    return first_line_title(body) or fallback
