"""Projection of position-ordered tags into a three-level category tree."""

import logging
from typing import Dict, List, Optional, Sequence

from measly_notes.models.schema import (
    CategoryHierarchy,
    CategoryNode,
    Note,
    is_protected_tag,
)
from measly_notes.storage.note_repository import NoteRepository
from measly_notes.utils import normalize_tag_name

logger = logging.getLogger(__name__)

# Positions 0, 1 and 2 place a note as primary, secondary and tertiary
CATEGORY_DEPTH = 3


def category_path(tag_names: Sequence[str]) -> List[str]:
    """Labels for a note from its position-ordered tag names.

    Only positions 0-2 are looked at; protected tags there are skipped.
    """
    return [
        name for name in tag_names[:CATEGORY_DEPTH] if not is_protected_tag(name)
    ]


def _insert(children: Dict[str, CategoryNode], path: Sequence[str], note: Note,
            depth: int = 0) -> None:
    """Place ``note`` under ``path``, creating nodes as needed."""
    node = children.get(path[0])
    if node is None:
        node = children[path[0]] = CategoryNode(name=path[0], depth=depth)
    if len(path) == 1:
        node.notes.append(note)
    else:
        _insert(node.children, path[1:], note, depth + 1)


def _sort_tree(children: Dict[str, CategoryNode]) -> Dict[str, CategoryNode]:
    ordered = {}
    for name in sorted(children):
        node = children[name]
        node.notes.sort(key=lambda n: n.updated_at, reverse=True)
        node.children = _sort_tree(node.children)
        ordered[name] = node
    return ordered


class CategoryService:
    """Builds the category tree shown in the sidebar."""

    def __init__(self, note_repository: NoteRepository):
        self.note_repository = note_repository

    def get_category_hierarchy(self) -> CategoryHierarchy:
        """Tree of every note not in the trash or the archive."""
        return self._project(exclude_protected=True)

    def get_hierarchy_for_tag(self, tag_name: str) -> CategoryHierarchy:
        """Tree restricted to notes carrying ``tag_name`` at any position.

        Trashed and archived notes are included when they carry the tag.
        """
        return self._project(exclude_protected=False, required_tag=normalize_tag_name(tag_name))

    def get_notes_by_primary_tag(self) -> Dict[str, List[Note]]:
        """Notes grouped by the tag at position 0, protected tags left out."""
        groups: Dict[str, List[Note]] = {}
        for note, tag_names in self.note_repository.get_all_with_tag_names():
            if tag_names and not is_protected_tag(tag_names[0]):
                groups.setdefault(tag_names[0], []).append(note)
        return {
            name: sorted(groups[name], key=lambda n: n.updated_at, reverse=True)
            for name in sorted(groups)
        }

    def _project(self, exclude_protected: bool,
                 required_tag: Optional[str] = None) -> CategoryHierarchy:
        roots: Dict[str, CategoryNode] = {}
        uncategorized: List[Note] = []

        for note, tag_names in self.note_repository.get_all_with_tag_names():
            if exclude_protected and any(is_protected_tag(t) for t in tag_names):
                continue
            if required_tag is not None and required_tag not in tag_names:
                continue
            path = category_path(tag_names)
            if path:
                _insert(roots, path, note)
            else:
                uncategorized.append(note)

        uncategorized.sort(key=lambda n: n.updated_at, reverse=True)
        return CategoryHierarchy(hierarchy=_sort_tree(roots), uncategorized_notes=uncategorized)
