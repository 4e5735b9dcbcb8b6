"""
Measly Notes - indexing, search and tag-hierarchy core for a local notes app.

Notes live as Markdown files in a single notes directory. A SQLite store keeps
note metadata, position-ordered tags and an FTS5 index in agreement with those
files, and the services layer answers search and category-tree queries.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("measly-notes")
except PackageNotFoundError:
    __version__ = "0.3.0"
