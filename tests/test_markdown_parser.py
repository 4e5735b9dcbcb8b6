"""Tests for deriving titles from Markdown content."""
from measly_notes.storage.markdown_parser import derive_title, first_line_title, split_frontmatter


def test_heading_is_stripped():
    assert derive_title("## Weekly plan\nbody", "fallback") == "Weekly plan"


def test_first_non_empty_line():
    assert derive_title("\n\n   \nplain line\nmore", "fallback") == "plain line"


def test_empty_content_uses_fallback():
    assert derive_title("", "file-stem") == "file-stem"
    assert derive_title("   \n#  \n", "file-stem") == "file-stem"


def test_frontmatter_title_wins():
    content = "---\ntitle: From Frontmatter\ntags: [a]\n---\n# Heading\n"
    assert derive_title(content, "fallback") == "From Frontmatter"


def test_frontmatter_without_title_uses_body():
    content = "---\ntags: [a]\n---\n# Heading\n"
    assert derive_title(content, "fallback") == "Heading"


def test_malformed_frontmatter_is_body():
    content = "---\ntitle: [unclosed\n---\nbody"
    metadata, body = split_frontmatter(content)
    assert metadata == {}
    assert body == content


def test_bom_is_ignored():
    assert first_line_title("\ufeff# Title") == "Title"
