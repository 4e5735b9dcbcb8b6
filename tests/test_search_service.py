"""Tests for text and tag search."""
import pytest

from measly_notes.exceptions import SearchError, StorageError
from measly_notes.models.schema import MatchType
from measly_notes.services.search_service import (
    SearchService,
    build_match_expression,
    build_snippet,
    parse_query,
    phrase_matches_permissive,
    split_segments,
)


class TestQueryParsing:
    """Splitting queries into phrases and tokens."""

    def test_phrases_and_tokens(self):
        parsed = parse_query('Foo "hello wor" bar!')
        assert parsed.phrases == ["hello wor"]
        assert parsed.tokens == ["foo", "bar"]
        assert parsed.joined == "hello wor foo bar"

    def test_match_expression(self):
        expression = build_match_expression(parse_query('"hello, wor" c++ AND'))
        assert expression == '"hello"* AND "wor"* AND "c"* AND "and"*'

    def test_punctuation_only_query_has_no_expression(self):
        assert build_match_expression(parse_query('!!! "?" ...')) == ""

    def test_highlights_longest_first(self):
        parsed = parse_query('fox "quick brown" fox')
        assert parsed.highlights == ["quick brown", "fox"]


class TestPhraseMatching:
    """Permissive phrase matching."""

    def test_last_word_may_be_prefix(self):
        assert phrase_matches_permissive("hello world wide web", "hello wor")

    def test_separators_are_loose(self):
        assert phrase_matches_permissive("Hello, -- World", "hello world")

    def test_words_must_be_adjacent(self):
        assert not phrase_matches_permissive("hello there world", "hello wor")

    def test_inner_words_are_not_prefixes(self):
        assert not phrase_matches_permissive("help world", "hel world")


class TestSnippets:
    """Snippet windows and highlight segments."""

    def test_window_is_centered_with_ellipses(self):
        content = "a" * 100 + "needle" + "b" * 100
        snippet = build_snippet(content, "t", parse_query("needle"), radius=50)
        assert snippet == "..." + "a" * 50 + "needle" + "b" * 50 + "..."

    def test_earliest_match_wins(self):
        content = "x" * 80 + "beta" + "y" * 10 + "alpha" + "z" * 80
        snippet = build_snippet(content, "t", parse_query("alpha beta"), radius=5)
        assert snippet == "...xxxxxbetayyyyy..."

    def test_empty_content_uses_title(self):
        assert build_snippet("", "The Title", parse_query("title"), radius=50) == "The Title"

    def test_segments_keep_source_case(self):
        segments = split_segments("The quick brown Fox", ["fox"])
        assert [(s.text, s.highlight) for s in segments] == [
            ("The quick brown ", False),
            ("Fox", True),
        ]

    def test_longer_highlight_preferred(self):
        segments = split_segments("a foobar b", ["foobar", "foo"])
        assert [s.text for s in segments if s.highlight] == ["foobar"]


class TestSearchNotes:
    """End-to-end text search through the service."""

    def test_round_trip(self, notes_service):
        """A token in the body is found and highlighted with its source casing."""
        note = notes_service.create_note("Animals", "The quick brown Fox")
        results = notes_service.search_notes("fox")
        assert len(results) == 1
        result = results[0]
        assert result.note.id == note.id
        assert result.match_type == MatchType.CONTENT
        assert result.highlighted == ["Fox"]
        assert result.snippet_text == "The quick brown Fox"

    def test_title_match_type(self, notes_service):
        """The query contained in the title makes it a title match."""
        notes_service.create_note("Fox Notes", "The quick brown fox")
        results = notes_service.search_notes("fox")
        assert len(results) == 1
        assert results[0].match_type == MatchType.TITLE
        assert "fox" in results[0].highlighted

    def test_quoted_phrase_prefix(self, notes_service):
        note = notes_service.create_note("Web", "hello world wide web")
        assert [r.note.id for r in notes_service.search_notes('"hello wor"')] == [note.id]
        assert notes_service.search_notes('"world hello"') == []

    def test_all_tokens_required(self, notes_service):
        notes_service.create_note("Fox", "The quick brown fox")
        assert notes_service.search_notes("quick zebra") == []

    def test_empty_query_returns_nothing(self, notes_service):
        notes_service.create_note("Fox", "The quick brown fox")
        assert notes_service.search_notes("") == []
        assert notes_service.search_notes('"" !!!') == []

    def test_stale_index_is_reverified(self, notes_service):
        """A note whose file no longer holds the term is dropped."""
        note = notes_service.create_note("Stale", "alpha content")
        with open(note.file_path, "w", encoding="utf-8") as f:
            f.write("beta content")
        assert notes_service.search_notes("alpha") == []

    def test_empty_file_uses_title_snippet(self, notes_service):
        notes_service.create_note("Quarterly plan", "")
        results = notes_service.search_notes("quarterly")
        assert len(results) == 1
        assert results[0].snippet_text == "Quarterly plan"

    def test_results_capped(self, notes_service):
        for i in range(4):
            notes_service.create_note(f"n{i}", "common word")
        service = SearchService(
            notes_service.note_repository, notes_service.fts_index, max_results=2
        )
        assert len(service.search_notes("common")) == 2


class TestFallbackLadder:
    """Index failures degrade to inline queries and then to a full scan."""

    def _fail(self, *args, **kwargs):
        raise StorageError("index broken", operation="fts_match")

    def test_inline_fallback(self, notes_service, monkeypatch):
        note = notes_service.create_note("Fox", "The quick brown fox")
        monkeypatch.setattr(notes_service.fts_index, "match", self._fail)
        assert [r.note.id for r in notes_service.search_notes("quick")] == [note.id]

    def test_scan_fallback(self, notes_service, monkeypatch):
        note = notes_service.create_note("Fox", "The quick brown fox")
        other = notes_service.create_note("Cat", "A lazy cat")
        monkeypatch.setattr(notes_service.fts_index, "match", self._fail)
        monkeypatch.setattr(notes_service.fts_index, "match_inline", self._fail)
        results = notes_service.search_notes("quick")
        assert [r.note.id for r in results] == [note.id]
        assert other.id not in {r.note.id for r in results}

    def test_scan_failure_propagates(self, notes_service, monkeypatch):
        notes_service.create_note("Fox", "The quick brown fox")
        monkeypatch.setattr(notes_service.fts_index, "match", self._fail)
        monkeypatch.setattr(notes_service.fts_index, "match_inline", self._fail)
        monkeypatch.setattr(notes_service.note_repository, "get_all", self._fail)
        with pytest.raises(SearchError):
            notes_service.search_notes("quick")


class TestTagSearch:
    """Tag search over the database only."""

    def test_substring_match_ordered_by_position(self, notes_service):
        primary = notes_service.create_note("Primary", "")
        secondary = notes_service.create_note("Secondary", "")
        unrelated = notes_service.create_note("Unrelated", "")
        notes_service.add_tag_to_note(secondary.id, "misc", 0)
        notes_service.add_tag_to_note(secondary.id, "Project-X", 1)
        notes_service.add_tag_to_note(primary.id, "project-y", 0)
        notes_service.add_tag_to_note(unrelated.id, "home", 0)

        results = notes_service.search_notes_by_tag("PROJECT")

        assert [r.note.id for r in results] == [primary.id, secondary.id]
        assert all(r.match_type == MatchType.TAG for r in results)
        assert all(r.snippet is None for r in results)

    def test_one_result_per_note(self, notes_service):
        note = notes_service.create_note("Both", "")
        notes_service.add_tag_to_note(note.id, "work-a", 0)
        notes_service.add_tag_to_note(note.id, "work-b", 1)
        assert [r.note.id for r in notes_service.search_notes_by_tag("work")] == [note.id]

    def test_blank_tag_query(self, notes_service):
        assert notes_service.search_notes_by_tag("  ") == []
