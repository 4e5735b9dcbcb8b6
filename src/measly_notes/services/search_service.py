"""Service for searching notes by text and by tag."""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from measly_notes.config import config
from measly_notes.exceptions import MeaslyNotesError, SearchError
from measly_notes.models.schema import MatchType, Note, SearchResult, SnippetSegment
from measly_notes.storage.fts_index import FtsIndex
from measly_notes.storage.note_files import read_note_text
from measly_notes.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)

_PHRASE = re.compile(r'"([^"]+)"')
_NON_TERM_CHARS = re.compile(r"[^A-Za-z0-9_-]+")

ELLIPSIS = "..."


def _clean_term(raw: str) -> str:
    return _NON_TERM_CHARS.sub("", raw.strip())


@dataclass
class ParsedQuery:
    """A free-text query split into quoted phrases and loose tokens.

    Attributes:
        phrases: Quoted phrases, verbatim (trimmed).
        tokens: Loose tokens stripped to ``[A-Za-z0-9_-]`` and lowercased.
    """

    phrases: List[str] = field(default_factory=list)
    tokens: List[str] = field(default_factory=list)

    @property
    def phrase_words(self) -> List[List[str]]:
        """Stripped words of every phrase, phrases without words dropped."""
        words = []
        for phrase in self.phrases:
            cleaned = [w for w in (_clean_term(t) for t in phrase.split()) if w]
            if cleaned:
                words.append(cleaned)
        return words

    @property
    def joined(self) -> str:
        """Phrases then tokens, space separated and lowercased."""
        return f"{' '.join(self.phrases)} {' '.join(self.tokens)}".strip().lower()

    @property
    def highlights(self) -> List[str]:
        """Distinct phrase and token strings, longest first."""
        seen = []
        for item in self.phrases + self.tokens:
            if item and item not in seen:
                seen.append(item)
        return sorted(seen, key=len, reverse=True)


def parse_query(query: str) -> ParsedQuery:
    """Extract quoted phrases, then split what is left into tokens."""
    trimmed = (query or "").strip()
    phrases = [p.strip() for p in _PHRASE.findall(trimmed) if p.strip()]
    remainder = _PHRASE.sub(" ", trimmed)
    tokens = [t.lower() for t in (_clean_term(raw) for raw in remainder.split()) if t]
    return ParsedQuery(phrases=phrases, tokens=tokens)


def build_match_expression(parsed: ParsedQuery) -> str:
    """FTS5 expression requiring a prefix match of every phrase word and token.

    Each term is quoted so hyphens and FTS5 keywords are taken literally:
    ``"hello"* AND "wor"*``. Returns ``""`` when no term survives.
    """
    terms = [word for words in parsed.phrase_words for word in words] + parsed.tokens
    return " AND ".join(f'"{term}"*' for term in terms)


def _permissive_pattern(words: Sequence[str]) -> re.Pattern:
    # Words separated by any run of non-word characters; last word may be a prefix
    escaped = [re.escape(w) for w in words]
    prefix = r"\W+".join(escaped[:-1])
    if prefix:
        prefix += r"\W+"
    return re.compile(prefix + escaped[-1] + r"\w*", re.IGNORECASE)


def phrase_matches_permissive(text: str, phrase: str) -> bool:
    """Whether ``phrase`` occurs in ``text`` with loose separators.

    ``"hello wor"`` matches ``"Hello, world"``.
    """
    if not text or not phrase:
        return False
    words = [w for w in (_clean_term(t) for t in phrase.split()) if w]
    if not words:
        return False
    return _permissive_pattern(words).search(text) is not None


def build_snippet(
    content: str, title: str, parsed: ParsedQuery, radius: int
) -> str:
    """Cut a window of ``radius`` characters around the earliest match.

    Phrase and token matches are both considered; the leftmost wins. Empty
    content yields the title.
    """
    if not content:
        return title

    first_index = -1
    match_text = ""
    for words in parsed.phrase_words:
        m = _permissive_pattern(words).search(content)
        if m and (first_index == -1 or m.start() < first_index):
            first_index, match_text = m.start(), m.group(0)
    content_lower = content.lower()
    for token in parsed.tokens:
        idx = content_lower.find(token)
        if idx != -1 and (first_index == -1 or idx < first_index):
            first_index, match_text = idx, content[idx:idx + len(token)]

    center = max(first_index, 0)
    start = max(0, center - radius)
    end = min(len(content), center + len(match_text) + radius)
    snippet = content[start:end]
    if start > 0:
        snippet = ELLIPSIS + snippet
    if end < len(content):
        snippet = snippet + ELLIPSIS
    return snippet


def split_segments(snippet: str, highlights: Sequence[str]) -> List[SnippetSegment]:
    """Split a snippet into plain and highlighted runs.

    Matching is case-insensitive and prefers longer strings, so the text of
    a highlighted run keeps the casing of the source.
    """
    if not snippet:
        return [SnippetSegment(text="")]
    if not highlights:
        return [SnippetSegment(text=snippet)]

    pattern = re.compile("|".join(re.escape(h) for h in highlights), re.IGNORECASE)
    segments: List[SnippetSegment] = []
    last = 0
    for m in pattern.finditer(snippet):
        if m.start() > last:
            segments.append(SnippetSegment(text=snippet[last:m.start()]))
        segments.append(SnippetSegment(text=m.group(0), highlight=True))
        last = m.end()
    if last < len(snippet):
        segments.append(SnippetSegment(text=snippet[last:]))
    return segments


class SearchService:
    """Text and tag search over notes.

    Text search gets candidates from the FTS index and re-verifies each one
    against the live file, since the index can lag behind the file. When the
    index fails, candidates come from the next strategy in line: the same
    expression inlined into SQL, then a scan of every note.
    """

    def __init__(
        self,
        note_repository: NoteRepository,
        fts_index: FtsIndex,
        max_results: Optional[int] = None,
        snippet_radius: Optional[int] = None,
    ):
        self.note_repository = note_repository
        self.fts_index = fts_index
        self.max_results = max_results or config.search_max_results
        self.snippet_radius = snippet_radius if snippet_radius is not None else config.snippet_radius

    @property
    def strategies(self) -> List[Tuple[str, Callable[[str], List[Note]]]]:
        """Candidate generators, tried in order."""
        return [
            ("fts", self._fts_candidates),
            ("fts_inline", self._fts_inline_candidates),
            ("scan", self._scan_candidates),
        ]

    def search_notes(self, query: str) -> List[SearchResult]:
        """Search notes by free text with optional quoted phrases.

        Never raises for a malformed query: a query with no usable term
        returns no results.

        Raises:
            SearchError: Only if the final full scan fails.
        """
        parsed = parse_query(query)
        expression = build_match_expression(parsed)
        if not expression:
            return []

        candidates: List[Note] = []
        strategies = self.strategies
        for index, (name, strategy) in enumerate(strategies):
            is_last = index == len(strategies) - 1
            try:
                candidates = strategy(expression)
                break
            except MeaslyNotesError as e:
                if is_last:
                    raise SearchError(
                        f"Search failed: {e.message}", query=query, original_error=e
                    ) from e
                logger.warning(f"Search strategy '{name}' failed, trying next: {e}")

        results: List[SearchResult] = []
        for note in candidates:
            result = self._verify_and_build(note, parsed)
            if result is None:
                continue
            results.append(result)
            if len(results) >= self.max_results:
                break
        logger.debug(f"Search '{query}' returned {len(results)} results")
        return results

    def search_notes_by_tag(self, tag_name: str) -> List[SearchResult]:
        """Notes carrying a tag whose name contains ``tag_name``.

        Uses the database only; the index and the files are not touched.
        """
        if not tag_name or not tag_name.strip():
            return []
        notes = self.note_repository.find_by_tag_fragment(tag_name)
        return [SearchResult(note=note, match_type=MatchType.TAG) for note in notes]

    # ------------------------------------------------------------------
    # Candidate strategies
    # ------------------------------------------------------------------

    def _fts_candidates(self, expression: str) -> List[Note]:
        return self.note_repository.get_by_ids(
            self.fts_index.match(expression, self.max_results)
        )

    def _fts_inline_candidates(self, expression: str) -> List[Note]:
        return self.note_repository.get_by_ids(
            self.fts_index.match_inline(expression, self.max_results)
        )

    def _scan_candidates(self, expression: str) -> List[Note]:
        logger.info("Index unavailable, scanning every note")
        return self.note_repository.get_all()

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _verify_and_build(self, note: Note, parsed: ParsedQuery) -> Optional[SearchResult]:
        """Check a candidate against its file and build the highlighted result."""
        content = read_note_text(note.file_path)
        title = note.title or ""

        for phrase in parsed.phrases:
            if not (phrase_matches_permissive(content, phrase)
                    or phrase_matches_permissive(title, phrase)):
                return None
        content_lower, title_lower = content.lower(), title.lower()
        for token in parsed.tokens:
            if token not in content_lower and token not in title_lower:
                return None

        snippet = build_snippet(content, title, parsed, self.snippet_radius)
        match_type = MatchType.TITLE if parsed.joined in title_lower else MatchType.CONTENT
        return SearchResult(
            note=note,
            match_type=match_type,
            snippet=split_segments(snippet, parsed.highlights),
        )
