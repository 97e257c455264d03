"""Fuzzy search over cached entries."""

from __future__ import annotations

import difflib
from collections.abc import Iterable

from .config import SEARCH_MIN_MATCH_CHARS, SEARCH_THRESHOLD
from .models import Entry


def _field_score(query: str, text: str) -> float:
    """Score how much of ``query`` appears in ``text`` (0-1).

    A substring hit scores 1.0. Otherwise the score is the share of query
    characters covered by common runs of at least SEARCH_MIN_MATCH_CHARS.
    """
    if not text:
        return 0.0
    text = text.lower()
    if query in text:
        return 1.0

    # query as the "b" sequence keeps the matcher's index small on long pages
    matcher = difflib.SequenceMatcher(None, text, query, autojunk=False)
    covered = sum(
        block.size
        for block in matcher.get_matching_blocks()
        if block.size >= SEARCH_MIN_MATCH_CHARS
    )
    return covered / len(query)


def score_entry(entry: Entry, query: str) -> float:
    """Best score across the entry's path, raw text content and title."""
    fields = (entry.content_path, entry.text or "", entry.title or "")
    return max(_field_score(query, field) for field in fields)


def fuzzy_search(entries: Iterable[Entry], query: str, limit: int | None = None) -> list[Entry]:
    """Case-insensitive fuzzy search.

    Args:
        entries: Entries to search, in a stable order used to break ties.
        query: Search text. Queries shorter than SEARCH_MIN_MATCH_CHARS never match.
        limit: Maximum number of results (None for all).

    Returns:
        Matching entries, best score first.
    """
    query = query.strip().lower()
    if len(query) < SEARCH_MIN_MATCH_CHARS:
        return []

    min_score = 1.0 - SEARCH_THRESHOLD
    scored: list[tuple[float, int, Entry]] = []
    for position, entry in enumerate(entries):
        score = score_entry(entry, query)
        if score >= min_score:
            scored.append((score, position, entry))

    scored.sort(key=lambda item: (-item[0], item[1]))
    results = [entry for _, _, entry in scored]
    return results[:limit] if limit is not None else results
