"""Keyword-level deduplication and pagination over candidate rows.

Pure functions: they accept any iterable of objects exposing `id`,
`keyword` and `search_volume`, so they run the same over ORM rows and plain
test doubles.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List


def _beats(candidate, current) -> bool:
    """Higher search volume wins; equal volumes keep the lower id."""
    cv, kv = candidate.search_volume or 0, current.search_volume or 0
    if cv != kv:
        return cv > kv
    return candidate.id < current.id


def dedupe_by_keyword(rows: Iterable) -> List:
    """One representative row per distinct keyword text.

    The input order does not matter: the winner for each keyword is always
    the row with the highest search_volume (ties: lowest id). The output
    keeps first-seen keyword order.
    """
    best: Dict[str, Any] = {}
    for row in rows:
        current = best.get(row.keyword)
        if current is None or _beats(row, current):
            best[row.keyword] = row
    return list(best.values())


@dataclass
class SearchPage:
    rows: List = field(default_factory=list)
    total: int = 0


def paginate(rows: List, page: int, page_size: int) -> List:
    offset = (page - 1) * page_size
    return rows[offset:offset + page_size]
