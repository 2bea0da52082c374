"""Cache-first search package."""

from hivecache.search.engine import CacheSearchEngine, extract_content, find_matches
from hivecache.search.models import (
    LineMatch,
    SearchOptions,
    SearchResponse,
    SearchResult,
    SearchStats,
)

__all__ = [
    "CacheSearchEngine",
    "extract_content",
    "find_matches",
    "LineMatch",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "SearchStats",
]
