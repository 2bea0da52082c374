"""Search options and result records."""

from dataclasses import asdict, dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class SearchOptions:
    """
    Options shared by both search phases.

    Attributes:
        regex: Treat the pattern as a regular expression instead of a literal
        ignore_case: Case-insensitive matching
        content_search: Search file contents; False matches file names instead
        max_matches: Maximum line matches reported per file
        max_disk_results: Maximum line matches taken from the disk phase
        include_non_cached: Run the disk phase at all
        verify_freshness: Skip cached entries whose file changed since caching (opt-in)
    """
    regex: bool = False
    ignore_case: bool = True
    content_search: bool = True
    max_matches: int = 5
    max_disk_results: int = 500
    include_non_cached: bool = True
    verify_freshness: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class LineMatch:
    """One matching line. ``line`` and ``column`` are 1-based."""
    line: int
    column: int
    text: str
    match: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SearchResult:
    """
    Matches for one file.

    Attributes:
        file: Absolute path of the file
        path: Canonical path relative to the search root, used for de-duplication
        matches: Matching lines (empty for filename matches)
        cached: True if the result came from the cache phase
        type: "content" or "filename"
    """
    file: str
    path: str
    matches: List[LineMatch] = field(default_factory=list)
    cached: bool = False
    type: str = "content"

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "path": self.path,
            "matches": [m.to_dict() for m in self.matches],
            "cached": self.cached,
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SearchResult":
        return cls(
            file=data["file"],
            path=data["path"],
            matches=[LineMatch(**m) for m in data.get("matches", [])],
            cached=data.get("cached", False),
            type=data.get("type", "content"),
        )


@dataclass
class SearchStats:
    """Timings are in milliseconds."""
    cache_hits: int = 0
    disk_hits: int = 0
    cache_time: float = 0.0
    disk_time: float = 0.0
    total_time: float = 0.0
    total_matches: int = 0
    files_searched: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SearchResponse:
    """
    Results of one search phase or of a combined search.

    ``covered`` lists the canonical paths the cache phase answered for,
    matched or not; the disk phase must not report them again.
    """
    results: List[SearchResult] = field(default_factory=list)
    stats: SearchStats = field(default_factory=SearchStats)
    covered: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "stats": self.stats.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SearchResponse":
        return cls(
            results=[SearchResult.from_dict(r) for r in data.get("results", [])],
            stats=SearchStats(**data.get("stats", {})),
        )
