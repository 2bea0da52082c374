"""
Cache-first text search.

Queries are answered from cached file contents first, at no I/O cost. Only
files the cache does not cover are searched on disk with an external
line-oriented search tool (ripgrep by default), and anything the cache
already answered for is excluded from that phase.
"""

import asyncio
import json
import logging
import os
import re
import time
from pathlib import Path, PurePosixPath
from typing import Any, Iterable, List, Optional

from hivecache.cache.models import CONTENT_KINDS, FileRecord, KeyKind, key_path, mtime_ms
from hivecache.config import SearchConfig
from hivecache.exceptions import SearchPatternException
from hivecache.interfaces import ICacheBackend
from hivecache.paths import normalize_path, to_glob
from hivecache.search.models import (
    LineMatch,
    SearchOptions,
    SearchResponse,
    SearchResult,
    SearchStats,
)

logger = logging.getLogger(__name__)

# Upper bound on --glob arguments passed to the search tool
MAX_EXCLUDE_GLOBS = 1000

SKIP_DIRS = frozenset({"node_modules"})


def extract_content(value: Any) -> str:
    """
    Pull searchable text out of a cached value.

    Strings are used as-is unless they are JSON objects with a ``content``
    field; dicts yield their ``content`` field; anything else is searched as
    its JSON form.
    """
    if isinstance(value, str):
        if value.lstrip().startswith("{"):
            try:
                parsed = json.loads(value)
            except ValueError:
                return value
            if isinstance(parsed, dict) and isinstance(parsed.get("content"), str):
                return parsed["content"]
        return value
    if isinstance(value, dict) and "content" in value:
        return value["content"] if isinstance(value["content"], str) else ""
    return json.dumps(value)


def find_matches(content: str, regex: re.Pattern, max_matches: int) -> List[LineMatch]:
    """Scan ``content`` line by line, stopping after ``max_matches`` matches."""
    matches: List[LineMatch] = []
    for number, line in enumerate(content.split("\n"), start=1):
        for m in regex.finditer(line):
            matches.append(LineMatch(
                line=number,
                column=m.start() + 1,
                text=line.strip(),
                match=m.group(0),
            ))
            if len(matches) >= max_matches:
                return matches
    return matches


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class CacheSearchEngine:
    """
    Two-phase search over a cache namespace and a directory tree.

    Attributes:
        cache: Namespace holding file contents (FileRecords)
        config: Search root, tool and limits
        result_cache: Optional namespace for memoising whole responses

    Example:
        >>> engine = CacheSearchEngine(files_cache, SearchConfig(root=Path("/repo")))
        >>> response = await engine.combined_search("TODO")
        >>> response.stats.cache_hits, response.stats.disk_hits
        (3, 1)
    """

    def __init__(
        self,
        cache: ICacheBackend,
        config: Optional[SearchConfig] = None,
        result_cache: Optional[ICacheBackend] = None,
    ):
        self.cache = cache
        self.config = config or SearchConfig()
        self.root = Path(self.config.root).expanduser().resolve()
        self.result_cache = result_cache

    def default_options(self) -> SearchOptions:
        return SearchOptions(
            max_matches=self.config.max_matches,
            max_disk_results=self.config.max_disk_results,
        )

    def compile_pattern(self, pattern: str, options: SearchOptions) -> re.Pattern:
        """
        Compile a literal or regex pattern.

        Raises:
            SearchPatternException: If a regex pattern does not compile
        """
        flags = re.IGNORECASE if options.ignore_case else 0
        source = pattern if options.regex else re.escape(pattern)
        try:
            return re.compile(source, flags)
        except re.error as e:
            raise SearchPatternException(
                f"Invalid search pattern: {pattern}", details={"error": str(e)}
            ) from e

    async def _is_fresh(self, file_path: str, value: Any) -> bool:
        record = FileRecord.from_value(value)
        if record is None:
            return True
        try:
            current = await asyncio.to_thread(mtime_ms, Path(file_path))
        except OSError:
            # Nothing on disk to compare against; the cache is all we have
            return True
        return record.is_fresh(current)

    async def search_in_cache(
        self, pattern: str, options: Optional[SearchOptions] = None
    ) -> SearchResponse:
        """
        Search cached file contents (or file names).

        Only entries tagged as file or script content are considered. Results
        are not capped in total; ``max_matches`` caps matches per file.

        Args:
            pattern: Literal text or regex (see ``options.regex``)
            options: Search options; defaults come from the engine config

        Returns:
            SearchResponse with one result per matching file and the list of
            paths the cache covered

        Raises:
            SearchPatternException: If the pattern is an invalid regex
        """
        options = options or self.default_options()
        regex = self.compile_pattern(pattern, options)
        start = time.perf_counter()

        entries = await self.cache.entries()
        results: List[SearchResult] = []
        covered: List[str] = []

        for meta in entries:
            if meta.kind not in CONTENT_KINDS:
                continue

            value = await self.cache.peek(meta.key)
            if value is None:
                continue

            file_path = key_path(meta.key, meta.kind)
            if options.verify_freshness and not await self._is_fresh(file_path, value):
                logger.debug(f"Skipping stale cache entry: {file_path}")
                continue

            path = normalize_path(file_path, self.root)
            covered.append(path)

            if options.content_search:
                matches = find_matches(extract_content(value), regex, options.max_matches)
                if matches:
                    results.append(SearchResult(
                        file=file_path, path=path, matches=matches, cached=True,
                    ))
            elif regex.search(PurePosixPath(file_path.replace("\\", "/")).name):
                results.append(SearchResult(
                    file=file_path, path=path, cached=True, type="filename",
                ))

        stats = SearchStats(
            cache_hits=len(results),
            cache_time=_elapsed_ms(start),
            total_matches=len(results),
            files_searched=len(covered),
        )
        stats.total_time = stats.cache_time
        logger.debug(f"Cache phase: {len(results)} files matched out of {len(covered)}")
        return SearchResponse(results=results, stats=stats, covered=covered)

    def build_command(
        self, pattern: str, exclude_paths: Iterable[str], options: SearchOptions
    ) -> List[str]:
        """Build the search tool's argument list."""
        command = [self.config.tool, "--json", "--max-count", str(options.max_matches)]
        if options.ignore_case:
            command.append("-i")
        if not options.regex:
            command.append("-F")

        globs = 0
        for path in exclude_paths:
            relative = normalize_path(path, self.root)
            if relative.startswith("/") or relative == ".":
                continue
            if globs >= MAX_EXCLUDE_GLOBS:
                break
            # Leading slash anchors the glob to the root so it matches only this path
            command.extend(["--glob", f"!/{to_glob(relative)}"])
            globs += 1

        command.extend(["-e", pattern, "--", "."])
        return command

    async def _run_tool(self, command: List[str]) -> Optional[str]:
        """
        Run the search tool and return its stdout.

        Returns None when the tool is missing, fails, or times out.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.root),
                env={**os.environ, "LC_ALL": "C.UTF-8"},
            )
        except OSError as e:
            logger.info(f"Search tool unavailable ({self.config.tool}): {e}")
            return None

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.config.timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f"Search tool timed out after {self.config.timeout} seconds")
            return None

        # ripgrep: 0 = matches, 1 = no matches, 2 = error
        if process.returncode not in (0, 1):
            logger.warning(
                f"Search tool exited with {process.returncode}: "
                f"{stderr.decode('utf-8', errors='replace').strip()[:200]}"
            )
            return None

        return stdout.decode("utf-8", errors="replace")

    def parse_output(self, output: str, max_results: int) -> List[SearchResult]:
        """
        Parse line-delimited JSON match events into per-file results.

        Malformed lines and non-match events are skipped. At most
        ``max_results`` line matches are kept.
        """
        grouped: dict[str, SearchResult] = {}
        taken = 0

        for line in output.splitlines():
            if taken >= max_results:
                break
            if not line.strip():
                continue
            try:
                event = json.loads(line)
                if event.get("type") != "match":
                    continue
                data = event["data"]
                raw_path = data["path"]["text"]
                line_number = int(data["line_number"])
                text = data.get("lines", {}).get("text", "")
                submatches = data.get("submatches") or []
            except (ValueError, KeyError, TypeError, AttributeError):
                continue

            first = submatches[0] if submatches else {}
            path = normalize_path(raw_path, self.root)
            result = grouped.get(path)
            if result is None:
                file_path = path if path.startswith("/") else (self.root / path).as_posix()
                result = grouped[path] = SearchResult(file=file_path, path=path)

            result.matches.append(LineMatch(
                line=line_number,
                column=int(first.get("start", 0)) + 1,
                text=text.rstrip("\n").strip(),
                match=first.get("match", {}).get("text", ""),
            ))
            taken += 1

        return list(grouped.values())

    def _walk_filenames(
        self, regex: re.Pattern, excluded: set, limit: int
    ) -> List[SearchResult]:
        results: List[SearchResult] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(
                d for d in dirnames if not d.startswith(".") and d not in SKIP_DIRS
            )
            for name in sorted(filenames):
                if name.startswith(".") or not regex.search(name):
                    continue
                full = Path(dirpath) / name
                path = normalize_path(full, self.root)
                if path in excluded:
                    continue
                results.append(SearchResult(
                    file=full.as_posix(), path=path, type="filename",
                ))
                if len(results) >= limit:
                    return results
        return results

    async def search_on_disk(
        self,
        pattern: str,
        exclude_paths: Iterable[str] = (),
        options: Optional[SearchOptions] = None,
    ) -> SearchResponse:
        """
        Search the configured root on disk, skipping ``exclude_paths``.

        Content searches run the external tool; a missing tool, a failing
        run, or unparseable output yields an empty result rather than an
        error. Filename searches walk the tree directly.

        Args:
            pattern: Literal text or regex
            exclude_paths: Paths already answered by the cache, in any form
            options: Search options

        Returns:
            SearchResponse with one result per file, capped at
            ``max_disk_results`` line matches in total
        """
        options = options or self.default_options()
        exclude = list(exclude_paths)
        start = time.perf_counter()

        if options.content_search:
            command = self.build_command(pattern, exclude, options)
            logger.debug(f"Disk search: excluding {len(exclude)} paths")
            output = await self._run_tool(command)
            results = self.parse_output(output, options.max_disk_results) if output else []
        else:
            regex = self.compile_pattern(pattern, options)
            excluded = {normalize_path(p, self.root) for p in exclude}
            results = await asyncio.to_thread(
                self._walk_filenames, regex, excluded, options.max_disk_results
            )

        stats = SearchStats(
            disk_hits=len(results),
            disk_time=_elapsed_ms(start),
            total_matches=len(results),
        )
        stats.total_time = stats.disk_time
        return SearchResponse(results=results, stats=stats)

    async def combined_search(
        self, pattern: str, options: Optional[SearchOptions] = None
    ) -> SearchResponse:
        """
        Cache-first search across both sources.

        Runs the cache phase, excludes every path it covered from the disk
        phase, and drops any disk result whose canonical path the cache
        already answered for, so each file is reported at most once.

        Args:
            pattern: Literal text or regex
            options: Search options

        Returns:
            SearchResponse with cache results first, then disk results
        """
        options = options or self.default_options()
        start = time.perf_counter()

        cache_response = await self.search_in_cache(pattern, options)
        disk_response = SearchResponse()

        if options.include_non_cached:
            # Matched paths first so they survive the glob cap
            matched = [r.path for r in cache_response.results]
            matched_set = set(matched)
            exclude = matched + [p for p in cache_response.covered if p not in matched_set]
            disk_response = await self.search_on_disk(pattern, exclude, options)

        seen = set(cache_response.covered)
        seen.update(r.path for r in cache_response.results)
        disk_results: List[SearchResult] = []
        for result in disk_response.results:
            if result.path in seen:
                logger.debug(f"Dropping duplicate disk result: {result.path}")
                continue
            seen.add(result.path)
            disk_results.append(result)

        results = cache_response.results + disk_results
        stats = SearchStats(
            cache_hits=len(cache_response.results),
            disk_hits=len(disk_results),
            cache_time=cache_response.stats.cache_time,
            disk_time=disk_response.stats.disk_time,
            total_time=_elapsed_ms(start),
            total_matches=len(results),
            files_searched=cache_response.stats.files_searched,
        )
        logger.info(
            f"Search '{pattern}': {stats.cache_hits} cache hits, "
            f"{stats.disk_hits} disk hits in {stats.total_time}ms"
        )
        return SearchResponse(results=results, stats=stats, covered=cache_response.covered)

    def _result_key(self, pattern: str, options: SearchOptions) -> str:
        payload = {"pattern": pattern, "root": self.root.as_posix(), **options.to_dict()}
        return "search:" + json.dumps(payload, sort_keys=True)

    async def search(
        self,
        pattern: str,
        options: Optional[SearchOptions] = None,
        cache_results: bool = False,
    ) -> SearchResponse:
        """
        Run ``combined_search``, optionally memoising the response.

        With ``cache_results`` and a ``result_cache`` configured, a response
        stored for the same pattern, root and options is returned until its
        TTL runs out.
        """
        options = options or self.default_options()
        if not cache_results or self.result_cache is None:
            return await self.combined_search(pattern, options)

        key = self._result_key(pattern, options)
        stored = await self.result_cache.get(key)
        if isinstance(stored, dict):
            try:
                return SearchResponse.from_dict(stored)
            except (KeyError, TypeError) as e:
                logger.warning(f"Discarding unreadable cached search result: {e}")

        response = await self.combined_search(pattern, options)
        await self.result_cache.set(key, response.to_dict(), kind=KeyKind.SEARCH)
        return response
