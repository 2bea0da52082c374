"""Tests for the cache-first search engine."""

import json
import os
import shutil
import time

import pytest

from hivecache.cache.disk_cache import PersistentCache
from hivecache.cache.models import KeyKind
from hivecache.config import SearchConfig
from hivecache.exceptions import SearchPatternException
from hivecache.file_access import FileAccessLayer
from hivecache.search.engine import CacheSearchEngine, extract_content, find_matches
from hivecache.search.models import SearchOptions, SearchResponse


def rg_match(path, line_number, text, match, start):
    """Build one ripgrep --json match event."""
    return json.dumps({
        "type": "match",
        "data": {
            "path": {"text": path},
            "lines": {"text": text + "\n"},
            "line_number": line_number,
            "absolute_offset": 0,
            "submatches": [{"match": {"text": match}, "start": start, "end": start + len(match)}],
        },
    })


@pytest.fixture
def repo(tmp_path):
    root = tmp_path / "repo"
    (root / "docs").mkdir(parents=True)
    (root / "src").mkdir()
    return root


@pytest.fixture
def files_cache(tmp_path):
    return PersistentCache("files", cache_root=str(tmp_path / "cache"))


@pytest.fixture
def engine(files_cache, repo):
    return CacheSearchEngine(files_cache, SearchConfig(root=repo))


@pytest.fixture
def fake_tool(engine, monkeypatch):
    """Replace the external search tool with canned output."""
    calls = []
    state = {"output": ""}

    async def run(command):
        calls.append(command)
        return state["output"]

    monkeypatch.setattr(engine, "_run_tool", run)
    state["calls"] = calls
    return state


class TestHelpers:
    """Tests for content extraction and line matching."""

    def test_extract_content(self):
        assert extract_content("plain text") == "plain text"
        assert extract_content({"content": "x", "timestamp": 1}) == "x"
        assert extract_content('{"content": "inner"}') == "inner"
        assert extract_content('{"other": 1}') == '{"other": 1}'
        assert extract_content([1, 2]) == "[1, 2]"

    def test_find_matches_positions(self, engine):
        regex = engine.compile_pattern("cache", SearchOptions())
        matches = find_matches("no\n  my cache and Cache\n", regex, 10)

        assert [(m.line, m.column, m.match) for m in matches] == [
            (2, 6, "cache"),
            (2, 16, "Cache"),
        ]
        assert matches[0].text == "my cache and Cache"

    def test_find_matches_cap(self, engine):
        regex = engine.compile_pattern("x", SearchOptions())
        assert len(find_matches("x\n" * 10, regex, 3)) == 3


class TestSearchInCache:
    """Tests for the cache phase."""

    async def test_single_cached_file(self, files_cache, engine):
        await files_cache.set("/tmp/a.txt", {"content": "hello cache world", "timestamp": 1000})

        response = await engine.search_in_cache("cache")

        assert len(response.results) == 1
        result = response.results[0]
        assert result.file == "/tmp/a.txt"
        assert result.cached is True
        assert result.matches[0].line == 1
        assert result.matches[0].match == "cache"
        assert response.stats.cache_hits == 1

    async def test_existing_file_searched_as_stored_by_default(self, files_cache, engine, repo):
        target = repo / "a.txt"
        target.write_text("changed on disk since caching")
        await files_cache.set(target.as_posix(), {"content": "hello cache world", "timestamp": 1000})

        response = await engine.search_in_cache("cache")

        assert len(response.results) == 1
        assert response.results[0].path == "a.txt"
        assert response.results[0].matches[0].line == 1
        assert response.results[0].matches[0].match == "cache"

    async def test_missing_backing_file_still_searched(self, files_cache, engine, repo):
        gone = (repo / "gone.txt").as_posix()
        await files_cache.set(gone, {"content": "hello cache world", "timestamp": 1000})

        response = await engine.search_in_cache("cache", SearchOptions(verify_freshness=True))

        assert [r.path for r in response.results] == ["gone.txt"]

    async def test_case_and_literal_modes(self, files_cache, engine, repo):
        await files_cache.set(
            (repo / "a.txt").as_posix(), {"content": "Cache c.che", "timestamp": 10**15}
        )

        insensitive = await engine.search_in_cache("CACHE")
        sensitive = await engine.search_in_cache("CACHE", SearchOptions(ignore_case=False))
        literal = await engine.search_in_cache("c.che")
        regex = await engine.search_in_cache(r"c\w+e", SearchOptions(regex=True))

        assert len(insensitive.results) == 1
        assert sensitive.results == []
        assert [m.match for m in literal.results[0].matches] == ["c.che"]
        assert regex.results[0].matches[0].match == "Cache"

    async def test_max_matches_per_file(self, files_cache, engine, repo):
        await files_cache.set(
            (repo / "a.txt").as_posix(), {"content": "hit\n" * 20, "timestamp": 10**15}
        )

        response = await engine.search_in_cache("hit", SearchOptions(max_matches=3))

        assert len(response.results[0].matches) == 3

    async def test_only_content_kinds_are_searched(self, files_cache, engine):
        await files_cache.set("config:recipes", {"content": "cache"})
        await files_cache.set("search:old", {"content": "cache"})
        await files_cache.set("script:/opt/tools/run.sh", {"content": "echo cache", "timestamp": 0})

        response = await engine.search_in_cache("cache")

        assert [r.file for r in response.results] == ["/opt/tools/run.sh"]

    async def test_explicit_kind_beats_key_shape(self, files_cache, engine, repo):
        await files_cache.set("notes", {"content": "cache"}, kind=KeyKind.CONFIG)

        response = await engine.search_in_cache("cache")

        assert response.results == []

    async def test_stale_entries_are_skipped(self, files_cache, engine, repo):
        layer = FileAccessLayer(files_cache)
        target = repo / "docs" / "a.md"
        await layer.write(target, "cache old")

        target.write_text("changed")
        future = time.time() + 10
        os.utime(target, (future, future))

        fresh_only = await engine.search_in_cache(
            "cache", SearchOptions(verify_freshness=True)
        )
        everything = await engine.search_in_cache("cache")

        assert fresh_only.results == []
        assert "docs/a.md" not in fresh_only.covered
        assert [r.path for r in everything.results] == ["docs/a.md"]

    async def test_covered_includes_non_matching_files(self, files_cache, engine, repo):
        layer = FileAccessLayer(files_cache)
        await layer.write(repo / "docs" / "a.md", "cache")
        await layer.write(repo / "docs" / "b.md", "nothing here")

        response = await engine.search_in_cache("cache")

        assert [r.path for r in response.results] == ["docs/a.md"]
        assert sorted(response.covered) == ["docs/a.md", "docs/b.md"]

    async def test_filename_mode(self, files_cache, engine, repo):
        await files_cache.set((repo / "docs" / "readme.md").as_posix(), {"content": "x"})
        await files_cache.set((repo / "docs" / "guide.md").as_posix(), {"content": "readme"})

        response = await engine.search_in_cache(
            "readme", SearchOptions(content_search=False)
        )

        assert [r.path for r in response.results] == ["docs/readme.md"]
        assert response.results[0].type == "filename"
        assert response.results[0].matches == []

    async def test_invalid_regex(self, engine):
        with pytest.raises(SearchPatternException) as exc_info:
            await engine.search_in_cache("(", SearchOptions(regex=True))
        assert exc_info.value.error_code == "INVALID_PATTERN"


class TestSearchOnDisk:
    """Tests for the disk phase."""

    def test_build_command(self, engine, repo):
        command = engine.build_command(
            "needle",
            [(repo / "docs" / "a.md").as_posix(), "./src/[x].py", "/elsewhere/c.txt"],
            SearchOptions(max_matches=7),
        )

        assert command[:4] == ["rg", "--json", "--max-count", "7"]
        assert "-i" in command
        assert "-F" in command
        globs = [command[i + 1] for i, arg in enumerate(command) if arg == "--glob"]
        assert globs == ["!/docs/a.md", "!/src/\\[x\\].py"]
        assert command[-4:] == ["-e", "needle", "--", "."]

    def test_build_command_regex_case_sensitive(self, engine):
        command = engine.build_command(
            "a+", [], SearchOptions(regex=True, ignore_case=False)
        )
        assert "-i" not in command
        assert "-F" not in command
        assert "--glob" not in command

    def test_parse_output(self, engine, repo):
        output = "\n".join([
            json.dumps({"type": "begin", "data": {"path": {"text": "./src/b.py"}}}),
            rg_match("./src/b.py", 3, "x = cache", "cache", 4),
            "not json at all",
            json.dumps({"type": "match", "data": {}}),
            rg_match("./src/b.py", 9, "  cache()", "cache", 2),
            rg_match("docs\\c.md", 1, "cache", "cache", 0),
            json.dumps({"type": "summary", "data": {}}),
        ])

        results = engine.parse_output(output, max_results=100)

        assert [r.path for r in results] == ["src/b.py", "docs/c.md"]
        b = results[0]
        assert b.file == (repo / "src" / "b.py").as_posix()
        assert [(m.line, m.column, m.text) for m in b.matches] == [
            (3, 5, "x = cache"),
            (9, 3, "cache()"),
        ]

    def test_parse_output_caps_total_matches(self, engine):
        output = "\n".join(rg_match(f"./f{i}.txt", 1, "cache", "cache", 0) for i in range(10))
        assert len(engine.parse_output(output, max_results=4)) == 4

    async def test_missing_tool_yields_empty_result(self, files_cache, repo):
        engine = CacheSearchEngine(
            files_cache, SearchConfig(root=repo, tool="definitely-not-a-real-binary-xyz")
        )

        response = await engine.search_on_disk("cache")

        assert response.results == []
        assert response.stats.disk_hits == 0

    async def test_filename_walk(self, engine, repo):
        (repo / "docs" / "readme.md").write_text("x")
        (repo / "src" / "README.txt").write_text("x")
        (repo / ".hidden").mkdir()
        (repo / ".hidden" / "readme").write_text("x")
        (repo / "node_modules").mkdir()
        (repo / "node_modules" / "readme.md").write_text("x")

        response = await engine.search_on_disk(
            "readme", ["docs/readme.md"], SearchOptions(content_search=False)
        )

        assert [r.path for r in response.results] == ["src/README.txt"]


class TestCombinedSearch:
    """Tests for the two-phase search."""

    async def test_no_duplicates_across_path_forms(self, files_cache, engine, repo, fake_tool):
        layer = FileAccessLayer(files_cache)
        await layer.write(repo / "docs" / "a.md", "cache me")
        (repo / "src" / "b.py").write_text("x = cache")

        fake_tool["output"] = "\n".join([
            rg_match("./docs/a.md", 1, "cache me", "cache", 0),
            rg_match((repo / "docs" / "a.md").as_posix(), 1, "cache me", "cache", 0),
            rg_match("docs\\a.md", 1, "cache me", "cache", 0),
            rg_match("./src/b.py", 1, "x = cache", "cache", 4),
        ])

        response = await engine.combined_search("cache")

        assert [(r.path, r.cached) for r in response.results] == [
            ("docs/a.md", True),
            ("src/b.py", False),
        ]
        assert response.stats.cache_hits == 1
        assert response.stats.disk_hits == 1
        assert response.stats.total_matches == 2

        command = fake_tool["calls"][0]
        assert "!/docs/a.md" in command

    async def test_covered_non_matches_are_excluded_from_disk(
        self, files_cache, engine, repo, fake_tool
    ):
        layer = FileAccessLayer(files_cache)
        await layer.write(repo / "docs" / "a.md", "cache")
        await layer.write(repo / "docs" / "b.md", "unrelated")

        await engine.combined_search("cache")

        command = fake_tool["calls"][0]
        globs = [command[i + 1] for i, arg in enumerate(command) if arg == "--glob"]
        assert globs == ["!/docs/a.md", "!/docs/b.md"]

    async def test_cache_only(self, files_cache, engine, repo, fake_tool):
        await files_cache.set((repo / "a.txt").as_posix(), {"content": "cache"})

        response = await engine.combined_search(
            "cache", SearchOptions(include_non_cached=False)
        )

        assert fake_tool["calls"] == []
        assert len(response.results) == 1
        assert response.stats.disk_hits == 0

    async def test_result_memoization(self, files_cache, repo, tmp_path):
        results_cache = PersistentCache("search", cache_root=str(tmp_path / "cache"))
        engine = CacheSearchEngine(files_cache, SearchConfig(root=repo), results_cache)
        key = (repo / "a.txt").as_posix()
        await files_cache.set(key, {"content": "cache"})
        options = SearchOptions(include_non_cached=False)

        first = await engine.search("cache", options, cache_results=True)
        await files_cache.delete(key)
        second = await engine.search("cache", options, cache_results=True)
        uncached = await engine.search("cache", options)

        assert isinstance(second, SearchResponse)
        assert [r.path for r in second.results] == [r.path for r in first.results] == ["a.txt"]
        assert uncached.results == []

        stored = await results_cache.entries()
        assert len(stored) == 1
        assert stored[0].kind == KeyKind.SEARCH
        assert stored[0].key.startswith("search:")

    @pytest.mark.skipif(shutil.which("rg") is None, reason="ripgrep not installed")
    async def test_with_ripgrep(self, files_cache, engine, repo):
        layer = FileAccessLayer(files_cache)
        await layer.write(repo / "docs" / "a.md", "needle in cache")
        (repo / "src" / "b.py").write_text("# needle on disk\n")
        (repo / "src" / "c.py").write_text("nothing\n")

        response = await engine.combined_search("needle")

        by_path = {r.path: r for r in response.results}
        assert set(by_path) == {"docs/a.md", "src/b.py"}
        assert by_path["docs/a.md"].cached is True
        assert by_path["src/b.py"].cached is False
        assert by_path["src/b.py"].matches[0].line == 1

    @pytest.mark.skipif(shutil.which("rg") is None, reason="ripgrep not installed")
    async def test_cached_root_file_does_not_hide_same_name_in_subdir(
        self, files_cache, engine, repo
    ):
        layer = FileAccessLayer(files_cache)
        await layer.write(repo / "a.txt", "nothing here")
        (repo / "sub").mkdir()
        (repo / "sub" / "a.txt").write_text("needle\n")

        response = await engine.combined_search("needle")

        assert [r.path for r in response.results] == ["sub/a.txt"]
        assert response.results[0].cached is False
