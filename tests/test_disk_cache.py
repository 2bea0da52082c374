"""Tests for the PersistentCache implementation."""

import asyncio
import json
import tempfile
from pathlib import Path

import pytest

from hivecache.cache.disk_cache import PersistentCache
from hivecache.cache.models import KeyKind


@pytest.fixture
async def temp_cache():
    """Create a temporary cache namespace for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield PersistentCache("files", cache_root=tmpdir, max_size=1024 * 1024)


class TestPersistentCache:
    """Test suite for PersistentCache."""

    async def test_set_and_get(self, temp_cache):
        """Test basic set and get operations."""
        assert await temp_cache.set("test_key", "test_value") is True
        assert await temp_cache.get("test_key") == "test_value"

    async def test_get_nonexistent_key(self, temp_cache):
        """Test getting a key that doesn't exist."""
        assert await temp_cache.get("nonexistent") is None

    async def test_round_trip_complex_values(self, temp_cache):
        """Test caching nested JSON values."""
        value = {"nested": {"data": [1, 2, 3]}, "flag": True, "none": None}
        await temp_cache.set("dict_key", value)
        assert await temp_cache.get("dict_key") == value

        await temp_cache.set("list_key", [1, "two", {"three": 3.0}])
        assert await temp_cache.get("list_key") == [1, "two", {"three": 3.0}]

    async def test_on_disk_layout(self, temp_cache):
        """Test that an entry is a data file plus a metadata sidecar."""
        await temp_cache.set("/repo/a.txt", {"content": "x", "timestamp": 1})

        data_path = temp_cache.data_path("/repo/a.txt")
        meta_path = temp_cache.meta_path("/repo/a.txt")
        assert data_path.parent == temp_cache.cache_dir
        assert data_path.name.endswith(".cache")
        assert meta_path.name == data_path.name + ".meta"

        meta = json.loads(meta_path.read_text())
        for field in ("key", "namespace", "created", "expires", "lastAccess", "hits", "size"):
            assert field in meta
        assert meta["key"] == "/repo/a.txt"
        assert meta["namespace"] == "files"
        assert meta["hits"] == 0

    async def test_no_temp_files_left_behind(self, temp_cache):
        """Test that atomic writes leave no .tmp files."""
        for i in range(5):
            await temp_cache.set(f"key{i}", {"i": i})
        names = [p.name for p in temp_cache.cache_dir.iterdir()]
        assert not any(name.endswith(".tmp") for name in names)
        assert len(names) == 10

    async def test_hit_updates_metadata(self, temp_cache):
        """Test that get increments hits and refreshes lastAccess."""
        await temp_cache.set("key", "value")
        meta_path = temp_cache.meta_path("key")
        before = json.loads(meta_path.read_text())

        await asyncio.sleep(0.01)
        await temp_cache.get("key")
        await temp_cache.get("key")

        after = json.loads(meta_path.read_text())
        assert after["hits"] == 2
        assert after["lastAccess"] >= before["lastAccess"]

    async def test_peek_does_not_count_hits(self, temp_cache):
        """Test that peek leaves hit counts untouched."""
        await temp_cache.set("key", "value")
        assert await temp_cache.peek("key") == "value"
        meta = json.loads(temp_cache.meta_path("key").read_text())
        assert meta["hits"] == 0

    async def test_peek_waits_for_writers(self, temp_cache):
        """Test that peek is serialized with writes to the namespace."""
        await temp_cache.set("key", "value", ttl=0.05)
        await asyncio.sleep(0.1)

        async with temp_cache._lock:
            pending = asyncio.create_task(temp_cache.peek("key"))
            await asyncio.sleep(0.05)
            assert not pending.done()

        assert await pending is None

    async def test_peek_of_expired_entry_does_not_remove_rewrite(self, temp_cache):
        """Test that a peek racing a set of the same key keeps the new entry."""
        await temp_cache.set("key", "old", ttl=0.05)
        await asyncio.sleep(0.1)

        await asyncio.gather(temp_cache.set("key", "new"), temp_cache.peek("key"))

        assert await temp_cache.get("key") == "new"

    async def test_expiration(self, temp_cache):
        """Test that an expired entry is a miss and is deleted."""
        await temp_cache.set("expiring_key", "value", ttl=0.1)
        assert await temp_cache.get("expiring_key") == "value"

        await asyncio.sleep(0.2)

        assert await temp_cache.get("expiring_key") is None
        assert not temp_cache.meta_path("expiring_key").exists()
        assert not temp_cache.data_path("expiring_key").exists()

    async def test_oversized_value_rejected(self):
        """Test that values over max_size are not written."""
        with tempfile.TemporaryDirectory() as tmpdir:
            cache = PersistentCache("files", cache_root=tmpdir, max_size=16)
            assert await cache.set("big", "x" * 100) is False
            assert await cache.get("big") is None
            assert not cache.data_path("big").exists()

    async def test_unserializable_value_rejected(self, temp_cache):
        """Test that non-JSON values return False instead of raising."""
        assert await temp_cache.set("obj", object()) is False
        assert await temp_cache.get("obj") is None

    async def test_corrupt_metadata_is_a_miss(self, temp_cache):
        """Test that unreadable metadata degrades to a miss."""
        await temp_cache.set("key", "value")
        temp_cache.meta_path("key").write_text("{not json")
        assert await temp_cache.get("key") is None

    async def test_corrupt_data_is_a_miss(self, temp_cache):
        """Test that unreadable data degrades to a miss."""
        await temp_cache.set("key", "value")
        temp_cache.data_path("key").write_text("\x00garbage")
        assert await temp_cache.get("key") is None

    async def test_missing_data_file_is_a_miss(self, temp_cache):
        """Test that a metadata sidecar without data is a miss."""
        await temp_cache.set("key", "value")
        temp_cache.data_path("key").unlink()
        assert await temp_cache.get("key") is None

    async def test_stored_key_mismatch_is_a_miss(self, temp_cache):
        """Test that an entry stored under another key is not returned."""
        await temp_cache.set("key", "value")
        meta_path = temp_cache.meta_path("key")
        meta = json.loads(meta_path.read_text())
        meta["key"] = "some-other-key"
        meta_path.write_text(json.dumps(meta))

        assert await temp_cache.get("key") is None

    async def test_has(self, temp_cache):
        """Test has() mirrors get()."""
        await temp_cache.set("key", "value")
        assert await temp_cache.has("key") is True
        assert await temp_cache.has("missing") is False

    async def test_delete_existing_key(self, temp_cache):
        """Test deleting an existing key."""
        await temp_cache.set("key_to_delete", "value")
        assert await temp_cache.delete("key_to_delete") is True
        assert await temp_cache.get("key_to_delete") is None

    async def test_delete_nonexistent_key(self, temp_cache):
        """Test deleting a key that doesn't exist is not an error."""
        assert await temp_cache.delete("nonexistent") is True

    async def test_clear(self, temp_cache):
        """Test clearing the namespace."""
        await temp_cache.set("key1", "value1")
        await temp_cache.set("key2", "value2")

        result = await temp_cache.clear()

        assert result["cleared"] == 2
        assert result["errors"] == 0
        assert await temp_cache.get("key1") is None
        assert list(temp_cache.cache_dir.iterdir()) == []

    async def test_clear_missing_directory(self):
        """Test clearing a namespace that was never written."""
        with tempfile.TemporaryDirectory() as tmpdir:
            cache = PersistentCache("never-used", cache_root=tmpdir)
            result = await cache.clear()
            assert result["cleared"] == 0
            assert result["errors"] == 0

    async def test_stats(self, temp_cache):
        """Test statistics and ordering by hits."""
        await temp_cache.set("cold", "a")
        await temp_cache.set("hot", "bb")
        for _ in range(3):
            await temp_cache.get("hot")
        await temp_cache.get("cold")
        await temp_cache.get("missing")

        stats = await temp_cache.stats()

        assert stats["namespace"] == "files"
        assert stats["items"] == 2
        assert stats["total_hits"] == 4
        assert stats["total_size"] == len('"a"') + len('"bb"')
        assert stats["expired"] == 0
        assert [e["key"] for e in stats["active"]] == ["hot", "cold"]
        assert stats["hit_rate"] == 0.8

    async def test_stats_purges_expired(self, temp_cache):
        """Test that stats removes expired entries."""
        await temp_cache.set("short", "v", ttl=0.05)
        await temp_cache.set("long", "v")
        await asyncio.sleep(0.1)

        stats = await temp_cache.stats()

        assert stats["items"] == 1
        assert stats["expired"] == 1
        assert not temp_cache.meta_path("short").exists()

    async def test_stats_top_limit(self, temp_cache):
        """Test that only the top N active entries are listed."""
        for i in range(15):
            await temp_cache.set(f"k{i}", i)
        stats = await temp_cache.stats(top=10)
        assert stats["items"] == 15
        assert len(stats["active"]) == 10

    async def test_keys_skip_expired(self, temp_cache):
        """Test keys() lists only unexpired entries."""
        await temp_cache.set("a", 1)
        await temp_cache.set("b", 2, ttl=0.05)
        await asyncio.sleep(0.1)
        assert await temp_cache.keys() == ["a"]
        assert await temp_cache.size() == 1

    async def test_kind_recorded_at_write_time(self, temp_cache):
        """Test key kinds are stored with the entry."""
        await temp_cache.set("/repo/a.txt", "x")
        await temp_cache.set("config:recipes", {"a": 1})
        await temp_cache.set("anything", "x", kind=KeyKind.SCRIPT)

        kinds = {m.key: m.kind for m in await temp_cache.entries()}
        assert kinds["/repo/a.txt"] == KeyKind.FILE
        assert kinds["config:recipes"] == KeyKind.CONFIG
        assert kinds["anything"] == KeyKind.SCRIPT

    async def test_persistent_across_instances(self):
        """Test that entries survive a new instance on the same directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            first = PersistentCache("files", cache_root=tmpdir)
            await first.set("persistent_key", "persistent_value")

            second = PersistentCache("files", cache_root=tmpdir)
            assert await second.get("persistent_key") == "persistent_value"

    async def test_namespaces_are_isolated(self):
        """Test that namespaces sharing a root do not see each other."""
        with tempfile.TemporaryDirectory() as tmpdir:
            files = PersistentCache("files", cache_root=tmpdir)
            search = PersistentCache("search", cache_root=tmpdir)
            await files.set("key", "files-value")

            assert await search.get("key") is None
            assert Path(tmpdir, "files").is_dir()

    async def test_concurrent_operations(self, temp_cache):
        """Test concurrent sets and gets."""
        await asyncio.gather(*(temp_cache.set(f"key{i}", f"value{i}") for i in range(10)))
        results = await asyncio.gather(*(temp_cache.get(f"key{i}") for i in range(10)))
        assert results == [f"value{i}" for i in range(10)]

    async def test_overwrite_existing_key(self, temp_cache):
        """Test overwriting an existing key resets hits."""
        await temp_cache.set("key", "original_value")
        await temp_cache.get("key")
        await temp_cache.set("key", "new_value")

        assert await temp_cache.get("key") == "new_value"
        meta = json.loads(temp_cache.meta_path("key").read_text())
        assert meta["hits"] == 1
