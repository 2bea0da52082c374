"""Persistent, namespaced file cache with async support.

Each entry is stored as two co-located JSON files under
``<cache_root>/<namespace>/``: ``<sha256(key)>.cache`` holds the value and
``<sha256(key)>.cache.meta`` holds its metadata. Both are written to a
temporary file first and renamed into place, so readers never observe a
partially written entry.
"""

import asyncio
import hashlib
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Optional

import aiofiles
import aiofiles.os

from hivecache.cache.models import CacheMetadata, KeyKind, classify_key, now_ms
from hivecache.interfaces import ICacheBackend

logger = logging.getLogger(__name__)

DATA_SUFFIX = ".cache"
META_SUFFIX = ".cache.meta"
TMP_SUFFIX = ".tmp"

DEFAULT_TTL = 6 * 60 * 60  # 6 hours
DEFAULT_MAX_SIZE = 100 * 1024 * 1024  # 100MB


class PersistentCache(ICacheBackend):
    """Persistent cache namespace backed by JSON files.

    Expiry is lazy: expired entries are removed when ``get`` touches them or
    when ``stats`` walks the namespace. There is no background sweeper and no
    size-based eviction.

    All mutations inside one process are serialized through an asyncio.Lock.
    Another process writing the same directory can still race us; atomic
    renames mean one writer wins and no reader sees a torn entry.

    Attributes:
        namespace: Logical partition name, also the directory name
        cache_dir: Directory holding this namespace's files
        default_ttl: TTL in seconds applied when ``set`` is given none
        max_size: Largest serialized value accepted, in bytes

    Example:
        >>> cache = PersistentCache("files", cache_root="/tmp/hive")
        >>> await cache.set("/repo/a.txt", {"content": "hi", "timestamp": 0})
        True
        >>> await cache.get("/repo/a.txt")
        {'content': 'hi', 'timestamp': 0}
        >>> (await cache.stats())["items"]
        1
    """

    def __init__(
        self,
        namespace: str,
        cache_root: str = "~/.hive-cache",
        default_ttl: float = DEFAULT_TTL,
        max_size: int = DEFAULT_MAX_SIZE,
    ):
        """Initialize the namespace.

        Args:
            namespace: Namespace name. Must be a valid directory name.
            cache_root: Root directory shared by all namespaces. The namespace
                directory is created lazily on first write.
            default_ttl: Default time-to-live in seconds.
            max_size: Maximum serialized value size in bytes.
        """
        self.namespace = namespace
        self.cache_dir = Path(cache_root).expanduser() / namespace
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def directory(self) -> str:
        return str(self.cache_dir)

    @staticmethod
    def hash_key(key: str) -> str:
        """Map a key to its fixed-length filename stem."""
        return hashlib.sha256(key.encode("utf-8")).hexdigest()

    def data_path(self, key: str) -> Path:
        return self.cache_dir / f"{self.hash_key(key)}{DATA_SUFFIX}"

    def meta_path(self, key: str) -> Path:
        return self.cache_dir / f"{self.hash_key(key)}{META_SUFFIX}"

    async def _write_atomic(self, target: Path, text: str) -> None:
        """Write ``text`` to a unique temp file and rename it over ``target``."""
        tmp = target.with_name(f"{target.name}.{uuid.uuid4().hex[:12]}{TMP_SUFFIX}")
        try:
            async with aiofiles.open(tmp, mode="w", encoding="utf-8") as f:
                await f.write(text)
            await aiofiles.os.replace(tmp, target)
        except OSError:
            try:
                await aiofiles.os.remove(tmp)
            except OSError:
                pass
            raise

    async def _read_meta(self, path: Path) -> CacheMetadata:
        async with aiofiles.open(path, mode="r", encoding="utf-8") as f:
            return CacheMetadata.from_dict(json.loads(await f.read()))

    async def _lookup(self, key: str, touch: bool) -> Optional[Any]:
        meta_path = self.meta_path(key)

        try:
            meta = await self._read_meta(meta_path)
        except FileNotFoundError:
            self._misses += 1
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"[{self.namespace}] Unreadable metadata for {key}: {e}")
            self._misses += 1
            return None

        if meta.key != key:
            # Two keys share a hash; the stored entry belongs to the other one
            logger.warning(
                f"[{self.namespace}] Key mismatch for {key}: entry holds {meta.key}"
            )
            self._misses += 1
            return None

        if meta.is_expired():
            logger.debug(f"[{self.namespace}] Cache EXPIRED: {key}")
            await self._remove(key)
            self._misses += 1
            return None

        try:
            async with aiofiles.open(self.data_path(key), mode="r", encoding="utf-8") as f:
                value = json.loads(await f.read())
        except FileNotFoundError:
            logger.warning(f"[{self.namespace}] Missing data file for {key}")
            self._misses += 1
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"[{self.namespace}] Unreadable data for {key}: {e}")
            self._misses += 1
            return None

        if touch:
            meta.hits += 1
            meta.last_access = now_ms()
            try:
                await self._write_atomic(meta_path, json.dumps(meta.to_dict(), indent=2))
            except OSError as e:
                logger.debug(f"[{self.namespace}] Could not update metadata for {key}: {e}")

        self._hits += 1
        logger.debug(f"[{self.namespace}] Cache HIT: {key}")
        return value

    async def get(self, key: str) -> Optional[Any]:
        """Retrieve a value from the cache.

        A miss is reported when the entry is absent, expired (the entry is
        deleted as a side effect), corrupt, or stored under a different key
        with the same hash. A hit increments the entry's hit count and
        refreshes its last-access time. Never raises.

        Args:
            key: The cache key to retrieve

        Returns:
            The deserialized value if found, None otherwise
        """
        async with self._lock:
            return await self._lookup(key, touch=True)

    async def peek(self, key: str) -> Optional[Any]:
        """Retrieve a value without updating hit count or access time."""
        async with self._lock:
            return await self._lookup(key, touch=False)

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        kind: Optional[KeyKind] = None,
    ) -> bool:
        """Store a value in the cache.

        The value is serialized to JSON. Values larger than ``max_size`` are
        rejected without touching disk.

        Args:
            key: The cache key to store the value under
            value: A JSON-serializable value
            ttl: Optional time-to-live in seconds. None uses ``default_ttl``.
            kind: Tagged key type. When omitted it is derived from the key's
                prefix once, here, and stored with the entry.

        Returns:
            True on success, False if the value was rejected or the write failed

        Example:
            >>> await cache.set("config:recipes", {"a": 1}, ttl=300)
            True
        """
        try:
            content = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error(f"[{self.namespace}] Cannot serialize value for {key}: {e}")
            return False

        size = len(content.encode("utf-8"))
        if size > self.max_size:
            logger.warning(
                f"[{self.namespace}] Value too large for {key}: "
                f"{size} bytes > {self.max_size} bytes"
            )
            return False

        effective_ttl = self.default_ttl if ttl is None else ttl
        now = now_ms()
        meta = CacheMetadata(
            key=key,
            namespace=self.namespace,
            created=now,
            expires=now + int(effective_ttl * 1000),
            last_access=now,
            size=size,
            hits=0,
            kind=KeyKind(kind) if kind is not None else classify_key(key),
        )

        async with self._lock:
            try:
                await aiofiles.os.makedirs(self.cache_dir, exist_ok=True)
                # Data first: metadata present implies data present
                await self._write_atomic(self.data_path(key), content)
                await self._write_atomic(
                    self.meta_path(key), json.dumps(meta.to_dict(), indent=2)
                )
            except OSError as e:
                logger.error(f"[{self.namespace}] Error writing {key}: {e}")
                return False

        logger.debug(f"[{self.namespace}] Cache SET: {key} ({size} bytes)")
        return True

    async def has(self, key: str) -> bool:
        return await self.get(key) is not None

    async def _remove(self, key: str) -> bool:
        ok = True
        # Metadata first so a concurrent reader sees absence, not a dangling sidecar
        for path in (self.meta_path(key), self.data_path(key)):
            try:
                await aiofiles.os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"[{self.namespace}] Error deleting {path.name}: {e}")
                ok = False
        return ok

    async def delete(self, key: str) -> bool:
        """Delete a key from the cache.

        Deleting a key that does not exist is not an error.

        Args:
            key: The cache key to delete

        Returns:
            True if removal completed without an I/O error
        """
        async with self._lock:
            return await self._remove(key)

    async def _list_dir(self) -> list[str]:
        try:
            return await aiofiles.os.listdir(self.cache_dir)
        except FileNotFoundError:
            return []

    async def clear(self) -> dict:
        """Remove every entry in the namespace.

        Leftover temp files are removed too. A namespace directory that does
        not exist yet counts as already clear.

        Returns:
            Dictionary containing:
                - cleared: Number of entries removed
                - errors: Number of files that could not be removed
                - total_size: Bytes freed
        """
        cleared = 0
        errors = 0
        total_size = 0

        async with self._lock:
            try:
                names = await self._list_dir()
            except OSError as e:
                logger.error(f"[{self.namespace}] Cannot list cache directory: {e}")
                return {"cleared": 0, "errors": 1, "total_size": 0}

            for name in names:
                if not (
                    name.endswith(DATA_SUFFIX)
                    or name.endswith(META_SUFFIX)
                    or name.endswith(TMP_SUFFIX)
                ):
                    continue
                path = self.cache_dir / name
                try:
                    stat = await aiofiles.os.stat(path)
                    await aiofiles.os.remove(path)
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning(f"[{self.namespace}] Error removing {name}: {e}")
                    errors += 1
                    continue
                total_size += stat.st_size
                if name.endswith(DATA_SUFFIX):
                    cleared += 1

        logger.info(f"[{self.namespace}] Cleared {cleared} entries ({errors} errors)")
        return {"cleared": cleared, "errors": errors, "total_size": total_size}

    async def _scan(self) -> list[CacheMetadata]:
        """Read every metadata file in the namespace, skipping unreadable ones."""
        records = []
        try:
            names = await self._list_dir()
        except OSError as e:
            logger.warning(f"[{self.namespace}] Cannot list cache directory: {e}")
            return records

        for name in names:
            if not name.endswith(META_SUFFIX):
                continue
            try:
                records.append(await self._read_meta(self.cache_dir / name))
            except FileNotFoundError:
                continue
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.debug(f"[{self.namespace}] Skipping unreadable {name}: {e}")
        return records

    async def entries(self) -> list[CacheMetadata]:
        """Return metadata for every unexpired entry."""
        now = now_ms()
        return [meta for meta in await self._scan() if not meta.is_expired(now)]

    async def keys(self) -> list[str]:
        return [meta.key for meta in await self.entries()]

    async def size(self) -> int:
        """Number of unexpired entries."""
        return len(await self.entries())

    async def stats(self, top: int = 10) -> dict:
        """Get cache statistics, removing expired entries as a side effect.

        Args:
            top: How many of the most-hit active entries to include

        Returns:
            A dictionary containing:
                - namespace: Namespace name
                - directory: Namespace directory
                - items: Number of active entries
                - total_size: Sum of active value sizes in bytes
                - total_hits: Sum of persisted hit counts of active entries
                - hit_rate: Hits / lookups made by this instance (0-1)
                - expired: Number of expired entries purged by this call
                - active: Top ``top`` active entries by hit count, descending
        """
        now = now_ms()
        active = []
        expired = []

        async with self._lock:
            for meta in await self._scan():
                if meta.is_expired(now):
                    expired.append(meta.key)
                else:
                    active.append(meta)

            for key in expired:
                await self._remove(key)

        active.sort(key=lambda m: m.hits, reverse=True)
        lookups = self._hits + self._misses

        return {
            "namespace": self.namespace,
            "directory": self.directory,
            "items": len(active),
            "total_size": sum(m.size for m in active),
            "total_hits": sum(m.hits for m in active),
            "hit_rate": round(self._hits / lookups, 2) if lookups else 0.0,
            "expired": len(expired),
            "active": [
                {
                    "key": m.key,
                    "kind": m.kind.value,
                    "size": m.size,
                    "hits": m.hits,
                    "age_ms": now - m.created,
                    "idle_ms": now - m.last_access,
                    "expires": m.expires,
                }
                for m in active[:top]
            ],
        }
