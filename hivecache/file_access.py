"""
Cached file access layer.

Reads and writes real files through the ``files`` cache namespace. Cached
contents are validated against the file's mtime on every read, writers to
the same path are serialized with a LockManager, and moves/deletes drop the
old path's cache entry.
"""

import asyncio
import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import aiofiles
import aiofiles.os

from hivecache.cache.locks import LockManager
from hivecache.cache.models import FileRecord, KeyKind, mtime_ms
from hivecache.exceptions import FileNotFoundException
from hivecache.interfaces import ICacheBackend
from hivecache.paths import PathLike, canonical_key

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 50


@dataclass
class ReadResult:
    """Content of one file and where it came from."""
    content: str
    cached: bool
    path: str = ""

    def to_dict(self) -> dict:
        return {"content": self.content, "cached": self.cached, "path": self.path}


@dataclass
class BatchReadResult:
    """Outcome of a batch read; failures are collected, not raised."""
    results: Dict[str, ReadResult] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    cache_hits: int = 0
    disk_reads: int = 0

    @property
    def stats(self) -> dict:
        return {"cache_hits": self.cache_hits, "disk_reads": self.disk_reads}

    def merge(self, other: "BatchReadResult") -> None:
        self.results.update(other.results)
        self.errors.update(other.errors)
        self.cache_hits += other.cache_hits
        self.disk_reads += other.disk_reads

    def to_dict(self) -> dict:
        return {
            "results": {p: r.to_dict() for p, r in self.results.items()},
            "errors": dict(self.errors),
            "stats": self.stats,
        }


@dataclass
class BatchWriteResult:
    """Outcome of a batch write; failures are collected, not raised."""
    results: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"results": list(self.results), "errors": dict(self.errors)}


class FileAccessLayer:
    """
    File operations backed by a cache namespace.

    The cache is an optimization only: any cache failure is logged and the
    operation continues against disk. Filesystem errors on the file itself
    are raised to the caller, with a missing file reported as
    FileNotFoundException.

    Attributes:
        cache: Backend holding FileRecords keyed by canonical absolute path
        locks: LockManager serializing writers per path

    Example:
        >>> layer = FileAccessLayer(PersistentCache("files"), LockManager())
        >>> await layer.write("notes/todo.md", "- ship it\\n")
        '/repo/notes/todo.md'
        >>> result = await layer.read("notes/todo.md")
        >>> result.cached
        True
    """

    def __init__(
        self,
        cache: ICacheBackend,
        locks: Optional[LockManager] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.cache = cache
        self.locks = locks or LockManager()
        self.chunk_size = chunk_size

    async def _cached_record(self, key: str) -> Optional[FileRecord]:
        try:
            return FileRecord.from_value(await self.cache.get(key))
        except Exception as e:
            logger.warning(f"Cache lookup failed for {key}: {e}")
            return None

    async def _store(self, key: str, record: FileRecord) -> None:
        try:
            await self.cache.set(key, record.to_dict(), kind=KeyKind.FILE)
        except Exception as e:
            logger.warning(f"Cache update failed for {key}: {e}")

    async def invalidate(self, path: PathLike) -> None:
        """Drop the cache entry for ``path``; failures are logged."""
        key = canonical_key(path)
        try:
            await self.cache.delete(key)
            logger.debug(f"Cache INVALIDATED: {key}")
        except Exception as e:
            logger.warning(f"Cache invalidation failed for {key}: {e}")

    async def read(self, path: PathLike, no_cache: bool = False) -> ReadResult:
        """
        Read a file, serving it from cache when the cached copy is fresh.

        A cached record is fresh while the file's mtime is not newer than the
        record's timestamp. A stale record is deleted and the file is read
        from disk, after which a new record is cached.

        Args:
            path: Relative or absolute file path
            no_cache: Bypass the cache entirely (no lookup, no update)

        Returns:
            ReadResult with the content and whether it came from cache

        Raises:
            FileNotFoundException: If the file does not exist
            OSError: For any other disk error
        """
        key = canonical_key(path)
        target = Path(key)

        if not no_cache:
            record = await self._cached_record(key)
            if record is not None:
                try:
                    current = await asyncio.to_thread(mtime_ms, target)
                except FileNotFoundError:
                    current = None

                if current is not None and record.is_fresh(current):
                    logger.debug(f"Cache HIT: {key}")
                    return ReadResult(content=record.content, cached=True, path=key)

                logger.debug(f"Cache STALE: {key}")
                await self.invalidate(key)

        # mtime taken before the read: a write landing mid-read must leave the record stale
        try:
            timestamp = await asyncio.to_thread(mtime_ms, target)
            async with aiofiles.open(target, mode="r", encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError:
            raise FileNotFoundException(
                f"File not found: {path}", details={"path": key}
            ) from None

        if not no_cache:
            await self._store(key, FileRecord(content=content, timestamp=timestamp))

        return ReadResult(content=content, cached=False, path=key)

    async def write(self, path: PathLike, content: str) -> str:
        """
        Write a file and refresh its cache entry.

        The path lock is held for the whole write and released on any exit.

        Args:
            path: Relative or absolute file path
            content: Text to write (UTF-8)

        Returns:
            The canonical absolute path written

        Raises:
            LockTimeoutException: If another writer holds the path too long
            OSError: If the file cannot be written
        """
        key = canonical_key(path)
        target = Path(key)

        await self.locks.acquire(key)
        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            async with aiofiles.open(target, mode="w", encoding="utf-8") as f:
                await f.write(content)
            await self._store(key, await asyncio.to_thread(FileRecord.from_path, target, content))
        finally:
            await self.locks.release(key)

        return key

    async def _read_capturing(self, path: str, no_cache: bool) -> tuple:
        try:
            return path, await self.read(path, no_cache=no_cache), None
        except Exception as e:
            return path, None, e

    async def batch_read(
        self, paths: Iterable[PathLike], no_cache: bool = False
    ) -> BatchReadResult:
        """
        Read many files concurrently.

        A failure on one path is recorded in ``errors`` under the path as
        given and does not affect the others.

        Args:
            paths: Paths to read
            no_cache: Bypass the cache for every read

        Returns:
            BatchReadResult keyed by the caller's path strings
        """
        outcome = BatchReadResult()
        tasks = [self._read_capturing(str(p), no_cache) for p in paths]

        for path, result, error in await asyncio.gather(*tasks):
            if error is not None:
                outcome.errors[path] = str(error)
                logger.debug(f"Batch read failed for {path}: {error}")
                continue
            outcome.results[path] = result
            if result.cached:
                outcome.cache_hits += 1
            else:
                outcome.disk_reads += 1

        return outcome

    async def batch_read_safe(
        self,
        paths: Iterable[PathLike],
        no_cache: bool = False,
        chunk_size: Optional[int] = None,
    ) -> BatchReadResult:
        """Like ``batch_read`` but processes ``chunk_size`` paths at a time."""
        size = chunk_size or self.chunk_size
        items = [str(p) for p in paths]
        outcome = BatchReadResult()

        for start in range(0, len(items), size):
            outcome.merge(await self.batch_read(items[start:start + size], no_cache))

        return outcome

    async def batch_write(self, file_map: Dict[PathLike, str]) -> BatchWriteResult:
        """
        Write many files one at a time, in mapping order.

        Args:
            file_map: Mapping of path to content

        Returns:
            BatchWriteResult with written paths and per-path errors
        """
        outcome = BatchWriteResult()
        for path, content in file_map.items():
            try:
                outcome.results.append(await self.write(path, content))
            except Exception as e:
                outcome.errors[str(path)] = str(e)
                logger.warning(f"Batch write failed for {path}: {e}")
        return outcome

    async def copy_file(self, source: PathLike, destination: PathLike) -> str:
        """Copy a file, dropping any cached entry for the destination."""
        src = canonical_key(source)
        dest = canonical_key(destination)

        await aiofiles.os.makedirs(Path(dest).parent, exist_ok=True)
        try:
            await asyncio.to_thread(shutil.copy2, src, dest)
        except FileNotFoundError:
            raise FileNotFoundException(
                f"File not found: {source}", details={"path": src}
            ) from None

        await self.invalidate(dest)
        return dest

    async def move_file(self, source: PathLike, destination: PathLike) -> str:
        """Move or rename a file and drop the cache entries of both paths."""
        src = canonical_key(source)
        dest = canonical_key(destination)

        await aiofiles.os.makedirs(Path(dest).parent, exist_ok=True)
        try:
            await aiofiles.os.rename(src, dest)
        except FileNotFoundError:
            raise FileNotFoundException(
                f"File not found: {source}", details={"path": src}
            ) from None

        await self.invalidate(src)
        await self.invalidate(dest)
        return dest

    async def delete_file(self, path: PathLike) -> bool:
        """Delete a file and its cache entry."""
        key = canonical_key(path)
        try:
            await aiofiles.os.remove(key)
        except FileNotFoundError:
            raise FileNotFoundException(
                f"File not found: {path}", details={"path": key}
            ) from None

        await self.invalidate(key)
        return True

    async def list_files(
        self,
        directory: PathLike,
        pattern: Optional[str] = None,
        include_directories: bool = False,
    ) -> list[dict]:
        """
        List the entries of a directory.

        Args:
            directory: Directory to list
            pattern: Optional regex matched against entry names
            include_directories: Include subdirectories in the listing

        Returns:
            List of dicts with ``name``, ``path`` and ``is_directory``, sorted by name

        Raises:
            FileNotFoundException: If the directory does not exist
        """
        root = Path(canonical_key(directory))
        try:
            names = await aiofiles.os.listdir(root)
        except FileNotFoundError:
            raise FileNotFoundException(
                f"Directory not found: {directory}", details={"path": str(root)}
            ) from None

        regex = re.compile(pattern) if pattern else None
        items = []
        for name in sorted(names):
            full = root / name
            is_dir = await aiofiles.os.path.isdir(full)
            if is_dir and not include_directories:
                continue
            if regex is not None and not regex.search(name):
                continue
            items.append({
                "name": name,
                "path": full.as_posix(),
                "is_directory": is_dir,
            })
        return items

    async def get_file_stats(self, path: PathLike) -> dict:
        """
        Return size and timestamps for a path.

        Raises:
            FileNotFoundException: If the path does not exist
        """
        key = canonical_key(path)
        try:
            stat = await aiofiles.os.stat(key)
        except FileNotFoundError:
            raise FileNotFoundException(
                f"Path not found: {path}", details={"path": key}
            ) from None

        return {
            "size": stat.st_size,
            "modified": stat.st_mtime,
            "created": stat.st_ctime,
            "is_file": Path(key).is_file(),
            "is_directory": Path(key).is_dir(),
        }

    async def path_exists(self, path: PathLike) -> bool:
        return await aiofiles.os.path.exists(canonical_key(path))
