"""
CacheService: one object wiring the cache namespaces, locks, file access
layer and search engine together.

Scripts construct a service (usually via ``CacheService.default()``) and
pass it, or its components, to whatever needs them. Nothing in hivecache is
a module-level singleton.
"""

import logging
from pathlib import Path
from typing import Dict, Optional

from hivecache.cache.disk_cache import PersistentCache
from hivecache.cache.locks import DEFAULT_LOCK_TIMEOUT, LockManager
from hivecache.config import (
    NamespaceConfig,
    SearchConfig,
    Settings,
    get_settings,
    namespace_configs,
    search_config,
)
from hivecache.exceptions import CacheException
from hivecache.file_access import DEFAULT_CHUNK_SIZE, FileAccessLayer
from hivecache.search.engine import CacheSearchEngine

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACES = (
    NamespaceConfig("files"),
    NamespaceConfig("search"),
    NamespaceConfig("commands"),
    NamespaceConfig("conversations", ttl=7 * 24 * 60 * 60, max_size=10 * 1024 * 1024),
)


class CacheService:
    """
    Unified entry point to the cache subsystem.

    Attributes:
        cache_root: Directory holding one subdirectory per namespace
        namespaces: PersistentCache per namespace name
        locks: LockManager shared by every writer using this service
        files: FileAccessLayer over the ``files`` namespace
        search: CacheSearchEngine over ``files``, memoising into ``search``

    Example:
        >>> service = CacheService.default()
        >>> await service.files.write("docs/intro.md", "# Intro\\n")
        >>> response = await service.search.combined_search("intro")
        >>> await service.stats()
    """

    def __init__(
        self,
        cache_root: str = "~/.hive-cache",
        namespaces: Optional[Dict[str, NamespaceConfig]] = None,
        search: Optional[SearchConfig] = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """
        Build all components.

        Args:
            cache_root: Cache root directory
            namespaces: Namespace table; defaults to files/search/commands/conversations.
                        ``files`` and ``search`` are always present.
            search: Disk-search configuration
            lock_timeout: Seconds a writer waits for a path lock
            chunk_size: Paths per chunk in ``files.batch_read_safe``
        """
        self.cache_root = Path(cache_root).expanduser()
        table = dict(namespaces or {ns.name: ns for ns in DEFAULT_NAMESPACES})
        table.setdefault("files", NamespaceConfig("files"))
        table.setdefault("search", NamespaceConfig("search"))

        logger.info(
            f"Initializing CacheService: root={self.cache_root}, "
            f"namespaces={sorted(table)}"
        )

        self.namespaces: Dict[str, PersistentCache] = {
            name: PersistentCache(
                namespace=name,
                cache_root=str(self.cache_root),
                default_ttl=config.ttl,
                max_size=config.max_size,
            )
            for name, config in table.items()
        }
        self.locks = LockManager(timeout=lock_timeout)
        self.files = FileAccessLayer(
            self.namespaces["files"], self.locks, chunk_size=chunk_size
        )
        self.search = CacheSearchEngine(
            self.namespaces["files"],
            search or SearchConfig(),
            result_cache=self.namespaces["search"],
        )

    @classmethod
    def default(cls, settings: Optional[Settings] = None) -> "CacheService":
        """
        Create a CacheService from environment settings.

        Environment Variables:
            CACHE_DIRECTORY: Cache root (default: ~/.hive-cache)
            CACHE_DEFAULT_TTL: Default TTL in seconds (default: 6 hours)
            CACHE_MAX_ENTRY_SIZE: Max value size in bytes (default: 100MB)
            LOCK_TIMEOUT: Lock wait in seconds (default: 5)
            SEARCH_ROOT / SEARCH_TOOL: Disk search root and binary (default: . / rg)
        """
        if settings is None:
            settings = get_settings()

        return cls(
            cache_root=str(settings.cache_root),
            namespaces=namespace_configs(settings),
            search=search_config(settings),
            lock_timeout=settings.lock_timeout,
            chunk_size=settings.batch_chunk_size,
        )

    def namespace(self, name: str) -> PersistentCache:
        """
        Return the cache for a namespace.

        Raises:
            CacheException: If the namespace is not configured
        """
        try:
            return self.namespaces[name]
        except KeyError:
            raise CacheException(
                f"Unknown cache namespace: {name}",
                details={"available": sorted(self.namespaces)},
            ) from None

    async def stats(self) -> dict:
        """
        Statistics for every namespace plus totals.

        Expired entries are purged as a side effect.
        """
        per_namespace = {
            name: await cache.stats() for name, cache in self.namespaces.items()
        }
        return {
            "cache_root": str(self.cache_root),
            "namespaces": per_namespace,
            "totals": {
                "items": sum(s["items"] for s in per_namespace.values()),
                "total_size": sum(s["total_size"] for s in per_namespace.values()),
                "total_hits": sum(s["total_hits"] for s in per_namespace.values()),
                "expired": sum(s["expired"] for s in per_namespace.values()),
            },
        }

    async def clear(self, name: str) -> dict:
        """Clear one namespace."""
        return await self.namespace(name).clear()

    async def clear_all(self) -> dict:
        """Clear every namespace; returns the per-namespace clear results."""
        logger.warning("Clearing ALL cache namespaces")
        return {name: await cache.clear() for name, cache in self.namespaces.items()}
