"""
Interfaces for the cache backend.

ICacheBackend is the contract the file access layer and the search engine
depend on. PersistentCache is the production implementation; tests may
substitute an in-memory one.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from hivecache.cache.models import CacheMetadata, KeyKind


class ICacheBackend(ABC):
    """
    Abstract interface for namespaced cache storage backends.

    Implementations must never raise from ``get``/``peek``/``set``/``delete``:
    storage faults are logged and reported as a miss or a False return.

    Implementations:
        - PersistentCache: JSON files with metadata sidecars and atomic renames

    Example:
        ```python
        class InMemoryCache(ICacheBackend):
            def __init__(self):
                self._data = {}

            async def get(self, key: str) -> Optional[Any]:
                return self._data.get(key)

            async def set(self, key, value, ttl=None, kind=None) -> bool:
                self._data[key] = value
                return True
            ...
        ```
    """

    namespace: str

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """
        Retrieve a value, counting the access as a hit.

        Args:
            key: The cache key

        Returns:
            The cached value if found and unexpired, None otherwise
        """
        pass

    @abstractmethod
    async def peek(self, key: str) -> Optional[Any]:
        """Retrieve a value without touching its access statistics."""
        pass

    @abstractmethod
    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        kind: Optional["KeyKind"] = None,
    ) -> bool:
        """
        Store a JSON-serializable value.

        Args:
            key: The cache key
            value: The value to cache
            ttl: Optional TTL in seconds (None = namespace default)
            kind: Tagged key type; inferred from the key prefix when omitted

        Returns:
            True if the entry was written, False if rejected or failed
        """
        pass

    @abstractmethod
    async def has(self, key: str) -> bool:
        """Return True if ``get(key)`` would hit."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove an entry. Deleting a missing key is not an error.

        Returns:
            True if removal completed without an I/O error
        """
        pass

    @abstractmethod
    async def clear(self) -> dict:
        """
        Remove every entry in the namespace.

        Returns:
            Dictionary with ``cleared`` and ``errors`` counts
        """
        pass

    @abstractmethod
    async def stats(self, top: int = 10) -> dict:
        """Return usage statistics, purging expired entries."""
        pass

    @abstractmethod
    async def keys(self) -> list[str]:
        """Return all unexpired keys."""
        pass

    @abstractmethod
    async def entries(self) -> list["CacheMetadata"]:
        """Return metadata for all unexpired entries."""
        pass
