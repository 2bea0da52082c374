"""hivecache: persistent file cache and cache-first search for automation scripts.

Typical use::

    from hivecache import CacheService

    service = CacheService.default()
    result = await service.files.read("docs/README.md")
    response = await service.search.combined_search("TODO")
"""

from hivecache.cache import LockManager, PersistentCache
from hivecache.exceptions import (
    HiveCacheException,
    FileNotFoundException,
    LockTimeoutException,
    SearchPatternException,
)
from hivecache.file_access import FileAccessLayer, ReadResult
from hivecache.search import CacheSearchEngine, SearchOptions
from hivecache.service import CacheService

__version__ = "0.1.0"

__all__ = [
    "CacheService",
    "PersistentCache",
    "LockManager",
    "FileAccessLayer",
    "ReadResult",
    "CacheSearchEngine",
    "SearchOptions",
    "HiveCacheException",
    "FileNotFoundException",
    "LockTimeoutException",
    "SearchPatternException",
]
