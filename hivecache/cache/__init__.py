"""Cache package for hivecache.

Provides the persistent namespaced cache, per-path locks, and cache warmup.
"""

from hivecache.cache.disk_cache import PersistentCache
from hivecache.cache.locks import LockManager
from hivecache.cache.models import CacheMetadata, FileRecord, KeyKind, classify_key
from hivecache.cache.warmup import warm_cache, warm_cache_selective, WarmupStats

__all__ = [
    "PersistentCache",
    "LockManager",
    "CacheMetadata",
    "FileRecord",
    "KeyKind",
    "classify_key",
    "warm_cache",
    "warm_cache_selective",
    "WarmupStats",
]
