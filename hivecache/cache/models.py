"""
Data records stored in the persistent cache.

Defines the metadata sidecar written next to every cached value, the tagged
key kinds recorded at write time, and the FileRecord value used for file
contents.
"""

import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def mtime_ms(path: Path) -> int:
    """Modification time of ``path`` in epoch milliseconds."""
    return path.stat().st_mtime_ns // 1_000_000


class KeyKind(str, Enum):
    """What a cache key refers to. Stored with the entry, never re-inferred."""

    FILE = "file"
    SCRIPT = "script"
    CONFIG = "config"
    SEARCH = "search"


# Kinds whose values carry file contents
CONTENT_KINDS = frozenset({KeyKind.FILE, KeyKind.SCRIPT})

_PREFIXES = {
    "config:": KeyKind.CONFIG,
    "script:": KeyKind.SCRIPT,
    "search:": KeyKind.SEARCH,
}


def classify_key(key: str) -> KeyKind:
    """
    Pick a kind for a key whose writer did not state one.

    Only prefixes are considered; anything unprefixed is a file path.
    """
    for prefix, kind in _PREFIXES.items():
        if key.startswith(prefix):
            return kind
    return KeyKind.FILE


def key_path(key: str, kind: KeyKind) -> str:
    """Return the file path a content key refers to."""
    if kind == KeyKind.SCRIPT and key.startswith("script:"):
        return key[len("script:"):]
    return key


@dataclass
class CacheMetadata:
    """
    Metadata sidecar for one cache entry.

    Attributes:
        key: Original (unhashed) cache key
        namespace: Namespace the entry lives in
        created: Creation time, epoch ms
        expires: Expiry time, epoch ms
        last_access: Last successful read, epoch ms
        hits: Successful reads since creation
        size: Serialized value size in bytes
        kind: Tagged key type recorded at write time
    """
    key: str
    namespace: str
    created: int
    expires: int
    last_access: int
    size: int
    hits: int = 0
    kind: KeyKind = KeyKind.FILE

    def is_expired(self, now: Optional[int] = None) -> bool:
        return (now if now is not None else now_ms()) > self.expires

    def to_dict(self) -> dict:
        """Convert to the on-disk JSON record."""
        return {
            "key": self.key,
            "namespace": self.namespace,
            "created": self.created,
            "expires": self.expires,
            "lastAccess": self.last_access,
            "hits": self.hits,
            "size": self.size,
            "kind": self.kind.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CacheMetadata":
        """
        Parse an on-disk record.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field has the wrong type or an unknown kind
        """
        if not isinstance(data, dict):
            raise ValueError("metadata record is not an object")
        kind = data.get("kind")
        return cls(
            key=str(data["key"]),
            namespace=str(data["namespace"]),
            created=int(data["created"]),
            expires=int(data["expires"]),
            last_access=int(data.get("lastAccess", data["created"])),
            size=int(data["size"]),
            hits=int(data.get("hits", 0)),
            kind=KeyKind(kind) if kind else classify_key(str(data["key"])),
        )


@dataclass(frozen=True)
class FileRecord:
    """
    Cached file content.

    Valid only while the backing file's mtime is <= ``timestamp``.
    """
    content: str
    timestamp: int

    @classmethod
    def from_path(cls, path: Path, content: str) -> "FileRecord":
        """
        Build a record stamped with the file's current mtime.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        return cls(content=content, timestamp=mtime_ms(path))

    @classmethod
    def from_value(cls, value: Any) -> Optional["FileRecord"]:
        """
        Interpret a stored value as a FileRecord.

        Raw strings (written without a timestamp) are accepted with timestamp 0,
        which any existing file invalidates. Returns None for anything else.
        """
        if isinstance(value, str):
            return cls(content=value, timestamp=0)
        if isinstance(value, dict) and isinstance(value.get("content"), str):
            try:
                timestamp = int(value.get("timestamp", 0))
            except (TypeError, ValueError):
                timestamp = 0
            return cls(content=value["content"], timestamp=timestamp)
        return None

    def is_fresh(self, current_mtime: int) -> bool:
        return current_mtime <= self.timestamp

    def to_dict(self) -> dict:
        return {"content": self.content, "timestamp": self.timestamp}
