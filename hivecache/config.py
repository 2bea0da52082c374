"""
Configuration module for hivecache.
Uses pydantic-settings for environment variable management.
"""

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

HOUR = 60 * 60
DAY = 24 * HOUR
MB = 1024 * 1024


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Cache storage
    cache_directory: str = "~/.hive-cache"
    cache_default_ttl: float = 6 * HOUR  # seconds
    cache_max_entry_size: int = 100 * MB  # bytes, per serialized value
    conversation_ttl: float = 7 * DAY
    conversation_max_size: int = 10 * MB

    # Locking
    lock_timeout: float = 5.0  # seconds

    # Search
    search_root: str = "."
    search_tool: str = "rg"
    search_timeout: Optional[float] = None
    max_disk_results: int = 500
    max_matches_per_file: int = 5

    # Batch reads
    batch_chunk_size: int = 50

    @property
    def cache_root(self) -> Path:
        """Return the cache directory as an absolute Path."""
        return Path(self.cache_directory).expanduser().resolve()


@dataclass(frozen=True)
class NamespaceConfig:
    """TTL and size limits for one cache namespace."""

    name: str
    ttl: float = 6 * HOUR
    max_size: int = 100 * MB


@dataclass(frozen=True)
class SearchConfig:
    """Disk-search configuration."""

    root: Path = Path(".")
    tool: str = "rg"
    timeout: Optional[float] = None
    max_disk_results: int = 500
    max_matches: int = 5


def namespace_configs(settings: Settings) -> dict[str, NamespaceConfig]:
    """Build the standard namespace table from settings."""
    return {
        "files": NamespaceConfig(
            "files", settings.cache_default_ttl, settings.cache_max_entry_size
        ),
        "search": NamespaceConfig(
            "search", settings.cache_default_ttl, settings.cache_max_entry_size
        ),
        "commands": NamespaceConfig(
            "commands", settings.cache_default_ttl, settings.cache_max_entry_size
        ),
        "conversations": NamespaceConfig(
            "conversations", settings.conversation_ttl, settings.conversation_max_size
        ),
    }


def search_config(settings: Settings) -> SearchConfig:
    """Build the disk-search configuration from settings."""
    return SearchConfig(
        root=Path(settings.search_root).expanduser().resolve(),
        tool=settings.search_tool,
        timeout=settings.search_timeout,
        max_disk_results=settings.max_disk_results,
        max_matches=settings.max_matches_per_file,
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
