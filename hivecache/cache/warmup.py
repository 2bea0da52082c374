"""
Cache warmup: pre-populate the files namespace before scripts need it.

Warming goes through FileAccessLayer.read, so warmed entries are ordinary
FileRecords and files that are already cached and fresh are left alone.
"""

import asyncio
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from hivecache.file_access import FileAccessLayer

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = {
    # Code
    '.py', '.js', '.mjs', '.cjs', '.ts', '.jsx', '.tsx', '.go', '.rs', '.rb',
    '.java', '.c', '.h', '.cpp', '.hpp', '.cs', '.php', '.sh', '.bash', '.ps1',

    # Docs
    '.md', '.markdown', '.mdx', '.rst', '.txt', '.adoc',

    # Config & data
    '.json', '.yaml', '.yml', '.toml', '.ini', '.cfg', '.conf', '.env',
    '.xml', '.html', '.css', '.csv', '.sql',
}

# Extension-less files worth caching
TEXT_FILENAMES = {'Makefile', 'Dockerfile', 'LICENSE', 'CHANGELOG', '.gitignore'}

SKIP_PATTERNS = {
    '__pycache__', '.git', '.hg', '.svn', 'node_modules', '.venv', 'venv',
    'dist', 'build', 'coverage', '.pytest_cache', '.mypy_cache', '.next',
}

ProgressCallback = Callable[[int, int, Path], None]


class WarmupStats:
    """Counters for one warmup run."""

    def __init__(self):
        self.files_processed = 0
        self.files_cached = 0
        self.files_already_cached = 0
        self.files_failed = 0
        self.bytes_cached = 0
        self.errors: Dict[str, str] = {}
        self.file_types: Counter = Counter()

    @property
    def files_succeeded(self) -> int:
        return self.files_cached + self.files_already_cached

    def add_success(self, file_path: Path, size: int, already_cached: bool = False):
        self.files_processed += 1
        if already_cached:
            self.files_already_cached += 1
        else:
            self.files_cached += 1
            self.bytes_cached += size
        self.file_types[file_path.suffix or file_path.name] += 1

    def add_failure(self, file_path: Path, error: str):
        self.files_processed += 1
        self.files_failed += 1
        self.errors[str(file_path)] = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            'files_processed': self.files_processed,
            'files_cached': self.files_cached,
            'files_already_cached': self.files_already_cached,
            'files_failed': self.files_failed,
            'bytes_cached': self.bytes_cached,
            'file_types': dict(self.file_types.most_common()),
            'errors': dict(self.errors),
        }

    def __str__(self) -> str:
        lines = [
            "Cache Warmup Statistics:",
            f"  Files Processed: {self.files_processed}",
            f"  Newly Cached: {self.files_cached} ({self.bytes_cached / 1024:.1f} KB)",
            f"  Already Cached: {self.files_already_cached}",
            f"  Failed: {self.files_failed}",
        ]
        if self.file_types:
            top = ", ".join(f"{ext} ({n})" for ext, n in self.file_types.most_common(5))
            lines.append(f"  Top File Types: {top}")
        return '\n'.join(lines)


def is_text_file(file_path: Path) -> bool:
    """True if the file's extension or name marks it as text."""
    return file_path.suffix.lower() in TEXT_EXTENSIONS or file_path.name in TEXT_FILENAMES


def should_skip(path: Path) -> bool:
    """True if any component of ``path`` is a skipped directory."""
    return any(part in SKIP_PATTERNS for part in path.parts)


def find_text_files(directory: Path, recursive: bool = True, pattern: str = '*') -> list[Path]:
    """
    Find cacheable text files under ``directory``.

    Args:
        directory: Directory to scan
        recursive: Descend into subdirectories
        pattern: Glob matched against file names

    Returns:
        Sorted list of matching files
    """
    iterator = directory.rglob(pattern) if recursive else directory.glob(pattern)
    files = []
    for path in iterator:
        relative = path.relative_to(directory)
        if not path.is_file() or should_skip(relative):
            continue
        if is_text_file(path):
            files.append(path)
        else:
            logger.debug(f"Skipping: {path} (not a text file)")
    return sorted(files)


async def _warm(
    file_access: "FileAccessLayer",
    files: list[Path],
    concurrency: int,
    progress_callback: Optional[ProgressCallback],
) -> WarmupStats:
    stats = WarmupStats()
    semaphore = asyncio.Semaphore(concurrency)
    done = 0

    async def cache_file(file_path: Path) -> None:
        nonlocal done
        async with semaphore:
            try:
                result = await file_access.read(file_path)
                size = len(result.content.encode('utf-8'))
                stats.add_success(file_path, size, already_cached=result.cached)
                logger.debug(f"Warmed: {file_path} (cached={result.cached})")
            except UnicodeDecodeError as e:
                stats.add_failure(file_path, f"Not a text file: {e}")
                logger.debug(f"Skipped: {file_path} (binary content)")
            except Exception as e:
                stats.add_failure(file_path, str(e))
                logger.error(f"Failed to cache {file_path}: {e}")
            finally:
                done += 1
                if progress_callback:
                    progress_callback(done, len(files), file_path)

    await asyncio.gather(*(cache_file(path) for path in files))
    return stats


async def warm_cache(
    file_access: "FileAccessLayer",
    directory: Path,
    recursive: bool = True,
    pattern: str = '*',
    concurrency: int = 10,
    progress_callback: Optional[ProgressCallback] = None,
) -> WarmupStats:
    """
    Pre-populate the cache with the text files under a directory.

    Args:
        file_access: Layer whose cache is populated
        directory: Directory to scan
        recursive: Descend into subdirectories (default: True)
        pattern: Glob matched against file names (default: '*')
        concurrency: Maximum concurrent reads (default: 10)
        progress_callback: Called as ``(current, total, path)`` after each file

    Returns:
        WarmupStats for the run

    Example:
        >>> stats = await warm_cache(service.files, Path("./docs"))
        >>> print(stats)
        Cache Warmup Statistics:
          Files Processed: 42
          ...
    """
    logger.info(f"Scanning directory: {directory} (recursive={recursive}, pattern={pattern})")
    files = await asyncio.to_thread(find_text_files, directory, recursive, pattern)

    if not files:
        logger.warning(f"No text files found in {directory}")
        return WarmupStats()

    stats = await _warm(file_access, files, concurrency, progress_callback)
    logger.info(f"Cache warmup complete: {stats.files_succeeded}/{len(files)} files cached")
    return stats


async def warm_cache_selective(
    file_access: "FileAccessLayer",
    file_paths: Iterable[Path],
    concurrency: int = 10,
    progress_callback: Optional[ProgressCallback] = None,
) -> WarmupStats:
    """Pre-populate the cache with an explicit list of files."""
    files = [Path(p) for p in file_paths]
    if not files:
        logger.warning("No files provided for selective warmup")
        return WarmupStats()

    stats = await _warm(file_access, files, concurrency, progress_callback)
    logger.info(f"Selective warmup complete: {stats.files_succeeded}/{len(files)} files cached")
    return stats
