"""
Path normalization shared by the cache, file access and search layers.

The same file can reach us as an absolute path, a ``./relative`` path from the
search tool, or a Windows drive-letter path from a cache key written elsewhere.
Everything is folded into one form before keys are built or paths compared.
"""

import re
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Union

_DRIVE_RE = re.compile(r"^[A-Za-z]:[\\/]")
_GLOB_SPECIAL_RE = re.compile(r"([\\*?\[\]{}!])")

PathLike = Union[str, Path]


def canonical_key(path: PathLike) -> str:
    """
    Return the cache key for a file: absolute, resolved, POSIX separators.

    Args:
        path: Relative or absolute path

    Returns:
        The canonical key string
    """
    return Path(path).expanduser().resolve().as_posix()


def _to_posix(raw: str) -> str:
    if _DRIVE_RE.match(raw):
        return PureWindowsPath(raw).as_posix()
    return raw.replace("\\", "/")


def normalize_path(raw: PathLike, root: PathLike) -> str:
    """
    Fold a path into the canonical relative form used for comparisons.

    - backslashes become forward slashes
    - a leading ``./`` is dropped
    - absolute (or drive-letter) paths under ``root`` become relative to it
    - paths outside ``root`` stay absolute, POSIX-separated

    Args:
        raw: Path as reported by any source
        root: Search root the relative form is anchored to

    Returns:
        Normalized path string

    Example:
        >>> normalize_path("/repo/docs/a.md", "/repo")
        'docs/a.md'
        >>> normalize_path("./docs/a.md", "/repo")
        'docs/a.md'
        >>> normalize_path("docs\\\\a.md", "/repo")
        'docs/a.md'
    """
    text = _to_posix(str(raw))
    root_text = _to_posix(str(Path(root).expanduser().resolve()))

    if _DRIVE_RE.match(text) or text.startswith("/"):
        candidate = PurePosixPath(text)
        base = PurePosixPath(root_text)
        if _DRIVE_RE.match(text) and _DRIVE_RE.match(root_text):
            # Drive letters compare case-insensitively
            candidate = PurePosixPath(text[0].lower() + text[1:])
            base = PurePosixPath(root_text[0].lower() + root_text[1:])
        try:
            return candidate.relative_to(base).as_posix()
        except ValueError:
            return candidate.as_posix()

    while text.startswith("./"):
        text = text[2:]
    return PurePosixPath(text).as_posix() if text else "."


def to_glob(path: str) -> str:
    """Escape glob metacharacters so ``path`` matches only itself."""
    return _GLOB_SPECIAL_RE.sub(r"\\\1", path)
