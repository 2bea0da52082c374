"""
Per-path advisory locks for serializing writers inside one process.

Waiters sleep on a per-path condition and are woken when the holder
releases, rather than polling. There is no fairness ordering, no reentrancy
and no protection against other OS processes.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from hivecache.exceptions import LockTimeoutException

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 5.0  # seconds


class LockManager:
    """
    Advisory lock table keyed by path.

    Attributes:
        timeout: Maximum seconds ``acquire`` waits before raising

    Example:
        >>> locks = LockManager(timeout=2.0)
        >>> async with locks.hold("/repo/a.txt"):
        ...     ...  # exclusive against other holders of the same path
    """

    def __init__(self, timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.timeout = timeout
        self._held: Dict[str, float] = {}
        self._mutex = asyncio.Lock()
        self._conditions: Dict[str, asyncio.Condition] = {}
        self._waiting: Dict[str, int] = {}

    def is_locked(self, path: str) -> bool:
        return path in self._held

    def held(self) -> Dict[str, float]:
        """Snapshot of currently held paths and their acquisition times."""
        return dict(self._held)

    async def acquire(self, path: str) -> None:
        """
        Acquire the lock for ``path``, waiting until it is free.

        Args:
            path: The path to lock (callers pass the canonical absolute form)

        Raises:
            LockTimeoutException: If the lock is still held after ``timeout`` seconds
        """
        async with self._mutex:
            if path in self._held:
                condition = self._conditions.setdefault(
                    path, asyncio.Condition(self._mutex)
                )
                self._waiting[path] = self._waiting.get(path, 0) + 1
                try:
                    await asyncio.wait_for(
                        condition.wait_for(lambda: path not in self._held),
                        timeout=self.timeout,
                    )
                except asyncio.TimeoutError:
                    logger.warning(f"Lock timeout after {self.timeout}s: {path}")
                    raise LockTimeoutException(
                        f"Could not acquire lock for {path} within {self.timeout} seconds",
                        details={"path": path, "timeout": self.timeout},
                    ) from None
                finally:
                    self._waiting[path] -= 1
                    if self._waiting[path] == 0:
                        del self._waiting[path]
                        self._conditions.pop(path, None)

            self._held[path] = time.time()
            logger.debug(f"Lock acquired: {path}")

    async def release(self, path: str) -> None:
        """
        Release the lock for ``path``.

        Unconditional: there is no ownership token, and releasing a path that
        is not held is a no-op.
        """
        async with self._mutex:
            self._held.pop(path, None)
            condition = self._conditions.get(path)
            if condition is not None:
                condition.notify_all()
        logger.debug(f"Lock released: {path}")

    @asynccontextmanager
    async def hold(self, path: str) -> AsyncIterator[None]:
        """Acquire ``path`` for the duration of the block, releasing on any exit."""
        await self.acquire(path)
        try:
            yield
        finally:
            await self.release(path)
