"""
Keyed Async Mutex

Mutual exclusion scoped by an arbitrary string key. Calls that share a key run
one at a time in arrival order; calls with different keys run concurrently.
Every caller gets the result of its own function (this is not a single-flight
cache).

Used for:
    - rate limiter bookkeeping (one key per limiter)
    - reference-data cache refreshes (one key per cache)

Usage:
    from core.mutex import KeyedMutex

    mutex = KeyedMutex()

    async with mutex.lock("hyperliquid"):
        ...

    result = await mutex.with_lock("getCoinByPair", cache.load)
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, TypeVar

R = TypeVar("R")


class _Entry:
    """Lock plus the number of holders and waiters referencing it."""

    __slots__ = ("lock", "refs")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.refs = 0


class KeyedMutex:
    """
    Per-key FIFO lock registry.

    asyncio.Lock wakes waiters in FIFO order and removes a cancelled waiter
    from its queue, so both guarantees come from the lock itself. Entries are
    dropped as soon as nobody holds or waits on the key.

    Example:
        >>> mutex = KeyedMutex()
        >>> async def work():
        ...     async with mutex.lock("kucoin"):
        ...         return await fetch()
    """

    def __init__(self):
        self._entries: Dict[str, _Entry] = {}

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.refs += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.refs -= 1
            if entry.refs == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    async def with_lock(self, key: str, fn: Callable[..., Awaitable[R]], *args: Any, **kwargs: Any) -> R:
        """
        Run ``fn(*args, **kwargs)`` while holding ``key``.

        Args:
            key: Lock scope
            fn: Coroutine function to run exclusively

        Returns:
            Whatever ``fn`` returns; exceptions propagate after the lock is released
        """
        async with self.lock(key):
            return await fn(*args, **kwargs)

    def is_locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    def waiting(self, key: str) -> int:
        """Number of callers queued behind the current holder of ``key``."""
        entry = self._entries.get(key)
        if entry is None:
            return 0
        return max(entry.refs - (1 if entry.lock.locked() else 0), 0)

    def keys(self):
        return list(self._entries.keys())
