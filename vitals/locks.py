"""Per-key asyncio locks for read-merge-upsert serialization.

Writes to different (user_id, timestamp) keys proceed concurrently; writes
to the same key queue behind one lock. Locks are dropped once no task holds
or awaits them, so memory stays proportional to in-flight keys.
"""

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager


class KeyedLock:
    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}
        self._owners: dict[Hashable, asyncio.Task | None] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                self._owners[key] = asyncio.current_task()
                try:
                    yield
                finally:
                    del self._owners[key]
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def locked(self, key: Hashable) -> bool:
        """Whether any task holds ``key``."""
        return key in self._owners

    def is_held(self, key: Hashable) -> bool:
        """Whether the calling task holds ``key``."""
        return key in self._owners and self._owners[key] is asyncio.current_task()

    def __len__(self) -> int:
        return len(self._locks)
