"""
In-process keyed locks.

Database constraints are what make the membership and grant transitions
linearizable across workers; these locks serialize the critical sections
inside one worker so that racing requests queue instead of failing on
storage-level contention.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable


class KeyedLock:
    """A family of asyncio locks addressed by key, created on demand."""

    def __init__(self, name: str):
        self.name = name
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            # Drop idle locks so the map does not grow with every key seen
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


institute_locks = KeyedLock("institute")
grant_locks = KeyedLock("grant")
