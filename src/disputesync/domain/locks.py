"""Per-key asyncio locks that are dropped once nobody holds or waits on them."""

from __future__ import annotations

import asyncio


class KeyedLocks:
    """One ``asyncio.Lock`` per key, created on demand and dropped when idle."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __call__(self, key: str) -> _KeyedLock:
        return _KeyedLock(self, key)

    def __len__(self) -> int:
        return len(self._locks)

    async def _acquire(self, key: str) -> None:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._leave(key)
            raise

    def _release(self, key: str) -> None:
        self._locks[key].release()
        self._leave(key)

    def _leave(self, key: str) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]


class _KeyedLock:
    def __init__(self, owner: KeyedLocks, key: str) -> None:
        self._owner = owner
        self._key = key

    async def __aenter__(self) -> None:
        await self._owner._acquire(self._key)  # noqa: SLF001

    async def __aexit__(self, *exc_info: object) -> None:
        self._owner._release(self._key)  # noqa: SLF001
