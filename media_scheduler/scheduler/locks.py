"""Per-task coordination primitives."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class RunGuard:
    """Non-blocking try-lock keyed by task id.

    Contention is rejected, never queued. State is in memory only.
    """

    def __init__(self) -> None:
        self._running: set[str] = set()

    def try_acquire(self, task_id: str) -> bool:
        if task_id in self._running:
            return False
        self._running.add(task_id)
        return True

    def release(self, task_id: str) -> None:
        self._running.discard(task_id)

    def is_running(self, task_id: str) -> bool:
        return task_id in self._running

    def running_ids(self) -> list[str]:
        return sorted(self._running)


class KeyedLock:
    """Async mutex per task id for read-modify-write sequences on the store.

    A key's lock is dropped once nobody holds or waits on it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]
