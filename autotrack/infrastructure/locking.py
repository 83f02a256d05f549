"""
Per-entity locking for AutoTrack.

Commit decisions, sprint membership changes and task status changes can
arrive from concurrent request handlers and from the scheduler. Each entity
id gets its own asyncio lock so updates to one entity are serialized while
unrelated entities proceed independently.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Iterable, List
from weakref import WeakValueDictionary


class KeyedLock:
    """A family of asyncio locks addressed by key."""

    def __init__(self, name: str):
        self.name = name
        self._locks: "WeakValueDictionary[str, asyncio.Lock]" = WeakValueDictionary()

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncGenerator[None, None]:
        """Hold the lock for a single key."""
        lock = self._lock_for(str(key))
        async with lock:
            yield

    @asynccontextmanager
    async def hold_many(self, keys: Iterable[str]) -> AsyncGenerator[None, None]:
        """
        Hold the locks for several keys.

        Keys are acquired in sorted order so two callers locking
        overlapping sets cannot deadlock.
        """
        ordered = sorted({str(k) for k in keys})
        # Strong references keep the weak dict entries alive while held
        locks: List[asyncio.Lock] = [self._lock_for(k) for k in ordered]
        acquired: List[asyncio.Lock] = []
        try:
            for lock in locks:
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


# Shared lock families. Lock order: project, sprint, commit, task.
project_locks = KeyedLock("project")
sprint_locks = KeyedLock("sprint")
commit_locks = KeyedLock("commit")
task_locks = KeyedLock("task")
