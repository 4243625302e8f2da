"""
Per-key single-flight coordination.

KeyedLockCoordinator keeps one asyncio.Lock per key for as long as some
task is waiting on or holding it. Each entry is reference counted: the
entry is dropped only by the last task to leave, so a task that queued on
a lock always ends up contending with every other task for the same key
on that same lock.

The registry is touched only from the event loop thread and never across
an await, which makes get-or-create and drop-if-unreferenced atomic.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from dlcache.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class _LockEntry:
    """A key's lock plus the number of tasks referencing it."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    refs: int = 0


class KeyedLockCoordinator:
    """Runs callables under a per-key mutual-exclusion lock.

    Callers for different keys never block each other. Must be used from a
    single event loop.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}

    @property
    def in_flight(self) -> int:
        """Number of keys with a task waiting on or holding their lock."""
        return len(self._entries)

    def is_locked(self, key: str) -> bool:
        """Whether some task currently holds the lock for key."""
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    def _acquire_entry(self, key: str) -> _LockEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = _LockEntry()
            self._entries[key] = entry
        entry.refs += 1
        return entry

    def _release_entry(self, key: str, entry: _LockEntry) -> None:
        entry.refs -= 1
        if entry.refs == 0 and self._entries.get(key) is entry:
            del self._entries[key]

    async def with_lock(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn while holding the lock for key.

        The lock is released and the reference dropped on every exit path,
        including exceptions raised by fn and cancellation while waiting.

        Args:
            key: Lock key.
            fn: Zero-argument coroutine function to run under the lock.

        Returns:
            Whatever fn returns.
        """
        entry = self._acquire_entry(key)
        try:
            if entry.lock.locked():
                logger.debug("Waiting for in-flight fetch", key=key[:80], waiters=entry.refs - 1)
            async with entry.lock:
                return await fn()
        finally:
            self._release_entry(key, entry)
