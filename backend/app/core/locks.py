"""Per-key mutual exclusion for in-process shared state."""

from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from typing import Hashable, Iterator


class KeyedLocks:
    """Hands out one lock per key so unrelated keys never serialize.

    Entries are reference counted and dropped once no thread holds or waits
    on them, which keeps the table bounded by the number of active keys.
    """

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[Hashable, Lock] = {}
        self._refs: dict[Hashable, int] = {}

    def _acquire_entry(self, key: Hashable) -> Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = Lock()
                self._locks[key] = lock
                self._refs[key] = 0
            self._refs[key] += 1
            return lock

    def _release_entry(self, key: Hashable) -> None:
        with self._guard:
            remaining = self._refs.get(key, 0) - 1
            if remaining <= 0:
                self._refs.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._refs[key] = remaining

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self._acquire_entry(key)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            self._release_entry(key)

    @contextmanager
    def hold_many(self, keys: list[Hashable]) -> Iterator[None]:
        """Acquire several keys in the given order; callers must use a fixed order."""
        acquired: list[tuple[Hashable, Lock]] = []
        try:
            for key in keys:
                lock = self._acquire_entry(key)
                lock.acquire()
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._release_entry(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
