# raidplan/locks.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from fastapi import Request


class _KeyedLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        # threads holding or waiting on the lock
        self.holders = 0


class KeyedLockRegistry:
    """
    Process-local mutual exclusion keyed by strings such as "user:42" or
    "event:7".

    Built once when the app is created and handed to the services that
    need it. Row locks (SELECT ... FOR UPDATE) still guard the database
    across processes; this only serializes work inside one process.
    A key's entry is dropped once nobody holds or waits on it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, _KeyedLock] = {}

    def _acquire_entry(self, key: str) -> _KeyedLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyedLock()
                self._locks[key] = entry
            entry.holders += 1
            return entry

    def _release_entry(self, key: str, entry: _KeyedLock) -> None:
        with self._guard:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        entry = self._acquire_entry(key)
        try:
            with entry.lock:
                yield
        finally:
            self._release_entry(key, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


@contextmanager
def maybe_hold(locks: KeyedLockRegistry | None, key: str) -> Iterator[None]:
    if locks is None:
        yield
        return
    with locks.hold(key):
        yield


def get_locks(request: Request) -> KeyedLockRegistry:
    return request.app.state.locks
