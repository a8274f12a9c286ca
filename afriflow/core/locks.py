"""
Per-key locks.

Operations on different payment/escrow ids proceed in parallel; operations
on the same id are serialized. Entries are reference counted and dropped
when the last holder leaves, so the table does not grow with history.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock  = threading.Lock()
        self.users = 0


class KeyedLocks:

    def __init__(self) -> None:
        self._guard:   threading.Lock          = threading.Lock()
        self._entries: Dict[Hashable, _Entry]  = {}

    def _acquire_entry(self, key: Hashable) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _release_entry(self, key: Hashable, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        entry = self._acquire_entry(key)
        try:
            with entry.lock:
                yield
        finally:
            self._release_entry(key, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
