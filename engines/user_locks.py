"""Per-user serialisation of read-modify-write work."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class UserLockRegistry:
    """Hand out one re-entrant lock per user id.

    Work for different users never contends; two runs for the same user are
    serialised for as long as the ``hold`` block lasts. A user's lock is
    dropped once no thread holds or waits for it, so the registry only keeps
    entries for users with work in flight.
    """

    def __init__(self) -> None:
        # user id -> [lock, number of threads holding or waiting]
        self._entries: Dict[str, List] = {}
        self._guard = threading.Lock()

    def _acquire_entry(self, user_id: str) -> threading.RLock:
        with self._guard:
            entry = self._entries.get(user_id)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._entries[user_id] = entry
            entry[1] += 1
            return entry[0]

    def _release_entry(self, user_id: str) -> None:
        with self._guard:
            entry = self._entries[user_id]
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[user_id]

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        lock = self._acquire_entry(user_id)
        try:
            with lock:
                yield
        finally:
            self._release_entry(user_id)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
