"""Short-lived in-process mutexes keyed by user id.

Only serialises writers inside one process; two workers or two hosts can
still interleave read-compute-write sequences on the same profile row.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Tuple


class KeyedLock:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> (lock, number of holders + waiters)
        self._locks: Dict[str, Tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(key, (threading.Lock(), 0))
            self._locks[key] = (lock, users + 1)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                current, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (current, users - 1)

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)


__all__ = ["KeyedLock"]
