import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class KeyedLock:
    """One lock per key, alive only while someone holds or waits on it.

    Guards read-check-write sequences for a single book (loan creation,
    copy-count changes, book deletion) inside this process. Cross-process
    safety comes from the BEGIN IMMEDIATE transaction run under the lock.
    Keys come straight from requests, so an entry is dropped as soon as
    its last user releases it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> [lock, number of holders and waiters]
        self._locks: Dict[str, List] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _acquire_entry(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _release_entry(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._acquire_entry(key)
        try:
            with lock:
                yield
        finally:
            self._release_entry(key)
