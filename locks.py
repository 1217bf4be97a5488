import threading
from contextlib import contextmanager
from typing import Dict


class LockRegistry:
    """
    One re-entrant lock per key, created on first use.

    Keys look like ``vehicle:<ref>`` or ``reservation:<id>``. Each key counts the
    threads holding or waiting on it and the lock is dropped when the count
    returns to zero, so the registry only holds keys that are in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _acquire_ref(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _release_ref(self, key: str):
        with self._guard:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: str):
        lock = self._acquire_ref(key)
        try:
            with lock:
                yield
        finally:
            self._release_ref(key)

    def vehicle(self, vehicle_ref: str):
        return self.hold(f"vehicle:{vehicle_ref}")

    def reservation(self, reservation_id: str):
        return self.hold(f"reservation:{reservation_id}")
