import threading
from collections.abc import Hashable


class KeyedLock:
    """One exclusive lock per key, created on first use."""

    def __init__(self):
        self._locks: dict[Hashable, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# process-wide registry, keyed by vault contract address
vault_locks = KeyedLock()
