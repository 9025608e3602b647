"""Per-user in-process locks"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class UserLocks:
    """
    Registry of one lock per user id, shared by every request in the process.

    An entry lives only while some caller holds or waits on it, so the
    registry is bounded by the number of in-flight users.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}  # callers holding or waiting, per user

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, user_id: str, timeout: float = -1) -> Iterator[bool]:
        """
        Acquire the user's lock, yielding whether it was obtained.

        timeout=0 tries once without blocking; -1 waits indefinitely.
        """
        with self._guard:
            lock = self._locks.setdefault(user_id, threading.Lock())
            self._users[user_id] = self._users.get(user_id, 0) + 1

        acquired = lock.acquire(timeout=timeout)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()
            with self._guard:
                self._users[user_id] -= 1
                if not self._users[user_id]:
                    del self._users[user_id]
                    del self._locks[user_id]
