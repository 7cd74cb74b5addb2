"""
Per-loan serialization.

Every read-modify-write of a loan aggregate runs while holding that loan's
lock; operations on different loans never contend.
"""

import threading
from contextlib import contextmanager
from typing import Dict


class LoanLockRegistry:
    """Hands out one lock per loan id, dropping it once nobody holds or waits on it"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    @contextmanager
    def hold(self, loan_id: str):
        with self._guard:
            lock = self._locks.setdefault(loan_id, threading.Lock())
            self._users[loan_id] = self._users.get(loan_id, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._users[loan_id] -= 1
                if self._users[loan_id] == 0:
                    del self._users[loan_id]
                    del self._locks[loan_id]

    def active_loans(self) -> int:
        """Number of loans currently locked or awaited"""
        with self._guard:
            return len(self._locks)
