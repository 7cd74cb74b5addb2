"""
Loan Code Sequence Module

Human-facing loan codes look like GL250301: prefix, two-digit year,
two-digit month, then a sequence number that restarts every calendar month.
The sequence comes from an injected service so loan creation does not
depend on counting existing loans.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
import threading

from .storage import StorageInterface


def format_loan_code(prefix: str, when: datetime, sequence: int) -> str:
    """Build a loan code; the sequence is padded to at least two digits"""
    return f"{prefix}{when.year % 100:02d}{when.month:02d}{sequence:02d}"


class LoanCodeSequence(ABC):
    """Source of per-month loan sequence numbers"""

    @abstractmethod
    def next_sequence(self, year: int, month: int) -> int:
        """Reserve and return the next sequence number for a calendar month"""
        pass


class StorageLoanCodeSequence(LoanCodeSequence):
    """
    Counter documents in storage, one per calendar month
    """

    def __init__(self, storage: StorageInterface, table_name: str = "loan_code_sequences"):
        self.storage = storage
        self.table_name = table_name
        self._lock = threading.Lock()

    def next_sequence(self, year: int, month: int) -> int:
        key = f"{year:04d}-{month:02d}"
        with self.storage.atomic(), self._lock:
            counter = self.storage.load(self.table_name, key)
            value = (counter['value'] if counter else 0) + 1
            self.storage.save(self.table_name, key, {
                'id': key,
                'value': value,
                'updated_at': datetime.now(timezone.utc).isoformat()
            })
            return value

    def current(self, year: int, month: int) -> int:
        """Last number handed out for a month, 0 if none"""
        counter = self.storage.load(self.table_name, f"{year:04d}-{month:02d}")
        return counter['value'] if counter else 0
