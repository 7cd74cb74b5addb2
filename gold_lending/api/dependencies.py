"""
Application container and FastAPI dependencies
"""

from datetime import datetime
from typing import Callable, Optional

from ..storage import StorageInterface, InMemoryStorage, SQLiteStorage
from ..audit import AuditTrail
from ..events import EventDispatcher
from ..sequences import StorageLoanCodeSequence
from ..concurrency import LoanLockRegistry
from ..loans import LoanManager
from ..migrations import LegacyLoanMigrator
from ..notifications import ReceiptNotifier, LogChannelProvider, WebhookChannelProvider
from ..config import LendingConfig, get_config


class LendingSystem:
    """Gold lending core with all components initialized"""

    def __init__(
        self,
        config: Optional[LendingConfig] = None,
        storage: Optional[StorageInterface] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config or get_config()

        if storage is not None:
            self.storage = storage
        elif self.config.use_in_memory_storage:
            self.storage = InMemoryStorage()
        else:
            self.storage = SQLiteStorage(self.config.database_path)

        self.audit_trail = AuditTrail(self.storage)
        self.event_dispatcher = EventDispatcher()
        self.code_sequence = StorageLoanCodeSequence(self.storage)
        self.loan_manager = LoanManager(
            self.storage, self.audit_trail,
            code_sequence=self.code_sequence,
            event_dispatcher=self.event_dispatcher,
            clock=clock,
            config=self.config,
            lock_registry=LoanLockRegistry()
        )

        self.receipt_notifier = self._create_receipt_notifier()

    def _create_receipt_notifier(self) -> Optional[ReceiptNotifier]:
        if not self.config.enable_receipts:
            return None

        providers = [LogChannelProvider()]
        if self.config.receipt_webhook_url:
            providers.append(WebhookChannelProvider(
                self.config.receipt_webhook_url,
                timeout=self.config.receipt_webhook_timeout
            ))

        notifier = ReceiptNotifier(providers, max_workers=self.config.notification_workers)
        notifier.subscribe(self.event_dispatcher)
        return notifier

    def migrate_legacy_loans(self):
        """Upgrade documents stored before installments were tracked"""
        migrator = LegacyLoanMigrator(
            self.storage, self.audit_trail, code_sequence=self.code_sequence, config=self.config
        )
        return migrator.migrate()

    def close(self) -> None:
        if self.receipt_notifier:
            self.receipt_notifier.shutdown()
        self.storage.close()


# Global lending system instance, built on first use
lending_system: Optional[LendingSystem] = None


# Dependency to get lending system
def get_lending_system() -> LendingSystem:
    global lending_system
    if lending_system is None:
        lending_system = LendingSystem()
    return lending_system
