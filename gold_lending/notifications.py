"""
Notification Module

Repayment receipts for borrowers. A receipt is built from the committed
payment event and handed to each channel provider on a worker pool; the
payment itself never waits for delivery and never fails because of it.
"""

from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional
import logging
import threading

import requests

from .events import DomainEvent, EventDispatcher, EventPayload


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepaymentReceipt:
    """What the borrower is told after a payment"""
    loan_id: str
    loan_code: str
    customer_id: str
    payment_id: str
    payment_amount: str
    payment_method: str
    transaction_id: Optional[str]
    payment_date: str
    total_paid: str
    principal: str
    total_payment: str
    to_be_paid: str
    currency: str
    closed: bool

    @classmethod
    def from_event(cls, event: EventPayload) -> 'RepaymentReceipt':
        data = event.data
        payment = data["payment"]
        return cls(
            loan_id=event.entity_id,
            loan_code=data["loan_code"],
            customer_id=data["customer_id"],
            payment_id=payment["id"],
            payment_amount=payment["amount"],
            payment_method=payment["method"],
            transaction_id=payment.get("transaction_id"),
            payment_date=payment["payment_date"],
            total_paid=data["total_paid"],
            principal=data["principal"],
            total_payment=data["total_payment"],
            to_be_paid=data["remaining_balance"],
            currency=data["currency"],
            closed=data["status"] == "closed",
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def summary(self) -> str:
        text = (
            f"Loan {self.loan_code}: received {self.currency} {self.payment_amount} "
            f"({self.payment_method}), paid {self.total_paid} of {self.total_payment}, "
            f"to be paid {self.to_be_paid}"
        )
        if self.closed:
            text += " - loan closed"
        return text


class ChannelProvider(ABC):
    """Abstract base class for receipt channel providers"""

    @abstractmethod
    def send(self, receipt: RepaymentReceipt) -> bool:
        """Deliver a receipt. Returns True if successful."""
        pass


class LogChannelProvider(ChannelProvider):
    """Writes receipts to the application log"""

    def __init__(self, receipt_logger: Optional[logging.Logger] = None):
        self.logger = receipt_logger or logging.getLogger("gold_lending.receipts")

    def send(self, receipt: RepaymentReceipt) -> bool:
        self.logger.info(receipt.summary(), extra={"action": "receipt", "resource": receipt.loan_id})
        return True


class WebhookChannelProvider(ChannelProvider):
    """Posts receipts as JSON to an external endpoint"""

    def __init__(self, url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, receipt: RepaymentReceipt) -> bool:
        try:
            response = self.session.post(
                self.url,
                json=receipt.to_dict(),
                timeout=self.timeout,
                headers={"Content-Type": "application/json"}
            )
        except requests.RequestException as e:
            logger.warning(f"Receipt webhook for loan {receipt.loan_code} failed: {e}")
            return False

        if not response.ok:
            logger.warning(
                f"Receipt webhook for loan {receipt.loan_code} returned HTTP {response.status_code}"
            )
        return response.ok


class ReceiptNotifier:
    """
    Sends a receipt through every provider whenever a payment is applied
    """

    def __init__(self, providers: Optional[List[ChannelProvider]] = None, max_workers: int = 2):
        self.providers = providers if providers is not None else [LogChannelProvider()]
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="receipts")
        self._pending: List[Future] = []
        self._lock = threading.Lock()

    def register_provider(self, provider: ChannelProvider) -> None:
        self.providers.append(provider)

    def subscribe(self, dispatcher: EventDispatcher) -> None:
        dispatcher.subscribe(DomainEvent.LOAN_PAYMENT_APPLIED, self.handle_payment)

    def handle_payment(self, event: EventPayload) -> None:
        receipt = RepaymentReceipt.from_event(event)
        futures = [self._executor.submit(self._deliver, provider, receipt) for provider in self.providers]
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()] + futures

    def _deliver(self, provider: ChannelProvider, receipt: RepaymentReceipt) -> bool:
        try:
            delivered = provider.send(receipt)
        except Exception:
            logger.exception(f"{type(provider).__name__} failed for loan {receipt.loan_code}")
            return False
        if not delivered:
            logger.warning(f"{type(provider).__name__} did not deliver receipt for loan {receipt.loan_code}")
        return delivered

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for deliveries already queued"""
        with self._lock:
            pending, self._pending = self._pending, []
        for future in pending:
            future.result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
