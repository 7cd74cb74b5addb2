"""
Tests for repayment receipts

Tests receipt construction, channel providers and the best-effort delivery
of receipts after payments.
"""

import logging
import pytest
import requests
from decimal import Decimal
from datetime import datetime, timezone
from unittest.mock import MagicMock

from gold_lending.storage import InMemoryStorage
from gold_lending.audit import AuditTrail
from gold_lending.events import EventDispatcher
from gold_lending.config import LendingConfig
from gold_lending.loans import LoanManager
from gold_lending.notifications import (
    RepaymentReceipt, ChannelProvider, LogChannelProvider,
    WebhookChannelProvider, ReceiptNotifier
)


class MockChannelProvider(ChannelProvider):
    """Mock channel provider for testing"""

    def __init__(self, should_succeed: bool = True, should_raise: bool = False):
        self.should_succeed = should_succeed
        self.should_raise = should_raise
        self.sent_receipts = []

    def send(self, receipt: RepaymentReceipt) -> bool:
        if self.should_raise:
            raise RuntimeError("provider down")
        self.sent_receipts.append(receipt)
        return self.should_succeed


def _receipt(**overrides):
    values = dict(
        loan_id="L1", loan_code="GL240101", customer_id="CUST001", payment_id="P1",
        payment_amount="1066.19", payment_method="handcash", transaction_id=None,
        payment_date="2024-02-15T10:00:00+00:00", total_paid="1066.19",
        principal="12000.00", total_payment="12794.23", to_be_paid="11728.04",
        currency="INR", closed=False
    )
    values.update(overrides)
    return RepaymentReceipt(**values)


@pytest.fixture
def dispatcher():
    return EventDispatcher()


@pytest.fixture
def loan_manager(dispatcher):
    storage = InMemoryStorage()
    return LoanManager(
        storage, AuditTrail(storage),
        event_dispatcher=dispatcher,
        clock=lambda: datetime(2024, 1, 15, tzinfo=timezone.utc),
        config=LendingConfig(use_in_memory_storage=True)
    )


class TestRepaymentReceipt:

    def test_summary(self):
        text = _receipt().summary()
        assert "GL240101" in text
        assert "to be paid 11728.04" in text
        assert "closed" not in text
        assert _receipt(closed=True).summary().endswith("loan closed")

    def test_to_dict(self):
        data = _receipt(transaction_id="UTR1").to_dict()
        assert data["transaction_id"] == "UTR1"
        assert data["to_be_paid"] == "11728.04"


class TestChannelProviders:

    def test_log_provider(self, caplog):
        receipt_logger = logging.getLogger("test.receipts")
        provider = LogChannelProvider(receipt_logger)
        with caplog.at_level(logging.INFO, logger="test.receipts"):
            assert provider.send(_receipt())
        assert "GL240101" in caplog.text

    def test_webhook_posts_json(self):
        session = MagicMock()
        session.post.return_value = MagicMock(ok=True, status_code=200)
        provider = WebhookChannelProvider("https://hooks.example.com/receipts", timeout=3, session=session)

        assert provider.send(_receipt())

        args, kwargs = session.post.call_args
        assert args[0] == "https://hooks.example.com/receipts"
        assert kwargs["json"]["loan_code"] == "GL240101"
        assert kwargs["timeout"] == 3

    def test_webhook_http_error(self):
        session = MagicMock()
        session.post.return_value = MagicMock(ok=False, status_code=503)
        provider = WebhookChannelProvider("https://hooks.example.com/receipts", session=session)
        assert not provider.send(_receipt())

    def test_webhook_connection_error(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")
        provider = WebhookChannelProvider("https://hooks.example.com/receipts", session=session)
        assert not provider.send(_receipt())


class TestReceiptNotifier:

    def test_receipt_sent_after_payment(self, loan_manager, dispatcher):
        provider = MockChannelProvider()
        notifier = ReceiptNotifier([provider])
        notifier.subscribe(dispatcher)

        loan = loan_manager.create_loan("CUST001", Decimal('12000'), Decimal('12'), 12)
        payment = loan_manager.apply_payment(loan.id, Decimal('1066.19'), "online", transaction_id="UTR5")
        notifier.flush(timeout=5)
        notifier.shutdown()

        assert len(provider.sent_receipts) == 1
        receipt = provider.sent_receipts[0]
        assert receipt.payment_id == payment.id
        assert receipt.loan_code == loan.loan_code
        assert receipt.payment_method == "online"
        assert receipt.transaction_id == "UTR5"
        assert receipt.total_paid == "1066.19"
        assert receipt.to_be_paid == "11728.04"
        assert not receipt.closed

    def test_closing_payment_receipt(self, loan_manager, dispatcher):
        provider = MockChannelProvider()
        notifier = ReceiptNotifier([provider])
        notifier.subscribe(dispatcher)

        loan = loan_manager.create_loan("CUST001", Decimal('1000'), Decimal('12'), 2)
        loan_manager.apply_payment(loan.id, loan.total_payment, "handcash")
        notifier.flush(timeout=5)
        notifier.shutdown()

        assert provider.sent_receipts[0].closed
        assert provider.sent_receipts[0].to_be_paid == "0.00"

    def test_every_provider_receives_receipt(self, loan_manager, dispatcher):
        first, second = MockChannelProvider(), MockChannelProvider()
        notifier = ReceiptNotifier([first])
        notifier.register_provider(second)
        notifier.subscribe(dispatcher)

        loan = loan_manager.create_loan("CUST001", Decimal('5000'), Decimal('12'), 6)
        loan_manager.apply_payment(loan.id, Decimal('100'), "handcash")
        notifier.flush(timeout=5)
        notifier.shutdown()

        assert len(first.sent_receipts) == len(second.sent_receipts) == 1

    def test_provider_failure_never_reaches_payment(self, loan_manager, dispatcher):
        failing = MockChannelProvider(should_raise=True)
        refusing = MockChannelProvider(should_succeed=False)
        notifier = ReceiptNotifier([failing, refusing])
        notifier.subscribe(dispatcher)

        loan = loan_manager.create_loan("CUST001", Decimal('5000'), Decimal('12'), 6)
        payment = loan_manager.apply_payment(loan.id, Decimal('100'), "handcash")
        notifier.flush(timeout=5)
        notifier.shutdown()

        assert loan_manager.get_payments(loan.id)[0].id == payment.id
        assert len(refusing.sent_receipts) == 1
