"""
Tests for upgrading legacy flat loan documents
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, date

from gold_lending.storage import InMemoryStorage
from gold_lending.audit import AuditTrail, AuditEventType
from gold_lending.config import LendingConfig
from gold_lending.currency import Money
from gold_lending.amortization import InstallmentStatus
from gold_lending.exceptions import ValidationError
from gold_lending.sequences import StorageLoanCodeSequence
from gold_lending.loans import LoanManager, LoanStatus, AllocationPolicy, PaymentMethod
from gold_lending.migrations import LegacyLoanMigrator, upgrade_legacy_loan, is_legacy_record


def legacy_record(**overrides):
    """Flat document as the older system stored it"""
    record = {
        "id": "64f1c0aa",
        "loanId": "CY240101",
        "customerId": "CUST001",
        "amount": 12000,
        "interestRate": 12,
        "term": 12,
        "status": "active",
        "createdAt": "2024-01-15T10:00:00.000Z",
        "monthlyPayment": 1066.1854641401,
        "totalPayment": 12794.225569681,
        "remainingBalance": 10661.850,
        "goldItems": [{"description": "Chain", "grossWeight": 20.5, "netWeight": 19.8}],
        "depositedBank": "Indian Bank",
        "renewalDate": "2025-01-15T00:00:00.000Z",
        "createdBy": "EMP001",
        "payments": [
            {"amount": 1066.19, "date": "2024-02-14T09:00:00.000Z", "method": "online",
             "transactionId": "UTR1", "installmentNumber": 1, "remainingBalance": 11728.04},
            {"amount": 1066.19, "date": "2024-03-15T09:00:00.000Z", "method": "handcash",
             "installmentNumber": 2, "remainingBalance": 10661.85},
        ],
    }
    record.update(overrides)
    return record


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit_trail(storage):
    return AuditTrail(storage)


@pytest.fixture
def config():
    return LendingConfig(use_in_memory_storage=True)


class TestUpgradeLegacyLoan:

    def test_schedule_regenerated_and_payments_replayed(self):
        loan = upgrade_legacy_loan(legacy_record())

        assert loan.id == "64f1c0aa"
        assert loan.loan_code == "CY240101"
        assert loan.monthly_payment.amount == Decimal('1066.19')
        assert loan.total_payment.amount == Decimal('12794.23')
        assert len(loan.installments) == 12
        assert loan.installments[0].status == InstallmentStatus.PAID
        assert loan.installments[1].status == InstallmentStatus.PAID
        assert loan.installments[2].status == InstallmentStatus.PENDING
        assert loan.total_paid == Money(Decimal('2132.38'))
        assert loan.remaining_balance == Money(Decimal('10661.85'))
        assert loan.status == LoanStatus.ACTIVE

    def test_payment_details_preserved(self):
        loan = upgrade_legacy_loan(legacy_record())

        first, second = loan.payments
        assert first.method == PaymentMethod.ONLINE
        assert first.transaction_id == "UTR1"
        assert first.payment_date == datetime(2024, 2, 14, 9, 0, tzinfo=timezone.utc)
        assert second.installment_number == 2
        assert loan.updated_at == second.payment_date

    def test_annotations_carried_over(self):
        loan = upgrade_legacy_loan(legacy_record())

        assert loan.gold_items[0].description == "Chain"
        assert loan.gold_items[0].net_weight == Decimal('19.8')
        assert loan.deposited_bank == "Indian Bank"
        assert loan.renewal_date == date(2025, 1, 15)
        assert loan.created_by == "EMP001"

    def test_payments_replayed_in_date_order(self):
        record = legacy_record()
        record["payments"].reverse()
        loan = upgrade_legacy_loan(record)
        assert [p.payment_date.month for p in loan.payments] == [2, 3]

    def test_settled_loan_keeps_closed_date(self):
        record = legacy_record(
            status="closed",
            closedDate="2024-04-02T12:00:00.000Z",
            payments=[{"amount": 12794.23, "date": "2024-04-02T11:59:00.000Z", "method": "handcash"}]
        )
        loan = upgrade_legacy_loan(record)

        assert loan.status == LoanStatus.CLOSED
        assert loan.closed_date == datetime(2024, 4, 2, 12, 0, tzinfo=timezone.utc)
        assert loan.actual_amount_paid == Money(Decimal('12794.23'))

    def test_early_settlement_stays_closed(self):
        """A loan settled at the 3-month simple-interest payoff remains closed"""
        record = legacy_record(
            status="closed",
            closedDate="2024-04-15T10:00:00.000Z",
            payments=[{"amount": 12360, "date": "2024-04-15T10:00:00.000Z", "method": "handcash"}]
        )
        loan = upgrade_legacy_loan(record)

        assert loan.status == LoanStatus.CLOSED
        assert not loan.is_open
        assert loan.closed_date == datetime(2024, 4, 15, 10, 0, tzinfo=timezone.utc)
        assert loan.actual_repayment_date == loan.closed_date
        assert loan.actual_amount_paid == Money(Decimal('12360'))
        assert loan.total_paid == Money(Decimal('12360'))
        assert loan.remaining_balance == loan.total_payment - loan.total_paid

    def test_early_settlement_without_closed_date_uses_last_payment(self):
        """Settlement date falls back to the final payment"""
        record = legacy_record(
            status="closed",
            payments=[{"amount": 12360, "date": "2024-04-15T09:30:00Z", "method": "handcash"}]
        )
        loan = upgrade_legacy_loan(record)

        assert loan.status == LoanStatus.CLOSED
        assert loan.closed_date == datetime(2024, 4, 15, 9, 30, tzinfo=timezone.utc)

    def test_cascade_policy_replay(self):
        record = legacy_record(payments=[{"amount": 2132.38, "date": "2024-02-14T09:00:00Z", "method": "handcash"}])
        loan = upgrade_legacy_loan(record, AllocationPolicy.CASCADE)
        assert loan.installments[1].status == InstallmentStatus.PAID

    def test_rejected_status_kept(self):
        loan = upgrade_legacy_loan(legacy_record(status="rejected", payments=[]))
        assert loan.status == LoanStatus.REJECTED

    def test_missing_code_issued_from_sequence(self, storage):
        record = legacy_record()
        del record["loanId"]
        loan = upgrade_legacy_loan(record, code_sequence=StorageLoanCodeSequence(storage))
        assert loan.loan_code == "GL240101"

    def test_missing_code_without_sequence_rejected(self):
        record = legacy_record()
        del record["loanId"]
        with pytest.raises(ValidationError):
            upgrade_legacy_loan(record)

    def test_payment_after_settlement_rejected(self):
        record = legacy_record(payments=[
            {"amount": 12794.23, "date": "2024-03-01T00:00:00Z", "method": "handcash"},
            {"amount": 100, "date": "2024-03-02T00:00:00Z", "method": "handcash"},
        ])
        with pytest.raises(ValidationError):
            upgrade_legacy_loan(record)

    def test_is_legacy_record(self):
        assert is_legacy_record(legacy_record())
        assert is_legacy_record(legacy_record(installments=[]))
        assert not is_legacy_record({"installments": [{"number": 1}]})


class TestLegacyLoanMigrator:

    def test_migrates_legacy_and_skips_current(self, storage, audit_trail, config):
        manager = LoanManager(
            storage, audit_trail, config=config,
            clock=lambda: datetime(2024, 6, 1, tzinfo=timezone.utc)
        )
        current = manager.create_loan("CUST009", Decimal('5000'), Decimal('12'), 6)
        storage.save("loans", "64f1c0aa", legacy_record())

        result = LegacyLoanMigrator(storage, audit_trail, config=config).migrate()

        assert result == {"migrated": 1, "skipped": 1, "failed": []}
        migrated = manager.get_loan("64f1c0aa")
        assert migrated.total_paid == Money(Decimal('2132.38'))
        assert migrated.version == 1
        assert manager.get_loan(current.id) == current

        events = audit_trail.get_events_for_entity("loan", "64f1c0aa")
        assert events[0].event_type == AuditEventType.LOAN_MIGRATED
        assert events[0].metadata["payments_replayed"] == 2

    def test_rerun_is_a_no_op(self, storage, audit_trail, config):
        storage.save("loans", "64f1c0aa", legacy_record())
        migrator = LegacyLoanMigrator(storage, audit_trail, config=config)

        migrator.migrate()
        snapshot = storage.load("loans", "64f1c0aa")
        result = migrator.migrate()

        assert result == {"migrated": 0, "skipped": 1, "failed": []}
        assert storage.load("loans", "64f1c0aa") == snapshot
        assert migrator.pending() == []

    def test_broken_document_reported_and_left_alone(self, storage, audit_trail, config):
        broken = legacy_record(id="bad1", term="twelve")
        storage.save("loans", "bad1", broken)
        storage.save("loans", "64f1c0aa", legacy_record())

        result = LegacyLoanMigrator(storage, audit_trail, config=config).migrate()

        assert result["migrated"] == 1
        assert result["failed"] == ["bad1"]
        assert storage.load("loans", "bad1") == broken
        assert audit_trail.verify_integrity()["valid"]

    def test_migrated_loan_accepts_payments(self, storage, audit_trail, config):
        storage.save("loans", "64f1c0aa", legacy_record())
        LegacyLoanMigrator(storage, audit_trail, config=config).migrate()

        manager = LoanManager(
            storage, audit_trail, config=config,
            clock=lambda: datetime(2024, 4, 15, tzinfo=timezone.utc)
        )
        payment = manager.apply_payment("64f1c0aa", Decimal('1066.19'), "handcash")
        assert payment.installment_number == 3
