"""
Legacy Loan Migration

Older loan documents were stored flat: camelCase keys, float amounts and a
payment list with no installment schedule (sometimes without a loan code).
This module rebuilds such documents into the installment model by
regenerating the schedule and replaying every payment through the allocator.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging
import uuid

from .amortization import as_utc, calculate_payment, generate_schedule
from .audit import AuditTrail, AuditEventType
from .config import LendingConfig, get_config
from .currency import Money, to_decimal
from .exceptions import LendingError, ValidationError
from .loans import AllocationPolicy, GoldItem, Loan, LoanStatus, PaymentMethod
from .sequences import LoanCodeSequence, format_loan_code
from .storage import StorageInterface


logger = logging.getLogger(__name__)


def _field(record: Dict[str, Any], *keys: str, default=None):
    for key in keys:
        if record.get(key) is not None:
            return record[key]
    return default


def _parse_moment(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


def _money(value) -> Money:
    try:
        return Money(to_decimal(value))
    except ValueError as e:
        raise ValidationError(f"Invalid legacy amount: {e}")


def is_legacy_record(record: Dict[str, Any]) -> bool:
    """A document without an installment schedule predates the installment model"""
    return not record.get("installments")


def upgrade_legacy_loan(
    record: Dict[str, Any],
    allocation_policy: AllocationPolicy = AllocationPolicy.CURRENT_INSTALLMENT,
    code_sequence: Optional[LoanCodeSequence] = None,
    code_prefix: str = "GL"
) -> Loan:
    """
    Convert a flat legacy loan document into a Loan aggregate

    A document the older system closed at its early-settlement quote stays
    closed even though its payments fall short of the amortized total.

    Args:
        record: Stored legacy document
        allocation_policy: Allocation used when replaying payments
        code_sequence: Issues a loan code when the document has none
        code_prefix: Prefix for newly issued loan codes

    Returns:
        Rebuilt Loan; nothing is persisted here

    Raises:
        ValidationError: If the document cannot be interpreted
    """
    loan_id = _field(record, "id", "_id")
    if not loan_id:
        raise ValidationError("Legacy loan has no id")

    created_at = _parse_moment(_field(record, "createdAt", "created_at"))
    if created_at is None:
        raise ValidationError(f"Legacy loan {loan_id} has no creation date")

    principal = _money(_field(record, "amount", "principal"))
    try:
        rate = to_decimal(_field(record, "interestRate", "annual_interest_rate"))
        term = int(_field(record, "term", "term_months"))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Legacy loan {loan_id} has invalid terms: {e}")

    monthly_payment, total_payment = calculate_payment(principal, rate, term)
    installments = generate_schedule(created_at, term, monthly_payment, total_payment)

    loan_code = _field(record, "loanId", "loan_code")
    if not loan_code:
        if code_sequence is None:
            raise ValidationError(f"Legacy loan {loan_id} has no loan code and no sequence to issue one")
        loan_code = format_loan_code(
            code_prefix, created_at, code_sequence.next_sequence(created_at.year, created_at.month)
        )

    renewal = _parse_moment(_field(record, "renewalDate", "renewal_date"))
    loan = Loan(
        id=str(loan_id),
        created_at=created_at,
        updated_at=created_at,
        loan_code=loan_code,
        customer_id=str(_field(record, "customerId", "customer_id", default="")),
        principal=principal,
        annual_interest_rate=rate,
        term_months=term,
        monthly_payment=monthly_payment,
        total_payment=total_payment,
        status=LoanStatus.ACTIVE,
        installments=installments,
        gold_items=[
            GoldItem(
                description=_field(item, "description"),
                gross_weight=_field(item, "grossWeight", "gross_weight"),
                net_weight=_field(item, "netWeight", "net_weight"),
            )
            for item in _field(record, "goldItems", "gold_items", default=[])
        ],
        deposited_bank=_field(record, "depositedBank", "deposited_bank"),
        renewal_date=renewal.date() if renewal else None,
        created_by=_field(record, "createdBy", "created_by"),
    )

    payments = sorted(
        _field(record, "payments", default=[]),
        key=lambda p: _parse_moment(_field(p, "date", "payment_date")) or created_at
    )
    for entry in payments:
        paid_at = _parse_moment(_field(entry, "date", "payment_date")) or created_at
        if not loan.is_open:
            raise ValidationError(
                f"Legacy loan {loan_id} has payments after it was settled on {loan.closed_date.isoformat()}"
            )
        loan.record_payment(
            amount=_money(entry["amount"]),
            method=PaymentMethod(_field(entry, "method", default="handcash")),
            transaction_id=_field(entry, "transactionId", "transaction_id"),
            payment_date=paid_at,
            policy=allocation_policy,
        )
        loan.updated_at = max(loan.updated_at, paid_at)

    legacy_status = _field(record, "status", default="active")
    legacy_closed = (
        _parse_moment(_field(record, "closedDate", "closed_date"))
        or _parse_moment(_field(record, "actualRepaymentDate", "actual_repayment_date"))
    )
    if loan.status == LoanStatus.CLOSED:
        if legacy_closed:
            loan.closed_date = legacy_closed
            loan.actual_repayment_date = legacy_closed
    elif legacy_status == LoanStatus.CLOSED.value:
        # Settled early at the simple-interest payoff, below the amortized total
        settled_at = legacy_closed or (loan.payments[-1].payment_date if loan.payments else created_at)
        loan.status = LoanStatus.CLOSED
        loan.closed_date = settled_at
        loan.actual_repayment_date = settled_at
        loan.actual_amount_paid = loan.total_paid
        loan.updated_at = max(loan.updated_at, settled_at)
    elif legacy_status in (LoanStatus.APPROVED.value, LoanStatus.REJECTED.value):
        loan.status = LoanStatus(legacy_status)

    return loan


class LegacyLoanMigrator:
    """
    Upgrades every legacy document in the loans table in place
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        code_sequence: Optional[LoanCodeSequence] = None,
        config: Optional[LendingConfig] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.code_sequence = code_sequence
        self.config = config or get_config()
        self.loans_table = "loans"

    def pending(self) -> List[Dict[str, Any]]:
        return [record for record in self.storage.load_all(self.loans_table) if is_legacy_record(record)]

    def migrate(self) -> Dict[str, Any]:
        """
        Run the upgrade over all legacy documents

        Returns:
            Counts of migrated and skipped documents and the ids that failed
        """
        result = {"migrated": 0, "skipped": 0, "failed": []}
        policy = AllocationPolicy(self.config.allocation_policy)

        for record in self.storage.load_all(self.loans_table):
            if not is_legacy_record(record):
                result["skipped"] += 1
                continue

            record_id = _field(record, "id", "_id", default=str(uuid.uuid4()))
            try:
                with self.storage.atomic():
                    loan = upgrade_legacy_loan(
                        record, policy, self.code_sequence, self.config.loan_code_prefix
                    )
                    loan.version = int(record.get("version", 0)) + 1
                    self.storage.save(self.loans_table, loan.id, loan.to_dict())
                    self.audit_trail.log_event(
                        event_type=AuditEventType.LOAN_MIGRATED,
                        entity_type="loan",
                        entity_id=loan.id,
                        metadata={
                            "loan_code": loan.loan_code,
                            "payments_replayed": len(loan.payments),
                            "status": loan.status,
                            "remaining_balance": loan.remaining_balance.amount,
                            "migrated_at": datetime.now(timezone.utc),
                        }
                    )
            except (LendingError, KeyError, ValueError) as e:
                logger.error(f"Failed to migrate legacy loan {record_id}: {e}")
                result["failed"].append(record_id)
                continue

            result["migrated"] += 1
            logger.info(f"Migrated legacy loan {record_id} as {loan.loan_code}")

        return result
