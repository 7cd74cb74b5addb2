"""
Loan Module

Handles gold-loan origination, installment tracking, payment allocation,
payoff quotes and the loan lifecycle. The loan, its installments and its
payments form one aggregate, persisted as a single document.
"""

from decimal import Decimal
from datetime import datetime, timezone, timedelta, date
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union
from enum import Enum
import logging
import uuid

from .currency import Money, Currency, DEFAULT_CURRENCY, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .events import EventDispatcher, DomainEvent, create_loan_event
from .sequences import LoanCodeSequence, StorageLoanCodeSequence, format_loan_code
from .concurrency import LoanLockRegistry
from .config import LendingConfig, get_config
from .exceptions import (
    ValidationError, InvalidStateError, ConcurrentModificationError, NotFoundError
)
from .amortization import (
    Installment, InstallmentStatus, as_utc, calculate_payment, generate_schedule,
    calculate_early_repayment_amount
)
from .logging_config import log_action


logger = logging.getLogger(__name__)


class LoanStatus(Enum):
    """Loan lifecycle states"""
    APPROVED = "approved"
    REJECTED = "rejected"    # Terminal, set outside the payment flow
    ACTIVE = "active"        # Entered at creation
    CLOSED = "closed"        # Terminal, entered when the balance reaches zero


class PaymentMethod(Enum):
    HANDCASH = "handcash"
    ONLINE = "online"


class AllocationPolicy(Enum):
    """How a payment larger than the current installment's room is spread"""
    CURRENT_INSTALLMENT = "current_installment"  # Excess stays in loan totals only
    CASCADE = "cascade"                          # Excess flows to later installments


@dataclass
class GoldItem:
    """Pledged gold ornament"""
    description: str
    gross_weight: Decimal  # grams
    net_weight: Decimal    # grams

    def __post_init__(self):
        if not self.description or not str(self.description).strip():
            raise ValidationError("Gold item description is required")
        try:
            self.gross_weight = to_decimal(self.gross_weight)
            self.net_weight = to_decimal(self.net_weight)
        except ValueError as e:
            raise ValidationError(f"Invalid gold item weight: {e}")
        if self.gross_weight <= 0 or self.net_weight <= 0:
            raise ValidationError("Gold item weights must be positive")
        if self.net_weight > self.gross_weight:
            raise ValidationError("Gold item net weight cannot exceed gross weight")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'description': self.description,
            'gross_weight': str(self.gross_weight),
            'net_weight': str(self.net_weight),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GoldItem':
        return cls(
            description=data.get('description'),
            gross_weight=data.get('gross_weight'),
            net_weight=data.get('net_weight'),
        )


@dataclass(frozen=True)
class InstallmentAllocation:
    """Part of a payment credited to one installment"""
    installment_number: int
    amount: Money


@dataclass(frozen=True)
class Payment:
    """Immutable record of money received against a loan"""
    id: str
    amount: Money
    payment_date: datetime
    method: PaymentMethod
    installment_number: int             # First installment the payment was applied to
    remaining_balance: Money            # Loan balance right after this payment
    transaction_id: Optional[str] = None
    allocations: Tuple[InstallmentAllocation, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'amount': str(self.amount.amount),
            'payment_date': self.payment_date.isoformat(),
            'method': self.method.value,
            'transaction_id': self.transaction_id,
            'installment_number': self.installment_number,
            'remaining_balance': str(self.remaining_balance.amount),
            'allocations': [
                {'installment_number': a.installment_number, 'amount': str(a.amount.amount)}
                for a in self.allocations
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], currency: Currency) -> 'Payment':
        return cls(
            id=data['id'],
            amount=Money(Decimal(data['amount']), currency),
            payment_date=datetime.fromisoformat(data['payment_date']),
            method=PaymentMethod(data['method']),
            transaction_id=data.get('transaction_id'),
            installment_number=data['installment_number'],
            remaining_balance=Money(Decimal(data['remaining_balance']), currency),
            allocations=tuple(
                InstallmentAllocation(a['installment_number'], Money(Decimal(a['amount']), currency))
                for a in data.get('allocations', [])
            ),
        )


@dataclass
class LoanBalance:
    """Read-only snapshot of where a loan stands"""
    loan_id: str
    loan_code: str
    status: LoanStatus
    total_payment: Money
    total_paid: Money
    remaining_balance: Money
    installments_paid: int
    next_installment: Optional[Installment]


@dataclass
class Loan(StorageRecord):
    """Gold loan aggregate: terms, schedule, payments and running totals"""
    loan_code: str
    customer_id: str
    principal: Money
    annual_interest_rate: Decimal       # percent, e.g. Decimal('12') for 12%
    term_months: int
    monthly_payment: Money
    total_payment: Money
    status: LoanStatus = LoanStatus.ACTIVE

    total_paid: Money = None
    remaining_balance: Money = None
    closed_date: Optional[datetime] = None
    actual_repayment_date: Optional[datetime] = None
    actual_amount_paid: Money = None

    installments: List[Installment] = field(default_factory=list)
    payments: List[Payment] = field(default_factory=list)

    # Collateral and administrative annotations
    gold_items: List[GoldItem] = field(default_factory=list)
    deposited_bank: Optional[str] = None
    renewal_date: Optional[date] = None
    created_by: Optional[str] = None

    version: int = 0

    def __post_init__(self):
        zero = Money.zero(self.principal.currency)
        if self.total_paid is None:
            self.total_paid = zero
        if self.remaining_balance is None:
            self.remaining_balance = self.total_payment - self.total_paid
        if self.actual_amount_paid is None:
            self.actual_amount_paid = zero

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    @property
    def is_open(self) -> bool:
        """Check if the loan accepts payments"""
        return self.status in (LoanStatus.APPROVED, LoanStatus.ACTIVE)

    @property
    def current_installment(self) -> Optional[Installment]:
        """Lowest-numbered installment not yet fully paid"""
        for installment in self.installments:
            if installment.is_open:
                return installment
        return None

    def record_payment(
        self,
        amount: Money,
        method: PaymentMethod,
        transaction_id: Optional[str],
        payment_date: datetime,
        processed_at: Optional[datetime] = None,
        policy: AllocationPolicy = AllocationPolicy.CURRENT_INSTALLMENT
    ) -> Payment:
        """
        Apply a payment to the schedule and the running totals

        The payment is credited to the current installment up to its
        remaining room. Under the current-installment policy any excess is
        reflected only in total_paid and remaining_balance; under the cascade
        policy it is credited to the following installments in order. The
        loan closes once remaining_balance reaches zero or below.

        Raises:
            InvalidStateError: If the loan is not open or no installment is open
        """
        if not self.is_open:
            raise InvalidStateError(f"Loan {self.loan_code} is {self.status.value}; payments are not accepted")

        current = self.current_installment
        if current is None:
            raise InvalidStateError(
                f"Loan {self.loan_code} has no open installment but is still {self.status.value}"
            )

        allocations = []
        unapplied = amount
        for installment in self.installments[current.number - 1:]:
            if not unapplied.is_positive():
                break
            if not installment.is_open:
                continue
            applied = installment.credit(unapplied)
            allocations.append(InstallmentAllocation(installment.number, applied))
            unapplied = unapplied - applied
            if policy == AllocationPolicy.CURRENT_INSTALLMENT:
                break

        payment = Payment(
            id=str(uuid.uuid4()),
            amount=amount,
            payment_date=payment_date,
            method=method,
            transaction_id=transaction_id,
            installment_number=current.number,
            remaining_balance=self.remaining_balance - amount,
            allocations=tuple(allocations),
        )

        self.total_paid = self.total_paid + amount
        self.remaining_balance = self.remaining_balance - amount
        self.payments.append(payment)

        if not self.remaining_balance.is_positive():
            closed_at = processed_at or payment_date
            self.status = LoanStatus.CLOSED
            self.closed_date = closed_at
            self.actual_repayment_date = closed_at
            self.actual_amount_paid = self.total_paid

        return payment

    def to_dict(self) -> Dict[str, Any]:
        result = self._timestamps_to_dict()
        result.update({
            'loan_code': self.loan_code,
            'customer_id': self.customer_id,
            'currency': self.currency.code,
            'principal': str(self.principal.amount),
            'annual_interest_rate': str(self.annual_interest_rate),
            'term_months': self.term_months,
            'monthly_payment': str(self.monthly_payment.amount),
            'total_payment': str(self.total_payment.amount),
            'status': self.status.value,
            'total_paid': str(self.total_paid.amount),
            'remaining_balance': str(self.remaining_balance.amount),
            'closed_date': self.closed_date.isoformat() if self.closed_date else None,
            'actual_repayment_date': self.actual_repayment_date.isoformat() if self.actual_repayment_date else None,
            'actual_amount_paid': str(self.actual_amount_paid.amount),
            'installments': [i.to_dict() for i in self.installments],
            'payments': [p.to_dict() for p in self.payments],
            'gold_items': [g.to_dict() for g in self.gold_items],
            'deposited_bank': self.deposited_bank,
            'renewal_date': self.renewal_date.isoformat() if self.renewal_date else None,
            'created_by': self.created_by,
            'version': self.version,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        currency = Currency[data.get('currency', DEFAULT_CURRENCY.code)]

        def money(key: str) -> Money:
            return Money(Decimal(data[key]), currency)

        def moment(key: str) -> Optional[datetime]:
            return datetime.fromisoformat(data[key]) if data.get(key) else None

        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_code=data['loan_code'],
            customer_id=data['customer_id'],
            principal=money('principal'),
            annual_interest_rate=Decimal(data['annual_interest_rate']),
            term_months=data['term_months'],
            monthly_payment=money('monthly_payment'),
            total_payment=money('total_payment'),
            status=LoanStatus(data['status']),
            total_paid=money('total_paid'),
            remaining_balance=money('remaining_balance'),
            closed_date=moment('closed_date'),
            actual_repayment_date=moment('actual_repayment_date'),
            actual_amount_paid=money('actual_amount_paid'),
            installments=[Installment.from_dict(i, currency) for i in data.get('installments', [])],
            payments=[Payment.from_dict(p, currency) for p in data.get('payments', [])],
            gold_items=[GoldItem.from_dict(g) for g in data.get('gold_items', [])],
            deposited_bank=data.get('deposited_bank'),
            renewal_date=date.fromisoformat(data['renewal_date']) if data.get('renewal_date') else None,
            created_by=data.get('created_by'),
            version=data.get('version', 0),
        )


def validate_payment_request(
    amount: Union[Money, Decimal, int, str],
    method: Union[PaymentMethod, str],
    transaction_id: Optional[str],
    currency: Currency = DEFAULT_CURRENCY
) -> Tuple[Money, PaymentMethod, Optional[str]]:
    """
    Normalize and validate the inputs of a payment

    Returns:
        (amount, method, transaction_id); the transaction id is dropped for
        cash payments

    Raises:
        ValidationError: If the amount is not positive, the method is unknown
            or an online payment has no transaction id
    """
    try:
        value = amount.amount if isinstance(amount, Money) else to_decimal(amount)
        money = Money(value, currency)
    except ValueError as e:
        raise ValidationError(f"Invalid payment amount: {e}")
    if value <= Decimal('0'):
        raise ValidationError("Payment amount must be positive")
    if not money.is_positive():
        raise ValidationError("Payment amount is below the smallest currency unit")

    if not isinstance(method, PaymentMethod):
        try:
            method = PaymentMethod(str(method).lower())
        except ValueError:
            raise ValidationError(
                f"Invalid payment method {method!r}; expected one of "
                f"{', '.join(m.value for m in PaymentMethod)}"
            )

    if method == PaymentMethod.ONLINE:
        if not transaction_id or not str(transaction_id).strip():
            raise ValidationError("Transaction ID is required for online payments")
        transaction_id = str(transaction_id).strip()
    else:
        transaction_id = None

    return money, method, transaction_id


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LoanManager:
    """
    Manages the loan lifecycle from origination through closure
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        code_sequence: Optional[LoanCodeSequence] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
        config: Optional[LendingConfig] = None,
        lock_registry: Optional[LoanLockRegistry] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.code_sequence = code_sequence or StorageLoanCodeSequence(storage)
        self.event_dispatcher = event_dispatcher or EventDispatcher()
        self.clock = clock or _utc_now
        self.config = config or get_config()
        self.locks = lock_registry or LoanLockRegistry()

        self.loans_table = "loans"

        self.allocation_policy = AllocationPolicy(self.config.allocation_policy)
        self.min_principal = Decimal(self.config.min_principal)
        self.payoff_quantum = Decimal(self.config.payoff_rounding_quantum)
        self.days_per_month = Decimal(self.config.average_days_per_month)

    # Origination

    def create_loan(
        self,
        customer_id: str,
        principal: Union[Money, Decimal, int, str],
        annual_interest_rate: Union[Decimal, int, str],
        term_months: int,
        created_at: Optional[datetime] = None,
        gold_items: Optional[Iterable[Union[GoldItem, Dict[str, Any]]]] = None,
        created_by: Optional[str] = None
    ) -> Loan:
        """
        Originate a new loan with its full installment schedule

        Args:
            customer_id: Borrower reference
            principal: Amount disbursed, at least the configured minimum
            annual_interest_rate: Annual rate in percent, not negative
            term_months: Whole months, at least 1
            created_at: Creation instant (defaults to the clock)
            gold_items: Pledged collateral
            created_by: Employee who booked the loan

        Returns:
            Created Loan object

        Raises:
            ValidationError: If any term is out of range
        """
        if not customer_id or not str(customer_id).strip():
            raise ValidationError("Customer reference is required")

        principal_money = self._parse_principal(principal)
        rate = self._parse_rate(annual_interest_rate)
        term = self._parse_term(term_months)
        items = self._parse_gold_items(gold_items)

        created_at = as_utc(created_at or self.clock())
        try:
            monthly_payment, total_payment = calculate_payment(principal_money, rate, term)
        except ValueError as e:
            raise ValidationError(f"Loan terms cannot be amortized: {e}")
        installments = generate_schedule(created_at, term, monthly_payment, total_payment)

        with self.storage.atomic():
            # Reserved in the loan's own transaction; a failed save hands the number back
            sequence = self.code_sequence.next_sequence(created_at.year, created_at.month)
            loan = Loan(
                id=str(uuid.uuid4()),
                created_at=created_at,
                updated_at=created_at,
                loan_code=format_loan_code(self.config.loan_code_prefix, created_at, sequence),
                customer_id=str(customer_id),
                principal=principal_money,
                annual_interest_rate=rate,
                term_months=term,
                monthly_payment=monthly_payment,
                total_payment=total_payment,
                status=LoanStatus.ACTIVE,
                installments=installments,
                gold_items=items,
                created_by=created_by,
            )
            self._save_loan(loan, expected_version=None)
            self._audit(
                AuditEventType.LOAN_CREATED, loan,
                {
                    "loan_code": loan.loan_code,
                    "customer_id": loan.customer_id,
                    "principal": loan.principal.amount,
                    "annual_interest_rate": loan.annual_interest_rate,
                    "term_months": loan.term_months,
                    "monthly_payment": loan.monthly_payment.amount,
                    "total_payment": loan.total_payment.amount,
                },
                user_id=created_by
            )

        log_action(
            logger, "info", f"Loan {loan.loan_code} created",
            user_id=created_by, action="create_loan", resource=loan.id,
            extra={"principal": str(loan.principal.amount), "term_months": term}
        )
        self.event_dispatcher.publish(create_loan_event(DomainEvent.LOAN_CREATED, loan))
        return loan

    # Repayment

    def apply_payment(
        self,
        loan_id: str,
        amount: Union[Money, Decimal, int, str],
        method: Union[PaymentMethod, str],
        transaction_id: Optional[str] = None,
        payment_date: Optional[datetime] = None,
        user_id: Optional[str] = None
    ) -> Payment:
        """
        Apply an incoming payment to a loan

        Calls for the same loan are serialized; the loan is re-read, updated
        and written back as one atomic unit.

        Args:
            loan_id: Loan ID
            amount: Amount received, positive
            method: handcash or online
            transaction_id: Required for online payments
            payment_date: When the money was received (defaults to the clock);
                not before creation or the previous payment
            user_id: Employee recording the payment

        Returns:
            The Payment appended to the loan

        Raises:
            ValidationError: If the request is malformed or out of date order
            NotFoundError: If the loan does not exist
            InvalidStateError: If the loan no longer accepts payments
        """
        money, method, transaction_id = validate_payment_request(amount, method, transaction_id)

        with self.locks.hold(loan_id):
            with self.storage.atomic():
                loan = self.get_loan(loan_id)
                if money.currency != loan.currency:
                    raise ValidationError(f"Payment currency must be {loan.currency.code}")

                now = as_utc(self.clock())
                paid_at = as_utc(payment_date) if payment_date else now
                if paid_at < as_utc(loan.created_at):
                    raise ValidationError(
                        f"Payment date {paid_at.isoformat()} is before loan {loan.loan_code} was created"
                    )
                if loan.payments and paid_at < as_utc(loan.payments[-1].payment_date):
                    raise ValidationError(
                        f"Payment date {paid_at.isoformat()} is before the last recorded payment"
                    )

                expected_version = loan.version
                payment = loan.record_payment(
                    amount=money,
                    method=method,
                    transaction_id=transaction_id,
                    payment_date=paid_at,
                    processed_at=now,
                    policy=self.allocation_policy
                )
                loan.updated_at = now
                self._save_loan(loan, expected_version=expected_version)

                self._audit(
                    AuditEventType.LOAN_PAYMENT_APPLIED, loan,
                    {
                        "payment_id": payment.id,
                        "amount": payment.amount.amount,
                        "method": payment.method,
                        "transaction_id": payment.transaction_id,
                        "installment_number": payment.installment_number,
                        "allocations": [
                            {"installment_number": a.installment_number, "amount": a.amount.amount}
                            for a in payment.allocations
                        ],
                        "remaining_balance": loan.remaining_balance.amount,
                    },
                    user_id=user_id
                )

                closed = loan.status == LoanStatus.CLOSED
                if closed:
                    # Simple-interest view of the settlement, recorded for reconciliation
                    settled_at = max(as_utc(loan.actual_repayment_date), as_utc(loan.created_at))
                    shortfall = self._payoff(loan, settled_at)
                    self._audit(
                        AuditEventType.LOAN_CLOSED, loan,
                        {
                            "closed_date": loan.closed_date,
                            "actual_amount_paid": loan.actual_amount_paid.amount,
                            "settlement_shortfall": shortfall.amount,
                        },
                        user_id=user_id
                    )

        log_action(
            logger, "info", f"Payment applied to loan {loan.loan_code}",
            user_id=user_id, action="apply_payment", resource=loan.id,
            extra={
                "payment_id": payment.id,
                "amount": str(payment.amount.amount),
                "installment_number": payment.installment_number,
                "remaining_balance": str(loan.remaining_balance.amount),
                "status": loan.status.value,
            }
        )

        self.event_dispatcher.publish(create_loan_event(
            DomainEvent.LOAN_PAYMENT_APPLIED, loan, {"payment": payment.to_dict()}
        ))
        if closed:
            self.event_dispatcher.publish(create_loan_event(DomainEvent.LOAN_CLOSED, loan))

        return payment

    # Queries

    def get_loan(self, loan_id: str) -> Loan:
        """
        Get loan by ID

        Raises:
            NotFoundError: If the loan does not exist
        """
        data = self.storage.load(self.loans_table, loan_id)
        if not data:
            raise NotFoundError(f"Loan {loan_id} not found")
        return Loan.from_dict(data)

    def find_loan_by_code(self, loan_code: str) -> Loan:
        matches = self.storage.find(self.loans_table, {"loan_code": loan_code})
        if not matches:
            raise NotFoundError(f"Loan {loan_code} not found")
        return Loan.from_dict(matches[0])

    def get_schedule(self, loan_id: str) -> List[Installment]:
        """Installments in payoff order"""
        return self.get_loan(loan_id).installments

    def get_payments(self, loan_id: str) -> List[Payment]:
        """Payments in the order they were applied"""
        return self.get_loan(loan_id).payments

    def get_balance(self, loan_id: str) -> LoanBalance:
        loan = self.get_loan(loan_id)
        return LoanBalance(
            loan_id=loan.id,
            loan_code=loan.loan_code,
            status=loan.status,
            total_payment=loan.total_payment,
            total_paid=loan.total_paid,
            remaining_balance=loan.remaining_balance,
            installments_paid=sum(1 for i in loan.installments if i.status == InstallmentStatus.PAID),
            next_installment=loan.current_installment,
        )

    def quote_payoff(self, loan_id: str, as_of: Optional[datetime] = None) -> Money:
        """
        Amount needed to settle the loan as of a date

        Without as_of the loan's actual repayment date is used; an open loan
        without one is quoted its remaining scheduled balance.
        """
        return self._payoff(self.get_loan(loan_id), as_of)

    def list_loans(
        self,
        customer_id: Optional[str] = None,
        closed_within_days: Optional[int] = None
    ) -> List[Loan]:
        """
        List loans, newest first

        Args:
            customer_id: Only this borrower's loans
            closed_within_days: Hide loans closed longer ago than this
        """
        filters = {"customer_id": customer_id} if customer_id else {}
        loans = [Loan.from_dict(data) for data in self.storage.find(self.loans_table, filters)]

        if closed_within_days is not None:
            cutoff = as_utc(self.clock()) - timedelta(days=closed_within_days)
            loans = [
                loan for loan in loans
                if loan.status != LoanStatus.CLOSED
                or loan.closed_date is None
                or as_utc(loan.closed_date) >= cutoff
            ]

        loans.sort(key=lambda loan: loan.created_at, reverse=True)
        return loans

    # Administration

    def annotate_loan(
        self,
        loan_id: str,
        deposited_bank: Optional[str] = None,
        renewal_date: Optional[date] = None,
        gold_items: Optional[Iterable[Union[GoldItem, Dict[str, Any]]]] = None,
        user_id: Optional[str] = None
    ) -> Loan:
        """
        Update administrative annotations; financial state is never touched
        """
        items = self._parse_gold_items(gold_items) if gold_items is not None else None

        with self.locks.hold(loan_id):
            with self.storage.atomic():
                loan = self.get_loan(loan_id)
                expected_version = loan.version
                changes: Dict[str, Any] = {}

                if deposited_bank is not None:
                    loan.deposited_bank = deposited_bank.strip() or None
                    changes["deposited_bank"] = loan.deposited_bank
                if renewal_date is not None:
                    loan.renewal_date = renewal_date
                    changes["renewal_date"] = renewal_date.isoformat()
                if items is not None:
                    loan.gold_items = items
                    changes["gold_items"] = [g.to_dict() for g in items]

                if not changes:
                    return loan

                loan.updated_at = as_utc(self.clock())
                self._save_loan(loan, expected_version=expected_version)
                self._audit(AuditEventType.LOAN_ANNOTATED, loan, changes, user_id=user_id)

        self.event_dispatcher.publish(create_loan_event(DomainEvent.LOAN_ANNOTATED, loan, changes))
        return loan

    # Internals

    def _payoff(self, loan: Loan, as_of: Optional[datetime]) -> Money:
        return calculate_early_repayment_amount(
            loan,
            as_of=as_utc(as_of) if as_of else None,
            quantum=self.payoff_quantum,
            days_per_month=self.days_per_month
        )

    def _parse_principal(self, principal) -> Money:
        try:
            value = principal.amount if isinstance(principal, Money) else to_decimal(principal)
            money = Money(value, principal.currency if isinstance(principal, Money) else DEFAULT_CURRENCY)
        except ValueError as e:
            raise ValidationError(f"Invalid loan amount: {e}")
        if value < self.min_principal:
            raise ValidationError(f"Loan amount cannot be less than {self.min_principal}")
        return money

    def _parse_rate(self, rate) -> Decimal:
        try:
            value = to_decimal(rate)
        except ValueError as e:
            raise ValidationError(f"Invalid interest rate: {e}")
        if value < Decimal('0'):
            raise ValidationError("Interest rate cannot be negative")
        return value

    def _parse_term(self, term_months) -> int:
        if isinstance(term_months, bool) or not isinstance(term_months, int):
            raise ValidationError("Loan term must be a whole number of months")
        if term_months < 1:
            raise ValidationError("Loan term cannot be less than 1 month")
        if term_months > self.config.max_term_months:
            raise ValidationError(f"Loan term cannot exceed {self.config.max_term_months} months")
        return term_months

    def _parse_gold_items(self, gold_items) -> List[GoldItem]:
        if not gold_items:
            return []
        items = []
        for item in gold_items:
            if isinstance(item, GoldItem):
                items.append(item)
            elif isinstance(item, dict):
                items.append(GoldItem.from_dict(item))
            else:
                raise ValidationError(f"Invalid gold item: {item!r}")
        return items

    def _save_loan(self, loan: Loan, expected_version: Optional[int]) -> None:
        """
        Write the aggregate, refusing to overwrite a newer version
        """
        existing = self.storage.load(self.loans_table, loan.id)
        if expected_version is None:
            if existing:
                raise ConcurrentModificationError(f"Loan {loan.id} already exists")
        elif not existing or existing.get('version', 0) != expected_version:
            raise ConcurrentModificationError(
                f"Loan {loan.loan_code} was modified concurrently; reload and retry"
            )

        loan.version = (expected_version or 0) + 1
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def _audit(self, event_type: AuditEventType, loan: Loan, metadata: Dict[str, Any],
               user_id: Optional[str] = None) -> None:
        if not self.config.enable_audit_logging:
            return
        self.audit_trail.log_event(
            event_type=event_type,
            entity_type="loan",
            entity_id=loan.id,
            metadata=metadata,
            user_id=user_id
        )
