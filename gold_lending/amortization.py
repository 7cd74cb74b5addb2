"""
Amortization Module

Pure loan math: equal-installment payment calculation, installment schedule
generation, and the simple-interest early payoff quote. Nothing here touches
storage; the loan manager feeds these functions and persists the results.
"""

from decimal import Decimal, ROUND_HALF_UP, ROUND_CEILING
from datetime import datetime, date, timedelta, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Any
from enum import Enum
import calendar

from .currency import Money, Currency
from .exceptions import ValidationError


AVERAGE_DAYS_PER_MONTH = Decimal('30.44')
SECONDS_PER_DAY = Decimal('86400')


class InstallmentStatus(Enum):
    """Installment repayment status; transitions only move forward"""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


@dataclass
class Installment:
    """One scheduled monthly obligation"""
    number: int
    due_date: date
    amount: Money
    amount_paid: Money = None
    status: InstallmentStatus = InstallmentStatus.PENDING

    def __post_init__(self):
        if self.amount_paid is None:
            self.amount_paid = Money.zero(self.amount.currency)

    @property
    def is_open(self) -> bool:
        return self.status in (InstallmentStatus.PENDING, InstallmentStatus.PARTIAL)

    @property
    def room(self) -> Money:
        """Amount still owed on this installment"""
        remaining = self.amount - self.amount_paid
        if remaining.is_negative():
            return Money.zero(self.amount.currency)
        return remaining

    def credit(self, amount: Money) -> Money:
        """
        Credit up to the remaining room and return the amount actually applied
        """
        applied = min(amount, self.room)
        self.amount_paid = self.amount_paid + applied
        if self.amount_paid >= self.amount:
            self.status = InstallmentStatus.PAID
        elif self.amount_paid.is_positive():
            self.status = InstallmentStatus.PARTIAL
        return applied

    def to_dict(self) -> Dict[str, Any]:
        return {
            'number': self.number,
            'due_date': self.due_date.isoformat(),
            'amount': str(self.amount.amount),
            'amount_paid': str(self.amount_paid.amount),
            'status': self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], currency: Currency) -> 'Installment':
        return cls(
            number=data['number'],
            due_date=date.fromisoformat(data['due_date']),
            amount=Money(Decimal(data['amount']), currency),
            amount_paid=Money(Decimal(data['amount_paid']), currency),
            status=InstallmentStatus(data['status']),
        )


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC so elapsed-time arithmetic never mixes kinds"""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def monthly_rate(annual_rate: Decimal) -> Decimal:
    """Monthly rate as a fraction from an annual percentage rate"""
    return annual_rate / Decimal('100') / Decimal('12')


def calculate_payment(principal: Money, annual_rate: Decimal, term_months: int) -> Tuple[Money, Money]:
    """
    Equal-installment monthly payment and total payment for a loan

    Standard formula: P * r * (1+r)^n / ((1+r)^n - 1), degenerating to P / n
    when the rate is zero. Both results are rounded half-up to the currency's
    minor unit; the total is rounded from the exact payment times n.

    Args:
        principal: Amount disbursed
        annual_rate: Annual interest rate in percent, e.g. Decimal('12') for 12%
        term_months: Number of monthly installments

    Returns:
        (monthly_payment, total_payment)
    """
    if term_months < 1:
        raise ValidationError("Loan term must be at least 1 month")

    r = monthly_rate(annual_rate)
    n = Decimal(term_months)

    if r == Decimal('0'):
        exact_payment = principal.amount / n
    else:
        factor = (Decimal('1') + r) ** term_months
        exact_payment = principal.amount * r * factor / (factor - Decimal('1'))

    return (
        Money(exact_payment, principal.currency),
        Money(exact_payment * n, principal.currency)
    )


def add_months(start_date: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def generate_schedule(
    created_at: datetime,
    term_months: int,
    monthly_payment: Money,
    total_payment: Money
) -> List[Installment]:
    """
    Build the installment schedule for a new loan

    Installment i falls due i calendar months after the creation date. Every
    installment owes the monthly payment except the last, which absorbs the
    rounding remainder so that the installments sum exactly to total_payment.
    """
    if term_months < 1:
        raise ValidationError("Loan term must be at least 1 month")

    start = created_at.date()
    final_amount = total_payment - monthly_payment * (term_months - 1)
    if not final_amount.is_positive():
        raise ValidationError("Principal is too small to schedule over this many months")

    schedule = []
    for number in range(1, term_months + 1):
        schedule.append(Installment(
            number=number,
            due_date=add_months(start, number),
            amount=final_amount if number == term_months else monthly_payment,
        ))
    return schedule


def months_elapsed(start: datetime, end: datetime,
                   days_per_month: Decimal = AVERAGE_DAYS_PER_MONTH) -> int:
    """
    Whole months between two instants, counting any started month.

    Uses a fixed average month length rather than calendar months; payoff
    quotes depend on reproducing this approximation exactly.
    """
    elapsed: timedelta = as_utc(end) - as_utc(start)
    if elapsed < timedelta(0):
        raise ValidationError("Settlement date cannot precede loan creation")

    seconds = (
        Decimal(elapsed.days) * SECONDS_PER_DAY
        + Decimal(elapsed.seconds)
        + Decimal(elapsed.microseconds) / Decimal('1000000')
    )
    months = seconds / (SECONDS_PER_DAY * days_per_month)
    return int(months.to_integral_value(rounding=ROUND_CEILING))


def early_repayment_amount(
    principal: Money,
    annual_rate: Decimal,
    created_at: datetime,
    as_of: datetime,
    total_paid: Money,
    quantum: Decimal = Decimal('1'),
    days_per_month: Decimal = AVERAGE_DAYS_PER_MONTH
) -> Money:
    """
    Amount required to settle a loan as of a date using simple interest

    Interest accrues as principal * monthly rate * months used, with months
    used rounded up. Unlike the amortized schedule this depends only on how
    long the money was held, not on which installments were paid.

    Args:
        principal: Amount disbursed
        annual_rate: Annual interest rate in percent
        created_at: Loan creation instant
        as_of: Settlement instant
        total_paid: Everything paid so far
        quantum: Rounding step for the result (whole rupees by default)
        days_per_month: Average month length used to count months

    Returns:
        Outstanding settlement amount, never negative
    """
    used = Decimal(months_elapsed(created_at, as_of, days_per_month))
    interest = principal.amount * monthly_rate(annual_rate) * used
    owed = principal.amount + interest - total_paid.amount
    if owed < Decimal('0'):
        owed = Decimal('0')
    return Money(owed.quantize(quantum, rounding=ROUND_HALF_UP), principal.currency)


def calculate_early_repayment_amount(
    loan,
    as_of: Optional[datetime] = None,
    quantum: Decimal = Decimal('1'),
    days_per_month: Decimal = AVERAGE_DAYS_PER_MONTH
) -> Money:
    """
    Payoff quote for a loan

    Settles as of `as_of`, falling back to the loan's actual repayment date.
    With neither available the schedule-based remaining balance is returned
    unchanged.
    """
    settlement_date = as_of or loan.actual_repayment_date
    if settlement_date is None:
        return loan.remaining_balance

    return early_repayment_amount(
        principal=loan.principal,
        annual_rate=loan.annual_interest_rate,
        created_at=loan.created_at,
        as_of=settlement_date,
        total_paid=loan.total_paid,
        quantum=quantum,
        days_per_month=days_per_month
    )
