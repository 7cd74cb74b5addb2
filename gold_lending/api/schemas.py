"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ..currency import Money
from ..amortization import Installment
from ..loans import GoldItem, Loan, LoanBalance, Payment


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (INR)")

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


class GoldItemModel(BaseModel):
    description: str
    gross_weight: str = Field(..., description="Grams, decimal string")
    net_weight: str = Field(..., description="Grams, decimal string")

    def to_gold_item(self) -> GoldItem:
        return GoldItem(
            description=self.description,
            gross_weight=self.gross_weight,
            net_weight=self.net_weight
        )

    @classmethod
    def from_gold_item(cls, item: GoldItem) -> 'GoldItemModel':
        return cls(
            description=item.description,
            gross_weight=str(item.gross_weight),
            net_weight=str(item.net_weight)
        )


# Loan schemas
class CreateLoanRequest(BaseModel):
    customer_id: str
    principal: Decimal = Field(..., description="Amount disbursed in rupees")
    annual_interest_rate: Decimal = Field(..., description="Annual rate in percent, e.g. 12")
    term_months: int
    gold_items: List[GoldItemModel] = []
    created_by: Optional[str] = None


class PaymentRequest(BaseModel):
    amount: Decimal
    method: str = Field(..., description="handcash or online")
    transaction_id: Optional[str] = None
    payment_date: Optional[datetime] = None
    recorded_by: Optional[str] = None


class AnnotateLoanRequest(BaseModel):
    deposited_bank: Optional[str] = None
    renewal_date: Optional[date] = None
    gold_items: Optional[List[GoldItemModel]] = None
    updated_by: Optional[str] = None


class InstallmentModel(BaseModel):
    number: int
    due_date: date
    amount: MoneyModel
    amount_paid: MoneyModel
    status: str

    @classmethod
    def from_installment(cls, installment: Installment) -> 'InstallmentModel':
        return cls(
            number=installment.number,
            due_date=installment.due_date,
            amount=MoneyModel.from_money(installment.amount),
            amount_paid=MoneyModel.from_money(installment.amount_paid),
            status=installment.status.value
        )


class AllocationModel(BaseModel):
    installment_number: int
    amount: MoneyModel


class PaymentModel(BaseModel):
    id: str
    amount: MoneyModel
    payment_date: datetime
    method: str
    transaction_id: Optional[str] = None
    installment_number: int
    remaining_balance: MoneyModel
    allocations: List[AllocationModel]

    @classmethod
    def from_payment(cls, payment: Payment) -> 'PaymentModel':
        return cls(
            id=payment.id,
            amount=MoneyModel.from_money(payment.amount),
            payment_date=payment.payment_date,
            method=payment.method.value,
            transaction_id=payment.transaction_id,
            installment_number=payment.installment_number,
            remaining_balance=MoneyModel.from_money(payment.remaining_balance),
            allocations=[
                AllocationModel(installment_number=a.installment_number, amount=MoneyModel.from_money(a.amount))
                for a in payment.allocations
            ]
        )


class LoanSummaryModel(BaseModel):
    id: str
    loan_code: str
    customer_id: str
    status: str
    principal: MoneyModel
    total_payment: MoneyModel
    total_paid: MoneyModel
    remaining_balance: MoneyModel
    created_at: datetime
    closed_date: Optional[datetime] = None

    @classmethod
    def from_loan(cls, loan: Loan) -> 'LoanSummaryModel':
        return cls(
            id=loan.id,
            loan_code=loan.loan_code,
            customer_id=loan.customer_id,
            status=loan.status.value,
            principal=MoneyModel.from_money(loan.principal),
            total_payment=MoneyModel.from_money(loan.total_payment),
            total_paid=MoneyModel.from_money(loan.total_paid),
            remaining_balance=MoneyModel.from_money(loan.remaining_balance),
            created_at=loan.created_at,
            closed_date=loan.closed_date
        )


class LoanDetailModel(LoanSummaryModel):
    annual_interest_rate: str
    term_months: int
    monthly_payment: MoneyModel
    actual_repayment_date: Optional[datetime] = None
    actual_amount_paid: MoneyModel
    next_installment: Optional[InstallmentModel] = None
    gold_items: List[GoldItemModel]
    deposited_bank: Optional[str] = None
    renewal_date: Optional[date] = None
    created_by: Optional[str] = None

    @classmethod
    def from_loan(cls, loan: Loan) -> 'LoanDetailModel':
        summary = LoanSummaryModel.from_loan(loan).model_dump()
        current = loan.current_installment
        return cls(
            **summary,
            annual_interest_rate=str(loan.annual_interest_rate),
            term_months=loan.term_months,
            monthly_payment=MoneyModel.from_money(loan.monthly_payment),
            actual_repayment_date=loan.actual_repayment_date,
            actual_amount_paid=MoneyModel.from_money(loan.actual_amount_paid),
            next_installment=InstallmentModel.from_installment(current) if current else None,
            gold_items=[GoldItemModel.from_gold_item(g) for g in loan.gold_items],
            deposited_bank=loan.deposited_bank,
            renewal_date=loan.renewal_date,
            created_by=loan.created_by
        )


class BalanceModel(BaseModel):
    loan_id: str
    loan_code: str
    status: str
    total_payment: MoneyModel
    total_paid: MoneyModel
    remaining_balance: MoneyModel
    installments_paid: int
    next_installment: Optional[InstallmentModel] = None

    @classmethod
    def from_balance(cls, balance: LoanBalance) -> 'BalanceModel':
        return cls(
            loan_id=balance.loan_id,
            loan_code=balance.loan_code,
            status=balance.status.value,
            total_payment=MoneyModel.from_money(balance.total_payment),
            total_paid=MoneyModel.from_money(balance.total_paid),
            remaining_balance=MoneyModel.from_money(balance.remaining_balance),
            installments_paid=balance.installments_paid,
            next_installment=(
                InstallmentModel.from_installment(balance.next_installment)
                if balance.next_installment else None
            )
        )


class PaymentResponse(BaseModel):
    payment: PaymentModel
    loan_status: str
    total_paid: MoneyModel
    remaining_balance: MoneyModel
    message: str


class PayoffQuoteModel(BaseModel):
    loan_id: str
    loan_code: str
    as_of: Optional[datetime] = None
    amount: MoneyModel
