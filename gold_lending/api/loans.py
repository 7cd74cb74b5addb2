"""
Loan endpoints
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Depends, Query, status

from .dependencies import LendingSystem, get_lending_system
from .schemas import (
    CreateLoanRequest, PaymentRequest, AnnotateLoanRequest, MoneyModel,
    InstallmentModel, PaymentModel, LoanSummaryModel, LoanDetailModel,
    BalanceModel, PaymentResponse, PayoffQuoteModel
)
from ..exceptions import LendingError, ValidationError, NotFoundError, InvalidStateError
from ..loans import LoanStatus


router = APIRouter()


def _http_error(error: LendingError) -> HTTPException:
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, InvalidStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))


@router.post("", status_code=status.HTTP_201_CREATED, response_model=LoanDetailModel)
def create_loan(
    request: CreateLoanRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Book a new gold loan"""
    try:
        loan = system.loan_manager.create_loan(
            customer_id=request.customer_id,
            principal=request.principal,
            annual_interest_rate=request.annual_interest_rate,
            term_months=request.term_months,
            gold_items=[item.to_gold_item() for item in request.gold_items],
            created_by=request.created_by
        )
    except LendingError as e:
        raise _http_error(e)

    return LoanDetailModel.from_loan(loan)


@router.get("", response_model=List[LoanSummaryModel])
def list_loans(
    customer_id: Optional[str] = None,
    closed_within_days: Optional[int] = Query(None, ge=0),
    system: LendingSystem = Depends(get_lending_system)
):
    """List loans, newest first"""
    loans = system.loan_manager.list_loans(
        customer_id=customer_id,
        closed_within_days=closed_within_days
    )
    return [LoanSummaryModel.from_loan(loan) for loan in loans]


@router.get("/{loan_id}", response_model=LoanDetailModel)
def get_loan(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get loan details"""
    try:
        loan = system.loan_manager.get_loan(loan_id)
    except LendingError as e:
        raise _http_error(e)

    return LoanDetailModel.from_loan(loan)


@router.get("/{loan_id}/schedule", response_model=List[InstallmentModel])
def get_loan_schedule(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get the installment schedule"""
    try:
        schedule = system.loan_manager.get_schedule(loan_id)
    except LendingError as e:
        raise _http_error(e)

    return [InstallmentModel.from_installment(i) for i in schedule]


@router.get("/{loan_id}/payments", response_model=List[PaymentModel])
def get_loan_payments(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get payment history"""
    try:
        payments = system.loan_manager.get_payments(loan_id)
    except LendingError as e:
        raise _http_error(e)

    return [PaymentModel.from_payment(p) for p in payments]


@router.get("/{loan_id}/balance", response_model=BalanceModel)
def get_loan_balance(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    try:
        balance = system.loan_manager.get_balance(loan_id)
    except LendingError as e:
        raise _http_error(e)

    return BalanceModel.from_balance(balance)


@router.post("/{loan_id}/payments", response_model=PaymentResponse)
def make_loan_payment(
    loan_id: str,
    request: PaymentRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Record a repayment against a loan"""
    try:
        payment = system.loan_manager.apply_payment(
            loan_id=loan_id,
            amount=request.amount,
            method=request.method,
            transaction_id=request.transaction_id,
            payment_date=request.payment_date,
            user_id=request.recorded_by
        )
        loan = system.loan_manager.get_loan(loan_id)
    except LendingError as e:
        raise _http_error(e)

    closed = loan.status == LoanStatus.CLOSED
    return PaymentResponse(
        payment=PaymentModel.from_payment(payment),
        loan_status=loan.status.value,
        total_paid=MoneyModel.from_money(loan.total_paid),
        remaining_balance=MoneyModel.from_money(loan.remaining_balance),
        message="Loan fully repaid and closed" if closed else "Payment recorded successfully"
    )


@router.get("/{loan_id}/payoff", response_model=PayoffQuoteModel)
def get_payoff_quote(
    loan_id: str,
    as_of: Optional[datetime] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """Amount needed to settle the loan early"""
    try:
        loan = system.loan_manager.get_loan(loan_id)
        amount = system.loan_manager.quote_payoff(loan_id, as_of=as_of)
    except LendingError as e:
        raise _http_error(e)

    return PayoffQuoteModel(
        loan_id=loan.id,
        loan_code=loan.loan_code,
        as_of=as_of or loan.actual_repayment_date,
        amount=MoneyModel.from_money(amount)
    )


@router.put("/{loan_id}/annotations", response_model=LoanDetailModel)
def annotate_loan(
    loan_id: str,
    request: AnnotateLoanRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Update bank deposit, renewal date or pledged items"""
    try:
        loan = system.loan_manager.annotate_loan(
            loan_id,
            deposited_bank=request.deposited_bank,
            renewal_date=request.renewal_date,
            gold_items=(
                [item.to_gold_item() for item in request.gold_items]
                if request.gold_items is not None else None
            ),
            user_id=request.updated_by
        )
    except LendingError as e:
        raise _http_error(e)

    return LoanDetailModel.from_loan(loan)
