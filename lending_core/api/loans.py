"""
Loan endpoints
"""

from typing import List
from fastapi import APIRouter, HTTPException, Depends, status

from .auth import LendingSystem, get_lending_system, get_current_customer
from .schemas import (
    CreateLoanRequest, RepaymentRequest, LoanModel, InstallmentModel,
    RepaymentModel, RepaymentResultModel
)
from ..loans import Loan


router = APIRouter()


def _get_owned_loan(loan_id: str, customer_id: str, system: LendingSystem) -> Loan:
    loan = system.loan_manager.get_loan(loan_id)
    if not loan:
        raise HTTPException(status_code=404, detail="Loan not found")
    if loan.customer_id != customer_id:
        raise HTTPException(status_code=403, detail="Loan belongs to another customer")
    return loan


@router.post("", status_code=status.HTTP_201_CREATED, response_model=LoanModel)
async def create_loan(
    request: CreateLoanRequest,
    customer_id: str = Depends(get_current_customer),
    system: LendingSystem = Depends(get_lending_system)
):
    """Create a loan and its repayment schedule"""
    loan = system.loan_manager.create_loan(
        customer_id=customer_id,
        amount=request.amount,
        currency_code=request.currency_code,
        terms=request.terms,
        processed_at=request.processed_at
    )
    return LoanModel.from_loan(loan)


@router.get("", response_model=List[LoanModel])
async def list_loans(
    customer_id: str = Depends(get_current_customer),
    system: LendingSystem = Depends(get_lending_system)
):
    """List the caller's loans"""
    return [LoanModel.from_loan(loan) for loan in system.loan_manager.get_customer_loans(customer_id)]


@router.get("/{loan_id}", response_model=LoanModel)
async def get_loan(
    loan_id: str,
    customer_id: str = Depends(get_current_customer),
    system: LendingSystem = Depends(get_lending_system)
):
    """Get loan details with its schedule"""
    return LoanModel.from_loan(_get_owned_loan(loan_id, customer_id, system))


@router.get("/{loan_id}/schedule", response_model=List[InstallmentModel])
async def get_loan_schedule(
    loan_id: str,
    customer_id: str = Depends(get_current_customer),
    system: LendingSystem = Depends(get_lending_system)
):
    """Get the loan's installment schedule"""
    loan = _get_owned_loan(loan_id, customer_id, system)
    return [InstallmentModel.from_installment(i) for i in loan.installments]


@router.post("/{loan_id}/repayments", status_code=status.HTTP_201_CREATED,
             response_model=RepaymentResultModel)
async def repay_loan(
    loan_id: str,
    request: RepaymentRequest,
    customer_id: str = Depends(get_current_customer),
    system: LendingSystem = Depends(get_lending_system)
):
    """Apply a repayment to the oldest unpaid installment"""
    _get_owned_loan(loan_id, customer_id, system)
    repayment = system.loan_manager.repay_loan(
        loan_id=loan_id,
        amount=request.amount,
        currency_code=request.currency_code,
        received_at=request.received_at
    )
    loan = system.loan_manager.get_loan(loan_id)
    return RepaymentResultModel(
        repayment=RepaymentModel.from_repayment(repayment),
        loan=LoanModel.from_loan(loan)
    )


@router.get("/{loan_id}/repayments", response_model=List[RepaymentModel])
async def list_repayments(
    loan_id: str,
    customer_id: str = Depends(get_current_customer),
    system: LendingSystem = Depends(get_lending_system)
):
    """Get the loan's repayment ledger"""
    _get_owned_loan(loan_id, customer_id, system)
    return [RepaymentModel.from_repayment(r) for r in system.loan_manager.get_repayments(loan_id)]
