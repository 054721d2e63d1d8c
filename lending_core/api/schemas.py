"""
Pydantic schemas for API requests and responses
"""

from typing import List, Optional
from pydantic import BaseModel, Field, StrictBool, StrictInt

from ..currency import Money
from ..debit_cards import DebitCard, DebitCardTransaction
from ..loans import Loan, ReceivedRepayment
from ..schedule import ScheduledInstallment


class MoneyModel(BaseModel):
    amount: int = Field(..., description="Amount in minor units (cents)")
    currency: str = Field(..., description="Currency code (USD, SGD, etc.)")

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=money.amount, currency=money.currency.code)


# Loan schemas
class CreateLoanRequest(BaseModel):
    amount: StrictInt = Field(..., description="Principal in minor units")
    currency_code: str = Field(..., description="ISO 4217 currency code")
    terms: StrictInt = Field(..., description="Number of monthly installments")
    processed_at: str = Field(..., description="Origination date (ISO date string)")


class RepaymentRequest(BaseModel):
    amount: StrictInt = Field(..., description="Payment in minor units")
    currency_code: str
    received_at: str = Field(..., description="Date the payment was received (ISO date string)")


class InstallmentModel(BaseModel):
    installment_number: int
    due_date: str
    amount_due: MoneyModel
    outstanding: MoneyModel
    status: str

    @classmethod
    def from_installment(cls, installment: ScheduledInstallment) -> 'InstallmentModel':
        return cls(
            installment_number=installment.installment_number,
            due_date=installment.due_date.isoformat(),
            amount_due=MoneyModel.from_money(installment.amount_due),
            outstanding=MoneyModel.from_money(installment.outstanding),
            status=installment.status.value
        )


class LoanModel(BaseModel):
    id: str
    customer_id: str
    principal: MoneyModel
    outstanding: MoneyModel
    terms: int
    processed_at: str
    status: str
    scheduled_repayments: List[InstallmentModel]

    @classmethod
    def from_loan(cls, loan: Loan) -> 'LoanModel':
        return cls(
            id=loan.id,
            customer_id=loan.customer_id,
            principal=MoneyModel.from_money(loan.principal),
            outstanding=MoneyModel.from_money(loan.outstanding),
            terms=loan.term_count,
            processed_at=loan.origination_date.isoformat(),
            status=loan.status.value,
            scheduled_repayments=[InstallmentModel.from_installment(i) for i in loan.installments]
        )


class AllocationModel(BaseModel):
    installment_number: int
    amount: MoneyModel


class RepaymentModel(BaseModel):
    id: str
    loan_id: str
    amount: MoneyModel
    received_at: str
    allocations: List[AllocationModel]
    unapplied_amount: MoneyModel

    @classmethod
    def from_repayment(cls, repayment: ReceivedRepayment) -> 'RepaymentModel':
        return cls(
            id=repayment.id,
            loan_id=repayment.loan_id,
            amount=MoneyModel.from_money(repayment.amount),
            received_at=repayment.received_date.isoformat(),
            allocations=[
                AllocationModel(installment_number=a.installment_number,
                                amount=MoneyModel.from_money(a.amount))
                for a in repayment.allocations
            ],
            unapplied_amount=MoneyModel.from_money(repayment.unapplied_amount)
        )


class RepaymentResultModel(BaseModel):
    repayment: RepaymentModel
    loan: LoanModel


# Debit card schemas
class CreateDebitCardRequest(BaseModel):
    type: str = Field(..., description="Card type (VISA, MASTERCARD, AMEX)")


class UpdateDebitCardRequest(BaseModel):
    is_active: StrictBool


class DebitCardModel(BaseModel):
    id: str
    number: str
    type: str
    expiration_date: str
    is_active: bool
    disabled_at: Optional[str] = None

    @classmethod
    def from_card(cls, card: DebitCard) -> 'DebitCardModel':
        return cls(
            id=card.id,
            number=card.number,
            type=card.card_type.value,
            expiration_date=card.expiration_date.isoformat(),
            is_active=card.is_active,
            disabled_at=card.disabled_at.isoformat() if card.disabled_at else None
        )


class CreateDebitCardTransactionRequest(BaseModel):
    debit_card_id: str
    amount: StrictInt = Field(..., description="Amount in minor units")
    currency_code: str


class DebitCardTransactionModel(BaseModel):
    id: str
    debit_card_id: str
    amount: int
    currency_code: str
    created_at: str

    @classmethod
    def from_transaction(cls, transaction: DebitCardTransaction) -> 'DebitCardTransactionModel':
        return cls(
            id=transaction.id,
            debit_card_id=transaction.debit_card_id,
            amount=transaction.amount.amount,
            currency_code=transaction.amount.currency.code,
            created_at=transaction.created_at.isoformat()
        )
