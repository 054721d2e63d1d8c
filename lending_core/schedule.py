"""
Repayment Schedule Module

Generates the installment schedule for a loan at origination: equal
installments of principal, the division remainder absorbed by the last one,
due one calendar month apart.
"""

import calendar
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .currency import Money, Currency
from .exceptions import ValidationError
from .validation import require_positive_int, parse_date


class RepaymentStatus(Enum):
    """Repayment state shared by loans and their installments"""
    DUE = "due"            # Nothing paid yet
    PARTIAL = "partial"    # Some, but not all, paid
    REPAID = "repaid"      # Fully settled


@dataclass
class ScheduledInstallment:
    """One scheduled repayment of part of a loan's principal"""
    id: Optional[str]
    loan_id: Optional[str]
    installment_number: int
    due_date: date
    amount_due: Money
    outstanding: Money
    status: RepaymentStatus = RepaymentStatus.DUE

    @property
    def currency(self) -> Currency:
        return self.amount_due.currency

    @property
    def is_settled(self) -> bool:
        return self.outstanding.is_zero()

    @property
    def is_touched(self) -> bool:
        """True once any payment has been applied to this installment"""
        return self.outstanding < self.amount_due

    def refresh_status(self) -> RepaymentStatus:
        """Recompute status from the outstanding balance"""
        if self.outstanding.is_zero():
            self.status = RepaymentStatus.REPAID
        elif self.outstanding == self.amount_due:
            self.status = RepaymentStatus.DUE
        else:
            self.status = RepaymentStatus.PARTIAL
        return self.status

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'loan_id': self.loan_id,
            'installment_number': self.installment_number,
            'due_date': self.due_date.isoformat(),
            'amount_due': self.amount_due.amount,
            'outstanding': self.outstanding.amount,
            'currency': self.currency.code,
            'status': self.status.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduledInstallment':
        currency = Currency.from_code(data['currency'])
        return cls(
            id=data['id'],
            loan_id=data['loan_id'],
            installment_number=data['installment_number'],
            due_date=date.fromisoformat(data['due_date']),
            amount_due=Money(data['amount_due'], currency),
            outstanding=Money(data['outstanding'], currency),
            status=RepaymentStatus(data['status'])
        )


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping the day to the end of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def generate_schedule(
    principal: int,
    currency: Union[str, Currency],
    term_count: int,
    origination_date: Union[str, date],
    loan_id: Optional[str] = None
) -> List[ScheduledInstallment]:
    """
    Build the installment schedule for a loan

    Every installment but the last is principal // term_count; the last one
    takes whatever remains so the amounts sum to principal exactly. Installment
    i is due i calendar months after origination.

    Args:
        principal: Loan principal in minor units
        currency: ISO 4217 code or Currency
        term_count: Number of monthly installments
        origination_date: Date the loan was processed
        loan_id: Owning loan; installment ids are derived from it when given

    Returns:
        Installments ordered by due date, all DUE

    Raises:
        ValidationError: On a non-positive principal or term count, a principal
            smaller than the term count, or a bad currency/date
    """
    require_positive_int(principal, "principal")
    require_positive_int(term_count, "term_count")
    if principal < term_count:
        raise ValidationError(
            f"principal ({principal}) must be at least term_count ({term_count}) "
            "so every installment is at least one minor unit"
        )
    currency = Currency.from_code(currency)
    origination_date = parse_date(origination_date, "origination_date")

    base_amount = principal // term_count
    final_amount = principal - base_amount * (term_count - 1)

    schedule = []
    for number in range(1, term_count + 1):
        amount = Money(final_amount if number == term_count else base_amount, currency)
        schedule.append(ScheduledInstallment(
            id=f"{loan_id}_{number}" if loan_id else None,
            loan_id=loan_id,
            installment_number=number,
            # Offset from origination, never from the previous due date
            due_date=add_months(origination_date, number),
            amount_due=amount,
            outstanding=amount,
            status=RepaymentStatus.DUE
        ))

    return schedule
