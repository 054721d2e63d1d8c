"""
Loan Module

Handles loan creation with its installment schedule, repayment allocation
against outstanding installments, and loan status derivation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone, date
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import uuid

from .audit import AuditTrail, AuditEventType
from .config import get_config
from .currency import Money, Currency, money_sum
from .exceptions import (
    ValidationError, CurrencyMismatchError, AlreadySettledError, LoanNotFoundError
)
from .logging_config import get_logger, log_action
from .schedule import RepaymentStatus, ScheduledInstallment, generate_schedule
from .storage import StorageInterface, StorageRecord
from .validation import require_positive_int, parse_date


logger = get_logger("lending.loans")


class AllocationPolicy(Enum):
    """How a single payment is spread over installments"""
    SINGLE_INSTALLMENT = "single_installment"  # Settle at most the oldest unpaid installment
    WATERFALL = "waterfall"                    # Carry any excess on to later installments


@dataclass
class Loan(StorageRecord):
    """Loan with its installment schedule and current balance"""
    customer_id: str
    principal: Money
    term_count: int
    origination_date: date
    outstanding: Money = None
    status: RepaymentStatus = RepaymentStatus.DUE
    installments: List[ScheduledInstallment] = field(default_factory=list)

    def __post_init__(self):
        if self.outstanding is None:
            self.outstanding = self.principal

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    @property
    def is_repaid(self) -> bool:
        return self.status == RepaymentStatus.REPAID

    def to_dict(self) -> Dict[str, Any]:
        """Loan row without installments; those live in their own table"""
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'customer_id': self.customer_id,
            'principal': self.principal.amount,
            'outstanding': self.outstanding.amount,
            'currency': self.currency.code,
            'term_count': self.term_count,
            'origination_date': self.origination_date.isoformat(),
            'status': self.status.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  installments: Optional[List[ScheduledInstallment]] = None) -> 'Loan':
        currency = Currency.from_code(data['currency'])
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            customer_id=data['customer_id'],
            principal=Money(data['principal'], currency),
            term_count=data['term_count'],
            origination_date=date.fromisoformat(data['origination_date']),
            outstanding=Money(data['outstanding'], currency),
            status=RepaymentStatus(data['status']),
            installments=installments or []
        )


@dataclass(frozen=True)
class RepaymentAllocation:
    """Portion of a repayment applied to one installment"""
    installment_id: Optional[str]
    installment_number: int
    amount: Money


@dataclass
class ReceivedRepayment(StorageRecord):
    """
    Ledger entry for one payment received against a loan.

    Written once and never updated; unapplied_amount is whatever part of the
    payment no installment absorbed.
    """
    loan_id: str
    amount: Money
    received_date: date
    allocations: List[RepaymentAllocation] = field(default_factory=list)
    unapplied_amount: Money = None

    def __post_init__(self):
        if self.unapplied_amount is None:
            self.unapplied_amount = Money.zero(self.amount.currency)

    @property
    def currency(self) -> Currency:
        return self.amount.currency

    @property
    def applied_amount(self) -> Money:
        return self.amount - self.unapplied_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'loan_id': self.loan_id,
            'amount': self.amount.amount,
            'currency': self.currency.code,
            'received_date': self.received_date.isoformat(),
            'allocations': [
                {
                    'installment_id': a.installment_id,
                    'installment_number': a.installment_number,
                    'amount': a.amount.amount
                }
                for a in self.allocations
            ],
            'unapplied_amount': self.unapplied_amount.amount
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReceivedRepayment':
        currency = Currency.from_code(data['currency'])
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            amount=Money(data['amount'], currency),
            received_date=date.fromisoformat(data['received_date']),
            allocations=[
                RepaymentAllocation(
                    installment_id=a['installment_id'],
                    installment_number=a['installment_number'],
                    amount=Money(a['amount'], currency)
                )
                for a in data['allocations']
            ],
            unapplied_amount=Money(data['unapplied_amount'], currency)
        )


def derive_status(loan: Loan) -> RepaymentStatus:
    """
    Aggregate loan status from its installments

    REPAID when every installment is settled, PARTIAL when any installment has
    been paid into, DUE when none has.
    """
    if not loan.installments:
        raise ValidationError(f"Loan {loan.id} has no scheduled installments")

    if all(installment.is_settled for installment in loan.installments):
        return RepaymentStatus.REPAID
    if any(installment.is_touched for installment in loan.installments):
        return RepaymentStatus.PARTIAL
    return RepaymentStatus.DUE


def refresh_loan(loan: Loan) -> Loan:
    """Recompute outstanding balance and status from the installment ledger"""
    loan.outstanding = money_sum((i.outstanding for i in loan.installments), loan.currency)
    loan.status = derive_status(loan)
    return loan


def _unsettled_oldest_first(loan: Loan) -> List[ScheduledInstallment]:
    return sorted(
        (i for i in loan.installments if i.outstanding.is_positive()),
        key=lambda i: (i.due_date, i.installment_number)
    )


def apply_payment(
    loan: Loan,
    amount: int,
    currency: Union[str, Currency],
    received_date: Union[str, date],
    policy: AllocationPolicy = AllocationPolicy.SINGLE_INSTALLMENT
) -> ReceivedRepayment:
    """
    Apply one incoming payment to a loan's schedule, oldest due installment first

    All preconditions are checked before anything is mutated, so a rejected
    payment leaves the loan exactly as it was.

    Args:
        loan: Loan with its installments attached
        amount: Payment in minor units
        currency: ISO 4217 code; must equal the loan currency
        received_date: Date the payment was received
        policy: SINGLE_INSTALLMENT settles at most one installment and records the
            excess as unapplied; WATERFALL carries the excess to later installments

    Returns:
        The ReceivedRepayment ledger entry (not yet persisted)

    Raises:
        ValidationError: Non-positive amount, unknown currency or bad date
        CurrencyMismatchError: Payment currency differs from the loan currency
        AlreadySettledError: No installment has anything outstanding
    """
    require_positive_int(amount, "amount")
    currency = Currency.from_code(currency)
    if currency != loan.currency:
        raise CurrencyMismatchError(
            f"Payment currency {currency.code} does not match loan currency {loan.currency.code}"
        )
    received_date = parse_date(received_date, "received_date")

    candidates = _unsettled_oldest_first(loan)
    if not candidates:
        raise AlreadySettledError(f"Loan {loan.id} has no outstanding installments")

    if policy == AllocationPolicy.SINGLE_INSTALLMENT:
        targets = candidates[:1]
    elif policy == AllocationPolicy.WATERFALL:
        targets = candidates
    else:
        raise ValueError(f"Unsupported allocation policy: {policy}")

    payment = Money(amount, currency)
    remaining = payment
    allocations = []
    for installment in targets:
        if remaining.is_zero():
            break
        applied = min(remaining, installment.outstanding)
        installment.outstanding = installment.outstanding - applied
        installment.refresh_status()
        remaining = remaining - applied
        allocations.append(RepaymentAllocation(
            installment_id=installment.id,
            installment_number=installment.installment_number,
            amount=applied
        ))

    refresh_loan(loan)
    now = datetime.now(timezone.utc)
    loan.updated_at = now

    return ReceivedRepayment(
        id=str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        loan_id=loan.id,
        amount=payment,
        received_date=received_date,
        allocations=allocations,
        unapplied_amount=remaining
    )


class LoanManager:
    """
    Creates loans and applies repayments against them.

    Each operation is one read-modify-write unit inside storage.atomic(): a
    failure anywhere leaves loan, installments and ledger untouched.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        allocation_policy: Optional[AllocationPolicy] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        if allocation_policy is None:
            allocation_policy = AllocationPolicy(get_config().repayment_allocation_policy)
        self.allocation_policy = allocation_policy

        self.loans_table = "loans"
        self.installments_table = "scheduled_installments"
        self.repayments_table = "received_repayments"

    def create_loan(
        self,
        customer_id: str,
        amount: int,
        currency_code: Union[str, Currency],
        terms: int,
        processed_at: Union[str, date]
    ) -> Loan:
        """
        Create a loan and its repayment schedule

        Args:
            customer_id: Borrower
            amount: Principal in minor units
            currency_code: ISO 4217 code
            terms: Number of monthly installments
            processed_at: Origination date

        Returns:
            Created Loan with installments attached
        """
        if not customer_id:
            raise ValidationError("customer_id is required")

        now = datetime.now(timezone.utc)
        loan_id = str(uuid.uuid4())
        try:
            installments = generate_schedule(amount, currency_code, terms, processed_at, loan_id=loan_id)
        except ValidationError as e:
            log_action(logger, "warning", f"Loan creation rejected: {e}",
                       user_id=customer_id, action="create_loan")
            raise

        first = installments[0]
        loan = Loan(
            id=loan_id,
            created_at=now,
            updated_at=now,
            customer_id=customer_id,
            principal=Money(amount, first.currency),
            term_count=terms,
            origination_date=parse_date(processed_at, "processed_at"),
            installments=installments
        )
        refresh_loan(loan)

        with self.storage.atomic():
            self._save_loan(loan)
            for installment in installments:
                self._save_installment(installment)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_CREATED,
                entity_type="loan",
                entity_id=loan.id,
                user_id=customer_id,
                metadata={
                    "principal": loan.principal.to_string(),
                    "currency": loan.currency.code,
                    "term_count": terms,
                    "origination_date": loan.origination_date
                }
            )

        log_action(logger, "info", "Loan created", user_id=customer_id,
                   action="create_loan", resource=f"loan:{loan.id}",
                   extra={"principal": amount, "currency": loan.currency.code, "terms": terms})
        return loan

    def repay_loan(
        self,
        loan_id: str,
        amount: int,
        currency_code: Union[str, Currency],
        received_at: Union[str, date]
    ) -> ReceivedRepayment:
        """
        Apply a received payment to a loan and record it in the repayment ledger

        Returns:
            The persisted ReceivedRepayment

        Raises:
            LoanNotFoundError: Unknown loan
            ValidationError, CurrencyMismatchError, AlreadySettledError: see apply_payment
        """
        try:
            with self.storage.atomic():
                loan = self.get_loan(loan_id)
                if loan is None:
                    raise LoanNotFoundError(f"Loan {loan_id} not found")

                repayment = apply_payment(loan, amount, currency_code, received_at,
                                          policy=self.allocation_policy)

                touched = {a.installment_number for a in repayment.allocations}
                for installment in loan.installments:
                    if installment.installment_number in touched:
                        self._save_installment(installment)
                self._save_loan(loan)
                self._save_repayment(repayment)

                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_REPAYMENT_RECEIVED,
                    entity_type="loan",
                    entity_id=loan.id,
                    user_id=loan.customer_id,
                    metadata={
                        "repayment_id": repayment.id,
                        "amount": repayment.amount.to_string(),
                        "unapplied_amount": repayment.unapplied_amount.to_string(),
                        "installments": sorted(touched),
                        "outstanding": loan.outstanding.to_string(),
                        "status": loan.status
                    }
                )
                if loan.is_repaid:
                    self.audit_trail.log_event(
                        event_type=AuditEventType.LOAN_REPAID,
                        entity_type="loan",
                        entity_id=loan.id,
                        user_id=loan.customer_id,
                        metadata={"final_repayment_id": repayment.id}
                    )
        except (ValidationError, CurrencyMismatchError, AlreadySettledError, LoanNotFoundError) as e:
            log_action(logger, "warning", f"Repayment rejected: {e}",
                       action="repay_loan", resource=f"loan:{loan_id}",
                       extra={"error": type(e).__name__})
            raise

        log_action(logger, "info", "Repayment applied", user_id=loan.customer_id,
                   action="repay_loan", resource=f"loan:{loan.id}",
                   extra={
                       "repayment_id": repayment.id,
                       "amount": repayment.amount.amount,
                       "unapplied": repayment.unapplied_amount.amount,
                       "outstanding": loan.outstanding.amount,
                       "status": loan.status.value
                   })
        return repayment

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID with its installments attached"""
        loan_dict = self.storage.load(self.loans_table, loan_id)
        if loan_dict:
            return Loan.from_dict(loan_dict, installments=self.get_schedule(loan_id))
        return None

    def get_customer_loans(self, customer_id: str) -> List[Loan]:
        """Get all loans for a customer, oldest first"""
        loans_data = self.storage.find(self.loans_table, {"customer_id": customer_id})
        loans = [Loan.from_dict(data, installments=self.get_schedule(data['id'])) for data in loans_data]
        loans.sort(key=lambda loan: loan.created_at)
        return loans

    def get_schedule(self, loan_id: str) -> List[ScheduledInstallment]:
        """Installments of a loan ordered by installment number"""
        entries = self.storage.find(self.installments_table, {"loan_id": loan_id})
        schedule = [ScheduledInstallment.from_dict(data) for data in entries]
        schedule.sort(key=lambda i: i.installment_number)
        return schedule

    def get_repayments(self, loan_id: str) -> List[ReceivedRepayment]:
        """Repayment ledger of a loan ordered by received date"""
        data = self.storage.find(self.repayments_table, {"loan_id": loan_id})
        repayments = [ReceivedRepayment.from_dict(d) for d in data]
        repayments.sort(key=lambda r: (r.received_date, r.created_at))
        return repayments

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def _save_installment(self, installment: ScheduledInstallment) -> None:
        self.storage.save(self.installments_table, installment.id, installment.to_dict())

    def _save_repayment(self, repayment: ReceivedRepayment) -> None:
        """Ledger entries are insert-only"""
        if self.storage.exists(self.repayments_table, repayment.id):
            raise ValueError(f"Repayment {repayment.id} already recorded")
        self.storage.save(self.repayments_table, repayment.id, repayment.to_dict())
