"""
Test suite for loans module

Tests repayment allocation (oldest-due-first, single installment and
waterfall policies), loan status derivation, and the LoanManager
read-modify-write workflow including rollback on failure.
"""

import pytest
from datetime import datetime, timezone, date

from lending_core.audit import AuditTrail, AuditEventType
from lending_core.currency import Money, Currency
from lending_core.exceptions import (
    ValidationError, CurrencyMismatchError, AlreadySettledError, LoanNotFoundError
)
from lending_core.loans import (
    Loan, LoanManager, ReceivedRepayment, AllocationPolicy,
    apply_payment, derive_status, refresh_loan
)
from lending_core.schedule import RepaymentStatus, generate_schedule
from lending_core.storage import InMemoryStorage, SQLiteStorage


def make_loan(principal=1000, terms=3, currency="USD", origination=date(2024, 1, 15)) -> Loan:
    now = datetime.now(timezone.utc)
    installments = generate_schedule(principal, currency, terms, origination, loan_id="LOAN001")
    loan = Loan(
        id="LOAN001",
        created_at=now,
        updated_at=now,
        customer_id="CUST001",
        principal=Money(principal, Currency.from_code(currency)),
        term_count=terms,
        origination_date=origination,
        installments=installments
    )
    return refresh_loan(loan)


def outstanding_amounts(loan: Loan):
    return [i.outstanding.amount for i in loan.installments]


class TestLoanModel:
    """Loan construction and serialization"""

    def test_new_loan_defaults(self):
        loan = make_loan()

        assert loan.outstanding == Money(1000, Currency.USD)
        assert loan.status == RepaymentStatus.DUE
        assert loan.currency == Currency.USD
        assert not loan.is_repaid

    def test_loan_dict_excludes_installments(self):
        loan = make_loan()
        data = loan.to_dict()

        assert "installments" not in data
        assert data["principal"] == 1000
        assert data["status"] == "due"

        restored = Loan.from_dict(data, installments=loan.installments)
        assert restored == loan


class TestDeriveStatus:
    """Loan status is a pure function of its installments"""

    def test_untouched_loan_is_due(self):
        assert derive_status(make_loan()) == RepaymentStatus.DUE

    def test_touched_loan_is_partial(self):
        loan = make_loan()
        loan.installments[0].outstanding = Money(100, Currency.USD)
        assert derive_status(loan) == RepaymentStatus.PARTIAL

    def test_settled_installment_makes_loan_partial(self):
        loan = make_loan()
        loan.installments[2].outstanding = Money(0, Currency.USD)
        assert derive_status(loan) == RepaymentStatus.PARTIAL

    def test_all_settled_is_repaid(self):
        loan = make_loan()
        for installment in loan.installments:
            installment.outstanding = Money(0, Currency.USD)
        assert derive_status(loan) == RepaymentStatus.REPAID

    def test_loan_without_installments_rejected(self):
        loan = make_loan()
        loan.installments = []
        with pytest.raises(ValidationError, match="no scheduled installments"):
            derive_status(loan)

    def test_refresh_recomputes_outstanding_from_installments(self):
        loan = make_loan()
        loan.installments[1].outstanding = Money(0, Currency.USD)
        # A stale loan-level balance is overwritten by the installment ledger
        loan.outstanding = Money(12345, Currency.USD)

        refresh_loan(loan)

        assert loan.outstanding == Money(667, Currency.USD)
        assert loan.status == RepaymentStatus.PARTIAL


class TestApplyPayment:
    """Repayment allocation against a schedule"""

    def test_exact_first_installment_payment(self):
        loan = make_loan()
        repayment = apply_payment(loan, 333, "USD", date(2024, 2, 15))

        first = loan.installments[0]
        assert first.outstanding.is_zero()
        assert first.status == RepaymentStatus.REPAID
        assert loan.status == RepaymentStatus.PARTIAL
        assert loan.outstanding == Money(667, Currency.USD)

        assert isinstance(repayment, ReceivedRepayment)
        assert repayment.loan_id == loan.id
        assert repayment.amount == Money(333, Currency.USD)
        assert repayment.received_date == date(2024, 2, 15)
        assert [(a.installment_number, a.amount.amount) for a in repayment.allocations] == [(1, 333)]
        assert repayment.unapplied_amount.is_zero()

    def test_full_repayment_sequence(self):
        loan = make_loan()
        for amount, received in [(333, "2024-02-15"), (333, "2024-03-15"), (334, "2024-04-15")]:
            apply_payment(loan, amount, "USD", received)

        assert loan.status == RepaymentStatus.REPAID
        assert loan.outstanding.is_zero()
        assert all(i.status == RepaymentStatus.REPAID for i in loan.installments)

    def test_partial_payment_stays_on_oldest_installment(self):
        loan = make_loan()

        apply_payment(loan, 100, "USD", date(2024, 2, 1))
        assert loan.installments[0].status == RepaymentStatus.PARTIAL
        assert outstanding_amounts(loan) == [233, 333, 334]
        assert loan.status == RepaymentStatus.PARTIAL

        apply_payment(loan, 233, "USD", date(2024, 2, 10))
        assert outstanding_amounts(loan) == [0, 333, 334]

        apply_payment(loan, 33, "USD", date(2024, 3, 1))
        assert outstanding_amounts(loan) == [0, 300, 334]
        assert loan.outstanding == Money(634, Currency.USD)

    def test_overpayment_single_installment_policy(self):
        loan = make_loan()
        repayment = apply_payment(loan, 500, "USD", date(2024, 2, 15),
                                  policy=AllocationPolicy.SINGLE_INSTALLMENT)

        # The excess is not carried to the next installment
        assert outstanding_amounts(loan) == [0, 333, 334]
        assert loan.installments[1].status == RepaymentStatus.DUE
        assert loan.outstanding == Money(667, Currency.USD)
        assert repayment.unapplied_amount == Money(167, Currency.USD)
        assert repayment.applied_amount == Money(333, Currency.USD)

    def test_overpayment_waterfall_policy(self):
        loan = make_loan()
        repayment = apply_payment(loan, 500, "USD", date(2024, 2, 15),
                                  policy=AllocationPolicy.WATERFALL)

        assert outstanding_amounts(loan) == [0, 166, 334]
        assert loan.installments[1].status == RepaymentStatus.PARTIAL
        assert loan.outstanding == Money(500, Currency.USD)
        assert [(a.installment_number, a.amount.amount) for a in repayment.allocations] == [(1, 333), (2, 167)]
        assert repayment.unapplied_amount.is_zero()

    def test_waterfall_overpayment_beyond_loan_is_unapplied(self):
        loan = make_loan()
        repayment = apply_payment(loan, 1200, "USD", date(2024, 2, 15),
                                  policy=AllocationPolicy.WATERFALL)

        assert loan.status == RepaymentStatus.REPAID
        assert loan.outstanding.is_zero()
        assert repayment.unapplied_amount == Money(200, Currency.USD)

    def test_oldest_due_date_selected_regardless_of_order(self):
        loan = make_loan()
        loan.installments.reverse()

        apply_payment(loan, 50, "USD", date(2024, 4, 20))

        by_number = {i.installment_number: i.outstanding.amount for i in loan.installments}
        assert by_number == {1: 283, 2: 333, 3: 334}

    @pytest.mark.parametrize("payments", [
        [1000],
        [1, 2, 3],
        [333, 333],
        [100, 233, 200, 133],
        [333, 333, 334],
    ])
    def test_outstanding_equals_principal_minus_payments(self, payments):
        loan = make_loan()
        for amount in payments:
            apply_payment(loan, amount, "USD", date(2024, 2, 1), policy=AllocationPolicy.WATERFALL)

        assert loan.outstanding.amount == 1000 - sum(payments)
        expected = RepaymentStatus.REPAID if sum(payments) == 1000 else RepaymentStatus.PARTIAL
        assert loan.status == expected

    def test_currency_mismatch_leaves_loan_untouched(self):
        loan = make_loan()
        before = (loan.to_dict(), [i.to_dict() for i in loan.installments])

        with pytest.raises(CurrencyMismatchError):
            apply_payment(loan, 333, "EUR", date(2024, 2, 15))

        assert (loan.to_dict(), [i.to_dict() for i in loan.installments]) == before

    @pytest.mark.parametrize("amount", [0, -10, 33.3, None])
    def test_non_positive_or_non_integer_amount_rejected(self, amount):
        loan = make_loan()
        with pytest.raises(ValidationError, match="amount"):
            apply_payment(loan, amount, "USD", date(2024, 2, 15))
        assert loan.outstanding == Money(1000, Currency.USD)

    def test_unknown_currency_is_validation_error(self):
        loan = make_loan()
        with pytest.raises(ValidationError):
            apply_payment(loan, 333, "ZZZ", date(2024, 2, 15))

    def test_invalid_received_date_rejected(self):
        loan = make_loan()
        with pytest.raises(ValidationError, match="received_date"):
            apply_payment(loan, 333, "USD", "not-a-date")
        assert loan.status == RepaymentStatus.DUE

    def test_received_date_with_trailing_text_rejected(self):
        loan = make_loan()
        with pytest.raises(ValidationError, match="received_date"):
            apply_payment(loan, 333, "USD", "2024-02-15garbage")
        assert loan.outstanding == Money(1000, Currency.USD)

    def test_payment_on_settled_loan_rejected(self):
        loan = make_loan(principal=300, terms=3)
        apply_payment(loan, 300, "USD", date(2024, 2, 1), policy=AllocationPolicy.WATERFALL)

        with pytest.raises(AlreadySettledError):
            apply_payment(loan, 1, "USD", date(2024, 5, 1))


class TestLoanManager:
    """Test loan manager functionality"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.loan_manager = LoanManager(
            self.storage, self.audit_trail,
            allocation_policy=AllocationPolicy.SINGLE_INSTALLMENT
        )

    def test_create_loan(self):
        loan = self.loan_manager.create_loan(
            customer_id="CUST001", amount=1000, currency_code="USD",
            terms=3, processed_at="2024-01-15"
        )

        assert loan.customer_id == "CUST001"
        assert loan.principal == Money(1000, Currency.USD)
        assert loan.outstanding == Money(1000, Currency.USD)
        assert loan.status == RepaymentStatus.DUE
        assert loan.origination_date == date(2024, 1, 15)

        retrieved = self.loan_manager.get_loan(loan.id)
        assert retrieved is not None
        assert [i.amount_due.amount for i in retrieved.installments] == [333, 333, 334]
        assert [i.due_date for i in retrieved.installments] == [
            date(2024, 2, 15), date(2024, 3, 15), date(2024, 4, 15)
        ]

        events = self.audit_trail.get_events_for_entity("loan", loan.id)
        assert [e.event_type for e in events] == [AuditEventType.LOAN_CREATED]

    def test_create_loan_validation_stores_nothing(self):
        with pytest.raises(ValidationError):
            self.loan_manager.create_loan("CUST001", 1000, "USD", 0, "2024-01-15")
        with pytest.raises(ValidationError):
            self.loan_manager.create_loan("CUST001", -5, "USD", 3, "2024-01-15")
        with pytest.raises(ValidationError):
            self.loan_manager.create_loan("", 1000, "USD", 3, "2024-01-15")

        assert self.storage.count("loans") == 0
        assert self.storage.count("scheduled_installments") == 0

    def test_loan_smaller_than_term_count_rejected(self):
        with pytest.raises(ValidationError, match="at least term_count"):
            self.loan_manager.create_loan("CUST001", 2, "USD", 3, "2024-01-15")
        assert self.storage.count("loans") == 0

    def test_smallest_loan_repaid_has_every_installment_repaid(self):
        loan = self.loan_manager.create_loan("CUST001", 3, "USD", 3, "2024-01-15")
        for received in ["2024-02-15", "2024-03-15", "2024-04-15"]:
            self.loan_manager.repay_loan(loan.id, 1, "USD", received)

        stored = self.loan_manager.get_loan(loan.id)
        assert stored.status == RepaymentStatus.REPAID
        assert [(i.outstanding.amount, i.status) for i in stored.installments] == [
            (0, RepaymentStatus.REPAID)
        ] * 3

    def test_repay_loan_persists_state(self):
        loan = self.loan_manager.create_loan("CUST001", 1000, "USD", 3, "2024-01-15")

        repayment = self.loan_manager.repay_loan(loan.id, 333, "USD", "2024-02-15")

        stored = self.loan_manager.get_loan(loan.id)
        assert stored.status == RepaymentStatus.PARTIAL
        assert stored.outstanding == Money(667, Currency.USD)
        assert stored.installments[0].status == RepaymentStatus.REPAID

        ledger = self.loan_manager.get_repayments(loan.id)
        assert [r.id for r in ledger] == [repayment.id]
        assert ledger[0].allocations[0].installment_id == f"{loan.id}_1"

    def test_full_repayment_logs_repaid_event(self):
        loan = self.loan_manager.create_loan("CUST001", 1000, "USD", 3, "2024-01-15")
        for amount, received in [(333, "2024-02-15"), (333, "2024-03-15"), (334, "2024-04-15")]:
            self.loan_manager.repay_loan(loan.id, amount, "USD", received)

        stored = self.loan_manager.get_loan(loan.id)
        assert stored.status == RepaymentStatus.REPAID
        assert stored.outstanding.is_zero()
        assert len(self.loan_manager.get_repayments(loan.id)) == 3

        event_types = [e.event_type for e in self.audit_trail.get_events_for_entity("loan", loan.id)]
        assert event_types[-1] == AuditEventType.LOAN_REPAID
        assert event_types.count(AuditEventType.LOAN_REPAYMENT_RECEIVED) == 3
        assert self.audit_trail.verify_integrity()["valid"]

        with pytest.raises(AlreadySettledError):
            self.loan_manager.repay_loan(loan.id, 1, "USD", "2024-05-15")

    def test_rejected_repayment_changes_nothing(self):
        loan = self.loan_manager.create_loan("CUST001", 1000, "USD", 3, "2024-01-15")
        before = self.storage.get_all_data()

        with pytest.raises(CurrencyMismatchError):
            self.loan_manager.repay_loan(loan.id, 333, "SGD", "2024-02-15")
        with pytest.raises(ValidationError):
            self.loan_manager.repay_loan(loan.id, 0, "USD", "2024-02-15")

        assert self.storage.get_all_data() == before

    def test_failed_write_rolls_back_whole_allocation(self):
        loan = self.loan_manager.create_loan("CUST001", 1000, "USD", 3, "2024-01-15")
        before = self.storage.get_all_data()

        original_save = self.storage.save

        def failing_save(table, record_id, data):
            if table == "received_repayments":
                raise RuntimeError("disk full")
            original_save(table, record_id, data)

        self.storage.save = failing_save
        with pytest.raises(RuntimeError, match="disk full"):
            self.loan_manager.repay_loan(loan.id, 333, "USD", "2024-02-15")
        self.storage.save = original_save

        assert self.storage.get_all_data() == before
        assert self.loan_manager.get_loan(loan.id).outstanding == Money(1000, Currency.USD)

    def test_unknown_loan(self):
        assert self.loan_manager.get_loan("missing") is None
        with pytest.raises(LoanNotFoundError):
            self.loan_manager.repay_loan("missing", 100, "USD", "2024-02-15")

    def test_waterfall_manager(self):
        manager = LoanManager(self.storage, self.audit_trail, allocation_policy=AllocationPolicy.WATERFALL)
        loan = manager.create_loan("CUST001", 1000, "USD", 3, "2024-01-15")

        repayment = manager.repay_loan(loan.id, 500, "USD", "2024-02-15")

        stored = manager.get_loan(loan.id)
        assert [i.outstanding.amount for i in stored.installments] == [0, 166, 334]
        assert stored.outstanding == Money(500, Currency.USD)
        assert len(repayment.allocations) == 2

    def test_get_customer_loans(self):
        first = self.loan_manager.create_loan("CUST001", 1000, "USD", 3, "2024-01-15")
        second = self.loan_manager.create_loan("CUST001", 5000, "SGD", 6, "2024-02-01")
        self.loan_manager.create_loan("CUST002", 2000, "USD", 2, "2024-01-15")

        loans = self.loan_manager.get_customer_loans("CUST001")
        assert {loan.id for loan in loans} == {first.id, second.id}
        assert all(loan.installments for loan in loans)

    def test_repayments_sorted_by_received_date(self):
        loan = self.loan_manager.create_loan("CUST001", 1000, "USD", 3, "2024-01-15")
        self.loan_manager.repay_loan(loan.id, 100, "USD", "2024-03-01")
        self.loan_manager.repay_loan(loan.id, 100, "USD", "2024-02-01")

        dates = [r.received_date for r in self.loan_manager.get_repayments(loan.id)]
        assert dates == [date(2024, 2, 1), date(2024, 3, 1)]


class TestLoanManagerSQLite:
    """Same workflow against the SQLite backend"""

    def setup_method(self):
        self.storage = SQLiteStorage(":memory:")
        self.audit_trail = AuditTrail(self.storage)
        self.loan_manager = LoanManager(
            self.storage, self.audit_trail,
            allocation_policy=AllocationPolicy.SINGLE_INSTALLMENT
        )

    def teardown_method(self):
        self.storage.close()

    def test_create_and_repay(self):
        loan = self.loan_manager.create_loan("CUST001", 1000, "USD", 3, "2024-01-15")
        self.loan_manager.repay_loan(loan.id, 333, "USD", "2024-02-15")

        stored = self.loan_manager.get_loan(loan.id)
        assert stored.outstanding == Money(667, Currency.USD)
        assert stored.status == RepaymentStatus.PARTIAL

    def test_currency_mismatch_rolls_back(self):
        loan = self.loan_manager.create_loan("CUST001", 1000, "USD", 3, "2024-01-15")
        events_before = self.audit_trail.count_events()

        with pytest.raises(CurrencyMismatchError):
            self.loan_manager.repay_loan(loan.id, 333, "THB", "2024-02-15")

        stored = self.loan_manager.get_loan(loan.id)
        assert stored.outstanding == Money(1000, Currency.USD)
        assert self.loan_manager.get_repayments(loan.id) == []
        assert self.audit_trail.count_events() == events_before
