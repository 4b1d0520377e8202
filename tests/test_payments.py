"""
Test suite for payments

Tests manual and automatic allocation, exact reversal on deletion, status
recomputation and serialization of concurrent payments on one loan.
"""

import threading
import pytest
from decimal import Decimal
from datetime import date

from debt_ledger.currency import Money
from debt_ledger.storage import InMemoryStorage, SQLiteStorage
from debt_ledger.audit import AuditTrail, AuditEventType
from debt_ledger.clock import FixedClock
from debt_ledger.exceptions import AllocationExceedsPaymentError, LedgerValidationError, NotFoundError
from debt_ledger.allocation import allocation_item
from debt_ledger.interest import InterestPolicyManager, InterestMode
from debt_ledger.loans import LoanManager, LoanStatus
from debt_ledger.payments import PaymentManager


class TestPaymentManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.clock = FixedClock(date(2024, 3, 1))
        self.policies = InterestPolicyManager(self.storage, self.audit)
        self.loans = LoanManager(self.storage, self.policies, self.audit, self.clock)
        self.payments = PaymentManager(self.storage, self.loans, self.audit, self.clock)

        self.policy = self.policies.create_policy("ws-1", "Daily", InterestMode.DAILY, daily_rate=Decimal('0.001'))
        self.loan = self.loans.create_loan("ws-1", "borrower-1", Money(Decimal('10000')), date(2024, 2, 1),
                                           due_date=date(2024, 6, 1), interest_policy_id=self.policy.id)
        # 29 days at 0.1% per day
        self.loans.refresh_accrued_interest(self.loan.id)

    def test_auto_allocate_interest_first(self):
        payment = self.payments.auto_allocate_payment("ws-1", Money(Decimal('5000')), date(2024, 3, 1))

        assert len(payment.allocations) == 1
        assert payment.allocations[0].interest_paid == Money(Decimal('290'))
        assert payment.allocations[0].principal_paid == Money(Decimal('4710'))
        assert payment.allocation_method == "INTEREST_FIRST"

        loan = self.loans.get_loan(self.loan.id)
        assert loan.remaining_principal == Money(Decimal('5290'))
        assert loan.accrued_interest.is_zero()
        assert loan.status == LoanStatus.OPEN

    def test_accrual_restarts_at_payment_date(self):
        self.payments.auto_allocate_payment("ws-1", Money(Decimal('5000')), date(2024, 3, 1))
        assert self.loans.refresh_accrued_interest(self.loan.id).accrued_interest.is_zero()

        self.clock.advance(10)
        # 10 days on the remaining 5290
        assert self.loans.refresh_accrued_interest(self.loan.id).accrued_interest == Money(Decimal('52.90'))

    def test_payment_that_clears_balance_closes_loan(self):
        payment = self.payments.auto_allocate_payment("ws-1", Money(Decimal('20000')), date(2024, 3, 1))

        loan = self.loans.get_loan(self.loan.id)
        assert loan.status == LoanStatus.CLOSED
        assert loan.remaining_principal.is_zero()
        assert payment.unallocated == Money(Decimal('9710'))
        assert self.audit.get_events_by_type(AuditEventType.LOAN_CLOSED)

    def test_delete_restores_balances_exactly(self):
        before = self.loans.get_loan(self.loan.id)
        payment = self.payments.auto_allocate_payment("ws-1", Money(Decimal('1234.56')), date(2024, 3, 1))

        self.payments.delete_payment(payment.id)

        after = self.loans.get_loan(self.loan.id)
        assert after.remaining_principal == before.remaining_principal
        assert after.accrued_interest == before.accrued_interest
        assert self.loans.get_loan_allocations(self.loan.id) == []
        with pytest.raises(NotFoundError):
            self.payments.get_payment(payment.id)

    def test_delete_reopens_closed_loan(self):
        payment = self.payments.auto_allocate_payment("ws-1", Money(Decimal('10290')), date(2024, 3, 1))
        assert self.loans.get_loan(self.loan.id).status == LoanStatus.CLOSED

        self.payments.delete_payment(payment.id)
        assert self.loans.get_loan(self.loan.id).status == LoanStatus.OPEN
        assert self.audit.get_events_by_type(AuditEventType.LOAN_REOPENED)

    def test_delete_reopens_past_due_loan_as_overdue(self):
        payment = self.payments.auto_allocate_payment("ws-1", Money(Decimal('10290')), date(2024, 3, 1))
        self.clock.advance(120)

        self.payments.delete_payment(payment.id)
        assert self.loans.get_loan(self.loan.id).status == LoanStatus.OVERDUE

    def test_partial_payment_on_past_due_loan_stays_overdue(self):
        self.clock.advance(100)
        self.payments.auto_allocate_payment("ws-1", Money(Decimal('1000')), date(2024, 6, 9))
        loan = self.loans.get_loan(self.loan.id)
        assert loan.status == LoanStatus.OVERDUE
        assert loan.remaining_principal == Money(Decimal('9290'))

        self.payments.auto_allocate_payment("ws-1", Money(Decimal('9290')), date(2024, 6, 9))
        assert self.loans.get_loan(self.loan.id).status == LoanStatus.CLOSED

    def test_manual_allocation(self):
        payment = self.payments.create_payment(
            "ws-1", Money(Decimal('1000')), date(2024, 3, 1),
            [allocation_item(self.loan.id, "900", "100")], note="cash"
        )
        assert payment.allocation_method is None
        assert payment.allocated == Money(Decimal('1000'))

        loan = self.loans.get_loan(self.loan.id)
        assert loan.remaining_principal == Money(Decimal('9100'))
        assert loan.accrued_interest == Money(Decimal('190'))

    def test_manual_allocation_capped_at_balance(self):
        payment = self.payments.create_payment(
            "ws-1", Money(Decimal('20000')), date(2024, 3, 1),
            [allocation_item(self.loan.id, "15000", "500")]
        )
        stored = self.payments.get_payment(payment.id).allocations[0]
        assert stored.principal_paid == Money(Decimal('10000'))
        assert stored.interest_paid == Money(Decimal('290'))

        self.payments.delete_payment(payment.id)
        loan = self.loans.get_loan(self.loan.id)
        assert loan.remaining_principal == Money(Decimal('10000'))
        assert loan.accrued_interest == Money(Decimal('290'))

    def test_manual_allocation_over_amount_rejected(self):
        with pytest.raises(AllocationExceedsPaymentError):
            self.payments.create_payment(
                "ws-1", Money(Decimal('100')), date(2024, 3, 1),
                [allocation_item(self.loan.id, "90", "20")]
            )
        assert self.payments.get_workspace_payments("ws-1") == []
        assert self.loans.get_loan(self.loan.id).remaining_principal == Money(Decimal('10000'))

    def test_allocation_to_other_workspace_loan_rolls_back(self):
        other = self.loans.create_loan("ws-2", "x", Money(Decimal('500')), date(2024, 2, 1))
        with pytest.raises(NotFoundError):
            self.payments.create_payment(
                "ws-1", Money(Decimal('600')), date(2024, 3, 1),
                [allocation_item(self.loan.id, "100"), allocation_item(other.id, "500")]
            )
        assert self.payments.get_workspace_payments("ws-1") == []
        assert self.loans.get_loan(self.loan.id).remaining_principal == Money(Decimal('10000'))
        assert self.audit.verify_integrity()["valid"]

    def test_non_positive_amount_rejected(self):
        with pytest.raises(LedgerValidationError):
            self.payments.auto_allocate_payment("ws-1", Money(Decimal('0')), date(2024, 3, 1))

    def test_borrower_filter(self):
        other = self.loans.create_loan("ws-1", "borrower-2", Money(Decimal('500')), date(2024, 1, 1))
        payment = self.payments.auto_allocate_payment("ws-1", Money(Decimal('100')), date(2024, 3, 1),
                                                      method="FIFO", borrower_id="borrower-2")
        assert [a.loan_id for a in payment.allocations] == [other.id]

    def test_update_payment_moves_allocation_dates(self):
        payment = self.payments.auto_allocate_payment("ws-1", Money(Decimal('1000')), date(2024, 3, 1))
        self.payments.update_payment(payment.id, note="moved", payment_date=date(2024, 2, 20))

        loaded = self.payments.get_payment(payment.id)
        assert loaded.note == "moved"
        assert loaded.payment_date == date(2024, 2, 20)
        assert all(a.payment_date == date(2024, 2, 20) for a in loaded.allocations)

    def test_workspace_payments_newest_first(self):
        first = self.payments.auto_allocate_payment("ws-1", Money(Decimal('10')), date(2024, 2, 10))
        second = self.payments.auto_allocate_payment("ws-1", Money(Decimal('10')), date(2024, 2, 20))
        assert [p.id for p in self.payments.get_workspace_payments("ws-1")] == [second.id, first.id]


class TestConcurrentPayments:
    """Payments racing on one loan are serialized by the storage lock"""

    def _run(self, storage):
        audit = AuditTrail(storage)
        clock = FixedClock(date(2024, 3, 1))
        loans = LoanManager(storage, InterestPolicyManager(storage, audit), audit, clock)
        payments = PaymentManager(storage, loans, audit, clock)
        loan = loans.create_loan("ws-1", "borrower", Money(Decimal('10000')), date(2024, 1, 1))

        errors = []

        def pay():
            try:
                payments.auto_allocate_payment("ws-1", Money(Decimal('1500')), date(2024, 3, 1))
            except Exception as e:  # surfaced through the errors list
                errors.append(e)

        threads = [threading.Thread(target=pay) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        final = loans.get_loan(loan.id)
        allocated = sum((a.principal_paid.amount for a in loans.get_loan_allocations(loan.id)), Decimal('0'))

        assert final.remaining_principal == Money.zero()
        assert final.status == LoanStatus.CLOSED
        assert allocated == Decimal('10000.00')
        assert len(payments.get_workspace_payments("ws-1")) == 10
        assert audit.verify_integrity()["valid"]

    def test_in_memory_storage(self):
        self._run(InMemoryStorage())

    def test_sqlite_storage(self):
        storage = SQLiteStorage(":memory:")
        try:
            self._run(storage)
        finally:
            storage.close()
