"""
Test suite for loan applications
"""

import pytest
from decimal import Decimal
from datetime import date

from debt_ledger.currency import Money
from debt_ledger.storage import InMemoryStorage
from debt_ledger.audit import AuditTrail, AuditEventType
from debt_ledger.clock import FixedClock
from debt_ledger.exceptions import (
    InsufficientCreditError, InvalidStateError, LedgerValidationError, NotFoundError
)
from debt_ledger.interest import InterestPolicyManager, InterestMode
from debt_ledger.loans import LoanManager, LoanStatus
from debt_ledger.customer_credit import CustomerCreditManager
from debt_ledger.applications import ApplicationStatus, LoanApplicationManager


class TestLoanApplicationManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.clock = FixedClock(date(2024, 3, 1))
        self.policies = InterestPolicyManager(self.storage, self.audit)
        self.loans = LoanManager(self.storage, self.policies, self.audit, self.clock)
        self.credits = CustomerCreditManager(self.storage, self.loans, self.audit, self.clock)
        self.manager = LoanApplicationManager(self.storage, self.loans, self.credits, self.audit)

        self.policy = self.policies.create_policy("ws-1", "Monthly 1%", InterestMode.MONTHLY,
                                                  monthly_rate=Decimal('0.01'))
        self.application = self.manager.create_application(
            "ws-1", "contact-1", Money(Decimal('20000')), purpose="inventory",
            term_months=6, interest_policy_id=self.policy.id
        )

    def test_create_application(self):
        application = self.manager.get_application(self.application.id)
        assert application.status == ApplicationStatus.PENDING
        assert application.requested_amount == Money(Decimal('20000'))
        assert application.term_months == 6

    @pytest.mark.parametrize("amount, term", [("0", None), ("100", 0)])
    def test_invalid_application(self, amount, term):
        with pytest.raises(LedgerValidationError):
            self.manager.create_application("ws-1", "c", Money(Decimal(amount)), term_months=term)

    def test_unknown_policy(self):
        with pytest.raises(NotFoundError):
            self.manager.create_application("ws-1", "c", Money(Decimal('1')), interest_policy_id="missing")

    def test_review_then_approve(self):
        self.manager.update_status(self.application.id, ApplicationStatus.REVIEWING, "officer")
        approved = self.manager.update_status(self.application.id, "APPROVED", "manager",
                                              approved_amount=Money(Decimal('15000')), note="reduced")
        assert approved.status == ApplicationStatus.APPROVED
        assert approved.approved_amount == Money(Decimal('15000'))
        assert approved.approval_note == "reduced"
        assert approved.reviewed_by == "manager"
        assert approved.reviewed_at is not None

    def test_approve_defaults_to_requested_amount(self):
        approved = self.manager.update_status(self.application.id, ApplicationStatus.APPROVED, "manager")
        assert approved.approved_amount == Money(Decimal('20000'))

    def test_rejected_application_is_final(self):
        rejected = self.manager.update_status(self.application.id, ApplicationStatus.REJECTED, "manager",
                                              note="income too low")
        assert rejected.rejection_reason == "income too low"

        with pytest.raises(InvalidStateError):
            self.manager.update_status(self.application.id, ApplicationStatus.APPROVED, "manager")
        with pytest.raises(InvalidStateError):
            self.manager.approve_and_disburse(self.application.id, "manager", Money(Decimal('1')),
                                              date(2024, 3, 1))

    def test_disbursed_status_only_through_disbursement(self):
        with pytest.raises(InvalidStateError):
            self.manager.update_status(self.application.id, ApplicationStatus.DISBURSED, "manager")

    def test_approve_and_disburse_creates_loan(self):
        loan = self.manager.approve_and_disburse(
            self.application.id, "manager", Money(Decimal('18000')), date(2024, 3, 1),
            due_date=date(2024, 9, 1), note="approved"
        )

        assert loan.principal == Money(Decimal('18000'))
        assert loan.borrower_id == "contact-1"
        assert loan.interest_policy_id == self.policy.id
        assert loan.application_id == self.application.id
        assert loan.status == LoanStatus.OPEN

        application = self.manager.get_application(self.application.id)
        assert application.status == ApplicationStatus.DISBURSED
        assert application.loan_id == loan.id
        assert self.audit.get_events_by_type(AuditEventType.APPLICATION_DISBURSED)

        with pytest.raises(InvalidStateError):
            self.manager.approve_and_disburse(self.application.id, "manager", Money(Decimal('1')),
                                              date(2024, 3, 1))

    def test_disburse_from_customer_credit(self):
        credit = self.credits.create_credit("ws-1", "contact-1", Money(Decimal('25000')))
        self.manager.approve_and_disburse(self.application.id, "manager", Money(Decimal('20000')),
                                          date(2024, 3, 1), use_customer_credit=True)

        assert self.credits.get_credit(credit.id).available_credit == Money(Decimal('5000'))

    def test_insufficient_credit_leaves_application_pending(self):
        credit = self.credits.create_credit("ws-1", "contact-1", Money(Decimal('5000')))
        with pytest.raises(InsufficientCreditError):
            self.manager.approve_and_disburse(self.application.id, "manager", Money(Decimal('20000')),
                                              date(2024, 3, 1), use_customer_credit=True)

        assert self.manager.get_application(self.application.id).status == ApplicationStatus.PENDING
        assert self.loans.get_workspace_loans("ws-1") == []
        assert self.credits.get_credit(credit.id).used_credit.is_zero()

    def test_disburse_without_credit_line(self):
        with pytest.raises(NotFoundError):
            self.manager.approve_and_disburse(self.application.id, "manager", Money(Decimal('100')),
                                              date(2024, 3, 1), use_customer_credit=True)

    def test_pending_and_stats(self):
        second = self.manager.create_application("ws-1", "contact-2", Money(Decimal('5000')))
        third = self.manager.create_application("ws-1", "contact-3", Money(Decimal('1000')))
        self.manager.update_status(second.id, ApplicationStatus.REVIEWING, "officer")
        self.manager.update_status(third.id, ApplicationStatus.APPROVED, "officer",
                                   approved_amount=Money(Decimal('800')))

        pending = self.manager.get_pending_applications("ws-1")
        assert [a.id for a in pending] == [self.application.id, second.id]

        stats = self.manager.get_application_stats("ws-1")
        assert stats["pending"] == 1
        assert stats["reviewing"] == 1
        assert stats["approved"] == 1
        assert stats["total_requested"] == Money(Decimal('26000'))
        assert stats["total_approved"] == Money(Decimal('800'))
