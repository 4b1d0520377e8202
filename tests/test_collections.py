"""
Test suite for collections
"""

import pytest
from decimal import Decimal
from datetime import date

from debt_ledger.currency import Money
from debt_ledger.storage import InMemoryStorage
from debt_ledger.audit import AuditTrail
from debt_ledger.clock import FixedClock
from debt_ledger.exceptions import LedgerValidationError, NotFoundError
from debt_ledger.allocation import allocation_item
from debt_ledger.interest import InterestPolicyManager, InterestMode
from debt_ledger.loans import LoanManager
from debt_ledger.payments import PaymentManager
from debt_ledger.collections import (
    ActivityType, CollectionManager, CollectionPriority, CollectionStatus, priority_for_days_past_due
)


class TestPriorityBands:

    @pytest.mark.parametrize("days, priority", [
        (0, CollectionPriority.LOW),
        (30, CollectionPriority.LOW),
        (31, CollectionPriority.NORMAL),
        (60, CollectionPriority.NORMAL),
        (61, CollectionPriority.HIGH),
        (90, CollectionPriority.HIGH),
        (91, CollectionPriority.CRITICAL),
    ])
    def test_bands(self, days, priority):
        assert priority_for_days_past_due(days) == priority


class TestCollectionManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.clock = FixedClock(date(2024, 6, 1))
        self.policies = InterestPolicyManager(self.storage, self.audit)
        self.loans = LoanManager(self.storage, self.policies, self.audit, self.clock)
        self.payments = PaymentManager(self.storage, self.loans, self.audit, self.clock)
        self.manager = CollectionManager(self.storage, self.loans, self.audit, self.clock)

        self.policy = self.policies.create_policy("ws-1", "Daily", InterestMode.DAILY, daily_rate=Decimal('0.001'))

    def _loan(self, due, principal="1000", borrower="borrower-1"):
        return self.loans.create_loan("ws-1", borrower, Money(Decimal(principal)), date(2024, 1, 1),
                                      due_date=due, interest_policy_id=self.policy.id)

    def test_create_case_defaults(self):
        loan = self._loan(date(2024, 5, 1))
        case = self.manager.create_case("ws-1", loan.id, Money(Decimal('1100')), Money(Decimal('1000')),
                                        Money(Decimal('100')), 31)
        assert case.contact_id == "borrower-1"
        assert case.priority == CollectionPriority.NORMAL
        assert case.status == CollectionStatus.ACTIVE

    def test_create_case_validation(self):
        loan = self._loan(date(2024, 5, 1))
        with pytest.raises(LedgerValidationError):
            self.manager.create_case("ws-1", loan.id, Money.zero(), Money.zero(), Money.zero(), -1)
        with pytest.raises(NotFoundError):
            self.manager.create_case("ws-2", loan.id, Money.zero(), Money.zero(), Money.zero(), 1)

    def test_auto_create_cases(self):
        late = self._loan(date(2024, 2, 1))         # 121 days late
        recent = self._loan(date(2024, 5, 20))      # 12 days late
        self._loan(date(2024, 7, 1))                # not due yet
        paid = self._loan(date(2024, 2, 1), borrower="borrower-2")
        self.payments.auto_allocate_payment("ws-1", Money(Decimal('5000')), date(2024, 3, 1),
                                            borrower_id="borrower-2")

        cases = self.manager.auto_create_collection_cases("ws-1")
        by_loan = {case.loan_id: case for case in cases}
        assert set(by_loan) == {late.id, recent.id}
        assert paid.id not in by_loan

        late_case = by_loan[late.id]
        assert late_case.days_past_due == 121
        assert late_case.priority == CollectionPriority.CRITICAL
        # 152 days since the start at 0.1% a day
        assert late_case.interest_due == Money(Decimal('152'))
        assert late_case.total_outstanding == Money(Decimal('1152'))
        assert by_loan[recent.id].priority == CollectionPriority.LOW

    def test_auto_create_counts_interest_left_unpaid(self):
        loan = self._loan(date(2024, 2, 1))
        self.payments.create_payment("ws-1", Money(Decimal('50')), date(2024, 3, 1),
                                     [allocation_item(loan.id, "50", "0")])

        case = self.manager.auto_create_collection_cases("ws-1")[0]
        # 60 unpaid by Mar 1, then 92 days on 950
        assert case.interest_due == Money(Decimal('147.40'))
        assert case.principal_due == Money(Decimal('950'))
        assert case.total_outstanding == Money(Decimal('1097.40'))

    def test_auto_create_skips_loans_with_open_case(self):
        self._loan(date(2024, 2, 1))
        first = self.manager.auto_create_collection_cases("ws-1")
        assert len(first) == 1
        assert self.manager.auto_create_collection_cases("ws-1") == []

        self.manager.update_case_status(first[0].id, CollectionStatus.RESOLVED)
        assert len(self.manager.auto_create_collection_cases("ws-1")) == 1

    def test_pending_cases_most_late_first(self):
        self._loan(date(2024, 5, 20))
        self._loan(date(2024, 2, 1))
        self._loan(date(2024, 4, 1))
        self.manager.auto_create_collection_cases("ws-1")

        days = [case.days_past_due for case in self.manager.get_pending_cases("ws-1")]
        assert days == sorted(days, reverse=True)
        assert len(days) == 3

    def test_log_activity_stamps_contact_date(self):
        self._loan(date(2024, 2, 1))
        case = self.manager.auto_create_collection_cases("ws-1")[0]

        self.clock.advance(2)
        self.manager.log_activity(case.id, ActivityType.CALL, "Promised to pay", created_by="agent",
                                  promised_amount=Money(Decimal('500')), promised_date=date(2024, 6, 10))
        self.manager.log_activity(case.id, "NOTE", "Follow up next week")

        assert self.manager.get_case(case.id).last_contact_date == date(2024, 6, 3)
        activities = self.manager.get_case_activities(case.id)
        assert len(activities) == 2
        promised = [a for a in activities if a.activity_type == ActivityType.CALL][0]
        assert promised.promised_amount == Money(Decimal('500'))
        assert promised.promised_date == date(2024, 6, 10)

    def test_stats(self):
        self._loan(date(2024, 2, 1))
        self._loan(date(2024, 4, 1))
        cases = self.manager.auto_create_collection_cases("ws-1")
        self.manager.update_case_status(cases[0].id, CollectionStatus.WRITTEN_OFF)
        self.manager.update_case_status(cases[1].id, "PROMISED")

        stats = self.manager.get_collection_stats("ws-1")
        assert stats["written_off"] == 1
        assert stats["promised"] == 1
        assert stats["total_active"] == 1
        assert stats["total_outstanding"] == cases[1].total_outstanding

    def test_missing_case(self):
        with pytest.raises(NotFoundError):
            self.manager.log_activity("missing", ActivityType.SMS, "hello")
