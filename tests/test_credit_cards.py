"""
Test suite for credit cards

Tests charges against the limit, statement generation with carried interest,
minimum payments and statement payments.
"""

import pytest
from decimal import Decimal
from datetime import date

from debt_ledger.currency import Money
from debt_ledger.storage import InMemoryStorage
from debt_ledger.audit import AuditTrail
from debt_ledger.clock import FixedClock
from debt_ledger.exceptions import (
    CreditLimitExceededError, InvalidStateError, LedgerValidationError, NotFoundError
)
from debt_ledger.credit_cards import (
    CreditCardManager, calculate_credit_card_interest, calculate_minimum_payment, statement_cut_date
)


class TestCardMath:

    def test_cut_date_clamps_to_month_end(self):
        assert statement_cut_date(31, 2024, 2) == date(2024, 2, 29)
        assert statement_cut_date(25, 2024, 2) == date(2024, 2, 25)

    def test_carry_interest_prorated_by_month_of_due_date(self):
        interest = calculate_credit_card_interest(
            Decimal('6000'), Decimal('0.02'), date(2024, 2, 14), date(2024, 2, 25)
        )
        assert interest.quantize(Decimal('0.0001')) == Decimal('45.5172')

    def test_no_interest_when_cut_before_due(self):
        assert calculate_credit_card_interest(
            Decimal('6000'), Decimal('0.02'), date(2024, 2, 14), date(2024, 2, 1)
        ) == 0

    def test_minimum_payment(self):
        assert calculate_minimum_payment(Decimal('10000'), Decimal('0.05')) == Decimal('500.00')
        assert calculate_minimum_payment(Decimal('1000'), Decimal('0.05'), Decimal('300')) == Decimal('300')
        assert calculate_minimum_payment(Decimal('200'), Decimal('0.05'), Decimal('300')) == Decimal('200')
        assert calculate_minimum_payment(Decimal('0'), Decimal('0.05'), Decimal('300')) == Decimal('0')


class TestCreditCardManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.clock = FixedClock(date(2024, 1, 25))
        self.cards = CreditCardManager(self.storage, self.audit, self.clock)

        self.card = self.cards.create_card(
            "ws-1", "Everyday", Money(Decimal('50000')), statement_cut_day=25,
            payment_due_days=20, interest_rate=Decimal('0.02'), last_four="4242"
        )

    def test_create_card_defaults(self):
        card = self.cards.get_card(self.card.id)
        assert card.current_balance.is_zero()
        assert card.min_payment_percent == Decimal('0.05')
        assert card.available_credit == Money(Decimal('50000'))
        assert card.last_four == "4242"

    @pytest.mark.parametrize("kwargs", [
        {"statement_cut_day": 0},
        {"statement_cut_day": 32},
        {"payment_due_days": 61},
        {"interest_rate": Decimal('1.5')},
        {"last_four": "42a2"},
    ])
    def test_create_card_validation(self, kwargs):
        params = {"statement_cut_day": 25, "payment_due_days": 20, "interest_rate": Decimal('0.02')}
        params.update(kwargs)
        with pytest.raises(LedgerValidationError):
            self.cards.create_card("ws-1", "Bad", Money(Decimal('1000')), **params)

    def test_charge_within_limit(self):
        result = self.cards.add_transaction(self.card.id, Money(Decimal('10000')), "laptop")
        assert result["new_balance"] == Money(Decimal('10000'))
        assert result["available_credit"] == Money(Decimal('40000'))

    def test_charge_over_limit_rejected(self):
        self.cards.add_transaction(self.card.id, Money(Decimal('49000')))
        with pytest.raises(CreditLimitExceededError):
            self.cards.add_transaction(self.card.id, Money(Decimal('1000.01')))
        assert self.cards.get_card(self.card.id).current_balance == Money(Decimal('49000'))

    def test_first_statement(self):
        self.cards.add_transaction(self.card.id, Money(Decimal('10000')))
        statement = self.cards.generate_statement(self.card.id)

        assert statement.statement_date == date(2024, 1, 25)
        assert statement.due_date == date(2024, 2, 14)
        assert statement.opening_balance.is_zero()
        assert statement.closing_balance == Money(Decimal('10000'))
        assert statement.interest_charged.is_zero()
        assert statement.minimum_payment == Money(Decimal('500'))
        assert not statement.is_paid

    def test_empty_statement_is_paid(self):
        statement = self.cards.generate_statement(self.card.id)
        assert statement.is_paid
        assert statement.minimum_payment.is_zero()

    def test_statements_chain_and_carry_interest(self):
        self.cards.add_transaction(self.card.id, Money(Decimal('10000')))
        january = self.cards.generate_statement(self.card.id)
        self.cards.pay_statement(january.id, Money(Decimal('4000')), date(2024, 2, 10))

        february = self.cards.generate_statement(self.card.id, date(2024, 2, 25))

        # 6000 unpaid, 2% a month over 29 days, 11 days from due to cut
        assert february.opening_balance == january.closing_balance
        assert february.interest_charged == Money(Decimal('45.52'))
        assert february.closing_balance == Money(Decimal('6045.52'))
        assert february.minimum_payment == Money(Decimal('302.28'))
        assert self.cards.get_card(self.card.id).current_balance == Money(Decimal('6045.52'))

    def test_paid_statement_carries_no_interest(self):
        self.cards.add_transaction(self.card.id, Money(Decimal('1000')))
        january = self.cards.generate_statement(self.card.id)
        self.cards.pay_statement(january.id, Money(Decimal('1000')))

        february = self.cards.generate_statement(self.card.id, date(2024, 2, 25))
        assert february.interest_charged.is_zero()
        assert february.closing_balance.is_zero()

    def test_duplicate_cut_date_refused(self):
        self.cards.generate_statement(self.card.id)
        with pytest.raises(InvalidStateError):
            self.cards.generate_statement(self.card.id, date(2024, 1, 10))

    def test_pay_statement_marks_paid(self):
        self.cards.add_transaction(self.card.id, Money(Decimal('1500')))
        statement = self.cards.generate_statement(self.card.id)

        self.cards.pay_statement(statement.id, Money(Decimal('500')))
        assert not self.cards.get_statement(statement.id).is_paid

        self.cards.pay_statement(statement.id, Money(Decimal('1000')), note="rest")
        loaded = self.cards.get_statement(statement.id)
        assert loaded.is_paid
        assert loaded.total_paid == Money(Decimal('1500'))
        assert len(self.cards.get_statement_payments(statement.id)) == 2
        assert self.cards.get_card(self.card.id).current_balance.is_zero()

    def test_pay_missing_statement(self):
        with pytest.raises(NotFoundError):
            self.cards.pay_statement("missing", Money(Decimal('1')))

    def test_card_summary(self):
        self.cards.add_transaction(self.card.id, Money(Decimal('2000')))
        january = self.cards.generate_statement(self.card.id)
        self.cards.pay_statement(january.id, Money(Decimal('500')))

        summary = self.cards.get_card_summary(self.card.id)
        assert summary["card"].id == self.card.id
        assert [s.id for s in summary["unpaid_statements"]] == [january.id]
        assert summary["total_unpaid"] == Money(Decimal('1500'))
        assert summary["available_credit"] == Money(Decimal('48500'))

    def test_statements_newest_first_with_limit(self):
        first = self.cards.generate_statement(self.card.id)
        second = self.cards.generate_statement(self.card.id, date(2024, 2, 25))
        assert [s.id for s in self.cards.get_statements(self.card.id)] == [second.id, first.id]
        assert [s.id for s in self.cards.get_statements(self.card.id, limit=1)] == [second.id]
