"""
Credit Card Module

Revolving card accounts, monthly statements and statement payments.

A statement closes on the card's cut day (clamped to the month's length).
An unpaid balance carried from the previous statement is charged interest
prorated daily from that statement's due date to the new cut date; the
interest is posted to the card so it compounds into later statements.
"""

from decimal import Decimal
from datetime import datetime, timezone, timedelta, date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging
import uuid

from .currency import Money, Currency, to_decimal
from .storage import StorageInterface, StorageRecord, parse_date
from .audit import AuditTrail, AuditEventType
from .clock import Clock, get_clock, days_in_month, days_between, clamp_day
from .config import get_config
from .exceptions import (
    NotFoundError, LedgerValidationError, CreditLimitExceededError, InvalidStateError
)
from .logging_config import log_action


logger = logging.getLogger("debt_ledger.credit_cards")


@dataclass
class CreditCard(StorageRecord):
    """Credit card account"""
    workspace_id: str
    name: str
    credit_limit: Money
    current_balance: Money
    statement_cut_day: int
    payment_due_days: int
    interest_rate: Decimal                  # monthly fraction
    min_payment_percent: Decimal = Decimal('0.05')
    min_payment_fixed: Optional[Money] = None
    last_four: Optional[str] = None

    def __post_init__(self):
        self.interest_rate = to_decimal(self.interest_rate)
        self.min_payment_percent = to_decimal(self.min_payment_percent)

    @property
    def available_credit(self) -> Money:
        return self.credit_limit - self.current_balance


@dataclass
class CreditCardStatement(StorageRecord):
    """Statement closed on a cut date"""
    credit_card_id: str
    statement_date: date
    due_date: date
    opening_balance: Money
    closing_balance: Money
    minimum_payment: Money
    interest_charged: Money
    total_paid: Money
    is_paid: bool = False

    @property
    def unpaid(self) -> Money:
        return (self.closing_balance - self.total_paid).clamp_zero()


@dataclass
class CreditCardPayment(StorageRecord):
    """Payment attributed to a statement"""
    statement_id: str
    credit_card_id: str
    amount: Money
    payment_date: date
    note: Optional[str] = None


def statement_cut_date(cut_day: int, year: int, month: int) -> date:
    """Cut date in a month, clamped to the month's last day"""
    return clamp_day(year, month, cut_day)


def calculate_credit_card_interest(
    unpaid_amount: Decimal,
    monthly_rate: Decimal,
    from_date: date,
    to_date: date
) -> Decimal:
    """Carry interest prorated by the days of from_date's month"""
    days = days_between(from_date, to_date)
    daily_rate = monthly_rate / Decimal(days_in_month(from_date.year, from_date.month))
    return unpaid_amount * daily_rate * days


def calculate_minimum_payment(
    balance: Decimal,
    percent_rate: Decimal,
    fixed_amount: Optional[Decimal] = None
) -> Decimal:
    """Larger of the percentage and the fixed minimum, never above the balance"""
    if balance <= 0:
        return Decimal('0')
    minimum = balance * percent_rate
    if fixed_amount is not None and fixed_amount > minimum:
        minimum = fixed_amount
    return min(minimum, balance)


class CreditCardManager:
    """
    Manages credit cards, statements and statement payments
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail, clock: Optional[Clock] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.clock = clock or get_clock()

        self.cards_table = "credit_cards"
        self.statements_table = "credit_card_statements"
        self.payments_table = "credit_card_payments"

    def create_card(
        self,
        workspace_id: str,
        name: str,
        credit_limit: Money,
        statement_cut_day: int,
        payment_due_days: int,
        interest_rate: Decimal,
        min_payment_percent: Optional[Decimal] = None,
        min_payment_fixed: Optional[Money] = None,
        last_four: Optional[str] = None,
        current_balance: Optional[Money] = None
    ) -> CreditCard:
        """
        Create a credit card

        Args:
            workspace_id: Owning workspace
            name: Display name
            credit_limit: Maximum balance
            statement_cut_day: Day of month statements close (1-31)
            payment_due_days: Days from cut date to due date (1-60)
            interest_rate: Monthly interest rate as a fraction
            min_payment_percent: Minimum payment share of the closing balance
            min_payment_fixed: Minimum payment floor
        """
        if not credit_limit.is_positive():
            raise LedgerValidationError("Credit limit must be positive")
        if not 1 <= statement_cut_day <= 31:
            raise LedgerValidationError("Statement cut day must be between 1 and 31")
        if not 1 <= payment_due_days <= 60:
            raise LedgerValidationError("Payment due days must be between 1 and 60")
        interest_rate = to_decimal(interest_rate)
        if not Decimal('0') <= interest_rate <= Decimal('1'):
            raise LedgerValidationError("Interest rate must be between 0 and 1")
        if min_payment_percent is None:
            min_payment_percent = to_decimal(get_config().default_min_payment_percent)
        if last_four is not None and not (len(last_four) == 4 and last_four.isdigit()):
            raise LedgerValidationError("Last four must be four digits")

        current_balance = current_balance or Money.zero(credit_limit.currency)
        if current_balance > credit_limit:
            raise CreditLimitExceededError("Opening balance exceeds the credit limit")

        now = datetime.now(timezone.utc)
        card = CreditCard(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            workspace_id=workspace_id,
            name=name,
            credit_limit=credit_limit,
            current_balance=current_balance,
            statement_cut_day=statement_cut_day,
            payment_due_days=payment_due_days,
            interest_rate=interest_rate,
            min_payment_percent=min_payment_percent,
            min_payment_fixed=min_payment_fixed,
            last_four=last_four
        )

        with self.storage.atomic():
            self._save_card(card)
            self.audit_trail.log_event(
                event_type=AuditEventType.CREDIT_CARD_CREATED,
                entity_type="credit_card",
                entity_id=card.id,
                workspace_id=workspace_id,
                metadata={
                    "name": name,
                    "credit_limit": credit_limit.to_string(),
                    "statement_cut_day": statement_cut_day,
                    "payment_due_days": payment_due_days,
                    "interest_rate": interest_rate
                }
            )
        log_action(logger, "info", "Credit card created", action="create_card",
                   resource=card.id, workspace_id=workspace_id)
        return card

    def get_card(self, card_id: str) -> CreditCard:
        data = self.storage.load(self.cards_table, card_id)
        if not data:
            raise NotFoundError("Credit card", card_id)
        return self._card_from_dict(data)

    def get_workspace_cards(self, workspace_id: str) -> List[CreditCard]:
        rows = self.storage.find(self.cards_table, {"workspace_id": workspace_id})
        cards = [self._card_from_dict(row) for row in rows]
        cards.sort(key=lambda c: c.created_at)
        return cards

    def add_transaction(self, card_id: str, amount: Money, description: Optional[str] = None) -> Dict[str, Money]:
        """
        Charge a purchase to the card

        Raises:
            CreditLimitExceededError: If the new balance would exceed the limit
        """
        if not amount.is_positive():
            raise LedgerValidationError("Transaction amount must be positive")

        with self.storage.atomic():
            card = self.get_card(card_id)
            new_balance = card.current_balance + amount
            if new_balance > card.credit_limit:
                raise CreditLimitExceededError(
                    f"Transaction of {amount.to_string()} exceeds the credit limit "
                    f"(available {card.available_credit.to_string()})"
                )

            card.current_balance = new_balance
            card.updated_at = datetime.now(timezone.utc)
            self._save_card(card)
            self.audit_trail.log_event(
                event_type=AuditEventType.CREDIT_CARD_CHARGED,
                entity_type="credit_card",
                entity_id=card_id,
                workspace_id=card.workspace_id,
                metadata={"amount": amount.to_string(), "description": description,
                          "new_balance": new_balance.to_string()}
            )

        return {"new_balance": new_balance, "available_credit": card.available_credit}

    def generate_statement(self, card_id: str, statement_date: Optional[date] = None) -> CreditCardStatement:
        """
        Close a statement for the month of statement_date (today by default)

        The card is read and written inside one atomic block, so two
        generations for the same card cannot both charge the same carry
        window. A second statement for the same cut date is refused.
        """
        statement_date = statement_date or self.clock.today()

        with self.storage.atomic():
            card = self.get_card(card_id)
            currency = card.credit_limit.currency
            cut_date = statement_cut_date(card.statement_cut_day, statement_date.year, statement_date.month)
            due_date = cut_date + timedelta(days=card.payment_due_days)

            previous = self.get_latest_statement(card_id)
            if previous is not None and cut_date <= previous.statement_date:
                raise InvalidStateError(
                    f"A statement for {previous.statement_date.isoformat()} already exists; "
                    f"cut date {cut_date.isoformat()} is not later"
                )

            opening_balance = previous.closing_balance if previous else Money.zero(currency)

            interest = Decimal('0')
            if previous is not None and not previous.is_paid:
                unpaid = previous.closing_balance - previous.total_paid
                if unpaid.is_positive():
                    interest = calculate_credit_card_interest(
                        unpaid.amount, card.interest_rate, previous.due_date, cut_date
                    )
            interest_charged = Money(interest, currency)

            closing_balance = card.current_balance + interest_charged
            fixed = card.min_payment_fixed.amount if card.min_payment_fixed else None
            minimum_payment = Money(
                calculate_minimum_payment(closing_balance.amount, card.min_payment_percent, fixed),
                currency
            )

            now = datetime.now(timezone.utc)
            statement = CreditCardStatement(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                credit_card_id=card_id,
                statement_date=cut_date,
                due_date=due_date,
                opening_balance=opening_balance,
                closing_balance=closing_balance,
                minimum_payment=minimum_payment,
                interest_charged=interest_charged,
                total_paid=Money.zero(currency),
                is_paid=not closing_balance.is_positive()
            )
            self._save_statement(statement, currency)

            if interest_charged.is_positive():
                card.current_balance = closing_balance
                card.updated_at = now
                self._save_card(card)

            self.audit_trail.log_event(
                event_type=AuditEventType.CREDIT_STATEMENT_GENERATED,
                entity_type="credit_card",
                entity_id=card_id,
                workspace_id=card.workspace_id,
                metadata={
                    "statement_id": statement.id,
                    "statement_date": cut_date,
                    "opening_balance": opening_balance.to_string(),
                    "closing_balance": closing_balance.to_string(),
                    "interest_charged": interest_charged.to_string(),
                    "minimum_payment": minimum_payment.to_string()
                }
            )

        log_action(logger, "info", "Credit card statement generated", action="generate_statement",
                   resource=statement.id, workspace_id=card.workspace_id,
                   extra={"closing_balance": str(closing_balance.amount)})
        return statement

    def pay_statement(
        self,
        statement_id: str,
        amount: Money,
        payment_date: Optional[date] = None,
        note: Optional[str] = None
    ) -> CreditCardPayment:
        """
        Pay toward a statement

        The statement is marked paid once its total paid reaches the closing
        balance; the card balance drops by the full amount.
        """
        if not amount.is_positive():
            raise LedgerValidationError("Payment amount must be positive")

        with self.storage.atomic():
            statement = self.get_statement(statement_id)
            card = self.get_card(statement.credit_card_id)

            now = datetime.now(timezone.utc)
            payment = CreditCardPayment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                statement_id=statement_id,
                credit_card_id=card.id,
                amount=amount,
                payment_date=payment_date or self.clock.today(),
                note=note
            )
            self.storage.save(self.payments_table, payment.id,
                              self._with_currency(payment.to_dict(), amount.currency))

            statement.total_paid = statement.total_paid + amount
            statement.is_paid = statement.total_paid >= statement.closing_balance
            statement.updated_at = now
            self._save_statement(statement, amount.currency)

            card.current_balance = card.current_balance - amount
            card.updated_at = now
            self._save_card(card)

            self.audit_trail.log_event(
                event_type=AuditEventType.CREDIT_PAYMENT_MADE,
                entity_type="credit_card",
                entity_id=card.id,
                workspace_id=card.workspace_id,
                metadata={
                    "statement_id": statement_id,
                    "amount": amount.to_string(),
                    "total_paid": statement.total_paid.to_string(),
                    "is_paid": statement.is_paid
                }
            )

        log_action(logger, "info", "Credit card statement paid", action="pay_statement",
                   resource=statement_id, workspace_id=card.workspace_id,
                   extra={"amount": str(amount.amount)})
        return payment

    def get_statement(self, statement_id: str) -> CreditCardStatement:
        data = self.storage.load(self.statements_table, statement_id)
        if not data:
            raise NotFoundError("Credit card statement", statement_id)
        return self._statement_from_dict(data)

    def get_statements(self, card_id: str, limit: Optional[int] = None) -> List[CreditCardStatement]:
        """Statements of a card, newest first"""
        rows = self.storage.find(self.statements_table, {"credit_card_id": card_id})
        statements = [self._statement_from_dict(row) for row in rows]
        statements.sort(key=lambda s: s.statement_date, reverse=True)
        if limit:
            statements = statements[:limit]
        return statements

    def get_latest_statement(self, card_id: str) -> Optional[CreditCardStatement]:
        statements = self.get_statements(card_id, limit=1)
        return statements[0] if statements else None

    def get_statement_payments(self, statement_id: str) -> List[CreditCardPayment]:
        rows = self.storage.find(self.payments_table, {"statement_id": statement_id})
        payments = [self._payment_from_dict(row) for row in rows]
        payments.sort(key=lambda p: (p.payment_date, p.created_at))
        return payments

    def get_card_summary(self, card_id: str) -> Dict[str, Any]:
        """Card with its last 12 statements, unpaid total and available credit"""
        card = self.get_card(card_id)
        statements = self.get_statements(card_id, limit=12)
        unpaid_statements = [s for s in statements if not s.is_paid]

        total_unpaid = Money.zero(card.credit_limit.currency)
        for statement in unpaid_statements:
            total_unpaid = total_unpaid + (statement.closing_balance - statement.total_paid)

        return {
            "card": card,
            "statements": statements,
            "unpaid_statements": unpaid_statements,
            "total_unpaid": total_unpaid,
            "available_credit": card.available_credit,
        }

    def _with_currency(self, data: Dict, currency: Currency) -> Dict:
        data['currency'] = currency.code
        return data

    def _save_card(self, card: CreditCard) -> None:
        self.storage.save(self.cards_table, card.id,
                          self._with_currency(card.to_dict(), card.credit_limit.currency))

    def _save_statement(self, statement: CreditCardStatement, currency: Currency) -> None:
        self.storage.save(self.statements_table, statement.id,
                          self._with_currency(statement.to_dict(), currency))

    def _card_from_dict(self, data: Dict) -> CreditCard:
        currency = Currency[data.get('currency', 'THB')]
        min_fixed = data.get('min_payment_fixed')
        return CreditCard(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            workspace_id=data['workspace_id'],
            name=data['name'],
            credit_limit=Money(Decimal(data['credit_limit']), currency),
            current_balance=Money(Decimal(data['current_balance']), currency),
            statement_cut_day=data['statement_cut_day'],
            payment_due_days=data['payment_due_days'],
            interest_rate=Decimal(data['interest_rate']),
            min_payment_percent=Decimal(data['min_payment_percent']),
            min_payment_fixed=Money(Decimal(min_fixed), currency) if min_fixed is not None else None,
            last_four=data.get('last_four')
        )

    def _statement_from_dict(self, data: Dict) -> CreditCardStatement:
        currency = Currency[data.get('currency', 'THB')]

        def get_money(field_name: str) -> Money:
            return Money(Decimal(data[field_name]), currency)

        return CreditCardStatement(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            credit_card_id=data['credit_card_id'],
            statement_date=parse_date(data['statement_date']),
            due_date=parse_date(data['due_date']),
            opening_balance=get_money('opening_balance'),
            closing_balance=get_money('closing_balance'),
            minimum_payment=get_money('minimum_payment'),
            interest_charged=get_money('interest_charged'),
            total_paid=get_money('total_paid'),
            is_paid=bool(data.get('is_paid'))
        )

    def _payment_from_dict(self, data: Dict) -> CreditCardPayment:
        currency = Currency[data.get('currency', 'THB')]
        return CreditCardPayment(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            statement_id=data['statement_id'],
            credit_card_id=data['credit_card_id'],
            amount=Money(Decimal(data['amount']), currency),
            payment_date=parse_date(data['payment_date']),
            note=data.get('note')
        )
