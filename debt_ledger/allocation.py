"""
Payment Allocation Module

Splits a payment amount across open loans into principal and interest parts.
Each allocation method is a strategy object looked up through a registry, so
new methods plug in without changing the dispatcher.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from datetime import datetime, date
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union
from enum import Enum

from .currency import Money, Currency
from .storage import StorageRecord, parse_date
from .exceptions import AllocationExceedsPaymentError, LedgerValidationError


class AllocationMethod(Enum):
    """Supported automatic allocation methods"""
    INTEREST_FIRST = "INTEREST_FIRST"
    PRINCIPAL_FIRST = "PRINCIPAL_FIRST"
    FIFO = "FIFO"


@dataclass
class AllocationItem:
    """Portion of a payment attributed to one loan"""
    loan_id: str
    principal_paid: Money
    interest_paid: Money

    @property
    def total(self) -> Money:
        return self.principal_paid + self.interest_paid

    def to_dict(self) -> Dict[str, str]:
        return {
            "loan_id": self.loan_id,
            "principal_paid": str(self.principal_paid.amount),
            "interest_paid": str(self.interest_paid.amount),
        }


class AllocationStrategy(ABC):
    """Orders candidate loans and splits what is left of a payment per loan"""

    def order(self, loans: List) -> List:
        """Loans in the order they receive money; caller order by default"""
        return list(loans)

    @abstractmethod
    def split(self, loan, remaining: Money) -> Tuple[Money, Money]:
        """Return (principal_paid, interest_paid) for one loan"""
        pass


def _interest_then_principal(loan, remaining: Money) -> Tuple[Money, Money]:
    interest_paid = min(loan.accrued_interest.clamp_zero(), remaining)
    remaining = remaining - interest_paid
    principal_paid = min(loan.remaining_principal.clamp_zero(), remaining)
    return principal_paid, interest_paid


class InterestFirstStrategy(AllocationStrategy):
    """Accrued interest is settled before principal"""

    def split(self, loan, remaining: Money) -> Tuple[Money, Money]:
        return _interest_then_principal(loan, remaining)


class PrincipalFirstStrategy(AllocationStrategy):
    """Principal is reduced before accrued interest"""

    def split(self, loan, remaining: Money) -> Tuple[Money, Money]:
        principal_paid = min(loan.remaining_principal.clamp_zero(), remaining)
        remaining = remaining - principal_paid
        interest_paid = min(loan.accrued_interest.clamp_zero(), remaining)
        return principal_paid, interest_paid


class FifoStrategy(AllocationStrategy):
    """Oldest loan first; interest before principal within each loan"""

    def order(self, loans: List) -> List:
        # sorted() is stable, so loans starting the same day keep caller order
        return sorted(loans, key=lambda loan: loan.start_date)

    def split(self, loan, remaining: Money) -> Tuple[Money, Money]:
        return _interest_then_principal(loan, remaining)


_STRATEGIES: Dict[AllocationMethod, AllocationStrategy] = {}


def register_strategy(method: AllocationMethod, strategy: AllocationStrategy) -> None:
    """Register (or replace) the strategy used for a method"""
    _STRATEGIES[method] = strategy


def get_strategy(method: Union[AllocationMethod, str]) -> AllocationStrategy:
    if not isinstance(method, AllocationMethod):
        try:
            method = AllocationMethod(method)
        except ValueError:
            raise LedgerValidationError(f"Unknown allocation method: {method}")
    try:
        return _STRATEGIES[method]
    except KeyError:
        raise LedgerValidationError(f"No strategy registered for {method.value}")


register_strategy(AllocationMethod.INTEREST_FIRST, InterestFirstStrategy())
register_strategy(AllocationMethod.PRINCIPAL_FIRST, PrincipalFirstStrategy())
register_strategy(AllocationMethod.FIFO, FifoStrategy())


def auto_allocate(
    open_loans: Iterable,
    amount: Money,
    method: Union[AllocationMethod, str] = AllocationMethod.INTEREST_FIRST
) -> List[AllocationItem]:
    """
    Distribute a payment across open loans.

    Args:
        open_loans: Loans with ``id``, ``start_date``, ``remaining_principal``
            and ``accrued_interest`` (Money)
        amount: Payment amount
        method: Allocation method

    Returns:
        One AllocationItem per loan that received money; loans that would
        receive nothing are left out.
    """
    strategy = get_strategy(method)
    remaining = amount
    items: List[AllocationItem] = []

    for loan in strategy.order(list(open_loans)):
        if not remaining.is_positive():
            break

        principal_paid, interest_paid = strategy.split(loan, remaining)
        if principal_paid.is_zero() and interest_paid.is_zero():
            continue

        items.append(AllocationItem(loan.id, principal_paid, interest_paid))
        remaining = remaining - principal_paid - interest_paid

    return items


def total_allocated(items: Iterable[AllocationItem], currency: Currency = Currency.THB) -> Money:
    total = Money.zero(currency)
    for item in items:
        total = total + item.total
    return total


def validate_manual_allocations(items: List[AllocationItem], amount: Money) -> None:
    """
    Check caller-supplied allocations against the payment amount

    Raises:
        LedgerValidationError: If any part is negative
        AllocationExceedsPaymentError: If the total is more than the payment
    """
    for item in items:
        if item.principal_paid.is_negative() or item.interest_paid.is_negative():
            raise LedgerValidationError(f"Allocation for loan {item.loan_id} has a negative amount")

    total = total_allocated(items, amount.currency)
    if total > amount:
        raise AllocationExceedsPaymentError(
            f"Allocations total {total.to_string()} exceeds payment amount {amount.to_string()}"
        )


def allocation_item(loan_id: str, principal_paid: Union[Decimal, str, int],
                    interest_paid: Union[Decimal, str, int] = 0,
                    currency: Optional[Currency] = None) -> AllocationItem:
    """Build an AllocationItem from plain numbers"""
    currency = currency or Currency.THB
    return AllocationItem(loan_id, Money(principal_paid, currency), Money(interest_paid, currency))


@dataclass
class PaymentAllocation(StorageRecord):
    """Persisted allocation of a payment to one loan"""
    workspace_id: str
    payment_id: str
    loan_id: str
    principal_paid: Money
    interest_paid: Money
    payment_date: date

    @property
    def total(self) -> Money:
        return self.principal_paid + self.interest_paid

    def to_dict(self) -> Dict:
        result = super().to_dict()
        result['currency'] = self.principal_paid.currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> 'PaymentAllocation':
        currency = Currency[data.get('currency', 'THB')]
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            workspace_id=data['workspace_id'],
            payment_id=data['payment_id'],
            loan_id=data['loan_id'],
            principal_paid=Money(Decimal(data['principal_paid']), currency),
            interest_paid=Money(Decimal(data['interest_paid']), currency),
            payment_date=parse_date(data['payment_date'])
        )
