"""
Money Module

Currencies the ledger books in and an immutable Money value. Amounts are
Decimal, rounded half-up to the currency's minor unit on construction;
floats are only accepted through their string form. Rates are never Money.
"""

from decimal import Decimal, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from enum import Enum
from functools import total_ordering
from typing import Union

getcontext().prec = 28

Numeric = Union[Decimal, int, str, float]


class Currency(Enum):
    """Booking currencies as (ISO code, minor-unit digits)"""
    THB = ("THB", 2)
    USD = ("USD", 2)
    EUR = ("EUR", 2)
    JPY = ("JPY", 0)

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def minor_unit(self) -> Decimal:
        return Decimal(1).scaleb(-self.precision)


def to_decimal(value: Numeric) -> Decimal:
    """Convert a number to Decimal through its string form"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_to_currency(value: Numeric, currency: Currency = Currency.THB) -> Decimal:
    """Round half-up to the currency's minor unit"""
    return to_decimal(value).quantize(currency.minor_unit, rounding=ROUND_HALF_UP)


@total_ordering
@dataclass(frozen=True, eq=False)
class Money:
    """
    An amount in one currency

    Arithmetic and ordering refuse to mix currencies. Comparing Money with
    anything that is not Money is simply unequal.
    """
    amount: Decimal
    currency: Currency = Currency.THB

    def __post_init__(self):
        object.__setattr__(self, 'amount', round_to_currency(self.amount, self.currency))

    @classmethod
    def zero(cls, currency: Currency = Currency.THB) -> 'Money':
        return cls(Decimal('0'), currency)

    def _same_currency(self, other: 'Money', operation: str) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {operation} {self.currency.code} and {other.currency.code}"
            )

    def __add__(self, other: 'Money') -> 'Money':
        self._same_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._same_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount), self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return (self.amount, self.currency) == (other.amount, other.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._same_currency(other, "compare")
        return self.amount < other.amount

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def is_zero(self) -> bool:
        return not self.amount

    def is_positive(self) -> bool:
        return self.amount > 0

    def is_negative(self) -> bool:
        return self.amount < 0

    def clamp_zero(self) -> 'Money':
        """Negative amounts become zero"""
        return self if self.amount >= 0 else Money.zero(self.currency)

    def to_string(self) -> str:
        """Display form, e.g. 'THB 1,234.50'"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"
