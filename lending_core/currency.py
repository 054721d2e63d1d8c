"""
Currency Module

Handles ISO 4217 currency codes and money amounts held as integer minor units
(cents, sen, satang...). NEVER uses float for monetary values.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Union
import re

from .exceptions import ValidationError, CurrencyMismatchError


CURRENCY_CODE_PATTERN = re.compile(r"^[A-Z]{3}$")


class Currency(Enum):
    """ISO 4217 Currency Codes with minor unit exponent"""
    USD = ("USD", 2)  # US Dollar, cents
    EUR = ("EUR", 2)  # Euro, cents
    GBP = ("GBP", 2)  # British Pound, pence
    JPY = ("JPY", 0)  # Japanese Yen, no minor unit
    SGD = ("SGD", 2)  # Singapore Dollar, cents
    IDR = ("IDR", 2)  # Indonesian Rupiah, sen
    THB = ("THB", 2)  # Thai Baht, satang
    VND = ("VND", 0)  # Vietnamese Dong, no minor unit in circulation

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @classmethod
    def from_code(cls, code: Union[str, "Currency"]) -> "Currency":
        """
        Resolve a currency from its ISO 4217 code

        Raises:
            ValidationError: If the code is malformed or not supported
        """
        if isinstance(code, Currency):
            return code
        if not isinstance(code, str) or not CURRENCY_CODE_PATTERN.match(code):
            raise ValidationError(f"Invalid currency code: {code!r}")
        try:
            return cls[code]
        except KeyError:
            raise ValidationError(f"Unsupported currency code: {code}")


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation: an integer count of minor units plus currency.
    """
    amount: int
    currency: Currency

    def __post_init__(self):
        # bool is an int subclass but never a valid amount
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValidationError(
                f"Money amount must be an integer number of minor units, got {self.amount!r}"
            )
        if not isinstance(self.currency, Currency):
            raise ValidationError(f"Money currency must be a Currency, got {self.currency!r}")

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(0, currency)

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(
                f"Cannot {verb} {self.currency.code} and {other.currency.code}"
            )

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == 0

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > 0

    def to_decimal(self) -> Decimal:
        """Major-unit value, e.g. 1050 USD cents -> Decimal('10.50')"""
        return Decimal(self.amount).scaleb(-self.currency.precision)

    def to_string(self) -> str:
        """Format for display"""
        if self.currency.precision == 0:
            return f"{self.currency.code} {self.amount:,}"
        return f"{self.currency.code} {self.to_decimal():,.{self.currency.precision}f}"


def money_sum(amounts, currency: Currency) -> Money:
    """Sum Money values of one currency; an empty iterable sums to zero"""
    total = Money.zero(currency)
    for amount in amounts:
        total = total + amount
    return total
