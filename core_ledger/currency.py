"""
Money Module

Handles ISO 4217 currency codes and Decimal precision for ledger amounts.
NEVER uses float for monetary values inside the ledger; float only appears when
an amount leaves through the JSON boundary via to_number().
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Union

# Set global decimal context for financial precision
getcontext().prec = 28

# Largest amount a single request may move
MAX_AMOUNT = Decimal('1000000000000000')


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    NGN = ("NGN", 2)  # Nigerian Naira
    USD = ("USD", 2)  # US Dollar
    EUR = ("EUR", 2)  # Euro
    GBP = ("GBP", 2)  # British Pound
    CAD = ("CAD", 2)  # Canadian Dollar
    JPY = ("JPY", 0)  # Japanese Yen

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by its ISO code (case-insensitive)"""
        try:
            return cls[code.upper()]
        except KeyError:
            raise ValueError(f"Unsupported currency: {code}")


# Finest precision any supported currency uses
MAX_PRECISION = max(currency.precision for currency in Currency)


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', to_decimal(self.amount))

        # Round to currency precision
        rounded = quantize(self.amount, self.currency)
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency.code))

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount >= other.amount

    def _check_currency(self, other: 'Money') -> None:
        if self.currency != other.currency:
            raise ValueError(f"Currency mismatch: {self.currency.code} and {other.currency.code}")

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        """Check if amount is negative"""
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        if self.currency.precision == 0:
            return f"{self.currency.code} {self.amount:,.0f}"
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


def to_decimal(value: Union[Decimal, int, float, str]) -> Decimal:
    """
    Convert a persisted or inbound value to Decimal without going through
    binary float arithmetic

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            # str() keeps the shortest repr of a float, e.g. 100.5 -> "100.5"
            result = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Cannot convert '{value}' to Decimal")

    if not result.is_finite():
        raise ValueError(f"Amount must be finite, got {value}")
    return result


def quantize(value: Decimal, currency: Currency) -> Decimal:
    """
    Round a Decimal to the currency precision

    Raises:
        ValueError: If the value has too many digits for the decimal context
    """
    try:
        return value.quantize(
            Decimal('0.1') ** currency.precision,
            rounding=ROUND_HALF_UP
        )
    except InvalidOperation:
        raise ValueError(f"Amount {value} exceeds the supported precision")


def fits_precision(value: Decimal, precision: int) -> bool:
    """True when the value needs no more than ``precision`` decimal places"""
    return value.normalize().as_tuple().exponent >= -precision



def to_number(value: Union[Decimal, Money]) -> Union[int, float]:
    """
    Convert a ledger amount to the plain JSON number used at the API boundary.

    Integral values become int, everything else float. For amounts in normal
    currency ranges (well under 15 significant digits) the float round-trips
    to the same decimal string.
    """
    if isinstance(value, Money):
        value = value.amount
    if value == value.to_integral_value():
        return int(value)
    return float(value)
