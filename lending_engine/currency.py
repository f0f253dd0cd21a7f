"""
Currency and Decimal Helpers Module

Handles display currencies and the Decimal arithmetic shared by every
calculation in the engine. NEVER uses float for monetary values: floats
passed in are converted through their string form.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from enum import Enum
from typing import Union
import re

from .config import get_config
from .errors import InvalidInput

# Set global decimal context for financial precision
getcontext().prec = 28

ZERO = Decimal('0')
CENT = Decimal('0.01')

# Two amounts closer than this are the same amount
MONEY_TOLERANCE = Decimal('0.01')

Numeric = Union[Decimal, int, float, str]


class Currency(Enum):
    """Display currencies with symbol and precision"""
    USD = ("USD", "$", 2)     # US Dollar
    NGN = ("NGN", "₦", 2)     # Nigerian Naira
    EUR = ("EUR", "€", 2)     # Euro
    GBP = ("GBP", "£", 2)     # British Pound

    def __init__(self, code: str, symbol: str, precision: int):
        self.code = code
        self.symbol = symbol
        self.precision = precision


CurrencyLike = Union[Currency, str, None]


def parse_currency(currency: CurrencyLike = None) -> Currency:
    """
    Resolve a currency or ISO code; None means the configured default

    Raises:
        InvalidInput: If the code is not a supported currency
    """
    if isinstance(currency, Currency):
        return currency
    if currency is None:
        currency = get_config().default_currency
    try:
        return Currency[currency.upper()]
    except KeyError:
        raise InvalidInput(f"Unsupported currency: {currency!r}")


def to_decimal(value: Numeric, field: str = "amount") -> Decimal:
    """
    Convert a numeric value to Decimal

    Args:
        value: Decimal, int, float or numeric string
        field: Name used in the error message

    Returns:
        Decimal value

    Raises:
        InvalidInput: If the value is not a finite number
    """
    if isinstance(value, bool) or value is None:
        raise InvalidInput(f"{field} must be a number, got {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise InvalidInput(f"{field} must be a number, got {value!r}")
    if not result.is_finite():
        raise InvalidInput(f"{field} must be finite, got {value!r}")
    return result


def non_negative(value: Numeric, field: str) -> Decimal:
    """Convert to Decimal and reject negative values"""
    result = to_decimal(value, field)
    if result < ZERO:
        raise InvalidInput(f"{field} cannot be negative: {result}")
    return result


def round_money(value: Decimal, currency: Currency = Currency.USD) -> Decimal:
    """Round to the currency's minor unit"""
    return value.quantize(
        Decimal('0.1') ** currency.precision,
        rounding=ROUND_HALF_UP
    )


def amounts_match(a: Decimal, b: Decimal, tolerance: Decimal = MONEY_TOLERANCE) -> bool:
    """True when two amounts differ by less than the tolerance"""
    return abs(a - b) < tolerance


def format_currency(amount: Numeric, currency: CurrencyLike = None) -> str:
    """Format for display, e.g. ``$1,234.50`` or ``-₦20.00``"""
    currency = parse_currency(currency)
    value = round_money(to_decimal(amount), currency)
    sign = "-" if value < ZERO else ""
    return f"{sign}{currency.symbol}{abs(value):,.{currency.precision}f}"


def format_compact(amount: Numeric, currency: CurrencyLike = None) -> str:
    """Compact display form, e.g. ``$1.5M``"""
    currency = parse_currency(currency)
    value = to_decimal(amount)
    sign = "-" if value < ZERO else ""
    value = abs(value)
    for threshold, suffix in ((Decimal('1e12'), "T"), (Decimal('1e9'), "B"),
                              (Decimal('1e6'), "M"), (Decimal('1e3'), "K")):
        if value >= threshold:
            scaled = (value / threshold).quantize(Decimal('0.1'), rounding=ROUND_HALF_UP)
            return f"{sign}{currency.symbol}{scaled.normalize():f}{suffix}"
    return f"{sign}{currency.symbol}{value.quantize(Decimal('0.1'), rounding=ROUND_HALF_UP).normalize():f}"


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number, may carry a currency symbol

    Returns:
        Decimal value

    Raises:
        InvalidInput: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise InvalidInput("Value must be a non-empty string")

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    if ',' in clean_value and '.' in clean_value:
        # Both comma and dot - comma is the thousands separator
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 2:  # Decimal separator
            clean_value = clean_value.replace(',', '.')
        else:  # Thousands separator
            clean_value = clean_value.replace(',', '')
    else:
        clean_value = clean_value.replace(',', '')

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise InvalidInput(f"Cannot convert '{value}' to Decimal")
