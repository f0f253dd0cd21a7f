"""
Interest Accrual Module

Simple (non-compounding) interest accrual on loans and credits, plus the
maturity, current-value and monthly-compound variants used by creditor
statements. All calculations are pure: the calculator knows nothing about
payments already made, callers subtract those downstream.
"""

from decimal import Decimal
from datetime import datetime, date
from enum import Enum
from typing import Optional, Union

from .currency import ZERO, Numeric, non_negative
from .errors import InvalidInput


DateLike = Union[date, datetime, str]

HUNDRED = Decimal('100')
MONTHS_PER_YEAR = Decimal('12')
DAYS_PER_COMPOUNDING_MONTH = 30


class InterestType(Enum):
    """Types of interest calculations"""
    SIMPLE = "simple"          # Principal x rate x time
    COMPOUND = "compound"      # Compounded monthly on whole 30-day months


def _coerce_date(value: DateLike, field: str) -> Union[date, datetime]:
    if isinstance(value, (date, datetime)):
        return value
    if isinstance(value, str):
        try:
            if "T" in value or " " in value:
                return datetime.fromisoformat(value)
            return date.fromisoformat(value)
        except ValueError:
            raise InvalidInput(f"{field} is not an ISO date: {value!r}")
    raise InvalidInput(f"{field} must be a date, got {value!r}")


def as_calendar_date(value: Optional[DateLike], field: str = "as_of") -> date:
    """Calendar date of a date, datetime or ISO string; None means today"""
    if value is None:
        return date.today()
    value = _coerce_date(value, field)
    return value.date() if isinstance(value, datetime) else value


def days_elapsed(start_date: DateLike, as_of: Optional[DateLike] = None) -> int:
    """
    Whole days between start_date and as_of, never negative

    Datetimes are compared exactly and floored to whole days. If either
    side is a plain date, both are compared as calendar dates.
    """
    start = _coerce_date(start_date, "start_date")
    if as_of is None:
        end = datetime.now(start.tzinfo) if isinstance(start, datetime) else date.today()
    else:
        end = _coerce_date(as_of, "as_of")

    if isinstance(start, datetime) and isinstance(end, datetime):
        if (start.tzinfo is None) != (end.tzinfo is None):
            raise InvalidInput("Cannot compare naive and timezone-aware datetimes")
        elapsed = (end - start).total_seconds() // 86400
        return max(0, int(elapsed))

    start_day = start.date() if isinstance(start, datetime) else start
    end_day = end.date() if isinstance(end, datetime) else end
    return max(0, (end_day - start_day).days)


class InterestAccrualCalculator:
    """
    Stateless interest calculator

    ``accrued_interest`` is principal x (rate / 100) x (days / basis) with
    days clamped at zero, so a start date in the future accrues nothing.
    """

    def __init__(self, day_count_basis: int = 365):
        if day_count_basis <= 0:
            raise InvalidInput("day_count_basis must be positive")
        self.day_count_basis = Decimal(day_count_basis)

    def accrued_interest(
        self,
        principal: Numeric,
        annual_rate_percent: Numeric,
        start_date: DateLike,
        as_of: Optional[DateLike] = None
    ) -> Decimal:
        """
        Simple interest accrued from start_date to as_of

        Args:
            principal: Principal amount (>= 0)
            annual_rate_percent: Annual rate as a percentage, e.g. 12 for 12%
            start_date: Date interest starts accruing
            as_of: Date to accrue to (defaults to today)

        Returns:
            Accrued interest, never negative

        Raises:
            InvalidInput: If principal or rate is negative or not a number
        """
        principal = non_negative(principal, "principal")
        rate = non_negative(annual_rate_percent, "interest_rate")
        days = days_elapsed(start_date, as_of)
        if days == 0 or principal == ZERO or rate == ZERO:
            return ZERO
        return principal * (rate / HUNDRED) * (Decimal(days) / self.day_count_basis)

    def compound_interest(
        self,
        principal: Numeric,
        annual_rate_percent: Numeric,
        start_date: DateLike,
        as_of: Optional[DateLike] = None
    ) -> Decimal:
        """Interest compounded monthly over whole 30-day months"""
        principal = non_negative(principal, "principal")
        rate = non_negative(annual_rate_percent, "interest_rate")
        months = days_elapsed(start_date, as_of) // DAYS_PER_COMPOUNDING_MONTH
        if months == 0 or principal == ZERO or rate == ZERO:
            return ZERO
        monthly_rate = rate / HUNDRED / MONTHS_PER_YEAR
        return principal * ((Decimal('1') + monthly_rate) ** months - Decimal('1'))

    def calculate_interest(
        self,
        principal: Numeric,
        annual_rate_percent: Numeric,
        start_date: DateLike,
        as_of: Optional[DateLike] = None,
        interest_type: InterestType = InterestType.SIMPLE
    ) -> Decimal:
        """Accrued interest using the given interest type"""
        if interest_type == InterestType.COMPOUND:
            return self.compound_interest(principal, annual_rate_percent, start_date, as_of)
        return self.accrued_interest(principal, annual_rate_percent, start_date, as_of)

    def maturity_interest(
        self,
        principal: Numeric,
        annual_rate_percent: Numeric,
        tenure_months: int
    ) -> Decimal:
        """Total simple interest over the full tenure: P x (R/100) x (months/12)"""
        principal = non_negative(principal, "principal")
        rate = non_negative(annual_rate_percent, "interest_rate")
        if isinstance(tenure_months, bool) or not isinstance(tenure_months, int) or tenure_months <= 0:
            raise InvalidInput(f"tenure_months must be a positive integer, got {tenure_months!r}")
        return principal * (rate / HUNDRED) * (Decimal(tenure_months) / MONTHS_PER_YEAR)

    def current_value(
        self,
        remaining_principal: Numeric,
        annual_rate_percent: Numeric,
        start_date: DateLike,
        as_of: Optional[DateLike] = None
    ) -> Decimal:
        """Remaining principal plus simple interest accrued on it"""
        remaining = non_negative(remaining_principal, "remaining_principal")
        return remaining + self.accrued_interest(remaining, annual_rate_percent, start_date, as_of)


_default_calculator = InterestAccrualCalculator()


def accrued_interest(principal: Numeric, annual_rate_percent: Numeric,
                     start_date: DateLike, as_of: Optional[DateLike] = None) -> Decimal:
    """Simple interest on a 365-day year"""
    return _default_calculator.accrued_interest(principal, annual_rate_percent, start_date, as_of)


def maturity_interest(principal: Numeric, annual_rate_percent: Numeric, tenure_months: int) -> Decimal:
    return _default_calculator.maturity_interest(principal, annual_rate_percent, tenure_months)


def current_value(remaining_principal: Numeric, annual_rate_percent: Numeric,
                  start_date: DateLike, as_of: Optional[DateLike] = None) -> Decimal:
    return _default_calculator.current_value(remaining_principal, annual_rate_percent, start_date, as_of)


def parse_interest_type(value: Optional[str]) -> InterestType:
    """Stored interest type, defaulting to simple"""
    if not value:
        return InterestType.SIMPLE
    try:
        return InterestType(value)
    except ValueError:
        raise InvalidInput(f"Unknown interest type: {value!r}")
