"""
System Settings Module

Strongly typed lending settings (loan limits, guarantor tiers, interest
rate bounds, tenure options) validated when they are loaded. Settings are
stored as a loosely typed key/value table; ``SystemSettings.from_rows``
turns those rows into a validated model.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional
import json
import logging

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import InvalidInput


logger = logging.getLogger("lending.settings")

MINOR_UNIT = Decimal('0.01')


@dataclass(frozen=True)
class AmountValidation:
    """Outcome of validating an amount against configured bounds"""
    valid: bool
    message: Optional[str] = None


class LoanLimits(BaseModel):
    min: Decimal = Field(Decimal('0'), ge=0)
    max: Decimal = Field(Decimal('5000000'), ge=0)

    @model_validator(mode='after')
    def check_bounds(self) -> 'LoanLimits':
        if self.min > self.max:
            raise ValueError(f"loan_limits.min {self.min} exceeds max {self.max}")
        return self


class GuarantorTier(BaseModel):
    """Amount band mapping to a required guarantor count"""
    min: Decimal = Field(..., ge=0)
    max: Decimal = Field(..., ge=0)
    required: int = Field(..., ge=0)

    @model_validator(mode='after')
    def check_bounds(self) -> 'GuarantorTier':
        if self.min > self.max:
            raise ValueError(f"guarantor tier min {self.min} exceeds max {self.max}")
        return self

    def contains(self, amount: Decimal) -> bool:
        return self.min <= amount <= self.max


class InterestRateBounds(BaseModel):
    default: Decimal = Field(Decimal('5'), ge=0)
    min: Decimal = Field(Decimal('2'), ge=0)
    max: Decimal = Field(Decimal('15'), ge=0)

    @model_validator(mode='after')
    def check_bounds(self) -> 'InterestRateBounds':
        if not (self.min <= self.default <= self.max):
            raise ValueError(
                f"interest_rate must satisfy min <= default <= max, got {self.min}/{self.default}/{self.max}"
            )
        return self


def _default_tiers() -> List[GuarantorTier]:
    return [
        GuarantorTier(min=Decimal('0'), max=Decimal('500000'), required=1),
        GuarantorTier(min=Decimal('500000.01'), max=Decimal('2000000'), required=2),
        GuarantorTier(min=Decimal('2000000.01'), max=Decimal('999999999'), required=3),
    ]


class SystemSettings(BaseModel):
    """Validated lending settings"""
    loan_limits: LoanLimits = Field(default_factory=LoanLimits)
    guarantor_enabled: bool = True
    guarantor_tiers: List[GuarantorTier] = Field(default_factory=_default_tiers)
    interest_rate: InterestRateBounds = Field(default_factory=InterestRateBounds)
    tenure_options: List[int] = Field(default_factory=lambda: [3, 6, 12, 18, 24, 36])

    @field_validator('guarantor_tiers')
    @classmethod
    def check_tiers(cls, tiers: List[GuarantorTier]) -> List[GuarantorTier]:
        # Tiers must be ascending, contiguous to the cent and never ask for fewer guarantors
        for previous, current in zip(tiers, tiers[1:]):
            if current.min <= previous.max:
                raise ValueError(
                    f"guarantor tiers overlap or are out of order: "
                    f"[{previous.min}, {previous.max}] then [{current.min}, {current.max}]"
                )
            if current.min - previous.max > MINOR_UNIT:
                raise ValueError(
                    f"guarantor tiers leave a gap between {previous.max} and {current.min}"
                )
            if current.required < previous.required:
                raise ValueError("guarantor tier requirements must not decrease as amounts grow")
        return tiers

    @field_validator('tenure_options')
    @classmethod
    def check_tenures(cls, options: List[int]) -> List[int]:
        if any(months <= 0 for months in options):
            raise ValueError("tenure options must be positive month counts")
        return sorted(set(options))

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]]) -> 'SystemSettings':
        """
        Build settings from stored ``setting_key`` / ``setting_value`` rows

        String values "true"/"false" become booleans and other strings are
        parsed as JSON where possible. Keys that are missing fall back to the
        defaults; unknown keys are ignored.

        Raises:
            InvalidInput: If any value fails validation
        """
        parsed: Dict[str, Any] = {}
        for row in rows:
            parsed[row['setting_key']] = _parse_setting_value(row['setting_value'])

        known = {key: value for key, value in parsed.items() if key in cls.model_fields}
        ignored = set(parsed) - set(known)
        if ignored:
            logger.debug(f"Ignoring unknown settings: {sorted(ignored)}")

        try:
            return cls(**known)
        except ValidationError as e:
            raise InvalidInput(f"Invalid system settings: {e}") from e

    def validate_amount(self, amount: Decimal) -> AmountValidation:
        if amount < self.loan_limits.min:
            return AmountValidation(False, f"Minimum loan amount is {self.loan_limits.min}")
        if amount > self.loan_limits.max:
            return AmountValidation(False, f"Maximum loan amount is {self.loan_limits.max}")
        return AmountValidation(True)

    def validate_interest_rate(self, rate: Decimal) -> AmountValidation:
        if rate < self.interest_rate.min:
            return AmountValidation(False, f"Minimum interest rate is {self.interest_rate.min}%")
        if rate > self.interest_rate.max:
            return AmountValidation(False, f"Maximum interest rate is {self.interest_rate.max}%")
        return AmountValidation(True)

    def validate_tenure(self, months: int) -> AmountValidation:
        if months not in self.tenure_options:
            options = ", ".join(str(m) for m in self.tenure_options)
            return AmountValidation(False, f"Tenure must be one of: {options} months")
        return AmountValidation(True)


def _parse_setting_value(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if value == 'true':
        return True
    if value == 'false':
        return False
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value
