"""
Test suite for settings module

Tests defaults, parsing of stored key/value rows, and validation of
loan limits, guarantor tiers, interest rate bounds and tenures.
"""

import json
import pytest
from decimal import Decimal
from pydantic import ValidationError

from lending_engine.errors import InvalidInput
from lending_engine.settings import GuarantorTier, LoanLimits, SystemSettings


def row(key, value):
    return {"setting_key": key, "setting_value": value}


class TestDefaults:
    """Test default settings"""

    def test_defaults(self):
        """Test out-of-the-box settings"""
        settings = SystemSettings()
        assert settings.loan_limits.max == Decimal('5000000')
        assert settings.guarantor_enabled
        assert [t.required for t in settings.guarantor_tiers] == [1, 2, 3]
        assert settings.interest_rate.default == Decimal('5')
        assert settings.tenure_options == [3, 6, 12, 18, 24, 36]


class TestFromRows:
    """Test building settings from stored rows"""

    def test_json_and_boolean_values(self):
        """Test JSON strings and "true"/"false" are decoded"""
        settings = SystemSettings.from_rows([
            row("loan_limits", json.dumps({"min": 1000, "max": 200000})),
            row("guarantor_enabled", "false"),
            row("tenure_options", "[12, 6, 6]"),
        ])
        assert settings.loan_limits.min == Decimal('1000')
        assert settings.loan_limits.max == Decimal('200000')
        assert settings.guarantor_enabled is False
        assert settings.tenure_options == [6, 12]

    def test_already_decoded_values(self):
        """Test rows holding decoded values are accepted as-is"""
        settings = SystemSettings.from_rows([
            row("interest_rate", {"default": 10, "min": 5, "max": 20}),
        ])
        assert settings.interest_rate.max == Decimal('20')

    def test_unknown_keys_ignored(self):
        """Test keys the engine does not know are skipped"""
        settings = SystemSettings.from_rows([row("theme", "dark")])
        assert settings == SystemSettings()

    def test_invalid_values_raise(self):
        """Test invalid stored values raise InvalidInput"""
        with pytest.raises(InvalidInput):
            SystemSettings.from_rows([row("loan_limits", '{"min": 5000, "max": 100}')])


class TestValidation:
    """Test settings validation"""

    def test_overlapping_tiers(self):
        """Test overlapping guarantor tiers are rejected"""
        with pytest.raises(ValidationError):
            SystemSettings(guarantor_tiers=[
                GuarantorTier(min=0, max=1000, required=1),
                GuarantorTier(min=1000, max=5000, required=2),
            ])

    def test_decreasing_requirements(self):
        """Test larger tiers cannot require fewer guarantors"""
        with pytest.raises(ValidationError):
            SystemSettings(guarantor_tiers=[
                GuarantorTier(min=0, max=1000, required=2),
                GuarantorTier(min=Decimal('1000.01'), max=5000, required=1),
            ])

    def test_gap_between_tiers(self):
        """Test tiers leaving amounts uncovered between them are rejected"""
        with pytest.raises(ValidationError, match="gap"):
            SystemSettings(guarantor_tiers=[
                GuarantorTier(min=0, max=500000, required=1),
                GuarantorTier(min=500001, max=2000000, required=2),
            ])

    def test_tiers_one_cent_apart(self):
        """Test tiers that meet at the next cent are accepted"""
        settings = SystemSettings(guarantor_tiers=[
            GuarantorTier(min=0, max=1000, required=1),
            GuarantorTier(min=Decimal('1000.01'), max=5000, required=2),
        ])
        assert len(settings.guarantor_tiers) == 2

    def test_tier_bounds(self):
        """Test a tier's min cannot exceed its max"""
        with pytest.raises(ValidationError):
            GuarantorTier(min=500, max=100, required=1)

    def test_loan_limit_bounds(self):
        """Test loan limits min cannot exceed max"""
        with pytest.raises(ValidationError):
            LoanLimits(min=10, max=5)

    def test_rate_default_within_bounds(self):
        """Test the default rate must sit between min and max"""
        with pytest.raises(ValidationError):
            SystemSettings(interest_rate={"default": 30, "min": 2, "max": 15})

    def test_non_positive_tenure(self):
        """Test tenure options must be positive"""
        with pytest.raises(ValidationError):
            SystemSettings(tenure_options=[0, 12])


class TestSettingsChecks:
    """Test value checks against settings"""

    def test_validate_interest_rate(self):
        """Test rates outside the bounds are invalid"""
        settings = SystemSettings()
        assert settings.validate_interest_rate(Decimal('10')).valid
        assert not settings.validate_interest_rate(Decimal('1')).valid
        assert not settings.validate_interest_rate(Decimal('16')).valid

    def test_validate_tenure(self):
        """Test only configured tenures are valid"""
        settings = SystemSettings()
        assert settings.validate_tenure(12).valid
        result = settings.validate_tenure(7)
        assert not result.valid
        assert "12" in result.message
