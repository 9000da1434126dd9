"""Unit tests for field validation."""

import pytest

from enterprise_migration.services.validator import FieldValidator, ValidationRules, luhn_valid


class TestValidationRules:
    """Test the individual format rules."""

    def test_luhn(self):
        assert luhn_valid("79927398713")
        assert not luhn_valid("79927398710")

    @pytest.mark.parametrize("npi,error", [
        ("1234567893", None),
        ("1234567890", "Invalid NPI (failed Luhn check)"),
        ("123456789", "NPI must be exactly 10 digits"),
        ("12345678AB", "NPI must be exactly 10 digits"),
        (None, None),
    ])
    def test_npi(self, npi, error):
        assert ValidationRules.npi(npi) == error

    def test_email(self):
        assert ValidationRules.email("nurse@example.org") is None
        assert ValidationRules.email("not-an-email") == "Invalid email format"

    def test_state_code(self):
        assert ValidationRules.state_code("TX") is None
        assert ValidationRules.state_code("Texas") == "State must be 2-letter code"
        assert ValidationRules.state_code("tx") == "State must be 2-letter code"

    def test_iso_date(self):
        assert ValidationRules.iso_date("2024-01-15") is None
        assert ValidationRules.iso_date("01/15/2024") == "Date must be YYYY-MM-DD format"


class TestFieldValidator:
    """Test rule selection by target column."""

    def test_required_column_null(self):
        validator = FieldValidator()
        assert validator.validate("last_name", None) == "last_name is required"
        assert validator.validate("middle_name", None) is None

    def test_column_rules(self):
        validator = FieldValidator()
        assert validator.validate("npi", "1234567893") is None
        assert validator.validate("hire_date", "2024-13") == "Date must be YYYY-MM-DD format"

    def test_custom_validator(self):
        validator = FieldValidator()
        validator.register_validator("employee_type", lambda v: None if v in ("FT", "PT") else "Unknown type")

        assert validator.validate("employee_type", "FT") is None
        assert validator.validate("employee_type", "contract") == "Unknown type"

    def test_custom_required_columns(self):
        validator = FieldValidator(required_columns=("npi",))
        assert validator.validate("last_name", None) is None
        assert validator.validate("npi", None) == "npi is required"
