"""Field-level validation of transformed values."""

import re
import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("first_name", "last_name", "organization_id")
DATE_COLUMNS = ("hire_date", "termination_date", "expiration_date", "date_of_birth", "issued_date")

# Health industry issuer prefix covered by the NPI check digit
NPI_PREFIX = "80840"


def luhn_valid(digits: str) -> bool:
    """Standard Luhn checksum over a digit string."""
    total = 0
    for i, ch in enumerate(reversed(digits)):
        n = int(ch)
        if i % 2 == 1:
            n *= 2
            if n > 9:
                n -= 9
        total += n
    return total % 10 == 0


class ValidationRules:
    """Common validation rules. Each returns an error message or None."""

    @staticmethod
    def npi(value: Any) -> Optional[str]:
        """Validate a National Provider Identifier (10 digits, Luhn with prefix 80840)."""
        if value is None:
            return None

        text = str(value).strip()
        if not re.match(r"^\d{10}$", text):
            return "NPI must be exactly 10 digits"
        if not luhn_valid(NPI_PREFIX + text):
            return "Invalid NPI (failed Luhn check)"
        return None

    @staticmethod
    def email(value: Any) -> Optional[str]:
        """Validate email format."""
        if value is None:
            return None

        if not re.match(r"^[^\s@]+@[^\s@]+\.[^\s@]+$", str(value)):
            return "Invalid email format"
        return None

    @staticmethod
    def state_code(value: Any) -> Optional[str]:
        """Validate a two-letter uppercase state code."""
        if value is None:
            return None

        if not re.match(r"^[A-Z]{2}$", str(value)):
            return "State must be 2-letter code"
        return None

    @staticmethod
    def iso_date(value: Any) -> Optional[str]:
        """Validate YYYY-MM-DD."""
        if value is None:
            return None

        if not re.match(r"^\d{4}-\d{2}-\d{2}$", str(value)):
            return "Date must be YYYY-MM-DD format"
        return None


class FieldValidator:
    """
    Validator for transformed values before staging.

    Rules are chosen by target column name:
    - Required columns must not be null
    - ``npi``, ``email`` and ``state`` get format checks
    - Date columns must be ISO dates
    - Custom validators registered per column run last
    """

    def __init__(self, required_columns=REQUIRED_COLUMNS, date_columns=DATE_COLUMNS):
        """Initialize the validator."""
        self.required_columns = set(required_columns)
        self.date_columns = set(date_columns)
        self._column_rules: Dict[str, Callable[[Any], Optional[str]]] = {
            "npi": ValidationRules.npi,
            "email": ValidationRules.email,
            "state": ValidationRules.state_code,
        }
        self._custom_validators: Dict[str, List[Callable[[Any], Optional[str]]]] = {}

    def register_validator(self, column: str, func: Callable[[Any], Optional[str]]) -> None:
        """Register a custom validation function for a target column."""
        self._custom_validators.setdefault(column, []).append(func)

    def validate(self, column: str, value: Any, table: Optional[str] = None) -> Optional[str]:
        """
        Validate one transformed value.

        Args:
            column: Target column name
            value: Transformed value (None means null)
            table: Target table, for logging

        Returns:
            Error message, or None when the value is valid
        """
        if value is None:
            if column in self.required_columns:
                return f"{column} is required"
            return None

        rule = self._column_rules.get(column)
        if rule:
            error = rule(value)
            if error:
                return error

        if column in self.date_columns:
            error = ValidationRules.iso_date(value)
            if error:
                return error

        for func in self._custom_validators.get(column, []):
            error = func(value)
            if error:
                logger.debug(f"Custom validation failed for {table}.{column}: {error}")
                return error

        return None
