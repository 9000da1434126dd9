"""Value transforms applied between source and target columns."""

import re
import logging
from typing import Any, Callable, Dict, Optional

from dateutil import parser as date_parser

from ..models.mapping import TransformType

logger = logging.getLogger(__name__)

US_STATES = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR",
    "california": "CA", "colorado": "CO", "connecticut": "CT", "delaware": "DE",
    "florida": "FL", "georgia": "GA", "hawaii": "HI", "idaho": "ID",
    "illinois": "IL", "indiana": "IN", "iowa": "IA", "kansas": "KS",
    "kentucky": "KY", "louisiana": "LA", "maine": "ME", "maryland": "MD",
    "massachusetts": "MA", "michigan": "MI", "minnesota": "MN", "mississippi": "MS",
    "missouri": "MO", "montana": "MT", "nebraska": "NE", "nevada": "NV",
    "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM", "new york": "NY",
    "north carolina": "NC", "north dakota": "ND", "ohio": "OH", "oklahoma": "OK",
    "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC",
    "south dakota": "SD", "tennessee": "TN", "texas": "TX", "utah": "UT",
    "vermont": "VT", "virginia": "VA", "washington": "WA", "west virginia": "WV",
    "wisconsin": "WI", "wyoming": "WY",
}

_US_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


class ValueTransformer:
    """
    Applies named transforms to single source values.

    Transform functions take ``(value, config, data, ctx)``: the stripped
    string value, per-mapping config, the whole source row, and a run
    context. Null and blank values short-circuit to None before any
    transform runs. Unknown transform names pass the value through with a
    warning.
    """

    def __init__(self):
        """Initialize the transformer."""
        self._custom_transforms: Dict[str, Callable] = {}
        self._builtin_transforms = self._register_builtin_transforms()

    def _register_builtin_transforms(self) -> Dict[str, Callable]:
        """Register all built-in transformation functions."""
        return {
            TransformType.NORMALIZE_PHONE.value: self._transform_normalize_phone,
            TransformType.CONVERT_DATE_TO_ISO.value: self._transform_date_to_iso,
            TransformType.PARSE_NAME_FIRST.value: self._transform_name_first,
            TransformType.PARSE_NAME_LAST.value: self._transform_name_last,
            TransformType.CONVERT_STATE_TO_CODE.value: self._transform_state_to_code,
            TransformType.UPPERCASE.value: self._transform_uppercase,
            TransformType.LOWERCASE.value: self._transform_lowercase,
            TransformType.TRIM.value: self._transform_trim,
        }

    def register_transform(self, name: str, func: Callable) -> None:
        """Register a custom transformation function."""
        self._custom_transforms[name] = func

    def has_transform(self, name: str) -> bool:
        return name in self._custom_transforms or name in self._builtin_transforms

    def transform(
        self,
        value: Any,
        transform: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Transform one value.

        Args:
            value: Raw source value
            transform: Transform name, or None for a plain copy
            config: Transform configuration
            data: The full source row
            context: Run-level context

        Returns:
            The transformed value, None for null or blank input
        """
        if value is None:
            return None
        if isinstance(value, str):
            value = value.strip()
            if value == "":
                return None

        if not transform:
            return value

        transform_func = self._custom_transforms.get(transform) or self._builtin_transforms.get(transform)
        if not transform_func:
            logger.warning(f"Unknown transform: {transform}, using direct copy")
            return value

        return transform_func(value, config or {}, data or {}, context or {})

    def _transform_normalize_phone(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Keep the last ten digits."""
        digits = re.sub(r"\D", "", str(value))
        return digits[-10:] if digits else None

    def _transform_date_to_iso(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Convert M/D/YYYY, M-D-YYYY or other parseable dates to YYYY-MM-DD."""
        text = str(value)

        match = _ISO_DATE.match(text)
        if match:
            return text

        match = _US_DATE.match(text)
        if match:
            month, day, year = match.groups()
            return f"{year}-{int(month):02d}-{int(day):02d}"

        try:
            return date_parser.parse(text).date().isoformat()
        except (ValueError, OverflowError):
            return None

    def _transform_name_first(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """First name from "First Last" or "Last, First"."""
        text = str(value)
        if "," in text:
            parts = text.split(",", 1)
            return parts[1].strip() or None
        return text.split(" ")[0]

    def _transform_name_last(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Last name from "First Last" or "Last, First"."""
        text = str(value)
        if "," in text:
            return text.split(",", 1)[0].strip() or None
        return text.split(" ")[-1]

    def _transform_state_to_code(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Full US state name to its two-letter code."""
        text = str(value)
        code = US_STATES.get(text.lower())
        if code:
            return code
        if len(text) == 2:
            return text.upper()
        return text

    def _transform_uppercase(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Convert to uppercase."""
        return str(value).upper()

    def _transform_lowercase(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        """Convert to lowercase."""
        return str(value).lower()

    def _transform_trim(self, value: Any, config: Dict, data: Dict, ctx: Dict) -> Any:
        return str(value).strip()
