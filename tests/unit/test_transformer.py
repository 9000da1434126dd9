"""Unit tests for value transforms."""

import pytest

from enterprise_migration.services.transformer import ValueTransformer


@pytest.fixture
def transformer():
    return ValueTransformer()


class TestValueTransformer:
    """Test the built-in transforms."""

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_blank_becomes_none(self, transformer, value):
        assert transformer.transform(value, "UPPERCASE") is None

    def test_plain_copy_strips(self, transformer):
        assert transformer.transform("  Maria ") == "Maria"
        assert transformer.transform(42) == 42

    def test_normalize_phone(self, transformer):
        assert transformer.transform("+1 (555) 123-4567", "NORMALIZE_PHONE") == "5551234567"

    @pytest.mark.parametrize("value,expected", [
        ("2024-01-15", "2024-01-15"),
        ("1/5/2024", "2024-01-05"),
        ("01-15-2024", "2024-01-15"),
        ("January 15, 2024", "2024-01-15"),
        ("not a date", None),
    ])
    def test_date_to_iso(self, transformer, value, expected):
        assert transformer.transform(value, "CONVERT_DATE_TO_ISO") == expected

    def test_name_parts(self, transformer):
        assert transformer.transform("Maria Lopez", "PARSE_NAME_FIRST") == "Maria"
        assert transformer.transform("Maria Lopez", "PARSE_NAME_LAST") == "Lopez"
        assert transformer.transform("Lopez, Maria", "PARSE_NAME_FIRST") == "Maria"
        assert transformer.transform("Lopez, Maria", "PARSE_NAME_LAST") == "Lopez"

    def test_state_to_code(self, transformer):
        assert transformer.transform("new york", "CONVERT_STATE_TO_CODE") == "NY"
        assert transformer.transform("tx", "CONVERT_STATE_TO_CODE") == "TX"
        assert transformer.transform("Ontario", "CONVERT_STATE_TO_CODE") == "Ontario"

    def test_case_transforms(self, transformer):
        assert transformer.transform("Rn", "UPPERCASE") == "RN"
        assert transformer.transform("A@B.COM", "LOWERCASE") == "a@b.com"

    def test_unknown_transform_copies(self, transformer):
        assert transformer.transform("value", "NO_SUCH_TRANSFORM") == "value"

    def test_custom_transform_gets_row(self, transformer):
        transformer.register_transform(
            "FULL_NAME", lambda value, config, data, ctx: f"{data['first']} {value}"
        )

        assert transformer.has_transform("FULL_NAME")
        assert transformer.transform("Lopez", "FULL_NAME", data={"first": "Maria"}) == "Maria Lopez"
