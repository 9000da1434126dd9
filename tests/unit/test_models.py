"""Unit tests for models and configuration."""

from datetime import datetime, timezone

import pytest

from enterprise_migration.exceptions import ConfigError, DatastoreError
from enterprise_migration.models.mapping import FieldMapping, RuleCondition
from enterprise_migration.models.migration import (
    DatastoreSettings,
    MigrationOptions,
    parse_timestamp,
    to_iso,
)
from enterprise_migration.models.record import SourceRow


class TestSourceRow:
    """Test field presence semantics."""

    def test_missing_null_and_value(self):
        row = SourceRow({"a": None, "b": "  ", "c": "x"}, row_number=4)

        assert not row.has("z")
        assert row.has("a") and row.is_null("a")
        assert row.is_null("b")
        assert not row.is_null("z")
        assert row.is_populated("c")
        assert row.first_populated("a", "b", "c") == ("c", "x")

    def test_record_id_fallbacks(self):
        assert SourceRow({"id": 7}).record_id == "7"
        assert SourceRow({"employee_id": "E1"}).record_id == "E1"
        assert SourceRow({"id": "7"}, source_id="S9").record_id == "S9"
        assert SourceRow({"name": "x"}, row_number=3).record_id == "row-3"


class TestFieldMapping:
    def test_from_camel_case(self):
        mapping = FieldMapping.from_dict({
            "sourceColumn": "dob",
            "targetTable": "hc_staff",
            "targetColumn": "date_of_birth",
            "transformId": "CONVERT_DATE_TO_ISO",
            "confidence": "0.9",
        })
        assert mapping == FieldMapping("dob", "hc_staff", "date_of_birth", "CONVERT_DATE_TO_ISO", 0.9)


class TestRuleCondition:
    """Test rule condition defaults and round trips."""

    def test_defaults(self):
        a = RuleCondition(type="value_in")
        b = RuleCondition(type="value_in")
        a.values.append("x")

        assert a.field is None
        assert b.values == []

    def test_from_dict_keeps_field(self):
        condition = RuleCondition.from_dict({"type": "value_equals", "field": "state", "value": "TX"})

        assert condition.field == "state"
        assert condition.to_dict()["values"] == []


class TestMigrationOptions:
    """Test option parsing and validation."""

    def test_defaults_are_valid(self):
        MigrationOptions().validate()

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigError, match="turbo"):
            MigrationOptions.from_dict({"turbo": True})

    @pytest.mark.parametrize("overrides", [
        {"batch_size": 0},
        {"dedup_threshold": 1.5},
        {"retry_base_delay_ms": 5000, "retry_max_delay_ms": 1000},
        {"max_retry_attempts": 0},
        {"quality_warning_threshold": 101},
    ])
    def test_out_of_range(self, overrides):
        with pytest.raises(ConfigError):
            MigrationOptions.from_dict(overrides)

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "options.json"
        path.write_text('{"options": {"batch_size": 25, "dry_run": true}}')

        options = MigrationOptions.from_json_file(str(path))
        assert options.batch_size == 25
        assert options.dry_run is True

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(ConfigError):
            MigrationOptions.from_json_file(str(tmp_path / "missing.json"))


class TestDatastoreSettings:
    """Test environment configuration."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MIGRATION_DATASTORE_URL", "https://db.example.com")
        monkeypatch.setenv("MIGRATION_DATASTORE_KEY", "secret")
        monkeypatch.setenv("MIGRATION_DATASTORE_TIMEOUT", "5")

        settings = DatastoreSettings.from_env()
        assert settings.is_remote
        assert settings.api_key == "secret"
        assert settings.timeout == 5.0
        assert settings.schema == "public"

    def test_bad_timeout(self, monkeypatch):
        monkeypatch.setenv("MIGRATION_DATASTORE_TIMEOUT", "soon")
        with pytest.raises(ConfigError):
            DatastoreSettings.from_env()

    def test_local_without_url(self, monkeypatch):
        monkeypatch.delenv("MIGRATION_DATASTORE_URL", raising=False)
        assert not DatastoreSettings.from_env().is_remote


class TestTimestamps:
    def test_iso_is_fixed_width_utc(self):
        a = to_iso(datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc))
        b = to_iso(datetime(2024, 1, 15, 12, 0, 0, 5))
        assert a == "2024-01-15T12:00:00.000000+00:00"
        assert len(a) == len(b)
        assert a < b

    def test_parse_naive_as_utc(self):
        assert parse_timestamp("2024-01-15T12:00:00").tzinfo is not None
        assert parse_timestamp(None) is None


class TestDatastoreError:
    def test_default_codes(self):
        assert DatastoreError("x").code == "TRANSIENT"
        assert DatastoreError("x", transient=False).code == "REJECTED"
        assert DatastoreError("x", code="503").code == "503"
