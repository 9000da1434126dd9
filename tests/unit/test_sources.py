"""Unit tests for source file and mapping readers."""

import json

import pytest

from enterprise_migration.exceptions import ConfigError
from enterprise_migration.sources import SourceReader, load_mappings


class TestCsv:
    """Test CSV reading."""

    def test_blank_cells_are_present_nulls(self, tmp_path):
        path = tmp_path / "staff.csv"
        path.write_text("id,first_name,last_name\n1,Maria,Lopez\n2,Kevin,\n")

        rows = SourceReader(id_column="id").read(path)

        assert [r.row_number for r in rows] == [1, 2]
        assert rows[1].has("last_name")
        assert rows[1]["last_name"] is None
        assert rows[1].source_id == "2"

    def test_semicolon_delimiter_detected(self, tmp_path):
        path = tmp_path / "staff.csv"
        path.write_text("id;first_name;state\n1;Maria;TX\n2;Kevin;OH\n")

        rows = SourceReader().read(path)
        assert rows[0]["state"] == "TX"

    def test_empty_rows_skipped_and_renumbered(self, tmp_path):
        path = tmp_path / "staff.csv"
        path.write_text("id,name\n1,Ann\n,\n3,Bo\n")

        rows = SourceReader().read(path)
        assert [(r.row_number, r["name"]) for r in rows] == [(1, "Ann"), (2, "Bo")]

    def test_latin1_fallback(self, tmp_path):
        path = tmp_path / "staff.csv"
        path.write_bytes("id,name\n1,Jos\xe9\n".encode("latin-1"))

        rows = SourceReader().read(path)
        assert rows[0]["name"] == "Jos\xe9"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            SourceReader().read(tmp_path / "nope.csv")


class TestJson:
    """Test JSON and JSON Lines reading."""

    def test_wrapped_list(self, tmp_path):
        path = tmp_path / "staff.json"
        path.write_text(json.dumps({"records": [{"id": 1}, {"id": 2}], "count": 2}))

        rows = SourceReader().read(path)
        assert [r["id"] for r in rows] == [1, 2]

    def test_single_object(self, tmp_path):
        path = tmp_path / "staff.json"
        path.write_text(json.dumps({"id": 1, "name": "Ann"}))

        assert len(SourceReader().read(path)) == 1

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "staff.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError):
            SourceReader().read(path)

    def test_jsonl(self, tmp_path):
        path = tmp_path / "staff.jsonl"
        path.write_text('{"id": 1}\n\n{"id": 2}\n')

        rows = SourceReader(id_column="id").read(path)
        assert [r.source_id for r in rows] == ["1", "2"]

    def test_jsonl_bad_line(self, tmp_path):
        path = tmp_path / "staff.jsonl"
        path.write_text('{"id": 1}\nbroken\n')
        with pytest.raises(ConfigError, match="line 2"):
            SourceReader().read(path)


class TestLoadMappings:
    """Test mapping file loading."""

    def test_wrapped_mappings(self, tmp_path):
        path = tmp_path / "mappings.json"
        path.write_text(json.dumps({"mappings": [
            {"source_column": "fname", "target_table": "hc_staff", "target_column": "first_name"},
            {"sourceColumn": "notes", "targetTable": "UNMAPPED", "targetColumn": "UNMAPPED"},
        ]}))

        mappings = load_mappings(path)
        assert [m.target_column for m in mappings] == ["first_name", "UNMAPPED"]

    def test_invalid_entry(self, tmp_path):
        path = tmp_path / "mappings.json"
        path.write_text(json.dumps(["not a mapping"]))
        with pytest.raises(ConfigError):
            load_mappings(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_mappings(tmp_path / "missing.json")
