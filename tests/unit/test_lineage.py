"""Unit tests for field-level lineage."""

from enterprise_migration.datastore.base import LINEAGE
from enterprise_migration.exceptions import DatastoreError
from enterprise_migration.services.lineage import LineageTracker, build_steps
from enterprise_migration.services.similarity import hash_value


class TestBuildSteps:
    """Test transformation chains."""

    def test_no_transform(self):
        assert build_steps(None, "a", "a") == []

    def test_single_transform(self):
        [step] = build_steps("UPPERCASE", "rn", "RN")
        assert step.step == 1
        assert step.before_hash == hash_value("rn")
        assert step.after_hash == hash_value("RN")


class TestLineageTracker:
    """Test buffering, flushing and tracing."""

    def test_records_hashes_not_values(self, datastore):
        tracker = LineageTracker(datastore, "batch-1", source_file="staff.csv")
        tracker.record(1, "ssn", "123-45-6789", "hc_staff", "ssn", [], "123-45-6789", target_row_id="7")
        tracker.flush()

        [row] = datastore.table(LINEAGE)
        assert "123-45-6789" not in str(row)
        assert row["source_value_hash"] == hash_value("123-45-6789")
        assert row["source_file"] == "staff.csv"

    def test_flushes_at_threshold(self, datastore):
        tracker = LineageTracker(datastore, "batch-1", flush_threshold=2)
        tracker.record(1, "a", "x", "t", "a", None, "x")
        assert tracker.pending == 1
        assert datastore.table(LINEAGE) == []

        tracker.record(1, "b", "y", "t", "b", None, "y")
        assert tracker.pending == 0
        assert tracker.records_created == 2

    def test_null_target_hashes_like_empty(self, datastore):
        tracker = LineageTracker(datastore, "batch-1")
        entry = tracker.record(2, "last_name", "", "hc_staff", "last_name", None, None,
                               valid=False, errors=["last_name is required"])

        assert entry.target_value_hash == hash_value("")
        assert entry.validation_errors == ("last_name is required",)

    def test_flush_failure_drops_buffer(self, datastore, monkeypatch):
        tracker = LineageTracker(datastore, "batch-1")
        tracker.record(1, "a", "x", "t", "a", None, "x")

        def boom(table, rows):
            raise DatastoreError("timeout")

        monkeypatch.setattr(datastore, "insert", boom)
        assert tracker.flush() == 0
        assert tracker.pending == 0
        assert tracker.records_created == 0

    def test_trace_lineage(self, datastore):
        tracker = LineageTracker(datastore, "batch-1")
        tracker.record(3, "first_name", "Priya", "hc_staff", "first_name", None, "Priya", target_row_id="p3")
        tracker.record(3, "state", "Utah", "hc_staff", "state",
                       build_steps("CONVERT_STATE_TO_CODE", "Utah", "UT"), "UT", target_row_id="p3")
        tracker.record(4, "first_name", "Ann", "hc_staff", "first_name", None, "Ann", target_row_id="a4")
        tracker.flush()

        trace = tracker.trace_lineage("hc_staff", "p3")
        assert [r.source_column for r in trace] == ["first_name", "state"]
        assert trace[1].transformations[0].type == "CONVERT_STATE_TO_CODE"
