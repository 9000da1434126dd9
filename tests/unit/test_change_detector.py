"""Unit tests for delta-sync change detection."""

import pytest

from enterprise_migration.datastore.base import SYNC_STATE
from enterprise_migration.exceptions import SyncStateError
from enterprise_migration.services.change_detector import ChangeDetector, record_hash


@pytest.fixture
def detector(datastore, clock):
    return ChangeDetector(datastore, clock=clock)


@pytest.fixture
def sync_id(detector):
    return detector.create_sync("legacy_hr", "employees", "hc_staff")


class TestChangeDetector:
    """Test insert and update detection against the change log."""

    def test_record_hash_ignores_key_order(self):
        assert record_hash({"a": 1, "b": 2}) == record_hash({"b": 2, "a": 1})

    def test_first_extract_is_all_inserts(self, detector, sync_id):
        changes = detector.detect_changes(sync_id, [{"id": 1, "name": "Ann"}, {"id": 2, "name": "Bo"}])

        assert [(c.change_type, c.record_id) for c in changes] == [("insert", "1"), ("insert", "2")]
        assert changes[0].changed_fields == ["id", "name"]

    def test_unchanged_records_not_reported(self, detector, sync_id, clock):
        detector.detect_changes(sync_id, [{"id": 1, "name": "Ann"}])
        clock.advance(minutes=1)

        assert detector.detect_changes(sync_id, [{"id": 1, "name": "Ann"}]) == []

    def test_update_lists_changed_fields(self, detector, sync_id, clock):
        detector.detect_changes(sync_id, [{"id": 1, "name": "Ann", "dept": "ER"}])
        clock.advance(minutes=1)
        [change] = detector.detect_changes(sync_id, [{"id": 1, "name": "Ann", "dept": "ICU", "phone": "555"}])

        assert change.change_type == "update"
        assert change.changed_fields == ["dept", "phone"]

        clock.advance(minutes=1)
        [again] = detector.detect_changes(sync_id, [{"id": 1, "name": "Anne", "dept": "ICU", "phone": "555"}])
        assert again.changed_fields == ["name"]

    def test_records_without_id_skipped(self, detector, sync_id):
        assert detector.detect_changes(sync_id, [{"name": "nobody"}]) == []

    def test_mark_synced(self, detector, sync_id, datastore):
        detector.detect_changes(sync_id, [{"id": 1}, {"id": 2}])
        assert len(detector.pending_changes(sync_id)) == 2

        assert detector.mark_synced(sync_id, "batch-1") == 2
        assert detector.pending_changes(sync_id) == []
        [state] = datastore.table(SYNC_STATE)
        assert state["rows_at_last_sync"] == 2
        assert state["last_sync_at"] is not None

    def test_unknown_sync(self, detector):
        with pytest.raises(SyncStateError):
            detector.detect_changes("missing", [])

    def test_unsupported_mode(self, detector):
        with pytest.raises(SyncStateError):
            detector.create_sync("legacy_hr", "employees", "hc_staff", sync_mode="streaming")
