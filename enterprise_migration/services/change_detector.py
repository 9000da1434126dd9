"""Delta-sync change detection between source extracts."""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..datastore.base import Datastore, eq, CHANGE_LOG, SYNC_STATE
from ..exceptions import SyncStateError
from ..models.migration import utcnow, to_iso
from .similarity import hash_value

logger = logging.getLogger(__name__)


@dataclass
class DetectedChange:
    """A source record that is new or differs from its last synced version."""
    change_type: str  # insert, update
    record_id: str
    changed_fields: List[str] = field(default_factory=list)
    change_id: Optional[str] = None


def record_hash(record: Mapping[str, Any]) -> str:
    """Hash of a whole record, independent of key order."""
    return hash_value(json.dumps(dict(record), sort_keys=True, default=str))


def _field_hashes(record: Mapping[str, Any]) -> Dict[str, str]:
    return {k: hash_value(json.dumps(v, sort_keys=True, default=str)) for k, v in record.items()}


class ChangeDetector:
    """
    Finds inserted and updated source records since the last extract.

    Each sync configuration keeps an append-only change log of record
    hashes; a record is an insert when it has never been logged and an
    update when its hash differs from the latest logged one.
    """

    def __init__(self, datastore: Datastore, clock: Callable[[], datetime] = utcnow):
        self.datastore = datastore
        self._clock = clock

    def create_sync(
        self,
        source_system: str,
        source_table: str,
        target_table: str,
        organization_id: Optional[str] = None,
        sync_mode: str = "incremental",
        batch_size: int = 1000,
    ) -> str:
        """Register a sync configuration; returns its id."""
        if sync_mode not in ("full", "incremental", "cdc"):
            raise SyncStateError(f"Unsupported sync mode: {sync_mode}")

        sync_id = str(uuid.uuid4())
        self.datastore.insert(SYNC_STATE, [{
            "sync_id": sync_id,
            "organization_id": organization_id,
            "source_system": source_system,
            "source_table": source_table,
            "target_table": target_table,
            "sync_mode": sync_mode,
            "batch_size": batch_size,
            "last_sync_at": None,
            "rows_at_last_sync": None,
            "is_active": True,
        }])
        return sync_id

    def _get_sync(self, sync_id: str) -> Dict[str, Any]:
        sync = self.datastore.get_one(SYNC_STATE, [eq("sync_id", sync_id)])
        if sync is None:
            raise SyncStateError(f"Sync state not found: {sync_id}")
        if not sync.get("is_active", True):
            raise SyncStateError(f"Sync {sync_id} is not active")
        return sync

    def detect_changes(self, sync_id: str, records: List[Mapping[str, Any]]) -> List[DetectedChange]:
        """
        Compare an extract with the change log and log what changed.

        Args:
            sync_id: Sync configuration id
            records: Source records; each needs an ``id`` or ``record_id``

        Returns:
            Inserts and updates, in input order
        """
        self._get_sync(sync_id)
        changes = []
        now = self._clock()

        for record in records:
            record_id = record.get("id") or record.get("record_id")
            if record_id is None:
                logger.warning(f"Skipping record without id in sync {sync_id}")
                continue
            record_id = str(record_id)

            new_hash = record_hash(record)
            new_fields = _field_hashes(record)
            last = self.datastore.select(
                CHANGE_LOG,
                [eq("sync_id", sync_id), eq("record_id", record_id)],
                order_by=["-detected_at"],
                limit=1,
            )

            if not last:
                change = DetectedChange("insert", record_id, sorted(record.keys()))
                old_hash = None
            elif last[0]["new_values_hash"] != new_hash:
                old_fields = last[0].get("field_hashes") or {}
                changed = sorted(
                    k for k in set(old_fields) | set(new_fields)
                    if old_fields.get(k) != new_fields.get(k)
                )
                change = DetectedChange("update", record_id, changed)
                old_hash = last[0]["new_values_hash"]
            else:
                continue

            change.change_id = str(uuid.uuid4())
            self.datastore.insert(CHANGE_LOG, [{
                "change_id": change.change_id,
                "sync_id": sync_id,
                "change_type": change.change_type,
                "record_id": record_id,
                "changed_fields": change.changed_fields,
                "old_values_hash": old_hash,
                "new_values_hash": new_hash,
                "field_hashes": new_fields,
                "synced": False,
                "synced_at": None,
                "sync_batch_id": None,
                "detected_at": to_iso(now),
            }])
            changes.append(change)

        logger.info(
            f"Sync {sync_id}: {sum(c.change_type == 'insert' for c in changes)} inserts, "
            f"{sum(c.change_type == 'update' for c in changes)} updates"
        )
        return changes

    def pending_changes(self, sync_id: str) -> List[Dict[str, Any]]:
        """Logged changes not yet synced, oldest first."""
        return self.datastore.select(
            CHANGE_LOG,
            [eq("sync_id", sync_id), eq("synced", False)],
            order_by=["detected_at"],
        )

    def mark_synced(self, sync_id: str, batch_id: str, rows_synced: Optional[int] = None) -> int:
        """Mark pending changes as synced by ``batch_id`` and advance the watermark."""
        now = to_iso(self._clock())
        count = self.datastore.update(
            CHANGE_LOG,
            {"synced": True, "synced_at": now, "sync_batch_id": batch_id},
            [eq("sync_id", sync_id), eq("synced", False)],
        )
        self.datastore.update(
            SYNC_STATE,
            {"last_sync_at": now, "rows_at_last_sync": rows_synced if rows_synced is not None else count},
            [eq("sync_id", sync_id)],
        )
        return count
