"""Thread-safe in-process datastore."""

import copy
import hashlib
import json
import logging
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from ..exceptions import DatastoreError
from ..models.migration import utcnow, to_iso
from .base import (
    Datastore,
    Filter,
    FilterOp,
    BATCHES,
    LINEAGE,
    SNAPSHOTS,
    ROLLBACK_HISTORY,
    WORK_QUEUE,
    WORKERS,
    DEDUP_CANDIDATES,
    QUALITY_SCORES,
    WORKFLOW_TEMPLATES,
)

logger = logging.getLogger(__name__)

HEALTHCARE_STAFF_STANDARD = [
    {"order": 1, "table": "hc_organization", "depends_on": [], "pk_column": "organization_id"},
    {"order": 2, "table": "hc_facility", "depends_on": ["hc_organization"], "pk_column": "facility_id",
     "fk_mappings": {"organization_id": "hc_organization.organization_id"}},
    {"order": 3, "table": "hc_department", "depends_on": ["hc_facility"], "pk_column": "department_id",
     "fk_mappings": {"facility_id": "hc_facility.facility_id"}},
    {"order": 4, "table": "hc_staff", "depends_on": ["hc_organization", "hc_department"], "pk_column": "staff_id",
     "fk_mappings": {"organization_id": "hc_organization.organization_id",
                     "primary_department_id": "hc_department.department_id"}},
    {"order": 5, "table": "hc_staff_license", "depends_on": ["hc_staff"], "pk_column": "license_id",
     "fk_mappings": {"staff_id": "hc_staff.staff_id"}},
    {"order": 6, "table": "hc_staff_credential", "depends_on": ["hc_staff"], "pk_column": "credential_id",
     "fk_mappings": {"staff_id": "hc_staff.staff_id"}},
    {"order": 7, "table": "hc_staff_privilege", "depends_on": ["hc_staff", "hc_facility"], "pk_column": "privilege_id",
     "fk_mappings": {"staff_id": "hc_staff.staff_id", "facility_id": "hc_facility.facility_id"}},
    {"order": 8, "table": "hc_staff_reporting", "depends_on": ["hc_staff"], "pk_column": "reporting_id",
     "fk_mappings": {"staff_id": "hc_staff.staff_id", "supervisor_id": "hc_staff.staff_id"}},
]

# Dedup resolutions that still count against uniqueness
_DUPLICATE_RESOLUTIONS = {"pending", "manual_review", "merge_a", "merge_b", "auto_merged"}
_EMPTY_HASH = hashlib.sha256(b"").hexdigest()


def _canonical(row: Dict[str, Any]) -> str:
    return json.dumps(row, sort_keys=True, default=str)


def _sort_key(value: Any):
    # None sorts last in ascending order
    return (value is None, value if value is not None else 0)


def _matches(row: Dict[str, Any], flt: Filter) -> bool:
    value = row.get(flt.column)
    op = flt.op
    if op == FilterOp.EQ:
        return value == flt.value
    if op == FilterOp.NEQ:
        return value != flt.value
    if op == FilterOp.IN:
        return value in flt.value
    if op == FilterOp.IS:
        return value is flt.value
    if value is None:
        return False
    if op == FilterOp.LT:
        return value < flt.value
    if op == FilterOp.LTE:
        return value <= flt.value
    if op == FilterOp.GT:
        return value > flt.value
    if op == FilterOp.GTE:
        return value >= flt.value
    raise DatastoreError(f"Unsupported filter operator: {op}", transient=False)


class InMemoryDatastore(Datastore):
    """
    Reference datastore holding every table in process memory.

    All operations run under one re-entrant lock, which makes the compound
    operations (snapshot, rollback, work claim) atomic for every thread in
    the process. Rows are deep-copied on the way in and out.
    """

    def __init__(self, seed_templates: bool = True, clock: Callable = utcnow):
        """
        Initialize the datastore.

        Args:
            seed_templates: If True, register the built-in workflow templates
            clock: Returns the current aware UTC datetime
        """
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._clock = clock
        if seed_templates:
            self._tables[WORKFLOW_TEMPLATES] = [{
                "template_id": "healthcare_staff_standard",
                "template_name": "healthcare_staff_standard",
                "description": "Standard workflow for healthcare staff migration with proper FK ordering",
                "workflow_steps": copy.deepcopy(HEALTHCARE_STAFF_STANDARD),
                "is_active": True,
            }]

    def _filtered(self, table: str, filters: Optional[List[Filter]]) -> List[Dict[str, Any]]:
        rows = self._tables.get(table, [])
        if not filters:
            return list(rows)
        return [r for r in rows if all(_matches(r, f) for f in filters)]

    def select(self, table, filters=None, order_by=None, limit=None):
        with self._lock:
            rows = self._filtered(table, filters)
            for column in reversed(order_by or []):
                descending = column.startswith("-")
                name = column.lstrip("-")
                rows.sort(key=lambda r: _sort_key(r.get(name)), reverse=descending)
            if limit is not None:
                rows = rows[:limit]
            return copy.deepcopy(rows)

    def insert(self, table, rows):
        with self._lock:
            stored = copy.deepcopy(list(rows))
            self._tables.setdefault(table, []).extend(stored)
            return copy.deepcopy(stored)

    def insert_if_absent(self, table, row, key_column):
        with self._lock:
            existing = self._tables.setdefault(table, [])
            key = row.get(key_column)
            if any(r.get(key_column) == key for r in existing):
                return False
            existing.append(copy.deepcopy(row))
            return True

    def update(self, table, values, filters):
        with self._lock:
            matched = self._filtered(table, filters)
            for row in matched:
                row.update(copy.deepcopy(values))
            return len(matched)

    def upsert(self, table, rows, key_column):
        with self._lock:
            existing = self._tables.setdefault(table, [])
            index = {r.get(key_column): i for i, r in enumerate(existing)}
            for row in rows:
                key = row.get(key_column)
                if key in index:
                    existing[index[key]] = copy.deepcopy(row)
                else:
                    index[key] = len(existing)
                    existing.append(copy.deepcopy(row))
            return len(rows)

    def delete(self, table, filters):
        with self._lock:
            rows = self._tables.get(table, [])
            doomed = {id(r) for r in self._filtered(table, filters)}
            self._tables[table] = [r for r in rows if id(r) not in doomed]
            return len(doomed)

    def create_snapshot(self, tables, batch_id=None, snapshot_type="pre_migration",
                        description=None, created_by=None):
        with self._lock:
            now = self._clock()
            data = {t: copy.deepcopy(self._tables.get(t, [])) for t in tables}
            snapshot_id = str(uuid.uuid4())
            self._tables.setdefault(SNAPSHOTS, []).append({
                "snapshot_id": snapshot_id,
                "snapshot_name": f"Snapshot_{now.strftime('%Y%m%d_%H%M%S')}",
                "snapshot_type": snapshot_type,
                "tables": list(tables),
                "snapshot_data": data,
                "batch_id": batch_id,
                "description": description,
                "total_rows": sum(len(r) for r in data.values()),
                "size_bytes": len(json.dumps(data, default=str).encode("utf-8")),
                "status": "active",
                "created_by": created_by,
                "created_at": to_iso(now),
                "restored_at": None,
            })
            return snapshot_id

    def rollback_to_snapshot(self, snapshot_id, reason, requested_by, approved_by):
        started = time.monotonic()
        with self._lock:
            snapshot = next(
                (s for s in self._tables.get(SNAPSHOTS, [])
                 if s["snapshot_id"] == snapshot_id and s["status"] == "active"),
                None,
            )
            if snapshot is None:
                raise DatastoreError("Snapshot not found or not active", transient=False,
                                     code="SNAPSHOT_NOT_FOUND")

            rows_restored = 0
            rows_deleted = 0
            restored_tables = {}
            for table in snapshot["tables"]:
                captured = snapshot["snapshot_data"].get(table, [])
                kept = {_canonical(r) for r in captured}
                rows_deleted += sum(
                    1 for r in self._tables.get(table, []) if _canonical(r) not in kept
                )
                rows_restored += len(captured)
                restored_tables[table] = copy.deepcopy(captured)

            # Nothing above can fail midway, so swap every table at once
            self._tables.update(restored_tables)

            now = self._clock()
            snapshot["status"] = "restored"
            snapshot["restored_at"] = to_iso(now)
            rollback_id = str(uuid.uuid4())
            self._tables.setdefault(ROLLBACK_HISTORY, []).append({
                "rollback_id": rollback_id,
                "snapshot_id": snapshot_id,
                "batch_id": snapshot.get("batch_id"),
                "tables_rolled_back": list(snapshot["tables"]),
                "reason": reason,
                "initiated_by": requested_by,
                "approved_by": approved_by,
                "rows_restored": rows_restored,
                "rows_deleted": rows_deleted,
                "status": "completed",
                "completed_at": to_iso(now),
            })
            return {
                "rollback_id": rollback_id,
                "rows_restored": rows_restored,
                "rows_deleted": rows_deleted,
                "duration_ms": int((time.monotonic() - started) * 1000),
            }

    def claim_work_item(self, worker_id, work_types=None):
        with self._lock:
            items = self._tables.get(WORK_QUEUE, [])
            status_by_id = {i["work_id"]: i["status"] for i in items}
            eligible = [
                i for i in items
                if i["status"] == "pending"
                and (not work_types or i["work_type"] in work_types)
                and all(status_by_id.get(dep) == "completed" for dep in i.get("depends_on") or [])
            ]
            if not eligible:
                return None
            eligible.sort(key=lambda i: (i["priority"], i["execution_order"], i["created_at"]))
            item = eligible[0]
            now = to_iso(self._clock())
            item["status"] = "assigned"
            item["assigned_worker_id"] = worker_id
            item["started_at"] = now
            for worker in self._tables.get(WORKERS, []):
                if worker["worker_id"] == worker_id:
                    worker["status"] = "processing"
                    worker["current_task"] = item["work_id"]
                    worker["last_heartbeat"] = now
            return copy.deepcopy(item)

    def calculate_quality_score(self, batch_id):
        with self._lock:
            batch = next((b for b in self._tables.get(BATCHES, []) if b["batch_id"] == batch_id), None)
            if batch is None:
                raise DatastoreError(f"Batch not found: {batch_id}", transient=False, code="BATCH_NOT_FOUND")

            lineage = [r for r in self._tables.get(LINEAGE, []) if r["batch_id"] == batch_id]
            if lineage:
                populated = sum(1 for r in lineage if r["target_value_hash"] != _EMPTY_HASH)
                passed = sum(1 for r in lineage if r["validation_passed"])
                completeness = populated / len(lineage) * 100
                consistency = passed / len(lineage) * 100
            else:
                completeness = 100.0
                consistency = 100.0

            attempted = batch["success_count"] + batch["error_count"]
            accuracy = batch["success_count"] / attempted * 100 if attempted else 0.0

            duplicates = sum(
                1 for c in self._tables.get(DEDUP_CANDIDATES, [])
                if c["batch_id"] == batch_id and c["resolution"] in _DUPLICATE_RESOLUTIONS
            )
            record_count = batch.get("record_count") or 0
            duplicate_rate = min(duplicates / record_count, 1.0) if record_count else 0.0
            uniqueness = (1 - duplicate_rate) * 100

            overall = completeness * 0.25 + accuracy * 0.30 + consistency * 0.20 + uniqueness * 0.25

            recommendations = []
            if completeness < 90:
                recommendations.append("Review and fill missing required fields")
            if accuracy < 90:
                recommendations.append("Fix validation errors before proceeding")
            if consistency < 90:
                recommendations.append("Standardize formats that failed field validation")
            if uniqueness < 90:
                recommendations.append("Resolve duplicate record candidates")

            result = {
                "batch_id": batch_id,
                "completeness_score": round(completeness, 2),
                "accuracy_score": round(accuracy, 2),
                "consistency_score": round(consistency, 2),
                "uniqueness_score": round(uniqueness, 2),
                "overall_score": round(overall, 2),
                "total_records": record_count,
                "records_with_issues": batch["error_count"],
                "recommendations": recommendations,
                "calculated_at": to_iso(self._clock()),
            }
            self._tables.setdefault(QUALITY_SCORES, []).append(copy.deepcopy(result))
            return result

    def table(self, name: str) -> List[Dict[str, Any]]:
        """Copy of a table's rows in insertion order."""
        with self._lock:
            return copy.deepcopy(self._tables.get(name, []))

