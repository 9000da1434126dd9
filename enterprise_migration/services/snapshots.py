"""Table snapshots and approved rollback."""

import logging
import time
from typing import List, Optional

from ..datastore.base import Datastore, eq, SNAPSHOTS
from ..exceptions import DatastoreError, SnapshotError
from ..models.quality import RollbackResult, Snapshot, SnapshotType

logger = logging.getLogger(__name__)


class SnapshotManager:
    """Captures tables before a risky run and restores them on request."""

    def __init__(self, datastore: Datastore):
        self.datastore = datastore

    def create_snapshot(
        self,
        tables: List[str],
        batch_id: Optional[str] = None,
        snapshot_type: SnapshotType = SnapshotType.PRE_MIGRATION,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> str:
        """
        Capture the full current contents of ``tables``.

        Returns:
            The new snapshot id

        Raises:
            SnapshotError: If the datastore could not take the snapshot
        """
        try:
            snapshot_id = self.datastore.create_snapshot(
                tables,
                batch_id=batch_id,
                snapshot_type=SnapshotType(snapshot_type).value,
                description=description,
                created_by=created_by,
            )
        except DatastoreError as e:
            raise SnapshotError(f"Failed to snapshot {', '.join(tables)}: {e}") from e

        logger.info(
            f"Created {SnapshotType(snapshot_type).value} snapshot {snapshot_id} of {len(tables)} tables",
            extra={"snapshot_id": snapshot_id, "batch_id": batch_id, "tables": tables},
        )
        return snapshot_id

    def rollback(
        self,
        snapshot_id: str,
        reason: str,
        requested_by: str,
        approved_by: str,
    ) -> RollbackResult:
        """
        Restore every table in a snapshot.

        A rollback is destructive, so it needs a requester and a different
        approver. Failures come back as ``success=False`` with an error
        rather than an exception.

        Args:
            snapshot_id: Active snapshot to restore
            reason: Why the rollback is needed (kept in history)
            requested_by: Identity asking for the rollback
            approved_by: Second identity approving it

        Returns:
            RollbackResult with restored/deleted row counts
        """
        started = time.monotonic()

        if not requested_by or not approved_by:
            return RollbackResult(success=False, error="Rollback requires both a requester and an approver")
        if requested_by == approved_by:
            return RollbackResult(success=False, error="Rollback approver must differ from the requester")

        logger.warning(
            f"Rollback of snapshot {snapshot_id} requested by {requested_by}, approved by {approved_by}: {reason}",
            extra={
                "snapshot_id": snapshot_id,
                "requested_by": requested_by,
                "approved_by": approved_by,
            },
        )

        try:
            result = self.datastore.rollback_to_snapshot(snapshot_id, reason, requested_by, approved_by)
        except DatastoreError as e:
            logger.error(f"Rollback of snapshot {snapshot_id} failed: {e}")
            return RollbackResult(
                success=False,
                error=str(e),
                duration_ms=int((time.monotonic() - started) * 1000),
            )

        rollback = RollbackResult(
            success=True,
            rollback_id=result.get("rollback_id"),
            rows_restored=result.get("rows_restored", 0),
            rows_deleted=result.get("rows_deleted", 0),
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        logger.warning(
            f"Rolled back snapshot {snapshot_id}: {rollback.rows_restored} rows restored, "
            f"{rollback.rows_deleted} rows deleted"
        )
        return rollback

    def list_snapshots(self, batch_id: Optional[str] = None) -> List[Snapshot]:
        """Active snapshots, most recent first."""
        filters = [eq("status", "active")]
        if batch_id:
            filters.append(eq("batch_id", batch_id))

        try:
            rows = self.datastore.select(SNAPSHOTS, filters, order_by=["-created_at"])
        except DatastoreError as e:
            logger.error(f"Failed to list snapshots: {e}")
            return []

        return [Snapshot.from_dict(r) for r in rows]

    def get_snapshot(self, snapshot_id: str) -> Optional[Snapshot]:
        row = self.datastore.get_one(SNAPSHOTS, [eq("snapshot_id", snapshot_id)])
        return Snapshot.from_dict(row) if row else None
