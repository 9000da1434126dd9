"""Snapshot and rollback endpoints."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from ...datastore.base import Datastore
from ...exceptions import SnapshotError
from ...models.quality import SnapshotType
from ...services.snapshots import SnapshotManager
from ..deps import get_datastore
from ..models import RollbackRequest, SnapshotCreate, SnapshotListResponse

router = APIRouter()


@router.get("", response_model=SnapshotListResponse)
def list_snapshots(batch_id: Optional[str] = None, datastore: Datastore = Depends(get_datastore)):
    """List active snapshots, most recent first."""
    snapshots = SnapshotManager(datastore).list_snapshots(batch_id)
    return SnapshotListResponse(
        snapshots=[s.to_dict(include_data=False) for s in snapshots],
        total=len(snapshots),
    )


@router.post("", status_code=201)
def create_snapshot(data: SnapshotCreate, datastore: Datastore = Depends(get_datastore)) -> Dict[str, Any]:
    """Take a manual snapshot of tables."""
    try:
        snapshot_id = SnapshotManager(datastore).create_snapshot(
            data.tables,
            batch_id=data.batch_id,
            snapshot_type=SnapshotType.MANUAL,
            description=data.description,
            created_by=data.created_by,
        )
    except SnapshotError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"snapshot_id": snapshot_id}


@router.get("/{snapshot_id}")
def get_snapshot(snapshot_id: str, datastore: Datastore = Depends(get_datastore)) -> Dict[str, Any]:
    """Get snapshot metadata."""
    snapshot = SnapshotManager(datastore).get_snapshot(snapshot_id)
    if not snapshot:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    return snapshot.to_dict(include_data=False)


@router.post("/{snapshot_id}/rollback")
def rollback_snapshot(
    snapshot_id: str,
    data: RollbackRequest,
    datastore: Datastore = Depends(get_datastore),
) -> Dict[str, Any]:
    """Restore a snapshot; needs a requester and a different approver."""
    result = SnapshotManager(datastore).rollback(snapshot_id, data.reason, data.requested_by, data.approved_by)
    if not result.success:
        raise HTTPException(status_code=409, detail=result.to_dict())
    return result.to_dict()
