"""Migration run and batch endpoints."""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from ...datastore.base import Datastore, eq, BATCHES
from ...exceptions import ConfigError, SnapshotError
from ...models.mapping import FieldMapping
from ...models.migration import MigrationOptions
from ...orchestrator import MigrationOrchestrator
from ...services.lineage import LineageTracker
from ..deps import get_datastore
from ..models import LineageResponse, MigrationRunRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/runs")
def run_migration(data: MigrationRunRequest, datastore: Datastore = Depends(get_datastore)) -> Dict[str, Any]:
    """Run a migration synchronously and return its result."""
    try:
        options = MigrationOptions.from_dict(data.options)
    except (ConfigError, TypeError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    mappings = [FieldMapping(**m.model_dump()) for m in data.mappings]
    orchestrator = MigrationOrchestrator(datastore, options)

    try:
        result = orchestrator.run(data.rows, mappings, data.source_system, data.source_file)
    except SnapshotError as e:
        logger.error(f"Migration aborted: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    return result.to_dict()


@router.get("/batches/{batch_id}")
def get_batch(batch_id: str, datastore: Datastore = Depends(get_datastore)) -> Dict[str, Any]:
    """Get a migration batch."""
    batch = datastore.get_one(BATCHES, [eq("batch_id", batch_id)])
    if not batch:
        raise HTTPException(status_code=404, detail="Batch not found")
    return batch


@router.get("/lineage/{target_table}/{target_row_id}", response_model=LineageResponse)
def trace_lineage(target_table: str, target_row_id: str, datastore: Datastore = Depends(get_datastore)):
    """Provenance of one target row."""
    tracker = LineageTracker(datastore, batch_id="")
    records = tracker.trace_lineage(target_table, target_row_id)
    return LineageResponse(
        target_table=target_table,
        target_row_id=target_row_id,
        records=[r.to_dict() for r in records],
    )
