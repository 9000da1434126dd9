"""Retry queue endpoints."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from ...datastore.base import Datastore
from ...exceptions import RetryStateError
from ...models.queue import RetryStatus
from ...orchestrator import MigrationOrchestrator
from ...services.retry_queue import RetryQueue
from ..deps import get_datastore
from ..models import ProcessRetriesRequest, ProcessRetriesResponse, RetryListResponse, RetryStatusEnum

router = APIRouter()


@router.get("", response_model=RetryListResponse)
def list_retries(
    batch_id: Optional[str] = None,
    status: Optional[RetryStatusEnum] = None,
    datastore: Datastore = Depends(get_datastore),
):
    """List retry items, oldest first."""
    items = RetryQueue(datastore).list_items(batch_id, RetryStatus(status.value) if status else None)
    return RetryListResponse(items=[i.to_dict() for i in items], total=len(items))


@router.post("/process", response_model=ProcessRetriesResponse)
def process_retries(data: ProcessRetriesRequest, datastore: Datastore = Depends(get_datastore)):
    """Replay retry items that are due now."""
    counts = MigrationOrchestrator(datastore).process_retries(limit=data.limit)
    return ProcessRetriesResponse(**counts)


@router.post("/{retry_id}/cancel")
def cancel_retry(retry_id: str, datastore: Datastore = Depends(get_datastore)) -> Dict[str, Any]:
    """Cancel a pending retry item."""
    try:
        RetryQueue(datastore).cancel(retry_id)
    except RetryStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"status": "cancelled"}
