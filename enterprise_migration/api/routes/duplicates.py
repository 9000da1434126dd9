"""Duplicate candidate review endpoints."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from ...datastore.base import Datastore
from ...exceptions import DedupResolutionError
from ...models.quality import DedupResolution
from ...services.deduplicator import Deduplicator
from ..deps import get_datastore
from ..models import DedupResolveRequest, DuplicateListResponse

router = APIRouter()


@router.get("", response_model=DuplicateListResponse)
def list_pending(batch_id: Optional[str] = None, datastore: Datastore = Depends(get_datastore)):
    """Unresolved duplicate candidates, most similar first."""
    candidates = Deduplicator(datastore).pending_duplicates(batch_id)
    return DuplicateListResponse(candidates=[c.to_dict() for c in candidates], total=len(candidates))


@router.post("/{candidate_id}/resolve")
def resolve(
    candidate_id: str,
    data: DedupResolveRequest,
    datastore: Datastore = Depends(get_datastore),
) -> Dict[str, Any]:
    """Record the decision for a candidate."""
    try:
        candidate = Deduplicator(datastore).resolve_duplicate(
            candidate_id,
            DedupResolution(data.resolution.value),
            data.resolved_by,
            data.notes,
        )
    except DedupResolutionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return candidate.to_dict()
