"""Quality score endpoints."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from ...datastore.base import Datastore
from ...services.quality import QualityScorer
from ..deps import get_datastore

router = APIRouter()


@router.get("/history")
def history(
    batch_id: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    datastore: Datastore = Depends(get_datastore),
) -> List[Dict[str, Any]]:
    """Recent quality scores, newest first."""
    return [s.to_dict() for s in QualityScorer(datastore).historical_scores(batch_id, limit)]


@router.post("/{batch_id}")
def calculate(batch_id: str, datastore: Datastore = Depends(get_datastore)) -> Dict[str, Any]:
    """Compute and grade a batch's quality score."""
    return QualityScorer(datastore).calculate_score(batch_id).to_dict()
