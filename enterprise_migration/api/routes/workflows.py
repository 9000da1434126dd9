"""Workflow template and execution endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from ...datastore.base import Datastore
from ...exceptions import WorkflowError
from ...services.workflow import WorkflowOrchestrator
from ..deps import get_datastore

router = APIRouter()


@router.get("/templates/{template}")
def get_template(template: str, datastore: Datastore = Depends(get_datastore)) -> Dict[str, Any]:
    """Steps of an active template, by id or name."""
    steps = WorkflowOrchestrator(datastore).get_template(template)
    if steps is None:
        raise HTTPException(status_code=404, detail="Workflow template not found")
    return {"template": template, "steps": [s.to_dict() for s in steps]}


@router.get("/executions/{execution_id}")
def get_execution(execution_id: str, datastore: Datastore = Depends(get_datastore)) -> Dict[str, Any]:
    """Execution state, with the step runnable next."""
    workflow = WorkflowOrchestrator(datastore)
    try:
        execution = workflow.get_execution(execution_id)
    except WorkflowError as e:
        raise HTTPException(status_code=404, detail=str(e))

    next_step = workflow.get_next_step(execution_id)
    return {
        **execution.to_dict(),
        "next_step": next_step.to_dict() if next_step else None,
    }
