"""Dependency-ordered workflow templates and executions."""

import logging
import time
import uuid
from typing import Callable, List, Optional

from ..datastore.base import Datastore, eq, WORKFLOW_EXECUTIONS, WORKFLOW_TEMPLATES
from ..exceptions import WorkflowError
from ..models.mapping import StepStatus, WorkflowExecution, WorkflowStep

logger = logging.getLogger(__name__)


class WorkflowOrchestrator:
    """
    Sequences table loads by a template's dependency graph.

    A step is runnable when it is pending and every table it depends on is
    completed. Execution state lives in the datastore so several processes
    can follow the same execution.
    """

    def __init__(self, datastore: Datastore, sleep: Callable[[float], None] = time.sleep):
        self.datastore = datastore
        self._sleep = sleep

    def get_template(self, id_or_name: str) -> Optional[List[WorkflowStep]]:
        """Steps of an active template looked up by id or name, in order."""
        row = self.datastore.get_one(WORKFLOW_TEMPLATES, [eq("template_id", id_or_name), eq("is_active", True)])
        if row is None:
            row = self.datastore.get_one(WORKFLOW_TEMPLATES, [eq("template_name", id_or_name), eq("is_active", True)])
        if row is None:
            return None
        steps = [WorkflowStep.from_dict(s) for s in row.get("workflow_steps") or []]
        return sorted(steps, key=lambda s: s.order)

    def register_template(self, name: str, steps: List[WorkflowStep], description: str = "") -> str:
        """Store a template; returns its id."""
        template_id = str(uuid.uuid4())
        self.datastore.insert(WORKFLOW_TEMPLATES, [{
            "template_id": template_id,
            "template_name": name,
            "description": description,
            "workflow_steps": [s.to_dict() for s in steps],
            "is_active": True,
        }])
        return template_id

    def create_execution(self, batch_id: str, template_id: str, steps: List[WorkflowStep]) -> str:
        """Start tracking a batch through ``steps``; every table begins pending."""
        execution = WorkflowExecution(
            execution_id=str(uuid.uuid4()),
            batch_id=batch_id,
            template_id=template_id,
            steps=sorted(steps, key=lambda s: s.order),
            step_statuses={s.table: StepStatus.PENDING for s in steps},
        )
        self.datastore.insert(WORKFLOW_EXECUTIONS, [execution.to_dict()])
        logger.info(f"Created workflow execution {execution.execution_id} ({len(steps)} steps)")
        return execution.execution_id

    def get_execution(self, execution_id: str) -> WorkflowExecution:
        row = self.datastore.get_one(WORKFLOW_EXECUTIONS, [eq("execution_id", execution_id)])
        if row is None:
            raise WorkflowError(f"Workflow execution not found: {execution_id}")
        return WorkflowExecution.from_dict(row)

    def _save(self, execution: WorkflowExecution) -> None:
        data = execution.to_dict()
        self.datastore.update(
            WORKFLOW_EXECUTIONS,
            {
                "step_statuses": data["step_statuses"],
                "status": data["status"],
                "current_step": data["current_step"],
                "errors": data["errors"],
            },
            [eq("execution_id", execution.execution_id)],
        )

    def get_next_step(self, execution_id: str) -> Optional[WorkflowStep]:
        """First pending step whose dependencies are all completed, or None."""
        execution = self.get_execution(execution_id)
        if execution.is_finished:
            return None

        statuses = execution.step_statuses
        for step in execution.steps:
            if statuses.get(step.table) != StepStatus.PENDING:
                continue
            if all(statuses.get(dep) == StepStatus.COMPLETED for dep in step.depends_on):
                return step
        return None

    def _require_step(self, execution: WorkflowExecution, table: str) -> None:
        if table not in execution.step_statuses:
            raise WorkflowError(f"Table {table} is not a step of execution {execution.execution_id}")

    def start_step(self, execution_id: str, table: str) -> None:
        """Mark a step running so it is no longer offered by get_next_step."""
        execution = self.get_execution(execution_id)
        self._require_step(execution, table)
        execution.step_statuses[table] = StepStatus.RUNNING
        execution.status = StepStatus.RUNNING
        self._save(execution)

    def complete_step(self, execution_id: str, table: str) -> None:
        """Mark a step completed; the execution completes with its last step."""
        execution = self.get_execution(execution_id)
        self._require_step(execution, table)
        if execution.step_statuses[table] == StepStatus.COMPLETED:
            return

        execution.step_statuses[table] = StepStatus.COMPLETED
        execution.current_step += 1
        if all(s == StepStatus.COMPLETED for s in execution.step_statuses.values()):
            execution.status = StepStatus.COMPLETED
            logger.info(f"Workflow execution {execution_id} completed")
        else:
            execution.status = StepStatus.RUNNING
        self._save(execution)

    def fail_step(self, execution_id: str, table: str, error: str) -> None:
        """Mark a step, and with it the execution, failed."""
        execution = self.get_execution(execution_id)
        self._require_step(execution, table)
        execution.step_statuses[table] = StepStatus.FAILED
        execution.status = StepStatus.FAILED
        execution.errors[table] = error
        self._save(execution)
        logger.error(f"Workflow step {table} failed: {error}")

    def wait_for_next_step(
        self,
        execution_id: str,
        timeout: float = 0.0,
        initial_delay: float = 0.5,
        max_delay: float = 5.0,
    ) -> Optional[WorkflowStep]:
        """
        Poll get_next_step with exponential backoff.

        Returns:
            The next runnable step, or None when the execution has finished
            or nothing became runnable within ``timeout`` seconds
        """
        deadline = time.monotonic() + timeout
        delay = initial_delay

        while True:
            step = self.get_next_step(execution_id)
            if step is not None:
                return step
            if self.get_execution(execution_id).is_finished:
                return None
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            self._sleep(min(delay, remaining))
            delay = min(delay * 2, max_delay)
