"""Unit tests for workflow templates and executions."""

from unittest.mock import MagicMock, patch

import pytest

from enterprise_migration.exceptions import WorkflowError
from enterprise_migration.models.mapping import StepStatus, WorkflowStep
from enterprise_migration.services import workflow as workflow_module
from enterprise_migration.services.workflow import WorkflowOrchestrator


class FakeTimer:
    """Monotonic clock advanced only by sleeping."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def workflows(datastore, timer):
    return WorkflowOrchestrator(datastore, sleep=timer.sleep)


def abc_steps():
    return [
        WorkflowStep(order=3, table="C", depends_on=["B"]),
        WorkflowStep(order=1, table="A"),
        WorkflowStep(order=2, table="B", depends_on=["A"]),
    ]


def run_to_end(workflows, execution_id):
    order = []
    while True:
        step = workflows.get_next_step(execution_id)
        if step is None:
            return order
        workflows.start_step(execution_id, step.table)
        order.append(step.table)
        workflows.complete_step(execution_id, step.table)


class TestTemplates:
    """Test template storage and lookup."""

    def test_builtin_healthcare_template(self, workflows):
        steps = workflows.get_template("healthcare_staff_standard")

        assert [s.table for s in steps][:4] == ["hc_organization", "hc_facility", "hc_department", "hc_staff"]
        assert steps[3].depends_on == ["hc_organization", "hc_department"]

    def test_register_and_lookup_by_name_or_id(self, workflows):
        template_id = workflows.register_template("abc", abc_steps(), "three steps")

        by_name = workflows.get_template("abc")
        by_id = workflows.get_template(template_id)
        assert [s.table for s in by_name] == ["A", "B", "C"]
        assert by_id == by_name

    def test_unknown_template(self, workflows):
        assert workflows.get_template("nope") is None


class TestExecution:
    """Test dependency ordering of an execution."""

    def test_dependency_order(self, workflows):
        execution_id = workflows.create_execution("batch-1", "abc", abc_steps())

        assert run_to_end(workflows, execution_id) == ["A", "B", "C"]
        execution = workflows.get_execution(execution_id)
        assert execution.status == StepStatus.COMPLETED
        assert execution.current_step == 3

    def test_running_step_not_offered_again(self, workflows):
        execution_id = workflows.create_execution("batch-1", "abc", abc_steps())
        workflows.start_step(execution_id, "A")

        assert workflows.get_next_step(execution_id) is None

    def test_complete_is_idempotent(self, workflows):
        execution_id = workflows.create_execution("batch-1", "abc", abc_steps())
        workflows.start_step(execution_id, "A")
        workflows.complete_step(execution_id, "A")
        workflows.complete_step(execution_id, "A")

        assert workflows.get_execution(execution_id).current_step == 1
        assert workflows.get_next_step(execution_id).table == "B"

    def test_fail_step_finishes_execution(self, workflows):
        execution_id = workflows.create_execution("batch-1", "abc", abc_steps())
        workflows.start_step(execution_id, "A")
        workflows.fail_step(execution_id, "A", "insert rejected")

        execution = workflows.get_execution(execution_id)
        assert execution.status == StepStatus.FAILED
        assert execution.errors == {"A": "insert rejected"}
        assert workflows.get_next_step(execution_id) is None

    def test_unknown_table_rejected(self, workflows):
        execution_id = workflows.create_execution("batch-1", "abc", abc_steps())
        with pytest.raises(WorkflowError):
            workflows.start_step(execution_id, "Z")

    def test_unknown_execution(self, workflows):
        with pytest.raises(WorkflowError):
            workflows.get_execution("missing")


class TestWaitForNextStep:
    """Test polling for a runnable step."""

    def test_returns_immediately_when_runnable(self, workflows, timer):
        execution_id = workflows.create_execution("batch-1", "abc", abc_steps())

        assert workflows.wait_for_next_step(execution_id, timeout=10).table == "A"
        assert timer.sleeps == []

    def test_backs_off_until_timeout(self, workflows, timer):
        steps = [WorkflowStep(order=1, table="A", depends_on=["EXTERNAL"])]
        execution_id = workflows.create_execution("batch-1", "stalled", steps)

        fake_time = MagicMock()
        fake_time.monotonic.side_effect = timer.monotonic
        with patch.object(workflow_module, "time", fake_time):
            step = workflows.wait_for_next_step(execution_id, timeout=3.0)

        assert step is None
        assert timer.sleeps == [0.5, 1.0, 1.5]

    def test_finished_execution_returns_none(self, workflows):
        execution_id = workflows.create_execution("batch-1", "abc", abc_steps())
        run_to_end(workflows, execution_id)

        assert workflows.wait_for_next_step(execution_id, timeout=10) is None
