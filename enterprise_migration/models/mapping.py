"""Field mapping, conditional rule and workflow models."""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class TransformType(str, Enum):
    """Built-in value transforms a mapping can name."""
    NORMALIZE_PHONE = "NORMALIZE_PHONE"
    CONVERT_DATE_TO_ISO = "CONVERT_DATE_TO_ISO"
    PARSE_NAME_FIRST = "PARSE_NAME_FIRST"
    PARSE_NAME_LAST = "PARSE_NAME_LAST"
    CONVERT_STATE_TO_CODE = "CONVERT_STATE_TO_CODE"
    UPPERCASE = "UPPERCASE"
    LOWERCASE = "LOWERCASE"
    TRIM = "TRIM"


@dataclass
class FieldMapping:
    """
    A mapping suggestion: source column to target table/column.

    Suggestions come from an external collaborator and are untrusted; the
    values they produce are validated independently.
    """
    source_column: str
    target_table: str
    target_column: str
    transform: Optional[str] = None
    confidence: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result = {
            "source_column": self.source_column,
            "target_table": self.target_table,
            "target_column": self.target_column,
            "confidence": self.confidence,
        }
        if self.transform:
            result["transform"] = self.transform
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldMapping":
        """Create from dictionary representation (snake_case or camelCase keys)."""
        return cls(
            source_column=data.get("source_column") or data.get("sourceColumn") or "",
            target_table=data.get("target_table") or data.get("targetTable") or "",
            target_column=data.get("target_column") or data.get("targetColumn") or "",
            transform=data.get("transform") or data.get("transform_id") or data.get("transformId"),
            confidence=float(data.get("confidence", 1.0)),
        )

    def with_target(
        self,
        target_table: Optional[str] = None,
        target_column: Optional[str] = None,
        transform: Optional[str] = None,
    ) -> "FieldMapping":
        """Copy with an overridden target or transform."""
        return FieldMapping(
            source_column=self.source_column,
            target_table=target_table or self.target_table,
            target_column=target_column or self.target_column,
            transform=transform or self.transform,
            confidence=self.confidence,
        )


class ConditionType(str, Enum):
    """Conditions a routing rule can test."""
    VALUE_EQUALS = "value_equals"
    VALUE_IN = "value_in"
    VALUE_MATCHES = "value_matches"
    VALUE_NOT_MATCHES = "value_not_matches"
    VALUE_RANGE = "value_range"
    VALUE_NULL = "value_null"
    VALUE_NOT_NULL = "value_not_null"


class ActionType(str, Enum):
    """What a matched routing rule does to the mapping."""
    MAP_TO_TABLE = "map_to_table"
    MAP_TO_COLUMN = "map_to_column"
    TRANSFORM = "transform"
    SKIP = "skip"
    FLAG_REVIEW = "flag_review"
    SPLIT = "split"


@dataclass
class RuleCondition:
    """Condition parameters. ``field`` defaults to the rule's source column."""
    type: str
    field: Optional[str] = None
    value: Optional[Any] = None
    values: List[Any] = dataclasses.field(default_factory=list)
    pattern: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "field": self.field,
            "value": self.value,
            "values": self.values,
            "pattern": self.pattern,
            "min": self.min,
            "max": self.max,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleCondition":
        return cls(
            type=data.get("type", ""),
            field=data.get("field"),
            value=data.get("value"),
            values=list(data.get("values") or []),
            pattern=data.get("pattern"),
            min=data.get("min"),
            max=data.get("max"),
        )


@dataclass
class ConditionalMappingRule:
    """A per-column rule that overrides or suppresses a mapping."""
    rule_id: str
    source_column: str
    condition: RuleCondition
    action_type: ActionType
    action_config: Dict[str, Any] = field(default_factory=dict)
    priority: int = 100
    rule_name: str = ""
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a datastore row."""
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "source_column": self.source_column,
            "condition": self.condition.to_dict(),
            "action_type": self.action_type.value,
            "action_config": self.action_config,
            "priority": self.priority,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConditionalMappingRule":
        """Create from a datastore row."""
        condition_data = dict(data.get("condition") or {})
        return cls(
            rule_id=data["rule_id"],
            rule_name=data.get("rule_name", ""),
            source_column=data["source_column"],
            condition=RuleCondition.from_dict(condition_data),
            action_type=ActionType(data["action_type"]),
            action_config=data.get("action_config") or {},
            priority=data.get("priority", 100),
            is_active=data.get("is_active", True),
        )


@dataclass
class RoutingDecision:
    """Outcome of evaluating a column's rules against one record."""
    matched: bool = False
    action_type: Optional[ActionType] = None
    action_config: Dict[str, Any] = field(default_factory=dict)
    rule_id: Optional[str] = None


class StepStatus(str, Enum):
    """Status of a table within a workflow execution."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class WorkflowStep:
    """A target table and the tables that must load before it."""
    order: int
    table: str
    depends_on: List[str] = field(default_factory=list)
    pk_column: Optional[str] = None
    fk_mappings: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order": self.order,
            "table": self.table,
            "depends_on": self.depends_on,
            "pk_column": self.pk_column,
            "fk_mappings": self.fk_mappings,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowStep":
        return cls(
            order=data.get("order", 0),
            table=data["table"],
            depends_on=list(data.get("depends_on") or data.get("dependsOn") or []),
            pk_column=data.get("pk_column") or data.get("pkColumn"),
            fk_mappings=dict(data.get("fk_mappings") or data.get("fkMappings") or {}),
        )


@dataclass
class WorkflowExecution:
    """Progress of one batch through a workflow template."""
    execution_id: str
    batch_id: str
    template_id: str
    steps: List[WorkflowStep]
    step_statuses: Dict[str, StepStatus]
    status: StepStatus = StepStatus.PENDING
    current_step: int = 0
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def is_finished(self) -> bool:
        return self.status in (StepStatus.COMPLETED, StepStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a datastore row."""
        return {
            "execution_id": self.execution_id,
            "batch_id": self.batch_id,
            "template_id": self.template_id,
            "steps": [s.to_dict() for s in self.steps],
            "step_statuses": {t: s.value for t, s in self.step_statuses.items()},
            "status": self.status.value,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "errors": self.errors,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowExecution":
        """Create from a datastore row."""
        return cls(
            execution_id=data["execution_id"],
            batch_id=data["batch_id"],
            template_id=data.get("template_id", ""),
            steps=[WorkflowStep.from_dict(s) for s in data.get("steps") or []],
            step_statuses={t: StepStatus(s) for t, s in (data.get("step_statuses") or {}).items()},
            status=StepStatus(data.get("status", StepStatus.PENDING.value)),
            current_step=data.get("current_step", 0),
            errors=data.get("errors") or {},
        )
