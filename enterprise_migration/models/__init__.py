"""Data models for the migration engine."""

from .migration import (
    BatchStatus,
    MigrationBatch,
    MigrationOptions,
    DatastoreSettings,
    EnterpriseMigrationResult,
    RowError,
    utcnow,
)
from .record import (
    SourceRow,
    LineageRecord,
    TransformationStep,
    ValidationError,
)
from .mapping import (
    FieldMapping,
    TransformType,
    ConditionType,
    ActionType,
    RuleCondition,
    ConditionalMappingRule,
    RoutingDecision,
    StepStatus,
    WorkflowStep,
    WorkflowExecution,
)
from .queue import (
    RetryQueueItem,
    RetryStatus,
    WorkItem,
    WorkType,
    WorkStatus,
    Worker,
    WorkerType,
    WorkerStatus,
)
from .quality import (
    Snapshot,
    SnapshotType,
    SnapshotStatus,
    RollbackResult,
    DedupCandidate,
    DedupResolution,
    QualityScore,
)

__all__ = [
    "BatchStatus",
    "MigrationBatch",
    "MigrationOptions",
    "DatastoreSettings",
    "EnterpriseMigrationResult",
    "RowError",
    "utcnow",
    "SourceRow",
    "LineageRecord",
    "TransformationStep",
    "ValidationError",
    "FieldMapping",
    "TransformType",
    "ConditionType",
    "ActionType",
    "RuleCondition",
    "ConditionalMappingRule",
    "RoutingDecision",
    "StepStatus",
    "WorkflowStep",
    "WorkflowExecution",
    "RetryQueueItem",
    "RetryStatus",
    "WorkItem",
    "WorkType",
    "WorkStatus",
    "Worker",
    "WorkerType",
    "WorkerStatus",
    "Snapshot",
    "SnapshotType",
    "SnapshotStatus",
    "RollbackResult",
    "DedupCandidate",
    "DedupResolution",
    "QualityScore",
]
