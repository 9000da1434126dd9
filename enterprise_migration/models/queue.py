"""Retry queue, work item and worker models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from .migration import utcnow, to_iso, parse_timestamp


class RetryStatus(str, Enum):
    """Status of a queued retry."""
    PENDING = "pending"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RetryStatus.SUCCEEDED, RetryStatus.EXHAUSTED, RetryStatus.CANCELLED)


@dataclass
class RetryQueueItem:
    """A failed operation waiting for another attempt."""
    batch_id: str
    operation: str
    target_table: str
    source_rows: List[int] = field(default_factory=list)
    error_code: str = ""
    error_message: str = ""
    attempt: int = 1
    max_attempts: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 300000
    next_retry_at: Optional[datetime] = None
    status: RetryStatus = RetryStatus.PENDING
    payload: Dict[str, Any] = field(default_factory=dict)
    retry_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    last_attempt_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a datastore row."""
        return {
            "retry_id": self.retry_id,
            "batch_id": self.batch_id,
            "operation": self.operation,
            "target_table": self.target_table,
            "source_rows": self.source_rows,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
            "base_delay_ms": self.base_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "next_retry_at": to_iso(self.next_retry_at),
            "status": self.status.value,
            "payload": self.payload,
            "created_at": to_iso(self.created_at),
            "last_attempt_at": to_iso(self.last_attempt_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetryQueueItem":
        """Create from a datastore row."""
        return cls(
            retry_id=data["retry_id"],
            batch_id=data["batch_id"],
            operation=data.get("operation", ""),
            target_table=data.get("target_table", ""),
            source_rows=list(data.get("source_rows") or []),
            error_code=data.get("error_code") or "",
            error_message=data.get("error_message") or "",
            attempt=data.get("attempt", 1),
            max_attempts=data.get("max_attempts", 5),
            base_delay_ms=data.get("base_delay_ms", 1000),
            max_delay_ms=data.get("max_delay_ms", 300000),
            next_retry_at=parse_timestamp(data.get("next_retry_at")),
            status=RetryStatus(data.get("status", RetryStatus.PENDING.value)),
            payload=data.get("payload") or {},
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
            last_attempt_at=parse_timestamp(data.get("last_attempt_at")),
        )


class WorkType(str, Enum):
    """Kinds of claimable work."""
    EXTRACT = "extract"
    TRANSFORM = "transform"
    VALIDATE = "validate"
    LOAD = "load"
    INDEX = "index"


class WorkStatus(str, Enum):
    """Status of a work item."""
    PENDING = "pending"
    ASSIGNED = "assigned"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class WorkItem:
    """A claimable half-open row range [start, end) of one table load."""
    batch_id: str
    target_table: str
    row_range_start: int
    row_range_end: int
    work_type: WorkType = WorkType.LOAD
    depends_on: List[str] = field(default_factory=list)
    assigned_worker_id: Optional[str] = None
    priority: int = 100
    execution_order: int = 0
    status: WorkStatus = WorkStatus.PENDING
    rows_processed: int = 0
    rows_succeeded: int = 0
    rows_failed: int = 0
    error_message: Optional[str] = None
    work_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def row_count(self) -> int:
        return self.row_range_end - self.row_range_start

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a datastore row."""
        return {
            "work_id": self.work_id,
            "batch_id": self.batch_id,
            "work_type": self.work_type.value,
            "target_table": self.target_table,
            "row_range_start": self.row_range_start,
            "row_range_end": self.row_range_end,
            "depends_on": self.depends_on,
            "assigned_worker_id": self.assigned_worker_id,
            "priority": self.priority,
            "execution_order": self.execution_order,
            "status": self.status.value,
            "rows_processed": self.rows_processed,
            "rows_succeeded": self.rows_succeeded,
            "rows_failed": self.rows_failed,
            "error_message": self.error_message,
            "created_at": to_iso(self.created_at),
            "started_at": to_iso(self.started_at),
            "completed_at": to_iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkItem":
        """Create from a datastore row."""
        return cls(
            work_id=data["work_id"],
            batch_id=data["batch_id"],
            work_type=WorkType(data.get("work_type", WorkType.LOAD.value)),
            target_table=data.get("target_table", ""),
            row_range_start=data.get("row_range_start", 0),
            row_range_end=data.get("row_range_end", 0),
            depends_on=list(data.get("depends_on") or []),
            assigned_worker_id=data.get("assigned_worker_id"),
            priority=data.get("priority", 100),
            execution_order=data.get("execution_order", 0),
            status=WorkStatus(data.get("status", WorkStatus.PENDING.value)),
            rows_processed=data.get("rows_processed", 0),
            rows_succeeded=data.get("rows_succeeded", 0),
            rows_failed=data.get("rows_failed", 0),
            error_message=data.get("error_message"),
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
            started_at=parse_timestamp(data.get("started_at")),
            completed_at=parse_timestamp(data.get("completed_at")),
        )


class WorkerType(str, Enum):
    BATCH = "batch"
    VALIDATION = "validation"
    TRANSFORM = "transform"
    LOAD = "load"


class WorkerStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    PAUSED = "paused"
    ERROR = "error"
    SHUTDOWN = "shutdown"


@dataclass
class Worker:
    """A registered worker process."""
    worker_name: str
    worker_type: WorkerType = WorkerType.BATCH
    status: WorkerStatus = WorkerStatus.IDLE
    current_task: Optional[str] = None
    rows_processed: int = 0
    rows_failed: int = 0
    last_heartbeat: datetime = field(default_factory=utcnow)
    worker_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a datastore row."""
        return {
            "worker_id": self.worker_id,
            "worker_name": self.worker_name,
            "worker_type": self.worker_type.value,
            "status": self.status.value,
            "current_task": self.current_task,
            "rows_processed": self.rows_processed,
            "rows_failed": self.rows_failed,
            "last_heartbeat": to_iso(self.last_heartbeat),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Worker":
        """Create from a datastore row."""
        return cls(
            worker_id=data["worker_id"],
            worker_name=data.get("worker_name", ""),
            worker_type=WorkerType(data.get("worker_type", WorkerType.BATCH.value)),
            status=WorkerStatus(data.get("status", WorkerStatus.IDLE.value)),
            current_task=data.get("current_task"),
            rows_processed=data.get("rows_processed", 0),
            rows_failed=data.get("rows_failed", 0),
            last_heartbeat=parse_timestamp(data.get("last_heartbeat")) or utcnow(),
        )
