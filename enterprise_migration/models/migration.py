"""Migration batch, options and result models."""

import json
import os
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from dateutil import parser as date_parser

from ..exceptions import ConfigError


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC ISO timestamp, so stored values sort lexically."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp (datetime or ISO string) into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = date_parser.isoparse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class BatchStatus(str, Enum):
    """Status of a migration batch."""
    DRY_RUN = "dry_run"
    PROCESSING = "processing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.COMPLETED_WITH_ERRORS)


@dataclass
class MigrationBatch:
    """One migration run against the target schema."""
    batch_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    source_system: str = ""
    organization_id: Optional[str] = None
    record_count: int = 0
    status: BatchStatus = BatchStatus.PROCESSING
    success_count: int = 0
    error_count: int = 0
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a datastore row."""
        return {
            "batch_id": self.batch_id,
            "source_system": self.source_system,
            "organization_id": self.organization_id,
            "record_count": self.record_count,
            "status": self.status.value,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "started_at": to_iso(self.started_at),
            "completed_at": to_iso(self.completed_at),
            "errors": self.errors,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationBatch":
        """Create from a datastore row."""
        return cls(
            batch_id=data["batch_id"],
            source_system=data.get("source_system", ""),
            organization_id=data.get("organization_id"),
            record_count=data.get("record_count", 0),
            status=BatchStatus(data.get("status", BatchStatus.PROCESSING.value)),
            success_count=data.get("success_count", 0),
            error_count=data.get("error_count", 0),
            started_at=parse_timestamp(data.get("started_at")) or utcnow(),
            completed_at=parse_timestamp(data.get("completed_at")),
            errors=data.get("errors") or [],
        )


@dataclass
class RowError:
    """A failure recorded against one source row (1-based) and field."""
    row: int
    field: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"row": self.row, "field": self.field, "error": self.error}


@dataclass
class MigrationOptions:
    """Options for one enterprise migration run."""
    dry_run: bool = False
    validate_only: bool = False
    batch_size: int = 100
    organization_id: Optional[str] = None
    stop_on_error: bool = False

    # Lineage
    enable_lineage: bool = True
    lineage_flush_threshold: int = 100

    # Snapshots
    create_snapshot: bool = True
    snapshot_created_by: Optional[str] = None

    # Retries
    enable_retry: bool = True
    max_retry_attempts: int = 5
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 300000

    # Deduplication
    enable_dedup: bool = True
    dedup_threshold: float = 0.8
    dedup_blocking: bool = False

    # Quality
    enable_quality_scoring: bool = True
    quality_warning_threshold: float = 70.0

    # Routing and workflow
    enable_conditional_routing: bool = True
    use_workflow: bool = False
    workflow_template: str = "healthcare_staff_standard"
    workflow_poll_timeout: float = 0.0

    def validate(self) -> None:
        """Raise ConfigError on out-of-range values."""
        if self.batch_size <= 0:
            raise ConfigError(f"batch_size must be positive, got {self.batch_size}")
        if self.lineage_flush_threshold <= 0:
            raise ConfigError("lineage_flush_threshold must be positive")
        if self.max_retry_attempts < 1:
            raise ConfigError("max_retry_attempts must be at least 1")
        if self.retry_base_delay_ms < 0 or self.retry_max_delay_ms < self.retry_base_delay_ms:
            raise ConfigError("retry delays must satisfy 0 <= base <= max")
        if not 0.0 <= self.dedup_threshold <= 1.0:
            raise ConfigError(f"dedup_threshold must be within [0, 1], got {self.dedup_threshold}")
        if not 0.0 <= self.quality_warning_threshold <= 100.0:
            raise ConfigError("quality_warning_threshold must be within [0, 100]")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationOptions":
        """Create from dictionary representation, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown migration options: {', '.join(sorted(unknown))}")
        options = cls(**data)
        options.validate()
        return options

    @classmethod
    def from_json_file(cls, path: str) -> "MigrationOptions":
        """Load options from a JSON file."""
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read options file {path}: {e}") from e
        return cls.from_dict(data.get("options", data))


@dataclass
class DatastoreSettings:
    """Connection settings for a remote datastore."""
    url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = 30.0
    schema: str = "public"

    @classmethod
    def from_env(cls) -> "DatastoreSettings":
        """Read settings from MIGRATION_DATASTORE_* environment variables."""
        timeout = os.environ.get("MIGRATION_DATASTORE_TIMEOUT", "30")
        try:
            timeout_value = float(timeout)
        except ValueError:
            raise ConfigError(f"MIGRATION_DATASTORE_TIMEOUT is not a number: {timeout}")
        return cls(
            url=os.environ.get("MIGRATION_DATASTORE_URL"),
            api_key=os.environ.get("MIGRATION_DATASTORE_KEY"),
            timeout=timeout_value,
            schema=os.environ.get("MIGRATION_DATASTORE_SCHEMA", "public"),
        )

    @property
    def is_remote(self) -> bool:
        return bool(self.url)


@dataclass
class EnterpriseMigrationResult:
    """Summary returned to callers after a run."""
    batch_id: str
    total_records: int = 0
    success_count: int = 0
    error_count: int = 0
    errors: List[RowError] = field(default_factory=list)
    snapshot_id: Optional[str] = None
    lineage_records_created: int = 0
    retries_queued: int = 0
    duplicates_found: int = 0
    quality_score: Optional[Any] = None  # QualityScore
    workflow_execution_id: Optional[str] = None
    processing_time_ms: int = 0
    throughput_rows_per_second: float = 0.0
    flagged_for_review: List[Dict[str, Any]] = field(default_factory=list)
    status: BatchStatus = BatchStatus.PROCESSING

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "batch_id": self.batch_id,
            "status": self.status.value,
            "total_records": self.total_records,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "errors": [e.to_dict() for e in self.errors],
            "snapshot_id": self.snapshot_id,
            "lineage_records_created": self.lineage_records_created,
            "retries_queued": self.retries_queued,
            "duplicates_found": self.duplicates_found,
            "quality_score": self.quality_score.to_dict() if self.quality_score else None,
            "workflow_execution_id": self.workflow_execution_id,
            "processing_time_ms": self.processing_time_ms,
            "throughput_rows_per_second": self.throughput_rows_per_second,
            "flagged_for_review": self.flagged_for_review,
        }
