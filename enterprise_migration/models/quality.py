"""Snapshot, deduplication and quality models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from .migration import utcnow, to_iso, parse_timestamp


class SnapshotType(str, Enum):
    PRE_MIGRATION = "pre_migration"
    CHECKPOINT = "checkpoint"
    POST_MIGRATION = "post_migration"
    MANUAL = "manual"


class SnapshotStatus(str, Enum):
    ACTIVE = "active"
    RESTORED = "restored"
    EXPIRED = "expired"
    DELETED = "deleted"


@dataclass
class Snapshot:
    """Captured contents of one or more tables."""
    snapshot_id: str
    snapshot_name: str
    snapshot_type: SnapshotType
    tables: List[str]
    snapshot_data: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    batch_id: Optional[str] = None
    description: Optional[str] = None
    total_rows: int = 0
    size_bytes: int = 0
    status: SnapshotStatus = SnapshotStatus.ACTIVE
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    restored_at: Optional[datetime] = None

    def to_dict(self, include_data: bool = True) -> Dict[str, Any]:
        """Convert to a datastore row."""
        result = {
            "snapshot_id": self.snapshot_id,
            "snapshot_name": self.snapshot_name,
            "snapshot_type": self.snapshot_type.value,
            "tables": self.tables,
            "batch_id": self.batch_id,
            "description": self.description,
            "total_rows": self.total_rows,
            "size_bytes": self.size_bytes,
            "status": self.status.value,
            "created_by": self.created_by,
            "created_at": to_iso(self.created_at),
            "restored_at": to_iso(self.restored_at),
        }
        if include_data:
            result["snapshot_data"] = self.snapshot_data
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        """Create from a datastore row."""
        return cls(
            snapshot_id=data["snapshot_id"],
            snapshot_name=data.get("snapshot_name", ""),
            snapshot_type=SnapshotType(data.get("snapshot_type", SnapshotType.MANUAL.value)),
            tables=list(data.get("tables") or []),
            snapshot_data=data.get("snapshot_data") or {},
            batch_id=data.get("batch_id"),
            description=data.get("description"),
            total_rows=data.get("total_rows", 0),
            size_bytes=data.get("size_bytes", 0),
            status=SnapshotStatus(data.get("status", SnapshotStatus.ACTIVE.value)),
            created_by=data.get("created_by"),
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
            restored_at=parse_timestamp(data.get("restored_at")),
        )


@dataclass
class RollbackResult:
    """Outcome of restoring a snapshot."""
    success: bool
    rollback_id: Optional[str] = None
    rows_restored: int = 0
    rows_deleted: int = 0
    duration_ms: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "rollback_id": self.rollback_id,
            "rows_restored": self.rows_restored,
            "rows_deleted": self.rows_deleted,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


class DedupResolution(str, Enum):
    PENDING = "pending"
    MERGE_A = "merge_a"
    MERGE_B = "merge_b"
    KEEP_BOTH = "keep_both"
    MANUAL_REVIEW = "manual_review"
    AUTO_MERGED = "auto_merged"


@dataclass
class DedupCandidate:
    """A pair of source records that look like the same entity."""
    batch_id: str
    record_a_id: str
    record_b_id: str
    overall_similarity: float
    record_a_data: Dict[str, Any] = field(default_factory=dict)
    record_b_data: Dict[str, Any] = field(default_factory=dict)
    name_similarity: Optional[float] = None
    dob_match: Optional[bool] = None
    phone_similarity: Optional[float] = None
    email_similarity: Optional[float] = None
    match_method: str = "composite"
    resolution: DedupResolution = DedupResolution.PENDING
    requires_human_review: bool = True
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolved_at: Optional[datetime] = None
    candidate_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def pair_key(self) -> str:
        """Key identifying the unordered record pair within a batch."""
        low, high = sorted((self.record_a_id, self.record_b_id))
        return f"{self.batch_id}:{low}:{high}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a datastore row."""
        return {
            "candidate_id": self.candidate_id,
            "pair_key": self.pair_key,
            "batch_id": self.batch_id,
            "record_a_id": self.record_a_id,
            "record_a_data": self.record_a_data,
            "record_b_id": self.record_b_id,
            "record_b_data": self.record_b_data,
            "overall_similarity": self.overall_similarity,
            "name_similarity": self.name_similarity,
            "dob_match": self.dob_match,
            "phone_similarity": self.phone_similarity,
            "email_similarity": self.email_similarity,
            "match_method": self.match_method,
            "resolution": self.resolution.value,
            "requires_human_review": self.requires_human_review,
            "resolved_by": self.resolved_by,
            "resolution_notes": self.resolution_notes,
            "resolved_at": to_iso(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DedupCandidate":
        """Create from a datastore row."""
        return cls(
            candidate_id=data["candidate_id"],
            batch_id=data["batch_id"],
            record_a_id=data["record_a_id"],
            record_b_id=data["record_b_id"],
            overall_similarity=data.get("overall_similarity", 0.0),
            record_a_data=data.get("record_a_data") or {},
            record_b_data=data.get("record_b_data") or {},
            name_similarity=data.get("name_similarity"),
            dob_match=data.get("dob_match"),
            phone_similarity=data.get("phone_similarity"),
            email_similarity=data.get("email_similarity"),
            match_method=data.get("match_method", "composite"),
            resolution=DedupResolution(data.get("resolution", DedupResolution.PENDING.value)),
            requires_human_review=data.get("requires_human_review", True),
            resolved_by=data.get("resolved_by"),
            resolution_notes=data.get("resolution_notes"),
            resolved_at=parse_timestamp(data.get("resolved_at")),
        )


@dataclass
class QualityScore:
    """Composite post-migration quality score (sub-scores are 0-100)."""
    overall_score: float = 0.0
    completeness_score: float = 0.0
    accuracy_score: float = 0.0
    consistency_score: float = 0.0
    uniqueness_score: float = 0.0
    grade: str = "F"
    ready_for_production: bool = False
    recommendations: List[str] = field(default_factory=list)
    batch_id: Optional[str] = None
    calculated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "overall_score": self.overall_score,
            "completeness_score": self.completeness_score,
            "accuracy_score": self.accuracy_score,
            "consistency_score": self.consistency_score,
            "uniqueness_score": self.uniqueness_score,
            "grade": self.grade,
            "ready_for_production": self.ready_for_production,
            "recommendations": self.recommendations,
            "calculated_at": to_iso(self.calculated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QualityScore":
        return cls(
            batch_id=data.get("batch_id"),
            overall_score=float(data.get("overall_score", 0.0)),
            completeness_score=float(data.get("completeness_score", 0.0)),
            accuracy_score=float(data.get("accuracy_score", 0.0)),
            consistency_score=float(data.get("consistency_score", 0.0)),
            uniqueness_score=float(data.get("uniqueness_score", 0.0)),
            grade=data.get("grade", "F"),
            ready_for_production=bool(data.get("ready_for_production", False)),
            recommendations=list(data.get("recommendations") or []),
            calculated_at=parse_timestamp(data.get("calculated_at")) or utcnow(),
        )
