"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum


class DedupResolutionEnum(str, Enum):
    MERGE_A = "merge_a"
    MERGE_B = "merge_b"
    KEEP_BOTH = "keep_both"
    MANUAL_REVIEW = "manual_review"
    AUTO_MERGED = "auto_merged"


class RetryStatusEnum(str, Enum):
    PENDING = "pending"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


# Request Models
class FieldMappingCreate(BaseModel):
    source_column: str
    target_table: str
    target_column: str
    transform: Optional[str] = None
    confidence: float = 1.0


class MigrationRunRequest(BaseModel):
    source_system: str
    rows: List[Dict[str, Any]]
    mappings: List[FieldMappingCreate]
    options: Dict[str, Any] = Field(default_factory=dict)
    source_file: Optional[str] = None


class SnapshotCreate(BaseModel):
    tables: List[str] = Field(..., min_length=1)
    batch_id: Optional[str] = None
    description: Optional[str] = None
    created_by: Optional[str] = None


class RollbackRequest(BaseModel):
    reason: str
    requested_by: str
    approved_by: str


class DedupResolveRequest(BaseModel):
    resolution: DedupResolutionEnum
    resolved_by: str
    notes: Optional[str] = None


class ProcessRetriesRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1)


# Response Models
class SnapshotListResponse(BaseModel):
    snapshots: List[Dict[str, Any]]
    total: int


class RetryListResponse(BaseModel):
    items: List[Dict[str, Any]]
    total: int


class DuplicateListResponse(BaseModel):
    candidates: List[Dict[str, Any]]
    total: int


class LineageResponse(BaseModel):
    target_table: str
    target_row_id: str
    records: List[Dict[str, Any]]


class ProcessRetriesResponse(BaseModel):
    claimed: int
    succeeded: int
    failed: int
    exhausted: int
