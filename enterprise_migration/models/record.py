"""Source row and lineage models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple
import uuid

from .migration import utcnow, to_iso, parse_timestamp

_MISSING = object()


@dataclass
class ValidationError:
    """A validation error on a single field."""
    field: str
    message: str
    error_type: str = "validation"
    value: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "field": self.field,
            "message": self.message,
            "error_type": self.error_type,
            "value": self.value,
        }


class SourceRow(Mapping):
    """
    An untyped source row with explicit field presence.

    A column can be missing (never supplied by the source), present but null,
    or present with a value. ``get`` collapses the first two, ``has`` and
    ``is_null`` keep them apart.
    """

    def __init__(self, data: Mapping[str, Any], row_number: int = 0, source_id: Optional[str] = None):
        self._data = dict(data)
        self.row_number = row_number
        self.source_id = source_id

    def __getitem__(self, column: str) -> Any:
        return self._data[column]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"SourceRow(row={self.row_number}, columns={sorted(self._data)})"

    def has(self, column: str) -> bool:
        """True when the source supplied the column, even as null."""
        return column in self._data

    def is_null(self, column: str) -> bool:
        """True when the column is present with a null or blank value."""
        value = self._data.get(column, _MISSING)
        if value is _MISSING:
            return False
        return value is None or (isinstance(value, str) and value.strip() == "")

    def is_populated(self, column: str) -> bool:
        return self.has(column) and not self.is_null(column)

    def first_populated(self, *columns: str) -> Tuple[Optional[str], Any]:
        """Return the first populated column name and its value."""
        for column in columns:
            if self.is_populated(column):
                return column, self._data[column]
        return None, None

    @property
    def record_id(self) -> str:
        """Identifier used to pair rows during deduplication."""
        if self.source_id:
            return str(self.source_id)
        for key in ("id", "source_id", "staff_id", "employee_id"):
            if self.is_populated(key):
                return str(self._data[key])
        return f"row-{self.row_number}"

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)


@dataclass
class TransformationStep:
    """One transformation applied between source and target value."""
    step: int
    type: str
    before_hash: str
    after_hash: str
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "type": self.type,
            "before_hash": self.before_hash,
            "after_hash": self.after_hash,
            "parameters": self.parameters,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransformationStep":
        return cls(
            step=data.get("step", 1),
            type=data.get("type", ""),
            before_hash=data.get("before_hash", ""),
            after_hash=data.get("after_hash", ""),
            parameters=data.get("parameters") or {},
        )


@dataclass(frozen=True)
class LineageRecord:
    """Provenance of one target field value. Holds hashes, never raw values."""
    batch_id: str
    source_file: str
    source_row: int
    source_column: str
    source_value_hash: str
    target_table: str
    target_column: str
    target_value_hash: str
    transformations: Tuple[TransformationStep, ...] = ()
    target_row_id: Optional[str] = None
    validation_passed: bool = True
    validation_errors: Tuple[str, ...] = ()
    lineage_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a datastore row."""
        return {
            "lineage_id": self.lineage_id,
            "batch_id": self.batch_id,
            "source_file": self.source_file,
            "source_row": self.source_row,
            "source_column": self.source_column,
            "source_value_hash": self.source_value_hash,
            "transformations": [t.to_dict() for t in self.transformations],
            "target_table": self.target_table,
            "target_column": self.target_column,
            "target_row_id": self.target_row_id,
            "target_value_hash": self.target_value_hash,
            "validation_passed": self.validation_passed,
            "validation_errors": list(self.validation_errors),
            "created_at": to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LineageRecord":
        """Create from a datastore row."""
        steps: List[TransformationStep] = [
            TransformationStep.from_dict(t) for t in data.get("transformations") or []
        ]
        return cls(
            lineage_id=data["lineage_id"],
            batch_id=data["batch_id"],
            source_file=data.get("source_file", ""),
            source_row=data.get("source_row", 0),
            source_column=data.get("source_column", ""),
            source_value_hash=data.get("source_value_hash", ""),
            transformations=tuple(steps),
            target_table=data.get("target_table", ""),
            target_column=data.get("target_column", ""),
            target_row_id=data.get("target_row_id"),
            target_value_hash=data.get("target_value_hash", ""),
            validation_passed=data.get("validation_passed", True),
            validation_errors=tuple(data.get("validation_errors") or ()),
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
        )
