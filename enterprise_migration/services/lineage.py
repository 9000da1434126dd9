"""Field-level lineage tracking."""

import logging
from typing import Any, Dict, List, Optional

from ..datastore.base import Datastore, eq, LINEAGE
from ..exceptions import DatastoreError
from ..models.record import LineageRecord, TransformationStep
from .similarity import hash_value

logger = logging.getLogger(__name__)


def build_steps(
    transform: Optional[str],
    before: Any,
    after: Any,
    parameters: Optional[Dict[str, Any]] = None,
) -> List[TransformationStep]:
    """Transformation chain for a single transform, empty when none was applied."""
    if not transform:
        return []
    return [TransformationStep(
        step=1,
        type=transform,
        before_hash=hash_value(before),
        after_hash=hash_value(after),
        parameters=parameters or {},
    )]


class LineageTracker:
    """
    Buffers lineage records for one batch and writes them in bulk.

    Only content hashes of source and target values are kept, so lineage
    can prove where a value came from without storing raw PHI.
    """

    def __init__(
        self,
        datastore: Datastore,
        batch_id: str,
        source_file: str = "",
        flush_threshold: int = 100,
    ):
        self.datastore = datastore
        self.batch_id = batch_id
        self.source_file = source_file
        self.flush_threshold = flush_threshold
        self.records_created = 0
        self._buffer: List[LineageRecord] = []

    @property
    def pending(self) -> int:
        """Records buffered but not yet written."""
        return len(self._buffer)

    def record(
        self,
        row_number: int,
        source_column: str,
        source_value: Any,
        target_table: str,
        target_column: str,
        steps: Optional[List[TransformationStep]],
        target_value: Any,
        target_row_id: Optional[str] = None,
        valid: bool = True,
        errors: Optional[List[str]] = None,
    ) -> LineageRecord:
        """
        Buffer one lineage entry, flushing once the threshold is reached.

        Args:
            row_number: 1-based source row number
            source_column: Column read from the source row
            source_value: Raw source value (only its hash is kept)
            target_table: Table the value was mapped to
            target_column: Column the value was mapped to
            steps: Transformations applied, in order
            target_value: Value after transformation (only its hash is kept)
            target_row_id: Identifier of the staged target row
            valid: Whether the value passed field validation
            errors: Validation messages

        Returns:
            The buffered LineageRecord
        """
        entry = LineageRecord(
            batch_id=self.batch_id,
            source_file=self.source_file,
            source_row=row_number,
            source_column=source_column,
            source_value_hash=hash_value(source_value),
            target_table=target_table,
            target_column=target_column,
            target_value_hash=hash_value(target_value),
            transformations=tuple(steps or ()),
            target_row_id=target_row_id,
            validation_passed=valid,
            validation_errors=tuple(errors or ()),
        )
        self._buffer.append(entry)

        if len(self._buffer) >= self.flush_threshold:
            self.flush()

        return entry

    def flush(self) -> int:
        """Write buffered entries. Failures are logged and the buffer dropped."""
        if not self._buffer:
            return 0

        rows = [entry.to_dict() for entry in self._buffer]
        self._buffer = []

        try:
            self.datastore.insert(LINEAGE, rows)
        except DatastoreError as e:
            logger.error(f"Failed to flush {len(rows)} lineage records for batch {self.batch_id}: {e}")
            return 0

        self.records_created += len(rows)
        logger.debug(f"Flushed {len(rows)} lineage records")
        return len(rows)

    def trace_lineage(self, target_table: str, target_row_id: str) -> List[LineageRecord]:
        """
        Reconstruct the provenance of one target row from the durable store.

        Returns:
            Lineage records ordered by source row, then write order
        """
        rows = self.datastore.select(
            LINEAGE,
            [eq("target_table", target_table), eq("target_row_id", target_row_id)],
            order_by=["source_row", "created_at"],
        )
        return [LineageRecord.from_dict(r) for r in rows]
