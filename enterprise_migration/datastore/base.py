"""Datastore interface the migration engine runs against."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
import logging

logger = logging.getLogger(__name__)

# Engine-owned tables
BATCHES = "migration_batch"
LINEAGE = "migration_data_lineage"
SNAPSHOTS = "migration_snapshots"
ROLLBACK_HISTORY = "migration_rollback_history"
RETRY_QUEUE = "migration_retry_queue"
WORK_QUEUE = "migration_work_queue"
WORKERS = "migration_workers"
DEDUP_CANDIDATES = "migration_dedup_candidates"
QUALITY_SCORES = "migration_quality_scores"
CONDITIONAL_RULES = "migration_conditional_mappings"
WORKFLOW_TEMPLATES = "migration_workflow_templates"
WORKFLOW_EXECUTIONS = "migration_workflow_executions"
SYNC_STATE = "migration_sync_state"
CHANGE_LOG = "migration_change_log"


class FilterOp(str, Enum):
    """Comparison operators a filter predicate can use."""
    EQ = "eq"
    NEQ = "neq"
    IN = "in"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    IS = "is"  # IS NULL / IS NOT NULL style checks against None, True or False


@dataclass(frozen=True)
class Filter:
    """A single column predicate; a filter list is AND-ed."""
    column: str
    op: FilterOp
    value: Any


def eq(column: str, value: Any) -> Filter:
    return Filter(column, FilterOp.EQ, value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, FilterOp.NEQ, value)


def in_(column: str, values: Sequence[Any]) -> Filter:
    return Filter(column, FilterOp.IN, list(values))


def lt(column: str, value: Any) -> Filter:
    return Filter(column, FilterOp.LT, value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, FilterOp.LTE, value)


def gt(column: str, value: Any) -> Filter:
    return Filter(column, FilterOp.GT, value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, FilterOp.GTE, value)


def is_(column: str, value: Optional[bool]) -> Filter:
    return Filter(column, FilterOp.IS, value)


class Datastore(ABC):
    """
    Request/response access to the transactional store.

    Table operations take AND-ed ``Filter`` lists and ``order_by`` column
    names, where a leading ``-`` sorts descending. The compound operations
    (snapshot, rollback, work claim, quality) are atomic at the store.
    All failures surface as ``DatastoreError``.
    """

    @abstractmethod
    def select(
        self,
        table: str,
        filters: Optional[List[Filter]] = None,
        order_by: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Read rows from a table.

        Args:
            table: Table name
            filters: Predicates every returned row satisfies
            order_by: Sort columns, ``-column`` for descending
            limit: Maximum rows to return

        Returns:
            List of row dictionaries
        """
        pass

    @abstractmethod
    def insert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert rows and return them as stored. All-or-nothing per call."""
        pass

    @abstractmethod
    def insert_if_absent(self, table: str, row: Dict[str, Any], key_column: str) -> bool:
        """Insert a row unless one with the same key exists. True if inserted."""
        pass

    @abstractmethod
    def update(self, table: str, values: Dict[str, Any], filters: List[Filter]) -> int:
        """Update matching rows; returns the number of rows changed."""
        pass

    @abstractmethod
    def upsert(self, table: str, rows: List[Dict[str, Any]], key_column: str) -> int:
        """Insert or replace rows keyed by ``key_column``."""
        pass

    @abstractmethod
    def delete(self, table: str, filters: List[Filter]) -> int:
        """Delete matching rows; returns the number of rows removed."""
        pass

    @abstractmethod
    def create_snapshot(
        self,
        tables: List[str],
        batch_id: Optional[str] = None,
        snapshot_type: str = "pre_migration",
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> str:
        """Capture the full contents of ``tables``; returns the snapshot id."""
        pass

    @abstractmethod
    def rollback_to_snapshot(
        self,
        snapshot_id: str,
        reason: str,
        requested_by: str,
        approved_by: str,
    ) -> Dict[str, Any]:
        """
        Restore every captured table to its snapshot contents in one transaction.

        Rows absent from the snapshot are deleted and snapshot rows restored.
        The snapshot is marked restored and a rollback history row written.

        Returns:
            Dict with ``rollback_id``, ``rows_restored`` and ``rows_deleted``
        """
        pass

    @abstractmethod
    def claim_work_item(
        self,
        worker_id: str,
        work_types: Optional[List[str]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Atomically assign the next eligible pending work item to a worker.

        Eligible items match ``work_types`` (any when None) and have every
        ``depends_on`` item completed. Candidates are ordered by priority,
        execution order, then creation time.
        """
        pass

    @abstractmethod
    def calculate_quality_score(self, batch_id: str) -> Dict[str, Any]:
        """Compute completeness, accuracy, consistency, uniqueness and overall scores."""
        pass

    def get_one(self, table: str, filters: List[Filter]) -> Optional[Dict[str, Any]]:
        """First matching row or None."""
        rows = self.select(table, filters, limit=1)
        return rows[0] if rows else None

    def validate_connection(self) -> bool:
        """Validate the connection to the store."""
        return True
