"""
Enterprise migration orchestrator.

Composes the reliability services into one run:
snapshot -> dedup scan -> mapped load per table -> lineage flush ->
quality scoring -> result.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from .datastore.base import Datastore, eq, BATCHES
from .exceptions import DatastoreError, MigrationError
from .models.mapping import FieldMapping, WorkflowStep
from .models.migration import (
    BatchStatus,
    EnterpriseMigrationResult,
    MigrationBatch,
    MigrationOptions,
    RowError,
    utcnow,
    to_iso,
)
from .models.queue import RetryQueueItem, RetryStatus
from .models.record import SourceRow
from .services.conditional_router import ConditionalRouter, RoutedMapping
from .services.deduplicator import Deduplicator
from .services.lineage import LineageTracker, build_steps
from .services.quality import QualityScorer
from .services.retry_queue import RetryQueue
from .services.snapshots import SnapshotManager
from .services.transformer import ValueTransformer
from .services.validator import FieldValidator
from .services.workflow import WorkflowOrchestrator

logger = logging.getLogger(__name__)

UNMAPPED = "UNMAPPED"
RETRY_OPERATION = "batch_insert"


@dataclass
class _TableOutcome:
    """Counts for one table across all of its chunks."""
    success_count: int = 0
    error_count: int = 0
    retries_queued: int = 0
    errors: List[RowError] = field(default_factory=list)


@dataclass
class _StagedRow:
    row_number: int
    data: Dict[str, Any]


class MigrationOrchestrator:
    """
    Runs one batch of source rows into the target schema.

    Handles:
    - Pre-migration snapshot of every target table
    - Duplicate scan of the source rows
    - Per-record conditional routing, transformation and validation
    - Field-level lineage
    - Bulk insert with per-row isolation and retry queueing
    - Workflow gating of table order
    - Quality scoring of the finished batch
    """

    def __init__(
        self,
        datastore: Datastore,
        options: Optional[MigrationOptions] = None,
        transformer: Optional[ValueTransformer] = None,
        validator: Optional[FieldValidator] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            datastore: Target datastore, also holding migration bookkeeping
            options: Run options (defaults when omitted)
            transformer: Value transformer (built-ins when omitted)
            validator: Field validator (standard rules when omitted)
        """
        self.datastore = datastore
        self.options = options or MigrationOptions()
        self.options.validate()

        self.transformer = transformer or ValueTransformer()
        self.validator = validator or FieldValidator()

        self.snapshots = SnapshotManager(datastore)
        self.retry_queue = RetryQueue(
            datastore,
            max_attempts=self.options.max_retry_attempts,
            base_delay_ms=self.options.retry_base_delay_ms,
            max_delay_ms=self.options.retry_max_delay_ms,
        )
        self.deduplicator = Deduplicator(
            datastore,
            threshold=self.options.dedup_threshold,
            blocking=self.options.dedup_blocking,
        )
        self.quality = QualityScorer(datastore)
        self.router = ConditionalRouter(datastore)
        self.workflow = WorkflowOrchestrator(datastore)

    def run(
        self,
        rows: Sequence[Mapping[str, Any]],
        mappings: Sequence[FieldMapping],
        source_system: str,
        source_file: Optional[str] = None,
    ) -> EnterpriseMigrationResult:
        """
        Migrate ``rows`` through ``mappings``.

        Args:
            rows: Source rows in source order (row numbers start at 1)
            mappings: Suggested field mappings; treated as untrusted
            source_system: Name of the system the rows came from
            source_file: Source identifier recorded in lineage

        Returns:
            EnterpriseMigrationResult summarising the run
        """
        started = time.monotonic()
        opts = self.options
        source_rows = [self._as_source_row(r, i + 1) for i, r in enumerate(rows)]
        rows_by_number = {r.row_number: r for r in source_rows}
        mappings = [m if isinstance(m, FieldMapping) else FieldMapping.from_dict(m) for m in mappings]

        batch = MigrationBatch(
            source_system=source_system,
            organization_id=opts.organization_id,
            record_count=len(source_rows),
            status=BatchStatus.DRY_RUN if opts.dry_run else BatchStatus.PROCESSING,
        )
        result = EnterpriseMigrationResult(batch_id=batch.batch_id, total_records=len(source_rows))

        logger.info(
            f"Starting migration of {len(source_rows)} rows from {source_system} "
            f"(batch {batch.batch_id}, dry_run={opts.dry_run})"
        )

        # Routing reads rules only, so the plan is built before anything is written
        plan, flags = self._route(source_rows, mappings)
        result.flagged_for_review = flags
        tables = [t for t in plan if t != UNMAPPED]

        # Phase 1: Snapshot
        if opts.create_snapshot and not opts.dry_run and tables:
            logger.info("=== PHASE 1: SNAPSHOT ===")
            result.snapshot_id = self.snapshots.create_snapshot(
                tables,
                batch_id=batch.batch_id,
                description=f"Pre-migration snapshot for {source_system} import",
                created_by=opts.snapshot_created_by,
            )

        # Phase 2: Dedup scan
        if opts.enable_dedup and len(source_rows) > 1:
            logger.info("=== PHASE 2: DEDUP SCAN ===")
            try:
                candidates = self.deduplicator.find_duplicates(batch.batch_id, source_rows)
                result.duplicates_found = len(candidates)
            except DatastoreError as e:
                logger.error(f"Duplicate scan failed for batch {batch.batch_id}: {e}")

        self.datastore.insert(BATCHES, [batch.to_dict()])

        lineage = None
        if opts.enable_lineage:
            lineage = LineageTracker(
                self.datastore,
                batch.batch_id,
                source_file=source_file or f"{source_system}_{int(time.time() * 1000)}",
                flush_threshold=opts.lineage_flush_threshold,
            )

        # Phase 3: Load, gated by workflow when enabled
        logger.info("=== PHASE 3: LOAD ===")
        for table in self._table_order(batch.batch_id, tables, result):
            outcome = self._process_table(table, plan[table], rows_by_number, source_system, batch.batch_id, lineage)
            result.success_count += outcome.success_count
            result.error_count += outcome.error_count
            result.retries_queued += outcome.retries_queued
            result.errors.extend(outcome.errors)

            if opts.stop_on_error and outcome.error_count:
                logger.warning(f"Stopping after {table}: stop_on_error is set")
                break

        # Phase 4: Lineage flush
        if lineage is not None:
            lineage.flush()
            result.lineage_records_created = lineage.records_created

        # Finalize batch
        if not opts.dry_run:
            batch.status = BatchStatus.COMPLETED if result.error_count == 0 else BatchStatus.COMPLETED_WITH_ERRORS
        batch.success_count = result.success_count
        batch.error_count = result.error_count
        batch.completed_at = utcnow()
        batch.errors = [e.to_dict() for e in result.errors]
        self.datastore.update(
            BATCHES,
            {
                "status": batch.status.value,
                "success_count": batch.success_count,
                "error_count": batch.error_count,
                "completed_at": to_iso(batch.completed_at),
                "errors": batch.errors,
            },
            [eq("batch_id", batch.batch_id)],
        )
        result.status = batch.status

        # Phase 5: Quality
        if opts.enable_quality_scoring and not opts.dry_run:
            logger.info("=== PHASE 5: QUALITY ===")
            result.quality_score = self.quality.calculate_score(batch.batch_id)
            if result.quality_score.overall_score < opts.quality_warning_threshold:
                logger.warning(
                    f"Batch {batch.batch_id} quality {result.quality_score.overall_score} is below "
                    f"threshold {opts.quality_warning_threshold}"
                )

        elapsed = time.monotonic() - started
        result.processing_time_ms = int(elapsed * 1000)
        result.throughput_rows_per_second = round(len(source_rows) / elapsed, 2) if elapsed > 0 else 0.0

        logger.info(
            f"=== MIGRATION {batch.status.value.upper()} === {result.success_count} succeeded, "
            f"{result.error_count} failed, {result.retries_queued} retries queued "
            f"in {result.processing_time_ms}ms"
        )
        return result

    @staticmethod
    def _as_source_row(record: Mapping[str, Any], row_number: int) -> SourceRow:
        if isinstance(record, SourceRow):
            if not record.row_number:
                record.row_number = row_number
            return record
        return SourceRow(record, row_number=row_number)

    def _route(
        self,
        rows: List[SourceRow],
        mappings: List[FieldMapping],
    ) -> Tuple["OrderedDict[str, Dict[int, List[FieldMapping]]]", List[Dict[str, Any]]]:
        """
        Apply conditional routing to every (row, mapping) pair.

        Returns:
            table -> row number -> mappings for that row, in first-seen
            table order, plus the review flags raised along the way
        """
        plan: "OrderedDict[str, Dict[int, List[FieldMapping]]]" = OrderedDict()
        flags: List[Dict[str, Any]] = []

        for mapping in mappings:
            plan.setdefault(mapping.target_table, {})

        for row in rows:
            for mapping in mappings:
                if self.options.enable_conditional_routing:
                    routed = self.router.apply(mapping, row)
                else:
                    routed = RoutedMapping(mappings=[mapping])

                if routed.review_flag:
                    flags.append({"row": row.row_number, **routed.review_flag})

                for target in routed.mappings:
                    plan.setdefault(target.target_table, {}).setdefault(row.row_number, []).append(target)

        return plan, flags

    def _table_order(self, batch_id: str, tables: List[str], result: EnterpriseMigrationResult) -> Iterator[str]:
        """Yield tables to load, following the workflow template when enabled."""
        steps: Optional[List[WorkflowStep]] = None
        if self.options.use_workflow:
            steps = self.workflow.get_template(self.options.workflow_template)
            if steps is None:
                logger.warning(
                    f"Workflow template {self.options.workflow_template} not found, using mapping order"
                )

        if not steps:
            yield from tables
            return

        execution_id = self.workflow.create_execution(batch_id, self.options.workflow_template, steps)
        result.workflow_execution_id = execution_id
        templated = {s.table for s in steps}

        while True:
            step = self.workflow.wait_for_next_step(execution_id, timeout=self.options.workflow_poll_timeout)
            if step is None:
                break
            self.workflow.start_step(execution_id, step.table)
            if step.table in tables:
                yield step.table
            self.workflow.complete_step(execution_id, step.table)

        execution = self.workflow.get_execution(execution_id)
        if not execution.is_finished:
            message = f"Workflow execution {execution_id} stalled at step {execution.current_step}"
            logger.error(message)
            result.errors.append(RowError(row=0, field="WORKFLOW", error=message))
            return

        yield from (t for t in tables if t not in templated)

    def _process_table(
        self,
        table: str,
        row_mappings: Dict[int, List[FieldMapping]],
        rows_by_number: Dict[int, SourceRow],
        source_system: str,
        batch_id: str,
        lineage: Optional[LineageTracker],
    ) -> _TableOutcome:
        """Transform, validate and load every row routed to ``table``."""
        outcome = _TableOutcome()
        row_numbers = sorted(row_mappings)
        size = self.options.batch_size
        logger.info(f"Loading {len(row_numbers)} rows into {table}")

        for start in range(0, len(row_numbers), size):
            staged: List[_StagedRow] = []
            for row_number in row_numbers[start:start + size]:
                row = rows_by_number[row_number]
                data, errors = self._stage_row(table, row, row_mappings[row_number], source_system, batch_id, lineage)
                if errors:
                    outcome.error_count += 1
                    outcome.errors.extend(errors)
                else:
                    staged.append(_StagedRow(row_number, data))

            if staged:
                if self.options.dry_run or self.options.validate_only:
                    outcome.success_count += len(staged)
                else:
                    self._insert_chunk(table, staged, batch_id, outcome)

            if self.options.stop_on_error and outcome.error_count:
                break

        logger.info(f"{table}: {outcome.success_count} succeeded, {outcome.error_count} failed")
        return outcome

    def _stage_row(
        self,
        table: str,
        row: SourceRow,
        mappings: List[FieldMapping],
        source_system: str,
        batch_id: str,
        lineage: Optional[LineageTracker],
    ) -> Tuple[Dict[str, Any], List[RowError]]:
        """Build the target row for one source row, or the errors preventing it."""
        source_id = row.record_id
        data: Dict[str, Any] = {
            "organization_id": self.options.organization_id,
            "source_system": source_system,
            "source_id": source_id,
            "migration_batch_id": batch_id,
            "migration_status": "IMPORTED",
        }
        errors: List[RowError] = []
        context = {"batch_id": batch_id, "table": table, "row": row.row_number}

        for mapping in mappings:
            # Columns the source never supplied are skipped; present nulls are validated
            if not row.has(mapping.source_column):
                continue

            source_value = row[mapping.source_column]
            try:
                value = self.transformer.transform(
                    source_value, mapping.transform, data=row.to_dict(), context=context
                )
                error = self.validator.validate(mapping.target_column, value, table)
            except (ValueError, TypeError, MigrationError) as e:
                value = None
                error = str(e)

            if lineage is not None:
                lineage.record(
                    row.row_number,
                    mapping.source_column,
                    source_value,
                    table,
                    mapping.target_column,
                    build_steps(mapping.transform, source_value, value),
                    value,
                    target_row_id=source_id,
                    valid=error is None,
                    errors=[error] if error else None,
                )

            if error:
                errors.append(RowError(row.row_number, mapping.source_column, error))
            else:
                data[mapping.target_column] = value

        return data, errors

    def _insert_chunk(self, table: str, staged: List[_StagedRow], batch_id: str, outcome: _TableOutcome) -> None:
        """
        Bulk insert staged rows, isolating failures row by row.

        Rows that still fail with a transient error are queued as one retry
        item carrying their data; every row that failed counts as an error.
        """
        try:
            self.datastore.insert(table, [s.data for s in staged])
            outcome.success_count += len(staged)
            return
        except DatastoreError as e:
            logger.warning(f"Bulk insert of {len(staged)} rows into {table} failed, isolating rows: {e}")

        retryable: List[_StagedRow] = []
        last_error: Optional[DatastoreError] = None
        for s in staged:
            try:
                self.datastore.insert(table, [s.data])
                outcome.success_count += 1
            except DatastoreError as e:
                outcome.error_count += 1
                outcome.errors.append(RowError(s.row_number, "INSERT", str(e)))
                if e.transient:
                    retryable.append(s)
                    last_error = e

        if not retryable or not self.options.enable_retry:
            return

        try:
            self.retry_queue.enqueue(
                batch_id,
                RETRY_OPERATION,
                table,
                [s.row_number for s in retryable],
                last_error.code,
                str(last_error),
                payload={"rows": [s.data for s in retryable]},
            )
            outcome.retries_queued += 1
        except DatastoreError as e:
            logger.error(f"Failed to queue retry for {len(retryable)} rows of {table}: {e}")

    def process_retries(
        self,
        handler: Optional[Callable[[RetryQueueItem], None]] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, int]:
        """
        Replay due retry items.

        Args:
            handler: Replays one item; defaults to re-inserting its payload rows
            limit: Maximum items to claim

        Returns:
            Counts of claimed, succeeded, failed and exhausted items
        """
        handler = handler or self._replay_insert
        items = self.retry_queue.claim_due(limit) if limit else self.retry_queue.claim_due()
        counts = {"claimed": len(items), "succeeded": 0, "failed": 0, "exhausted": 0}

        for item in items:
            self.retry_queue.mark_started(item.retry_id)
            try:
                handler(item)
            except Exception as e:
                status = self.retry_queue.mark_failed(item.retry_id, str(e))
                key = "exhausted" if status == RetryStatus.EXHAUSTED else "failed"
                counts[key] += 1
                continue

            self.retry_queue.mark_succeeded(item.retry_id)
            counts["succeeded"] += 1
            self._credit_batch(item)

        if items:
            logger.info(
                f"Processed {len(items)} retries: {counts['succeeded']} succeeded, "
                f"{counts['failed']} failed, {counts['exhausted']} exhausted"
            )
        return counts

    def _replay_insert(self, item: RetryQueueItem) -> None:
        rows = item.payload.get("rows")
        if not rows:
            raise ValueError(f"Retry item {item.retry_id} carries no rows to insert")
        self.datastore.insert(item.target_table, rows)

    def _credit_batch(self, item: RetryQueueItem) -> None:
        """Move recovered rows from the batch's errors to its success count."""
        batch = self.datastore.get_one(BATCHES, [eq("batch_id", item.batch_id)])
        if batch is None:
            return
        recovered = len(item.source_rows)
        error_count = max(batch.get("error_count", 0) - recovered, 0)

        # One INSERT entry is dropped per recovered row
        outstanding = list(item.source_rows)
        errors = []
        for error in batch.get("errors") or []:
            if error.get("field") == "INSERT" and error.get("row") in outstanding:
                outstanding.remove(error["row"])
                continue
            errors.append(error)

        self.datastore.update(
            BATCHES,
            {
                "success_count": batch.get("success_count", 0) + recovered,
                "error_count": error_count,
                "errors": errors,
                "status": (BatchStatus.COMPLETED if error_count == 0 else BatchStatus.COMPLETED_WITH_ERRORS).value,
            },
            [eq("batch_id", item.batch_id)],
        )
