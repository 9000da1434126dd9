"""Command line interface for the enterprise migration engine."""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .datastore import create_datastore
from .exceptions import MigrationError
from .models.migration import DatastoreSettings, MigrationOptions
from .models.quality import DedupResolution
from .models.queue import RetryStatus
from .orchestrator import MigrationOrchestrator
from .services.deduplicator import Deduplicator
from .services.quality import QualityScorer
from .services.retry_queue import RetryQueue
from .services.snapshots import SnapshotManager
from .sources import SourceReader, load_mappings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Enterprise Migration - Load legacy data with lineage, snapshots and retries"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run migration
    run_parser = subparsers.add_parser("run", help="Run a migration")
    run_parser.add_argument("--source", required=True, help="Path to CSV, JSON or JSONL source file")
    run_parser.add_argument("--mappings", required=True, help="Path to mapping suggestions JSON file")
    run_parser.add_argument("--source-system", required=True, help="Name of the source system")
    run_parser.add_argument("--options", help="Path to migration options JSON file")
    run_parser.add_argument("--id-column", help="Source column holding the record id")
    run_parser.add_argument("--organization-id", help="Organization the rows belong to")
    run_parser.add_argument("--batch-size", type=int, help="Rows per insert batch")
    run_parser.add_argument("--dry-run", action="store_true", help="Simulate without changes")
    run_parser.add_argument("--validate-only", action="store_true", help="Validate without inserting")
    run_parser.add_argument("--output", help="Write the result JSON to this file")

    # Rollback
    rollback_parser = subparsers.add_parser("rollback", help="Restore a snapshot")
    rollback_parser.add_argument("snapshot_id", help="Snapshot to restore")
    rollback_parser.add_argument("--reason", required=True, help="Why the rollback is needed")
    rollback_parser.add_argument("--requested-by", required=True, help="Identity requesting the rollback")
    rollback_parser.add_argument("--approved-by", required=True, help="Second identity approving it")

    # Snapshots
    snapshots_parser = subparsers.add_parser("snapshots", help="List active snapshots")
    snapshots_parser.add_argument("--batch-id", help="Only snapshots of this batch")

    # Retries
    retries_parser = subparsers.add_parser("retries", help="List or process the retry queue")
    retries_parser.add_argument("--batch-id", help="Only items of this batch")
    retries_parser.add_argument("--status", choices=[s.value for s in RetryStatus], help="Only items in this status")
    retries_parser.add_argument("--process", action="store_true", help="Replay items that are due now")
    retries_parser.add_argument("--limit", type=int, help="Maximum items to process")

    # Duplicates
    dup_parser = subparsers.add_parser("duplicates", help="Review duplicate candidates")
    dup_parser.add_argument("--batch-id", help="Only candidates of this batch")
    dup_parser.add_argument("--resolve", metavar="CANDIDATE_ID", help="Resolve this candidate")
    dup_parser.add_argument(
        "--resolution",
        choices=[r.value for r in DedupResolution if r != DedupResolution.PENDING],
        help="Resolution to record",
    )
    dup_parser.add_argument("--resolved-by", help="Identity resolving the candidate")
    dup_parser.add_argument("--notes", help="Resolution notes")

    # Quality
    quality_parser = subparsers.add_parser("quality", help="Score a batch")
    quality_parser.add_argument("batch_id", help="Batch to score")
    quality_parser.add_argument("--history", action="store_true", help="Show stored scores instead")

    # API server
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    commands = {
        "run": run_migration,
        "rollback": run_rollback,
        "snapshots": list_snapshots,
        "retries": run_retries,
        "duplicates": run_duplicates,
        "quality": run_quality,
        "serve": run_server,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(args)
    except MigrationError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


def run_migration(args) -> int:
    """Run a migration from a source file and a mapping file."""
    options = MigrationOptions.from_json_file(args.options) if args.options else MigrationOptions()
    if args.dry_run:
        options.dry_run = True
    if args.validate_only:
        options.validate_only = True
    if args.batch_size:
        options.batch_size = args.batch_size
    if args.organization_id:
        options.organization_id = args.organization_id
    options.validate()

    rows = SourceReader(id_column=args.id_column).read(args.source)
    mappings = load_mappings(args.mappings)

    datastore = create_datastore(DatastoreSettings.from_env())
    orchestrator = MigrationOrchestrator(datastore, options)
    result = orchestrator.run(rows, mappings, args.source_system, source_file=args.source)

    print("\n" + "=" * 60)
    print("MIGRATION COMPLETE")
    print("=" * 60)
    print(f"Batch: {result.batch_id}")
    print(f"Status: {result.status.value}")
    print(f"Records: {result.total_records}")
    print(f"Succeeded: {result.success_count}")
    print(f"Failed: {result.error_count}")
    print(f"Retries Queued: {result.retries_queued}")
    print(f"Duplicates Found: {result.duplicates_found}")
    if result.snapshot_id:
        print(f"Snapshot: {result.snapshot_id}")
    if result.quality_score:
        print(f"Quality: {result.quality_score.overall_score} ({result.quality_score.grade})")
    print(f"Throughput: {result.throughput_rows_per_second} rows/s")

    for error in result.errors[:20]:
        print(f"  row {error.row} {error.field}: {error.error}")
    if len(result.errors) > 20:
        print(f"  ... {len(result.errors) - 20} more errors")

    if args.output:
        with open(args.output, "w") as f:
            json.dump(result.to_dict(), f, indent=2, default=str)
        print(f"Result saved to {args.output}")

    return 0 if result.error_count == 0 else 2


def run_rollback(args) -> int:
    """Restore a snapshot with two-person approval."""
    manager = SnapshotManager(create_datastore())
    result = manager.rollback(args.snapshot_id, args.reason, args.requested_by, args.approved_by)

    if not result.success:
        print(f"Rollback failed: {result.error}", file=sys.stderr)
        return 1

    print(f"Rollback {result.rollback_id} complete")
    print(f"Rows Restored: {result.rows_restored}")
    print(f"Rows Deleted: {result.rows_deleted}")
    print(f"Duration: {result.duration_ms}ms")
    return 0


def list_snapshots(args) -> int:
    """List active snapshots."""
    snapshots = SnapshotManager(create_datastore()).list_snapshots(args.batch_id)
    if not snapshots:
        print("No active snapshots")
        return 0

    print(f"\n=== {len(snapshots)} Snapshots ===")
    for s in snapshots:
        print(f"{s.snapshot_id}  {s.snapshot_name}  {s.snapshot_type.value}  "
              f"{', '.join(s.tables)}  ({s.total_rows} rows)")
    return 0


def run_retries(args) -> int:
    """List the retry queue, or replay due items."""
    datastore = create_datastore()

    if args.process:
        counts = MigrationOrchestrator(datastore).process_retries(limit=args.limit)
        print(json.dumps(counts, indent=2))
        return 0

    status = RetryStatus(args.status) if args.status else None
    items = RetryQueue(datastore).list_items(args.batch_id, status)
    print(f"\n=== {len(items)} Retry Items ===")
    for item in items:
        print(f"{item.retry_id}  {item.status.value:<10} attempt {item.attempt}/{item.max_attempts}  "
              f"{item.target_table} rows {item.source_rows}  {item.error_code}")
    return 0


def run_duplicates(args) -> int:
    """List pending duplicate candidates, or resolve one."""
    dedup = Deduplicator(create_datastore())

    if args.resolve:
        if not args.resolution or not args.resolved_by:
            print("--resolution and --resolved-by are required with --resolve", file=sys.stderr)
            return 1
        candidate = dedup.resolve_duplicate(
            args.resolve,
            DedupResolution(args.resolution),
            args.resolved_by,
            args.notes,
        )
        print(f"Candidate {candidate.candidate_id} resolved as {candidate.resolution.value}")
        return 0

    candidates = dedup.pending_duplicates(args.batch_id)
    print(f"\n=== {len(candidates)} Pending Duplicates ===")
    for c in candidates:
        review = "review" if c.requires_human_review else "auto"
        print(f"{c.candidate_id}  {c.record_a_id} ~ {c.record_b_id}  {c.overall_similarity:.2f}  {review}")
    return 0


def run_quality(args) -> int:
    """Score a batch, or show its stored scores."""
    scorer = QualityScorer(create_datastore())

    if args.history:
        scores = scorer.historical_scores(args.batch_id)
    else:
        scores = [scorer.calculate_score(args.batch_id)]

    for score in scores:
        print(json.dumps(score.to_dict(), indent=2, default=str))
    return 0


def run_server(args) -> int:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run("enterprise_migration.api.main:app", host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
