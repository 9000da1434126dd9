"""Ranged work items, worker registration and heartbeats."""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from ..datastore.base import Datastore, Filter, eq, in_, lt, WORK_QUEUE, WORKERS
from ..exceptions import DatastoreError
from ..models.migration import utcnow, to_iso
from ..models.queue import (
    WorkItem,
    WorkStatus,
    WorkType,
    Worker,
    WorkerStatus,
    WorkerType,
)

logger = logging.getLogger(__name__)

# handler(item) -> (succeeded, failed)
WorkHandler = Callable[[WorkItem], Tuple[int, int]]


class WorkCoordinator:
    """
    Splits table loads into claimable row ranges for a pool of workers.

    Claims are delegated to the datastore's atomic compare-and-set, so any
    number of processes can share one queue. A worker that misses
    ``missed_heartbeats`` consecutive heartbeats is treated as dead: it is
    marked ``error`` and its in-flight items go back to ``pending``.
    """

    def __init__(
        self,
        datastore: Datastore,
        heartbeat_interval: float = 30.0,
        missed_heartbeats: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.datastore = datastore
        self.heartbeat_interval = heartbeat_interval
        self.missed_heartbeats = missed_heartbeats
        self._clock = clock
        self._heartbeats: Dict[str, threading.Event] = {}

    @property
    def liveness_window(self) -> timedelta:
        return timedelta(seconds=self.heartbeat_interval * self.missed_heartbeats)

    def register(
        self,
        worker_name: str,
        worker_type: WorkerType = WorkerType.BATCH,
        start_heartbeat: bool = True,
    ) -> str:
        """
        Register a worker and start its heartbeat thread.

        Returns:
            The new worker id
        """
        worker = Worker(worker_name=worker_name, worker_type=WorkerType(worker_type), last_heartbeat=self._clock())
        self.datastore.insert(WORKERS, [worker.to_dict()])
        logger.info(f"Registered worker {worker_name} ({worker.worker_id})")

        if start_heartbeat:
            self._start_heartbeat(worker.worker_id)
        return worker.worker_id

    def _start_heartbeat(self, worker_id: str) -> None:
        stop = threading.Event()
        self._heartbeats[worker_id] = stop

        def beat():
            while not stop.wait(self.heartbeat_interval):
                try:
                    self.heartbeat(worker_id)
                except DatastoreError as e:
                    logger.warning(f"Heartbeat for worker {worker_id} failed: {e}")

        thread = threading.Thread(target=beat, name=f"heartbeat-{worker_id[:8]}", daemon=True)
        thread.start()

    def heartbeat(self, worker_id: str) -> None:
        """Refresh a worker's last heartbeat."""
        self.datastore.update(WORKERS, {"last_heartbeat": to_iso(self._clock())}, [eq("worker_id", worker_id)])

    def create_work_queue(
        self,
        batch_id: str,
        table: str,
        total_rows: int,
        chunk_size: int = 100,
        depends_on: Optional[List[str]] = None,
        work_type: WorkType = WorkType.LOAD,
        priority: int = 100,
    ) -> List[str]:
        """
        Partition [0, total_rows) into contiguous work items.

        Args:
            batch_id: Batch being loaded
            table: Target table
            total_rows: Number of source rows
            chunk_size: Rows per work item
            depends_on: Work ids that must complete before any of these items
            work_type: Kind of work
            priority: Lower values are claimed first

        Returns:
            Work ids in execution order
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")

        items = []
        for order, start in enumerate(range(0, total_rows, chunk_size)):
            items.append(WorkItem(
                batch_id=batch_id,
                target_table=table,
                row_range_start=start,
                row_range_end=min(start + chunk_size, total_rows),
                work_type=WorkType(work_type),
                depends_on=list(depends_on or []),
                priority=priority,
                execution_order=order,
                created_at=self._clock(),
            ))

        if items:
            self.datastore.insert(WORK_QUEUE, [i.to_dict() for i in items])
        logger.info(f"Created {len(items)} work items for {table} ({total_rows} rows)")
        return [i.work_id for i in items]

    def release_stale_work(self) -> int:
        """
        Return work held by dead workers to the queue.

        Returns:
            Number of work items released
        """
        cutoff = to_iso(self._clock() - self.liveness_window)
        stale = self.datastore.select(
            WORKERS,
            [
                in_("status", [WorkerStatus.IDLE.value, WorkerStatus.PROCESSING.value]),
                lt("last_heartbeat", cutoff),
            ],
        )

        released = 0
        for worker in stale:
            worker_id = worker["worker_id"]
            self.datastore.update(
                WORKERS,
                {"status": WorkerStatus.ERROR.value, "current_task": None},
                [eq("worker_id", worker_id)],
            )
            count = self.datastore.update(
                WORK_QUEUE,
                {"status": WorkStatus.PENDING.value, "assigned_worker_id": None, "started_at": None},
                [
                    eq("assigned_worker_id", worker_id),
                    in_("status", [WorkStatus.ASSIGNED.value, WorkStatus.PROCESSING.value]),
                ],
            )
            released += count
            logger.warning(f"Worker {worker['worker_name']} missed heartbeats; released {count} work items")

        return released

    def claim_work(self, worker_id: str, work_types: Optional[List[WorkType]] = None) -> Optional[WorkItem]:
        """Atomically claim the next eligible pending item, or None."""
        self.release_stale_work()
        types = [WorkType(t).value for t in work_types] if work_types else None
        row = self.datastore.claim_work_item(worker_id, types)
        if row is None:
            return None
        item = WorkItem.from_dict(row)
        logger.debug(f"Worker {worker_id} claimed {item.target_table} rows [{item.row_range_start}, {item.row_range_end})")
        return item

    def _held_by(self, work_id: str, worker_id: str) -> List[Filter]:
        return [
            eq("work_id", work_id),
            eq("assigned_worker_id", worker_id),
            in_("status", [WorkStatus.ASSIGNED.value, WorkStatus.PROCESSING.value]),
        ]

    def start_work(self, work_id: str, worker_id: str) -> bool:
        """Move a held item to processing. False when the worker no longer holds it."""
        updated = self.datastore.update(
            WORK_QUEUE,
            {"status": WorkStatus.PROCESSING.value},
            self._held_by(work_id, worker_id),
        )
        if not updated:
            logger.warning(f"Worker {worker_id} no longer holds work item {work_id}")
        return bool(updated)

    def _finish(self, work_id: str, worker_id: str, values: Dict, processed: int, failed: int) -> bool:
        values["completed_at"] = to_iso(self._clock())
        # Conditional on ownership so a released item cannot be finished by its previous holder
        if not self.datastore.update(WORK_QUEUE, values, self._held_by(work_id, worker_id)):
            logger.warning(f"Ignoring result from worker {worker_id} for work item {work_id} it no longer holds")
            return False

        worker = self.datastore.get_one(WORKERS, [eq("worker_id", worker_id)])
        if worker:
            self.datastore.update(
                WORKERS,
                {
                    "status": WorkerStatus.IDLE.value,
                    "current_task": None,
                    "rows_processed": worker.get("rows_processed", 0) + processed,
                    "rows_failed": worker.get("rows_failed", 0) + failed,
                    "last_heartbeat": to_iso(self._clock()),
                },
                [eq("worker_id", worker_id)],
            )
        return True

    def complete_work(self, work_id: str, worker_id: str, processed: int, succeeded: int, failed: int) -> bool:
        """
        Mark an item completed with its counts and return the worker to idle.

        Returns:
            False when ``worker_id`` no longer holds the item; nothing is changed
        """
        return self._finish(work_id, worker_id, {
            "status": WorkStatus.COMPLETED.value,
            "rows_processed": processed,
            "rows_succeeded": succeeded,
            "rows_failed": failed,
        }, processed, failed)

    def fail_work(self, work_id: str, worker_id: str, message: str) -> bool:
        """Mark a held item failed and return the worker to idle."""
        finished = self._finish(
            work_id, worker_id, {"status": WorkStatus.FAILED.value, "error_message": message}, 0, 0
        )
        if finished:
            logger.error(f"Work item {work_id} failed: {message}")
        return finished

    def shutdown(self, worker_id: str) -> None:
        """Stop the heartbeat and mark the worker shut down."""
        stop = self._heartbeats.pop(worker_id, None)
        if stop:
            stop.set()
        self.datastore.update(
            WORKERS,
            {"status": WorkerStatus.SHUTDOWN.value, "current_task": None},
            [eq("worker_id", worker_id)],
        )
        logger.info(f"Worker {worker_id} shut down")

    def get_worker(self, worker_id: str) -> Optional[Worker]:
        row = self.datastore.get_one(WORKERS, [eq("worker_id", worker_id)])
        return Worker.from_dict(row) if row else None

    def get_work_item(self, work_id: str) -> Optional[WorkItem]:
        row = self.datastore.get_one(WORK_QUEUE, [eq("work_id", work_id)])
        return WorkItem.from_dict(row) if row else None

    def run_worker(
        self,
        worker_id: str,
        handler: WorkHandler,
        work_types: Optional[List[WorkType]] = None,
        poll_interval: float = 1.0,
        max_poll_interval: float = 30.0,
        max_idle_polls: Optional[int] = None,
    ) -> int:
        """
        Claim and process items until the queue stays empty.

        Idle polls back off exponentially up to ``max_poll_interval``.
        ``max_idle_polls`` consecutive empty claims end the loop (None polls forever).

        Returns:
            Number of items processed
        """
        processed_items = 0
        idle_polls = 0
        delay = poll_interval

        while max_idle_polls is None or idle_polls < max_idle_polls:
            item = self.claim_work(worker_id, work_types)
            if item is None:
                idle_polls += 1
                if max_idle_polls is not None and idle_polls >= max_idle_polls:
                    break
                time.sleep(delay)
                delay = min(delay * 2, max_poll_interval)
                continue

            idle_polls = 0
            delay = poll_interval
            if not self.start_work(item.work_id, worker_id):
                continue
            try:
                succeeded, failed = handler(item)
            except Exception as e:
                finished = self.fail_work(item.work_id, worker_id, str(e))
            else:
                finished = self.complete_work(item.work_id, worker_id, item.row_count, succeeded, failed)
            if finished:
                processed_items += 1

        return processed_items
