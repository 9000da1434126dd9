"""Durable retry queue with exponential backoff."""

import logging
import random
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ..datastore.base import Datastore, eq, in_, lte, RETRY_QUEUE
from ..exceptions import RetryStateError
from ..models.migration import utcnow, to_iso
from ..models.queue import RetryQueueItem, RetryStatus

logger = logging.getLogger(__name__)

CLAIM_LIMIT = 50
JITTER_FRACTION = 0.1


def backoff_delay_ms(attempt: int, base_delay_ms: int, max_delay_ms: int) -> int:
    """Un-jittered delay before retry number ``attempt`` (1-based): base * 2^(attempt-1), capped."""
    exponent = max(attempt - 1, 0)
    # Cap the exponent so huge attempt counts never build enormous ints
    delay = base_delay_ms * (2 ** min(exponent, 62))
    return min(delay, max_delay_ms)


def apply_jitter(delay_ms: int, max_delay_ms: int, rng: Callable[[], float] = random.random) -> int:
    """Spread a delay by +/-10%, never exceeding the cap or going negative."""
    spread = delay_ms * JITTER_FRACTION * (2 * rng() - 1)
    return int(min(max(delay_ms + spread, 0), max_delay_ms))


class RetryQueue:
    """
    Queue of failed operations retried with capped exponential backoff.

    The failure that enqueues an item counts as attempt 1. Each later
    failure increments the attempt; reaching ``max_attempts`` exhausts the
    item. Succeeded, exhausted and cancelled items are terminal.
    """

    def __init__(
        self,
        datastore: Datastore,
        max_attempts: int = 5,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 300000,
        clock: Callable[[], datetime] = utcnow,
        rng: Callable[[], float] = random.random,
    ):
        self.datastore = datastore
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._clock = clock
        self._rng = rng

    def _next_retry_at(self, attempt: int, base_delay_ms: int, max_delay_ms: int) -> datetime:
        delay = apply_jitter(backoff_delay_ms(attempt, base_delay_ms, max_delay_ms), max_delay_ms, self._rng)
        return self._clock() + timedelta(milliseconds=delay)

    def enqueue(
        self,
        batch_id: str,
        operation: str,
        target_table: str,
        affected_rows: List[int],
        error_code: str,
        error_message: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Queue a failed operation for retry.

        Args:
            batch_id: Batch the operation belongs to
            operation: Name of the failed operation (e.g. ``insert``)
            target_table: Table the operation wrote to
            affected_rows: 1-based source row numbers involved
            error_code: Machine-readable error code
            error_message: Error detail
            payload: Data needed to replay the operation

        Returns:
            The retry item id
        """
        item = RetryQueueItem(
            batch_id=batch_id,
            operation=operation,
            target_table=target_table,
            source_rows=list(affected_rows),
            error_code=error_code,
            error_message=error_message,
            attempt=1,
            max_attempts=self.max_attempts,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            next_retry_at=self._next_retry_at(1, self.base_delay_ms, self.max_delay_ms),
            payload=payload or {},
            created_at=self._clock(),
        )
        self.datastore.insert(RETRY_QUEUE, [item.to_dict()])
        logger.warning(
            f"Queued retry {item.retry_id} for {operation} on {target_table} ({len(item.source_rows)} rows)",
            extra={"retry_id": item.retry_id, "batch_id": batch_id, "error_code": error_code},
        )
        return item.retry_id

    def claim_due(self, limit: int = CLAIM_LIMIT) -> List[RetryQueueItem]:
        """Items due now, soonest first."""
        rows = self.datastore.select(
            RETRY_QUEUE,
            [
                in_("status", [RetryStatus.PENDING.value, RetryStatus.RETRYING.value]),
                lte("next_retry_at", to_iso(self._clock())),
            ],
            order_by=["next_retry_at"],
        )
        items = [RetryQueueItem.from_dict(r) for r in rows]
        return [i for i in items if i.attempt < i.max_attempts][:limit]

    def get(self, retry_id: str) -> RetryQueueItem:
        row = self.datastore.get_one(RETRY_QUEUE, [eq("retry_id", retry_id)])
        if row is None:
            raise RetryStateError(f"Retry item not found: {retry_id}")
        return RetryQueueItem.from_dict(row)

    def _transition(self, retry_id: str, values: Dict[str, Any]) -> RetryQueueItem:
        item = self.get(retry_id)
        if item.status.is_terminal:
            raise RetryStateError(f"Retry item {retry_id} is already {item.status.value}")
        self.datastore.update(RETRY_QUEUE, values, [eq("retry_id", retry_id)])
        return item

    def mark_started(self, retry_id: str) -> None:
        self._transition(retry_id, {
            "status": RetryStatus.RETRYING.value,
            "last_attempt_at": to_iso(self._clock()),
        })

    def mark_succeeded(self, retry_id: str) -> None:
        self._transition(retry_id, {"status": RetryStatus.SUCCEEDED.value})
        logger.info(f"Retry {retry_id} succeeded")

    def mark_failed(self, retry_id: str, message: str) -> RetryStatus:
        """
        Record another failed attempt.

        Returns:
            The item's new status, ``exhausted`` once attempts run out
        """
        item = self.get(retry_id)
        if item.status.is_terminal:
            raise RetryStateError(f"Retry item {retry_id} is already {item.status.value}")

        attempt = item.attempt + 1
        if attempt >= item.max_attempts:
            values = {
                "attempt": attempt,
                "status": RetryStatus.EXHAUSTED.value,
                "next_retry_at": None,
                "error_message": message,
            }
            logger.error(f"Retry {retry_id} exhausted after {attempt} attempts: {message}")
        else:
            next_at = self._next_retry_at(attempt, item.base_delay_ms, item.max_delay_ms)
            values = {
                "attempt": attempt,
                "status": RetryStatus.PENDING.value,
                "next_retry_at": to_iso(next_at),
                "error_message": message,
            }
            logger.warning(f"Retry {retry_id} attempt {item.attempt} failed, next at {to_iso(next_at)}")

        self.datastore.update(RETRY_QUEUE, values, [eq("retry_id", retry_id)])
        return RetryStatus(values["status"])

    def cancel(self, retry_id: str) -> None:
        self._transition(retry_id, {"status": RetryStatus.CANCELLED.value, "next_retry_at": None})

    def list_items(self, batch_id: Optional[str] = None, status: Optional[RetryStatus] = None) -> List[RetryQueueItem]:
        filters = []
        if batch_id:
            filters.append(eq("batch_id", batch_id))
        if status:
            filters.append(eq("status", RetryStatus(status).value))
        rows = self.datastore.select(RETRY_QUEUE, filters, order_by=["created_at"])
        return [RetryQueueItem.from_dict(r) for r in rows]
