# catsync Batch Processor
# Volume-sensitive batching and sequential, rate-limited dispatch of queue items

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from catsync.sync.errors import NotFoundError, ReconciliationFailure, SyncError
from catsync.sync.events import EventKind, NullSink, ProgressSink, SyncEvent
from catsync.sync.queue import ExportQueue, ItemStatus, QueueItem
from catsync.sync.reconciler import DispatchedRow, StateReconciler
from catsync.sync.resources import RemoteCall, build_call, get_contract
from catsync.sync.retry import DispatchResult, ErrorKind, RetryManager
from catsync.sync.row import Operation

if TYPE_CHECKING:
    from catsync.remote.client import RemoteCatalog

logger = logging.getLogger(__name__)

# (max total items, batch size) pairs, checked in order
DEFAULT_VOLUME_TIERS: tuple[tuple[int, int], ...] = ((50, 10), (500, 50))


@dataclass
class BatchPolicy:
    """Batch sizing and pacing policy."""

    rate_limit_delay: float = 0.5
    volume_tiers: tuple[tuple[int, int], ...] = DEFAULT_VOLUME_TIERS
    bulk_batch_size: int = 250
    max_batch_size: int = 250

    def batch_size_for(self, total: int) -> int:
        """
        Batch size for a given total volume.

        Small volumes get small batches for quick feedback, bulk volumes
        get large batches. The result never exceeds ``max_batch_size``.
        """
        size = self.bulk_batch_size
        for limit, tier_size in self.volume_tiers:
            if total <= limit:
                size = tier_size
                break
        return max(1, min(size, self.max_batch_size))


@dataclass
class Batch:
    """Contiguous chunk of queue items."""

    number: int
    items: list[QueueItem]

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class ItemError:
    """Failure of a single item."""

    item_id: str
    row_id: str
    message: str
    error_kind: Optional[str] = None
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "item_id": self.item_id,
            "row_id": self.row_id,
            "message": self.message,
            "error_kind": self.error_kind,
            "attempts": self.attempts,
        }


@dataclass
class BatchResult:
    """Outcome of one batch."""

    batch_number: int
    succeeded: list[str] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    deleted: int = 0
    not_dispatched: int = 0
    fatal_error: Optional[str] = None
    reconciliation_error: Optional[str] = None
    elapsed_seconds: float = 0.0

    @property
    def success(self) -> bool:
        """A batch succeeds when no item failed."""
        return not self.errors and self.fatal_error is None

    @property
    def is_fatal(self) -> bool:
        return self.fatal_error is not None

    @property
    def processed(self) -> int:
        return len(self.succeeded) + len(self.errors)


@dataclass
class ProcessSummary:
    """Cumulative outcome over all processed batches."""

    total_batches: int = 0
    batches_processed: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    aborted: bool = False
    fatal_error: Optional[str] = None
    reconciliation_failures: int = 0
    elapsed_seconds: float = 0.0
    errors: list[ItemError] = field(default_factory=list)
    results: list[BatchResult] = field(default_factory=list)

    def add(self, result: BatchResult) -> None:
        """Fold a batch result into the totals."""
        self.results.append(result)
        self.batches_processed += 1
        self.processed += result.processed
        self.succeeded += len(result.succeeded)
        self.failed += len(result.errors)
        self.created += result.created
        self.updated += result.updated
        self.deleted += result.deleted
        self.errors.extend(result.errors)
        if result.reconciliation_error:
            self.reconciliation_failures += 1
        if result.fatal_error and self.fatal_error is None:
            self.fatal_error = result.fatal_error

    def counts(self) -> dict[str, int]:
        """Counts for progress events."""
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
        }


ProgressCallback = Callable[[ProcessSummary], None]


class BatchProcessor:
    """
    Dispatches queue items batch by batch.

    Items are sent strictly one at a time with a minimum delay between
    remote calls. Successful rows of a batch are reconciled together once
    the batch ends. Authentication failures and exhausted rate-limit
    retries abort the run, leaving undispatched items pending.
    """

    def __init__(
        self,
        remote: RemoteCatalog,
        retry_manager: RetryManager,
        reconciler: StateReconciler,
        *,
        dataset_id: str = "",
        queue: Optional[ExportQueue] = None,
        policy: Optional[BatchPolicy] = None,
        sink: Optional[ProgressSink] = None,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize batch processor.

        Args:
            remote: Remote catalog adapter.
            retry_manager: Retry manager wrapping each call.
            reconciler: Reconciler for successful rows.
            dataset_id: Dataset the queued rows belong to.
            queue: Queue whose item transitions are recorded, if any.
            policy: Batch sizing and pacing policy.
            sink: Receiver of progress events.
            sleep: Blocking sleep function.
            monotonic: Monotonic clock in seconds.
        """
        self.remote = remote
        self.retry_manager = retry_manager
        self.reconciler = reconciler
        self.dataset_id = dataset_id
        self.queue = queue
        self.policy = policy or BatchPolicy()
        self.sink = sink or NullSink()
        self._sleep = sleep
        self._monotonic = monotonic
        self._last_call_at: Optional[float] = None

    @property
    def session_id(self) -> str:
        return self.queue.session_id if self.queue is not None else ""

    # -------------------- batching --------------------

    def create_batches(self, items: Sequence[QueueItem], size: Optional[int] = None) -> list[Batch]:
        """
        Split items into contiguous batches preserving order.

        Args:
            items: Items in queue order.
            size: Explicit batch size. Defaults to the volume policy.

        Returns:
            List of batches numbered from 1.
        """
        if size is None:
            size = self.policy.batch_size_for(len(items))
        size = max(1, min(size, self.policy.max_batch_size))

        return [
            Batch(number=number, items=list(items[start : start + size]))
            for number, start in enumerate(range(0, len(items), size), start=1)
        ]

    # -------------------- processing --------------------

    def process_all(
        self,
        batches: Sequence[Batch],
        operation: Optional[Operation] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ProcessSummary:
        """
        Process batches in order.

        Args:
            batches: Batches to process.
            operation: Operation applied to every item. Defaults to each item's own.
            progress_callback: Called after each batch with cumulative totals.

        Returns:
            ProcessSummary of the processed batches.
        """
        summary = ProcessSummary(total_batches=len(batches))
        started = self._monotonic()

        for batch in batches:
            result = self.process_batch(batch, operation, total_batches=len(batches))
            summary.add(result)
            summary.elapsed_seconds = self._monotonic() - started

            if progress_callback is not None:
                progress_callback(summary)

            if result.is_fatal:
                summary.aborted = True
                logger.error(
                    "Aborting after batch %d/%d: %s",
                    batch.number,
                    len(batches),
                    result.fatal_error,
                )
                break

        summary.elapsed_seconds = self._monotonic() - started
        self.sink.emit(
            SyncEvent(
                kind=EventKind.SUMMARY,
                session_id=self.session_id,
                total_batches=summary.total_batches,
                batch_number=summary.batches_processed,
                counts=summary.counts(),
                elapsed_seconds=summary.elapsed_seconds,
                message=summary.fatal_error or "",
                details={"aborted": summary.aborted},
            )
        )
        return summary

    def process_batch(
        self,
        batch: Batch,
        operation: Optional[Operation] = None,
        *,
        total_batches: int = 0,
    ) -> BatchResult:
        """
        Dispatch every item of a batch, then reconcile the successes.

        Args:
            batch: Batch to process.
            operation: Operation applied to every item. Defaults to each item's own.
            total_batches: Total number of batches, for progress events.

        Returns:
            BatchResult with per-item outcomes.
        """
        result = BatchResult(batch_number=batch.number)
        started = self._monotonic()
        dispatched: list[DispatchedRow] = []
        completed: list[tuple[QueueItem, RemoteCall, DispatchResult]] = []

        self.sink.emit(
            SyncEvent(
                kind=EventKind.BATCH_START,
                session_id=self.session_id,
                batch_number=batch.number,
                total_batches=total_batches,
                counts={"items": len(batch)},
            )
        )
        logger.info("Processing batch %d (%d items)", batch.number, len(batch))

        for position, item in enumerate(batch.items):
            requested = operation if operation is not None else item.operation
            if item.row is None or requested is None:
                self._fail(item, result, f"Queue item {item.item_id} has no row or operation", None, 0)
                continue

            self._transition(item, ItemStatus.PROCESSING)
            snapshot = item.row.snapshot()

            try:
                call = build_call(snapshot, requested)
            except SyncError as e:
                self._fail(item, result, str(e), ErrorKind.FATAL.value, 0)
                continue

            dispatch = self._dispatch(call)

            if not dispatch.success and call.operation == Operation.DELETE and isinstance(dispatch.error, NotFoundError):
                logger.info("Row %s already deleted remotely", snapshot.row_id)
                dispatch = DispatchResult(success=True, attempts=dispatch.attempts, response={})

            if dispatch.success:
                dispatched.append(
                    DispatchedRow(
                        row=item.row,
                        snapshot=snapshot,
                        operation=call.operation,
                        remote_id=self._remote_id(call, dispatch.response),
                    )
                )
                completed.append((item, call, dispatch))
                continue

            self._fail(item, result, dispatch.error_message or "unknown error", dispatch.error_kind, dispatch.attempts)

            if dispatch.is_auth_failure or dispatch.is_quota_exhausted:
                reason = "authentication failed" if dispatch.is_auth_failure else "rate limit quota exhausted"
                result.fatal_error = f"{reason}: {dispatch.error_message}"
                result.not_dispatched = len(batch.items) - position - 1
                break

        self._reconcile(dispatched, completed, result)
        self._record_errors(result)

        result.elapsed_seconds = self._monotonic() - started
        self.sink.emit(
            SyncEvent(
                kind=EventKind.BATCH_COMPLETE,
                session_id=self.session_id,
                batch_number=batch.number,
                total_batches=total_batches,
                counts={
                    "succeeded": len(result.succeeded),
                    "failed": len(result.errors),
                    "not_dispatched": result.not_dispatched,
                },
                elapsed_seconds=result.elapsed_seconds,
                message=result.fatal_error or "",
            )
        )
        return result

    def _dispatch(self, call: RemoteCall) -> DispatchResult:
        self._throttle()
        try:
            return self.retry_manager.execute_with_retry(lambda: self.remote.send(call))
        finally:
            self._last_call_at = self._monotonic()

    def _throttle(self) -> None:
        """Wait until the minimum delay since the previous call has passed."""
        if self._last_call_at is None or self.policy.rate_limit_delay <= 0:
            return
        remaining = self.policy.rate_limit_delay - (self._monotonic() - self._last_call_at)
        if remaining > 0:
            self._sleep(remaining)

    def _remote_id(self, call: RemoteCall, response: Any) -> str:
        if call.operation != Operation.CREATE or not isinstance(response, dict):
            return ""
        body = response.get(get_contract(call.kind).wrapper)
        if isinstance(body, dict) and body.get("id") is not None:
            return str(body["id"])
        return ""

    def _reconcile(
        self,
        dispatched: list[DispatchedRow],
        completed: list[tuple[QueueItem, RemoteCall, DispatchResult]],
        result: BatchResult,
    ) -> None:
        reconciled = True
        if dispatched:
            try:
                self.reconciler.reconcile_after_success(self.dataset_id, dispatched)
            except ReconciliationFailure as e:
                reconciled = False
                result.reconciliation_error = str(e)
                logger.critical("Reconciliation failed for batch %d: %s", result.batch_number, e)

        for (item, call, dispatch), entry in zip(completed, dispatched):
            self._transition(
                item,
                ItemStatus.COMPLETED,
                {
                    "success": True,
                    "operation": call.operation.value,
                    "attempts": dispatch.attempts,
                    "remote_id": entry.remote_id or entry.row.id,
                    "reconciled": reconciled,
                },
            )
            result.succeeded.append(item.item_id)
            if call.operation == Operation.CREATE:
                result.created += 1
            elif call.operation == Operation.UPDATE:
                result.updated += 1
            elif call.operation == Operation.DELETE:
                result.deleted += 1

    def _fail(
        self,
        item: QueueItem,
        result: BatchResult,
        message: str,
        error_kind: Optional[str],
        attempts: int,
    ) -> None:
        row_id = item.row.row_id if item.row is not None else ""
        error = ItemError(item_id=item.item_id, row_id=row_id, message=message, error_kind=error_kind, attempts=attempts)
        result.errors.append(error)

        if item.status == ItemStatus.PENDING:
            self._transition(item, ItemStatus.PROCESSING)
        self._transition(item, ItemStatus.FAILED, {"success": False, **error.to_dict()})

        logger.warning("Row %s failed: %s", row_id or item.item_id, message)
        self.sink.emit(
            SyncEvent(
                kind=EventKind.ITEM_FAILED,
                session_id=self.session_id,
                batch_number=result.batch_number,
                message=message,
                details=error.to_dict(),
            )
        )

    def _record_errors(self, result: BatchResult) -> None:
        failures = [(error.row_id, error.message) for error in result.errors if error.row_id]
        if not failures:
            return
        try:
            self.reconciler.record_errors(self.dataset_id, failures)
        except Exception as e:
            logger.error("Could not record errors for batch %d: %s", result.batch_number, e)

    def _transition(self, item: QueueItem, status: ItemStatus, details: Optional[dict[str, Any]] = None) -> None:
        if self.queue is not None:
            self.queue.transition(item, status, details)
        else:
            item.status = status
            if details is not None:
                item.result = details
