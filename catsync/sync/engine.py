# catsync Sync Orchestrator
# Top-level run/resume/cleanup coordination over detection, queueing and dispatch

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from catsync.logger import log_context
from catsync.sync.batch import BatchProcessor, ProcessSummary
from catsync.sync.detector import ChangeDetector, ChangeSet
from catsync.sync.errors import QueueCorruption, ReadinessError, SessionNotFound
from catsync.sync.events import NullSink, ProgressSink
from catsync.sync.queue import ExportQueue, PriorityTier, QueueItem, session_key, utc_now
from catsync.sync.reconciler import StateReconciler
from catsync.sync.retry import RetryManager
from catsync.sync.row import OWNER_RESOURCE_COLUMN, PRIORITY_COLUMN, ResourceKind, Row

if TYPE_CHECKING:
    from catsync.config.schema import CatsyncConfig, DatasetConfig
    from catsync.remote.client import ReadinessReport, RemoteCatalog
    from catsync.storage.kv import KeyValueStore
    from catsync.storage.table import TableStore

logger = logging.getLogger(__name__)

ACTIVE_KEY_PREFIX = "catsync:active:"


def active_key(dataset_id: str) -> str:
    """Key of the active-session marker for a dataset."""
    return f"{ACTIVE_KEY_PREFIX}{dataset_id}"


class RunStatus(str, Enum):
    """Terminal status of a run or resume."""

    NO_CHANGES = "no_changes"
    PREPARED = "prepared"
    COMPLETED = "completed"
    PARTIAL = "partial"
    BLOCKED = "blocked"
    FAILED = "failed"


@dataclass
class RunOptions:
    """Options for a single run."""

    prepare_only: bool = False
    default_tier: Optional[PriorityTier] = None
    batch_size: Optional[int] = None


@dataclass
class RunResult:
    """Outcome of ``run`` or ``resume``. Always returned, never raised."""

    status: RunStatus
    dataset_id: str = ""
    session_id: Optional[str] = None
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    unchanged: int = 0
    skipped: int = 0
    pending: int = 0
    fatal_error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    change_set: Optional[ChangeSet] = None
    readiness: Optional[ReadinessReport] = None
    summary: Optional[ProcessSummary] = None

    @property
    def success(self) -> bool:
        """Check if the run ended without failures."""
        return self.status in (RunStatus.NO_CHANGES, RunStatus.PREPARED, RunStatus.COMPLETED)

    @property
    def has_issues(self) -> bool:
        return self.failed > 0 or self.fatal_error is not None


@dataclass
class SessionSummary:
    """Progress and statistics of a persisted session."""

    session_id: str
    dataset_id: str
    created_at: str
    progress: dict[str, int]
    stats: dict[str, int]
    counts: dict[str, int]

    @property
    def is_complete(self) -> bool:
        return self.counts.get("pending", 0) == 0 and self.counts.get("processing", 0) == 0


class SyncOrchestrator:
    """
    Coordinates detection, queueing, dispatch and session persistence.

    One active session per dataset is enforced through a marker in the
    key/value store. Sessions are deleted after a fully successful pass and
    kept for ``resume`` otherwise.
    """

    def __init__(
        self,
        config: CatsyncConfig,
        table: TableStore,
        remote: RemoteCatalog,
        kv: KeyValueStore,
        *,
        sink: Optional[ProgressSink] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize orchestrator.

        Args:
            config: catsync configuration.
            table: Table store holding the datasets.
            remote: Remote catalog adapter.
            kv: Key/value store for sessions.
            sink: Receiver of progress events.
            sleep: Blocking sleep used for pacing and backoff.
            clock: Returns the current aware datetime.
            monotonic: Monotonic clock in seconds.
        """
        self.config = config
        self.table = table
        self.remote = remote
        self.kv = kv
        self.sink = sink or NullSink()
        self._sleep = sleep
        self._clock = clock
        self._monotonic = monotonic
        self.detector = ChangeDetector(config.detection.excluded_fields)
        self.priority_policy = config.priority.to_policy()

    # -------------------- public operations --------------------

    def detect(self, dataset_id: str) -> ChangeSet:
        """
        Classify the rows of a dataset without queueing anything.

        Raises:
            KeyError: If the table store doesn't know the dataset.
        """
        rows = self.table.read_rows(dataset_id)
        self._apply_dataset_defaults(rows, self.config.get_dataset(dataset_id))
        return self.detector.classify(rows)

    def run(self, dataset_id: str, options: Optional[RunOptions] = None) -> RunResult:
        """
        Detect changes and dispatch them.

        Args:
            dataset_id: Dataset to synchronize.
            options: Run options.

        Returns:
            RunResult. Errors are reported in it, never raised.
        """
        options = options or RunOptions()
        result = RunResult(status=RunStatus.FAILED, dataset_id=dataset_id)
        try:
            return self._run(dataset_id, options, result)
        except Exception as e:
            logger.exception("Run for %s failed", dataset_id)
            result.status = RunStatus.FAILED
            result.fatal_error = str(e)
            return result

    def resume(self, session_id: str, retry_failed: bool = False, batch_size: Optional[int] = None) -> RunResult:
        """
        Continue a persisted session from its pending items.

        Args:
            session_id: Session to resume.
            retry_failed: Return failed items to pending first.
            batch_size: Explicit batch size.

        Returns:
            RunResult. Errors are reported in it, never raised.
        """
        result = RunResult(status=RunStatus.FAILED, session_id=session_id)
        try:
            return self._resume(session_id, retry_failed, batch_size, result)
        except Exception as e:
            logger.exception("Resume of session %s failed", session_id)
            result.status = RunStatus.FAILED
            result.fatal_error = str(e)
            return result

    def cleanup(self, session_id: str) -> bool:
        """
        Delete a persisted session and its active-session marker.

        Returns:
            True if a session was stored under the id.
        """
        existed = self.kv.get(session_key(session_id)) is not None
        dataset_id = ""
        try:
            dataset_id = ExportQueue.load(self.kv, session_id).dataset_id
        except (SessionNotFound, QueueCorruption):
            pass

        self.kv.delete(session_key(session_id))

        candidates = [dataset_id] if dataset_id else list(self.config.datasets)
        for candidate in candidates:
            if self.kv.get(active_key(candidate)) == session_id:
                self.kv.delete(active_key(candidate))

        if existed:
            logger.info("Cleaned up session %s", session_id)
        return existed

    def get_summary(self, session_id: str) -> SessionSummary:
        """
        Summarize a persisted session.

        Raises:
            SessionNotFound: If no session is stored under the id.
            QueueCorruption: If the stored session cannot be parsed.
        """
        queue = ExportQueue.load(self.kv, session_id, policy=self.priority_policy, clock=self._clock)
        return SessionSummary(
            session_id=queue.session_id,
            dataset_id=queue.dataset_id,
            created_at=queue.created_at,
            progress=queue.progress,
            stats=dict(queue.stats),
            counts=queue.counts(),
        )

    def active_session(self, dataset_id: str) -> Optional[str]:
        """Session currently holding the dataset, if any."""
        session_id = self.kv.get(active_key(dataset_id))
        if session_id and self.kv.get(session_key(session_id)) is not None:
            return session_id
        if session_id:
            # Marker outlived its session
            self.kv.delete(active_key(dataset_id))
        return None

    # -------------------- run steps --------------------

    def _run(self, dataset_id: str, options: RunOptions, result: RunResult) -> RunResult:
        dataset = self.config.get_dataset(dataset_id)
        change_set = self.detect(dataset_id)

        result.change_set = change_set
        result.unchanged = len(change_set.unchanged)
        result.skipped = len(change_set.skipped)
        result.warnings.extend(change_set.warnings)

        if change_set.is_empty:
            logger.info("No changes in %s", dataset_id)
            result.status = RunStatus.NO_CHANGES
            return result

        try:
            self._ensure_ready(result, dataset_id)
        except ReadinessError as e:
            result.status = RunStatus.BLOCKED
            result.fatal_error = str(e)
            return result

        threshold = self.config.safety.volume_alert_threshold
        if threshold and change_set.total_changes > threshold:
            warning = f"{change_set.total_changes} rows will be modified (alert threshold {threshold})"
            logger.warning(warning)
            result.warnings.append(warning)

        queue = self._build_queue(dataset_id, change_set, dataset, options)
        result.session_id = queue.session_id

        violations = queue.validate_integrity()
        if violations:
            raise QueueCorruption("New queue failed integrity validation", violations)

        queue.persist()
        self.kv.set(active_key(dataset_id), queue.session_id)
        result.pending = queue.counts()["pending"]
        logger.info("Session %s queued %d item(s) for %s", queue.session_id, result.pending, dataset_id)

        if options.prepare_only:
            result.status = RunStatus.PREPARED
            return result

        return self._drive(queue, result, options.batch_size)

    def _resume(
        self,
        session_id: str,
        retry_failed: bool,
        batch_size: Optional[int],
        result: RunResult,
    ) -> RunResult:
        try:
            queue = ExportQueue.load(self.kv, session_id, policy=self.priority_policy, clock=self._clock)
        except SessionNotFound as e:
            result.fatal_error = str(e)
            return result
        except QueueCorruption as e:
            self.cleanup(session_id)
            result.fatal_error = f"Session discarded: {e}"
            return result

        result.dataset_id = queue.dataset_id

        violations = queue.validate_integrity()
        if violations:
            logger.error("Session %s failed integrity validation: %s", session_id, "; ".join(violations))
            self.cleanup(session_id)
            result.fatal_error = f"Session discarded, {len(violations)} integrity violation(s): {violations[0]}"
            result.warnings.extend(violations)
            return result

        try:
            self._ensure_ready(result)
        except ReadinessError as e:
            result.status = RunStatus.BLOCKED
            result.fatal_error = str(e)
            return result

        queue.recover_interrupted()
        if retry_failed:
            reset = queue.reset_failed()
            logger.info("Reset %d failed item(s) in session %s", reset, session_id)

        return self._drive(queue, result, batch_size)

    def _ensure_ready(self, result: RunResult, dataset_id: Optional[str] = None) -> None:
        """
        Pre-flight checks before any dispatch.

        Args:
            result: Result receiving the readiness report.
            dataset_id: Dataset to check for an active session. Skipped if None.

        Raises:
            ReadinessError: If read-only mode is on, another session holds the
                dataset, or the remote is unreachable, unauthorized or out of quota.
        """
        if self.config.safety.read_only_mode:
            raise ReadinessError("Read-only mode is enabled; no changes will be sent")

        if dataset_id is not None:
            holder = self.active_session(dataset_id)
            if holder is not None:
                raise ReadinessError(f"Session {holder} is still active for '{dataset_id}'; resume or clean it up first")

        report = self.remote.check_readiness()
        result.readiness = report
        if not report.ready:
            raise ReadinessError(f"Remote not ready: {report.failure_reason()}")

    def _drive(self, queue: ExportQueue, result: RunResult, batch_size: Optional[int] = None) -> RunResult:
        processor = self._processor(queue)

        queue.promote_aged()
        pending = queue.pending_items()
        batches = processor.create_batches(pending, batch_size)
        with log_context(session=queue.session_id, dataset=queue.dataset_id):
            summary = processor.process_all(batches, progress_callback=self._log_progress)

        counts = queue.counts()
        result.summary = summary
        result.created += summary.created
        result.updated += summary.updated
        result.deleted += summary.deleted
        result.failed = counts["failed"]
        result.pending = counts["pending"]
        result.fatal_error = result.fatal_error or summary.fatal_error
        if summary.reconciliation_failures:
            result.warnings.append(
                f"{summary.reconciliation_failures} batch(es) could not be written back; rows may be re-sent"
            )

        if summary.aborted:
            result.status = RunStatus.FAILED
        elif counts["failed"] or counts["pending"] or counts["processing"]:
            result.status = RunStatus.PARTIAL
        else:
            result.status = RunStatus.COMPLETED
            self.cleanup(queue.session_id)

        logger.info(
            "Session %s %s: %d created, %d updated, %d deleted, %d failed, %d pending",
            queue.session_id,
            result.status.value,
            result.created,
            result.updated,
            result.deleted,
            result.failed,
            result.pending,
        )
        return result

    # -------------------- helpers --------------------

    def _processor(self, queue: ExportQueue) -> BatchProcessor:
        retry = self.config.retry
        return BatchProcessor(
            self.remote,
            RetryManager(
                max_retries=retry.max_retries,
                base_delay=retry.base_delay,
                max_delay=retry.max_delay,
                sleep=self._sleep,
            ),
            StateReconciler(self.table, self.detector, clock=self._clock),
            dataset_id=queue.dataset_id,
            queue=queue,
            policy=self.config.batching.to_policy(),
            sink=self.sink,
            sleep=self._sleep,
            monotonic=self._monotonic,
        )

    def _build_queue(
        self,
        dataset_id: str,
        change_set: ChangeSet,
        dataset: Optional[DatasetConfig],
        options: RunOptions,
    ) -> ExportQueue:
        queue = ExportQueue(dataset_id=dataset_id, policy=self.priority_policy, store=self.kv, clock=self._clock)
        default_tier = options.default_tier or (dataset.default_tier if dataset else PriorityTier.NORMAL)
        items = [
            QueueItem(
                operation=operation,
                row=row,
                source_context=f"{dataset_id}:{row.row_id}",
                priority_tier=_row_tier(row),
            )
            for operation, row in change_set.changes()
        ]
        queue.enqueue(items, default_tier=default_tier)
        return queue

    def _apply_dataset_defaults(self, rows: list[Row], dataset: Optional[DatasetConfig]) -> None:
        if dataset is None or dataset.owner_kind is None:
            return
        for row in rows:
            if row.kind == ResourceKind.METAFIELD and row.get(OWNER_RESOURCE_COLUMN) is None:
                row.fields[OWNER_RESOURCE_COLUMN] = dataset.owner_kind.value

    def _log_progress(self, summary: ProcessSummary) -> None:
        logger.info(
            "Progress: batch %d/%d, %d processed, %d failed (%.1fs)",
            summary.batches_processed,
            summary.total_batches,
            summary.processed,
            summary.failed,
            summary.elapsed_seconds,
        )


def _row_tier(row: Row) -> Optional[PriorityTier]:
    value: Any = row.get(PRIORITY_COLUMN)
    if value is None:
        return None
    try:
        return PriorityTier(str(value).strip().lower())
    except ValueError:
        logger.warning("Row %s has unknown priority '%s'", row.row_id, value)
        return None
