# catsync Sync Module
# Change detection, export queue, batch dispatch and orchestration

from catsync.sync.batch import Batch, BatchPolicy, BatchProcessor, BatchResult, ItemError, ProcessSummary
from catsync.sync.detector import ChangeDetector, ChangeSet, SkippedRow
from catsync.sync.engine import RunOptions, RunResult, RunStatus, SessionSummary, SyncOrchestrator
from catsync.sync.errors import (
    AuthError,
    InvalidTransition,
    NotFoundError,
    QueueCorruption,
    RateLimitError,
    ReadinessError,
    ReconciliationFailure,
    RemoteError,
    SessionNotFound,
    SyncError,
    TransientNetworkError,
    ValidationError,
)
from catsync.sync.events import EventKind, NullSink, ProgressSink, RecordingSink, SyncEvent
from catsync.sync.queue import ExportQueue, ItemStatus, PriorityPolicy, PriorityTier, QueueItem
from catsync.sync.reconciler import DispatchedRow, StateReconciler
from catsync.sync.resources import RemoteCall, ResourceContract, build_call, get_contract
from catsync.sync.retry import DispatchResult, ErrorClass, ErrorKind, RetryManager, classify_error
from catsync.sync.row import Operation, ResourceKind, Row

__all__ = [
    # Rows and contracts
    "Row",
    "ResourceKind",
    "Operation",
    "ResourceContract",
    "RemoteCall",
    "get_contract",
    "build_call",
    # Detection
    "ChangeDetector",
    "ChangeSet",
    "SkippedRow",
    # Queue
    "ExportQueue",
    "QueueItem",
    "ItemStatus",
    "PriorityTier",
    "PriorityPolicy",
    # Dispatch
    "RetryManager",
    "DispatchResult",
    "ErrorClass",
    "ErrorKind",
    "classify_error",
    "BatchProcessor",
    "BatchPolicy",
    "Batch",
    "BatchResult",
    "ItemError",
    "ProcessSummary",
    "StateReconciler",
    "DispatchedRow",
    # Events
    "EventKind",
    "SyncEvent",
    "ProgressSink",
    "RecordingSink",
    "NullSink",
    # Orchestration
    "SyncOrchestrator",
    "RunOptions",
    "RunResult",
    "RunStatus",
    "SessionSummary",
    # Errors
    "SyncError",
    "RemoteError",
    "ValidationError",
    "NotFoundError",
    "AuthError",
    "RateLimitError",
    "TransientNetworkError",
    "ReadinessError",
    "QueueCorruption",
    "InvalidTransition",
    "SessionNotFound",
    "ReconciliationFailure",
]
