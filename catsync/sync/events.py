# catsync Sync Events
# Progress and audit events emitted while processing batches

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class EventKind(str, Enum):
    """Kind of progress event."""

    BATCH_START = "batch_start"
    BATCH_COMPLETE = "batch_complete"
    ITEM_FAILED = "item_failed"
    SUMMARY = "summary"


@dataclass
class SyncEvent:
    """A progress or audit event with counts and timing."""

    kind: EventKind
    session_id: str = ""
    batch_number: int = 0
    total_batches: int = 0
    counts: dict[str, int] = field(default_factory=dict)
    elapsed_seconds: float = 0.0
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "kind": self.kind.value,
            "session_id": self.session_id,
            "batch_number": self.batch_number,
            "total_batches": self.total_batches,
            "counts": dict(self.counts),
            "elapsed_seconds": self.elapsed_seconds,
            "message": self.message,
            "details": dict(self.details),
            "timestamp": self.timestamp,
        }


@runtime_checkable
class ProgressSink(Protocol):
    """Receiver of progress events (UI, audit log)."""

    def emit(self, event: SyncEvent) -> None: ...


class NullSink:
    """Sink that drops every event."""

    def emit(self, event: SyncEvent) -> None:
        return None


class RecordingSink:
    """Sink that keeps every event in memory."""

    def __init__(self) -> None:
        self.events: list[SyncEvent] = []

    def emit(self, event: SyncEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: EventKind) -> list[SyncEvent]:
        """Events of one kind, in emission order."""
        return [event for event in self.events if event.kind == kind]
