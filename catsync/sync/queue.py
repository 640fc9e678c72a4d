# catsync Export Queue
# Persistable, priority-ordered worklist of rows awaiting dispatch

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

import yaml

from catsync.sync.errors import InvalidTransition, QueueCorruption, SessionNotFound
from catsync.sync.row import Operation, Row

if TYPE_CHECKING:
    from catsync.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "catsync:session:"
QUEUE_FORMAT_VERSION = "1.0"


class PriorityTier(str, Enum):
    """Qualitative urgency of a queue item."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    def promoted(self) -> "PriorityTier":
        """Next tier up, CRITICAL stays CRITICAL."""
        index = TIER_ORDER.index(self)
        return TIER_ORDER[min(index + 1, len(TIER_ORDER) - 1)]


TIER_ORDER = [PriorityTier.LOW, PriorityTier.NORMAL, PriorityTier.HIGH, PriorityTier.CRITICAL]


class ItemStatus(str, Enum):
    """Lifecycle status of a queue item."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[ItemStatus, set[ItemStatus]] = {
    ItemStatus.PENDING: {ItemStatus.PROCESSING},
    ItemStatus.PROCESSING: {ItemStatus.COMPLETED, ItemStatus.FAILED},
}


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def session_key(session_id: str) -> str:
    """Key/value store key for a session."""
    return f"{SESSION_KEY_PREFIX}{session_id}"


@dataclass
class PriorityPolicy:
    """
    Numeric policy behind priority scores.

    score = tier weight + operation weight + min(age minutes * age factor, age cap)
    """

    tier_weights: dict[PriorityTier, float] = field(
        default_factory=lambda: {
            PriorityTier.LOW: 100.0,
            PriorityTier.NORMAL: 200.0,
            PriorityTier.HIGH: 300.0,
            PriorityTier.CRITICAL: 400.0,
        }
    )
    operation_weights: dict[Operation, float] = field(
        default_factory=lambda: {
            Operation.CREATE: 10.0,
            Operation.UPDATE: 5.0,
            Operation.MIXED: 5.0,
            Operation.DELETE: 0.0,
        }
    )
    age_factor: float = 0.5
    age_cap: float = 50.0
    promotion_minutes: dict[PriorityTier, float] = field(
        default_factory=lambda: {
            PriorityTier.LOW: 30.0,
            PriorityTier.NORMAL: 60.0,
            PriorityTier.HIGH: 120.0,
        }
    )

    def score(self, tier: PriorityTier, operation: Operation, age_minutes: float) -> float:
        """Compute the priority score."""
        age_bonus = min(max(age_minutes, 0.0) * self.age_factor, self.age_cap)
        return self.tier_weights.get(tier, 0.0) + self.operation_weights.get(operation, 0.0) + age_bonus


@dataclass
class QueueItem:
    """A single row queued for dispatch."""

    operation: Optional[Operation]
    row: Optional[Row]
    source_context: str = ""
    priority_tier: Optional[PriorityTier] = None
    priority_score: float = 0.0
    status: Optional[ItemStatus] = ItemStatus.PENDING
    added_at: Optional[str] = None
    last_updated_at: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    retry_count: int = 0
    sequence: int = 0
    item_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def is_pending(self) -> bool:
        return self.status == ItemStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "item_id": self.item_id,
            "operation": self.operation.value if self.operation else None,
            "row": self.row.to_dict() if self.row else None,
            "source_context": self.source_context,
            "priority_tier": self.priority_tier.value if self.priority_tier else None,
            "priority_score": self.priority_score,
            "status": self.status.value if self.status else None,
            "added_at": self.added_at,
            "last_updated_at": self.last_updated_at,
            "result": self.result,
            "retry_count": self.retry_count,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueueItem":
        """
        Create from dictionary.

        Unknown enum values become None so integrity validation can
        report them instead of failing the whole load.
        """
        row_data = data.get("row")
        return cls(
            item_id=str(data.get("item_id") or ""),
            operation=_parse_enum(Operation, data.get("operation")),
            row=Row.from_dict(row_data) if isinstance(row_data, dict) else None,
            source_context=str(data.get("source_context") or ""),
            priority_tier=_parse_enum(PriorityTier, data.get("priority_tier")),
            priority_score=float(data.get("priority_score") or 0.0),
            status=_parse_enum(ItemStatus, data.get("status")),
            added_at=data.get("added_at"),
            last_updated_at=data.get("last_updated_at"),
            result=data.get("result"),
            retry_count=int(data.get("retry_count") or 0),
            sequence=int(data.get("sequence") or 0),
        )


def _parse_enum(enum_cls: type[Enum], value: Any) -> Any:
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _empty_stats() -> dict[str, int]:
    return {"completed": 0, "failed": 0, "created": 0, "updated": 0, "deleted": 0, "retried": 0}


class ExportQueue:
    """
    Ordered worklist of queue items for one session.

    Pending items are kept sorted by descending priority score; items in
    other states keep their position so the list doubles as an audit
    trail. When bound to a key/value store, every status transition is
    checkpointed so an interrupted run can resume.
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        *,
        dataset_id: str = "",
        policy: Optional[PriorityPolicy] = None,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize queue.

        Args:
            session_id: Session identifier. Generated if not provided.
            dataset_id: Dataset the queued rows belong to.
            policy: Priority scoring policy.
            store: Optional key/value store for checkpointing.
            clock: Returns the current aware datetime.
        """
        self.session_id = session_id or uuid.uuid4().hex[:16]
        self.dataset_id = dataset_id
        self.policy = policy or PriorityPolicy()
        self.store = store
        self._clock = clock
        self.created_at = clock().isoformat()
        self.items: list[QueueItem] = []
        self.stats: dict[str, int] = _empty_stats()
        self._next_sequence = 0

    # -------------------- ordering --------------------

    @property
    def progress(self) -> dict[str, int]:
        """Items in a terminal state versus total items."""
        done = sum(1 for item in self.items if item.status in (ItemStatus.COMPLETED, ItemStatus.FAILED))
        return {"current": done, "total": len(self.items)}

    def _age_minutes(self, item: QueueItem, now: datetime) -> float:
        if not item.added_at:
            return 0.0
        try:
            added = datetime.fromisoformat(item.added_at)
        except ValueError:
            return 0.0
        return (now - added).total_seconds() / 60.0

    def _rescore(self, item: QueueItem, now: datetime) -> None:
        tier = item.priority_tier or PriorityTier.NORMAL
        operation = item.operation or Operation.MIXED
        item.priority_score = self.policy.score(tier, operation, self._age_minutes(item, now))

    def _resort_pending(self, now: Optional[datetime] = None) -> None:
        """Re-score and sort pending items into the slots pending items occupy."""
        now = now or self._clock()
        slots = [index for index, item in enumerate(self.items) if item.is_pending]
        pending = [self.items[index] for index in slots]
        for item in pending:
            self._rescore(item, now)
        pending.sort(key=lambda item: (-item.priority_score, item.sequence))
        for index, item in zip(slots, pending):
            self.items[index] = item

    def enqueue(self, items: Iterable[QueueItem], default_tier: PriorityTier = PriorityTier.NORMAL) -> list[QueueItem]:
        """
        Add items and re-sort pending items by priority.

        Args:
            items: Items to add. Items without a tier get ``default_tier``.
            default_tier: Tier for items that carry none.

        Returns:
            The added items.
        """
        now = self._clock()
        stamp = now.isoformat()
        added: list[QueueItem] = []

        for item in items:
            if item.priority_tier is None:
                item.priority_tier = default_tier
            item.status = ItemStatus.PENDING
            item.added_at = item.added_at or stamp
            item.last_updated_at = stamp
            item.sequence = self._next_sequence
            self._next_sequence += 1
            self._rescore(item, now)
            self.items.append(item)
            added.append(item)

        self._resort_pending(now)
        logger.debug("Enqueued %d item(s) into session %s", len(added), self.session_id)
        return added

    def pending_items(self) -> list[QueueItem]:
        """Pending items in priority order."""
        self._resort_pending()
        return [item for item in self.items if item.is_pending]

    def dequeue_next(self) -> Optional[QueueItem]:
        """
        Highest-scored pending item, without removing it.

        The caller transitions its status.
        """
        pending = self.pending_items()
        return pending[0] if pending else None

    def get_item(self, item_id: str) -> Optional[QueueItem]:
        """Find an item by id."""
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None

    def counts(self) -> dict[str, int]:
        """Number of items per status."""
        counts = {status.value: 0 for status in ItemStatus}
        for item in self.items:
            if item.status is not None:
                counts[item.status.value] += 1
        return counts

    # -------------------- state machine --------------------

    def transition(
        self,
        item: QueueItem,
        new_status: ItemStatus,
        result: Optional[dict[str, Any]] = None,
    ) -> QueueItem:
        """
        Move an item to a new status.

        Args:
            item: Item in this queue.
            new_status: Target status.
            result: Optional outcome details to record.

        Returns:
            The updated item.

        Raises:
            InvalidTransition: If the state machine forbids the change.
        """
        current = item.status
        allowed = ALLOWED_TRANSITIONS.get(current, set()) if current is not None else set()
        if new_status not in allowed:
            raise InvalidTransition(
                f"Item {item.item_id}: {current.value if current else None} -> {new_status.value} not allowed"
            )

        item.status = new_status
        item.last_updated_at = self._clock().isoformat()
        if result is not None:
            item.result = result

        if new_status == ItemStatus.COMPLETED:
            self.stats["completed"] += 1
            performed = (result or {}).get("operation") or (item.operation.value if item.operation else "")
            stat_key = {"create": "created", "update": "updated", "delete": "deleted"}.get(performed)
            if stat_key:
                self.stats[stat_key] += 1
        elif new_status == ItemStatus.FAILED:
            self.stats["failed"] += 1

        self._checkpoint()
        return item

    def reset_failed(self) -> int:
        """
        Return every failed item to pending for a manual retry round.

        Returns:
            Number of items reset.
        """
        now = self._clock()
        count = 0
        for item in self.items:
            if item.status != ItemStatus.FAILED:
                continue
            item.status = ItemStatus.PENDING
            item.retry_count += 1
            item.last_updated_at = now.isoformat()
            count += 1

        if count:
            self.stats["failed"] = max(0, self.stats["failed"] - count)
            self.stats["retried"] += count
            self._resort_pending(now)
            self._checkpoint()
        return count

    def recover_interrupted(self) -> int:
        """
        Fail items left in processing by an interrupted run.

        Returns:
            Number of items recovered.
        """
        count = 0
        for item in self.items:
            if item.status == ItemStatus.PROCESSING:
                self.transition(item, ItemStatus.FAILED, {"success": False, "error": "interrupted"})
                count += 1
        if count:
            logger.warning("Recovered %d interrupted item(s) in session %s", count, self.session_id)
        return count

    def promote_aged(self, thresholds: Optional[dict[PriorityTier, float]] = None) -> list[QueueItem]:
        """
        Promote pending items that waited longer than their tier's threshold.

        Each item moves up at most one tier per call.

        Args:
            thresholds: Minutes per tier. Defaults to the policy's thresholds.

        Returns:
            Items that were promoted.
        """
        thresholds = thresholds if thresholds is not None else self.policy.promotion_minutes
        now = self._clock()
        promoted: list[QueueItem] = []

        for item in list(self.items):
            if not item.is_pending or item.priority_tier in (None, PriorityTier.CRITICAL):
                continue
            limit = thresholds.get(item.priority_tier)
            if limit is None:
                continue
            if self._age_minutes(item, now) >= limit:
                item.priority_tier = item.priority_tier.promoted()
                item.last_updated_at = now.isoformat()
                promoted.append(item)

        if promoted:
            self._resort_pending(now)
            self._checkpoint()
            logger.info("Promoted %d aged item(s) in session %s", len(promoted), self.session_id)
        return promoted

    # -------------------- integrity & persistence --------------------

    def validate_integrity(self) -> list[str]:
        """
        Check that every item is dispatchable.

        Returns:
            Violations found, empty if the queue is consistent.
        """
        violations: list[str] = []
        seen: set[str] = set()

        for position, item in enumerate(self.items):
            label = f"item {position} ({item.item_id or 'no id'})"
            if not item.item_id:
                violations.append(f"{label}: missing item id")
            elif item.item_id in seen:
                violations.append(f"{label}: duplicate item id")
            seen.add(item.item_id)

            if item.operation is None:
                violations.append(f"{label}: missing or unknown operation")
            if item.status is None:
                violations.append(f"{label}: missing or unknown status")
            if item.row is None:
                violations.append(f"{label}: missing row")
                continue

            is_create = item.operation == Operation.CREATE or (
                item.operation == Operation.MIXED and not item.row.has_remote_id
            )
            if not is_create and not item.row.has_remote_id:
                violations.append(f"{label}: missing row identifier for {item.operation.value if item.operation else 'operation'}")

        return violations

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "version": QUEUE_FORMAT_VERSION,
            "session_id": self.session_id,
            "dataset_id": self.dataset_id,
            "created_at": self.created_at,
            "progress": self.progress,
            "stats": dict(self.stats),
            "next_sequence": self._next_sequence,
            "queue": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        *,
        policy: Optional[PriorityPolicy] = None,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "ExportQueue":
        """Create from dictionary."""
        queue = cls(
            str(data.get("session_id") or ""),
            dataset_id=str(data.get("dataset_id") or ""),
            policy=policy,
            store=store,
            clock=clock,
        )
        queue.created_at = data.get("created_at") or queue.created_at
        queue.items = [QueueItem.from_dict(item) for item in data.get("queue") or []]
        queue.stats = {**_empty_stats(), **(data.get("stats") or {})}
        max_sequence = max((item.sequence for item in queue.items), default=-1)
        queue._next_sequence = max(int(data.get("next_sequence") or 0), max_sequence + 1)
        return queue

    def dumps(self) -> str:
        """Serialize to YAML text."""
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False, allow_unicode=True)

    def persist(self) -> None:
        """
        Write the full queue, progress and stats to the bound store.

        Raises:
            RuntimeError: If the queue has no store.
        """
        if self.store is None:
            raise RuntimeError("Queue is not bound to a key/value store")
        self.store.set(session_key(self.session_id), self.dumps())

    def _checkpoint(self) -> None:
        if self.store is not None:
            self.persist()

    def discard(self) -> None:
        """Delete the persisted session."""
        if self.store is not None:
            self.store.delete(session_key(self.session_id))

    @classmethod
    def load(
        cls,
        store: KeyValueStore,
        session_id: str,
        *,
        policy: Optional[PriorityPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "ExportQueue":
        """
        Load a persisted session.

        Args:
            store: Key/value store holding the session.
            session_id: Session to load.
            policy: Priority scoring policy.
            clock: Returns the current aware datetime.

        Returns:
            The restored queue, bound to ``store``.

        Raises:
            SessionNotFound: If nothing is stored under the session id.
            QueueCorruption: If the stored text cannot be parsed.
        """
        text = store.get(session_key(session_id))
        if text is None:
            raise SessionNotFound(f"Session '{session_id}' not found")

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise QueueCorruption(f"Session '{session_id}' is not valid YAML: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("queue", []), list):
            raise QueueCorruption(f"Session '{session_id}' has an unexpected structure")

        try:
            queue = cls.from_dict(data, policy=policy, store=store, clock=clock)
        except (TypeError, ValueError, AttributeError) as e:
            raise QueueCorruption(f"Session '{session_id}' could not be restored: {e}") from e

        queue.session_id = session_id
        return queue
