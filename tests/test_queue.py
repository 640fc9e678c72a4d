# Tests for catsync.sync.queue
# Priority ordering, state machine, aging, persistence and integrity

import pytest
import yaml

from catsync.storage import MemoryKeyValueStore
from catsync.sync.errors import InvalidTransition, QueueCorruption, SessionNotFound
from catsync.sync.queue import (
    ExportQueue,
    ItemStatus,
    PriorityPolicy,
    PriorityTier,
    QueueItem,
    session_key,
)
from catsync.sync.row import Operation, ResourceKind, Row


def _item(row_id, tier=None, operation=Operation.UPDATE, id="5"):
    return QueueItem(
        operation=operation,
        row=Row(row_id=row_id, kind=ResourceKind.PRODUCT, id=id, fields={"title": f"Row {row_id}"}),
        priority_tier=tier,
    )


class TestPriorityPolicy:
    """Tests for the priority score."""

    def test_tier_dominates_operation(self):
        policy = PriorityPolicy()
        assert policy.score(PriorityTier.NORMAL, Operation.DELETE, 0) > policy.score(
            PriorityTier.LOW, Operation.CREATE, 0
        )

    def test_age_bonus_capped(self):
        policy = PriorityPolicy()
        assert policy.score(PriorityTier.LOW, Operation.UPDATE, 10_000) == policy.score(
            PriorityTier.LOW, Operation.UPDATE, 100
        )

    def test_monotonic_in_age(self):
        policy = PriorityPolicy()
        assert policy.score(PriorityTier.LOW, Operation.UPDATE, 5) > policy.score(PriorityTier.LOW, Operation.UPDATE, 1)

    def test_tier_promotion_chain(self):
        assert PriorityTier.LOW.promoted() == PriorityTier.NORMAL
        assert PriorityTier.HIGH.promoted() == PriorityTier.CRITICAL
        assert PriorityTier.CRITICAL.promoted() == PriorityTier.CRITICAL


class TestOrdering:
    """Tests for enqueue and dequeue_next ordering."""

    def test_tiers_dequeue_in_priority_order(self, clock):
        queue = ExportQueue(clock=clock)
        low, critical, normal = queue.enqueue(
            [_item("1", PriorityTier.LOW), _item("2", PriorityTier.CRITICAL), _item("3", PriorityTier.NORMAL)]
        )

        order = []
        while (item := queue.dequeue_next()) is not None:
            order.append(item)
            queue.transition(item, ItemStatus.PROCESSING)
            queue.transition(item, ItemStatus.COMPLETED)

        assert order == [critical, normal, low]

    def test_ties_broken_by_insertion_order(self, clock):
        queue = ExportQueue(clock=clock)
        first, second = queue.enqueue([_item("1"), _item("2")])
        assert queue.dequeue_next() is first
        assert [item.sequence for item in (first, second)] == [0, 1]

    def test_default_tier_applied(self, clock):
        queue = ExportQueue(clock=clock)
        (item,) = queue.enqueue([_item("1")], default_tier=PriorityTier.HIGH)
        assert item.priority_tier == PriorityTier.HIGH
        assert item.status == ItemStatus.PENDING
        assert item.added_at == clock().isoformat()

    def test_non_pending_items_keep_position(self, clock):
        queue = ExportQueue(clock=clock)
        (low,) = queue.enqueue([_item("1", PriorityTier.LOW)])
        queue.transition(low, ItemStatus.PROCESSING)
        queue.transition(low, ItemStatus.COMPLETED)

        queue.enqueue([_item("2", PriorityTier.CRITICAL)])
        assert queue.items[0] is low
        assert queue.items[1].priority_tier == PriorityTier.CRITICAL

    def test_dequeue_does_not_remove(self, clock):
        queue = ExportQueue(clock=clock)
        queue.enqueue([_item("1")])
        assert queue.dequeue_next() is queue.dequeue_next()
        assert len(queue.items) == 1

    def test_empty_queue(self, clock):
        assert ExportQueue(clock=clock).dequeue_next() is None


class TestTransitions:
    """Tests for the status state machine."""

    def test_valid_path(self, clock):
        queue = ExportQueue(clock=clock)
        (item,) = queue.enqueue([_item("1")])
        queue.transition(item, ItemStatus.PROCESSING)
        queue.transition(item, ItemStatus.COMPLETED, {"success": True, "operation": "update"})

        assert item.result == {"success": True, "operation": "update"}
        assert queue.stats["completed"] == 1
        assert queue.stats["updated"] == 1
        assert queue.progress == {"current": 1, "total": 1}

    def test_pending_cannot_complete(self, clock):
        queue = ExportQueue(clock=clock)
        (item,) = queue.enqueue([_item("1")])
        with pytest.raises(InvalidTransition):
            queue.transition(item, ItemStatus.COMPLETED)

    def test_failed_cannot_return_to_pending_directly(self, clock):
        queue = ExportQueue(clock=clock)
        (item,) = queue.enqueue([_item("1")])
        queue.transition(item, ItemStatus.PROCESSING)
        queue.transition(item, ItemStatus.FAILED)
        with pytest.raises(InvalidTransition):
            queue.transition(item, ItemStatus.PENDING)

    def test_reset_failed(self, clock):
        queue = ExportQueue(clock=clock)
        items = queue.enqueue([_item("1"), _item("2")])
        for item in items:
            queue.transition(item, ItemStatus.PROCESSING)
        queue.transition(items[0], ItemStatus.FAILED)
        queue.transition(items[1], ItemStatus.COMPLETED)

        assert queue.reset_failed() == 1
        assert items[0].status == ItemStatus.PENDING
        assert items[0].retry_count == 1
        assert items[1].status == ItemStatus.COMPLETED
        assert queue.stats["failed"] == 0
        assert queue.stats["retried"] == 1

    def test_recover_interrupted(self, clock):
        queue = ExportQueue(clock=clock)
        (item,) = queue.enqueue([_item("1")])
        queue.transition(item, ItemStatus.PROCESSING)

        assert queue.recover_interrupted() == 1
        assert item.status == ItemStatus.FAILED
        assert item.result["error"] == "interrupted"

    def test_transition_checkpoints(self, clock):
        kv = MemoryKeyValueStore()
        queue = ExportQueue("s1", store=kv, clock=clock)
        (item,) = queue.enqueue([_item("1")])
        queue.transition(item, ItemStatus.PROCESSING)

        stored = yaml.safe_load(kv.get(session_key("s1")))
        assert stored["queue"][0]["status"] == "processing"


class TestAging:
    """Tests for promote_aged."""

    def test_low_item_promoted_once(self, clock):
        queue = ExportQueue(clock=clock)
        (item,) = queue.enqueue([_item("1", PriorityTier.LOW)])
        clock.advance(minutes=31)

        promoted = queue.promote_aged()
        assert promoted == [item]
        assert item.priority_tier == PriorityTier.NORMAL

    def test_normal_item_never_promoted_twice_in_one_call(self, clock):
        queue = ExportQueue(clock=clock)
        (item,) = queue.enqueue([_item("1", PriorityTier.NORMAL)])
        clock.advance(minutes=500)

        queue.promote_aged()
        assert item.priority_tier == PriorityTier.HIGH
        queue.promote_aged()
        assert item.priority_tier == PriorityTier.CRITICAL

    def test_young_items_untouched(self, clock):
        queue = ExportQueue(clock=clock)
        (item,) = queue.enqueue([_item("1", PriorityTier.LOW)])
        clock.advance(minutes=5)
        assert queue.promote_aged() == []
        assert item.priority_tier == PriorityTier.LOW

    def test_custom_thresholds(self, clock):
        queue = ExportQueue(clock=clock)
        (item,) = queue.enqueue([_item("1", PriorityTier.HIGH)])
        clock.advance(minutes=2)
        queue.promote_aged({PriorityTier.HIGH: 1})
        assert item.priority_tier == PriorityTier.CRITICAL

    def test_promotion_reorders_pending(self, clock):
        queue = ExportQueue(clock=clock)
        (old_low,) = queue.enqueue([_item("1", PriorityTier.LOW)])
        clock.advance(minutes=40)
        queue.promote_aged()
        (fresh_normal,) = queue.enqueue([_item("2", PriorityTier.NORMAL)])

        # Same tier now, the older item has the age bonus
        assert queue.dequeue_next() is old_low
        assert fresh_normal.priority_score < old_low.priority_score


class TestPersistence:
    """Tests for persist and load."""

    def test_resume_yields_pending_item(self, clock):
        kv = MemoryKeyValueStore()
        queue = ExportQueue("s1", dataset_id="products", store=kv, clock=clock)
        items = queue.enqueue([_item(str(i)) for i in range(5)])
        for item in items[:2]:
            queue.transition(item, ItemStatus.PROCESSING)
            queue.transition(item, ItemStatus.COMPLETED)
        queue.persist()

        loaded = ExportQueue.load(kv, "s1", clock=clock)
        pending_ids = {item.item_id for item in items[2:]}

        assert loaded.dataset_id == "products"
        assert loaded.dequeue_next().item_id in pending_ids
        assert loaded.counts() == {"pending": 3, "processing": 0, "completed": 2, "failed": 0}
        assert loaded.stats["completed"] == 2
        assert loaded.progress == {"current": 2, "total": 5}

    def test_loaded_queue_continues_sequence(self, clock):
        kv = MemoryKeyValueStore()
        queue = ExportQueue("s1", store=kv, clock=clock)
        queue.enqueue([_item("1"), _item("2")])
        queue.persist()

        loaded = ExportQueue.load(kv, "s1", clock=clock)
        (item,) = loaded.enqueue([_item("3")])
        assert item.sequence == 2

    def test_missing_session(self):
        with pytest.raises(SessionNotFound):
            ExportQueue.load(MemoryKeyValueStore(), "nope")

    def test_unparseable_session(self):
        kv = MemoryKeyValueStore({session_key("bad"): "queue: [unclosed"})
        with pytest.raises(QueueCorruption):
            ExportQueue.load(kv, "bad")

    def test_wrong_structure(self):
        kv = MemoryKeyValueStore({session_key("bad"): "- just\n- a list\n"})
        with pytest.raises(QueueCorruption):
            ExportQueue.load(kv, "bad")

    def test_persist_requires_store(self, clock):
        with pytest.raises(RuntimeError):
            ExportQueue(clock=clock).persist()


class TestIntegrity:
    """Tests for validate_integrity."""

    def test_consistent_queue(self, clock):
        queue = ExportQueue(clock=clock)
        queue.enqueue([_item("1"), _item("2", operation=Operation.CREATE, id=""), _item("3", operation=Operation.MIXED, id="")])
        assert queue.validate_integrity() == []

    def test_update_without_identifier(self, clock):
        queue = ExportQueue(clock=clock)
        queue.enqueue([_item("1", id="")])
        violations = queue.validate_integrity()
        assert len(violations) == 1
        assert "identifier" in violations[0]

    def test_unknown_values_reported_not_raised(self, clock):
        kv = MemoryKeyValueStore()
        queue = ExportQueue("s1", store=kv, clock=clock)
        queue.enqueue([_item("1"), _item("2")])
        data = queue.to_dict()
        data["queue"][0]["operation"] = "explode"
        data["queue"][1]["status"] = None
        data["queue"][1]["item_id"] = data["queue"][0]["item_id"]
        kv.set(session_key("s1"), yaml.safe_dump(data))

        violations = ExportQueue.load(kv, "s1", clock=clock).validate_integrity()
        assert any("operation" in v for v in violations)
        assert any("status" in v for v in violations)
        assert any("duplicate" in v for v in violations)
