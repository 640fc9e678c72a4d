# Tests for catsync.sync.engine
# End-to-end run, resume and session handling against in-memory adapters

import pytest

from catsync.remote.client import ReadinessReport
from catsync.sync.engine import RunOptions, RunStatus, SyncOrchestrator, active_key
from catsync.sync.errors import AuthError, SessionNotFound, ValidationError
from catsync.sync.events import EventKind, RecordingSink
from catsync.sync.queue import ExportQueue, ItemStatus, PriorityTier, QueueItem, session_key
from catsync.sync.row import Operation, ResourceKind, Row


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def orchestrator(config, table, fake_remote, kv, sleep, clock, sink):
    return SyncOrchestrator(
        config,
        table,
        fake_remote,
        kv,
        sink=sink,
        sleep=sleep,
        clock=clock,
        monotonic=lambda: 0.0,
    )


@pytest.fixture
def stale_products(table):
    table.add_dataset(
        "products",
        ResourceKind.PRODUCT,
        [{"id": str(10 + i), "title": f"Product {i}", "_hash": "stale"} for i in range(3)],
    )
    return table


class TestRun:
    """Tests for run."""

    def test_stale_rows_updated_then_unchanged(self, orchestrator, stale_products, fake_remote, kv):
        result = orchestrator.run("products")

        assert result.status == RunStatus.COMPLETED
        assert result.success
        assert result.updated == 3
        assert [call.method for call in fake_remote.calls] == ["PUT", "PUT", "PUT"]
        assert all(record["_hash"] != "stale" for record in stale_products.records("products"))
        assert kv.get(session_key(result.session_id)) is None
        assert kv.get(active_key("products")) is None

        second = orchestrator.run("products")
        assert second.status == RunStatus.NO_CHANGES
        assert second.unchanged == 3
        assert len(fake_remote.calls) == 3

    def test_no_changes_skips_readiness(self, orchestrator, table, fake_remote):
        table.add_dataset("products", ResourceKind.PRODUCT, [{"id": "5", "title": "Gone", "_action": "deleted"}])

        result = orchestrator.run("products")

        assert result.status == RunStatus.NO_CHANGES
        assert fake_remote.readiness_checks == 0
        assert result.session_id is None

    def test_creates_write_back_ids(self, orchestrator, table):
        table.add_dataset("products", ResourceKind.PRODUCT, [{"id": "", "title": "New"}])

        result = orchestrator.run("products")

        assert result.created == 1
        assert table.records("products")[0]["id"] == "1001"
        assert orchestrator.run("products").status == RunStatus.NO_CHANGES

    def test_read_only_mode_blocks(self, orchestrator, stale_products, fake_remote, config):
        config.safety.read_only_mode = True

        result = orchestrator.run("products")

        assert result.status == RunStatus.BLOCKED
        assert "Read-only" in result.fatal_error
        assert fake_remote.calls == []
        assert result.change_set.total_changes == 3

    def test_remote_not_ready_blocks(self, orchestrator, stale_products, fake_remote, kv):
        fake_remote.readiness = ReadinessReport(connectivity=True, permissions=False, messages=["Token lacks write_products"])

        result = orchestrator.run("products")

        assert result.status == RunStatus.BLOCKED
        assert "write_products" in result.fatal_error
        assert kv.keys() == []

    def test_prepare_only_persists_session(self, orchestrator, stale_products, fake_remote, kv):
        result = orchestrator.run("products", RunOptions(prepare_only=True))

        assert result.status == RunStatus.PREPARED
        assert result.pending == 3
        assert fake_remote.calls == []
        assert kv.get(active_key("products")) == result.session_id
        assert kv.get(session_key(result.session_id)) is not None

    def test_active_session_guard(self, orchestrator, stale_products):
        first = orchestrator.run("products", RunOptions(prepare_only=True))

        second = orchestrator.run("products")

        assert second.status == RunStatus.BLOCKED
        assert first.session_id in second.fatal_error

    def test_stale_marker_removed(self, orchestrator, stale_products, kv):
        kv.set(active_key("products"), "vanished")

        assert orchestrator.active_session("products") is None
        assert kv.get(active_key("products")) is None
        assert orchestrator.run("products").status == RunStatus.COMPLETED

    def test_priority_column_orders_dispatch(self, orchestrator, table, fake_remote):
        table.add_dataset(
            "products",
            ResourceKind.PRODUCT,
            [
                {"id": "1", "title": "a", "_priority": "low"},
                {"id": "2", "title": "b"},
                {"id": "3", "title": "c", "_priority": "CRITICAL"},
            ],
        )

        orchestrator.run("products")

        assert [call.row_id for call in fake_remote.calls] == ["3", "2", "1"]

    def test_default_tier_option(self, orchestrator, stale_products, kv, clock):
        result = orchestrator.run("products", RunOptions(prepare_only=True, default_tier=PriorityTier.HIGH))

        queue = ExportQueue.load(kv, result.session_id, clock=clock)
        assert {item.priority_tier for item in queue.items} == {PriorityTier.HIGH}

    def test_volume_alert_warning(self, orchestrator, stale_products, config):
        config.safety.volume_alert_threshold = 2

        result = orchestrator.run("products")

        assert any("alert threshold" in warning for warning in result.warnings)
        assert result.status == RunStatus.COMPLETED

    def test_metafield_owner_default(self, orchestrator, table, fake_remote):
        table.add_dataset(
            "metafields",
            ResourceKind.METAFIELD,
            [{"owner_id": "9", "namespace": "custom", "key": "care", "value": "Hand wash"}],
        )

        result = orchestrator.run("metafields")

        assert result.created == 1
        assert fake_remote.calls[0].endpoint == "products/9/metafields.json"

    def test_skipped_rows_reported(self, orchestrator, table):
        table.add_dataset("products", ResourceKind.PRODUCT, [{"id": "", "title": "Ghost", "_action": "delete"}])

        result = orchestrator.run("products")

        assert result.status == RunStatus.NO_CHANGES
        assert result.skipped == 1
        assert result.warnings

    def test_unknown_dataset_reported_not_raised(self, orchestrator):
        result = orchestrator.run("missing")

        assert result.status == RunStatus.FAILED
        assert not result.success
        assert "missing" in result.fatal_error

    def test_item_failure_is_partial(self, orchestrator, stale_products, fake_remote, kv):
        fake_remote.script = [ValidationError("title can't be blank", status_code=422)]

        result = orchestrator.run("products")

        assert result.status == RunStatus.PARTIAL
        assert result.failed == 1
        assert result.updated == 2
        assert result.has_issues
        assert kv.get(session_key(result.session_id)) is not None

    def test_events_emitted(self, orchestrator, stale_products, sink):
        result = orchestrator.run("products")

        (summary,) = sink.of_kind(EventKind.SUMMARY)
        assert summary.session_id == result.session_id
        assert summary.counts["updated"] == 3


class TestResume:
    """Tests for resume."""

    def test_resume_after_auth_failure(self, orchestrator, stale_products, fake_remote, kv):
        fake_remote.script = [AuthError("Invalid API key", status_code=401)]

        first = orchestrator.run("products")
        assert first.status == RunStatus.FAILED
        assert "authentication" in first.fatal_error
        assert first.pending == 2
        assert first.failed == 1
        assert kv.get(active_key("products")) == first.session_id

        # Another run is refused while the session is open
        assert orchestrator.run("products").status == RunStatus.BLOCKED

        partial = orchestrator.resume(first.session_id)
        assert partial.status == RunStatus.PARTIAL
        assert partial.updated == 2
        assert partial.failed == 1
        assert partial.dataset_id == "products"

        done = orchestrator.resume(first.session_id, retry_failed=True)
        assert done.status == RunStatus.COMPLETED
        assert done.updated == 1
        assert kv.get(session_key(first.session_id)) is None
        assert kv.get(active_key("products")) is None

        assert orchestrator.run("products").status == RunStatus.NO_CHANGES

    def test_interrupted_items_recovered(self, orchestrator, stale_products, kv):
        prepared = orchestrator.run("products", RunOptions(prepare_only=True))
        queue = ExportQueue.load(kv, prepared.session_id)
        item = queue.dequeue_next()
        queue.transition(item, ItemStatus.PROCESSING)

        result = orchestrator.resume(prepared.session_id, retry_failed=True)

        assert result.status == RunStatus.COMPLETED
        assert result.updated == 3

    def test_interrupted_items_fail_without_retry(self, orchestrator, stale_products, kv):
        prepared = orchestrator.run("products", RunOptions(prepare_only=True))
        queue = ExportQueue.load(kv, prepared.session_id)
        queue.transition(queue.dequeue_next(), ItemStatus.PROCESSING)

        result = orchestrator.resume(prepared.session_id)

        assert result.status == RunStatus.PARTIAL
        assert result.failed == 1
        assert result.updated == 2

    def test_missing_session(self, orchestrator):
        result = orchestrator.resume("nope")
        assert result.status == RunStatus.FAILED
        assert "nope" in result.fatal_error

    def test_corrupted_session_discarded(self, orchestrator, kv):
        kv.set(session_key("bad"), "queue: [unclosed")

        result = orchestrator.resume("bad")

        assert result.status == RunStatus.FAILED
        assert result.fatal_error.startswith("Session discarded")
        assert kv.get(session_key("bad")) is None

    def test_integrity_violation_discards_session(self, orchestrator, stale_products, kv, fake_remote, clock):
        queue = ExportQueue("broken", dataset_id="products", store=kv, clock=clock)
        queue.enqueue([QueueItem(operation=Operation.UPDATE, row=Row(row_id="1", kind=ResourceKind.PRODUCT))])
        queue.persist()
        kv.set(active_key("products"), "broken")

        result = orchestrator.resume("broken")

        assert result.status == RunStatus.FAILED
        assert "integrity" in result.fatal_error
        assert fake_remote.calls == []
        assert kv.get(session_key("broken")) is None
        assert kv.get(active_key("products")) is None

    def test_resume_blocked_when_remote_not_ready(self, orchestrator, stale_products, fake_remote, kv):
        prepared = orchestrator.run("products", RunOptions(prepare_only=True))
        fake_remote.readiness = ReadinessReport(connectivity=False, messages=["Connection refused"])

        result = orchestrator.resume(prepared.session_id)

        assert result.status == RunStatus.BLOCKED
        assert kv.get(session_key(prepared.session_id)) is not None


class TestSessions:
    """Tests for cleanup and get_summary."""

    def test_cleanup(self, orchestrator, stale_products, kv):
        prepared = orchestrator.run("products", RunOptions(prepare_only=True))

        assert orchestrator.cleanup(prepared.session_id) is True
        assert kv.get(session_key(prepared.session_id)) is None
        assert kv.get(active_key("products")) is None
        assert orchestrator.cleanup(prepared.session_id) is False

    def test_cleanup_corrupted_session(self, orchestrator, kv):
        kv.set(session_key("bad"), "queue: [unclosed")
        kv.set(active_key("products"), "bad")

        assert orchestrator.cleanup("bad") is True
        assert kv.get(active_key("products")) is None

    def test_get_summary(self, orchestrator, stale_products):
        prepared = orchestrator.run("products", RunOptions(prepare_only=True))

        summary = orchestrator.get_summary(prepared.session_id)

        assert summary.dataset_id == "products"
        assert summary.counts["pending"] == 3
        assert summary.progress == {"current": 0, "total": 3}
        assert not summary.is_complete

    def test_get_summary_missing(self, orchestrator):
        with pytest.raises(SessionNotFound):
            orchestrator.get_summary("nope")
