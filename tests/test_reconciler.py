# Tests for catsync.sync.reconciler
# Fingerprint write-back after dispatch

import pytest

from catsync.sync.detector import ChangeDetector
from catsync.sync.errors import ReconciliationFailure
from catsync.sync.reconciler import DispatchedRow, StateReconciler
from catsync.sync.row import Operation, ResourceKind


class _FailingTable:
    def write_fields(self, dataset_id, updates):
        raise OSError("disk full")


@pytest.fixture
def products(table):
    table.add_dataset(
        "products",
        ResourceKind.PRODUCT,
        [
            {"id": "", "title": "New shirt"},
            {"id": "42", "title": "Hat", "_hash": "stale", "_errors": "previous failure"},
            {"id": "43", "title": "Old", "_action": "delete"},
        ],
    )
    return table


class TestReconcileAfterSuccess:
    """Tests for reconcile_after_success."""

    def test_writes_fingerprint_and_timestamp(self, products, clock):
        detector = ChangeDetector()
        reconciler = StateReconciler(products, detector, clock=clock)
        row = products.read_rows("products")[1]

        reconciler.reconcile_after_success(
            "products", [DispatchedRow(row=row, snapshot=row.snapshot(), operation=Operation.UPDATE)]
        )

        record = products.records("products")[1]
        assert record["_hash"] == detector.fingerprint(row)
        assert record["_last_synced_at"] == clock().isoformat()
        assert record["_errors"] == ""
        assert row.fingerprint == record["_hash"]

    def test_second_classification_is_unchanged(self, products, clock):
        detector = ChangeDetector()
        reconciler = StateReconciler(products, detector, clock=clock)
        row = products.read_rows("products")[1]
        assert detector.has_changed(row)

        reconciler.reconcile_after_success(
            "products", [DispatchedRow(row=row, snapshot=row.snapshot(), operation=Operation.UPDATE)]
        )

        reread = products.read_rows("products")[1]
        assert not detector.has_changed(reread)

    def test_create_writes_remote_id(self, products, clock):
        reconciler = StateReconciler(products, ChangeDetector(), clock=clock)
        row = products.read_rows("products")[0]

        reconciler.reconcile_after_success(
            "products",
            [DispatchedRow(row=row, snapshot=row.snapshot(), operation=Operation.CREATE, remote_id="1001")],
        )

        assert products.records("products")[0]["id"] == "1001"
        assert row.id == "1001"
        assert "_errors" not in products.records("products")[0]

    def test_delete_marks_row_deleted(self, products, clock):
        reconciler = StateReconciler(products, ChangeDetector(), clock=clock)
        row = products.read_rows("products")[2]

        reconciler.reconcile_after_success(
            "products", [DispatchedRow(row=row, snapshot=row.snapshot(), operation=Operation.DELETE)]
        )

        assert products.records("products")[2]["_action"] == "deleted"

    def test_fingerprint_from_snapshot_not_live_row(self, products, clock):
        detector = ChangeDetector()
        reconciler = StateReconciler(products, detector, clock=clock)
        row = products.read_rows("products")[1]
        snapshot = row.snapshot()
        row.fields["title"] = "Edited while in flight"

        reconciler.reconcile_after_success(
            "products", [DispatchedRow(row=row, snapshot=snapshot, operation=Operation.UPDATE)]
        )

        assert products.records("products")[1]["_hash"] == detector.fingerprint(snapshot)
        assert detector.has_changed(row)

    def test_single_write_for_many_rows(self, products, clock):
        reconciler = StateReconciler(products, ChangeDetector(), clock=clock)
        rows = products.read_rows("products")[:2]

        updates = reconciler.reconcile_after_success(
            "products",
            [DispatchedRow(row=row, snapshot=row.snapshot(), operation=Operation.UPDATE) for row in rows],
        )

        assert [row_id for row_id, _ in updates] == ["1", "2"]
        assert products.write_calls == 1

    def test_nothing_dispatched(self, products):
        reconciler = StateReconciler(products, ChangeDetector())
        assert reconciler.reconcile_after_success("products", []) == []
        assert products.write_calls == 0

    def test_store_failure_raises(self, products):
        row = products.read_rows("products")[1]
        reconciler = StateReconciler(_FailingTable(), ChangeDetector())

        with pytest.raises(ReconciliationFailure) as excinfo:
            reconciler.reconcile_after_success(
                "products", [DispatchedRow(row=row, snapshot=row.snapshot(), operation=Operation.UPDATE)]
            )

        assert excinfo.value.row_ids == ["2"]
        assert "disk full" in str(excinfo.value)
        assert row.fingerprint == "stale"


class TestRecordErrors:
    """Tests for record_errors."""

    def test_writes_error_column(self, products):
        StateReconciler(products, ChangeDetector()).record_errors("products", [("1", "title can't be blank")])
        assert products.records("products")[0]["_errors"] == "title can't be blank"

    def test_no_failures_no_write(self, products):
        StateReconciler(products, ChangeDetector()).record_errors("products", [])
        assert products.write_calls == 0
