# catsync State Reconciler
# Post-dispatch write-back of fingerprint, sync timestamp and remote id

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from catsync.sync.detector import ChangeDetector
from catsync.sync.errors import ReconciliationFailure
from catsync.sync.row import (
    ACTION_COLUMN,
    ACTION_DELETED,
    ERRORS_COLUMN,
    FINGERPRINT_COLUMN,
    ID_COLUMN,
    SYNCED_AT_COLUMN,
    Operation,
    Row,
)

if TYPE_CHECKING:
    from catsync.storage.table import FieldUpdate, TableStore

logger = logging.getLogger(__name__)


@dataclass
class DispatchedRow:
    """
    A row whose remote call succeeded.

    ``snapshot`` is the copy the payload was built from. ``row`` is the
    live row that receives the reconciled values.
    """

    row: Row
    snapshot: Row
    operation: Operation
    remote_id: str = ""


class StateReconciler:
    """
    Writes fingerprints back after successful dispatch.

    Fingerprints are computed from the snapshot that was sent, never from
    the live row, so edits made while a call was in flight are detected on
    the next run.
    """

    def __init__(
        self,
        table: TableStore,
        detector: ChangeDetector,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize reconciler.

        Args:
            table: Table store holding the dataset.
            detector: Detector providing the fingerprint function.
            clock: Returns the current aware datetime.
        """
        self.table = table
        self.detector = detector
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def build_updates(self, dispatched: Sequence[DispatchedRow]) -> list[FieldUpdate]:
        """
        Field updates for a set of successfully dispatched rows.

        Args:
            dispatched: Rows whose remote calls succeeded.

        Returns:
            List of (row_id, fields) pairs.
        """
        synced_at = self._clock().isoformat()
        updates: list[FieldUpdate] = []

        for entry in dispatched:
            fields: dict[str, Any] = {
                FINGERPRINT_COLUMN: self.detector.fingerprint(entry.snapshot),
                SYNCED_AT_COLUMN: synced_at,
            }
            if entry.operation == Operation.CREATE and entry.remote_id:
                fields[ID_COLUMN] = entry.remote_id
            if entry.operation == Operation.DELETE:
                fields[ACTION_COLUMN] = ACTION_DELETED
            if entry.snapshot.get(ERRORS_COLUMN) is not None:
                fields[ERRORS_COLUMN] = ""
            updates.append((entry.snapshot.row_id, fields))

        return updates

    def reconcile_after_success(self, dataset_id: str, dispatched: Sequence[DispatchedRow]) -> list[FieldUpdate]:
        """
        Persist fingerprint and sync timestamp for dispatched rows.

        All rows are written in a single ``write_fields`` call.

        Args:
            dataset_id: Dataset the rows belong to.
            dispatched: Rows whose remote calls succeeded.

        Returns:
            The updates written.

        Raises:
            ReconciliationFailure: If the table store rejects the write.
        """
        if not dispatched:
            return []

        updates = self.build_updates(dispatched)
        try:
            self.table.write_fields(dataset_id, updates)
        except Exception as e:
            row_ids = [row_id for row_id, _ in updates]
            raise ReconciliationFailure(
                f"Write-back failed for {len(row_ids)} row(s) in '{dataset_id}': {e}",
                row_ids=row_ids,
            ) from e

        for entry, (_, fields) in zip(dispatched, updates):
            _apply(entry.row, fields)

        logger.debug("Reconciled %d row(s) in %s", len(updates), dataset_id)
        return updates

    def record_errors(self, dataset_id: str, failures: Sequence[tuple[str, str]]) -> None:
        """
        Write per-row error messages into the errors column.

        Args:
            dataset_id: Dataset the rows belong to.
            failures: (row_id, message) pairs.
        """
        if not failures:
            return
        self.table.write_fields(dataset_id, [(row_id, {ERRORS_COLUMN: message}) for row_id, message in failures])


def _apply(row: Row, fields: dict[str, Any]) -> None:
    for name, value in fields.items():
        if name == FINGERPRINT_COLUMN:
            row.fingerprint = value
        elif name == SYNCED_AT_COLUMN:
            row.last_synced_at = value
        elif name == ID_COLUMN:
            row.id = value
        else:
            row.fields[name] = value
