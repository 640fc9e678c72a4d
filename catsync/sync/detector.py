# catsync Change Detector
# Row fingerprinting and create/update/delete classification

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Optional

from catsync.sync.resources import get_contract
from catsync.sync.row import ACTION_DELETE, ACTION_DELETED, ID_COLUMN, Operation, Row
from catsync.utils.hashing import record_hash

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDED_FIELDS = ("created_at", "updated_at")


@dataclass
class SkippedRow:
    """A row the detector refused to classify, with the reason why."""

    row: Row
    reason: str


@dataclass
class ChangeSet:
    """Classification of rows relative to their last successful sync."""

    to_create: list[Row] = field(default_factory=list)
    to_update: list[Row] = field(default_factory=list)
    to_delete: list[Row] = field(default_factory=list)
    unchanged: list[Row] = field(default_factory=list)
    skipped: list[SkippedRow] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """Check if nothing needs to be sent."""
        return not (self.to_create or self.to_update or self.to_delete)

    @property
    def total_changes(self) -> int:
        """Number of rows that need dispatch."""
        return len(self.to_create) + len(self.to_update) + len(self.to_delete)

    @property
    def warnings(self) -> list[str]:
        """Human-readable warnings for skipped rows."""
        return [f"Row {s.row.row_id}: {s.reason}" for s in self.skipped]

    def changes(self) -> list[tuple[Operation, Row]]:
        """All changed rows paired with the operation they need."""
        pairs: list[tuple[Operation, Row]] = []
        pairs.extend((Operation.CREATE, row) for row in self.to_create)
        pairs.extend((Operation.UPDATE, row) for row in self.to_update)
        pairs.extend((Operation.DELETE, row) for row in self.to_delete)
        return pairs


class ChangeDetector:
    """
    Detects changed rows by comparing content fingerprints.

    The fingerprint covers business fields only: the remote id, every
    underscore-prefixed bookkeeping column and the configured read-only
    columns are excluded, so writing the fingerprint back never changes it.
    """

    def __init__(self, excluded_fields: Optional[Iterable[str]] = None):
        """
        Initialize detector.

        Args:
            excluded_fields: Read-only columns to leave out of fingerprints.
        """
        if excluded_fields is None:
            excluded_fields = DEFAULT_EXCLUDED_FIELDS
        self.excluded_fields = frozenset(excluded_fields)

    def projection(self, row: Row) -> dict[str, Any]:
        """Business fields of a row that take part in the fingerprint."""
        return {
            name: value
            for name, value in row.fields.items()
            if name != ID_COLUMN and not name.startswith("_") and name not in self.excluded_fields
        }

    def fingerprint(self, row: Row) -> str:
        """
        Compute the content fingerprint of a row.

        Args:
            row: Row to fingerprint.

        Returns:
            Hex digest over the normalized business fields.
        """
        return record_hash(self.projection(row))

    def has_changed(self, row: Row) -> bool:
        """Check if a row differs from its stored fingerprint."""
        return not row.fingerprint or row.fingerprint != self.fingerprint(row)

    def classify(self, rows: Iterable[Row]) -> ChangeSet:
        """
        Classify rows into create, update, delete, unchanged and skipped.

        Args:
            rows: Rows of one dataset.

        Returns:
            ChangeSet for this run.
        """
        change_set = ChangeSet()

        for row in rows:
            action = row.action

            if action == ACTION_DELETED:
                change_set.unchanged.append(row)
                continue

            if action == ACTION_DELETE:
                self._classify_delete(row, change_set)
                continue

            if not row.has_remote_id:
                missing = get_contract(row.kind).missing_identifiers(row, Operation.CREATE)
                if missing:
                    self._skip(change_set, row, f"cannot create {row.kind.value}: missing {', '.join(missing)}")
                else:
                    change_set.to_create.append(row)
                continue

            if self.has_changed(row):
                missing = get_contract(row.kind).missing_identifiers(row, Operation.UPDATE)
                if missing:
                    self._skip(change_set, row, f"cannot update {row.kind.value}: missing {', '.join(missing)}")
                else:
                    change_set.to_update.append(row)
            else:
                change_set.unchanged.append(row)

        logger.debug(
            "Classified rows: %d create, %d update, %d delete, %d unchanged, %d skipped",
            len(change_set.to_create),
            len(change_set.to_update),
            len(change_set.to_delete),
            len(change_set.unchanged),
            len(change_set.skipped),
        )
        return change_set

    def _classify_delete(self, row: Row, change_set: ChangeSet) -> None:
        missing = get_contract(row.kind).missing_identifiers(row, Operation.DELETE)
        if missing:
            self._skip(change_set, row, f"cannot delete {row.kind.value}: missing {', '.join(missing)}")
            return
        change_set.to_delete.append(row)

    def _skip(self, change_set: ChangeSet, row: Row, reason: str) -> None:
        logger.warning("Skipping row %s: %s", row.row_id, reason)
        change_set.skipped.append(SkippedRow(row=row, reason=reason))
