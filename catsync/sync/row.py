# catsync Sync Row
# Tabular row representation shared by detection, queueing and dispatch

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

# Bookkeeping columns owned by the engine
ID_COLUMN = "id"
FINGERPRINT_COLUMN = "_hash"
SYNCED_AT_COLUMN = "_last_synced_at"
ACTION_COLUMN = "_action"
ERRORS_COLUMN = "_errors"
PRIORITY_COLUMN = "_priority"
OWNER_RESOURCE_COLUMN = "owner_resource"

# Values of the _action column
ACTION_DELETE = "delete"
ACTION_DELETED = "deleted"


class ResourceKind(str, Enum):
    """Remote catalog resource a row mirrors."""

    PRODUCT = "product"
    VARIANT = "variant"
    METAFIELD = "metafield"
    IMAGE = "image"


class Operation(str, Enum):
    """Remote operation to perform for a queued row."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    MIXED = "mixed"  # Resolved at dispatch time from the row's remote id


@dataclass
class Row:
    """
    A single row of a tabular dataset mirroring a remote resource.

    Business fields live in ``fields``. The remote identifier, fingerprint
    and sync timestamp are kept apart since the engine reads and writes them.
    """

    row_id: str
    kind: ResourceKind
    id: str = ""
    fields: dict[str, Any] = field(default_factory=dict)
    fingerprint: str = ""
    last_synced_at: Optional[str] = None

    @property
    def has_remote_id(self) -> bool:
        """Check if the row already exists remotely."""
        return bool(self.id)

    @property
    def action(self) -> str:
        """Lower-cased value of the _action column."""
        return str(self.fields.get(ACTION_COLUMN) or "").strip().lower()

    def get(self, name: str, default: Any = None) -> Any:
        """Get a field value, treating empty strings as missing."""
        value = self.fields.get(name)
        if value is None or value == "":
            return default
        return value

    def snapshot(self) -> "Row":
        """Return a deep copy detached from later in-place edits."""
        return copy.deepcopy(self)

    def to_record(self) -> dict[str, Any]:
        """Convert to a flat record as stored in a table."""
        record: dict[str, Any] = {ID_COLUMN: self.id}
        record.update(self.fields)
        record[FINGERPRINT_COLUMN] = self.fingerprint
        record[SYNCED_AT_COLUMN] = self.last_synced_at or ""
        return record

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "row_id": self.row_id,
            "kind": self.kind.value,
            "id": self.id,
            "fields": dict(self.fields),
            "fingerprint": self.fingerprint,
            "last_synced_at": self.last_synced_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Row":
        """Create from dictionary."""
        return cls(
            row_id=str(data.get("row_id", "")),
            kind=ResourceKind(data.get("kind", ResourceKind.PRODUCT.value)),
            id=str(data.get("id") or ""),
            fields=dict(data.get("fields") or {}),
            fingerprint=str(data.get("fingerprint") or ""),
            last_synced_at=data.get("last_synced_at"),
        )

    @classmethod
    def from_record(cls, record: dict[str, Any], *, row_id: str, kind: ResourceKind) -> "Row":
        """
        Create from a flat table record.

        Args:
            record: Column name to cell value.
            row_id: Key of the row inside its table.
            kind: Resource kind of the dataset.

        Returns:
            Row with bookkeeping columns split out of ``fields``.
        """
        fields = {
            key: value
            for key, value in record.items()
            if key not in (ID_COLUMN, FINGERPRINT_COLUMN, SYNCED_AT_COLUMN)
        }
        synced_at = record.get(SYNCED_AT_COLUMN) or None
        return cls(
            row_id=row_id,
            kind=kind,
            id=_clean_id(record.get(ID_COLUMN)),
            fields=fields,
            fingerprint=str(record.get(FINGERPRINT_COLUMN) or ""),
            last_synced_at=str(synced_at) if synced_at else None,
        )


def _clean_id(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()
