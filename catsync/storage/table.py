# catsync Table Storage
# Tabular data store port with in-memory and CSV adapters

import csv
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from catsync.sync.row import FINGERPRINT_COLUMN, ID_COLUMN, SYNCED_AT_COLUMN, ResourceKind, Row

FieldUpdate = tuple[str, dict[str, Any]]


@runtime_checkable
class TableStore(Protocol):
    """Tabular store holding the locally-editable datasets."""

    def read_rows(self, dataset_id: str) -> list[Row]: ...

    def write_fields(self, dataset_id: str, updates: Sequence[FieldUpdate]) -> None: ...


class InMemoryTableStore:
    """
    Table store keeping records in memory.

    Row ids are 1-based positions within the dataset.
    """

    def __init__(self) -> None:
        self._datasets: dict[str, tuple[ResourceKind, list[dict[str, Any]]]] = {}
        self.write_calls = 0

    def add_dataset(self, dataset_id: str, kind: ResourceKind, records: Iterable[dict[str, Any]]) -> None:
        """Register a dataset with its records."""
        self._datasets[dataset_id] = (kind, [dict(record) for record in records])

    def records(self, dataset_id: str) -> list[dict[str, Any]]:
        """Raw records of a dataset."""
        return self._get(dataset_id)[1]

    def _get(self, dataset_id: str) -> tuple[ResourceKind, list[dict[str, Any]]]:
        if dataset_id not in self._datasets:
            raise KeyError(f"Dataset '{dataset_id}' not found")
        return self._datasets[dataset_id]

    def read_rows(self, dataset_id: str) -> list[Row]:
        kind, records = self._get(dataset_id)
        return [Row.from_record(record, row_id=str(index), kind=kind) for index, record in enumerate(records, start=1)]

    def write_fields(self, dataset_id: str, updates: Sequence[FieldUpdate]) -> None:
        _, records = self._get(dataset_id)
        for row_id, fields in updates:
            index = int(row_id) - 1
            if index < 0 or index >= len(records):
                raise KeyError(f"Row '{row_id}' not found in dataset '{dataset_id}'")
            records[index].update(fields)
        self.write_calls += 1


class CsvTableStore:
    """
    Table store backed by one CSV file per dataset.

    Row ids are 1-based data line numbers (header excluded). Writes rewrite
    the whole file through a temporary sibling.
    """

    def __init__(self, datasets: dict[str, tuple[ResourceKind, Path]]):
        """
        Initialize CSV store.

        Args:
            datasets: Dataset id to (resource kind, CSV path).
        """
        self.datasets = {name: (kind, Path(path).expanduser()) for name, (kind, path) in datasets.items()}

    def _get(self, dataset_id: str) -> tuple[ResourceKind, Path]:
        if dataset_id not in self.datasets:
            raise KeyError(f"Dataset '{dataset_id}' not configured")
        return self.datasets[dataset_id]

    def _read(self, path: Path) -> tuple[list[str], list[dict[str, Any]]]:
        if not path.exists():
            raise FileNotFoundError(f"Dataset file not found: {path}")

        with open(path, newline="", encoding="utf-8") as f:
            reader = csv.DictReader(f)
            records = []
            for record in reader:
                # DictReader files surplus cells under the key None
                extra = record.get(None)
                if extra:
                    raise ValueError(
                        f"{path}: line {reader.line_num} has {len(extra)} more cell(s) than the header"
                    )
                records.append(dict(record))
            header = list(reader.fieldnames or [])
        return header, records

    def read_rows(self, dataset_id: str) -> list[Row]:
        kind, path = self._get(dataset_id)
        _, records = self._read(path)
        return [Row.from_record(record, row_id=str(index), kind=kind) for index, record in enumerate(records, start=1)]

    def write_fields(self, dataset_id: str, updates: Sequence[FieldUpdate]) -> None:
        _, path = self._get(dataset_id)
        header, records = self._read(path)

        for row_id, fields in updates:
            index = int(row_id) - 1
            if index < 0 or index >= len(records):
                raise KeyError(f"Row '{row_id}' not found in dataset '{dataset_id}'")
            for name in fields:
                if name not in header:
                    header.append(name)
            records[index].update({name: "" if value is None else value for name, value in fields.items()})

        # Bookkeeping columns always present after the first write-back
        for name in (ID_COLUMN, FINGERPRINT_COLUMN, SYNCED_AT_COLUMN):
            if name not in header:
                header.append(name)

        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=header, extrasaction="ignore")
            writer.writeheader()
            for record in records:
                writer.writerow({name: record.get(name, "") for name in header})
        tmp_path.replace(path)
