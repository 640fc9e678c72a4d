# Tests for catsync.storage
# Table and key/value adapters

import csv

import pytest

from catsync.storage import (
    CsvTableStore,
    InMemoryTableStore,
    KeyValueStore,
    MemoryKeyValueStore,
    TableStore,
    YamlFileKeyValueStore,
)
from catsync.sync.row import ResourceKind


class TestMemoryKeyValueStore:
    """Tests for MemoryKeyValueStore."""

    def test_roundtrip_and_delete(self):
        kv = MemoryKeyValueStore()
        kv.set("a", "1")
        assert kv.get("a") == "1"
        kv.delete("a")
        assert kv.get("a") is None
        kv.delete("a")  # deleting a missing key is a no-op

    def test_keys_by_prefix(self):
        kv = MemoryKeyValueStore({"catsync:session:1": "x", "catsync:active:p": "1", "other": "y"})
        assert kv.keys("catsync:") == ["catsync:active:p", "catsync:session:1"]

    def test_satisfies_protocol(self):
        assert isinstance(MemoryKeyValueStore(), KeyValueStore)


class TestYamlFileKeyValueStore:
    """Tests for YamlFileKeyValueStore."""

    def test_persists_across_instances(self, temp_dir):
        path = temp_dir / "state" / "sessions.yaml"
        YamlFileKeyValueStore(path).set("k", "multi\nline: value")

        assert path.exists()
        assert YamlFileKeyValueStore(path).get("k") == "multi\nline: value"

    def test_missing_file(self, temp_dir):
        assert YamlFileKeyValueStore(temp_dir / "none.yaml").get("k") is None

    def test_delete(self, temp_dir):
        store = YamlFileKeyValueStore(temp_dir / "s.yaml")
        store.set("a", "1")
        store.set("b", "2")
        store.delete("a")
        assert store.keys() == ["b"]

    def test_default_path_under_home(self, temp_home):
        store = YamlFileKeyValueStore()
        assert store.path == temp_home / ".config" / "catsync" / "sessions.yaml"


class TestInMemoryTableStore:
    """Tests for InMemoryTableStore."""

    def test_read_rows(self):
        table = InMemoryTableStore()
        table.add_dataset("p", ResourceKind.PRODUCT, [{"id": "", "title": "A"}, {"id": 5.0, "title": "B", "_hash": "h"}])

        rows = table.read_rows("p")
        assert [row.row_id for row in rows] == ["1", "2"]
        assert rows[1].id == "5"
        assert rows[1].fingerprint == "h"
        assert "_hash" not in rows[1].fields

    def test_write_fields_single_call(self):
        table = InMemoryTableStore()
        table.add_dataset("p", ResourceKind.PRODUCT, [{"title": "A"}, {"title": "B"}])

        table.write_fields("p", [("1", {"_hash": "x"}), ("2", {"_hash": "y"})])

        assert table.write_calls == 1
        assert [r["_hash"] for r in table.records("p")] == ["x", "y"]

    def test_unknown_row(self):
        table = InMemoryTableStore()
        table.add_dataset("p", ResourceKind.PRODUCT, [{"title": "A"}])
        with pytest.raises(KeyError):
            table.write_fields("p", [("9", {"_hash": "x"})])

    def test_unknown_dataset(self):
        with pytest.raises(KeyError):
            InMemoryTableStore().read_rows("missing")

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryTableStore(), TableStore)


class TestCsvTableStore:
    """Tests for CsvTableStore."""

    def _write(self, path, header, rows):
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(header)
            writer.writerows(rows)

    def test_read_rows(self, temp_dir):
        path = temp_dir / "products.csv"
        self._write(path, ["id", "title", "price"], [["", "Shirt", "10.00"], ["42", "Hat", "5"]])

        rows = CsvTableStore({"products": (ResourceKind.PRODUCT, path)}).read_rows("products")

        assert len(rows) == 2
        assert rows[0].has_remote_id is False
        assert rows[1].id == "42"
        assert rows[1].fields == {"title": "Hat", "price": "5"}

    def test_write_adds_bookkeeping_columns(self, temp_dir):
        path = temp_dir / "products.csv"
        self._write(path, ["title"], [["Shirt"], ["Hat"]])
        store = CsvTableStore({"products": (ResourceKind.PRODUCT, path)})

        store.write_fields("products", [("2", {"id": "77", "_hash": "abc", "_last_synced_at": "now"})])

        with open(path, newline="", encoding="utf-8") as f:
            records = list(csv.DictReader(f))
        assert records[0] == {"title": "Shirt", "id": "", "_hash": "", "_last_synced_at": ""}
        assert records[1]["id"] == "77"
        assert records[1]["_hash"] == "abc"
        assert not path.with_suffix(".csv.tmp").exists()

    def test_missing_file(self, temp_dir):
        store = CsvTableStore({"products": (ResourceKind.PRODUCT, temp_dir / "missing.csv")})
        with pytest.raises(FileNotFoundError):
            store.read_rows("products")

    def test_unconfigured_dataset(self, temp_dir):
        with pytest.raises(KeyError):
            CsvTableStore({}).read_rows("products")

    def test_surplus_cells_rejected_with_line(self, temp_dir):
        path = temp_dir / "products.csv"
        path.write_text("id,title,_hash\n1,Shirt,abc\n2,Hat,def,EXTRA\n", encoding="utf-8")
        store = CsvTableStore({"products": (ResourceKind.PRODUCT, path)})

        with pytest.raises(ValueError, match="line 3 has 1 more cell"):
            store.read_rows("products")

    def test_short_line_reads_as_missing_values(self, temp_dir):
        path = temp_dir / "products.csv"
        path.write_text("id,title,price\n1,Shirt\n", encoding="utf-8")

        rows = CsvTableStore({"products": (ResourceKind.PRODUCT, path)}).read_rows("products")

        assert rows[0].id == "1"
        assert rows[0].get("price") is None
