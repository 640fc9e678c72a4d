# catsync Storage Module
# Ports and adapters for tabular data and session persistence

from catsync.storage.kv import KeyValueStore, MemoryKeyValueStore, YamlFileKeyValueStore
from catsync.storage.table import CsvTableStore, InMemoryTableStore, TableStore

__all__ = [
    # Key/value
    "KeyValueStore",
    "MemoryKeyValueStore",
    "YamlFileKeyValueStore",
    # Tables
    "TableStore",
    "InMemoryTableStore",
    "CsvTableStore",
]
