# catsync Utilities Module
# Hashing and normalization helpers

from catsync.utils.hashing import content_hash, normalize_value, record_hash

__all__ = [
    "content_hash",
    "normalize_value",
    "record_hash",
]
