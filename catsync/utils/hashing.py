# catsync Hashing Utilities
# Content hashing and value normalization for change detection

import hashlib
import json
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

_TRUE_STRINGS = {"true"}
_FALSE_STRINGS = {"false"}


def content_hash(content: str | bytes, *, algorithm: str = "sha256") -> str:
    """
    Calculate hash of content.

    Args:
        content: String or bytes content.
        algorithm: Hash algorithm (default sha256).

    Returns:
        Hex digest of hash.
    """
    if isinstance(content, str):
        content = content.encode("utf-8")

    hasher = hashlib.new(algorithm)
    hasher.update(content)
    return hasher.hexdigest()


def normalize_value(value: Any) -> str:
    """
    Normalize a cell value to its canonical string form.

    Numbers and numeric-looking strings compare equal ("10.00" == 10),
    booleans and "TRUE"/"false" strings collapse to "true"/"false",
    None and empty strings both become "".

    Args:
        value: Raw cell value.

    Returns:
        Canonical string representation.
    """
    if value is None:
        return ""

    if isinstance(value, bool):
        return "true" if value else "false"

    if isinstance(value, (int, float, Decimal)):
        return _canonical_number(Decimal(str(value)))

    text = str(value).strip()
    lowered = text.lower()
    if lowered in _TRUE_STRINGS:
        return "true"
    if lowered in _FALSE_STRINGS:
        return "false"

    number = _parse_number(text)
    if number is not None:
        return _canonical_number(number)

    return text


def record_hash(record: Mapping[str, Any], *, algorithm: str = "sha256") -> str:
    """
    Calculate a stable hash of a flat record.

    Keys are sorted and values normalized so that logically equal
    records hash identically regardless of column order or type.

    Args:
        record: Mapping of field name to raw value.
        algorithm: Hash algorithm (default sha256).

    Returns:
        Hex digest of hash.
    """
    normalized = {str(key): normalize_value(value) for key, value in record.items()}
    payload = json.dumps(normalized, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return content_hash(payload, algorithm=algorithm)


def _parse_number(text: str) -> Decimal | None:
    if not text:
        return None
    # Reject forms Decimal accepts but a spreadsheet user would not mean as numbers
    if text.lower() in ("nan", "inf", "-inf", "infinity", "-infinity", "snan"):
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


def _canonical_number(number: Decimal) -> str:
    if not number.is_finite():
        return str(number)
    if number == 0:
        return "0"
    normalized = number.normalize()
    return format(normalized, "f")
