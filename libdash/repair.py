"""Corruption detection and repair for the stored library document.

A record that went through a bad serialize/deserialize cycle ends up as an
object keyed by array positions ("0", "1", ...). Such records, and records
missing the minimal fields of their entity, are dropped on load. The
aggressive cleanup path looks at the raw stored value instead and resets
the document when it finds the signature anywhere.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Tuple

from libdash.storage import KeyValueStorage

logger = logging.getLogger(__name__)

COLLECTIONS = ("books", "borrowers", "librarians", "borrowings", "membershipApplications")

POLICY_RESET = "reset"
POLICY_ISOLATE = "isolate"

# Keys that parse as an integer: optional whitespace and sign, then a digit
_INTEGER_PREFIX = re.compile(r"\s*[+-]?\d")


def default_document() -> Dict[str, List[Dict[str, Any]]]:
    return {name: [] for name in COLLECTIONS}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_string(value: Any) -> bool:
    return isinstance(value, str)


def is_numeric_key(key: str) -> bool:
    return len(key) <= 3 and _INTEGER_PREFIX.match(key) is not None


def has_corruption_signature(record: Any) -> bool:
    """True when a record looks like a serialized array instead of a keyed record."""
    if not isinstance(record, Mapping):
        return True
    return any(is_numeric_key(str(key)) for key in record.keys())


def is_structurally_valid(record: Any) -> bool:
    return (
        isinstance(record, Mapping)
        and not has_corruption_signature(record)
        and _is_number(record.get("id"))
    )


def _book_shape(record: Mapping) -> bool:
    return _is_string(record.get("name")) or _is_string(record.get("title"))


def _borrower_shape(record: Mapping) -> bool:
    return _is_string(record.get("name"))


def _borrowing_shape(record: Mapping) -> bool:
    has_item = _is_number(record.get("bookId")) or _is_number(record.get("researchId"))
    return (
        _is_number(record.get("borrowerId"))
        and has_item
        and _is_string(record.get("borrowDate"))
        and _is_string(record.get("dueDate"))
        and _is_string(record.get("status"))
    )


SHAPE_CHECKS: Dict[str, Callable[[Mapping], bool]] = {
    "books": _book_shape,
    "borrowers": _borrower_shape,
    "borrowings": _borrowing_shape,
}


def is_valid_record(collection: str, record: Any) -> bool:
    """Structural check plus the minimal field shape of the collection's entity."""
    if not is_structurally_valid(record):
        return False
    check = SHAPE_CHECKS.get(collection)
    return check(record) if check else True


def clean_collection(collection: str, records: Any) -> Tuple[List[Dict[str, Any]], int]:
    """Filter a collection down to valid records. Returns (kept, dropped_count)."""
    if not isinstance(records, list):
        return [], 0
    kept = [dict(record) for record in records if is_valid_record(collection, record)]
    dropped = len(records) - len(kept)
    if dropped:
        logger.warning("Cleaned %d corrupted %s entries", dropped, collection)
    return kept, dropped


def validate_and_clean_document(data: Any) -> Tuple[Dict[str, List[Dict[str, Any]]], int]:
    """Rebuild a default-shaped document keeping only valid records."""
    clean = default_document()
    total_dropped = 0
    if not isinstance(data, Mapping):
        return clean, 0
    for name in COLLECTIONS:
        kept, dropped = clean_collection(name, data.get(name))
        clean[name] = kept
        total_dropped += dropped
    return clean, total_dropped


def corrupted_collections(data: Mapping) -> List[str]:
    """Names of list-valued entries containing a non-mapping or signature record."""
    names = []
    for name, value in data.items():
        if not isinstance(value, list):
            continue
        if any(has_corruption_signature(item) for item in value):
            names.append(name)
    return names


def aggressive_cleanup(storage: KeyValueStorage, key: str, policy: str = POLICY_RESET) -> Dict[str, Any]:
    """Inspect the raw stored document and recover from the corruption signature.

    With the reset policy any corrupted collection discards the whole
    document. With the isolate policy only the corrupted collections are
    emptied and the rest of the document is written back untouched.
    """
    logger.info("Running aggressive data cleanup on %s", key)
    raw = storage.get_item(key)
    if not raw:
        return default_document()

    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Stored document under %s is not valid JSON, clearing it", key)
        storage.remove_item(key)
        return default_document()

    if not isinstance(data, dict):
        logger.warning("Stored document under %s is not an object, clearing it", key)
        storage.remove_item(key)
        return default_document()

    bad = corrupted_collections(data)
    if not bad:
        logger.info("Aggressive data cleanup complete, no corruption found")
        return data

    if policy == POLICY_ISOLATE:
        logger.warning("Corruption detected in %s, resetting those collections", ", ".join(bad))
        for name in bad:
            data[name] = []
        storage.set_item(key, json.dumps(data))
        return data

    logger.warning("Corruption detected in %s, forcing complete reset", ", ".join(bad))
    storage.remove_item(key)
    return default_document()


def purge_unparseable_keys(storage: KeyValueStorage) -> List[str]:
    """Remove every key whose value does not parse as JSON."""
    removed = []
    for key in storage.keys():
        value = storage.get_item(key)
        if not value:
            continue
        try:
            json.loads(value)
        except ValueError:
            storage.remove_item(key)
            removed.append(key)
    if removed:
        logger.warning("Removed unparseable storage entries: %s", ", ".join(removed))
    return removed
