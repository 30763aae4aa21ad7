"""
Canonical JSON serialization and content hashing.

Provides a stable, order-independent serialization of a snapshot that is
used directly as its content hash. The canonicalization ensures:
- Keys are sorted recursively
- Keys whose value is None are dropped at every level
- List order is preserved
- Empty strings and empty collections are kept (they are not "absent")
- No insignificant whitespace
"""

import hashlib
import json
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from ..core.models import Snapshot


def canonicalize(obj: Any) -> str:
    """
    Canonicalize a Python object to a stable JSON string.

    Two objects produce the same string iff they are equal after dropping
    None-valued keys and ignoring key order.

    Args:
        obj: The object to canonicalize

    Returns:
        Canonical JSON string
    """
    return json.dumps(
        _normalize_for_canonical(obj),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=_canonical_default,
    )


def _normalize_for_canonical(obj: Any) -> Any:
    """
    Recursively strip None-valued keys and convert tuples to lists.
    """
    if isinstance(obj, dict):
        return {
            str(k): _normalize_for_canonical(v)
            for k, v in obj.items()
            if v is not None
        }

    if isinstance(obj, (list, tuple)):
        return [_normalize_for_canonical(item) for item in obj]

    if hasattr(obj, "to_dict"):
        return _normalize_for_canonical(obj.to_dict())

    return obj


def _canonical_default(obj: Any) -> Any:
    """
    Default handler for JSON serialization of non-standard types.
    """
    if hasattr(obj, "isoformat"):
        return obj.isoformat()

    return str(obj)


def content_hash(snapshot: "Snapshot") -> str:
    """
    Compute the content hash of a snapshot.

    The hash is the canonical serialization of the synchronized content
    (projects, cards, custom colors). Metadata such as lastSaved is
    excluded so that re-stamping a document does not read as a change.
    """
    return canonicalize(snapshot.content_dict())


def short_hash(value: str, length: int = 12) -> str:
    """
    Short SHA-256 fingerprint of a content hash, for log lines only.
    """
    if not value:
        return "-"
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]
