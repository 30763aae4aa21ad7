"""
Snapshot module: canonical hashing, structural diff and the local holder.

This module provides:
- canonicalize / content_hash: order-independent content fingerprint
- diff / flatten_diff: field-level diagnostics for conflicts
- SnapshotHolder: the locally mutable snapshot with change notification
"""

from .canonical import canonicalize, content_hash, short_hash
from .diff import diff, flatten_diff, summarize_diff
from .holder import SnapshotHolder, default_snapshot

__all__ = [
    "canonicalize",
    "content_hash",
    "short_hash",
    "diff",
    "flatten_diff",
    "summarize_diff",
    "SnapshotHolder",
    "default_snapshot",
]
