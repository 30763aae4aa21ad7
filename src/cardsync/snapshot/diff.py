"""
Structural diff between two snapshots, for conflict diagnostics.

The diff is shown to the user while they decide how to resolve a conflict.
Nothing in the sync engine branches on it.
"""

from typing import Any, Dict, Tuple

from .canonical import canonicalize


LEFT = "left"
RIGHT = "right"
ARRAY_MISMATCH = "array_mismatch"


def _as_plain(obj: Any) -> Any:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return obj


class DiffLeaf(dict):
    """
    A differing value: ``{"left": ..., "right": ...}``.

    A dict subclass so trees stay JSON-serializable; nested nodes are plain
    dicts even when their only keys happen to be "left" and "right".
    """


def _leaf(left: Any, right: Any, **extra: Any) -> DiffLeaf:
    return DiffLeaf({LEFT: left, RIGHT: right}, **extra)


def _is_leaf(node: Any) -> bool:
    return isinstance(node, DiffLeaf)


def diff(a: Any, b: Any) -> Dict[str, Any]:
    """
    Recursive field-level diff of two objects.

    Returns a nested mapping keyed by field name. Each differing field maps
    either to a nested diff (both sides are objects) or to a DiffLeaf
    ``{"left": value_in_a, "right": value_in_b}``. Lists are compared as
    whole units; a differing list yields a leaf with
    ``"type": "array_mismatch"`` carrying both full lists.

    Equality uses the canonical serialization, so key order and None-valued
    keys never show up as differences.

    Args:
        a: Left object (Snapshot, model or plain dict)
        b: Right object

    Returns:
        Diff tree (empty when equal)
    """
    a = _as_plain(a)
    b = _as_plain(b)

    if not isinstance(a, dict) or not isinstance(b, dict):
        if canonicalize(a) == canonicalize(b):
            return {}
        return _leaf(a, b)

    result: Dict[str, Any] = {}
    for key in sorted(set(a) | set(b)):
        left = a.get(key)
        right = b.get(key)

        if canonicalize(left) == canonicalize(right):
            continue

        if isinstance(left, dict) and isinstance(right, dict):
            nested = diff(left, right)
            if nested:
                result[key] = nested
        elif isinstance(left, list) or isinstance(right, list):
            result[key] = _leaf(left, right, type=ARRAY_MISMATCH)
        else:
            result[key] = _leaf(left, right)

    return result


def flatten_diff(tree: Dict[str, Any], prefix: str = "") -> Dict[str, Tuple[Any, Any]]:
    """
    Flatten a diff tree into ``{"dotted.path": (left, right)}``.
    """
    if _is_leaf(tree):
        return {prefix or "$": (tree[LEFT], tree[RIGHT])}

    flat: Dict[str, Tuple[Any, Any]] = {}
    for key, node in tree.items():
        path = f"{prefix}.{key}" if prefix else key
        if _is_leaf(node):
            flat[path] = (node[LEFT], node[RIGHT])
        else:
            flat.update(flatten_diff(node, path))
    return flat


def summarize_diff(tree: Dict[str, Any], limit: int = 20) -> str:
    """Human-readable summary of a diff tree."""
    flat = flatten_diff(tree)
    if not flat:
        return "No differences"

    lines = [f"{len(flat)} differing field(s):"]
    for path, (left, right) in list(flat.items())[:limit]:
        if isinstance(left, list) or isinstance(right, list):
            left_len = len(left) if isinstance(left, list) else 0
            right_len = len(right) if isinstance(right, list) else 0
            lines.append(f"  {path}: list differs ({left_len} local vs {right_len} remote items)")
        else:
            lines.append(f"  {path}: {left!r} -> {right!r}")
    if len(flat) > limit:
        lines.append(f"  ... {len(flat) - limit} more")
    return "\n".join(lines)
