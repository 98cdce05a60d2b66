"""Logical filter evaluation shared by document store adapters.

Filters are flat dicts. Keys are dotted field paths with an optional lookup
suffix, e.g. ``{"status": "running", "analysis.status__in": ["pending"],
"updated_at__lt": cutoff}``. Supported lookups: ``eq`` (default), ``ne``,
``in``, ``lt``, ``lte``, ``gt``, ``gte``, ``exists``.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

_MISSING = object()
_LOOKUPS = {"eq", "ne", "in", "lt", "lte", "gt", "gte", "exists"}
_ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}")


def get_path(doc: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted path, returning a sentinel when any segment is missing."""
    current: Any = doc
    for part in str(path).split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def split_lookup(key: str) -> Tuple[str, str]:
    field, sep, lookup = str(key).rpartition("__")
    if sep and lookup in _LOOKUPS:
        return field, lookup
    return str(key), "eq"


def _parse_datetime(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _normalize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and _ISO_RE.match(value):
        parsed = _parse_datetime(value)
        if parsed is not None:
            return parsed
    return value


def _compare(actual: Any, lookup: str, expected: Any) -> bool:
    if lookup == "exists":
        return (actual is not _MISSING and actual is not None) == bool(expected)
    if lookup == "in":
        options = [_normalize(item) for item in (expected or [])]
        return actual is not _MISSING and _normalize(actual) in options
    if lookup == "ne":
        return actual is _MISSING or _normalize(actual) != _normalize(expected)
    if actual is _MISSING:
        return False
    left, right = _normalize(actual), _normalize(expected)
    if lookup == "eq":
        return left == right
    if left is None or right is None:
        return False
    try:
        if lookup == "lt":
            return left < right
        if lookup == "lte":
            return left <= right
        if lookup == "gt":
            return left > right
        if lookup == "gte":
            return left >= right
    except TypeError:
        return False
    return False


def matches(doc: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    for key, expected in (filters or {}).items():
        field, lookup = split_lookup(key)
        if not _compare(get_path(doc, field), lookup, expected):
            return False
    return True


def _sort_key(doc: Dict[str, Any], field: str) -> Tuple[int, Any]:
    value = get_path(doc, field)
    if value is _MISSING or value is None:
        return (0, 0)
    value = _normalize(value)
    if isinstance(value, datetime):
        return (1, value.timestamp())
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (1, value)
    return (2, str(value))


def apply_query(
    docs: Iterable[Dict[str, Any]],
    filters: Optional[Dict[str, Any]] = None,
    *,
    order_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """Filter, sort and page an iterable of documents. Missing sort values sort first."""
    selected = [doc for doc in docs if matches(doc, filters)]
    if order_by:
        selected.sort(key=lambda doc: _sort_key(doc, order_by), reverse=descending)
    start = max(0, int(offset or 0))
    if limit is None:
        return selected[start:]
    return selected[start:start + max(0, int(limit))]
