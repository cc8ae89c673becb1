"""
Array Summarizer - Schema-less profiling of JSON arrays.

Walks an arbitrary JSON value, finds every array inside it and describes
each one: where it lives, how long it is, which columns its objects carry
and per-field statistics (types, numeric ranges, cardinality, date-likeness).

Nested objects inside array elements are flattened exactly one level
(``location.city`` becomes its own field). Arrays inside elements are never
flattened; they are discovered on their own by the same traversal.
"""

import re
from typing import Any, Dict, Iterator, List, Optional, Tuple
from urllib.parse import urlparse

from ..report import ArraySummary, FieldStat


ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}(?:[Tt ][0-9:.]+(?:Z|[+\-][0-9:]+)?)?$")
ID_FIELD_RE = re.compile(r"(^id$|_id$|uuid|slug)", re.IGNORECASE)

MAX_COLUMNS = 48
MAX_EXAMPLES = 3
ENTITY_MAX_COLUMNS = 12


def json_type(value: Any) -> str:
    """
    Map a decoded JSON value to its type tag.

    Returns one of ``null``, ``boolean``, ``number``, ``string``, ``array``
    or ``object``. ``bool`` is tested before ``int`` since it subclasses it.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def is_date_like(value: Any) -> bool:
    return isinstance(value, str) and ISO_DATE_RE.match(value) is not None


def flatten_one_level(record: Dict[str, Any]) -> Iterator[Tuple[str, Any]]:
    """Yield ``(field, value)`` pairs with nested objects promoted one level."""
    for key, value in record.items():
        if json_type(value) == "object":
            for sub_key, sub_value in value.items():
                yield f"{key}.{sub_key}", sub_value
        else:
            yield key, value


def child_path(parent: str, key: Any) -> str:
    if isinstance(key, int):
        return f"{parent}[{key}]"
    return f"{parent}.{key}"


class FieldStatsBuilder:
    """
    Accumulates FieldStat records over a window of array elements.

    Example:
        >>> builder = FieldStatsBuilder()
        >>> builder.add({"id": 1, "price": None})
        >>> builder.add({"id": 2})
        >>> builder.stats["price"].nullish
        1
    """

    def __init__(self, max_unique: int = 500):
        self.max_unique = max_unique
        self.stats: Dict[str, FieldStat] = {}

    def add(self, element: Any):
        # Non-object elements contribute nothing to per-field stats
        if json_type(element) != "object":
            return

        for name, value in flatten_one_level(element):
            stat = self.stats.get(name)
            if stat is None:
                stat = self.stats[name] = FieldStat()
            self._observe(stat, value)

    def _observe(self, stat: FieldStat, value: Any):
        tag = json_type(value)
        if tag == "null":
            stat.nullish += 1
            return

        stat.present += 1
        stat.types[tag] = stat.types.get(tag, 0) + 1

        if tag == "number":
            if stat.numeric is None:
                stat.numeric = {"min": value, "max": value, "sum": 0}
            if value < stat.numeric["min"]:
                stat.numeric["min"] = value
            if value > stat.numeric["max"]:
                stat.numeric["max"] = value
            stat.numeric["sum"] += value

        if tag == "string" and is_date_like(value):
            stat.has_date_like = True

        if len(stat.examples) < MAX_EXAMPLES:
            stat.examples.append(value)

        if tag in ("string", "number"):
            stat.observe_unique(str(value), self.max_unique)


def collect_columns(sample: List[Any]) -> List[str]:
    columns: Dict[str, None] = {}
    for element in sample:
        if json_type(element) == "object":
            for key in element:
                columns.setdefault(key, None)
    return list(columns)[:MAX_COLUMNS]


def find_unique_keys(sample: List[Any], columns: List[str]) -> List[str]:
    """
    Guess identifying fields of the sampled objects.

    A field qualifies when every sampled element has a distinct string or
    number value for it. Without such a field, id-looking names are used.
    """
    objects = [element for element in sample if json_type(element) == "object"]
    if not objects:
        return []

    unique = []
    for column in columns:
        values = set()
        for element in objects:
            value = element.get(column)
            if json_type(value) in ("string", "number"):
                values.add(str(value))
        if len(values) == len(sample):
            unique.append(column)

    if unique:
        return unique
    return [column for column in columns if ID_FIELD_RE.search(column)]


def summarize_array(
    items: List[Any],
    path: str,
    max_sample_size: int = 10,
    max_elements_to_scan: int = 200,
    max_unique: int = 500,
) -> ArraySummary:
    """
    Summarize a single array found at ``path``.

    Args:
        items: The array
        path: Location of the array inside its document
        max_sample_size: Raw elements kept for display
        max_elements_to_scan: Elements profiled for statistics
        max_unique: Ceiling for distinct-value counting per field

    Returns:
        ArraySummary record
    """
    length = len(items)
    sample = items[:max_sample_size]
    scan_window = items[:max_elements_to_scan]

    summary = ArraySummary(
        path=path,
        length=length,
        scanned=len(scan_window),
        sample=list(sample),
    )

    if any(json_type(element) == "object" for element in sample):
        summary.columns = collect_columns(sample)
        summary.unique_keys = find_unique_keys(sample, summary.columns)

        builder = FieldStatsBuilder(max_unique=max_unique)
        for element in scan_window:
            builder.add(element)
        summary.field_stats = builder.stats

    return summary


def summarize_arrays(
    root: Any,
    min_array_length: int = 1,
    max_sample_size: int = 10,
    max_arrays: int = 200,
    max_elements_to_scan: int = 200,
    max_unique: int = 500,
) -> List[ArraySummary]:
    """
    Find and summarize every array inside a JSON value.

    Traversal is depth-first over an explicit stack. Records are returned in
    the order the traversal reaches them, and traversal stops as soon as
    ``max_arrays`` records exist.

    Args:
        root: Decoded JSON value
        min_array_length: Shorter arrays are traversed but not summarized
        max_sample_size: Raw elements kept per summary
        max_arrays: Maximum number of summaries returned
        max_elements_to_scan: Elements profiled per array
        max_unique: Distinct-value ceiling per field

    Returns:
        List of ArraySummary records
    """
    out: List[ArraySummary] = []
    stack: List[Tuple[Any, str]] = [(root, "$")]

    while stack and len(out) < max_arrays:
        value, path = stack.pop()
        tag = json_type(value)

        if tag == "array":
            if len(value) >= min_array_length:
                out.append(
                    summarize_array(
                        value,
                        path,
                        max_sample_size=max_sample_size,
                        max_elements_to_scan=max_elements_to_scan,
                        max_unique=max_unique,
                    )
                )
            for index, child in enumerate(value):
                stack.append((child, child_path(path, index)))

        elif tag == "object":
            for key, child in value.items():
                stack.append((child, child_path(path, key)))

    return out


def _pick(record: Any, columns: List[str]) -> Any:
    if json_type(record) != "object":
        return record
    return {column: record[column] for column in columns if column in record}


def _infer_root(value: Any) -> Tuple[Optional[List[Any]], Optional[str]]:
    if json_type(value) == "object" and json_type(value.get("data")) == "array":
        return value["data"], "data"
    if json_type(value) == "array":
        return value, "$"
    if json_type(value) == "object" and json_type(value.get("data")) == "object":
        return [value["data"]], "data(object)"
    return None, None


def summarize_entity(value: Any, url: str = "") -> Optional[Dict[str, Any]]:
    """
    Produce a small, human-oriented summary of the main list in a payload.

    Looks at ``data`` (array or object) or a root array, and returns
    ``None`` when there is nothing list-shaped to describe.
    """
    rows, path = _infer_root(value)
    if not rows:
        return None

    columns = collect_columns(rows[:10])[:ENTITY_MAX_COLUMNS]
    kind = "json"
    if re.search(r"graphql|gql", urlparse(url).path, re.IGNORECASE):
        kind = "graphql"

    return {
        "kind": kind,
        "path": path,
        "count": len(rows),
        "columns": columns,
        "sample": [_pick(row, columns) if columns else row for row in rows[:3]],
    }
