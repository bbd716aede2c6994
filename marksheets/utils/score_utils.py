"""Utility functions for mark parsing and aggregation."""

import math
from collections.abc import Iterable, Mapping
from typing import Any

# Placeholder for a missing mark or grade
MISSING_MARK_SENTINEL = "-"


def parse_mark(value: Any) -> float | None:
    """
    Parse a mark value into a number.

    Returns None for the sentinel, absence codes ("A", "AB"), empty strings, NaN and
    infinities, and anything else that is not a finite number.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            mark = float(value)
        else:
            value_str = str(value).strip()
            if not value_str or value_str == MISSING_MARK_SENTINEL:
                return None
            mark = float(value_str)
    except (ValueError, OverflowError):
        return None
    return mark if math.isfinite(mark) else None


def sum_marks(values: Iterable[Any]) -> float:
    """Sum the parseable numeric subset of values; non-numeric values count as zero."""
    total = 0.0
    for value in values:
        mark = parse_mark(value)
        if mark is not None:
            total += mark
    return total


def format_total(total: float) -> str:
    """Render a total without trailing zeros, e.g. 45.0 -> '45', 45.5 -> '45.5'."""
    # A sum of finite marks can still overflow
    if not math.isfinite(total):
        return MISSING_MARK_SENTINEL
    if total == int(total):
        return str(int(total))
    return str(round(total, 2))


def aggregate_marks(values: Iterable[Any]) -> str:
    """
    Aggregate marks into a display total.

    Returns the sentinel when none of the values is numeric, so an aggregate over
    entirely missing marks stays distinguishable from a real zero.
    """
    values = list(values)
    if not any(parse_mark(v) is not None for v in values):
        return MISSING_MARK_SENTINEL
    return format_total(sum_marks(values))


def first_present(record: Mapping[str, Any], keys: Iterable[str], default: Any = MISSING_MARK_SENTINEL) -> Any:
    """Return the value of the first key present in record, or default."""
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return default
