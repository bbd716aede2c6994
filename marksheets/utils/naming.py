"""Utility functions for naming generated documents and upload keys."""

import re
import string
from collections.abc import Mapping
from typing import Any

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]+')
_WHITESPACE = re.compile(r"\s+")


def safe_filename(text: str) -> str:
    """
    Make text safe to use as a file name.

    Whitespace runs become "_", path separators and other unsafe characters are
    removed, and leading/trailing dots and underscores are stripped.
    """
    text = _WHITESPACE.sub("_", str(text).strip())
    text = _UNSAFE_CHARS.sub("", text)
    return text.strip("._")


def _pattern_fields(pattern: str) -> list[str]:
    return [field for _, field, _, _ in string.Formatter().parse(pattern) if field]


def student_document_name(record: Mapping[str, Any], index: int, pattern: str | None = None) -> str:
    """
    Build the file stem for a student's rendered document.

    Args:
        record: Flat student record
        index: 1-based position of the student in the job
        pattern: Naming convention such as "{roll_no}_{full_name}"; fields missing from
            the record are left empty. Defaults to "{index}_{full_name}".

    Returns:
        File stem without extension, "student_{index}" if nothing usable remains
    """
    pattern = pattern or "{index}_{full_name}"
    values: dict[str, Any] = {"index": index}
    for field in _pattern_fields(pattern):
        if field == "index":
            continue
        value = record.get(field)
        values[field] = "" if value is None else value

    try:
        name = pattern.format(**values)
    except (ValueError, IndexError, KeyError, AttributeError):
        # Positional fields, attribute access or malformed braces
        name = ""

    name = safe_filename(name)
    return name or f"student_{index}"


def unique_name(name: str, taken: set[str]) -> str:
    """Append a counter to name until it is not in taken, then record it."""
    candidate = name
    counter = 2
    while candidate in taken:
        candidate = f"{name}_{counter}"
        counter += 1
    taken.add(candidate)
    return candidate


def result_key(school_id: str, batch_key: str, job_id: str, ext: str = "pdf") -> str:
    """Storage key of a job's final artifact."""
    return f"templates/marksheets/{school_id}/result/{batch_key}_{job_id}.{ext.lstrip('.')}"
