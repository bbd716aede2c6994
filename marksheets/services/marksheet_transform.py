"""Reshape flat student mark records into the nested marksheet structure used by templates."""

import re
from typing import Any

from marksheets.schemas.marksheet import CoScholasticArea, Exam, MarksheetConfig, Subject
from marksheets.utils.score_utils import aggregate_marks, first_present

# Short codes used by the marks API for common subjects
SUBJECT_SHORT_CODES = {
    "science": "sc",
    "social science": "so",
    "english": "en",
    "hindi": "hi",
    "maths": "ma",
    "mathematics": "ma",
    "sanskrit": "sp",
    "practical": "pr",
    "computer": "co",
}


def subject_short_code(subject: Subject) -> str:
    """
    Derive the short code the marks API uses in its keys for a subject.

    Known subject names map through SUBJECT_SHORT_CODES; otherwise multi-word names use
    their initials ("Environmental Studies" -> "es") and single words their first two
    letters ("Hindi" -> "hi").
    """
    name = subject.name.strip().lower()
    if not name:
        return ""
    if name in SUBJECT_SHORT_CODES:
        return SUBJECT_SHORT_CODES[name]

    words = re.split(r"\s+", name)
    if len(words) > 1:
        return "".join(w[0] for w in words)
    return name[:2]


def _exams_for(config: MarksheetConfig, group_uid: str, subject_uid: str) -> list[Exam]:
    return [
        exam
        for exam in config.exams
        if exam.exam_group == group_uid and exam.subject is not None and exam.subject.uid == subject_uid
    ]


def _subject_row(record: dict[str, Any], subject: Subject, config: MarksheetConfig) -> dict[str, Any]:
    code = subject.code
    short = subject_short_code(subject)
    groups: dict[str, dict[str, Any]] = {}

    for group in config.exam_groups:
        g = group.group_code
        marks: dict[str, Any] = {}
        for exam in _exams_for(config, group.uid, subject.uid):
            if not exam.short_code:
                continue
            marks[exam.short_code] = first_present(record, [f"{g}_{code}_{exam.short_code}"])

        total = first_present(record, [f"{g}_{code}_Ob_MarksC", f"{g}_{short}_Ob_Marks"], default=None)
        if total is None:
            total = aggregate_marks(marks.values())
        grade = first_present(record, [f"{g}_{code}_GdC", f"{g}_{short}_Gd"])

        groups[g] = {**marks, "total": total, "grade": grade}

    grand_total = first_present(record, [f"grand_{code}_Marks", f"grand_{short}_Marks"], default=None)
    if grand_total is None:
        grand_total = aggregate_marks(group["total"] for group in groups.values())
    grand_grade = first_present(record, [f"grand_{code}_gd", f"grand_{short}_gd"])

    return {
        "name": subject.name,
        "code": code,
        "groups": groups,
        "grandTotal": grand_total,
        "grandGrade": grand_grade,
    }


def _co_scholastic_row(record: dict[str, Any], area: CoScholasticArea, config: MarksheetConfig) -> dict[str, Any]:
    grades = {
        group.group_code: first_present(
            record, [f"{group.group_code}_{area.code}_Gd", f"{group.group_code}_{area.code}"]
        )
        for group in config.exam_groups
    }
    return {"name": area.name, "code": area.code, "grades": grades}


def transform_student(record: dict[str, Any], config: MarksheetConfig) -> dict[str, Any]:
    """
    Transform a flat student record into the nested structure consumed by templates.

    All top-level record fields pass through unchanged, and the following are added:

    - ``subjects``: one row per config subject, in config order, shaped as
      ``{name, code, groups: {groupCode: {examShortCode: mark, total, grade}}, grandTotal, grandGrade}``
    - ``co_scholastic``: one row per co-scholastic area with its grade per exam group

    Missing marks and grades become the sentinel "-". A missing total is aggregated from
    the parseable marks it is made of. The function is pure: the same record and config
    always give an equal result, and the record is not modified.
    """
    structured: dict[str, Any] = dict(record)
    structured["subjects"] = [_subject_row(record, subject, config) for subject in config.subjects]
    structured["co_scholastic"] = [_co_scholastic_row(record, area, config) for area in config.co_scholastic]
    return structured

