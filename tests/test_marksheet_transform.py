import copy

import pytest

from marksheets.schemas.marksheet import CoScholasticArea, Exam, ExamGroup, MarksheetConfig, Subject
from marksheets.services.marksheet_config import build_marksheet_config
from marksheets.services.marksheet_transform import subject_short_code, transform_student

MATHS = Subject(uid="s1", name="Mathematics", code="MA")
SCIENCE = Subject(uid="s2", name="Science", code="SC")


@pytest.fixture
def config() -> MarksheetConfig:
    groups = [
        ExamGroup(uid="g1", group_code="T1", name="Term 1"),
        ExamGroup(uid="g2", group_code="T2", name="Term 2"),
    ]
    exams = [
        Exam(exam_code="T1_MA_PT", exam_group="g1", subject=MATHS),
        Exam(exam_code="T1_MA_HY", exam_group="g1", subject=MATHS),
        Exam(exam_code="T1_SC_PT", exam_group="g1", subject=SCIENCE),
        Exam(exam_code="T2_MA_AN", exam_group="g2", subject=MATHS),
    ]
    areas = [CoScholasticArea(code="ART", name="Art Education")]
    return build_marksheet_config(groups, exams, areas)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Mathematics", "ma"),
        ("Social Science", "so"),
        ("Environmental Studies", "es"),
        ("Punjabi", "pu"),
        ("", ""),
    ],
)
def test_subject_short_code(name, expected):
    assert subject_short_code(Subject(uid="x", name=name)) == expected


def test_subjects_follow_config_order(config):
    result = transform_student({"full_name": "Asha"}, config)
    assert [row["name"] for row in result["subjects"]] == ["Mathematics", "Science"]
    assert result["full_name"] == "Asha"


def test_exam_marks_and_reported_totals(config):
    record = {
        "T1_MA_pt": "18",
        "T1_MA_hy": "70",
        "T1_MA_Ob_MarksC": "88",
        "T1_MA_GdC": "A1",
        "grand_MA_Marks": "170",
        "grand_ma_gd": "A2",
    }
    maths = transform_student(record, config)["subjects"][0]

    assert maths["groups"]["T1"] == {"pt": "18", "hy": "70", "total": "88", "grade": "A1"}
    assert maths["grandTotal"] == "170"
    assert maths["grandGrade"] == "A2"


def test_short_name_key_fallbacks(config):
    record = {"T2_ma_Ob_Marks": "60", "T2_ma_Gd": "B1"}
    maths = transform_student(record, config)["subjects"][0]
    assert maths["groups"]["T2"]["total"] == "60"
    assert maths["groups"]["T2"]["grade"] == "B1"


def test_missing_marks_use_sentinel(config):
    result = transform_student({}, config)
    maths = result["subjects"][0]
    assert maths["groups"]["T1"] == {"pt": "-", "hy": "-", "total": "-", "grade": "-"}
    assert maths["grandTotal"] == "-"
    assert maths["grandGrade"] == "-"


def test_totals_aggregate_when_not_reported(config):
    record = {"T1_MA_pt": "18", "T1_MA_hy": "AB", "T2_MA_an": "60.5"}
    maths = transform_student(record, config)["subjects"][0]
    assert maths["groups"]["T1"]["total"] == "18"
    assert maths["groups"]["T2"]["total"] == "60.5"
    assert maths["grandTotal"] == "78.5"


def test_exams_only_from_their_group_and_subject(config):
    science = transform_student({"T1_SC_pt": "9"}, config)["subjects"][1]
    assert set(science["groups"]["T1"]) == {"pt", "total", "grade"}
    assert set(science["groups"]["T2"]) == {"total", "grade"}


def test_co_scholastic_grades(config):
    record = {"T1_ART_Gd": "A", "T2_ART": "B"}
    (art,) = transform_student(record, config)["co_scholastic"]
    assert art == {"name": "Art Education", "code": "ART", "grades": {"T1": "A", "T2": "B"}}


def test_transform_is_pure_and_deterministic(config):
    record = {"full_name": "Asha", "T1_MA_pt": "18", "subjects": "raw"}
    snapshot = copy.deepcopy(record)

    first = transform_student(record, config)
    second = transform_student(record, config)

    assert first == second
    assert record == snapshot


def test_empty_config_gives_empty_rows():
    result = transform_student({"full_name": "Asha"}, MarksheetConfig())
    assert result["subjects"] == []
    assert result["co_scholastic"] == []


def test_non_finite_marks_count_as_missing(config):
    record = {"T1_MA_pt": "NaN", "T1_MA_hy": "70", "T2_MA_an": "Infinity"}
    maths = transform_student(record, config)["subjects"][0]
    assert maths["groups"]["T1"]["pt"] == "NaN"
    assert maths["groups"]["T1"]["total"] == "70"
    assert maths["groups"]["T2"]["total"] == "-"
    assert maths["grandTotal"] == "70"
