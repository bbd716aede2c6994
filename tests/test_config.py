import json

import pytest
from pydantic import ValidationError

from marksheets.config import ConfigurationError, JobSettings, Settings


def test_plain_batch_selection():
    job = JobSettings(batch_id="b1", group_id="g1, g2,")
    assert job.batch_selections() == [("b1", ["g1", "g2"])]
    assert job.batch_key == "b1"
    assert job.all_group_ids == ["g1", "g2"]


def test_json_batch_list_carries_groups():
    batches = [
        {"_uid": "b1", "examGroupData": [{"_uid": "g1"}, {"_uid": "g2"}]},
        {"_uid": "b2", "examGroupData": []},
    ]
    job = JobSettings(batch_id=json.dumps(batches), group_id="g9")

    assert job.batch_selections() == [("b1", ["g1", "g2"]), ("b2", ["g9"])]
    assert job.batch_key == "b1-b2"
    assert job.all_group_ids == ["g1", "g2", "g9"]


def test_malformed_batch_json():
    with pytest.raises(ConfigurationError):
        JobSettings(batch_id="[{not json").batch_selections()
    with pytest.raises(ConfigurationError):
        JobSettings(batch_id='[{"name": "no uid"}]').batch_selections()


def test_missing_required_variables():
    job = JobSettings(school_id="s1")
    assert job.missing_required() == ["TEMPLATE_URL", "BATCH_ID", "JOB_ID", "GROUP_ID"]
    with pytest.raises(ConfigurationError, match="TEMPLATE_URL"):
        job.validate_required()


def test_group_id_optional_when_batches_carry_groups():
    job = JobSettings(
        school_id="s1",
        job_id="j1",
        template_url="https://files.test/t.odt",
        batch_id=json.dumps([{"_uid": "b1", "examGroupData": [{"_uid": "g1"}]}]),
    )
    assert job.missing_required() == []


def test_student_id_filter():
    assert JobSettings(student_ids="st1, st2").student_id_filter == {"st1", "st2"}
    assert JobSettings().student_id_filter == set()


def test_job_settings_from_environment(monkeypatch):
    monkeypatch.setenv("SCHOOL_ID", "school_a")
    monkeypatch.setenv("JOB_ID", "job_1")
    monkeypatch.setenv("TEMPLATE_HEADER", '{"exam_title": "Annual Examination"}')
    monkeypatch.setenv("STUDENT_IDS", "")

    job = JobSettings()

    assert job.school_id == "school_a"
    assert job.job_id == "job_1"
    assert job.template_header == {"exam_title": "Annual Examination"}
    assert job.student_ids == ""


def test_mask_regions_need_four_values():
    assert Settings(mask_regions=[[0, 0, 100, 20]]).mask_regions == [[0, 0, 100, 20]]
    with pytest.raises(ValidationError):
        Settings(mask_regions=[[0, 0, 100]])
