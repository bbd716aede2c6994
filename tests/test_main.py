import asyncio
import json
import logging

import httpx
import pytest

from conftest import API_BASE
from marksheets.config import ConfigurationError
from marksheets.main import CustomFormatter, build_config_source, build_converter, run_from_env
from marksheets.services.marksheet_config import ApiMarksheetConfigSource
from marksheets.services.pdf_converter import LocalOfficeConverter, RemoteConverter

JOB_VARIABLES = ("SCHOOL_ID", "GROUP_ID", "BATCH_ID", "JOB_ID", "TEMPLATE_URL", "STUDENT_IDS", "TEMPLATE_HEADER")


@pytest.fixture
def clean_env(monkeypatch):
    for name in JOB_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_missing_variables_exit_with_failure(clean_env, caplog):
    clean_env.setenv("SCHOOL_ID", "school_a")

    assert asyncio.run(run_from_env()) == 1
    assert "Missing required environment variables" in caplog.text


def test_malformed_template_header_exit_with_failure(clean_env, caplog):
    clean_env.setenv("TEMPLATE_HEADER", "not json")

    assert asyncio.run(run_from_env()) == 1
    assert "Invalid configuration" in caplog.text


def test_malformed_template_header_reported_to_job_history(clean_env, platform):
    clean_env.setenv("API_BASE_URL", API_BASE)
    clean_env.setenv("SCHOOL_ID", "school_a")
    clean_env.setenv("JOB_ID", "job_1")
    clean_env.setenv("TEMPLATE_HEADER", "not json")
    platform.add_json("POST", "/api/updatejobHistory", {"success": True})

    assert asyncio.run(run_from_env(transport=httpx.MockTransport(platform.handler))) == 1

    (body,) = platform.json_calls("/api/updatejobHistory")
    assert body["_school"] == "school_a"
    assert body["_uid"] == "job_1"
    assert body["payload"]["status"] is False
    assert body["payload"]["notes"].startswith("Failed: Invalid configuration")


def test_malformed_template_header_without_ids_not_reported(clean_env, platform):
    clean_env.setenv("API_BASE_URL", API_BASE)
    clean_env.setenv("TEMPLATE_HEADER", "not json")

    assert asyncio.run(run_from_env(transport=httpx.MockTransport(platform.handler))) == 1
    assert platform.requests == []


def test_build_converter(settings, make_client):
    client = make_client()
    assert isinstance(build_converter(settings, client), LocalOfficeConverter)
    remote = build_converter(settings.model_copy(update={"converter": "remote", "conversion_batch_size": 3}), client)
    assert isinstance(remote, RemoteConverter)
    assert remote.batch_size == 3
    with pytest.raises(ConfigurationError):
        build_converter(settings.model_copy(update={"converter": "word"}), client)


def test_build_config_source(settings, make_client):
    client = make_client()
    source, sessionmanager = build_config_source(settings, client)
    assert isinstance(source, ApiMarksheetConfigSource)
    assert sessionmanager is None

    with pytest.raises(ConfigurationError, match="DATABASE_URL"):
        build_config_source(settings.model_copy(update={"config_source": "database"}), client)


def test_formatter_masks_sensitive_extra_fields():
    record = logging.LogRecord("marksheets", logging.INFO, __file__, 1, "Downloading template", (), None)
    record.template_url = "https://files.test/t.odt?signature=secret"
    record.job_id = "job_1"

    text = CustomFormatter(fmt="%(message)s").format(record)
    assert text == "Downloading template | template_url=*** job_id=job_1"

    payload = json.loads(CustomFormatter(use_json=True).format(record))
    assert payload["message"] == "Downloading template"
    assert payload["template_url"] == "***"
