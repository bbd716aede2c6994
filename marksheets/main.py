"""Job entry point: read the environment, run one marksheet job and exit with its status."""
import asyncio
import json
import logging
import os
import sys
from typing import Any

import httpx
from pydantic import ValidationError
from pydantic_settings import SettingsError

from marksheets.config import ConfigurationError, JobSettings, Settings, logging_settings
from marksheets.dependencies.database import DatabaseSessionManager
from marksheets.services.job_history import JobHistoryReporter
from marksheets.services.marksheet_config import (
    ApiMarksheetConfigSource,
    DatabaseMarksheetConfigSource,
    MarksheetConfigSource,
)
from marksheets.services.marksheet_job import MarksheetJob
from marksheets.services.pdf_converter import LocalOfficeConverter, PdfConverter, RemoteConverter
from marksheets.services.platform_client import PlatformClient
from marksheets.services.storage.factory import get_storage_backend

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = {"password", "token", "authorization", "database_url", "template_url"}


class CustomFormatter(logging.Formatter):
    """Custom log formatter."""

    def __init__(self, use_json: bool = False, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.use_json = use_json
        self.default_attrs = set(vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys())

    def format(self, record: logging.LogRecord) -> str:
        """Format log record."""
        extra = {
            k: ("***" if k.lower() in SENSITIVE_KEYS else v)
            for k, v in record.__dict__.items()
            if k not in self.default_attrs and k not in ("message", "asctime")
        }

        if self.use_json:
            payload = {
                "timestamp": self.formatTime(record),
                "level": record.levelname,
                "logger": record.name,
                "env": logging_settings.ENV,
                "message": record.getMessage(),
                **extra,
            }

            if record.exc_info:
                payload["exception"] = self.formatException(record.exc_info)

            return json.dumps(payload, default=str)

        # TEXT FORMAT
        base = super().format(record)
        if extra:
            extra_info = " ".join(f"{k}={v}" for k, v in extra.items())
            return f"{base} | {extra_info}"

        return base


def setup_logging() -> None:
    """Set up logging configuration."""
    root = logging.getLogger()

    if getattr(root, "_configured", False):
        return

    root._configured = True
    root.setLevel(logging_settings.LOG_LEVEL)

    handler = logging.StreamHandler()
    formatter = CustomFormatter(
        use_json=logging_settings.LOG_FORMAT == "json",
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    handler.setFormatter(formatter)
    handler.setLevel(logging.NOTSET)

    root.handlers.clear()
    root.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def load_settings() -> tuple[Settings, JobSettings]:
    """
    Load service and job settings from the environment.

    Raises:
        ConfigurationError: If a variable cannot be parsed (e.g. TEMPLATE_HEADER is not a JSON object)
    """
    try:
        return Settings(), JobSettings()
    except (SettingsError, ValidationError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def build_converter(settings: Settings, client: PlatformClient) -> PdfConverter:
    converter = settings.converter.lower()
    if converter == "local":
        return LocalOfficeConverter(settings.office_binary, timeout=settings.conversion_timeout)
    if converter == "remote":
        return RemoteConverter(
            client.http,
            settings.conversion_url,
            timeout=settings.conversion_timeout,
            batch_size=settings.conversion_batch_size,
        )
    raise ConfigurationError(f"Unsupported converter: {settings.converter}. Supported converters: local, remote")


def build_config_source(
    settings: Settings, client: PlatformClient
) -> tuple[MarksheetConfigSource, DatabaseSessionManager | None]:
    """Return the configured config source and, for the database source, its session manager to close."""
    source = settings.config_source.lower()
    if source == "api":
        return ApiMarksheetConfigSource(client), None
    if source == "database":
        try:
            sessionmanager = DatabaseSessionManager(settings.database_url, {"echo": settings.echo_sql})
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        return DatabaseMarksheetConfigSource(sessionmanager), sessionmanager
    raise ConfigurationError(f"Unsupported config source: {settings.config_source}. Supported sources: api, database")


async def _report_startup_failure(
    settings: Settings,
    school_id: str | None,
    job_id: str | None,
    message: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    if not (job_id and school_id):
        return
    async with PlatformClient(settings, transport=transport) as client:
        await JobHistoryReporter(client, school_id, job_id).fail(message)


async def _report_unparseable_settings(message: str, transport: httpx.AsyncBaseTransport | None = None) -> None:
    """Report a settings error using the raw JOB_ID and SCHOOL_ID, when the service settings still load."""
    try:
        settings = Settings()
    except (SettingsError, ValidationError):
        logger.warning("Job history not updated: service settings could not be loaded")
        return
    await _report_startup_failure(
        settings, os.environ.get("SCHOOL_ID"), os.environ.get("JOB_ID"), message, transport=transport
    )


async def run_from_env(transport: httpx.AsyncBaseTransport | None = None) -> int:
    """
    Run one job configured by environment variables.

    Args:
        transport: Optional httpx transport for the platform client (tests use a mock transport)

    Returns:
        Process exit code: 0 on success (including "no students"), 1 on failure
    """
    try:
        settings, job = load_settings()
    except ConfigurationError as e:
        logger.error(f"❌ {e}")
        await _report_unparseable_settings(str(e), transport=transport)
        return 1

    try:
        job.validate_required()
    except ConfigurationError as e:
        logger.error(f"❌ {e}")
        await _report_startup_failure(settings, job.school_id, job.job_id, str(e), transport=transport)
        return 1

    async with PlatformClient(settings, transport=transport) as client:
        reporter = JobHistoryReporter(client, job.school_id, job.job_id)
        sessionmanager = None
        try:
            converter = build_converter(settings, client)
            config_source, sessionmanager = build_config_source(settings, client)
            storage = get_storage_backend(settings, client, job.job_id)
        except (ConfigurationError, ValueError) as e:
            logger.error(f"❌ {e}")
            await reporter.fail(str(e))
            return 1

        try:
            result = await MarksheetJob(settings, job, client, config_source, converter, storage, reporter).run()
        finally:
            if sessionmanager is not None:
                await sessionmanager.close()

    if result.status:
        logger.info(f"✅ Job finished: {result.file_path or result.notes}")
        return 0
    logger.error(f"❌ Job failed: {result.notes}")
    return 1


def main() -> None:
    setup_logging()
    sys.exit(asyncio.run(run_from_env()))


if __name__ == "__main__":
    main()
