"""Application configuration settings."""
import json
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when required job configuration is missing or malformed."""

    pass


class Settings(BaseSettings):
    """Service-level settings shared by every job run."""

    model_config = SettingsConfigDict(env_ignore_empty=True)

    # Platform API settings
    api_base_url: str = "https://demoschool.edusparsh.com"
    marks_endpoint: str = "/api/cce_examv1/getMarks"
    marksheet_config_endpoint: str = "/api/cce_examv1/marksheetConfig"
    school_detail_endpoint: str = "/api/getSchoolDetail"
    naming_convention_endpoint: str = ""  # Empty disables naming-convention lookup
    upload_endpoint: str = "/api/uploadfileToDigitalOcean"
    job_history_endpoint: str = "/api/updatejobHistory"
    http_timeout: float = 60.0
    # Subject/exam-group config source
    config_source: str = "api"  # api, database
    database_url: str = ""  # Required when config_source=database
    echo_sql: bool = False
    # Conversion settings
    converter: str = "local"  # local, remote
    office_binary: str = "libreoffice"
    conversion_url: str = "https://demo.gotenberg.dev"
    conversion_timeout: float = 300.0
    conversion_batch_size: int = 5
    # Storage settings
    storage_backend: str = "platform"  # platform, local
    storage_path: str = "storage/results"
    # Output settings
    output_dir: str = "output"
    cleanup_output: bool = True
    generate_pdf: bool = True  # False uploads a zip of the rendered documents
    compress_pdf: bool = True
    pdf_title: str = "Student Marksheet"
    mask_regions: list[list[float]] = []  # [[x, y, width, height], ...] in points
    image_frames: dict[str, str] = {}  # draw:frame name -> student field holding an image URL
    xlsx_header_row: int = 18

    @field_validator("mask_regions")
    @classmethod
    def validate_mask_regions(cls, v: list[list[float]]) -> list[list[float]]:
        """Each region must be exactly [x, y, width, height]."""
        for region in v:
            if len(region) != 4:
                raise ValueError(f"Mask region must have 4 values [x, y, width, height]. Got: {region}")
        return v


class JobSettings(BaseSettings):
    """Per-job parameters passed in through environment variables."""

    model_config = SettingsConfigDict(env_ignore_empty=True)

    school_id: str = ""
    group_id: str = ""  # Comma separated exam group ids
    batch_id: str = ""  # Plain batch id or JSON list of {_uid, examGroupData: [{_uid}]}
    course_id: str = ""
    job_id: str = ""
    template_url: str = ""
    ranking_id: str = ""
    division_id: str = ""
    student_ids: str = ""  # Optional comma separated filter
    template_header: dict[str, Any] = {}

    @property
    def group_ids(self) -> list[str]:
        return [g.strip() for g in self.group_id.split(",") if g.strip()]

    @property
    def student_id_filter(self) -> set[str]:
        return {s.strip() for s in self.student_ids.split(",") if s.strip()}

    def _batch_list(self) -> list[dict[str, Any]] | None:
        """Parse BATCH_ID as a JSON batch list, or None for a plain id."""
        raw = self.batch_id.strip()
        if not raw.startswith("["):
            return None
        try:
            batches = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"BATCH_ID is not valid JSON: {e}") from e
        if not isinstance(batches, list) or not all(isinstance(b, dict) and b.get("_uid") for b in batches):
            raise ConfigurationError("BATCH_ID JSON must be a list of objects with an _uid")
        return batches

    def batch_selections(self) -> list[tuple[str, list[str]]]:
        """
        Return the (batch_id, group_ids) pairs to fetch marks for.

        A JSON batch list carries its own exam groups per batch; groups that are
        missing from a batch fall back to GROUP_ID.
        """
        batches = self._batch_list()
        if batches is None:
            return [(self.batch_id.strip(), self.group_ids)]

        selections = []
        for batch in batches:
            groups: list[str] = []
            for group in batch.get("examGroupData") or []:
                uid = str(group.get("_uid", "")).strip()
                if uid and uid not in groups:
                    groups.append(uid)
            selections.append((str(batch["_uid"]), groups or self.group_ids))
        return selections

    @property
    def batch_key(self) -> str:
        """Batch identifier used in upload keys."""
        batches = self._batch_list()
        if batches is None:
            return self.batch_id.strip()
        return "-".join(str(b["_uid"]) for b in batches)

    @property
    def all_group_ids(self) -> list[str]:
        """Union of exam groups across every batch selection, in first-seen order."""
        seen: list[str] = []
        for _, groups in self.batch_selections():
            for group in groups:
                if group not in seen:
                    seen.append(group)
        return seen

    def missing_required(self) -> list[str]:
        """Names of required environment variables that are not set."""
        missing = [
            name.upper()
            for name in ("template_url", "school_id", "batch_id", "job_id")
            if not getattr(self, name).strip()
        ]
        if self.batch_id.strip():
            if not all(groups for _, groups in self.batch_selections()):
                missing.append("GROUP_ID")
        elif not self.group_ids:
            missing.append("GROUP_ID")
        return missing

    def validate_required(self) -> None:
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # "text" or "json"
    ENV: str = "dev"  # dev | staging | prod

    class Config:
        env_prefix = "APP_"


logging_settings = LoggingSettings()
