"""Client for the school platform HTTP API (marks, config, school detail, uploads, job history)."""

import logging
from typing import Any

import httpx

from marksheets.config import Settings

logger = logging.getLogger(__name__)


class PlatformAPIError(Exception):
    """Raised when a platform API call fails or returns a non-2xx response."""

    def __init__(self, endpoint: str, status_code: int | None, detail: str):
        self.endpoint = endpoint
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{endpoint} failed ({status_code}): {detail}" if status_code else f"{endpoint} failed: {detail}")


class PlatformClient:
    """
    Async client for the platform API.

    Use as an async context manager so the underlying connection pool is closed:

        async with PlatformClient(settings) as client:
            students = await client.get_marks(...)
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.http_timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self) -> "PlatformClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def http(self) -> httpx.AsyncClient:
        """Underlying httpx client, shared with collaborators that call non-platform URLs."""
        return self._client

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, endpoint, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Request to {endpoint} failed: {e}")
            raise PlatformAPIError(endpoint, None, str(e) or type(e).__name__) from e

        if not response.is_success:
            detail = response.text or response.reason_phrase
            logger.error(f"Platform API error from {endpoint}: {response.status_code} {detail}")
            raise PlatformAPIError(endpoint, response.status_code, detail)
        return response

    async def _post_json(self, endpoint: str, payload: dict[str, Any]) -> Any:
        response = await self._request("POST", endpoint, json=payload)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise PlatformAPIError(endpoint, response.status_code, f"Invalid JSON response: {e}") from e

    async def get_marks(
        self,
        school_id: str,
        batch_id: str,
        group_ids: list[str],
        division_id: str = "",
        ranking_id: str = "",
    ) -> list[dict[str, Any]]:
        """
        Fetch flat per-student mark records for one batch.

        Returns:
            List of student records (empty if the API returns none)
        """
        payload = {
            "_school": school_id,
            "batchId": [batch_id],
            "group": group_ids,
            "currentdata": {"division_id": division_id, "ranking_id": ranking_id},
        }
        body = await self._post_json(self.settings.marks_endpoint, payload) or {}
        if isinstance(body, list):
            students = body
        else:
            students = body.get("students") or body.get("data") or []
        if not isinstance(students, list):
            raise PlatformAPIError(self.settings.marks_endpoint, None, "Expected a list of students")
        return students

    async def get_marksheet_config(self, school_id: str, group_ids: list[str]) -> dict[str, Any]:
        """Fetch subject/exam-group config from the transform endpoint."""
        body = await self._post_json(
            self.settings.marksheet_config_endpoint, {"_school": school_id, "group": group_ids}
        ) or {}
        data = body.get("data", body) if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise PlatformAPIError(self.settings.marksheet_config_endpoint, None, "Expected a config object")
        return data

    async def get_school_detail(self, school_id: str) -> dict[str, Any]:
        """Fetch school details (name, address, logo, ...) used in template headers."""
        body = await self._post_json(self.settings.school_detail_endpoint, {"_school": school_id}) or {}
        data = body.get("data", body) if isinstance(body, dict) else body
        if isinstance(data, list):
            return data[0] if data else {}
        return data or {}

    async def get_naming_convention(self, school_id: str) -> str | None:
        """
        Fetch the school's file naming pattern for per-student documents, e.g. "{roll_no}_{full_name}".

        Returns None when no endpoint is configured or the school has no convention.
        """
        if not self.settings.naming_convention_endpoint:
            return None
        body = await self._post_json(
            self.settings.naming_convention_endpoint, {"_school": school_id, "type": "marksheet"}
        ) or {}
        data = body.get("data", body) if isinstance(body, dict) else {}
        if isinstance(data, list):
            data = data[0] if data else {}
        pattern = data.get("pattern") if isinstance(data, dict) else None
        return str(pattern) if pattern else None

    async def download(self, url: str) -> bytes:
        """Download a file (template or image) by absolute URL."""
        response = await self._request("GET", url)
        return response.content

    async def upload_file(
        self,
        content: bytes,
        key: str,
        job_id: str,
        filename: str,
        content_type: str = "application/pdf",
    ) -> dict[str, Any]:
        """Upload a file to blob storage through the platform upload endpoint."""
        files = {"photo": (filename, content, content_type)}
        data = {"key": key, "ContentType": content_type, "jobId": job_id}
        response = await self._request("POST", self.settings.upload_endpoint, files=files, data=data)
        try:
            return response.json() if response.content else {}
        except ValueError:
            return {}

    async def update_job_history(self, school_id: str, job_id: str, payload: dict[str, Any]) -> None:
        """Write the terminal state of a job to the platform job_history table."""
        await self._post_json(
            self.settings.job_history_endpoint,
            {"_school": school_id, "table": "job_history", "_uid": job_id, "payload": payload},
        )
