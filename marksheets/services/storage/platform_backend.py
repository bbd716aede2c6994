"""Blob storage backend that uploads through the platform upload endpoint."""

import logging
from pathlib import PurePosixPath

from marksheets.services.platform_client import PlatformAPIError, PlatformClient
from marksheets.services.storage.base import StorageBackend, UploadError, calculate_checksum

logger = logging.getLogger(__name__)


class PlatformStorageBackend(StorageBackend):
    """Uploads files to the platform's blob store, tagged with the job they belong to."""

    def __init__(self, client: PlatformClient, job_id: str):
        self.client = client
        self.job_id = job_id

    async def save(self, file_content: bytes, key: str, content_type: str = "application/pdf") -> tuple[str, str]:
        checksum = calculate_checksum(file_content)
        filename = f"merged_output{PurePosixPath(key).suffix}"
        logger.info(f"Uploading {filename} via API to path: {key}")
        try:
            await self.client.upload_file(file_content, key, self.job_id, filename, content_type)
        except PlatformAPIError as e:
            raise UploadError(f"File upload API failed: {e.detail}") from e
        return key, checksum
