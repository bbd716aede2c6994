"""Local filesystem storage backend implementation."""

import os
from pathlib import Path, PurePosixPath

import aiofiles

from marksheets.services.storage.base import StorageBackend, UploadError, calculate_checksum


class LocalStorageBackend(StorageBackend):
    """Local filesystem storage backend, keyed by the same paths used in blob storage."""

    def __init__(self, base_path: str | Path):
        """
        Initialize local storage backend.

        Args:
            base_path: Base directory path for storage
        """
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve_path(self, key: str) -> Path:
        """Map a storage key to a path below base_path, rejecting keys that escape it."""
        parts = PurePosixPath(key).parts
        if not parts or PurePosixPath(key).is_absolute() or ".." in parts:
            raise UploadError(f"Invalid storage key: {key!r}")
        return self.base_path.joinpath(*parts)

    async def save(self, file_content: bytes, key: str, content_type: str = "application/pdf") -> tuple[str, str]:
        file_path = self._resolve_path(key)
        checksum = calculate_checksum(file_content)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(file_path, "wb") as f:
                await f.write(file_content)
        except OSError as e:
            raise UploadError(f"Could not write {key}: {e}") from e
        return key, checksum

    async def retrieve(self, key: str) -> bytes:
        """
        Retrieve file content from local filesystem.

        Raises:
            FileNotFoundError: If file doesn't exist
        """
        async with aiofiles.open(self._resolve_path(key), "rb") as f:
            return await f.read()

    async def delete(self, key: str) -> None:
        if await self.exists(key):
            os.remove(self._resolve_path(key))

    async def exists(self, key: str) -> bool:
        return self._resolve_path(key).exists()
