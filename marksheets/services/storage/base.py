"""Base interface for storage backends."""

import hashlib
from abc import ABC, abstractmethod


def calculate_checksum(content: bytes) -> str:
    """Calculate SHA256 checksum of file content."""
    return hashlib.sha256(content).hexdigest()


class UploadError(Exception):
    """Raised when a generated file cannot be stored."""

    pass


class StorageBackend(ABC):
    """Abstract base class for storage backends (platform blob store, local filesystem)."""

    @abstractmethod
    async def save(self, file_content: bytes, key: str, content_type: str = "application/pdf") -> tuple[str, str]:
        """
        Save file content under a storage key.

        Args:
            file_content: File content as bytes
            key: Storage key, e.g. "templates/marksheets/{school}/result/{batch}_{job}.pdf"
            content_type: MIME type of the content

        Returns:
            Tuple of (stored_key, checksum)

        Raises:
            UploadError: If the content could not be stored
        """
        pass
