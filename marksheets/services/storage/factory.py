"""Factory for creating storage backends."""

import logging

from marksheets.config import Settings
from marksheets.services.platform_client import PlatformClient
from marksheets.services.storage.base import StorageBackend
from marksheets.services.storage.local_backend import LocalStorageBackend
from marksheets.services.storage.platform_backend import PlatformStorageBackend

logger = logging.getLogger(__name__)


def get_storage_backend(settings: Settings, client: PlatformClient, job_id: str) -> StorageBackend:
    """
    Create the storage backend configured in settings.

    Args:
        settings: Service settings ("platform" or "local" storage_backend)
        client: Platform client used by the platform backend
        job_id: Job the uploads belong to

    Raises:
        ValueError: If the backend type is unsupported
    """
    backend_type = settings.storage_backend.lower()

    if backend_type == "platform":
        return PlatformStorageBackend(client, job_id)
    elif backend_type == "local":
        logger.info(f"Storing results locally under {settings.storage_path}")
        return LocalStorageBackend(settings.storage_path)
    else:
        raise ValueError(f"Unsupported storage backend: {settings.storage_backend}. Supported backends: platform, local")
