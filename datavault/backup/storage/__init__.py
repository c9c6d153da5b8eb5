"""
Remote storage backends.

Supports:
- GoogleDriveBackend: Google Drive folders (string ids)
- PCloudBackend: pCloud folders (integer ids)
- S3Backend: S3 key prefixes
"""

import logging
from typing import List

from .base import (
    ROOT_FOLDER_NAME,
    BackendInitializationError,
    BackendNotInitializedError,
    MirrorStats,
    RemoteEntry,
    RemoteStore,
    StorageBackend,
    StorageError,
)
from .gdrive import GoogleDriveBackend
from .pcloud import DEFAULT_API_URL, PCloudBackend
from .s3 import S3Backend


logger = logging.getLogger(__name__)


def create_backends(settings, root_folder_name: str = ROOT_FOLDER_NAME,
                    pcloud_api_url: str = DEFAULT_API_URL, http_timeout: int = 30) -> List[RemoteStore]:
    """
    Construct and initialize one instance per known backend.

    Every known provider gets an instance so each cycle can report it, even
    when it is not configured. Configured providers authenticate and resolve
    their root container here, once per process.

    Args:
        settings: Resolved BackupSettings
        root_folder_name: Well-known root container name
        pcloud_api_url: pCloud API host
        http_timeout: Per-request timeout for HTTP-based providers

    Returns:
        List of backends, ready or not
    """
    backends = [
        GoogleDriveBackend(settings.gdrive_auth, root_folder_name=root_folder_name),
        PCloudBackend(
            settings.pcloud_auth,
            api_url=pcloud_api_url,
            timeout=http_timeout,
            root_folder_name=root_folder_name
        ),
        S3Backend(
            settings.s3_bucket,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            root_folder_name=root_folder_name
        ),
    ]

    for backend in backends:
        if backend.is_configured:
            backend.initialize()

    ready = [backend.display_name for backend in backends if backend.is_ready]
    logger.info(f"Backends ready: {', '.join(ready) if ready else 'none'}")

    return backends


__all__ = [
    'ROOT_FOLDER_NAME',
    'BackendInitializationError',
    'BackendNotInitializedError',
    'GoogleDriveBackend',
    'MirrorStats',
    'PCloudBackend',
    'RemoteEntry',
    'RemoteStore',
    'S3Backend',
    'StorageBackend',
    'StorageError',
    'create_backends',
]
