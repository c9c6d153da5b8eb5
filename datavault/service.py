"""
Wiring of one DataVault process: backends, dispatcher, orchestrator, scheduler.

Every component is constructed once here and passed down explicitly, so
tests can substitute any of them.
"""

import logging
import os
from typing import List, Optional

from datavault.backup.cancellation import CancellationToken
from datavault.backup.cloner import DirectoryCloner
from datavault.backup.dispatcher import UploadDispatcher
from datavault.backup.orchestrator import BackupOrchestrator
from datavault.backup.storage import create_backends
from datavault.backup.storage.base import StorageBackend
from datavault.config import BackupSettings, Config
from datavault.scheduler import BackupScheduler


logger = logging.getLogger(__name__)


class DataVaultService:
    """Long-lived components for one configured source directory."""

    def __init__(self, settings: BackupSettings, backends: List[StorageBackend],
                 orchestrator: BackupOrchestrator, scheduler: BackupScheduler,
                 cancel_token: CancellationToken):
        self.settings = settings
        self.backends = backends
        self.orchestrator = orchestrator
        self.scheduler = scheduler
        self.cancel_token = cancel_token

    def backend_status(self) -> List[dict]:
        return [
            {
                'name': backend.name,
                'display_name': backend.display_name,
                'configured': backend.is_configured,
                'ready': backend.is_ready,
                'error': getattr(backend, 'init_error', None),
            }
            for backend in self.backends
        ]


def build_service(settings: BackupSettings, app_config=None,
                  backends: Optional[List[StorageBackend]] = None,
                  cancel_token: Optional[CancellationToken] = None) -> DataVaultService:
    """
    Build all components for validated settings.

    Args:
        settings: Validated BackupSettings
        app_config: Mapping or Config class with TEMP_DIR, ROOT_FOLDER_NAME, etc. (default: Config)
        backends: Prebuilt backends (default: create_backends(settings))
        cancel_token: Process-wide cancellation signal

    Returns:
        DataVaultService
    """
    app_config = app_config or Config
    get = app_config.get if isinstance(app_config, dict) else lambda key: getattr(app_config, key)

    cancel_token = cancel_token or CancellationToken()

    if backends is None:
        backends = create_backends(
            settings,
            root_folder_name=get('ROOT_FOLDER_NAME'),
            pcloud_api_url=get('PCLOUD_API_URL'),
            http_timeout=get('HTTP_TIMEOUT')
        )

    staging_root = get('TEMP_DIR')
    os.makedirs(staging_root, exist_ok=True)

    orchestrator = BackupOrchestrator(
        source_path=settings.source_folder,
        dispatcher=UploadDispatcher(backends),
        staging_root=staging_root,
        cloner=DirectoryCloner(settings.excludes),
        dry_run=settings.dry_run
    )

    scheduler = BackupScheduler(
        orchestrator,
        settings.backup_interval,
        cancel_token=cancel_token,
        timezone_name=get('SCHEDULER_TIMEZONE')
    )

    return DataVaultService(settings, backends, orchestrator, scheduler, cancel_token)
