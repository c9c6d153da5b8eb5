"""
Backup module for DataVault.

This module handles the core backup functionality including:
- Staging (directory cloning)
- Remote storage backends (Google Drive, pCloud, S3)
- Concurrent upload dispatch
- Cycle orchestration
"""

from .cancellation import BackupCancelled, CancellationToken
from .cloner import DirectoryCloner, StagingError
from .dispatcher import UploadDispatcher
from .models import BackendOutcome, BackupReport, BackupRun, OutcomeStatus, RunState
from .orchestrator import BackupInProgressError, BackupOrchestrator
from .storage import create_backends

__all__ = [
    'BackendOutcome',
    'BackupCancelled',
    'BackupInProgressError',
    'BackupOrchestrator',
    'BackupReport',
    'BackupRun',
    'CancellationToken',
    'DirectoryCloner',
    'OutcomeStatus',
    'RunState',
    'StagingError',
    'UploadDispatcher',
    'create_backends',
]
