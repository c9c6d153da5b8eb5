"""
Run and outcome records for backup cycles.

- BackupRun: one stage -> upload -> cleanup cycle
- BackendOutcome: the terminal result of one backend within a run
- BackupReport: everything a cycle hands back to the CLI and HTTP layers
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


RUN_LABEL_FORMAT = 'backup_%Y-%m-%d_%H-%M-%S'


def make_run_label(started_at: datetime) -> str:
    """Build the run label used for both the staging directory and the remote container."""
    return started_at.strftime(RUN_LABEL_FORMAT)


class RunState(Enum):
    """Orchestrator states for a single cycle."""
    IDLE = 'idle'
    STAGING = 'staging'
    UPLOADING = 'uploading'
    CLEANUP = 'cleanup'
    FAILED = 'failed'


class OutcomeStatus(Enum):
    SUCCESS = 'success'
    FAILED = 'failed'
    CANCELLED = 'cancelled'
    NOT_CONFIGURED = 'not_configured'


@dataclass
class BackupRun:
    """A single backup cycle, owned by the orchestrator for its duration."""

    started_at: datetime
    label: str
    staging_path: str
    source_path: str
    logs: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class BackendOutcome:
    """
    Result of one backend for one run.

    Produced exactly once per backend per run and never mutated afterwards.
    """

    backend_name: str
    success: bool
    message: str
    status: OutcomeStatus
    error: Optional[str] = None
    completed_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def succeeded(cls, backend_name: str, message: str) -> 'BackendOutcome':
        return cls(backend_name, True, message, OutcomeStatus.SUCCESS)

    @classmethod
    def failed(cls, backend_name: str, message: str, error: Exception) -> 'BackendOutcome':
        return cls(backend_name, False, message, OutcomeStatus.FAILED, error=str(error))

    @classmethod
    def cancelled(cls, backend_name: str, message: str) -> 'BackendOutcome':
        return cls(backend_name, False, message, OutcomeStatus.CANCELLED, error='cancelled')

    @classmethod
    def not_configured(cls, backend_name: str, message: str) -> 'BackendOutcome':
        return cls(backend_name, False, message, OutcomeStatus.NOT_CONFIGURED)

    def to_dict(self) -> dict:
        return {
            'backend': self.backend_name,
            'success': self.success,
            'status': self.status.value,
            'message': self.message,
            'error': self.error,
            'completed_at': self.completed_at.isoformat(),
        }


@dataclass
class BackupReport:
    """
    Structured result of one cycle.

    `succeeded` counts successful backends and `attempted` counts backends
    that were ready to upload, so a report reads as "succeeded/attempted".
    """

    label: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    success: bool = False
    dry_run: bool = False
    cancelled: bool = False
    outcomes: List[BackendOutcome] = field(default_factory=list)
    succeeded: int = 0
    attempted: int = 0
    error: Optional[str] = None
    message: str = ''
    logs: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'label': self.label,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'success': self.success,
            'dry_run': self.dry_run,
            'cancelled': self.cancelled,
            'succeeded': self.succeeded,
            'attempted': self.attempted,
            'message': self.message,
            'error': self.error,
            'outcomes': [outcome.to_dict() for outcome in self.outcomes],
            'logs': self.logs,
        }
