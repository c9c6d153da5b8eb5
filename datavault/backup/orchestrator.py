"""
Backup orchestrator - sequences one complete backup cycle.

Workflow:
1. Create BackupRun (label backup_YYYY-MM-DD_HH-MM-SS)
2. Stage: clone the source tree into <staging_root>/<label>/<source name>
3. Upload: dispatch the staged tree to every backend concurrently
4. Cleanup: remove the staging directory (always, best-effort)
5. Report: BackupReport with per-backend outcomes

States: IDLE -> STAGING -> UPLOADING -> CLEANUP -> IDLE, with FAILED
entered from STAGING when cloning fails (cleanup still runs).
"""

import logging
import os
import shutil
import stat
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from .cancellation import BackupCancelled, CancellationToken
from .cloner import DirectoryCloner, StagingError
from .dispatcher import UploadDispatcher, summarize
from .models import BackupReport, BackupRun, OutcomeStatus, RunState, make_run_label


logger = logging.getLogger(__name__)

# Attempts at moving past the previous run's label second before giving up
LABEL_WAIT_ATTEMPTS = 3


class BackupInProgressError(Exception):
    """Raised when a cycle is triggered while another one is still running."""
    pass


class BackupOrchestrator:
    """
    Runs backup cycles for one source directory.

    At most one cycle runs at a time; a trigger that arrives while a cycle
    is active is rejected with BackupInProgressError instead of queueing.
    """

    def __init__(self, source_path: str, dispatcher: UploadDispatcher, staging_root: str,
                 cloner: Optional[DirectoryCloner] = None, dry_run: bool = False,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize backup orchestrator.

        Args:
            source_path: Absolute path of the directory to back up
            dispatcher: Dispatcher holding the backends
            staging_root: Directory under which per-run staging directories are created
            cloner: Directory cloner (default: no exclude patterns)
            dry_run: Stage and log, but perform no uploads
            clock: Time source for run labels (default: datetime.now)
        """
        self.source_path = source_path
        self.dispatcher = dispatcher
        self.staging_root = staging_root
        self.cloner = cloner or DirectoryCloner()
        self.dry_run = dry_run
        self.clock = clock or _now

        self.state = RunState.IDLE
        self.current_run: Optional[BackupRun] = None
        self.last_report: Optional[BackupReport] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def run_backup(self, cancel_token: Optional[CancellationToken] = None) -> BackupReport:
        """
        Execute one backup cycle.

        Cycle failures (staging errors, all uploads failing, cancellation)
        are recorded in the returned report rather than raised.

        Args:
            cancel_token: Shared cancellation signal

        Returns:
            BackupReport for this cycle

        Raises:
            BackupInProgressError: If another cycle is currently running
        """
        if not self._lock.acquire(blocking=False):
            raise BackupInProgressError("A backup cycle is already running")

        try:
            return self._run_cycle(cancel_token or CancellationToken())
        finally:
            self._lock.release()

    def _run_cycle(self, cancel_token: CancellationToken) -> BackupReport:
        started_at = self._start_time()
        label = make_run_label(started_at)
        run = BackupRun(
            started_at=started_at,
            label=label,
            staging_path=os.path.join(self.staging_root, label),
            source_path=self.source_path
        )
        report = BackupReport(label=label, started_at=started_at, dry_run=self.dry_run)
        self.current_run = run

        self._log(f"Starting backup of: {self.source_path}")

        try:
            self._execute_workflow(run, report, cancel_token)

        except StagingError as e:
            self.state = RunState.FAILED
            report.success = False
            report.error = str(e)
            report.message = f"Failed to copy source directory: {e}"
            self._log(report.message, logging.ERROR)

        except BackupCancelled:
            report.success = False
            report.cancelled = True
            report.message = "Backup cancelled"
            self._log("Backup cancelled before upload", logging.WARNING)

        except Exception as e:
            self.state = RunState.FAILED
            report.success = False
            report.error = str(e)
            report.message = f"Backup failed: {e}"
            logger.exception("Unexpected error during backup cycle")
            self._log(report.message, logging.ERROR)

        finally:
            self.state = RunState.CLEANUP
            self._cleanup(run.staging_path)

            report.finished_at = self.clock()
            report.logs = list(run.logs)
            self.current_run = None
            self.last_report = report
            self.state = RunState.IDLE

        return report

    def _start_time(self) -> datetime:
        """
        Read the clock, waiting for the next second while the label would
        repeat the previous cycle's.
        """
        started_at = self.clock()
        previous_label = self.last_report.label if self.last_report else None

        for _ in range(LABEL_WAIT_ATTEMPTS):
            if make_run_label(started_at) != previous_label:
                break
            time.sleep(1 - started_at.microsecond / 1_000_000)
            started_at = self.clock()

        return started_at

    def _execute_workflow(self, run: BackupRun, report: BackupReport, cancel_token: CancellationToken):
        """Execute the staging and upload steps."""
        # Step 1: Stage
        self.state = RunState.STAGING
        cancel_token.check()

        try:
            os.makedirs(run.staging_path, mode=0o755)
        except OSError as e:
            raise StagingError(f"failed to create backup directory: {e}")

        source_name = os.path.basename(os.path.normpath(self.source_path)) or 'root'
        dest_path = os.path.join(run.staging_path, source_name)

        stats = self.cloner.clone(self.source_path, dest_path)
        self._log(f"Successfully copied {self.source_path} to {dest_path} ({stats.files} files, {stats.bytes_copied} bytes)")

        if self.dry_run:
            targets = ', '.join(backend.display_name for backend in self.dispatcher.ready_backends) or 'none'
            self._log(f"Dry run: Would upload {run.label} to cloud drives ({targets})")
            report.success = True
            report.message = "Dry run completed, no uploads performed"
            return

        # Step 2: Upload
        self.state = RunState.UPLOADING
        outcomes = self.dispatcher.dispatch(dest_path, run.label, cancel_token)

        report.outcomes = outcomes
        report.succeeded, report.attempted = summarize(outcomes)
        report.cancelled = any(outcome.status == OutcomeStatus.CANCELLED for outcome in outcomes)

        for outcome in outcomes:
            self._log(f"Upload result: {outcome.message}", logging.DEBUG)

        if report.succeeded == 0:
            report.success = False
            report.message = "Backup cancelled" if report.cancelled else "All uploads failed"
            report.error = report.message
            self._log(report.message, logging.ERROR)
            return

        report.success = True
        report.message = f"Backup completed successfully ({report.succeeded}/{report.attempted} uploads succeeded)"
        self._log(report.message)

    def _cleanup(self, staging_path: str):
        """Remove the staging directory. Failures are logged, never raised."""
        if not os.path.exists(staging_path):
            return

        try:
            _make_tree_writable(staging_path)
            shutil.rmtree(staging_path)
            self._log("Cleaned up temporary directory", logging.DEBUG)
        except OSError as e:
            self._log(f"Warning: Failed to cleanup temp directory {staging_path}: {e}", logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Record a timestamped message on the current run and emit it through logging.

        Args:
            message: Log message
            level: logging level
        """
        logger.log(level, message)

        if self.current_run is not None:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
            self.current_run.logs.append(f"[{timestamp}] {logging.getLevelName(level)} {message}")


def _make_tree_writable(path: str):
    # Staged directories carry source permission bits; rmtree needs owner rwx to descend and unlink
    os.chmod(path, stat.S_IRWXU)
    for dirpath, dirnames, _ in os.walk(path):
        for name in dirnames:
            child = os.path.join(dirpath, name)
            if not os.path.islink(child):
                os.chmod(child, stat.S_IRWXU)


def _now() -> datetime:
    return datetime.now()
