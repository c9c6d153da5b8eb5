"""
APScheduler configuration and backup scheduling for DataVault.

Manages:
- The recurring backup job (runs immediately, then every interval)
- Manual one-off triggers
- Shutdown on cancellation
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from datavault.backup.cancellation import CancellationToken
from datavault.backup.models import BackupReport
from datavault.backup.orchestrator import BackupInProgressError, BackupOrchestrator


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'scheduled_backup'


class BackupScheduler:
    """
    Repeats the orchestrator on a fixed interval until cancelled.

    A failed cycle is logged and never stops the schedule; only the
    cancellation token ends `run_forever()`.
    """

    def __init__(self, orchestrator: BackupOrchestrator, interval_seconds: int,
                 cancel_token: Optional[CancellationToken] = None, timezone_name: str = 'UTC'):
        """
        Initialize backup scheduler.

        Args:
            orchestrator: Orchestrator to run each cycle
            interval_seconds: Seconds between cycle starts
            cancel_token: Process-wide cancellation signal
            timezone_name: Scheduler timezone
        """
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self.cancel_token = cancel_token or CancellationToken()
        self.timezone_name = timezone_name
        self.scheduler: Optional[BackgroundScheduler] = None

    def init_scheduler(self) -> BackgroundScheduler:
        """Create the APScheduler instance and register the recurring backup job."""
        if self.scheduler is not None:
            return self.scheduler

        executors = {
            'default': ThreadPoolExecutor(max_workers=2)
        }

        job_defaults = {
            'coalesce': True,  # Combine multiple pending instances into one
            'max_instances': 1,  # Only one instance of a job at a time
            'misfire_grace_time': 300  # 5 minutes grace period for misfires
        }

        self.scheduler = BackgroundScheduler(
            executors=executors,
            job_defaults=job_defaults,
            timezone=self.timezone_name
        )

        self.scheduler.add_job(
            func=self._execute_backup_wrapper,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=BACKUP_JOB_ID,
            name='Scheduled backup',
            next_run_time=datetime.now(timezone.utc),
            replace_existing=True
        )

        return self.scheduler

    def start(self):
        """Start the scheduler in background threads."""
        scheduler = self.init_scheduler()

        if not scheduler.running:
            scheduler.start()
            logger.info(f"Starting scheduler with interval: {timedelta(seconds=self.interval_seconds)}")
        else:
            logger.info("Scheduler already running")

    def stop(self, wait: bool = True):
        """Stop the scheduler, waiting for a running cycle to finish its cleanup by default."""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler stopped")

    def run_forever(self, poll_interval: float = 1.0):
        """
        Run scheduled backups until the cancellation token fires.

        Args:
            poll_interval: Seconds between cancellation checks on the calling thread
        """
        self.start()
        try:
            while not self.cancel_token.wait(poll_interval):
                pass
        finally:
            self.cancel_token.cancel()
            self.stop(wait=True)

    @property
    def is_running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def trigger_now(self):
        """
        Queue a one-off backup to run immediately.

        Raises:
            RuntimeError: If the scheduler is not initialized
            BackupInProgressError: If a cycle is already running
        """
        if self.scheduler is None:
            raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

        if self.orchestrator.is_running:
            raise BackupInProgressError("A backup cycle is already running")

        now = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self._execute_backup_wrapper,
            trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
            id=f"manual_{int(now.timestamp())}",
            name='Manual backup',
            replace_existing=True
        )
        logger.info("Manually triggered backup")

    def get_scheduled_jobs(self) -> List[dict]:
        """
        Get list of all scheduled jobs.

        Returns:
            List of dicts with job information
        """
        if self.scheduler is None:
            return []

        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
                'trigger': str(job.trigger)
            })
        return jobs

    def _execute_backup_wrapper(self) -> Optional[BackupReport]:
        """Run one cycle in scheduler context; errors are logged and never propagate to APScheduler."""
        if self.cancel_token.is_cancelled:
            return None

        try:
            report = self.orchestrator.run_backup(self.cancel_token)
        except BackupInProgressError:
            logger.warning("Backup already in progress, skipped this run")
            return None
        except Exception as e:
            logger.exception(f"Scheduled backup failed: {e}")
            return None

        if report.success:
            logger.info(f"Backup {report.label} finished: {report.message}")
        elif report.cancelled:
            logger.warning(f"Backup {report.label} cancelled")
        else:
            logger.error(f"Scheduled backup failed: {report.message}")

        return report
