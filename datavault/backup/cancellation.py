"""Cooperative cancellation shared by the scheduler, orchestrator and upload tasks."""

import threading
from typing import Optional


class BackupCancelled(Exception):
    """Raised at a cancellation checkpoint once cancellation was requested."""
    pass


class CancellationToken:
    """
    Process-wide cancellation signal.

    One token is created at startup and passed down explicitly to every
    long-running operation. Work is interrupted only at `check()` calls,
    so at most one file's worth of I/O runs after `cancel()`.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        """Signal cancellation to every holder of this token."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def check(self):
        """
        Raise if cancellation has been requested.

        Raises:
            BackupCancelled: If `cancel()` was called
        """
        if self._event.is_set():
            raise BackupCancelled("Backup cancelled")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or until `timeout` seconds pass. Returns True if cancelled."""
        return self._event.wait(timeout)
