"""
Concurrent upload of a staged tree to every backend.

One thread per ready backend; the dispatcher returns only after every
thread has reported. Backends that are not ready produce a NOT_CONFIGURED
outcome without any I/O.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

from .cancellation import BackupCancelled, CancellationToken
from .models import BackendOutcome, OutcomeStatus
from .storage.base import StorageBackend


logger = logging.getLogger(__name__)


class UploadDispatcher:
    """Fans an upload out to all backends and collects one outcome per backend."""

    def __init__(self, backends: Sequence[StorageBackend], max_workers: Optional[int] = None):
        """
        Initialize dispatcher.

        Args:
            backends: Backend instances, ready or not
            max_workers: Thread pool size (default: one per backend)

        Raises:
            ValueError: If no backends were given
        """
        if not backends:
            raise ValueError("Upload dispatcher requires at least one backend")

        self.backends = list(backends)
        self.max_workers = max_workers or len(self.backends)

    @property
    def ready_backends(self) -> List[StorageBackend]:
        return [backend for backend in self.backends if backend.is_ready]

    def dispatch(self, local_path: str, label: str,
                 cancel_token: Optional[CancellationToken] = None) -> List[BackendOutcome]:
        """
        Upload `local_path` to every ready backend as `label`.

        Args:
            local_path: Staged directory shared read-only by all tasks
            label: Run container name
            cancel_token: Shared cancellation signal

        Returns:
            One BackendOutcome per backend, in backend order
        """
        cancel_token = cancel_token or CancellationToken()
        outcomes: List[Optional[BackendOutcome]] = [None] * len(self.backends)
        futures = {}

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='datavault-upload') as pool:
            for index, backend in enumerate(self.backends):
                if not backend.is_ready:
                    outcomes[index] = self._not_configured_outcome(backend)
                    logger.info(outcomes[index].message)
                    continue

                futures[index] = pool.submit(self._upload, backend, local_path, label, cancel_token)

            for index, future in futures.items():
                outcomes[index] = future.result()

        return outcomes

    def _upload(self, backend: StorageBackend, local_path: str, label: str,
                cancel_token: CancellationToken) -> BackendOutcome:
        try:
            backend.upload_folder(local_path, label, cancel_token)
        except BackupCancelled:
            logger.warning(f"{backend.display_name} upload cancelled")
            return BackendOutcome.cancelled(backend.name, f"{backend.display_name} upload cancelled")
        except Exception as e:
            logger.error(f"{backend.display_name} upload failed: {e}")
            return BackendOutcome.failed(backend.name, f"{backend.display_name} upload failed", e)

        logger.info(f"Successfully uploaded to {backend.display_name}")
        return BackendOutcome.succeeded(backend.name, f"{backend.display_name} upload successful")

    @staticmethod
    def _not_configured_outcome(backend: StorageBackend) -> BackendOutcome:
        init_error = getattr(backend, 'init_error', None)
        if backend.is_configured and init_error:
            message = f"{backend.display_name} unavailable: {init_error}"
        else:
            message = f"{backend.display_name} not configured"
        return BackendOutcome.not_configured(backend.name, message)


def summarize(outcomes: Sequence[BackendOutcome]) -> Tuple[int, int]:
    """
    Count successes among attempted backends.

    Returns:
        (succeeded, attempted), where attempted excludes NOT_CONFIGURED outcomes
    """
    attempted = sum(1 for outcome in outcomes if outcome.status != OutcomeStatus.NOT_CONFIGURED)
    succeeded = sum(1 for outcome in outcomes if outcome.success)
    return succeeded, attempted
