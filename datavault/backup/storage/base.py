"""
Backend adapter contract and the shared mirror algorithm.

Every remote provider is driven through `StorageBackend`. Providers that
expose folder-like containers subclass `RemoteStore`, which owns:

- root container resolution (find-or-create the well-known folder)
- the `upload_folder` entry point
- the depth-first, best-effort mirror of a local tree

Concrete providers only implement the native create/list/upload primitives.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, runtime_checkable

from ..cancellation import BackupCancelled, CancellationToken


logger = logging.getLogger(__name__)

ROOT_FOLDER_NAME = 'DataVault'


class StorageError(Exception):
    """Raised when a storage operation fails."""
    pass


class BackendInitializationError(StorageError):
    """Raised when authentication or root container resolution fails."""
    pass


class BackendNotInitializedError(StorageError):
    """Raised when an upload is requested from a backend that never initialized."""
    pass


@dataclass(frozen=True)
class RemoteEntry:
    """An immediate child of a remote container as reported by the provider."""
    native_id: Any
    name: str
    is_folder: bool


@dataclass
class MirrorStats:
    folders: int = 0
    files: int = 0
    failed: int = 0


@runtime_checkable
class StorageBackend(Protocol):
    """The only surface the dispatcher and orchestrator rely on."""

    name: str
    display_name: str

    @property
    def is_configured(self) -> bool: ...

    @property
    def is_ready(self) -> bool: ...

    def upload_folder(self, local_path: str, label: str,
                      cancel_token: Optional[CancellationToken] = None) -> Any: ...


class RemoteStore(ABC):
    """
    Base class for folder-based remote providers.

    Subclasses set `name`/`display_name` and implement the four native
    primitives. Instances are long-lived: construct once at startup, call
    `initialize()`, then hand to the dispatcher for every cycle.
    """

    name = 'remote'
    display_name = 'Remote storage'

    def __init__(self, root_folder_name: str = ROOT_FOLDER_NAME):
        self.root_folder_name = root_folder_name
        self.root_folder_id = None
        self.init_error: Optional[str] = None
        self._initialized = False

    # ----- primitives -----

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """True when credentials were supplied for this provider."""

    @abstractmethod
    def _connect(self):
        """Authenticate and build the provider client."""

    @abstractmethod
    def _list_root_children(self) -> List[RemoteEntry]:
        """List immediate children of the provider's global root."""

    @abstractmethod
    def _create_root_folder(self, name: str) -> Any:
        """Create a folder under the global root and return its native id."""

    @abstractmethod
    def _create_folder(self, name: str, parent_id: Any) -> Any:
        """Create a folder under `parent_id` and return its native id."""

    @abstractmethod
    def _upload_file(self, local_path: str, name: str, parent_id: Any,
                     cancel_token: CancellationToken):
        """Stream a local file into a new remote file under `parent_id`."""

    # ----- lifecycle -----

    @property
    def is_ready(self) -> bool:
        return self._initialized and self.root_folder_id is not None

    def initialize(self) -> bool:
        """
        Authenticate and resolve the root container.

        Failures are logged and leave the backend inert for the rest of the
        process; they are never raised to the caller.

        Returns:
            True if the backend is ready for uploads
        """
        if not self.is_configured:
            logger.debug(f"{self.display_name} not configured, skipping initialization")
            return False

        try:
            self._connect()
            self.ensure_root_container()
            self._initialized = True
            self.init_error = None
        except Exception as e:
            self._initialized = False
            self.root_folder_id = None
            self.init_error = str(e)
            logger.error(f"Failed to initialize {self.display_name} client: {e}")

        return self._initialized

    def ensure_root_container(self) -> Any:
        """
        Find or create the well-known root container.

        Idempotent: repeated calls converge on the same container and never
        create a duplicate while one is visible in the listing.

        Returns:
            Native id of the root container

        Raises:
            BackendInitializationError: If listing or creation fails
        """
        try:
            for entry in self._list_root_children():
                if entry.is_folder and entry.name == self.root_folder_name:
                    self.root_folder_id = entry.native_id
                    logger.info(f"Found existing {self.root_folder_name} folder on {self.display_name}: {entry.native_id}")
                    return self.root_folder_id
        except Exception as e:
            raise BackendInitializationError(f"failed to search for root folder: {e}")

        try:
            self.root_folder_id = self._create_root_folder(self.root_folder_name)
        except Exception as e:
            raise BackendInitializationError(f"failed to create root folder: {e}")

        logger.info(f"Created {self.root_folder_name} folder on {self.display_name}: {self.root_folder_id}")
        return self.root_folder_id

    # ----- upload -----

    def upload_folder(self, local_path: str, label: str,
                      cancel_token: Optional[CancellationToken] = None) -> MirrorStats:
        """
        Mirror `local_path` into a new container named `label` under the root.

        Only the creation of the run container is load-bearing; failures on
        individual entries below it are logged and skipped.

        Args:
            local_path: Staged directory to upload
            label: Name of the run container
            cancel_token: Checked before every entry

        Returns:
            Summary of folders/files created and entries that failed

        Raises:
            BackendNotInitializedError: If initialization never succeeded
            StorageError: If the run container cannot be created or the
                staged directory cannot be read
            BackupCancelled: If cancellation was requested during the walk
        """
        if not self.is_ready:
            raise BackendNotInitializedError(f"{self.display_name} service not initialized")

        cancel_token = cancel_token or CancellationToken()
        cancel_token.check()

        logger.info(f"Uploading {local_path} to {self.display_name} as {label}")

        try:
            run_folder_id = self._create_folder(label, self.root_folder_id)
        except BackupCancelled:
            raise
        except Exception as e:
            raise StorageError(f"failed to create backup folder: {e}")

        logger.info(f"Created backup folder on {self.display_name}: {run_folder_id}")

        stats = MirrorStats()
        self._mirror_directory(local_path, run_folder_id, '', cancel_token, stats)

        logger.info(
            f"{self.display_name} mirror finished: {stats.folders} folders, "
            f"{stats.files} files, {stats.failed} failed"
        )
        return stats

    def _mirror_directory(self, local_path: str, parent_id: Any, relative_path: str,
                          cancel_token: CancellationToken, stats: MirrorStats):
        try:
            entries = sorted(os.scandir(local_path), key=lambda e: e.name)
        except OSError as e:
            if not relative_path:
                raise StorageError(f"failed to read directory: {e}")
            logger.warning(f"Failed to read directory {relative_path}: {e}")
            stats.failed += 1
            return

        for entry in entries:
            cancel_token.check()

            current_relative_path = os.path.join(relative_path, entry.name)

            if entry.is_dir(follow_symlinks=False):
                try:
                    folder_id = self._create_folder(entry.name, parent_id)
                except BackupCancelled:
                    raise
                except Exception as e:
                    logger.warning(f"Failed to create folder {current_relative_path} on {self.display_name}: {e}")
                    stats.failed += 1
                    continue

                stats.folders += 1
                self._mirror_directory(entry.path, folder_id, current_relative_path, cancel_token, stats)
            else:
                try:
                    self._upload_file(entry.path, entry.name, parent_id, cancel_token)
                except BackupCancelled:
                    raise
                except Exception as e:
                    logger.warning(f"Failed to upload file {current_relative_path} to {self.display_name}: {e}")
                    stats.failed += 1
                    continue

                stats.files += 1
                logger.debug(f"Uploaded file to {self.display_name}: {current_relative_path}")

    def __repr__(self):
        return f'<{self.__class__.__name__} ready={self.is_ready}>'
