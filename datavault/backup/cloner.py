"""
Local staging of the source tree.

The cloner reproduces a directory tree under a staging path, byte for byte,
with permission bits re-applied explicitly. Staging is all-or-nothing: the
first entry that cannot be copied aborts the clone with StagingError.
"""

import logging
import os
import shutil
import stat
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from typing import List, Optional, Tuple


logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 1024 * 1024


class StagingError(Exception):
    """Raised when the source tree cannot be staged."""
    pass


@dataclass
class CloneStats:
    directories: int = 0
    files: int = 0
    bytes_copied: int = 0
    excluded: int = 0
    skipped: int = 0


def _raise_walk_error(error: OSError):
    raise error


class DirectoryCloner:
    """
    Copies a local directory tree into a staging location.

    Directories are created owner-writable while their contents are copied
    and get their source permission bits applied afterwards, deepest first,
    so read-only source directories still stage.
    """

    def __init__(self, exclude_patterns: Optional[List[str]] = None):
        """
        Initialize directory cloner.

        Args:
            exclude_patterns: Glob patterns to exclude (e.g., .git, *.tmp)
        """
        self.exclude_patterns = exclude_patterns or []

    def _should_exclude(self, relative_path: str) -> bool:
        """
        Match a source-relative path against the exclude patterns.

        A pattern matches when it matches the entry name or the whole path
        relative to the source root; a leading `**/` matches at any depth.
        Ancestors of the source root never take part in matching.
        """
        name = os.path.basename(relative_path)

        for pattern in self.exclude_patterns:
            bare = pattern[3:] if pattern.startswith('**/') else pattern
            if fnmatch(name, bare) or fnmatch(relative_path, bare):
                return True

        return False

    def clone(self, src: str, dst: str) -> CloneStats:
        """
        Reproduce the tree at `src` under `dst`.

        Args:
            src: Source directory
            dst: Destination directory (created if missing)

        Returns:
            CloneStats summary

        Raises:
            StagingError: If the source is not a directory or any entry fails to copy
        """
        source = Path(src)
        if not source.is_dir():
            raise StagingError(f"Source is not a directory: {src}")

        stats = CloneStats()
        dir_modes: List[Tuple[str, int]] = []

        try:
            os.makedirs(dst, mode=0o700, exist_ok=True)
            dir_modes.append((dst, stat.S_IMODE(source.stat().st_mode)))

            for dirpath, dirnames, filenames in os.walk(src, onerror=_raise_walk_error):
                relative_dir = os.path.relpath(dirpath, src)
                if relative_dir == os.curdir:
                    relative_dir = ''
                target_dir = os.path.join(dst, relative_dir) if relative_dir else dst

                kept = []
                for name in dirnames:
                    source_dir = Path(dirpath) / name
                    if self._should_exclude(os.path.join(relative_dir, name)):
                        stats.excluded += 1
                        continue
                    if source_dir.is_symlink():
                        logger.warning(f"Skipping symlinked directory: {source_dir}")
                        stats.skipped += 1
                        continue

                    target = os.path.join(target_dir, name)
                    os.mkdir(target, 0o700)
                    dir_modes.append((target, stat.S_IMODE(source_dir.stat().st_mode)))
                    stats.directories += 1
                    kept.append(name)

                # Prune in place so os.walk does not descend into excluded directories
                dirnames[:] = kept

                for name in filenames:
                    source_file = Path(dirpath) / name
                    if self._should_exclude(os.path.join(relative_dir, name)):
                        stats.excluded += 1
                        continue
                    if not stat.S_ISREG(os.stat(source_file).st_mode):
                        logger.warning(f"Skipping special file: {source_file}")
                        stats.skipped += 1
                        continue

                    stats.bytes_copied += self._copy_file(str(source_file), os.path.join(target_dir, name))
                    stats.files += 1

            for path, mode in reversed(dir_modes):
                os.chmod(path, mode)

        except PermissionError as e:
            raise StagingError(f"Permission denied copying {src}: {e}")
        except OSError as e:
            raise StagingError(f"Failed to copy {src}: {e}")

        logger.debug(
            f"Cloned {src}: {stats.directories} directories, {stats.files} files, "
            f"{stats.bytes_copied} bytes ({stats.excluded} excluded, {stats.skipped} skipped)"
        )
        return stats

    def _copy_file(self, src: str, dst: str) -> int:
        """Copy file contents, then apply the source permission bits. Returns bytes copied."""
        mode = stat.S_IMODE(os.stat(src).st_mode)

        with open(src, 'rb') as fsrc, open(dst, 'wb') as fdst:
            shutil.copyfileobj(fsrc, fdst, COPY_BUFFER_SIZE)
            copied = fdst.tell()

        os.chmod(dst, mode)
        return copied
