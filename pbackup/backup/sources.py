"""
File selection and restore policies.

A file manager decides which files go into a backup and, through its
restore policy, how restored files are put back in place.

Supports:
- DirectoryFileManager: every file under a base directory, filtered by glob patterns
- ConfigOnlyFileManager: only the configuration files under a base directory
- ReplaceRestorePolicy: remove selected files missing from the backup, then copy
- OverwriteRestorePolicy: copy restored files over existing ones
"""

import logging
import os
import shutil
from abc import ABC, abstractmethod
from fnmatch import fnmatch
from pathlib import Path
from typing import Any, Dict, List, Optional

from pbackup.registry import Component


logger = logging.getLogger(__name__)


class FileSelectionError(Exception):
    """Raised when the files to back up cannot be determined."""
    pass


class RestoreError(Exception):
    """Raised when restored files cannot be put back in place."""
    pass


def _relative_files(directory: Path) -> List[str]:
    return sorted(
        item.relative_to(directory).as_posix()
        for item in directory.rglob('*')
        if item.is_file()
    )


def _copy_tree(result_dir: Path, target_dir: Path) -> List[Path]:
    """Copy every file under result_dir into target_dir, overwriting."""
    restored = []
    for relative in _relative_files(result_dir):
        destination = target_dir / relative
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(result_dir / relative, destination)
        except OSError as e:
            raise RestoreError(f"Failed to restore {relative} to {destination}: {e}")
        restored.append(destination)
    return restored


class RestorePolicy(Component, ABC):
    """Strategy for placing restored files back into the file manager's base directory."""

    kind = 'restore_policy'

    def to_dict(self) -> Dict[str, Any]:
        return {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], registry=None) -> 'RestorePolicy':
        return cls()

    @abstractmethod
    def restore(self, result_dir: Path, file_manager: 'FileManager') -> List[Path]:
        """
        Restore files from result_dir.

        Args:
            result_dir: Directory containing ONLY the unarchived files
            file_manager: File manager whose base directory is the target

        Returns:
            Paths of restored files

        Raises:
            RestoreError: If files cannot be restored
        """


class OverwriteRestorePolicy(RestorePolicy):
    """Copy restored files over the base directory, leaving other files alone."""

    type_id = 'overwrite'

    def restore(self, result_dir: Path, file_manager: 'FileManager') -> List[Path]:
        logger.info(f"Overwriting files in {file_manager.base_dir} from {result_dir}")
        return _copy_tree(Path(result_dir), file_manager.base_dir)


class ReplaceRestorePolicy(RestorePolicy):
    """
    Make the selected files match the backup.

    Files the file manager currently selects but which are absent from the
    backup are removed before the restored files are copied in.
    """

    type_id = 'replace'

    def restore(self, result_dir: Path, file_manager: 'FileManager') -> List[Path]:
        result_dir = Path(result_dir)
        restored = set(_relative_files(result_dir))

        if file_manager.base_dir.is_dir():
            try:
                current = file_manager.files_to_backup()
            except FileSelectionError as e:
                raise RestoreError(f"Cannot determine files to replace: {e}")

            for path in current:
                relative = path.relative_to(file_manager.base_dir).as_posix()
                if relative in restored:
                    continue
                logger.info(f"Removing {path} (not present in backup)")
                try:
                    path.unlink()
                except OSError as e:
                    raise RestoreError(f"Failed to remove {path}: {e}")

        return _copy_tree(result_dir, file_manager.base_dir)


class FileManager(Component, ABC):
    """
    Determines the files selection for backup and restore policies.
    """

    kind = 'file_manager'

    def __init__(self, base_dir, restore_policy: Optional[RestorePolicy] = None):
        self.base_dir = Path(base_dir)
        self.restore_policy = restore_policy or ReplaceRestorePolicy()

    @abstractmethod
    def files_to_backup(self) -> List[Path]:
        """
        Files to be included in the backup.

        Raises:
            FileSelectionError: If the selection cannot be made
        """

    def restore_files(self, result_dir) -> List[Path]:
        """
        Restore files to their right place under base_dir.

        Args:
            result_dir: Directory where ONLY the files for restoring are

        Raises:
            RestoreError: If restoring fails
        """
        result_dir = Path(result_dir)
        if not result_dir.is_dir():
            raise RestoreError(f"Restore directory does not exist: {result_dir}")

        return self.restore_policy.restore(result_dir, self)


class DirectoryFileManager(FileManager):
    """
    Selects every regular file under base_dir.

    Include patterns match the relative path segment by segment, so '*.xml'
    only selects top-level files and 'jobs/*/config.xml' selects one level
    of job directories. With no include patterns every file is selected.

    Exclude patterns (e.g. *.pyc, __pycache__, **/*.log) match the relative
    path or the name of any file or directory; excluded directories are not
    descended into.
    """

    type_id = 'directory'

    def __init__(self, base_dir, include_patterns: List[str] = None,
                 exclude_patterns: List[str] = None,
                 restore_policy: Optional[RestorePolicy] = None):
        super().__init__(base_dir, restore_policy)
        self.include_patterns = list(include_patterns or [])
        self.exclude_patterns = list(exclude_patterns or [])

    def to_dict(self) -> Dict[str, Any]:
        return {
            'base_dir': str(self.base_dir),
            'include_patterns': self.include_patterns,
            'exclude_patterns': self.exclude_patterns,
            'restore_policy': self.restore_policy.describe(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], registry=None) -> 'DirectoryFileManager':
        restore_policy = None
        if data.get('restore_policy') and registry is not None:
            restore_policy = registry.create('restore_policy', data['restore_policy'])

        return cls(
            base_dir=data['base_dir'],
            include_patterns=data.get('include_patterns'),
            exclude_patterns=data.get('exclude_patterns'),
            restore_policy=restore_policy
        )

    @property
    def display_name(self) -> str:
        return f"Directory {self.base_dir}"

    def _should_exclude(self, relative: str) -> bool:
        name = relative.rsplit('/', 1)[-1]

        for pattern in self.exclude_patterns:
            if fnmatch(relative, pattern) or fnmatch(name, pattern):
                return True
            if pattern.startswith('**/') and fnmatch(name, pattern[3:]):
                return True

        return False

    def _should_include(self, relative: str) -> bool:
        if not self.include_patterns:
            return True

        segments = relative.split('/')
        for pattern in self.include_patterns:
            if pattern.startswith('**/'):
                if fnmatch(segments[-1], pattern[3:]):
                    return True
                continue

            pattern_segments = pattern.split('/')
            if len(pattern_segments) == len(segments) and all(
                fnmatch(segment, part) for segment, part in zip(segments, pattern_segments)
            ):
                return True

        return False

    def files_to_backup(self) -> List[Path]:
        if not self.base_dir.is_dir():
            raise FileSelectionError(f"Base directory does not exist: {self.base_dir}")

        selected = []

        try:
            for root, dirs, files in os.walk(self.base_dir, onerror=_raise_walk_error):
                root_path = Path(root)
                relative_root = root_path.relative_to(self.base_dir).as_posix()
                prefix = '' if relative_root == '.' else f"{relative_root}/"

                dirs[:] = sorted(d for d in dirs if not self._should_exclude(f"{prefix}{d}"))

                for name in sorted(files):
                    relative = f"{prefix}{name}"
                    if self._should_exclude(relative) or not self._should_include(relative):
                        continue
                    if (root_path / name).is_file():
                        selected.append(root_path / name)
        except OSError as e:
            raise FileSelectionError(f"Failed to scan {self.base_dir}: {e}")

        logger.info(f"Selected {len(selected)} files under {self.base_dir}")
        return selected


def _raise_walk_error(error: OSError):
    raise error


class ConfigOnlyFileManager(DirectoryFileManager):
    """Selects only configuration files: top-level *.xml and jobs/*/config.xml."""

    type_id = 'config-only'

    DEFAULT_INCLUDE_PATTERNS = ['*.xml', 'jobs/*/config.xml']

    def __init__(self, base_dir, include_patterns: List[str] = None,
                 exclude_patterns: List[str] = None,
                 restore_policy: Optional[RestorePolicy] = None):
        super().__init__(
            base_dir,
            include_patterns or self.DEFAULT_INCLUDE_PATTERNS,
            exclude_patterns,
            restore_policy
        )

    @property
    def display_name(self) -> str:
        return f"Configuration files of {self.base_dir}"
