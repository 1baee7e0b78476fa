"""
Archival backends ("storages") for backup file sets.

A storage packs the selected files into one or more archives named after the
backup's base name, and unpacks retrieved archives for restoring.

Supports multiple formats:
- zip: Standard zip compression, optionally split into volumes
- tar: Tar with gz, bz2, xz or no compression
- null: No archive at all, files are copied into a directory
"""

import logging
import os
import shutil
import tarfile
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Union

from pbackup.registry import Component


logger = logging.getLogger(__name__)


class CompressionError(Exception):
    """Raised when archive creation or extraction fails."""
    pass


STORAGE_FORMATS = {
    'zip': {'type': 'zip'},
    'tar.gz': {'type': 'tar', 'compression': 'gz'},
    'tar.bz2': {'type': 'tar', 'compression': 'bz2'},
    'tar.xz': {'type': 'tar', 'compression': 'xz'},
    'tar': {'type': 'tar', 'compression': 'none'},
    'null': {'type': 'null'},
}


def storage_description(compression_format: str) -> Dict[str, Any]:
    """
    Map a configured format name to a storage description for the registry.

    Raises:
        ValueError: If compression_format is invalid
    """
    if compression_format not in STORAGE_FORMATS:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(STORAGE_FORMATS.keys())}"
        )
    return dict(STORAGE_FORMATS[compression_format])


def _arcname(path: Path, base_dir: Path) -> str:
    try:
        return Path(path).relative_to(base_dir).as_posix()
    except ValueError:
        raise CompressionError(f"{path} is not inside {base_dir}")


def _ensure_inside(target: Path, root: Path, member: str):
    if not target.resolve().is_relative_to(root.resolve()):
        raise CompressionError(f"Archive member escapes extraction directory: {member}")


def _remove_partial(paths: Iterable[Path]):
    for path in paths:
        try:
            if path.is_dir():
                shutil.rmtree(path)
            elif path.exists():
                path.unlink()
        except OSError as e:
            logger.warning(f"Could not remove partial archive {path}: {e}")


class Storage(Component, ABC):
    """Packs files into archives and unpacks them again."""

    kind = 'storage'

    def to_dict(self) -> Dict[str, Any]:
        return {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], registry=None) -> 'Storage':
        return cls(**data)

    @abstractmethod
    def archive_files(self, files: Iterable[Path], base_dir: Path, temp_dir: Path,
                      base_name: str) -> List[Path]:
        """
        Archive files into temp_dir.

        Args:
            files: Files to include
            base_dir: Directory archive entries are made relative to
            temp_dir: Directory where archives are created
            base_name: Base file name shared by every produced archive

        Returns:
            Paths of created archives (files or directories)

        Raises:
            CompressionError: If archiving fails
        """

    @abstractmethod
    def unarchive_files(self, archives: Iterable[Path], result_dir: Path):
        """
        Extract archives into result_dir.

        Raises:
            CompressionError: If extraction fails
        """


class ZipStorage(Storage):
    """
    Zip archives.

    In multi-volume mode files are spread over several archives of roughly
    volume_size megabytes each: {base_name}_part1.zip, {base_name}_part2.zip...
    """

    type_id = 'zip'

    def __init__(self, multi_volume: bool = False, volume_size: int = 100):
        if volume_size <= 0:
            raise ValueError("volume_size must be positive")
        self.multi_volume = bool(multi_volume)
        self.volume_size = int(volume_size)

    def to_dict(self) -> Dict[str, Any]:
        return {'multi_volume': self.multi_volume, 'volume_size': self.volume_size}

    @property
    def display_name(self) -> str:
        if self.multi_volume:
            return f"Zip ({self.volume_size}MB volumes)"
        return "Zip"

    def _volumes(self, files: List[Path]) -> List[List[Path]]:
        if not self.multi_volume:
            return [files]

        limit = self.volume_size * 1024 * 1024
        volumes = [[]]
        current_size = 0

        for path in files:
            size = path.stat().st_size
            if volumes[-1] and current_size + size > limit:
                volumes.append([])
                current_size = 0
            volumes[-1].append(path)
            current_size += size

        return volumes

    def archive_files(self, files, base_dir, temp_dir, base_name) -> List[Path]:
        files = [Path(f) for f in files]
        if not files:
            raise CompressionError("No files to archive")

        base_dir = Path(base_dir)
        created = []

        try:
            volumes = self._volumes(files)
            for index, volume in enumerate(volumes, start=1):
                if self.multi_volume:
                    archive_path = Path(temp_dir) / f"{base_name}_part{index}.zip"
                else:
                    archive_path = Path(temp_dir) / f"{base_name}.zip"

                created.append(archive_path)
                with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
                    for path in volume:
                        zipf.write(path, _arcname(path, base_dir))

                logger.info(f"Created archive {archive_path.name} ({len(volume)} files)")
        except CompressionError:
            _remove_partial(created)
            raise
        except (OSError, zipfile.BadZipFile) as e:
            _remove_partial(created)
            raise CompressionError(f"Failed to create archive: {e}")

        return created

    def unarchive_files(self, archives, result_dir):
        result_dir = Path(result_dir)

        for archive in archives:
            try:
                with zipfile.ZipFile(archive, 'r') as zipf:
                    for member in zipf.namelist():
                        _ensure_inside(result_dir / member, result_dir, member)
                    zipf.extractall(result_dir)
            except (OSError, zipfile.BadZipFile) as e:
                raise CompressionError(f"Failed to extract {archive}: {e}")

            logger.info(f"Extracted {Path(archive).name} to {result_dir}")


class TarStorage(Storage):
    """Tar archives with optional gz, bz2 or xz compression."""

    type_id = 'tar'

    _MODES = {
        'gz': ('w:gz', 'tar.gz'),
        'bz2': ('w:bz2', 'tar.bz2'),
        'xz': ('w:xz', 'tar.xz'),
        'none': ('w', 'tar'),
    }

    def __init__(self, compression: str = 'gz'):
        if compression not in self._MODES:
            raise ValueError(
                f"Invalid tar compression: {compression}. "
                f"Valid options: {list(self._MODES.keys())}"
            )
        self.compression = compression

    def to_dict(self) -> Dict[str, Any]:
        return {'compression': self.compression}

    @property
    def extension(self) -> str:
        return self._MODES[self.compression][1]

    @property
    def display_name(self) -> str:
        return f"Tar ({self.extension})"

    def archive_files(self, files, base_dir, temp_dir, base_name) -> List[Path]:
        files = [Path(f) for f in files]
        if not files:
            raise CompressionError("No files to archive")

        base_dir = Path(base_dir)
        mode = self._MODES[self.compression][0]
        archive_path = Path(temp_dir) / f"{base_name}.{self.extension}"

        try:
            with tarfile.open(archive_path, mode) as tar:
                for path in files:
                    tar.add(path, arcname=_arcname(path, base_dir), recursive=False)
        except CompressionError:
            _remove_partial([archive_path])
            raise
        except (OSError, tarfile.TarError) as e:
            _remove_partial([archive_path])
            raise CompressionError(f"Failed to create archive: {e}")

        logger.info(f"Created archive {archive_path.name} ({len(files)} files)")
        return [archive_path]

    def unarchive_files(self, archives, result_dir):
        result_dir = Path(result_dir)

        for archive in archives:
            try:
                with tarfile.open(archive, 'r:*') as tar:
                    members = tar.getmembers()
                    for member in members:
                        _ensure_inside(result_dir / member.name, result_dir, member.name)
                        if member.issym() or member.islnk():
                            raise CompressionError(f"Links are not supported in archives: {member.name}")
                    if hasattr(tarfile, 'data_filter'):
                        tar.extractall(result_dir, members=members, filter='data')
                    else:
                        tar.extractall(result_dir, members=members)
            except (OSError, tarfile.TarError) as e:
                raise CompressionError(f"Failed to extract {archive}: {e}")

            logger.info(f"Extracted {Path(archive).name} to {result_dir}")


class NullStorage(Storage):
    """
    No compression: files are copied into a directory named base_name.

    The single "archive" produced is that directory.
    """

    type_id = 'null'

    @property
    def display_name(self) -> str:
        return "No compression"

    def archive_files(self, files, base_dir, temp_dir, base_name) -> List[Path]:
        files = [Path(f) for f in files]
        if not files:
            raise CompressionError("No files to archive")

        base_dir = Path(base_dir)
        archive_dir = Path(temp_dir) / base_name

        try:
            for path in files:
                destination = archive_dir / _arcname(path, base_dir)
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(path, destination)
        except CompressionError:
            _remove_partial([archive_dir])
            raise
        except OSError as e:
            _remove_partial([archive_dir])
            raise CompressionError(f"Failed to copy files: {e}")

        logger.info(f"Copied {len(files)} files into {archive_dir.name}")
        return [archive_dir]

    def unarchive_files(self, archives, result_dir):
        for archive in archives:
            archive = Path(archive)
            if not archive.is_dir():
                raise CompressionError(f"Expected a directory archive: {archive}")
            try:
                shutil.copytree(archive, result_dir, dirs_exist_ok=True)
            except OSError as e:
                raise CompressionError(f"Failed to copy {archive}: {e}")


def get_archive_size(archive_path: Union[str, Path]) -> int:
    """
    Get the size of an archive in bytes.

    Directory archives are measured as the sum of their files.

    Raises:
        CompressionError: If the archive doesn't exist or cannot be accessed
    """
    path = Path(archive_path)
    try:
        if path.is_dir():
            return sum(item.stat().st_size for item in path.rglob('*') if item.is_file())
        return os.path.getsize(path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")
