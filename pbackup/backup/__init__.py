"""
Backup module for pbackup.

This module handles the core backup functionality including:
- Backup records and their naming convention
- Storage locations (local directory and S3)
- File selection and restore policies
- Archival backends
- Backup/restore orchestration
- Retention policy enforcement
"""

from .record import BackupRecord, RecordSerializer, MalformedRecordError
from .locations import (
    StorageLocation, LocalDirectory, S3Location,
    StorageError, LocationUnavailableError, NoArchivesFoundError, CleanupFailedError
)
from .sources import DirectoryFileManager, ConfigOnlyFileManager
from .compression import ZipStorage, TarStorage, NullStorage
from .executor import BackupExecutor, RestoreExecutor
from .retention import RetentionManager

__all__ = [
    'BackupRecord',
    'RecordSerializer',
    'MalformedRecordError',
    'StorageLocation',
    'LocalDirectory',
    'S3Location',
    'StorageError',
    'LocationUnavailableError',
    'NoArchivesFoundError',
    'CleanupFailedError',
    'DirectoryFileManager',
    'ConfigOnlyFileManager',
    'ZipStorage',
    'TarStorage',
    'NullStorage',
    'BackupExecutor',
    'RestoreExecutor',
    'RetentionManager'
]
