"""
Backup and restore executors - orchestrate complete runs.

Backup workflow:
1. Create temporary directory
2. Select files to back up (file manager)
3. Archive them under the backup's base name (storage)
4. For each location: write the backup record and store archives + record
5. Enforce retention policies
6. Cleanup temporary files

Restore workflow:
1. Retrieve the backup's archives from its location
2. Unarchive them (the record's storage)
3. Put files back in place (the record's file manager and restore policy)
4. Cleanup temporary files
"""

import logging
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .naming import generate_file_name_base, normalize_timestamp
from .record import BackupRecord, most_recent
from .sources import FileSelectionError
from .compression import get_archive_size
from .locations import StorageError
from .retention import RetentionManager


logger = logging.getLogger(__name__)


class BackupError(Exception):
    """Raised when a backup run cannot complete."""
    pass


class BackupRun:
    """
    Outcome of one backup run.

    Status is 'running', then 'success', 'partial' (some locations failed)
    or 'failed'. Failures are reported per location in location_errors.
    """

    def __init__(self, timestamp: datetime):
        self.timestamp = timestamp
        self.status = 'running'
        self.started_at = datetime.now(timezone.utc)
        self.completed_at = None
        self.archives: List[str] = []
        self.file_size_bytes = None
        self.stored_locations: List[str] = []
        self.skipped_locations: List[str] = []
        self.location_errors: Dict[str, str] = {}
        self.retention = None
        self.error_message = None
        self.logs = ''

    def __repr__(self):
        return f'<BackupRun {self.timestamp.isoformat(timespec="milliseconds")} status={self.status}>'


class RestoreRun:
    """Outcome of one restore run."""

    def __init__(self, record: BackupRecord):
        self.record = record
        self.status = 'running'
        self.started_at = datetime.now(timezone.utc)
        self.completed_at = None
        self.restored_files: List[Path] = []
        self.error_message = None
        self.logs = ''

    def __repr__(self):
        return f'<RestoreRun {self.record.display_name} status={self.status}>'


class _LoggingExecutor:

    def __init__(self, context):
        self.context = context
        self.temp_dir = None
        self.logs = []

    def _make_temp_dir(self, prefix: str) -> str:
        base = self.context.temp_dir
        if base:
            Path(base).mkdir(parents=True, exist_ok=True)
        self.temp_dir = tempfile.mkdtemp(prefix=prefix, dir=base or None)
        self._log(f"Temporary directory: {self.temp_dir}")
        return self.temp_dir

    def _cleanup(self):
        """Remove temporary directory and files."""
        if self.temp_dir and Path(self.temp_dir).exists():
            try:
                shutil.rmtree(self.temp_dir)
                self._log("Cleaned up temporary directory")
            except OSError as e:
                self._log(f"Warning: Failed to cleanup temp directory: {e}", logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


class BackupExecutor(_LoggingExecutor):
    """
    Orchestrates a complete backup run for a context.
    """

    def __init__(self, context):
        super().__init__(context)
        self.archives = []

    def execute(self, timestamp: Optional[datetime] = None) -> BackupRun:
        """
        Execute a backup.

        Args:
            timestamp: Backup timestamp (default: now)

        Returns:
            BackupRun with execution results
        """
        run = BackupRun(normalize_timestamp(timestamp or datetime.now()))
        self._log(f"Starting backup {generate_file_name_base(run.timestamp)}")

        try:
            self._execute_workflow(run)

            run.status = 'partial' if run.location_errors else 'success'
            self._log(f"Backup completed with status: {run.status}")

        except Exception as e:
            run.status = 'failed'
            run.error_message = str(e)
            self._log(f"Backup failed: {e}", logging.ERROR)

        finally:
            run.completed_at = datetime.now(timezone.utc)
            self._cleanup()
            run.logs = '\n'.join(self.logs)

        return run

    def _execute_workflow(self, run: BackupRun):
        """Execute the main backup workflow steps."""
        context = self.context
        file_manager = context.file_manager
        storage = context.storage

        # Step 1: Create temporary directory
        self._make_temp_dir('pbackup_backup_')

        # Step 2: Select files
        self._log(f"Selecting files ({file_manager.display_name})")
        files = file_manager.files_to_backup()
        if not files:
            raise FileSelectionError(f"No files selected under {file_manager.base_dir}")
        self._log(f"Selected {len(files)} files")

        # Step 3: Create archives
        base_name = generate_file_name_base(run.timestamp)
        self._log(f"Creating archives ({storage.display_name})")
        self.archives = storage.archive_files(files, file_manager.base_dir, Path(self.temp_dir), base_name)
        run.archives = [archive.name for archive in self.archives]
        run.file_size_bytes = sum(get_archive_size(archive) for archive in self.archives)
        self._log(f"Created {len(self.archives)} archive(s) ({run.file_size_bytes / 1024 / 1024:.2f} MB)")

        # Step 4: Store in every location
        for location in context.locations:
            self._store_in_location(run, location)

        if not run.stored_locations:
            raise BackupError("Backup was not stored in any location")

        # Step 5: Retention
        if context.cycle_quantity > 0 or context.cycle_days > 0:
            self._log("Enforcing retention policies")
            manager = RetentionManager(context.cycle_quantity, context.cycle_days)
            run.retention = manager.enforce_all_policies(context)
        else:
            self._log("Retention not configured, skipping")

    def _store_in_location(self, run: BackupRun, location):
        name = location.display_name

        if not location.enabled:
            self._log(f"Skipping disabled location {name}", logging.WARNING)
            run.skipped_locations.append(name)
            return

        if not location.is_available():
            self._log(f"Skipping unavailable location {name}", logging.WARNING)
            run.skipped_locations.append(name)
            return

        record = BackupRecord(self.context.file_manager, self.context.storage, location, run.timestamp)

        try:
            record_file = self.context.serializer.write_file(record, self.temp_dir)
            location.store(self.archives, record_file)
        except (StorageError, OSError) as e:
            self._log(f"Failed to store backup in {name}: {e}", logging.ERROR)
            run.location_errors[name] = str(e)
            return

        run.stored_locations.append(name)
        self._log(f"Stored backup in {name}")


class RestoreExecutor(_LoggingExecutor):
    """
    Restores a backup from the location that holds it.
    """

    def available_backups(self) -> List[BackupRecord]:
        """All backups across configured locations, oldest first."""
        records = set()
        for location in self.context.locations:
            try:
                records.update(location.list_backups(self.context.serializer))
            except StorageError as e:
                logger.warning(f"Could not list backups in {location.display_name}: {e}")
        return sorted(records, key=lambda record: record.timestamp)

    def _resolve_location(self, location):
        # Configured instances carry credentials that records never store
        for configured in self.context.locations:
            if configured == location:
                return configured
        return location

    def execute(self, record: BackupRecord) -> RestoreRun:
        """
        Restore the given backup.

        Returns:
            RestoreRun with execution results
        """
        run = RestoreRun(record)
        self._log(f"Starting restore of {record.display_name}")

        try:
            self._make_temp_dir('pbackup_restore_')
            archives_dir = Path(self.temp_dir) / 'archives'
            result_dir = Path(self.temp_dir) / 'result'
            archives_dir.mkdir()
            result_dir.mkdir()

            location = self._resolve_location(record.location)
            self._log(f"Retrieving archives from {location.display_name}")
            archives = location.retrieve(record, archives_dir)
            self._log(f"Retrieved {len(archives)} archive(s)")

            self._log(f"Unarchiving ({record.storage.display_name})")
            record.storage.unarchive_files(archives, result_dir)

            self._log(f"Restoring files ({record.file_manager.display_name})")
            run.restored_files = record.file_manager.restore_files(result_dir)

            run.status = 'success'
            self._log(f"Restore completed, {len(run.restored_files)} files restored")

        except Exception as e:
            run.status = 'failed'
            run.error_message = str(e)
            self._log(f"Restore failed: {e}", logging.ERROR)

        finally:
            run.completed_at = datetime.now(timezone.utc)
            self._cleanup()
            run.logs = '\n'.join(self.logs)

        return run


def execute_backup(context, timestamp: Optional[datetime] = None) -> BackupRun:
    """Run one backup for the given context."""
    return BackupExecutor(context).execute(timestamp)


def execute_restore(context, record: Optional[BackupRecord] = None) -> RestoreRun:
    """
    Restore a backup.

    Args:
        context: BackupContext
        record: Backup to restore (default: the most recent available)

    Raises:
        ValueError: If no record is given and no backups are available
    """
    executor = RestoreExecutor(context)

    if record is None:
        record = most_recent(executor.available_backups())
        if record is None:
            raise ValueError("No backups available to restore")

    return executor.execute(record)
