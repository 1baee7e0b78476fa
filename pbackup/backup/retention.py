"""
Retention policy enforcement for backups.

Removes old backups from every location, either beyond a maximum count
(cycle_quantity) or older than a maximum age (cycle_days). Deletion goes
through StorageLocation.delete, which is best-effort.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from .locations import StorageError
from .record import BackupRecord


logger = logging.getLogger(__name__)


class RetentionManager:
    """
    Manages retention policy enforcement for storage locations.

    Args:
        cycle_quantity: Number of most recent backups to keep (0 = unlimited)
        cycle_days: Maximum age of backups in days (0 = unlimited)
    """

    def __init__(self, cycle_quantity: int = 0, cycle_days: int = 0):
        self.cycle_quantity = cycle_quantity
        self.cycle_days = cycle_days
        self.logs = []

    def backups_to_delete(self, backups: List[BackupRecord]) -> List[BackupRecord]:
        """Select the backups that fall outside the retention policy."""
        backups = sorted(backups, key=lambda record: record.timestamp)
        to_delete = []

        if self.cycle_quantity > 0 and len(backups) > self.cycle_quantity:
            to_delete.extend(backups[:len(backups) - self.cycle_quantity])

        if self.cycle_days > 0:
            cutoff = datetime.now() - timedelta(days=self.cycle_days)
            to_delete.extend(
                record for record in backups
                if record.timestamp < cutoff and record not in to_delete
            )

        return sorted(to_delete, key=lambda record: record.timestamp)

    def enforce_location_policy(self, location, serializer) -> int:
        """
        Enforce retention at a single location.

        Returns:
            Number of backups deleted
        """
        self._log(f"Enforcing retention policy for {location.display_name}")

        backups = list(location.list_backups(serializer))
        to_delete = self.backups_to_delete(backups)

        for record in to_delete:
            self._log(f"Deleting backup {record.display_name}")
            location.delete(record)

        return len(to_delete)

    def enforce_all_policies(self, context) -> Dict[str, Any]:
        """
        Enforce retention for every enabled location of a context.

        Returns:
            Dict with summary of cleanup operations:
            {
                'locations_processed': int,
                'deleted': int,
                'errors': List[str],
                'logs': List[str]
            }
        """
        summary = {
            'locations_processed': 0,
            'deleted': 0,
            'errors': []
        }

        for location in context.locations:
            if not location.enabled:
                self._log(f"Skipping disabled location {location.display_name}")
                continue

            try:
                summary['deleted'] += self.enforce_location_policy(location, context.serializer)
                summary['locations_processed'] += 1
            except (StorageError, OSError) as e:
                error_msg = f"Failed to enforce policy for {location.display_name}: {e}"
                self._log(error_msg, logging.WARNING)
                summary['errors'].append(error_msg)

        self._log(
            f"Retention enforcement complete. "
            f"Locations: {summary['locations_processed']}, "
            f"Deleted: {summary['deleted']}, "
            f"Errors: {len(summary['errors'])}"
        )

        summary['logs'] = self.logs
        return summary

    def _log(self, message: str, level: int = logging.INFO):
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def enforce_retention_policies(context) -> Dict[str, Any]:
    """
    Enforce retention policies for all locations of a context.

    Called after every backup and by the scheduler's daily cleanup job.
    """
    manager = RetentionManager(context.cycle_quantity, context.cycle_days)
    return manager.enforce_all_policies(context)
