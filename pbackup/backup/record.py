"""
Backup record: the metadata describing one backup event.

A record names the file manager that selected the files, the storage that
archived them, the location holding them and the creation timestamp. It is
written as a sidecar ``backup_<fragment>.pbobj`` file next to the archives.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Union

from .naming import normalize_timestamp, record_file_name


logger = logging.getLogger(__name__)

RECORD_FORMAT = 'pbackup.record'
RECORD_VERSION = 1


class MalformedRecordError(Exception):
    """Raised when record content is not a valid serialized BackupRecord."""
    pass


class BackupRecord:
    """
    Immutable description of one backup.

    Records are equal when all four fields are equal and are ordered by
    timestamp only.
    """

    __slots__ = ('_file_manager', '_storage', '_location', '_timestamp')

    def __init__(self, file_manager, storage, location, timestamp: datetime):
        if timestamp is None:
            raise ValueError("BackupRecord timestamp is required")

        object.__setattr__(self, '_file_manager', file_manager)
        object.__setattr__(self, '_storage', storage)
        object.__setattr__(self, '_location', location)
        object.__setattr__(self, '_timestamp', normalize_timestamp(timestamp))

    def __setattr__(self, name, value):
        raise AttributeError("BackupRecord is immutable")

    @property
    def file_manager(self):
        return self._file_manager

    @property
    def storage(self):
        return self._storage

    @property
    def location(self):
        return self._location

    @property
    def timestamp(self) -> datetime:
        return self._timestamp

    @property
    def display_name(self) -> str:
        return f"{self._file_manager.display_name} created on {self._timestamp.isoformat(sep=' ', timespec='milliseconds')}"

    def serialize(self) -> str:
        """
        Serialize to deterministic JSON text.

        Components are written by reference (type identifier plus
        configuration), not by value.
        """
        payload = {
            'format': RECORD_FORMAT,
            'version': RECORD_VERSION,
            'file_manager': self._file_manager.describe(),
            'storage': self._storage.describe(),
            'location': self._location.describe(),
            'timestamp': self._timestamp.isoformat(timespec='milliseconds'),
        }
        return json.dumps(payload, sort_keys=True, indent=2)

    @classmethod
    def deserialize(cls, text: Optional[str], registry) -> Optional['BackupRecord']:
        """
        Rebuild a record from serialized text.

        Args:
            text: Output of serialize(), or None/empty
            registry: Registry used to resolve component references

        Returns:
            BackupRecord, or None when text is None or empty

        Raises:
            MalformedRecordError: If the text is not a valid record
        """
        from pbackup.registry import RegistryError

        if text is None or not text.strip():
            return None

        try:
            payload = json.loads(text)
        except ValueError as e:
            raise MalformedRecordError(f"Record is not valid JSON: {e}")

        if not isinstance(payload, dict) or payload.get('format') != RECORD_FORMAT:
            raise MalformedRecordError("Content is not a backup record")

        missing = [
            field for field in ('file_manager', 'storage', 'location', 'timestamp')
            if payload.get(field) is None
        ]
        if missing:
            raise MalformedRecordError(f"Record is missing fields: {', '.join(missing)}")

        try:
            timestamp = datetime.fromisoformat(payload['timestamp'])
        except (TypeError, ValueError) as e:
            raise MalformedRecordError(f"Invalid record timestamp: {e}")

        try:
            file_manager = registry.create('file_manager', payload['file_manager'])
            storage = registry.create('storage', payload['storage'])
            location = registry.create('location', payload['location'])
        except RegistryError as e:
            raise MalformedRecordError(f"Cannot resolve record component: {e}")

        return cls(file_manager, storage, location, timestamp)

    def _key(self):
        return (self._file_manager, self._storage, self._location, self._timestamp)

    def __eq__(self, other):
        if not isinstance(other, BackupRecord):
            return NotImplemented
        return self._key() == other._key()

    # Ordering looks at the timestamp alone, so records of the same backup
    # held by different locations are neither smaller nor greater.
    def __lt__(self, other):
        if not isinstance(other, BackupRecord):
            return NotImplemented
        return self._timestamp < other._timestamp

    def __le__(self, other):
        if not isinstance(other, BackupRecord):
            return NotImplemented
        return self._timestamp <= other._timestamp

    def __gt__(self, other):
        if not isinstance(other, BackupRecord):
            return NotImplemented
        return self._timestamp > other._timestamp

    def __ge__(self, other):
        if not isinstance(other, BackupRecord):
            return NotImplemented
        return self._timestamp >= other._timestamp

    def __hash__(self):
        return hash(self._key())

    def __repr__(self):
        return f'<BackupRecord {self._timestamp.isoformat(timespec="milliseconds")} location={self._location!r}>'


class RecordSerializer:
    """
    Serializer bound to a registry.

    Held by the BackupContext and handed to locations when they list
    backups, so that no global serialization state is needed.
    """

    def __init__(self, registry):
        self.registry = registry

    def serialize(self, record: BackupRecord) -> str:
        return record.serialize()

    def deserialize(self, text: Optional[str]) -> Optional[BackupRecord]:
        return BackupRecord.deserialize(text, self.registry)

    def read_file(self, path: Union[str, Path]) -> Optional[BackupRecord]:
        """
        Read a record file.

        Returns:
            BackupRecord, or None if the file is absent, empty or unreadable

        Raises:
            MalformedRecordError: If the file content is corrupt
        """
        if path is None:
            return None

        try:
            text = Path(path).read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read record file {path}: {e}")
            return None

        return self.deserialize(text)

    def write_file(self, record: BackupRecord, directory: Union[str, Path]) -> Path:
        """Write the record as backup_<fragment>.pbobj into directory."""
        destination = Path(directory) / record_file_name(record.timestamp)
        destination.write_text(self.serialize(record), encoding='utf-8')
        return destination


def most_recent(records: Iterable[BackupRecord]) -> Optional[BackupRecord]:
    return max(records, default=None)


def oldest(records: Iterable[BackupRecord]) -> Optional[BackupRecord]:
    return min(records, default=None)
