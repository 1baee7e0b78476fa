"""
Storage locations for backup file sets.

A location is a place backups live. Every location supports the same four
operations:

- list_backups: enumerate the backup records stored there, oldest first
- store: copy a backup's archives and its record file into the location
- retrieve: copy the archives of one backup into a working directory
- delete: remove every file belonging to one backup (best-effort)

A record and its archives are associated only by the timestamp fragment
contained in their names (see naming.py).

Supports:
- LocalDirectory: a directory on the local filesystem
- S3Location: a bucket/prefix in AWS S3
"""

import logging
import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Union

import boto3
from botocore.exceptions import ClientError, BotoCoreError

from pbackup.registry import Component
from .naming import format_timestamp, is_record_file, matches_backup
from .record import BackupRecord, MalformedRecordError


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a storage operation fails (copy, read or write error)."""
    pass


class LocationUnavailableError(StorageError):
    """Raised when a location is disabled or does not exist."""
    pass


class NoArchivesFoundError(StorageError):
    """Raised when a location holds no archives for the requested backup."""
    pass


class CleanupFailedError(StorageError):
    """Raised when a pre-existing file at the retrieve destination cannot be removed."""
    pass


def is_writable_directory(path: Union[str, Path]) -> bool:
    path = Path(path)
    return path.is_dir() and os.access(path, os.W_OK)


def _copy_entry(source: Path, destination: Path):
    """Copy a file byte-for-byte, or a directory recursively."""
    try:
        if source.is_dir():
            shutil.copytree(source, destination, dirs_exist_ok=True)
        else:
            shutil.copy2(source, destination)
    except OSError as e:
        raise StorageError(f"Failed to copy {source} to {destination}: {e}")


def _delete_path(path: Path):
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _clear_destination(target: Path):
    """
    Remove an existing entry before a retrieved archive replaces it.

    Raises:
        CleanupFailedError: If the entry cannot be removed
    """
    if not (target.exists() or target.is_symlink()):
        return

    logger.warning(f"{target} already exists, deleting...")
    try:
        _delete_path(target)
    except OSError as e:
        raise CleanupFailedError(f"Could not delete {target}: {e}")


class StorageLocation(Component, ABC):
    """
    Abstract place where backups are stored.

    Disabled locations ignore store() but can still be listed and
    restored from.
    """

    kind = 'location'

    def __init__(self, enabled: bool = True):
        self.enabled = bool(enabled)

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the location currently exists and can be accessed."""

    @abstractmethod
    def list_backups(self, serializer) -> Iterator[BackupRecord]:
        """
        Enumerate backup records stored at this location.

        Every call rescans the location. Records come back sorted by
        timestamp, oldest first; malformed or unreadable record files are
        skipped.

        Args:
            serializer: RecordSerializer used to decode record files
        """

    @abstractmethod
    def store(self, archives: Iterable[Union[str, Path]], record_file: Union[str, Path]):
        """
        Copy archives and the record file into the location.

        A disabled or missing location is skipped with a warning.

        Raises:
            StorageError: If a copy fails
        """

    @abstractmethod
    def retrieve(self, record: BackupRecord, destination_dir: Union[str, Path]) -> List[Path]:
        """
        Copy the archives belonging to `record` into destination_dir.

        Returns:
            Paths of the copied archives

        Raises:
            LocationUnavailableError: If the location does not exist
            NoArchivesFoundError: If no archive matches the record
            CleanupFailedError: If an existing destination entry cannot be removed
            StorageError: If a copy fails
        """

    @abstractmethod
    def delete(self, record: BackupRecord):
        """Remove every file belonging to `record`. Failures are only logged."""


class LocalDirectory(StorageLocation):
    """
    Location backed by a local directory.

    Layout is flat: {path}/backup_{fragment}.{ext} for archives (files or
    directories) and {path}/backup_{fragment}.pbobj for the record.
    """

    type_id = 'local'

    def __init__(self, path: Union[str, Path], enabled: bool = True):
        super().__init__(enabled)
        self.path = Path(path)

    def to_dict(self) -> Dict[str, Any]:
        return {'path': str(self.path), 'enabled': self.enabled}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], registry=None) -> 'LocalDirectory':
        return cls(path=data['path'], enabled=data.get('enabled', True))

    @property
    def display_name(self) -> str:
        return f"LocalDirectory: {self.path}"

    def is_available(self) -> bool:
        return self.path.is_dir()

    def list_backups(self, serializer) -> Iterator[BackupRecord]:
        if not is_writable_directory(self.path):
            logger.warning(f"{self.path.absolute()} is not an existing/writable directory.")
            return

        try:
            names = sorted(
                entry.name for entry in os.scandir(self.path)
                if entry.is_file() and is_record_file(entry.name)
            )
        except OSError as e:
            logger.warning(f"Could not scan {self.path}: {e}")
            return

        for name in names:
            try:
                record = serializer.read_file(self.path / name)
            except MalformedRecordError as e:
                logger.warning(f"Skipping malformed record file {name}: {e}")
                continue

            if record is not None:
                yield record

    def store(self, archives: Iterable[Union[str, Path]], record_file: Union[str, Path]):
        if not (self.enabled and self.path.exists()):
            logger.warning(f"Skipping location {self.path} since it is disabled or it does not exist.")
            return

        for archive in archives:
            archive = Path(archive)
            destination = self.path / archive.name
            _copy_entry(archive, destination)
            logger.info(f"{archive.name} copied to {destination.absolute()}")

        record_file = Path(record_file)
        record_destination = self.path / record_file.name
        _copy_entry(record_file, record_destination)
        logger.info(f"{record_file.name} copied to {record_destination.absolute()}")

    def retrieve(self, record: BackupRecord, destination_dir: Union[str, Path]) -> List[Path]:
        if not self.path.is_dir():
            raise LocationUnavailableError(f"Location {self.path.absolute()} does not exist")

        try:
            archives = sorted(
                entry for entry in self.path.iterdir()
                if matches_backup(entry.name, record.timestamp) and not is_record_file(entry.name)
            )
        except OSError as e:
            raise StorageError(f"Could not scan {self.path}: {e}")

        if not archives:
            raise NoArchivesFoundError(f"Backup archives do not exist in {self.path.absolute()}")

        destination_dir = Path(destination_dir)
        try:
            destination_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Could not create {destination_dir}: {e}")

        retrieved = []

        for archive in archives:
            target = destination_dir / archive.name
            _clear_destination(target)

            logger.info(f"Copying {archive.absolute()} to {target.absolute()}")
            _copy_entry(archive, target)
            logger.info(f"Archive {archive.absolute()} copied to {target.absolute()}")
            retrieved.append(target)

        return retrieved

    def delete(self, record: BackupRecord):
        fragment = format_timestamp(record.timestamp)

        try:
            entries = list(self.path.iterdir())
        except OSError as e:
            logger.warning(f"Could not scan {self.path} for deletion: {e}")
            return

        # Matched against the absolute path, not just the name
        for entry in entries:
            if fragment not in str(entry.absolute()):
                continue

            if entry.is_dir() and not entry.is_symlink():
                logger.info(f"Deleting old/redundant backup archive directory {entry.absolute()}")
                try:
                    shutil.rmtree(entry)
                except OSError as e:
                    logger.warning(f"Could not delete the archive directory {entry.absolute()}: {e}")
            else:
                logger.info(f"Deleting old/redundant backup file {entry.absolute()}")
                try:
                    entry.unlink()
                except OSError as e:
                    logger.warning(f"Could not delete file {entry.absolute()}: {e}")


class S3Location(StorageLocation):
    """
    Location backed by an AWS S3 bucket.

    Keys mirror the local layout under an optional prefix:
    {prefix}/backup_{fragment}.zip, {prefix}/backup_{fragment}.pbobj and,
    for directory archives, {prefix}/backup_{fragment}/{relative path}.

    Credentials are never serialized; without explicit keys boto3's default
    credential chain is used.
    """

    type_id = 's3'

    def __init__(self, bucket_name: str, prefix: str = '', region: str = 'us-east-1',
                 enabled: bool = True, access_key: str = None, secret_key: str = None):
        super().__init__(enabled)
        self.bucket_name = bucket_name
        self.prefix = (prefix or '').strip('/')
        self.region = region
        self._access_key = access_key
        self._secret_key = secret_key
        self._client = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bucket_name': self.bucket_name,
            'prefix': self.prefix,
            'region': self.region,
            'enabled': self.enabled,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], registry=None) -> 'S3Location':
        return cls(
            bucket_name=data['bucket_name'],
            prefix=data.get('prefix', ''),
            region=data.get('region', 'us-east-1'),
            enabled=data.get('enabled', True)
        )

    @property
    def display_name(self) -> str:
        if self.prefix:
            return f"S3: s3://{self.bucket_name}/{self.prefix}"
        return f"S3: s3://{self.bucket_name}"

    @property
    def s3_client(self):
        if self._client is None:
            try:
                self._client = boto3.client(
                    's3',
                    aws_access_key_id=self._access_key,
                    aws_secret_access_key=self._secret_key,
                    region_name=self.region
                )
            except (BotoCoreError, ValueError) as e:
                raise StorageError(f"Failed to initialize S3 client: {e}")
        return self._client

    def _key(self, name: str) -> str:
        return f"{self.prefix}/{name}" if self.prefix else name

    def _relative(self, key: str) -> str:
        if self.prefix:
            return key[len(self.prefix) + 1:]
        return key

    def _list_keys(self) -> List[str]:
        list_prefix = f"{self.prefix}/" if self.prefix else ''
        keys = []

        paginator = self.s3_client.get_paginator('list_objects_v2')
        for page in paginator.paginate(Bucket=self.bucket_name, Prefix=list_prefix):
            for obj in page.get('Contents', []):
                keys.append(obj['Key'])

        return keys

    def _entries(self) -> Dict[str, List[str]]:
        """Group keys by top-level entry name (file or directory archive)."""
        entries: Dict[str, List[str]] = {}
        for key in self._list_keys():
            relative = self._relative(key)
            if not relative:
                continue
            name = relative.split('/', 1)[0]
            entries.setdefault(name, []).append(key)
        return entries

    def is_available(self) -> bool:
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except (ClientError, BotoCoreError, StorageError) as e:
            logger.warning(f"S3 bucket {self.bucket_name} is not accessible: {e}")
            return False

    def list_backups(self, serializer) -> Iterator[BackupRecord]:
        if not self.is_available():
            return

        try:
            record_keys = sorted(
                key for key in self._list_keys()
                if '/' not in self._relative(key) and is_record_file(key)
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not list {self.display_name}: {e}")
            return

        for key in record_keys:
            try:
                response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
                text = response['Body'].read().decode('utf-8')
            except (ClientError, BotoCoreError, UnicodeDecodeError) as e:
                logger.warning(f"Could not read record {key}: {e}")
                continue

            try:
                record = serializer.deserialize(text)
            except MalformedRecordError as e:
                logger.warning(f"Skipping malformed record {key}: {e}")
                continue

            if record is not None:
                yield record

    def _upload_file(self, local_path: Path, key: str):
        try:
            with open(local_path, 'rb') as f:
                self.s3_client.put_object(Bucket=self.bucket_name, Key=key, Body=f)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload of {local_path} failed ({error_code}): {e}")
        except (BotoCoreError, OSError) as e:
            raise StorageError(f"S3 upload of {local_path} failed: {e}")

    def _download_file(self, key: str, local_path: Path):
        try:
            local_path.parent.mkdir(parents=True, exist_ok=True)
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            with open(local_path, 'wb') as f:
                shutil.copyfileobj(response['Body'], f)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 download of {key} failed ({error_code}): {e}")
        except (BotoCoreError, OSError) as e:
            raise StorageError(f"S3 download of {key} failed: {e}")

    def store(self, archives: Iterable[Union[str, Path]], record_file: Union[str, Path]):
        if not (self.enabled and self.is_available()):
            logger.warning(f"Skipping location {self.display_name} since it is disabled or it does not exist.")
            return

        for archive in archives:
            archive = Path(archive)
            if archive.is_dir():
                for item in sorted(archive.rglob('*')):
                    if item.is_file():
                        relative = item.relative_to(archive).as_posix()
                        self._upload_file(item, self._key(f"{archive.name}/{relative}"))
            else:
                self._upload_file(archive, self._key(archive.name))
            logger.info(f"{archive.name} copied to s3://{self.bucket_name}/{self._key(archive.name)}")

        record_file = Path(record_file)
        self._upload_file(record_file, self._key(record_file.name))
        logger.info(f"{record_file.name} copied to s3://{self.bucket_name}/{self._key(record_file.name)}")

    def retrieve(self, record: BackupRecord, destination_dir: Union[str, Path]) -> List[Path]:
        if not self.is_available():
            raise LocationUnavailableError(f"Location {self.display_name} does not exist")

        try:
            entries = self._entries()
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Could not list {self.display_name}: {e}")

        matching = sorted(
            name for name in entries
            if matches_backup(name, record.timestamp) and not is_record_file(name)
        )
        if not matching:
            raise NoArchivesFoundError(f"Backup archives do not exist in {self.display_name}")

        destination_dir = Path(destination_dir)
        retrieved = []

        for name in matching:
            target = destination_dir / name
            _clear_destination(target)

            logger.info(f"Copying s3://{self.bucket_name}/{self._key(name)} to {target.absolute()}")
            for key in entries[name]:
                relative = self._relative(key)
                if relative == name:
                    self._download_file(key, target)
                else:
                    self._download_file(key, destination_dir / relative)
            retrieved.append(target)

        return retrieved

    def delete(self, record: BackupRecord):
        try:
            entries = self._entries()
        except (ClientError, BotoCoreError, StorageError) as e:
            logger.warning(f"Could not list {self.display_name} for deletion: {e}")
            return

        for name, keys in entries.items():
            if not matches_backup(name, record.timestamp):
                continue

            logger.info(f"Deleting old/redundant backup s3://{self.bucket_name}/{self._key(name)}")
            for key in keys:
                try:
                    self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
                except (ClientError, BotoCoreError) as e:
                    logger.warning(f"Could not delete S3 object {key}: {e}")
