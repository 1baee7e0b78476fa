"""
Shared pytest fixtures for pbackup tests.

This module provides fixtures for:
- Registry and record serializer
- Source directory with files to back up
- Local storage locations and backup records
- Testing configuration and BackupContext
- Mock fixtures for external services (S3)
"""

import os
from datetime import datetime
from pathlib import Path

import pytest
import boto3
from moto import mock_aws

from pbackup.config import Config
from pbackup.registry import default_registry, build_context
from pbackup.backup.record import BackupRecord, RecordSerializer
from pbackup.backup.locations import LocalDirectory
from pbackup.backup.sources import DirectoryFileManager
from pbackup.backup.compression import ZipStorage
from pbackup.backup.naming import generate_file_name_base


BACKUP_TIME = datetime(2024, 3, 1, 10, 15, 30)


@pytest.fixture
def registry():
    """Registry with every built-in component type."""
    return default_registry()


@pytest.fixture
def serializer(registry):
    return RecordSerializer(registry)


@pytest.fixture
def source_dir(tmp_path):
    """
    Create a source tree to back up.

    Creates:
    - config.xml
    - notes.txt
    - jobs/alpha/config.xml
    - jobs/alpha/builds/1/log
    - cache/module.pyc (excluded by the default file manager)
    """
    source = tmp_path / 'source'
    (source / 'jobs' / 'alpha' / 'builds' / '1').mkdir(parents=True)
    (source / 'cache').mkdir()

    (source / 'config.xml').write_text('<config/>')
    (source / 'notes.txt').write_text('Some notes')
    (source / 'jobs' / 'alpha' / 'config.xml').write_text('<job name="alpha"/>')
    (source / 'jobs' / 'alpha' / 'builds' / '1' / 'log').write_text('build log')
    (source / 'cache' / 'module.pyc').write_bytes(b'compiled python')

    return source


@pytest.fixture
def file_manager(source_dir):
    return DirectoryFileManager(source_dir, exclude_patterns=['*.pyc'])


@pytest.fixture
def location_dir(tmp_path):
    directory = tmp_path / 'location'
    directory.mkdir()
    return directory


@pytest.fixture
def local_location(location_dir):
    return LocalDirectory(location_dir)


@pytest.fixture
def make_record(file_manager, local_location):
    """Factory for records held by the local location."""
    def _make(timestamp=BACKUP_TIME, location=None, storage=None):
        return BackupRecord(
            file_manager,
            storage or ZipStorage(),
            location or local_location,
            timestamp
        )
    return _make


@pytest.fixture
def place_backup(serializer):
    """
    Factory writing a fake backup (one .dat archive plus its record file)
    directly into a location directory.
    """
    def _place(record, directory):
        directory = Path(directory)
        archive = directory / f"{generate_file_name_base(record.timestamp)}.dat"
        archive.write_bytes(b'archive data')
        serializer.write_file(record, directory)
        return archive
    return _place


@pytest.fixture
def testing_config(tmp_path, source_dir, location_dir):
    """Configuration class pointing at temporary directories."""
    second_location = tmp_path / 'location2'
    second_location.mkdir()

    return type('TestingConfig', (Config,), {
        'DEBUG': True,
        'BACKUP_SOURCE_DIR': str(source_dir),
        'BACKUP_FILE_MANAGER': 'directory',
        'BACKUP_INCLUDE': [],
        'BACKUP_EXCLUDE': ['*.pyc'],
        'BACKUP_RESTORE_POLICY': 'replace',
        'BACKUP_STORAGE': 'zip',
        'LOCAL_BACKUP_DIRS': [str(location_dir), str(second_location)],
        'S3_BUCKET': None,
        'S3_PREFIX': '',
        'S3_REGION': 'us-east-1',
        'S3_ENABLED': True,
        'TEMP_DIR': str(tmp_path / 'temp'),
        'SCHEDULE_CRON': '0 2 * * *',
        'CYCLE_QUANTITY': 0,
        'CYCLE_DAYS': 0,
        'LOG_DIR': str(tmp_path / 'logs'),
    })


@pytest.fixture
def context(testing_config, registry):
    """BackupContext built from the testing configuration."""
    return build_context(testing_config, registry)


@pytest.fixture
def aws_credentials():
    """Fake AWS credentials so boto3 never touches real accounts."""
    saved = {key: os.environ.get(key) for key in ('AWS_ACCESS_KEY_ID', 'AWS_SECRET_ACCESS_KEY')}
    os.environ['AWS_ACCESS_KEY_ID'] = 'testing'
    os.environ['AWS_SECRET_ACCESS_KEY'] = 'testing'
    yield
    for key, value in saved.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


@pytest.fixture
def mock_s3(aws_credentials):
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3
