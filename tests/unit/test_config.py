"""
Unit tests for configuration validation (pbackup/config.py).
"""

import os
from unittest.mock import patch

import pytest

from pbackup.config import (
    Config,
    ValidationResult,
    validate_config,
    validate_location_path,
    _env_list,
    _env_int
)


class TestEnvironmentHelpers:

    def test_env_list_splits_and_strips(self):
        with patch.dict(os.environ, {'BACKUP_EXCLUDE': ' *.log , cache/**,,'}):
            assert _env_list('BACKUP_EXCLUDE') == ['*.log', 'cache/**']

    def test_env_list_default(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _env_list('LOCAL_BACKUP_DIRS', f'/a{os.pathsep}/b', os.pathsep) == ['/a', '/b']

    def test_env_int(self):
        with patch.dict(os.environ, {'CYCLE_DAYS': '14'}):
            assert _env_int('CYCLE_DAYS', 0) == 14

    def test_env_int_rejects_garbage(self):
        with patch.dict(os.environ, {'CYCLE_DAYS': 'two weeks'}):
            with pytest.raises(ValueError, match="CYCLE_DAYS must be an integer"):
                _env_int("CYCLE_DAYS", 0)


class TestValidationResult:

    def test_ok_depends_on_errors(self):
        result = ValidationResult()
        result.warnings.append('minor')
        assert result.ok

        result.errors.append('major')
        assert not result.ok

    def test_merge(self):
        first = ValidationResult()
        first.messages.append('one')
        second = ValidationResult()
        second.errors.append('two')

        assert first.merge(second) is first
        assert first.messages == ['one']
        assert first.errors == ['two']


class TestValidateLocationPath:

    def test_writable_directory(self, tmp_path):
        result = validate_location_path(str(tmp_path))

        assert result.ok
        assert result.messages == [f'directory "{tmp_path}" OK']

    def test_missing_directory(self, tmp_path):
        path = str(tmp_path / 'missing')

        result = validate_location_path(path)

        assert result.errors == [f"{path} doesn't exist or is not a writable directory"]

    def test_file_is_not_a_directory(self, tmp_path):
        path = tmp_path / 'file'
        path.write_text('x')

        assert not validate_location_path(str(path)).ok


class TestValidateConfig:

    def test_valid_configuration(self, testing_config):
        result = validate_config(testing_config)

        assert result.ok
        assert result.warnings == []
        assert len(result.messages) == 2

    def test_invalid_cron(self, testing_config):
        testing_config.SCHEDULE_CRON = '61 * * * *'

        result = validate_config(testing_config)

        assert not result.ok
        assert 'Invalid cron expression' in result.errors[0]

    def test_missing_cron_is_a_warning(self, testing_config):
        testing_config.SCHEDULE_CRON = None

        result = validate_config(testing_config)

        assert result.ok
        assert 'triggered manually' in result.warnings[0]

    def test_invalid_storage(self, testing_config):
        testing_config.BACKUP_STORAGE = 'rar'

        result = validate_config(testing_config)

        assert any('Invalid compression format: rar' in e for e in result.errors)

    def test_missing_source_dir_is_a_warning(self, testing_config, tmp_path):
        testing_config.BACKUP_SOURCE_DIR = str(tmp_path / 'nothing')

        result = validate_config(testing_config)

        assert result.ok
        assert 'does not exist' in result.warnings[0]

    def test_no_locations(self, testing_config):
        testing_config.LOCAL_BACKUP_DIRS = []

        result = validate_config(testing_config)

        assert 'No backup location configured' in result.errors

    def test_s3_only_is_a_location(self, testing_config):
        testing_config.LOCAL_BACKUP_DIRS = []
        testing_config.S3_BUCKET = 'bucket'

        assert validate_config(testing_config).ok

    def test_unwritable_location(self, testing_config, tmp_path):
        testing_config.LOCAL_BACKUP_DIRS = [str(tmp_path / 'gone')]

        result = validate_config(testing_config)

        assert not result.ok
        assert "doesn't exist" in result.errors[0]

    def test_negative_cycles(self, testing_config):
        testing_config.CYCLE_QUANTITY = -1

        result = validate_config(testing_config)

        assert result.errors == ["CYCLE_QUANTITY must be a non-negative integer, got -1"]

    def test_base_config_defaults(self):
        assert Config.SCHEDULER_TIMEZONE == 'UTC'
        assert Config.BACKUP_RESTORE_POLICY in ('replace', 'overwrite')
