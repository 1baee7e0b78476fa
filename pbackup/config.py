import os
from pathlib import Path
from typing import List


def _env_list(name: str, default: str = '', separator: str = ',') -> List[str]:
    value = os.environ.get(name, default)
    return [item.strip() for item in value.split(separator) if item.strip()]


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_bool(name: str, default: str = 'false') -> bool:
    return os.environ.get(name, default).lower() == 'true'


class Config:
    """Base configuration"""

    DEBUG = False

    # Files to back up
    BACKUP_SOURCE_DIR = os.environ.get('BACKUP_SOURCE_DIR') or '/data/source'
    BACKUP_FILE_MANAGER = os.environ.get('BACKUP_FILE_MANAGER') or 'directory'
    BACKUP_INCLUDE = _env_list('BACKUP_INCLUDE')
    BACKUP_EXCLUDE = _env_list('BACKUP_EXCLUDE')
    BACKUP_RESTORE_POLICY = os.environ.get('BACKUP_RESTORE_POLICY') or 'replace'

    # Archive format: zip, tar.gz, tar.bz2, tar.xz, tar, null
    BACKUP_STORAGE = os.environ.get('BACKUP_STORAGE') or 'tar.gz'

    # Locations
    LOCAL_BACKUP_DIRS = _env_list('LOCAL_BACKUP_DIRS', '/data/local_backups', os.pathsep)
    S3_BUCKET = os.environ.get('S3_BUCKET')
    S3_PREFIX = os.environ.get('S3_PREFIX', '')
    S3_REGION = os.environ.get('S3_REGION') or 'us-east-1'
    S3_ENABLED = _env_bool('S3_ENABLED', 'true')

    # Upload/Temp
    TEMP_DIR = os.environ.get('TEMP_DIR') or '/data/temp'

    # Scheduler
    SCHEDULE_CRON = os.environ.get('SCHEDULE_CRON') or '0 2 * * *'
    SCHEDULER_TIMEZONE = 'UTC'

    # Retention (0 = unlimited)
    CYCLE_QUANTITY = _env_int('CYCLE_QUANTITY', 0)
    CYCLE_DAYS = _env_int('CYCLE_DAYS', 0)

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    BACKUP_SOURCE_DIR = os.environ.get('BACKUP_SOURCE_DIR') or os.path.join(DATA_DIR, 'source')
    LOCAL_BACKUP_DIRS = _env_list('LOCAL_BACKUP_DIRS', os.path.join(DATA_DIR, 'local_backups'), os.pathsep)
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


class ValidationResult:
    """
    Structured result of a configuration check.

    Attributes:
        errors: Problems that prevent the configuration from working
        warnings: Problems worth reporting that do not block execution
        messages: Informational notes (e.g. "directory ... OK")
    """

    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.messages: List[str] = []

    @property
    def ok(self) -> bool:
        return not self.errors

    def merge(self, other: 'ValidationResult') -> 'ValidationResult':
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.messages.extend(other.messages)
        return self

    def __repr__(self):
        return f'<ValidationResult ok={self.ok} errors={len(self.errors)} warnings={len(self.warnings)}>'


def validate_location_path(path: str) -> ValidationResult:
    """Check that a local backup location is an existing, writable directory."""
    result = ValidationResult()
    directory = Path(path)

    if not directory.is_dir() or not os.access(directory, os.W_OK):
        result.errors.append(f"{path} doesn't exist or is not a writable directory")
    else:
        result.messages.append(f'directory "{path}" OK')

    return result


def validate_config(cfg) -> ValidationResult:
    """
    Validate a configuration object before building a context from it.

    Args:
        cfg: Config class or instance

    Returns:
        ValidationResult; result.ok is False when any error was found
    """
    from apscheduler.triggers.cron import CronTrigger
    from pbackup.backup.compression import STORAGE_FORMATS

    result = ValidationResult()

    if cfg.SCHEDULE_CRON:
        try:
            CronTrigger.from_crontab(cfg.SCHEDULE_CRON, timezone=cfg.SCHEDULER_TIMEZONE)
        except ValueError as e:
            result.errors.append(f"Invalid cron expression {cfg.SCHEDULE_CRON!r}: {e}")
    else:
        result.warnings.append("No schedule configured, backups will only run when triggered manually")

    if cfg.BACKUP_STORAGE not in STORAGE_FORMATS:
        result.errors.append(
            f"Invalid compression format: {cfg.BACKUP_STORAGE}. "
            f"Valid options: {list(STORAGE_FORMATS.keys())}"
        )

    if not Path(cfg.BACKUP_SOURCE_DIR).is_dir():
        result.warnings.append(f"Source directory {cfg.BACKUP_SOURCE_DIR} does not exist")

    if not cfg.LOCAL_BACKUP_DIRS and not cfg.S3_BUCKET:
        result.errors.append("No backup location configured")

    for path in cfg.LOCAL_BACKUP_DIRS:
        result.merge(validate_location_path(path))

    for name in ('CYCLE_QUANTITY', 'CYCLE_DAYS'):
        value = getattr(cfg, name)
        if not isinstance(value, int) or value < 0:
            result.errors.append(f"{name} must be a non-negative integer, got {value!r}")

    return result
