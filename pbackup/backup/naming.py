"""
Naming convention shared by everything that stores or matches backup files.

Every file belonging to one backup carries the same timestamp fragment:
    yyyy_MM_dd_HH_mm_ss_SSS  (e.g. 2024_03_01_10_15_30_000)

The fragment is fixed-width and zero-padded, so sorting file names sorts
backups chronologically.
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Union


RECORD_EXTENSION = 'pbobj'
FILE_NAME_PREFIX = 'backup_'
FILE_TIMESTAMP_PATTERN = 'yyyy_MM_dd_HH_mm_ss_SSS'

_FRAGMENT_RE = re.compile(r'^(\d{4})_(\d{2})_(\d{2})_(\d{2})_(\d{2})_(\d{2})_(\d{3})$')


def truncate_to_millis(timestamp: datetime) -> datetime:
    """Drop sub-millisecond precision from a timestamp."""
    return timestamp.replace(microsecond=(timestamp.microsecond // 1000) * 1000)


def normalize_timestamp(timestamp: datetime) -> datetime:
    """
    Convert a timestamp to naive local time with millisecond precision.

    Backup timestamps are naive local time; aware values are converted so
    that they compare with the rest and yield the same fragment.
    """
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone().replace(tzinfo=None)
    return truncate_to_millis(timestamp)


def format_timestamp(timestamp: datetime) -> str:
    """
    Format a timestamp as a filename fragment.

    Args:
        timestamp: Backup creation time

    Returns:
        Fragment such as '2024_03_01_10_15_30_000'
    """
    return f"{timestamp.strftime('%Y_%m_%d_%H_%M_%S')}_{timestamp.microsecond // 1000:03d}"


def parse_fragment(fragment: str) -> datetime:
    """
    Parse a filename fragment back into a timestamp.

    Raises:
        ValueError: If the text is not a valid fragment
    """
    match = _FRAGMENT_RE.match(fragment)
    if not match:
        raise ValueError(f"Not a timestamp fragment: {fragment!r}")

    year, month, day, hour, minute, second, millis = (int(part) for part in match.groups())
    return datetime(year, month, day, hour, minute, second, millis * 1000)


def generate_file_name_base(timestamp: datetime) -> str:
    """Base name shared by the archives and the record file of one backup."""
    return f"{FILE_NAME_PREFIX}{format_timestamp(timestamp)}"


def record_file_name(timestamp: datetime) -> str:
    return f"{generate_file_name_base(timestamp)}.{RECORD_EXTENSION}"


def is_record_file(name: Union[str, Path]) -> bool:
    return str(name).endswith(f".{RECORD_EXTENSION}")


def matches_backup(name: Union[str, Path], timestamp: datetime) -> bool:
    """
    Check whether a file name belongs to the backup taken at `timestamp`.

    Matching is plain substring containment of the fragment, so an unrelated
    file whose name happens to contain the fragment also matches.
    """
    return format_timestamp(timestamp) in str(name)
