"""
Unit tests for the backup naming convention (pbackup/backup/naming.py).
"""

from datetime import datetime, timedelta, timezone

import pytest

from pbackup.backup.naming import (
    format_timestamp,
    parse_fragment,
    generate_file_name_base,
    record_file_name,
    is_record_file,
    matches_backup,
    normalize_timestamp,
    truncate_to_millis
)


class TestFragment:
    """Test timestamp fragment formatting and parsing."""

    def test_format_timestamp(self):
        assert format_timestamp(datetime(2024, 3, 1, 10, 15, 30)) == '2024_03_01_10_15_30_000'

    def test_format_timestamp_milliseconds(self):
        timestamp = datetime(2024, 12, 31, 23, 59, 59, 7999)
        assert format_timestamp(timestamp) == '2024_12_31_23_59_59_007'

    def test_fragment_is_fixed_width(self):
        early = format_timestamp(datetime(2024, 1, 2, 3, 4, 5))
        late = format_timestamp(datetime(2024, 11, 12, 13, 14, 15, 999000))
        assert len(early) == len(late) == len('yyyy_MM_dd_HH_mm_ss_SSS')

    def test_fragments_sort_chronologically(self):
        timestamps = [
            datetime(2024, 10, 1, 9, 0, 0),
            datetime(2024, 2, 1, 10, 0, 0),
            datetime(2024, 2, 1, 9, 0, 0, 500000),
        ]
        fragments = [format_timestamp(ts) for ts in timestamps]
        assert sorted(fragments) == [format_timestamp(ts) for ts in sorted(timestamps)]

    def test_parse_fragment(self):
        assert parse_fragment('2024_03_01_10_15_30_123') == datetime(2024, 3, 1, 10, 15, 30, 123000)

    @pytest.mark.parametrize("fragment", ['', '2024_03_01', '2024-03-01_10_15_30_000', 'backup_2024_03_01_10_15_30_000'])
    def test_parse_fragment_invalid(self, fragment):
        with pytest.raises(ValueError):
            parse_fragment(fragment)

    def test_truncate_to_millis(self):
        assert truncate_to_millis(datetime(2024, 1, 1, 0, 0, 0, 123456)).microsecond == 123000

    def test_normalize_naive_timestamp(self):
        assert normalize_timestamp(datetime(2024, 1, 1, 0, 0, 0, 123456)) == datetime(2024, 1, 1, 0, 0, 0, 123000)

    def test_normalize_aware_timestamp(self):
        aware = datetime(2024, 1, 1, 12, 0, 0, 999999, tzinfo=timezone(timedelta(hours=5)))

        normalized = normalize_timestamp(aware)

        assert normalized.tzinfo is None
        assert normalized == aware.astimezone().replace(tzinfo=None, microsecond=999000)


class TestFileNames:
    """Test file names derived from a timestamp."""

    def test_generate_file_name_base(self):
        assert generate_file_name_base(datetime(2024, 3, 1, 10, 15, 30)) == 'backup_2024_03_01_10_15_30_000'

    def test_record_file_name(self):
        assert record_file_name(datetime(2024, 3, 1, 10, 15, 30)) == 'backup_2024_03_01_10_15_30_000.pbobj'

    def test_is_record_file(self):
        assert is_record_file('backup_2024_03_01_10_15_30_000.pbobj')
        assert not is_record_file('backup_2024_03_01_10_15_30_000.zip')

    def test_matches_backup_by_substring(self):
        timestamp = datetime(2024, 3, 1, 10, 15, 30)
        assert matches_backup('backup_2024_03_01_10_15_30_000.tar.gz', timestamp)
        assert matches_backup('custom-2024_03_01_10_15_30_000-part1.zip', timestamp)
        assert not matches_backup('backup_2024_03_01_10_15_30_001.zip', timestamp)
