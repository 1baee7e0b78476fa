"""
Unit tests for archival backends (pbackup/backup/compression.py).

Tests ZipStorage, TarStorage and NullStorage archive/unarchive cycles.
"""

import tarfile
import warnings
import zipfile

import pytest

from pbackup.backup.compression import (
    ZipStorage,
    TarStorage,
    NullStorage,
    storage_description,
    get_archive_size,
    CompressionError
)


BASE_NAME = 'backup_2024_03_01_10_15_30_000'


@pytest.fixture
def work_dir(tmp_path):
    directory = tmp_path / 'work'
    directory.mkdir()
    return directory


@pytest.fixture
def result_dir(tmp_path):
    directory = tmp_path / 'result'
    directory.mkdir()
    return directory


class TestZipStorage:
    """Test zip archives."""

    def test_archive_and_unarchive(self, file_manager, source_dir, work_dir, result_dir):
        storage = ZipStorage()
        files = file_manager.files_to_backup()

        archives = storage.archive_files(files, source_dir, work_dir, BASE_NAME)

        assert [a.name for a in archives] == [f"{BASE_NAME}.zip"]
        with zipfile.ZipFile(archives[0]) as zipf:
            assert 'jobs/alpha/config.xml' in zipf.namelist()

        storage.unarchive_files(archives, result_dir)

        assert (result_dir / 'jobs' / 'alpha' / 'config.xml').read_text() == '<job name="alpha"/>'

    def test_multi_volume(self, tmp_path, work_dir, result_dir):
        source = tmp_path / 'big'
        source.mkdir()
        for index in range(3):
            (source / f"file{index}.bin").write_bytes(b'x' * 600 * 1024)

        storage = ZipStorage(multi_volume=True, volume_size=1)
        archives = storage.archive_files(sorted(source.iterdir()), source, work_dir, BASE_NAME)

        assert [a.name for a in archives] == [
            f"{BASE_NAME}_part1.zip",
            f"{BASE_NAME}_part2.zip",
            f"{BASE_NAME}_part3.zip",
        ]

        storage.unarchive_files(archives, result_dir)
        assert sorted(p.name for p in result_dir.iterdir()) == ['file0.bin', 'file1.bin', 'file2.bin']

    def test_no_files(self, source_dir, work_dir):
        with pytest.raises(CompressionError):
            ZipStorage().archive_files([], source_dir, work_dir, BASE_NAME)

    def test_file_outside_base_dir(self, tmp_path, source_dir, work_dir):
        outsider = tmp_path / 'outside.txt'
        outsider.write_text('x')

        with pytest.raises(CompressionError):
            ZipStorage().archive_files([outsider], source_dir, work_dir, BASE_NAME)

        assert list(work_dir.iterdir()) == []

    def test_unarchive_rejects_path_traversal(self, work_dir, result_dir):
        archive = work_dir / 'evil.zip'
        with zipfile.ZipFile(archive, 'w') as zipf:
            zipf.writestr('../evil.txt', 'gotcha')

        with pytest.raises(CompressionError, match='escapes'):
            ZipStorage().unarchive_files([archive], result_dir)

    def test_invalid_volume_size(self):
        with pytest.raises(ValueError):
            ZipStorage(multi_volume=True, volume_size=0)


class TestTarStorage:
    """Test tar archives."""

    @pytest.mark.parametrize("compression,extension", [
        ('gz', 'tar.gz'),
        ('bz2', 'tar.bz2'),
        ('xz', 'tar.xz'),
        ('none', 'tar'),
    ])
    def test_archive_and_unarchive(self, file_manager, source_dir, work_dir, result_dir, compression, extension):
        storage = TarStorage(compression)

        archives = storage.archive_files(file_manager.files_to_backup(), source_dir, work_dir, BASE_NAME)

        assert [a.name for a in archives] == [f"{BASE_NAME}.{extension}"]

        storage.unarchive_files(archives, result_dir)

        assert (result_dir / 'notes.txt').read_text() == 'Some notes'
        assert not (result_dir / 'cache').exists()

    def test_unarchive_without_deprecation_warnings(self, file_manager, source_dir, work_dir, result_dir):
        storage = TarStorage('gz')
        archives = storage.archive_files(file_manager.files_to_backup(), source_dir, work_dir, BASE_NAME)

        with warnings.catch_warnings():
            warnings.simplefilter('error', DeprecationWarning)
            storage.unarchive_files(archives, result_dir)

        assert (result_dir / 'jobs' / 'alpha' / 'config.xml').read_text() == '<job name="alpha"/>'

    def test_invalid_compression(self):
        with pytest.raises(ValueError):
            TarStorage('rar')

    def test_unarchive_rejects_links(self, work_dir, result_dir):
        archive = work_dir / 'links.tar'
        with tarfile.open(archive, 'w') as tar:
            info = tarfile.TarInfo('link')
            info.type = tarfile.SYMTYPE
            info.linkname = '/etc/passwd'
            tar.addfile(info)

        with pytest.raises(CompressionError):
            TarStorage('none').unarchive_files([archive], result_dir)


class TestNullStorage:
    """Test directory "archives"."""

    def test_archive_is_directory(self, file_manager, source_dir, work_dir, result_dir):
        storage = NullStorage()

        archives = storage.archive_files(file_manager.files_to_backup(), source_dir, work_dir, BASE_NAME)

        assert archives == [work_dir / BASE_NAME]
        assert (archives[0] / 'jobs' / 'alpha' / 'builds' / '1' / 'log').read_text() == 'build log'

        storage.unarchive_files(archives, result_dir)
        assert (result_dir / 'config.xml').read_text() == '<config/>'

    def test_unarchive_requires_directory(self, work_dir, result_dir):
        archive = work_dir / 'file.zip'
        archive.write_bytes(b'data')

        with pytest.raises(CompressionError):
            NullStorage().unarchive_files([archive], result_dir)


class TestHelpers:
    """Test module helpers."""

    @pytest.mark.parametrize("name,expected", [
        ('zip', {'type': 'zip'}),
        ('tar.gz', {'type': 'tar', 'compression': 'gz'}),
        ('tar', {'type': 'tar', 'compression': 'none'}),
        ('null', {'type': 'null'}),
    ])
    def test_storage_description(self, name, expected):
        assert storage_description(name) == expected

    def test_storage_description_invalid(self):
        with pytest.raises(ValueError, match='Invalid compression format'):
            storage_description('7z')

    def test_get_archive_size_file(self, tmp_path):
        archive = tmp_path / 'a.zip'
        archive.write_bytes(b'x' * 10)

        assert get_archive_size(archive) == 10

    def test_get_archive_size_directory(self, tmp_path):
        archive = tmp_path / 'dir'
        (archive / 'sub').mkdir(parents=True)
        (archive / 'a').write_bytes(b'x' * 3)
        (archive / 'sub' / 'b').write_bytes(b'x' * 4)

        assert get_archive_size(archive) == 7

    def test_get_archive_size_missing(self, tmp_path):
        with pytest.raises(CompressionError):
            get_archive_size(tmp_path / 'missing.zip')

    def test_storages_compare_by_configuration(self):
        assert ZipStorage() == ZipStorage()
        assert TarStorage('gz') != TarStorage('xz')
        assert ZipStorage() != NullStorage()
