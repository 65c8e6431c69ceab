"""
Unit tests for backup executor (cronos/backup/executor.py).

Tests BackupExecutor for orchestrating one database's backup: a single
dump, fan-out to every destination, and staging cleanup.
"""

import os
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest

from cronos.backup.dumpers import create_dumper
from cronos.backup.executor import BackupExecutor
from cronos.backup.storage import LocalStorage, StorageError
from cronos.models import DestinationConfig, StorageType


def storage_mock(type_='local', location=None, error=None):
    storage = MagicMock()
    storage.type = type_
    if error is not None:
        storage.save.side_effect = error
    else:
        storage.save.return_value = location
    return storage


def staging_files(staging_dir):
    if not os.path.exists(staging_dir):
        return []
    return os.listdir(staging_dir)


class TestBackupExecutor:
    """Test BackupExecutor class."""

    def test_executor_initialization(self, mysql_database, staging_dir):
        executor = BackupExecutor(mysql_database, staging_dir)

        assert executor.database == mysql_database
        assert executor.temp_dir == staging_dir
        assert executor.backup_path is None
        assert executor.logs == []

    def test_successful_backup_single_destination(self, mysql_database, staging_dir, fake_dumper, tmp_path):
        """Dump is stored locally and the staging file removed."""
        executor = BackupExecutor(mysql_database, staging_dir, dumper_factory=fake_dumper)

        result = executor.execute()

        assert result.success is True
        assert result.error is None
        assert result.size == len(fake_dumper.content)
        assert len(result.storages) == 1
        assert result.storage_errors == []
        assert result.storages[0].type == 'local'
        assert os.path.exists(result.storages[0].path)
        assert os.path.dirname(result.storages[0].path) == str((tmp_path / 'backups').resolve())
        assert result.duration_ms >= 0
        assert staging_files(staging_dir) == []
        assert len(result.logs) > 0

    def test_staging_filename(self, mysql_database, staging_dir, fake_dumper):
        """Staging file is {name}_{timestamp}.{ext} inside the staging directory."""
        executor = BackupExecutor(mysql_database, staging_dir, dumper_factory=fake_dumper)

        executor.execute()

        (path,) = fake_dumper.calls
        assert os.path.dirname(path) == staging_dir
        assert os.path.basename(path).startswith('main_')
        assert path.endswith('.sql.gz')

    def test_extension_depends_only_on_engine(self, postgres_database, staging_dir, fake_dumper, s3_destination):
        """Postgres backups are .dump whatever the first destination is."""
        database = replace(postgres_database, storage=(s3_destination,) + postgres_database.storage)
        storages = [storage_mock('s3', 's3://test-bucket/x.dump'), storage_mock('local', '/b/x.dump')]
        factory = MagicMock(side_effect=storages)

        BackupExecutor(database, staging_dir, dumper_factory=fake_dumper, storage_factory=factory).execute()

        assert fake_dumper.calls[0].endswith('.dump')

    def test_destinations_attempted_in_order(self, mysql_database, staging_dir, fake_dumper):
        destinations = (
            DestinationConfig(type=StorageType.LOCAL, path='/first', keep=3),
            DestinationConfig(type=StorageType.S3, bucket='b', access_key_id='k', secret_access_key='s', keep=7),
            DestinationConfig(type=StorageType.LOCAL, path='/third', keep=10),
        )
        database = replace(mysql_database, storage=destinations)
        storages = [
            storage_mock('local', '/first/a.sql.gz'),
            storage_mock('s3', 's3://b/a.sql.gz'),
            storage_mock('local', '/third/a.sql.gz'),
        ]
        factory = MagicMock(side_effect=storages)

        result = BackupExecutor(database, staging_dir, dumper_factory=fake_dumper, storage_factory=factory).execute()

        assert [call.args[0] for call in factory.call_args_list] == list(destinations)
        assert [s.path for s in result.storages] == ['/first/a.sql.gz', 's3://b/a.sql.gz', '/third/a.sql.gz']
        # Each destination rotates with its own retention count
        assert [s.save.call_args.args[1] for s in storages] == [3, 7, 10]

    def test_one_destination_failure_is_isolated(self, mysql_database, staging_dir, fake_dumper, s3_destination):
        """N destinations with one failing: success, N-1 stored, 1 error."""
        database = replace(
            mysql_database,
            storage=(mysql_database.storage[0], s3_destination, mysql_database.storage[0])
        )
        storages = [
            storage_mock('local', '/backups/one.sql.gz'),
            storage_mock('s3', error=StorageError('S3 upload failed (AccessDenied)')),
            storage_mock('local', '/backups/three.sql.gz'),
        ]
        factory = MagicMock(side_effect=storages)

        result = BackupExecutor(database, staging_dir, dumper_factory=fake_dumper, storage_factory=factory).execute()

        assert result.success is True
        assert result.has_warnings is True
        assert len(result.storages) == 2
        assert len(result.storage_errors) == 1
        assert result.storage_errors[0].type == 's3'
        assert 'AccessDenied' in result.storage_errors[0].error
        assert result.error is None
        # The destination after the failure was still attempted
        storages[2].save.assert_called_once()
        assert staging_files(staging_dir) == []

    def test_backend_construction_failure_is_isolated(self, mysql_database, staging_dir, fake_dumper, s3_destination):
        """A backend that cannot even be created counts as that destination's failure."""
        database = replace(mysql_database, storage=(s3_destination, mysql_database.storage[0]))
        local = storage_mock('local', '/backups/main.sql.gz')
        factory = MagicMock(side_effect=[StorageError('S3 storage requires accessKeyId and secretAccessKey'), local])

        result = BackupExecutor(database, staging_dir, dumper_factory=fake_dumper, storage_factory=factory).execute()

        assert result.success is True
        assert result.path == '/backups/main.sql.gz'
        assert result.storage_errors[0].type == 's3'

    def test_all_destinations_fail(self, mysql_database, staging_dir, fake_dumper, s3_destination):
        """Dump succeeded but nothing was stored: full failure."""
        database = replace(mysql_database, storage=(s3_destination, s3_destination))
        factory = MagicMock(side_effect=[
            storage_mock('s3', error=StorageError('boom 1')),
            storage_mock('s3', error=StorageError('boom 2')),
        ])

        result = BackupExecutor(database, staging_dir, dumper_factory=fake_dumper, storage_factory=factory).execute()

        assert result.success is False
        assert result.error == 'All storage destinations failed (2 errors)'
        assert result.storages == []
        assert len(result.storage_errors) == 2
        assert result.size == len(fake_dumper.content)
        assert staging_files(staging_dir) == []

    def test_dump_failure_skips_destinations(self, mysql_database, staging_dir, failing_dumper):
        """A failed dump attempts no destination and sets the error."""
        factory = MagicMock()

        result = BackupExecutor(
            mysql_database, staging_dir, dumper_factory=failing_dumper, storage_factory=factory
        ).execute()

        assert result.success is False
        assert 'Access denied' in result.error
        assert result.storages == []
        assert result.storage_errors == []
        assert result.size is None
        factory.assert_not_called()
        assert staging_files(staging_dir) == []

    def test_dump_failure_removes_partial_file(self, mysql_database, staging_dir, failing_dumper):
        """Partial staging output is cleaned up after a dump failure."""
        def dump_partially(path):
            with open(path, 'wb') as f:
                f.write(b'partial')
            raise failing_dumper.error

        failing_dumper.dump = dump_partially

        BackupExecutor(mysql_database, staging_dir, dumper_factory=failing_dumper).execute()

        assert staging_files(staging_dir) == []

    def test_staging_removed_exactly_once_after_last_destination(self, mysql_database, staging_dir, fake_dumper, s3_destination):
        """The staging file exists for every destination attempt and is removed once afterwards."""
        database = replace(mysql_database, storage=(s3_destination, mysql_database.storage[0]))
        seen = []

        def save(path, keep):
            seen.append(os.path.exists(path))
            return f'/stored/{os.path.basename(path)}'

        storage = MagicMock()
        storage.save.side_effect = save
        factory = MagicMock(return_value=storage)

        with patch('cronos.backup.executor.os.remove', wraps=os.remove) as mock_remove:
            BackupExecutor(database, staging_dir, dumper_factory=fake_dumper, storage_factory=factory).execute()

        assert seen == [True, True]
        assert mock_remove.call_count == 1

    def test_cleanup_failure_does_not_mask_result(self, mysql_database, staging_dir, fake_dumper):
        """A failing staging cleanup is only logged."""
        with patch('cronos.backup.executor.os.remove', side_effect=PermissionError('read-only')):
            result = BackupExecutor(mysql_database, staging_dir, dumper_factory=fake_dumper).execute()

        assert result.success is True
        assert any('Failed to remove staging file' in line for line in result.logs)

    def test_unexpected_error_propagates_after_cleanup(self, mysql_database, staging_dir, fake_dumper):
        """Faults outside the dump/storage contracts propagate, staging is still removed."""
        with patch.object(BackupExecutor, '_save_to_destinations', side_effect=RuntimeError('bug')):
            with pytest.raises(RuntimeError):
                BackupExecutor(mysql_database, staging_dir, dumper_factory=fake_dumper).execute()

        assert staging_files(staging_dir) == []

    def test_rotation_on_local_destination(self, mysql_database, staging_dir, fake_dumper, tmp_path, backup_files):
        """12 existing backups, keep 10: after a new backup exactly 10 remain."""
        directory = str(tmp_path / 'backups')
        paths = backup_files(directory, count=12)

        result = BackupExecutor(mysql_database, staging_dir, dumper_factory=fake_dumper).execute()

        remaining = sorted(os.listdir(directory))
        assert len(remaining) == 10
        assert os.path.basename(result.storages[0].path) in remaining
        for old in paths[:3]:
            assert os.path.basename(old) not in remaining
        for kept in paths[3:]:
            assert os.path.basename(kept) in remaining

    def test_staging_directory_as_destination_keeps_backup(self, mysql_database, staging_dir, fake_dumper):
        """A local destination pointing at the staging directory keeps the stored file."""
        database = replace(mysql_database, storage=(DestinationConfig(type=StorageType.LOCAL, path=staging_dir),))

        result = BackupExecutor(database, staging_dir, dumper_factory=fake_dumper).execute()

        assert result.success is True
        assert os.path.exists(result.path)
        assert staging_files(staging_dir) == [os.path.basename(result.path)]
        assert any('Staging file is a stored backup' in line for line in result.logs)

    def test_staging_directory_among_other_destinations(self, mysql_database, staging_dir, fake_dumper, tmp_path):
        """The in-place copy survives while other destinations still get their own copy."""
        database = replace(mysql_database, storage=(
            mysql_database.storage[0],
            DestinationConfig(type=StorageType.LOCAL, path=staging_dir),
        ))

        result = BackupExecutor(database, staging_dir, dumper_factory=fake_dumper).execute()

        assert [os.path.exists(s.path) for s in result.storages] == [True, True]
        assert len(list((tmp_path / 'backups').iterdir())) == 1

    def test_default_factories(self, mysql_database, staging_dir):
        executor = BackupExecutor(mysql_database, staging_dir)

        assert isinstance(executor.storage_factory(mysql_database.storage[0]), LocalStorage)
        assert executor.dumper_factory is create_dumper
