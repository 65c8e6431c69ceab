"""
Shared pytest fixtures for Cronos tests.

This module provides fixtures for:
- Database descriptors (MySQL and PostgreSQL)
- Local and S3 destination descriptors
- Mock fixtures for external services (S3, dump processes)
- Helpers to populate a destination with existing backups
"""

import os
from datetime import datetime, timedelta, timezone

import pytest
import boto3
from moto import mock_aws

from cronos.backup.dumpers import DumpError
from cronos.models import DatabaseConfig, DestinationConfig, Engine, SSLMode, StorageType


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Keep boto3 away from real credentials and endpoints."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def local_destination(tmp_path):
    """Local destination keeping 10 backups."""
    return DestinationConfig(type=StorageType.LOCAL, path=str(tmp_path / 'backups'), keep=10)


@pytest.fixture
def s3_destination():
    """S3 destination in the moto test bucket."""
    return DestinationConfig(
        type=StorageType.S3,
        bucket='test-bucket',
        prefix='main/',
        region='us-east-1',
        access_key_id='test_access_key',
        secret_access_key='test_secret_key',
        keep=5
    )


@pytest.fixture
def mysql_database(local_destination):
    """Enabled MySQL database with one local destination."""
    return DatabaseConfig(
        name='main',
        enabled=True,
        engine=Engine.MYSQL,
        type='mysql',
        host='db.internal',
        port=3306,
        database='app',
        username='backup',
        password='secret',
        ssl_mode=SSLMode.REQUIRED_NO_VERIFY,
        storage=(local_destination,)
    )


@pytest.fixture
def postgres_database(local_destination):
    """Enabled PostgreSQL database with one local destination."""
    return DatabaseConfig(
        name='analytics',
        enabled=True,
        engine=Engine.POSTGRES,
        type='postgresql',
        host='pg.internal',
        port=5432,
        database='warehouse',
        username='reader',
        password='pg_secret',
        ssl_mode=SSLMode.REQUIRED,
        storage=(local_destination,)
    )


@pytest.fixture
def staging_dir(tmp_path):
    """Staging directory (not created yet)."""
    return str(tmp_path / 'staging')


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


class FakeDumper:
    """Dump producer writing fixed bytes instead of spawning a process."""

    def __init__(self, content=b'-- dump --\n' * 100, error=None):
        self.content = content
        self.error = error
        self.calls = []

    def __call__(self, database, timeout=None):
        # Used as the executor's dumper_factory
        self.database = database
        return self

    def dump(self, output_path):
        self.calls.append(output_path)
        if self.error is not None:
            raise self.error
        with open(output_path, 'wb') as f:
            f.write(self.content)
        return len(self.content)


@pytest.fixture
def fake_dumper():
    return FakeDumper()


@pytest.fixture
def failing_dumper():
    """Dump producer failing like a rejected login."""
    return FakeDumper(error=DumpError("mysqldump exited with code 2: ERROR 1045 (28000): Access denied"))


def make_backups(directory, name='main', count=12, ext='sql.gz', start=None):
    """
    Create `count` backup files with increasing modification times.

    Returns:
        List of paths, oldest first
    """
    os.makedirs(directory, exist_ok=True)
    start = start or datetime(2024, 1, 1, 2, 0, 0, tzinfo=timezone.utc)
    paths = []

    for i in range(count):
        stamp = start + timedelta(days=i)
        path = os.path.join(directory, f"{name}_{stamp.strftime('%Y-%m-%d_%H-%M-%S')}.{ext}")
        with open(path, 'wb') as f:
            f.write(b'old backup')
        mtime = stamp.timestamp()
        os.utime(path, (mtime, mtime))
        paths.append(path)

    return paths


@pytest.fixture
def backup_files():
    return make_backups
