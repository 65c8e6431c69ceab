"""
Storage backends for backup files.

Supports:
- LocalStorage: Copy into a local directory
- S3Storage: Upload to AWS S3 or an S3-compatible service

Every backend can store a file, list the backup files it holds and delete
one of them; rotation is built on top of list/delete (see retention.py).
"""

import os
import abc
import shutil
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from cronos.models import DestinationConfig, StorageType
from .retention import is_backup_file, rotate_backups

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class StorageBackend(abc.ABC):
    """A place backup files can be persisted to."""

    type: str = ''

    @abc.abstractmethod
    def store(self, source_path: str) -> str:
        """
        Persist the backup file. The source file is left in place.

        Returns:
            Location descriptor of the stored copy

        Raises:
            StorageError: If the file cannot be stored
        """

    @abc.abstractmethod
    def list_backups(self) -> List[Dict[str, Any]]:
        """
        List backup files at this destination.

        Returns:
            List of dicts with 'name', 'path', 'modified' and 'size' keys

        Raises:
            StorageError: If listing fails
        """

    @abc.abstractmethod
    def delete(self, path: str):
        """
        Delete one backup file, given the 'path' reported by list_backups().

        Raises:
            StorageError: If deletion fails
        """

    def rotate(self, keep: int) -> int:
        """Delete the oldest backups beyond `keep`. Returns the number deleted."""
        return rotate_backups(self, keep)

    def save(self, source_path: str, keep: int) -> str:
        """
        Store the file, then rotate old backups.

        Rotation is best-effort: its failures are logged and never turn a
        successful store into a failure.

        Returns:
            Location descriptor from store()

        Raises:
            StorageError: If the store itself fails
        """
        location = self.store(source_path)

        try:
            self.rotate(keep)
        except Exception as e:
            logger.error(f"[{self.type}] Backup rotation failed: {e}")

        return location


class LocalStorage(StorageBackend):
    """
    Handler for storing backups in a local directory.

    Files are kept flat in the directory, named as produced:
    {path}/{name}_{YYYY-MM-DD}_{HH-MM-SS}.{ext}
    """

    type = StorageType.LOCAL.value

    def __init__(self, path: str):
        """
        Initialize local storage handler.

        Args:
            path: Directory for this destination's backups
        """
        self.base_path = Path(path)

    def store(self, source_path: str) -> str:
        if not os.path.exists(source_path):
            raise StorageError(f"Source file not found: {source_path}")

        dest_path = self.base_path / os.path.basename(source_path)

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)

            # Copy, never move: other destinations still need the source
            if Path(source_path).resolve() != dest_path.resolve():
                shutil.copy2(source_path, dest_path)

            logger.info(f"[Local] Backup saved to: {dest_path}")
            return str(dest_path.resolve())

        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to store locally: {e}")

    def list_backups(self) -> List[Dict[str, Any]]:
        if not self.base_path.exists():
            return []

        try:
            files = []

            for file_path in self.base_path.iterdir():
                if file_path.is_file() and is_backup_file(file_path.name):
                    stat = file_path.stat()
                    files.append({
                        'name': file_path.name,
                        'path': str(file_path),
                        'modified': datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                        'size': stat.st_size
                    })

            return files

        except OSError as e:
            raise StorageError(f"Failed to list local files: {e}")

    def delete(self, path: str):
        full_path = Path(path)

        try:
            if full_path.exists():
                full_path.unlink()
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete local file: {e}")


class S3Storage(StorageBackend):
    """
    Handler for uploading backups to S3.

    Keys are the prefix followed by the backup filename:
    s3://{bucket}/{prefix}{filename}
    """

    type = StorageType.S3.value

    CONTENT_TYPES = {
        '.sql.gz': 'application/gzip',
        '.dump': 'application/octet-stream',
    }

    def __init__(
        self,
        bucket_name: str,
        access_key: Optional[str],
        secret_key: Optional[str],
        region: str = 'us-east-1',
        prefix: str = '',
        endpoint_url: Optional[str] = None
    ):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            access_key: AWS access key ID
            secret_key: AWS secret access key
            region: AWS region (default: us-east-1)
            prefix: Key prefix, prepended verbatim to filenames
            endpoint_url: Endpoint of an S3-compatible service (optional)

        Raises:
            StorageError: If credentials are missing or the client cannot be created
        """
        if not access_key or not secret_key:
            raise StorageError("S3 storage requires accessKeyId and secretAccessKey")

        self.bucket_name = bucket_name
        self.region = region
        self.prefix = prefix or ''

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def store(self, source_path: str) -> str:
        if not os.path.exists(source_path):
            raise StorageError(f"Local file not found: {source_path}")

        filename = os.path.basename(source_path)
        s3_key = f"{self.prefix}{filename}"
        file_size = os.path.getsize(source_path)

        logger.info(f"Uploading backup to S3: s3://{self.bucket_name}/{s3_key}")

        extra_args = {
            'ContentType': self._content_type(filename),
            'Metadata': {
                'backup-date': datetime.now(timezone.utc).isoformat(),
                'original-size': str(file_size)
            }
        }

        try:
            # upload_file switches to multipart on its own for large files
            self.s3_client.upload_file(source_path, self.bucket_name, s3_key, ExtraArgs=extra_args)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")
        except Exception as e:
            raise StorageError(f"Failed to upload to S3: {e}")

        logger.info(f"[S3] Backup uploaded successfully: {file_size / (1024 * 1024):.2f} MB")
        return f"s3://{self.bucket_name}/{s3_key}"

    def list_backups(self) -> List[Dict[str, Any]]:
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self.prefix):
                for obj in page.get('Contents', []):
                    if is_backup_file(obj['Key']):
                        objects.append({
                            'name': obj['Key'],
                            'path': obj['Key'],
                            'modified': obj['LastModified'],
                            'size': obj['Size']
                        })

            return objects

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 list failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to list S3 objects: {e}")

    def delete(self, path: str):
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=path
            )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 delete failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to delete from S3: {e}")

    def _content_type(self, filename: str) -> str:
        for suffix, content_type in self.CONTENT_TYPES.items():
            if filename.endswith(suffix):
                return content_type
        return 'application/octet-stream'


def create_storage(destination: DestinationConfig) -> StorageBackend:
    """
    Factory function to create the backend for a destination.

    Args:
        destination: Destination descriptor

    Returns:
        LocalStorage or S3Storage instance

    Raises:
        StorageError: If the backend cannot be created
        ValueError: If the storage type is invalid
    """
    if destination.type == StorageType.LOCAL:
        return LocalStorage(destination.path)
    elif destination.type == StorageType.S3:
        return S3Storage(
            bucket_name=destination.bucket,
            access_key=destination.access_key_id,
            secret_key=destination.secret_access_key,
            region=destination.region,
            prefix=destination.prefix,
            endpoint_url=destination.endpoint
        )
    else:
        raise ValueError(f"Unsupported storage type: {destination.type}")
