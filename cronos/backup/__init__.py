"""
Backup module for Cronos.

This module handles the per-database backup work:
- Dump production (MySQL/MariaDB and PostgreSQL)
- Storage (local directory and S3)
- Retention (rotation of old backups per destination)
- Execution orchestration
"""

from .executor import BackupExecutor
from .dumpers import MySQLDumper, PostgresDumper, create_dumper
from .storage import LocalStorage, S3Storage, create_storage
from .retention import rotate_backups, select_for_deletion

__all__ = [
    'BackupExecutor',
    'MySQLDumper',
    'PostgresDumper',
    'create_dumper',
    'LocalStorage',
    'S3Storage',
    'create_storage',
    'rotate_backups',
    'select_for_deletion'
]
