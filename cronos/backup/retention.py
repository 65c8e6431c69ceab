"""
Retention policy for backup destinations.

Each destination keeps its newest `keep` backup files; anything older is
deleted after a successful store. Only files following the backup naming
convention (.sql.gz / .dump) are ever considered.
"""

import logging
from typing import Any, Dict, List

from .dumpers import BACKUP_EXTENSIONS

logger = logging.getLogger(__name__)

BACKUP_SUFFIXES = tuple(f'.{ext}' for ext in BACKUP_EXTENSIONS.values())


def is_backup_file(name: str) -> bool:
    """Check whether a file name follows the backup naming convention."""
    return name.endswith(BACKUP_SUFFIXES)


def select_for_deletion(backups: List[Dict[str, Any]], keep: int) -> List[Dict[str, Any]]:
    """
    Select the backups that fall outside the retention count.

    Args:
        backups: Dicts with at least 'name' and 'modified' keys
        keep: Number of newest backups to retain

    Returns:
        Backups to delete, newest first
    """
    if keep < 0:
        raise ValueError(f"Retention count must not be negative: {keep}")

    ordered = sorted(backups, key=lambda b: (b['modified'], b['name']), reverse=True)
    return ordered[keep:]


def rotate_backups(storage, keep: int) -> int:
    """
    Delete old backups from a storage backend.

    Args:
        storage: Backend providing list_backups() and delete()
        keep: Number of newest backups to retain

    Returns:
        Number of backups deleted

    Raises:
        StorageError: If the backups cannot be listed
    """
    backups = storage.list_backups()
    to_delete = select_for_deletion(backups, keep)

    if not to_delete:
        logger.info(f"[{storage.type}] Backup rotation: keeping {len(backups)} backup(s) (limit: {keep})")
        return 0

    logger.info(f"[{storage.type}] Rotating backups: deleting {len(to_delete)} old backup(s)")

    deleted_count = 0
    for backup in to_delete:
        try:
            storage.delete(backup['path'])
            deleted_count += 1
            logger.info(f"  Deleted: {backup['name']}")
        except Exception as e:
            logger.error(f"  Failed to delete {backup['name']}: {e}")

    return deleted_count
