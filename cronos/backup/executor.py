"""
Backup executor - orchestrates the backup of one database.

Workflow:
1. Generate the staging filename and ensure the staging directory exists
2. Dump the database into the staging file (failure stops here)
3. Save the file to every storage destination, in configured order,
   isolating failures per destination
4. Remove the staging file
5. Build the DatabaseResult (success = at least one destination stored)
"""

import os
import time
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from cronos.models import DatabaseConfig, DatabaseResult, DestinationOutcome
from .dumpers import BaseDumper, DumpError, create_dumper, generate_backup_filename
from .storage import StorageBackend, create_storage

logger = logging.getLogger(__name__)


class BackupExecutor:
    """
    Orchestrates the complete backup workflow for a database.

    Downstream failures (dump, storage, cleanup) are recorded in the
    returned DatabaseResult. Anything else propagates to the caller.
    """

    def __init__(
        self,
        database: DatabaseConfig,
        temp_dir: str,
        dump_timeout: Optional[float] = None,
        dumper_factory: Optional[Callable[..., BaseDumper]] = None,
        storage_factory: Optional[Callable[..., StorageBackend]] = None
    ):
        """
        Initialize backup executor.

        Args:
            database: Enabled database descriptor to back up
            temp_dir: Staging directory for the dump file
            dump_timeout: Optional limit in seconds for the dump process
            dumper_factory: Builds the dump producer (default: create_dumper)
            storage_factory: Builds the backend for a destination (default: create_storage)
        """
        self.database = database
        self.temp_dir = temp_dir
        self.dump_timeout = dump_timeout
        self.dumper_factory = dumper_factory or create_dumper
        self.storage_factory = storage_factory or create_storage
        self.backup_path = None
        self.logs = []

    def execute(self) -> DatabaseResult:
        """
        Execute the backup.

        Returns:
            DatabaseResult with per-destination outcomes
        """
        db = self.database
        result = DatabaseResult(name=db.name, logs=self.logs)
        start_time = time.monotonic()

        storage_types = '+'.join(d.type.value for d in db.storage)
        count = len(db.storage)
        self._log(f"Starting backup: {db.name}")
        self._log(f"Database: {db.database} ({db.type}) on {db.host}:{db.port}")
        self._log(f"Storage: {storage_types} ({count} destination{'s' if count != 1 else ''})")

        try:
            self._prepare_staging()
            result.size = self._dump()
            self._log(f"Dump completed: {result.size / (1024 * 1024):.2f} MB")
            self._save_to_destinations(result)

            if not result.success:
                result.error = f"All storage destinations failed ({len(result.storage_errors)} errors)"

        except DumpError as e:
            result.error = str(e)

        finally:
            self._cleanup(result)
            result.duration_ms = int((time.monotonic() - start_time) * 1000)

        if result.success:
            if result.storage_errors:
                self._log(
                    f"Backup completed with warnings ({len(result.storages)}/{count} storages succeeded) "
                    f"for: {db.name}",
                    logging.WARNING
                )
            else:
                self._log(f"Backup completed successfully for: {db.name}")
        else:
            self._log(f"Backup failed for: {db.name}: {result.error}", logging.ERROR)

        return result

    def _prepare_staging(self):
        """Generate the staging path; the directory is created if missing."""
        filename = generate_backup_filename(self.database.name, self.database.engine)
        try:
            os.makedirs(self.temp_dir, exist_ok=True)
        except OSError as e:
            raise DumpError(f"Failed to create staging directory {self.temp_dir}: {e}")
        self.backup_path = os.path.join(self.temp_dir, filename)

    def _dump(self) -> int:
        """
        Dump the database into the staging file.

        Returns:
            Size of the dump in bytes

        Raises:
            DumpError: If the dump fails
        """
        self._log(f"Dumping {self.database.type} database to {self.backup_path}")
        dumper = self.dumper_factory(self.database, self.dump_timeout)
        return dumper.dump(self.backup_path)

    def _save_to_destinations(self, result: DatabaseResult):
        """Save the staging file to each destination, one after another."""
        for destination in self.database.storage:
            storage_type = destination.type.value
            try:
                storage = self.storage_factory(destination)
                location = storage.save(self.backup_path, destination.keep)
                result.storages.append(DestinationOutcome(type=storage_type, path=location))
                self._log(f"[{storage_type}] Stored: {location}")
            except Exception as e:
                result.storage_errors.append(DestinationOutcome(type=storage_type, error=str(e)))
                self._log(f"[{storage_type}] Storage failed: {e}", logging.ERROR)

    def _cleanup(self, result: DatabaseResult):
        """Remove the staging file unless a destination stored it in place."""
        if not self.backup_path or not os.path.exists(self.backup_path):
            return

        staging = os.path.realpath(self.backup_path)
        if any(s.path and os.path.realpath(s.path) == staging for s in result.storages):
            self._log(f"Staging file is a stored backup, keeping it: {self.backup_path}", logging.WARNING)
            return

        try:
            os.remove(self.backup_path)
            self._log("Cleaned up staging file")
        except OSError as e:
            self._log(f"Warning: Failed to remove staging file {self.backup_path}: {e}", logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Level for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)

