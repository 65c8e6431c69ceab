"""
Dump producers for backup operations.

Supports:
- MySQLDumper: mysqldump/mariadb-dump piped through gzip (.sql.gz)
- PostgresDumper: pg_dump custom format, compressed by pg_dump (.dump)

Credentials are handed to the dump process through an environment map
built for that one invocation; the parent process environment is never
modified.
"""

import os
import abc
import time
import shutil
import subprocess
import tempfile
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from cronos.models import DatabaseConfig, Engine, SSLMode

logger = logging.getLogger(__name__)

BACKUP_EXTENSIONS = {
    Engine.MYSQL: 'sql.gz',
    Engine.POSTGRES: 'dump',
}


class DumpError(Exception):
    """Raised when a database dump cannot be produced."""
    pass


def generate_backup_filename(name: str, engine: Engine, now: Optional[datetime] = None) -> str:
    """
    Generate backup filename with UTC timestamp.

    Args:
        name: Database descriptor name
        engine: Engine family, which alone decides the extension
        now: Timestamp to use (default: current UTC time)

    Returns:
        Filename like 'main_2024-01-15_12-00-00.sql.gz'
    """
    now = now or datetime.now(timezone.utc)
    timestamp = now.strftime('%Y-%m-%d_%H-%M-%S')
    return f"{name}_{timestamp}.{BACKUP_EXTENSIONS[engine]}"


class BaseDumper(abc.ABC):
    """
    Common process handling for dump producers.

    Subclasses build the command line and environment and decide which
    diagnostic output counts as an error.
    """

    label = 'dump'

    def __init__(self, database: DatabaseConfig, timeout: Optional[float] = None):
        self.database = database
        self.timeout = timeout

    def dump(self, output_path: str) -> int:
        """
        Produce a compressed dump at output_path.

        Args:
            output_path: File to write (created or truncated)

        Returns:
            Size of the produced file in bytes

        Raises:
            DumpError: If the dump process fails, reports errors, or cannot be started
        """
        try:
            self._run(output_path)
            return os.path.getsize(output_path)
        except DumpError:
            self._remove_partial(output_path)
            raise
        except OSError as e:
            self._remove_partial(output_path)
            raise DumpError(f"{self.label} process error: {e}")

    @abc.abstractmethod
    def _run(self, output_path: str):
        """Run the dump process(es) writing output_path, raising DumpError on failure."""

    def _build_env(self) -> Dict[str, str]:
        return dict(os.environ)

    def _deadline(self) -> Optional[float]:
        """Monotonic time by which every process of one dump must have exited."""
        if self.timeout is None:
            return None
        return time.monotonic() + self.timeout

    def _wait(self, process: subprocess.Popen, deadline: Optional[float] = None) -> int:
        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        try:
            return process.wait(timeout=remaining)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            raise DumpError(f"{self.label} timed out after {self.timeout:g}s")

    @staticmethod
    def _remove_partial(output_path: str):
        if os.path.exists(output_path):
            try:
                os.remove(output_path)
            except OSError as e:
                logger.warning(f"Failed to remove partial dump {output_path}: {e}")


class MySQLDumper(BaseDumper):
    """Dump a MySQL/MariaDB database as gzip-compressed SQL."""

    SSL_ARGS = {
        SSLMode.OFF: '--skip-ssl',
        SSLMode.REQUIRED: '--ssl-mode=VERIFY_CA',
        SSLMode.REQUIRED_NO_VERIFY: '--ssl-mode=REQUIRED',
    }

    def __init__(self, database: DatabaseConfig, timeout: Optional[float] = None):
        super().__init__(database, timeout)
        self.label = self.dump_command()

    @staticmethod
    def dump_command() -> str:
        """Prefer mariadb-dump (newer clients) and fall back to mysqldump."""
        if shutil.which('mariadb-dump'):
            return 'mariadb-dump'
        return 'mysqldump'

    def build_command(self) -> List[str]:
        db = self.database
        return [
            self.label,
            f'-h{db.host}',
            f'-P{db.port}',
            f'-u{db.username}',
            '--single-transaction',
            '--quick',
            '--lock-tables=false',
            '--routines',
            '--triggers',
            '--events',
            self.SSL_ARGS[db.ssl_mode],
            db.database,
        ]

    def _build_env(self) -> Dict[str, str]:
        env = super()._build_env()
        if self.database.password:
            env['MYSQL_PWD'] = self.database.password
        return env

    def _run(self, output_path: str):
        command = self.build_command()
        logger.info(f"Using {self.label} for backup of {self.database.name}")
        logger.debug(f"Executing: {' '.join(command)}")

        # stderr of both processes goes to one spooled file so neither can
        # block on a full pipe while we wait on the other
        deadline = self._deadline()
        with open(output_path, 'wb') as f, tempfile.TemporaryFile() as err:
            p1 = subprocess.Popen(command, env=self._build_env(), stdout=subprocess.PIPE, stderr=err)
            try:
                p2 = subprocess.Popen(['gzip'], stdin=p1.stdout, stdout=f, stderr=err)
            except OSError:
                p1.kill()
                p1.wait()
                raise
            finally:
                p1.stdout.close()

            try:
                p1_rc = self._wait(p1, deadline)
                p2_rc = self._wait(p2, deadline)
            except DumpError:
                p2.kill()
                p2.wait()
                raise

            err.seek(0)
            stderr = err.read().decode('utf-8', errors='replace')

        if p1_rc != 0:
            raise DumpError(f"{self.label} exited with code {p1_rc}: {stderr.strip()}")
        if p2_rc != 0:
            raise DumpError(f"gzip exited with code {p2_rc}: {stderr.strip()}")
        if 'ERROR' in stderr:
            raise DumpError(f"{self.label} failed: {stderr.strip()}")


class PostgresDumper(BaseDumper):
    """Dump a PostgreSQL database in pg_dump's compressed custom format."""

    label = 'pg_dump'

    SSL_MODES = {
        SSLMode.OFF: 'disable',
        SSLMode.REQUIRED: 'verify-ca',
        SSLMode.REQUIRED_NO_VERIFY: 'require',
    }

    def build_command(self) -> List[str]:
        db = self.database
        return [
            'pg_dump',
            f'-h{db.host}',
            f'-p{db.port}',
            f'-U{db.username}',
            '--format=custom',
            '--compress=9',
            '--verbose',
            '--no-password',
            db.database,
        ]

    def _build_env(self) -> Dict[str, str]:
        env = super()._build_env()
        if self.database.password:
            env['PGPASSWORD'] = self.database.password
        env['PGSSLMODE'] = self.SSL_MODES[self.database.ssl_mode]
        return env

    def _run(self, output_path: str):
        command = self.build_command()
        logger.debug(f"Executing: {' '.join(command)}")

        # --verbose output goes to stderr; it is spooled to a file so a
        # chatty dump cannot fill the pipe and stall the process
        deadline = self._deadline()
        with open(output_path, 'wb') as f, tempfile.TemporaryFile() as err:
            p = subprocess.Popen(command, env=self._build_env(), stdout=f, stderr=err)
            rc = self._wait(p, deadline)

            err.seek(0)
            stderr = err.read().decode('utf-8', errors='replace')

        if rc != 0:
            raise DumpError(f"pg_dump exited with code {rc}: {stderr.strip()}")
        # Verbose progress on stderr is normal; only explicit errors count
        if 'error:' in stderr.lower():
            raise DumpError(f"pg_dump reported errors: {stderr.strip()}")


def create_dumper(database: DatabaseConfig, timeout: Optional[float] = None) -> BaseDumper:
    """
    Factory function to create the dump producer for a database.

    Args:
        database: Enabled database descriptor
        timeout: Optional limit in seconds for the dump process

    Returns:
        MySQLDumper or PostgresDumper instance

    Raises:
        ValueError: If the engine family is unknown
    """
    if database.engine == Engine.MYSQL:
        return MySQLDumper(database, timeout)
    elif database.engine == Engine.POSTGRES:
        return PostgresDumper(database, timeout)
    else:
        raise ValueError(f"Unsupported database engine: {database.engine}")
