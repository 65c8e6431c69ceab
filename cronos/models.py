"""
Data types shared by the backup engine.

Descriptors (DatabaseConfig, DestinationConfig) are built once from the
configuration file and never change during a run. Results
(DestinationOutcome, DatabaseResult, RunSummary) are produced by the
executor and runner and consumed by the report and webhook.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


DEFAULT_KEEP = 10


class Engine(str, Enum):
    """Engine family: databases sharing the same dump tooling and extension."""
    MYSQL = 'mysql'
    POSTGRES = 'postgres'


class SSLMode(str, Enum):
    OFF = 'off'
    REQUIRED = 'required'
    REQUIRED_NO_VERIFY = 'required-no-verify'


class StorageType(str, Enum):
    LOCAL = 'local'
    S3 = 's3'


@dataclass(frozen=True)
class DestinationConfig:
    """One storage target for one database."""
    type: StorageType
    keep: int = DEFAULT_KEEP
    # local
    path: Optional[str] = None
    # s3
    bucket: Optional[str] = None
    prefix: str = ''
    region: str = 'us-east-1'
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    endpoint: Optional[str] = None


@dataclass(frozen=True)
class DatabaseConfig:
    """One configured backup target."""
    name: str
    enabled: bool = True
    engine: Optional[Engine] = None
    type: str = ''  # as written in the config (mysql, mariadb, postgres, postgresql)
    host: str = ''
    port: Optional[int] = None
    database: str = ''
    username: str = ''
    password: Optional[str] = field(default=None, repr=False)
    ssl_mode: SSLMode = SSLMode.REQUIRED_NO_VERIFY
    storage: Tuple[DestinationConfig, ...] = ()

    def __repr__(self):
        return f'<DatabaseConfig {self.name} type={self.type} enabled={self.enabled}>'


@dataclass
class DestinationOutcome:
    """Result of persisting the artifact to one destination."""
    type: str
    path: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        if self.success:
            return {'type': self.type, 'path': self.path, 'success': True}
        return {'type': self.type, 'error': self.error, 'success': False}


@dataclass
class DatabaseResult:
    """Aggregated outcome for one database."""
    name: str
    storages: List[DestinationOutcome] = field(default_factory=list)
    storage_errors: List[DestinationOutcome] = field(default_factory=list)
    size: Optional[int] = None
    duration_ms: int = 0
    error: Optional[str] = None
    logs: List[str] = field(default_factory=list, repr=False)

    @property
    def success(self) -> bool:
        # Lenient mode: one successful destination is enough
        return len(self.storages) > 0

    @property
    def has_warnings(self) -> bool:
        return self.success and len(self.storage_errors) > 0

    @property
    def path(self) -> Optional[str]:
        """First successful destination's location, in attempt order."""
        return self.storages[0].path if self.storages else None


@dataclass
class RunSummary:
    """Aggregated outcome for one invocation."""
    results: List[DatabaseResult] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.total - self.successful

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def total_duration_ms(self) -> int:
        return sum(r.duration_ms for r in self.results)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed > 0 else 0
