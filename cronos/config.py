"""
Configuration for Cronos.

Two layers:
- Config: process settings read from the environment
- load_config(): the YAML file describing databases and storage
  destinations, validated and normalized into DatabaseConfig descriptors
"""

import os
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import yaml

from cronos.models import (
    DEFAULT_KEEP,
    DatabaseConfig,
    DestinationConfig,
    Engine,
    SSLMode,
    StorageType,
)

logger = logging.getLogger(__name__)


def _env_float(name: str) -> Optional[float]:
    value = os.environ.get(name)
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={value!r}")
        return None


class Config:
    """Base configuration"""

    CONFIG_PATH = os.environ.get('CONFIG_PATH')

    # Staging directory for dump files before they are fanned out
    TEMP_DIR = os.environ.get('TEMP_DIR') or '/tmp/backups'

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_DIR = os.environ.get('LOG_DIR')

    # Kill a dump process running longer than this (seconds, unset = no limit)
    DUMP_TIMEOUT = _env_float('DUMP_TIMEOUT')

    # Webhook
    WEBHOOK_URL = os.environ.get('WEBHOOK_URL')
    WEBHOOK_TIMEOUT = _env_float('WEBHOOK_TIMEOUT') or 30.0


DEFAULT_CONFIG_PATHS = [
    '/app/config.yaml',
    '/config/config.yaml',
    './config.yaml',
]

ENGINE_TYPES = {
    'mysql': Engine.MYSQL,
    'mariadb': Engine.MYSQL,
    'postgres': Engine.POSTGRES,
    'postgresql': Engine.POSTGRES,
}

DEFAULT_PORTS = {
    Engine.MYSQL: 3306,
    Engine.POSTGRES: 5432,
}

REQUIRED_FIELDS = ['database', 'type', 'host', 'username']


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""
    pass


@dataclass(frozen=True)
class BackupConfig:
    """Validated configuration file contents."""
    databases: Tuple[DatabaseConfig, ...]
    webhook: Optional[str] = None

    def get(self, name: str) -> Optional[DatabaseConfig]:
        for database in self.databases:
            if database.name == name:
                return database
        return None


def find_config_file(config_path: Optional[str] = None) -> str:
    """
    Locate the configuration file.

    Args:
        config_path: Explicit path (e.g. from --config), tried first

    Returns:
        Path of the first candidate that exists

    Raises:
        ConfigError: If no candidate exists
    """
    candidates = [p for p in (config_path, Config.CONFIG_PATH) if p] + DEFAULT_CONFIG_PATHS

    for candidate in candidates:
        if os.path.isfile(candidate):
            return candidate

    raise ConfigError(f"Configuration file not found. Tried: {', '.join(candidates)}")


def load_config(config_path: Optional[str] = None) -> BackupConfig:
    """
    Load, validate and normalize the configuration file.

    Args:
        config_path: Explicit path to the YAML file (optional)

    Returns:
        BackupConfig with databases in configuration order

    Raises:
        ConfigError: If the file cannot be found, parsed or validated
    """
    path = find_config_file(config_path)
    logger.info(f"Loading configuration from: {path}")

    try:
        with open(path, 'r') as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read {path}: {e}")

    return parse_config(raw)


def parse_config(raw: Any) -> BackupConfig:
    """
    Validate and normalize an already-parsed configuration document.

    Raises:
        ConfigError: If the document is invalid
    """
    if not isinstance(raw, dict):
        raise ConfigError("Configuration must be a mapping")

    databases = raw.get('databases')
    if not isinstance(databases, dict) or not databases:
        raise ConfigError("Configuration must contain at least one database")

    parsed = tuple(
        parse_database(str(name), db_config)
        for name, db_config in databases.items()
    )

    webhook = raw.get('webhook') or Config.WEBHOOK_URL
    if webhook is not None and not isinstance(webhook, str):
        raise ConfigError("webhook must be a URL string")

    return BackupConfig(databases=parsed, webhook=webhook)


def parse_database(name: str, config: Any) -> DatabaseConfig:
    """
    Build a DatabaseConfig from one entry of the `databases` mapping.

    Disabled entries are not validated; only their name is kept so they
    can be reported as skipped.
    """
    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ConfigError(f'Database "{name}" must be a mapping')

    enabled = _parse_bool(config.get('enabled', True), f'Database "{name}" enabled')
    if not enabled:
        return DatabaseConfig(name=name, enabled=False, type=str(config.get('type') or ''))

    missing = [key for key in REQUIRED_FIELDS if not config.get(key)]
    if missing:
        raise ConfigError(f'Database "{name}" is missing required fields: {", ".join(missing)}')

    db_type = str(config['type']).lower()
    engine = ENGINE_TYPES.get(db_type)
    if engine is None:
        raise ConfigError(
            f'Database "{name}" has invalid type "{config["type"]}". '
            f'Must be one of: {", ".join(ENGINE_TYPES)}'
        )

    port = config.get('port')
    if port is None:
        port = DEFAULT_PORTS[engine]
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise ConfigError(f'Database "{name}" has invalid port "{port}"')
    if not 0 < port < 65536:
        raise ConfigError(f'Database "{name}" has invalid port "{port}"')

    password = config.get('password')

    return DatabaseConfig(
        name=name,
        enabled=True,
        engine=engine,
        type=db_type,
        host=str(config['host']),
        port=port,
        database=str(config['database']),
        username=str(config['username']),
        password=str(password) if password is not None else None,
        ssl_mode=_parse_ssl_mode(config),
        storage=tuple(_parse_storage(name, config.get('storage'))),
    )


def _parse_storage(name: str, storage: Any) -> List[DestinationConfig]:
    # A single mapping and a list of mappings are both accepted
    if storage is None:
        return [DestinationConfig(type=StorageType.LOCAL, path='/backups', keep=DEFAULT_KEEP)]

    entries = storage if isinstance(storage, list) else [storage]
    if not entries:
        raise ConfigError(f'Database "{name}" must define at least one storage destination')

    return [_parse_destination(name, entry) for entry in entries]


def _parse_destination(name: str, entry: Any) -> DestinationConfig:
    if not isinstance(entry, dict):
        raise ConfigError(f'Database "{name}" has a storage entry that is not a mapping')

    valid_types = [t.value for t in StorageType]
    storage_type = entry.get('type')
    if storage_type not in valid_types:
        raise ConfigError(
            f'Database "{name}" has invalid storage type "{storage_type}". '
            f'Must be one of: {", ".join(valid_types)}'
        )

    keep = entry.get('keep')
    if keep is None:
        keep = DEFAULT_KEEP
    if isinstance(keep, bool) or not isinstance(keep, int) or keep < 1:
        raise ConfigError(f'Database "{name}" has invalid storage keep "{keep}" (must be a positive integer)')

    if storage_type == StorageType.LOCAL.value:
        if not entry.get('path'):
            raise ConfigError(f'Database "{name}" with local storage must specify a path')
        return DestinationConfig(type=StorageType.LOCAL, keep=keep, path=str(entry['path']))

    if not entry.get('bucket'):
        raise ConfigError(f'Database "{name}" with S3 storage must specify a bucket')

    return DestinationConfig(
        type=StorageType.S3,
        keep=keep,
        bucket=str(entry['bucket']),
        prefix=str(entry.get('prefix') or ''),
        region=str(entry.get('region') or 'us-east-1'),
        access_key_id=entry.get('accessKeyId'),
        secret_access_key=entry.get('secretAccessKey'),
        endpoint=entry.get('endpoint'),
    )


def _parse_ssl_mode(config: Dict[str, Any]) -> SSLMode:
    if config.get('ssl') is False or config.get('skipSslVerification'):
        return SSLMode.OFF
    if str(config.get('sslMode', '')).lower() == 'verify':
        return SSLMode.REQUIRED
    return SSLMode.REQUIRED_NO_VERIFY


def _parse_bool(value: Any, label: str) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return True
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ('true', 'yes', 'on', '1'):
            return True
        if lowered in ('false', 'no', 'off', '0', ''):
            return False
    if isinstance(value, int):
        return bool(value)
    raise ConfigError(f"{label} must be a boolean, got {value!r}")
