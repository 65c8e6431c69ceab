"""
Command line entry point.

    cronos [--config PATH] [--database NAME ...] [--list]
"""

import sys
import logging

import click

from cronos import __version__, configure_logging
from cronos.config import Config, ConfigError, load_config
from cronos.runner import BackupRunner

logger = logging.getLogger(__name__)


def _describe(database) -> str:
    if not database.enabled:
        return f"  {database.name} (disabled)"

    storage_types = '+'.join(d.type.value for d in database.storage)
    return f"  {database.name} - {database.type} {database.host}:{database.port}/{database.database} -> {storage_types}"


@click.command(name='cronos', help='Database backup tool for MySQL, MariaDB, and PostgreSQL')
@click.option('-c', '--config', 'config_path', metavar='PATH',
              help='Path to configuration file (default: config.yaml or CONFIG_PATH env var)')
@click.option('-d', '--database', 'database_names', multiple=True, metavar='NAME',
              help='Backup specific database(s) - can be used multiple times')
@click.option('-l', '--list', 'list_only', is_flag=True,
              help='List all databases in configuration and exit')
@click.version_option(__version__, prog_name='cronos')
def cli(config_path, database_names, list_only):
    configure_logging(Config.LOG_LEVEL, Config.LOG_DIR)

    click.echo('Database Backup Tool')
    click.echo('===================\n')

    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Fatal error: {e}", err=True)
        sys.exit(1)

    databases = list(config.databases)

    if list_only:
        click.echo(f"Configured databases ({len(databases)}):")
        for database in databases:
            click.echo(_describe(database))
        sys.exit(0)

    if database_names:
        requested = list(dict.fromkeys(database_names))
        missing = [name for name in requested if config.get(name) is None]
        if missing:
            click.echo(f"Warning: The following databases are not defined in config: {', '.join(missing)}\n")

        databases = [db for db in databases if db.name in requested]
        if not databases:
            click.echo('Error: No valid databases found matching the specified names', err=True)
            sys.exit(1)

        click.echo(f"Filtering to {len(databases)} requested database(s): {', '.join(requested)}\n")

    runner = BackupRunner(
        temp_dir=Config.TEMP_DIR,
        webhook_url=config.webhook,
        webhook_timeout=Config.WEBHOOK_TIMEOUT,
        dump_timeout=Config.DUMP_TIMEOUT
    )
    _, exit_code = runner.run_all(databases)
    sys.exit(exit_code)


def main():
    cli()


if __name__ == '__main__':
    main()
