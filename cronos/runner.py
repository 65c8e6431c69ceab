"""
Run coordination for Cronos.

Backs up every enabled database, one at a time and in configuration
order, then reports the outcome:
- Console report (stdout)
- Webhook notification (if configured)
- Process exit code (1 if any enabled database failed)
"""

import time
import logging
from typing import Callable, Iterable, Optional, Tuple

import click

from cronos.models import DatabaseConfig, DatabaseResult, RunSummary
from cronos.backup.executor import BackupExecutor
from cronos.report import build_webhook_payload, render_summary
from cronos.webhook import send_webhook

logger = logging.getLogger(__name__)


class BackupRunner:
    """Runs the backups of one invocation and aggregates their results."""

    def __init__(
        self,
        temp_dir: str,
        webhook_url: Optional[str] = None,
        webhook_timeout: float = 30.0,
        dump_timeout: Optional[float] = None,
        echo: Callable[[str], None] = click.echo
    ):
        """
        Initialize backup runner.

        Args:
            temp_dir: Staging directory passed to each executor
            webhook_url: Endpoint to notify after the run (optional)
            webhook_timeout: Timeout in seconds for the webhook POST
            dump_timeout: Optional limit in seconds for each dump process
            echo: Writes the console report
        """
        self.temp_dir = temp_dir
        self.webhook_url = webhook_url
        self.webhook_timeout = webhook_timeout
        self.dump_timeout = dump_timeout
        self.echo = echo

    def run_all(self, databases: Iterable[DatabaseConfig]) -> Tuple[RunSummary, int]:
        """
        Back up all enabled databases and report.

        Args:
            databases: Descriptors in configuration order

        Returns:
            (RunSummary, exit code)
        """
        databases = list(databases)
        enabled = [db for db in databases if db.enabled]
        disabled = [db for db in databases if not db.enabled]

        logger.info(f"Found {len(databases)} database(s) in configuration")
        logger.info(f"  - {len(enabled)} enabled")
        if disabled:
            logger.info(f"  - {len(disabled)} disabled, skipping: {', '.join(db.name for db in disabled)}")

        summary = RunSummary(skipped=[db.name for db in disabled])

        for database in enabled:
            summary.results.append(self.run_one(database))

        self.report(summary)
        return summary, summary.exit_code

    def run_one(self, database: DatabaseConfig) -> DatabaseResult:
        """
        Back up one database; an unexpected crash becomes a failed result.

        Args:
            database: Enabled database descriptor

        Returns:
            DatabaseResult for the database
        """
        start_time = time.monotonic()
        try:
            executor = BackupExecutor(database, self.temp_dir, dump_timeout=self.dump_timeout)
            return executor.execute()
        except Exception as e:
            logger.exception(f"Unexpected error while backing up {database.name}")
            return DatabaseResult(
                name=database.name,
                duration_ms=int((time.monotonic() - start_time) * 1000),
                error=f"Unexpected error: {e}"
            )

    def report(self, summary: RunSummary):
        """Print the report and send the webhook notification."""
        summary_text = render_summary(summary)
        self.echo('')
        self.echo(summary_text)

        if self.webhook_url:
            try:
                payload = build_webhook_payload(summary, summary_text)
                send_webhook(self.webhook_url, payload, timeout=self.webhook_timeout)
            except Exception as e:
                logger.error(f"Webhook notification failed: {e}")

        if summary.failed > 0:
            self.echo(f"\n{summary.failed} backup(s) failed!")
        else:
            self.echo('\nAll backups completed successfully!')
