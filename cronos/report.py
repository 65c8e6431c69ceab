"""
Rendering of a run summary: the console report and the webhook payload.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from cronos.models import DatabaseResult, RunSummary

RULE = '=' * 60

SYMBOL_SUCCESS = '✓'
SYMBOL_WARNING = '⚠'
SYMBOL_FAILURE = '✗'
SYMBOL_SKIPPED = '⊗'


def format_size_mb(size: Optional[int]) -> Optional[str]:
    if not size:
        return None
    return f"{size / (1024 * 1024):.2f}"


def format_seconds(duration_ms: int) -> str:
    return f"{duration_ms / 1000:.2f}"


def _result_lines(result: DatabaseResult) -> List[str]:
    duration = format_seconds(result.duration_ms)

    if result.success:
        symbol = SYMBOL_WARNING if result.has_warnings else SYMBOL_SUCCESS
        size = format_size_mb(result.size) or '0.00'
        lines = [f"{symbol} {result.name} - {size} MB - {duration}s"]
    else:
        lines = [f"{SYMBOL_FAILURE} {result.name} - {result.error} - {duration}s"]

    for storage in result.storages:
        lines.append(f"  → {storage.type}: {storage.path}")
    for error in result.storage_errors:
        lines.append(f"  {SYMBOL_FAILURE} {error.type}: {error.error}")

    return lines


def render_summary(summary: RunSummary) -> str:
    """
    Render the human-readable run report.

    The same text is printed to the console and sent as the webhook's
    summaryText.
    """
    lines = [
        RULE,
        'BACKUP SUMMARY',
        RULE,
        f"Total: {summary.total} | Success: {summary.successful} | "
        f"Failed: {summary.failed} | Skipped: {summary.skipped_count}",
        f"Total duration: {format_seconds(summary.total_duration_ms)}s",
        '',
    ]

    for result in summary.results:
        lines.extend(_result_lines(result))

    for name in summary.skipped:
        lines.append(f"{SYMBOL_SKIPPED} {name} - SKIPPED")

    lines.append(RULE)
    return '\n'.join(lines)


def result_to_dict(result: DatabaseResult) -> Dict[str, Any]:
    return {
        'name': result.name,
        'success': result.success,
        'sizeMB': format_size_mb(result.size),
        'durationMs': result.duration_ms,
        'durationSec': format_seconds(result.duration_ms),
        'storages': [s.to_dict() for s in result.storages],
        'storageErrors': [e.to_dict() for e in result.storage_errors],
        # Legacy single-destination field: first successful location
        'path': result.path,
        'error': result.error,
    }


def build_webhook_payload(
    summary: RunSummary,
    summary_text: Optional[str] = None,
    timestamp: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Build the JSON-serializable webhook payload for a run.

    Args:
        summary: Run summary
        summary_text: Rendered report (default: render_summary(summary))
        timestamp: Payload timestamp (default: now, UTC)

    Returns:
        Payload dict
    """
    timestamp = timestamp or datetime.now(timezone.utc)
    if summary_text is None:
        summary_text = render_summary(summary)

    return {
        'timestamp': timestamp.isoformat(timespec='milliseconds').replace('+00:00', 'Z'),
        'summary': {
            'total': summary.total,
            'successful': summary.successful,
            'failed': summary.failed,
            'skipped': summary.skipped_count,
            'totalDurationMs': summary.total_duration_ms,
            'totalDurationSec': format_seconds(summary.total_duration_ms),
        },
        'summaryText': summary_text,
        'results': [result_to_dict(r) for r in summary.results],
        'skippedDatabases': list(summary.skipped),
    }
