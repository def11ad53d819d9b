"""
Trigger handlers shared by the Cloud Functions, the FastAPI app and the daemon.

These are the only places that catch errors from a backup run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Backup completed successfully"
PLAIN_TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
# A run that starts later than this after its scheduled time is past due.
PAST_DUE_TOLERANCE = timedelta(seconds=60)

BackupProcedure = Callable[[], object]


@dataclass
class ScheduleStatus:
    """Schedule metadata supplied by the trigger; informational only."""

    last: Optional[datetime] = None
    next: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    is_past_due: bool = False


def run_http_backup(backup: BackupProcedure) -> tuple[int, str]:
    """
    Run a backup for an HTTP caller.

    Returns (200, success message) or (400, the error message).
    """
    logger.info("Started active databases backup triggered by http")
    try:
        backup()
    except Exception as exc:
        logger.error("An error occurred: %s", exc)
        return 400, str(exc)
    return 200, SUCCESS_MESSAGE


def run_scheduled_backup(
    label: str,
    backup: BackupProcedure,
    schedule: Optional[ScheduleStatus] = None,
) -> bool:
    """Run a backup for a timer trigger. Logs the outcome, never raises."""
    logger.info("Started %s database backup triggered by timer", label)
    if schedule and schedule.is_past_due:
        logger.warning("Timer for %s backup is running late", label)
    try:
        backup()
    except Exception as exc:
        logger.error("An error occurred: %s", exc)
        return False

    logger.info("Timer trigger function executed at: %s", datetime.now(timezone.utc))
    if schedule and schedule.next:
        logger.info("Next timer schedule at: %s", schedule.next)
    return True


def next_run(cron_expr: str, after: Optional[datetime] = None) -> datetime:
    """Compute the next UTC run time for a cron expression using croniter."""
    from croniter import croniter

    base = after or datetime.now(timezone.utc)
    # croniter works with naive datetimes; strip tz then re-attach
    if base.tzinfo is not None:
        base = base.astimezone(timezone.utc).replace(tzinfo=None)
    return croniter(cron_expr, base).get_next(datetime).replace(tzinfo=timezone.utc)
