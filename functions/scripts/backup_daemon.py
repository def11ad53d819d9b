"""
Daemon that runs the daily and monthly database backups on their cron schedules.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dbbackup.backup import backup_active, backup_all
from dbbackup.config import get_settings
from dbbackup.triggers import (
    PAST_DUE_TOLERANCE,
    ScheduleStatus,
    next_run,
    run_scheduled_backup,
)

logger = logging.getLogger(__name__)

PROCEDURES = {
    "active": ("daily", backup_active),
    "all": ("monthly", backup_all),
}


def main() -> int:
    parser = argparse.ArgumentParser(description="Database backup daemon")
    parser.add_argument(
        "--once",
        choices=sorted(PROCEDURES),
        default=None,
        help="Run a single backup procedure and exit",
    )
    parser.add_argument(
        "--max-sleep-seconds",
        type=int,
        default=300,
        help="Upper bound on a single sleep between schedule checks",
    )
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    if args.once:
        label, procedure = PROCEDURES[args.once]
        return 0 if run_scheduled_backup(label, procedure) else 1

    crons = {
        "active": settings.backup_active_schedule,
        "all": settings.backup_all_schedule,
    }
    statuses = {
        key: ScheduleStatus(next=next_run(cron), last_updated=datetime.now(timezone.utc))
        for key, cron in crons.items()
    }
    for key, status in statuses.items():
        logger.info("Scheduled %s backup (%s), next at %s", key, crons[key], status.next)

    while True:
        now = datetime.now(timezone.utc)
        for key, status in statuses.items():
            if status.next > now:
                continue
            label, procedure = PROCEDURES[key]
            status.is_past_due = now - status.next > PAST_DUE_TOLERANCE
            status.last = now
            status.next = next_run(crons[key], now)
            status.last_updated = now
            run_scheduled_backup(label, procedure, status)
            status.is_past_due = False

        upcoming = min(status.next for status in statuses.values())
        sleep_for = (upcoming - datetime.now(timezone.utc)).total_seconds()
        sleep_for = max(1.0, min(sleep_for, args.max_sleep_seconds))
        logger.debug("Sleeping for %.1fs", sleep_for)
        time.sleep(sleep_for)


if __name__ == "__main__":
    raise SystemExit(main())
