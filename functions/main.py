# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

# Cloud functions for database backups: one HTTP trigger and two schedules.
#
# This file containing Python cloud functions must be named main.py.
# See https://cloud.google.com/run/docs/write-functions#python for more info.

# Standard library imports
from datetime import datetime, timezone

# Third-party library imports
from firebase_functions import https_fn, logger, options, scheduler_fn

# Local application imports
from dbbackup.backup import backup_active, backup_all
from dbbackup.config import ACTIVE_BACKUP_SCHEDULE, ALL_BACKUP_SCHEDULE
from dbbackup.triggers import (
    PAST_DUE_TOLERANCE,
    PLAIN_TEXT_CONTENT_TYPE,
    ScheduleStatus,
    next_run,
    run_http_backup,
    run_scheduled_backup,
)

BACKUP_FUNCTION_TIMEOUT = 540
HTTP_METHODS = ("GET", "POST")


def _schedule_status(
    event: scheduler_fn.ScheduledEvent, cron_expr: str
) -> ScheduleStatus:
    """Build schedule metadata from the Cloud Scheduler event."""
    schedule_time = event.schedule_time
    if schedule_time.tzinfo is None:
        schedule_time = schedule_time.replace(tzinfo=timezone.utc)
    now = datetime.now(timezone.utc)
    following = next_run(cron_expr, schedule_time)
    return ScheduleStatus(
        last=schedule_time,
        next=following,
        last_updated=now,
        is_past_due=now - schedule_time > PAST_DUE_TOLERANCE,
    )


@https_fn.on_request(
    timeout_sec=BACKUP_FUNCTION_TIMEOUT, memory=options.MemoryOption.GB_1
)
def backup_active_http(req: https_fn.Request) -> https_fn.Response:
    """
    Back up the active databases on an anonymous GET or POST.

    Responds with 200 and a confirmation, or 400 with the error message.
    """
    if req.method not in HTTP_METHODS:
        return https_fn.Response(
            "Method not allowed",
            status=405,
            content_type=PLAIN_TEXT_CONTENT_TYPE,
            headers={"Allow": ", ".join(HTTP_METHODS)},
        )

    status, body = run_http_backup(backup_active)
    if status != 200:
        logger.error("Active databases backup failed", error=body)
    return https_fn.Response(body, status=status, content_type=PLAIN_TEXT_CONTENT_TYPE)


@scheduler_fn.on_schedule(
    schedule=ACTIVE_BACKUP_SCHEDULE,
    timeout_sec=BACKUP_FUNCTION_TIMEOUT,
    memory=options.MemoryOption.GB_1,
)
def backup_active_timer(event: scheduler_fn.ScheduledEvent) -> None:
    """Daily backup of the active databases."""
    schedule = _schedule_status(event, ACTIVE_BACKUP_SCHEDULE)
    succeeded = run_scheduled_backup("daily", backup_active, schedule)
    logger.info(
        "Daily backup finished",
        job_name=event.job_name,
        succeeded=succeeded,
        next_run=schedule.next.isoformat(),
    )


@scheduler_fn.on_schedule(
    schedule=ALL_BACKUP_SCHEDULE,
    timeout_sec=BACKUP_FUNCTION_TIMEOUT,
    memory=options.MemoryOption.GB_2,
)
def backup_all_timer(event: scheduler_fn.ScheduledEvent) -> None:
    """Monthly backup of every database on the server."""
    schedule = _schedule_status(event, ALL_BACKUP_SCHEDULE)
    succeeded = run_scheduled_backup("monthly", backup_all, schedule)
    logger.info(
        "Monthly backup finished",
        job_name=event.job_name,
        succeeded=succeeded,
        next_run=schedule.next.isoformat(),
    )
