"""
HTTP routes for the backup service.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from dbbackup.dependencies import get_active_backup
from dbbackup.triggers import PLAIN_TEXT_CONTENT_TYPE, BackupProcedure, run_http_backup

router = APIRouter()


@router.api_route(
    "/backup_active", methods=["GET", "POST"], response_class=PlainTextResponse
)
def backup_active_http(backup: BackupProcedure = Depends(get_active_backup)):
    """
    Back up the active databases. No request input is consumed.
    """
    status_code, body = run_http_backup(backup)
    return PlainTextResponse(
        body, status_code=status_code, media_type=PLAIN_TEXT_CONTENT_TYPE
    )
