"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from dbbackup.backup import backup_active
from dbbackup.triggers import BackupProcedure


def get_active_backup() -> BackupProcedure:
    """
    Return the procedure behind the HTTP trigger. Tests override this.
    """
    return backup_active
