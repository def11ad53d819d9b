"""
Backup procedures: dump MySQL databases and upload them to object storage.

Each procedure opens one storage client and one database connection, then
processes the target databases strictly in order. The first error aborts the
batch and propagates to the caller; databases already uploaded stay uploaded.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, ContextManager, Iterable, Optional

from dbbackup.config import BackupConfig, BlobNaming, load_backup_config
from dbbackup.db import DatabaseSession, open_database
from dbbackup.storage import StorageClient, open_storage_client

logger = logging.getLogger(__name__)

BLOB_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
SYSTEM_DATABASES = frozenset(
    {"information_schema", "mysql", "performance_schema", "sys"}
)

DatabaseFactory = Callable[..., ContextManager[DatabaseSession]]
StorageFactory = Callable[[str, str], ContextManager[StorageClient]]
Clock = Callable[[], datetime]


@dataclass
class BackupArtifact:
    database: str
    blob_name: str
    size_bytes: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def blob_name_for(
    database: str, when: datetime, naming: BlobNaming = "database"
) -> str:
    """
    Name of the object holding one database dump.

    ``naming="timestamp"`` drops the database name (``db_<ts>.sql``), which
    collides when two databases finish within the same second.
    """
    stamp = when.astimezone(timezone.utc).strftime(BLOB_TIMESTAMP_FORMAT)
    if naming == "timestamp":
        return f"db_{stamp}.sql"
    return f"db_{database}_{stamp}.sql"


def _backup_database(
    session: DatabaseSession,
    storage: StorageClient,
    database: str,
    naming: BlobNaming,
    clock: Clock,
) -> BackupArtifact:
    logger.info("Database %s backup started", database)
    session.use_database(database)
    blob_name = blob_name_for(database, clock(), naming)

    with io.BytesIO() as buffer:
        session.export_to_stream(buffer)
        size = buffer.tell()
        buffer.seek(0)
        storage.upload_stream(blob_name, buffer)

    logger.info("Database %s backup completed as %s (%d bytes)", database, blob_name, size)
    return BackupArtifact(database=database, blob_name=blob_name, size_bytes=size)


def _run(
    config: BackupConfig,
    select_databases: Callable[[DatabaseSession], Iterable[str]],
    naming: BlobNaming,
    database_factory: DatabaseFactory,
    storage_factory: StorageFactory,
    clock: Clock,
) -> list[BackupArtifact]:
    artifacts: list[BackupArtifact] = []
    with storage_factory(config.storage_connection, config.container) as storage:
        with database_factory(
            config.database_connection, batch_size=config.insert_batch_size
        ) as session:
            for database in select_databases(session):
                try:
                    artifacts.append(
                        _backup_database(session, storage, database, naming, clock)
                    )
                except Exception as exc:
                    logger.error("Database %s backup failed: %s", database, exc)
                    raise
    return artifacts


def backup_active(
    config: Optional[BackupConfig] = None,
    *,
    database_factory: DatabaseFactory = open_database,
    storage_factory: StorageFactory = open_storage_client,
    clock: Clock = _utcnow,
) -> list[BackupArtifact]:
    """Back up the configured list of active databases, in order."""
    config = config or load_backup_config()
    logger.info(
        "Backing up %d active databases to %s",
        len(config.active_databases),
        config.container,
    )
    return _run(
        config,
        lambda session: config.active_databases,
        "database",
        database_factory,
        storage_factory,
        clock,
    )


def backup_all(
    config: Optional[BackupConfig] = None,
    *,
    database_factory: DatabaseFactory = open_database,
    storage_factory: StorageFactory = open_storage_client,
    clock: Clock = _utcnow,
) -> list[BackupArtifact]:
    """Back up every database the server lists, in listing order."""
    config = config or load_backup_config()

    def select(session: DatabaseSession) -> list[str]:
        databases = session.list_databases()
        if config.exclude_system_databases:
            databases = [d for d in databases if d.lower() not in SYSTEM_DATABASES]
        logger.info("Backing up %d databases to %s", len(databases), config.container)
        return databases

    return _run(
        config,
        select,
        config.all_naming,
        database_factory,
        storage_factory,
        clock,
    )
