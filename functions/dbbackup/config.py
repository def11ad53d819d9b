"""
Configuration and settings for the backup functions.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DATABASE_CONNECTION_ENV = "MYSQL_CONNECTION"
STORAGE_CONNECTION_ENV = "STORAGE_CONNECTION_STRING"

DEFAULT_CONTAINER = "databasebackups"
DEFAULT_ACTIVE_DATABASES = ("aw", "Extocare", "ExtocareAutowash", "mysystemsetting")

# Cron expressions, evaluated in UTC.
ACTIVE_BACKUP_SCHEDULE = "0 17 * * *"
ALL_BACKUP_SCHEDULE = "0 21 1 * *"

BlobNaming = Literal["database", "timestamp"]


class ConfigurationError(ValueError):
    """Raised when a required setting is missing or cannot be parsed."""

    def __init__(self, message: str, variable: Optional[str] = None):
        super().__init__(message)
        self.variable = variable


class Settings(BaseSettings):
    """Environment-backed settings for the backup functions."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Connections
    mysql_connection: Optional[str] = Field(default=None)
    storage_connection_string: Optional[str] = Field(default=None)

    # Backup targets
    backup_container: str = Field(default=DEFAULT_CONTAINER)
    backup_active_databases: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_ACTIVE_DATABASES)
    )
    backup_all_naming: BlobNaming = Field(default="database")
    backup_exclude_system_databases: bool = Field(default=False)
    backup_insert_batch_size: int = Field(default=100, ge=1)

    # Schedules used by the daemon
    backup_active_schedule: str = Field(default=ACTIVE_BACKUP_SCHEDULE)
    backup_all_schedule: str = Field(default=ALL_BACKUP_SCHEDULE)

    @field_validator("backup_active_databases", mode="before")
    @classmethod
    def _split_database_names(cls, value):
        if isinstance(value, str):
            value = value.strip()
            if value.startswith(("[", "{", "\"")):
                value = json.loads(value)
            else:
                value = value.split(",")
        if not isinstance(value, (list, tuple)):
            raise ValueError("expected a JSON array or comma-separated database names")
        return [str(name).strip() for name in value if str(name).strip()]


@dataclass(frozen=True)
class BackupConfig:
    """Resolved settings for a single backup invocation."""

    database_connection: str
    storage_connection: str
    container: str
    active_databases: tuple[str, ...]
    all_naming: BlobNaming = "database"
    exclude_system_databases: bool = False
    insert_batch_size: int = 100


def _require(value: Optional[str], variable: str) -> str:
    if value is None or not value.strip():
        raise ConfigurationError(
            f"Missing required environment variable: {variable}", variable=variable
        )
    return value.strip()


def load_backup_config(settings: Optional[Settings] = None) -> BackupConfig:
    """
    Resolve the configuration for one backup run.

    Settings are read fresh from the environment on every call so a running
    function picks up rotated connection strings.
    """
    settings = settings or Settings()
    database_connection = _require(settings.mysql_connection, DATABASE_CONNECTION_ENV)
    storage_connection = _require(
        settings.storage_connection_string, STORAGE_CONNECTION_ENV
    )
    return BackupConfig(
        database_connection=database_connection,
        storage_connection=storage_connection,
        container=settings.backup_container,
        active_databases=tuple(settings.backup_active_databases),
        all_naming=settings.backup_all_naming,
        exclude_system_databases=settings.backup_exclude_system_databases,
        insert_batch_size=settings.backup_insert_batch_size,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance (app wiring only, not backup runs)."""
    return Settings()
