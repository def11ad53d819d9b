"""
Database access for MySQL servers and an in-memory test implementation.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, Iterator, Optional, Protocol

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Connection, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.pool import NullPool

from dbbackup.config import DATABASE_CONNECTION_ENV, ConfigurationError
from dbbackup.dump import DEFAULT_BATCH_SIZE, quote_identifier, write_sql_dump

DEFAULT_DRIVER = "mysql+pymysql"

_KEY_ALIASES = {
    "server": "host",
    "host": "host",
    "datasource": "host",
    "address": "host",
    "port": "port",
    "userid": "username",
    "uid": "username",
    "user": "username",
    "username": "username",
    "password": "password",
    "pwd": "password",
    "database": "database",
    "initialcatalog": "database",
}


class DatabaseSession(Protocol):
    """Operations a backup run performs over one open connection."""

    def use_database(self, name: str) -> None:
        ...

    def list_databases(self) -> list[str]:
        ...

    def export_to_stream(self, stream: BinaryIO) -> None:
        ...


def to_sqlalchemy_url(connection_string: str) -> URL:
    """
    Accept either a SQLAlchemy URL or a ``Server=...;User ID=...;`` string.
    """
    connection_string = connection_string.strip()
    if "://" in connection_string:
        try:
            url = make_url(connection_string)
        except ArgumentError as exc:
            raise ConfigurationError(
                f"Invalid database URL: {exc}", variable=DATABASE_CONNECTION_ENV
            ) from exc
        # Plain mysql:// would select MySQLdb, which is not installed.
        if url.drivername == "mysql":
            url = url.set(drivername=DEFAULT_DRIVER)
        return url

    parts: Dict[str, str] = {}
    for segment in connection_string.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        key, sep, value = segment.partition("=")
        if not sep:
            raise ConfigurationError(
                f"Malformed database connection string segment: {key!r}",
                variable=DATABASE_CONNECTION_ENV,
            )
        target = _KEY_ALIASES.get(key.replace(" ", "").replace("_", "").lower())
        if target:
            parts[target] = value.strip()

    if not parts.get("host"):
        raise ConfigurationError(
            "Database connection string has no server", variable=DATABASE_CONNECTION_ENV
        )
    port = parts.get("port")
    if port is not None and not port.isdigit():
        raise ConfigurationError(
            f"Invalid database port: {port!r}", variable=DATABASE_CONNECTION_ENV
        )
    return URL.create(
        DEFAULT_DRIVER,
        username=parts.get("username"),
        password=parts.get("password"),
        host=parts["host"],
        port=int(port) if port else None,
        database=parts.get("database") or None,
        query={"charset": "utf8mb4"},
    )


class MySqlDatabaseSession:
    """
    SQLAlchemy-backed session over a single open connection.
    """

    def __init__(self, connection: Connection, *, batch_size: int = DEFAULT_BATCH_SIZE):
        self.connection = connection
        self.batch_size = batch_size

    def use_database(self, name: str) -> None:
        self.connection.exec_driver_sql(f"USE {quote_identifier(name)}")

    def list_databases(self) -> list[str]:
        return [row[0] for row in self.connection.exec_driver_sql("SHOW DATABASES")]

    def export_to_stream(self, stream: BinaryIO) -> None:
        write_sql_dump(self.connection, stream, batch_size=self.batch_size)


@contextmanager
def open_database(
    connection_string: str, *, batch_size: int = DEFAULT_BATCH_SIZE
) -> Iterator[DatabaseSession]:
    """Connect, yield a session and release the connection on every exit path."""
    engine = create_engine(to_sqlalchemy_url(connection_string), poolclass=NullPool)
    try:
        with engine.connect() as connection:
            yield MySqlDatabaseSession(connection, batch_size=batch_size)
    finally:
        engine.dispose()


@dataclass
class InMemoryDatabaseClient:
    """Simple in-memory server for development and tests."""

    dumps: Dict[str, bytes] = field(default_factory=dict)
    listing: Optional[list[str]] = None
    fail_exports: set = field(default_factory=set)
    calls: list[tuple] = field(default_factory=list)
    current: Optional[str] = None
    opened: int = 0
    closed: int = 0

    def use_database(self, name: str) -> None:
        self.calls.append(("use", name))
        if name not in self.dumps:
            raise LookupError(f"Unknown database '{name}'")
        self.current = name

    def list_databases(self) -> list[str]:
        self.calls.append(("list",))
        if self.listing is not None:
            return list(self.listing)
        return list(self.dumps)

    def export_to_stream(self, stream: BinaryIO) -> None:
        self.calls.append(("export", self.current))
        if self.current in self.fail_exports:
            raise RuntimeError(f"Export of {self.current} failed")
        stream.write(self.dumps[self.current])

    @property
    def exported(self) -> list[str]:
        return [call[1] for call in self.calls if call[0] == "export"]

    @contextmanager
    def connect(self, connection_string: str, **kwargs) -> Iterator[DatabaseSession]:
        """Stand-in for ``open_database``."""
        self.opened += 1
        try:
            yield self
        finally:
            self.closed += 1
